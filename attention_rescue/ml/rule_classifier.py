"""
Rule-based classifier — deterministic baseline used when the online scorer
is unsure. First matching rule wins.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Callable, List

from attention_rescue.data.models import BrowsingContext, SiteClassification

from .features import (
    extract_domain,
    is_late_night,
    is_news_site,
    is_productivity_site,
    is_social_media,
    is_video_streaming,
    is_work_hours,
)

SAME_DOMAIN_MIN_VISITS = 3
LONG_SESSION_MINUTES = 30


class RuleBasedClassifier:
    """
    Ordered rule cascade:
      1. known productivity domain → productive 0.9
      2. social media → distraction 0.85 (work hours) / 0.7
      3. video streaming → distraction 0.8
      4. news → distraction 0.6 (work hours) / neutral 0.5
      5. late night → distraction 0.65
      6. long work-hours session on one domain → productive 0.7
      7. neutral 0.5
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock

    def classify(self, url: str, context: BrowsingContext) -> SiteClassification:
        category = "neutral"
        confidence = 0.5
        work_hours = is_work_hours(context.hour, context.weekday)

        if is_productivity_site(url):
            category, confidence = "productive", 0.9
        elif is_social_media(url):
            category, confidence = "distraction", (0.85 if work_hours else 0.7)
        elif is_video_streaming(url):
            category, confidence = "distraction", 0.8
        elif is_news_site(url):
            if work_hours:
                category, confidence = "distraction", 0.6
        elif is_late_night(context.hour):
            category, confidence = "distraction", 0.65
        elif work_hours and context.session_minutes > LONG_SESSION_MINUTES:
            domain = extract_domain(url)
            recent = [extract_domain(u) for u in context.recent_history[-5:]]
            if recent.count(domain) >= SAME_DOMAIN_MIN_VISITS:
                category, confidence = "productive", 0.7

        return SiteClassification(
            url=url,
            category=category,
            confidence=confidence,
            source="default",
            last_updated=self._clock(),
        )

    def distraction_score(self, url: str, context: BrowsingContext) -> float:
        """0-1 distraction likelihood derived from the rule verdict."""
        c = self.classify(url, context)
        if c.category == "distraction":
            return c.confidence
        if c.category == "productive":
            return 1.0 - c.confidence
        return 0.5

    @staticmethod
    def matches_pattern(url: str, pattern: str) -> bool:
        """Case-insensitive regex match, falling back to substring for bad regexes."""
        try:
            return re.search(pattern, url, re.IGNORECASE) is not None
        except re.error:
            return pattern.lower() in url.lower()

    def classify_with_patterns(
        self,
        url: str,
        context: BrowsingContext,
        productive_patterns: List[str],
        distraction_patterns: List[str],
    ) -> SiteClassification:
        """User-defined patterns first, then the rule cascade."""
        for category, patterns in (("productive", productive_patterns),
                                   ("distraction", distraction_patterns)):
            for pattern in patterns:
                if self.matches_pattern(url, pattern):
                    return SiteClassification(
                        url=url, category=category, confidence=1.0,
                        source="user", last_updated=self._clock(),
                    )
        return self.classify(url, context)

    def explain(self, url: str, context: BrowsingContext) -> str:
        work_hours = is_work_hours(context.hour, context.weekday)
        if is_productivity_site(url):
            return "Known productivity/work site"
        if is_social_media(url):
            return "Social media during work hours" if work_hours else "Social media site"
        if is_video_streaming(url):
            return "Video streaming site"
        if is_news_site(url):
            return "News site during work hours" if work_hours else "News site"
        if is_late_night(context.hour):
            return "Late night browsing"
        return "No specific pattern detected"
