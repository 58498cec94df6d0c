"""
Classification Service — resolves one classification per site from user
verdicts, the online scorer and the rule cascade, and manages the user's
saved verdicts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from attention_rescue.data.models import BrowsingContext, FeedbackItem, SiteClassification
from attention_rescue.data.repository import Repository
from attention_rescue.data.validators import validate_classification
from attention_rescue.errors import StorageError
from attention_rescue.ml.features import extract_domain
from attention_rescue.ml.rule_classifier import RuleBasedClassifier
from attention_rescue.ml.scorer import OnlineScorer

logger = logging.getLogger(__name__)

AI_TRUST_THRESHOLD = 0.6


@dataclass
class ClassificationSuggestion:
    url: str
    suggested_category: str
    confidence: float
    reason: str


class ClassificationService:
    """
    Resolution order for a URL:
      1. user verdict for the exact URL
      2. user verdict for its domain (url rewritten to the current page)
      3. online scorer, when it is at least 60% confident
      4. whichever of scorer / rule cascade is more confident (scorer wins ties)
    """

    def __init__(
        self,
        repo: Repository,
        scorer: OnlineScorer,
        rules: RuleBasedClassifier,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repo = repo
        self.scorer = scorer
        self.rules = rules
        self._clock = clock

    # ── Resolution ──────────────────────────────────────────────────────────

    def resolve(self, url: str, context: BrowsingContext) -> SiteClassification:
        """Pick one classification for url. Reads only; never writes."""
        user = self._user_classification(url)
        if user is not None:
            return user

        domain = extract_domain(url)
        if domain and domain != url:
            domain_verdict = self._user_classification(domain)
            if domain_verdict is not None:
                domain_verdict.url = url
                return domain_verdict

        ai = self.scorer.classify_site(url, context)
        if ai.confidence >= AI_TRUST_THRESHOLD:
            return ai

        rule = self.rules.classify(url, context)
        return rule if rule.confidence > ai.confidence else ai

    def bulk_classify(self, urls: Iterable[str], context: BrowsingContext) -> Dict[str, SiteClassification]:
        return {url: self.resolve(url, context) for url in urls}

    def get_suggestion(self, url: str, context: BrowsingContext) -> ClassificationSuggestion:
        prediction = self.scorer.predict(context)
        rule = self.rules.classify(url, context)
        reason = self.rules.explain(url, context)

        if prediction.confidence > AI_TRUST_THRESHOLD:
            category = "distraction" if prediction.is_distraction else "productive"
            confidence = prediction.confidence
        else:
            category = "neutral" if rule.category == "custom" else rule.category
            confidence = rule.confidence

        return ClassificationSuggestion(url, category, confidence, reason)

    # ── User verdicts ───────────────────────────────────────────────────────

    def save_user_classification(
        self, url: str, category: str, custom_label: Optional[str] = None
    ) -> SiteClassification:
        classification = SiteClassification(
            url=url, category=category, confidence=1.0, source="user",
            custom_label=custom_label, last_updated=self._clock(),
        )
        validate_classification(classification)
        self.repo.save_classification(classification)
        logger.info("User classified %s as %s", url, category)
        return classification

    def save_domain_classification(
        self, url: str, category: str, custom_label: Optional[str] = None
    ) -> SiteClassification:
        domain = extract_domain(url) or url
        return self.save_user_classification(domain, category, custom_label)

    def get_user_classifications(self) -> Dict[str, SiteClassification]:
        return {c.url: c for c in self.repo.list_classifications(source="user")}

    def remove_classification(self, url: str) -> None:
        self.repo.delete_classification(url)
        logger.info("Removed classification for %s", url)

    def update_from_behavior(self, url: str, was_productive: bool, context: BrowsingContext) -> None:
        """Teach the scorer, then refresh the stored AI verdict unless the user owns it."""
        self.scorer.update_with_feedback(FeedbackItem(
            url=url, was_distraction=not was_productive,
            timestamp=self._clock(), context=context,
        ))
        try:
            current = self.repo.get_classification(url)
            if current is None or current.source != "user":
                self.repo.save_classification(self.scorer.classify_site(url, context))
        except StorageError as e:
            logger.warning("Could not refresh classification for %s: %s", url, e)

    # ── Bulk data ───────────────────────────────────────────────────────────

    def get_statistics(self) -> dict:
        entries = self.repo.list_classifications()
        return {
            "total": len(entries),
            "user": sum(1 for c in entries if c.source == "user"),
            "ai": sum(1 for c in entries if c.source == "ai"),
            "productive": sum(1 for c in entries if c.category == "productive"),
            "distraction": sum(1 for c in entries if c.category == "distraction"),
            "neutral": sum(1 for c in entries if c.category == "neutral"),
        }

    def export_classifications(self) -> List[dict]:
        return [c.to_dict() for c in self.repo.list_classifications()]

    def import_classifications(self, items: Iterable[dict]) -> int:
        """Validate every item first; save none if any is malformed."""
        parsed = [SiteClassification.from_dict(d) for d in items]
        for c in parsed:
            validate_classification(c)
        for c in parsed:
            self.repo.save_classification(c)
        logger.info("Imported %d classifications", len(parsed))
        return len(parsed)

    def _user_classification(self, key: str) -> Optional[SiteClassification]:
        try:
            stored = self.repo.get_classification(key)
        except StorageError as e:
            logger.warning("Could not read classification for %s: %s", key, e)
            return None
        if stored is not None and stored.source == "user":
            return stored
        return None
