"""
Feature Extractor — URL categorization, time-of-day buckets and navigation
heuristics, plus the FeatureTuple the scorer consumes.
"""

from __future__ import annotations

from typing import List
from urllib.parse import urlparse

from attention_rescue.data.models import BrowsingContext, FeatureTuple

SOCIAL_MEDIA_DOMAINS = [
    "facebook.com", "twitter.com", "x.com", "instagram.com", "linkedin.com",
    "reddit.com", "tiktok.com", "snapchat.com", "pinterest.com", "tumblr.com",
]
VIDEO_STREAMING_DOMAINS = [
    "youtube.com", "youtu.be", "netflix.com", "hulu.com", "twitch.tv",
    "vimeo.com", "dailymotion.com",
]
NEWS_DOMAINS = [
    "news", "cnn.com", "bbc.com", "nytimes.com", "theguardian.com",
    "reuters.com", "apnews.com", "bloomberg.com", "wsj.com",
]
PRODUCTIVITY_DOMAINS = [
    "github.com", "gitlab.com", "stackoverflow.com", "docs.google.com",
    "notion.so", "trello.com", "asana.com", "slack.com",
    "teams.microsoft.com", "zoom.us", "meet.google.com",
]

WORK_DAYS = range(1, 6)        # Monday-Friday with Sunday = 0
WORK_START_HOUR = 9
WORK_END_HOUR = 17
LATE_NIGHT_START = 23
LATE_NIGHT_END = 5

RABBIT_HOLE_MIN_PAGES = 3
RABBIT_HOLE_MIN_MINUTES = 5
RABBIT_HOLE_MAX_CATEGORIES = 2


def extract_domain(url: str) -> str:
    """Hostname of url, or '' if it can't be parsed. Bare domains are accepted."""
    if not url:
        return ""
    candidate = url if "://" in url else f"https://{url}"
    try:
        return (urlparse(candidate).hostname or "").lower()
    except ValueError:
        return ""


def _domain_matches(url: str, needles: List[str]) -> bool:
    """Listed domains match whole labels (x.com never matches netflix.com);
    bare keywords like "news" match anywhere in the hostname."""
    domain = extract_domain(url)
    if not domain:
        return False
    for n in needles:
        if "." not in n:
            if n in domain:
                return True
        elif domain == n or domain.endswith("." + n):
            return True
    return False


def is_social_media(url: str) -> bool:
    return _domain_matches(url, SOCIAL_MEDIA_DOMAINS)


def is_video_streaming(url: str) -> bool:
    return _domain_matches(url, VIDEO_STREAMING_DOMAINS)


def is_news_site(url: str) -> bool:
    return _domain_matches(url, NEWS_DOMAINS)


def is_productivity_site(url: str) -> bool:
    return _domain_matches(url, PRODUCTIVITY_DOMAINS)


def categorize_url(url: str) -> str:
    if is_social_media(url):
        return "social-media"
    if is_video_streaming(url):
        return "video-streaming"
    if is_news_site(url):
        return "news"
    if is_productivity_site(url):
        return "productivity"
    return "other"


def is_work_hours(hour: int, weekday: int) -> bool:
    return weekday in WORK_DAYS and WORK_START_HOUR <= hour < WORK_END_HOUR


def is_late_night(hour: int) -> bool:
    return hour >= LATE_NIGHT_START or hour < LATE_NIGHT_END


def analyze_navigation_pattern(recent_history: List[str]) -> str:
    if len(recent_history) < 2:
        return "single-page"
    domains = [extract_domain(u) for u in recent_history]
    unique = set(domains)
    if len(unique) == 1:
        return "same-site"
    if len(unique) == len(recent_history):
        return "domain-hopping"
    return "mixed-browsing"


def browsing_velocity(page_count: int, session_minutes: float) -> float:
    """Pages per minute (0 for an empty session)."""
    if session_minutes == 0:
        return 0.0
    return page_count / session_minutes


def detect_rabbit_hole(recent_history: List[str], session_minutes: float) -> bool:
    """Rapid navigation within one or two content categories."""
    if len(recent_history) < RABBIT_HOLE_MIN_PAGES or session_minutes < RABBIT_HOLE_MIN_MINUTES:
        return False
    velocity = browsing_velocity(len(recent_history), session_minutes)
    categories = {categorize_url(u) for u in recent_history[-5:]}
    return velocity > 1 and len(categories) <= RABBIT_HOLE_MAX_CATEGORIES


def is_long_unproductive_session(context: BrowsingContext) -> bool:
    return context.session_minutes > 60 and context.idle_productive_minutes > 30


def extract_features(context: BrowsingContext) -> FeatureTuple:
    return FeatureTuple(
        hour=context.hour,
        weekday=context.weekday,
        category=categorize_url(context.url),
        navigation_pattern=analyze_navigation_pattern(context.recent_history),
        session_minutes=context.session_minutes,
        idle_productive_minutes=context.idle_productive_minutes,
    )


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Turns a raw BrowsingContext into the handful of signals every model in
#   the engine agrees on: what kind of site, what time bucket, and how the
#   user is moving between pages.
#
# Key functions:
#   - categorize_url(): ordered substring match on the hostname. Order
#     matters: "news.ycombinator.com" is news, not "other."
#   - analyze_navigation_pattern(): single-page / same-site /
#     domain-hopping / mixed-browsing from the last five URLs.
#   - detect_rabbit_hole(): more than one page a minute while staying in at
#     most two categories.
#
# Interviewer-friendly talking points:
#   1. Pure functions: no state, no I/O, trivially unit-testable.
#   2. Hour/weekday come from the context rather than a timestamp, so tests
#      can pin "Tuesday 10am" without touching the clock.
