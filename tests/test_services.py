"""Unit tests for the service layer."""

import json
import random
import re
import threading
import pytest
from datetime import datetime, timedelta
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from PySide6.QtCore import QCoreApplication

from attention_rescue.data.models import (
    ActivityEvent,
    BrowsingContext,
    DistractionAssessment,
    HistoryEntry,
    TimeRange,
    UserSettings,
)
from attention_rescue.data.repository import KEY_SETTINGS, Repository
from attention_rescue.errors import StorageError, ValidationError
from attention_rescue.ml.rule_classifier import RuleBasedClassifier
from attention_rescue.ml.scorer import OnlineScorer
from attention_rescue.services.activity_detector import ActivityDetector
from attention_rescue.services.activity_service import ActivityService
from attention_rescue.services.challenge_service import TEMPLATES, ChallengeService
from attention_rescue.services.classification_service import ClassificationService
from attention_rescue.services.dismissal_service import (
    MAJOR,
    MINOR,
    MODERATE,
    NO_ADAPTATION,
    DismissalService,
    strategy_for,
)
from attention_rescue.services.engine import AttentionEngine
from attention_rescue.services.event_bus import EventBus
from attention_rescue.services.feedback_service import FeedbackEvent, FeedbackService, FeedbackType
from attention_rescue.services.settings_service import (
    SettingsService,
    is_hour_in_range,
    time_ranges_overlap,
)
from attention_rescue.services.tracking_service import TrackingService

REDDIT = "https://www.reddit.com/r/python"


def make_context(url=REDDIT, hour=10, weekday=2, history=None, session=10.0, idle=0.0):
    return BrowsingContext(
        url=url, title="", hour=hour, weekday=weekday,
        recent_history=list(history or []),
        session_minutes=session, idle_productive_minutes=idle,
    )


@pytest.fixture
def classifications(repo, clock):
    return ClassificationService(repo, OnlineScorer(repo, clock), RuleBasedClassifier(clock), clock)


# ── Event bus ───────────────────────────────────────────────────────────────

class TestEventBus:
    def test_ordered_delivery(self):
        bus = EventBus("test")
        seen = []
        bus.subscribe(lambda e: seen.append(("a", e)))
        bus.subscribe(lambda e: seen.append(("b", e)))
        assert bus.emit(1) == 0
        assert seen == [("a", 1), ("b", 1)]

    def test_failing_listener_is_isolated(self):
        bus = EventBus("test")
        seen = []

        def broken(_):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(seen.append)
        assert bus.emit("x") == 1
        assert seen == ["x"]

    def test_unsubscribe(self):
        bus = EventBus("test")
        seen = []
        unsubscribe = bus.subscribe(seen.append)
        unsubscribe()
        bus.emit(1)
        assert seen == []
        assert len(bus) == 0


# ── Settings ────────────────────────────────────────────────────────────────

class TestSettingsService:
    def test_wraparound_quiet_hours(self):
        night = TimeRange(22, 6)
        assert is_hour_in_range(23, night)
        assert is_hour_in_range(2, night)
        assert not is_hour_in_range(12, night)

    def test_quiet_hours_inclusive(self):
        assert is_hour_in_range(9, TimeRange(9, 11))
        assert is_hour_in_range(11, TimeRange(9, 11))
        assert not is_hour_in_range(12, TimeRange(9, 11))

    def test_overlap_detection(self):
        assert time_ranges_overlap(TimeRange(22, 6), TimeRange(5, 8))
        assert not time_ranges_overlap(TimeRange(22, 6), TimeRange(7, 9))

    def test_add_overlapping_quiet_hours_rejected(self, repo, clock):
        svc = SettingsService(repo, clock)
        svc.add_quiet_hours(TimeRange(22, 6))
        with pytest.raises(ValidationError, match="overlap"):
            svc.add_quiet_hours(TimeRange(5, 8))
        assert len(svc.get().quiet_hours) == 1
        assert svc.is_in_quiet_hours(23)
        assert not svc.is_in_quiet_hours(12)

    def test_invalid_update_leaves_state(self, repo, clock):
        svc = SettingsService(repo, clock)
        with pytest.raises(ValidationError):
            svc.update(intervention_frequency="sometimes")
        with pytest.raises(ValidationError, match="unknown setting"):
            svc.update(volume=11)
        assert svc.get() == UserSettings()

    def test_persisted_across_instances(self, repo, clock):
        SettingsService(repo, clock).update(streak_goal=10, learning_mode=False)
        restored = SettingsService(repo, clock).get()
        assert restored.streak_goal == 10
        assert restored.learning_mode is False

    def test_invalid_stored_settings_fall_back(self, repo, clock):
        repo.set(KEY_SETTINGS, {"intervention_frequency": "sometimes"})
        assert SettingsService(repo, clock).get() == UserSettings()

    def test_get_returns_copy(self, clock):
        svc = SettingsService(clock=clock)
        svc.get().whitelist.append("reddit.com")
        assert svc.get().whitelist == []

    def test_whitelist(self, clock):
        svc = SettingsService(clock=clock)
        svc.add_to_whitelist("https://www.github.com/org")
        svc.add_to_whitelist("https://www.github.com/other")
        assert svc.get().whitelist == ["www.github.com"]
        assert svc.is_whitelisted("https://github.com/x")
        assert not svc.is_whitelisted(REDDIT)
        svc.remove_from_whitelist("www.github.com")
        assert svc.get().whitelist == []

    def test_loosen_never_tightens(self, clock):
        svc = SettingsService(clock=clock)
        assert not svc.loosen_frequency("aggressive")
        assert svc.loosen_frequency("minimal")
        assert not svc.loosen_frequency("moderate")
        assert svc.get().intervention_frequency == "minimal"

    def test_changes_published(self, clock):
        svc = SettingsService(clock=clock)
        seen = []
        svc.changes.subscribe(seen.append)
        svc.set_learning_mode(False)
        assert len(seen) == 1
        assert seen[0].learning_mode is False


# ── Activity detector ───────────────────────────────────────────────────────

class TestActivityDetector:
    def test_detect_activity_type(self, clock):
        d = ActivityDetector(clock)
        assert d.detect_activity_type("https://meet.google.com/abc") == "video-call"
        assert d.detect_activity_type("https://docs.google.com/presentation/d/1") == "presentation"
        assert d.detect_activity_type(REDDIT) == "normal"

    def test_timed_pause(self, clock):
        d = ActivityDetector(clock)
        d.pause(10)
        clock.advance(seconds=30)
        assert d.is_paused()
        assert d.remaining_minutes() == 10
        clock.advance(minutes=10)
        assert not d.is_paused()
        assert d.pause_status() == "Not paused"

    def test_manual_pause(self, clock):
        d = ActivityDetector(clock)
        assert d.toggle_manual_pause()
        assert d.pause_status(REDDIT) == "Manually paused"
        d.resume()
        assert not d.should_pause(REDDIT)

    def test_custom_pattern(self, clock):
        d = ActivityDetector(clock)
        d.add_video_call_pattern("calls.example.org")
        assert d.is_video_call("https://calls.example.org/room/1")


# ── Classification ──────────────────────────────────────────────────────────

class TestClassificationService:
    def test_user_verdict_beats_scorer(self, classifications):
        ctx = make_context("docs.example.com", hour=23)
        assert classifications.scorer.classify_site("docs.example.com", ctx).category == "distraction"

        classifications.save_user_classification("docs.example.com", "productive")
        c = classifications.resolve("docs.example.com", ctx)
        assert (c.category, c.confidence, c.source) == ("productive", 1.0, "user")

    def test_domain_verdict_applies_to_pages(self, classifications):
        classifications.save_domain_classification("https://docs.example.com/a", "productive")
        c = classifications.resolve("https://docs.example.com/page", make_context())
        assert c.source == "user"
        assert c.url == "https://docs.example.com/page"

    def test_confident_scorer_is_trusted(self, classifications):
        ctx = make_context("https://youtube.com/watch", hour=23)
        assert classifications.resolve(ctx.url, ctx).source == "ai"

    def test_rule_wins_when_more_confident(self, classifications):
        c = classifications.resolve(REDDIT, make_context())
        assert (c.source, c.category, c.confidence) == ("default", "distraction", 0.85)

    def test_suggestion(self, classifications):
        s = classifications.get_suggestion(REDDIT, make_context())
        assert s.suggested_category == "distraction"
        assert s.reason == "Social media during work hours"

    def test_invalid_user_verdict_rejected(self, classifications):
        with pytest.raises(ValidationError):
            classifications.save_user_classification("a.com", "custom")
        assert classifications.get_user_classifications() == {}

    def test_remove(self, classifications):
        classifications.save_user_classification("a.com", "distraction")
        classifications.remove_classification("a.com")
        assert classifications.get_user_classifications() == {}

    def test_behavior_does_not_overwrite_user_verdict(self, classifications, repo):
        classifications.save_user_classification(REDDIT, "productive")
        classifications.update_from_behavior(REDDIT, False, make_context())
        assert repo.get_classification(REDDIT).source == "user"

        classifications.update_from_behavior("https://example.org", False,
                                             make_context("https://example.org"))
        assert repo.get_classification("https://example.org").source == "ai"

    def test_import_is_all_or_nothing(self, classifications):
        items = [
            {"url": "a.com", "category": "productive", "confidence": 1.0, "source": "user"},
            {"url": "b.com", "category": "bogus", "confidence": 1.0, "source": "user"},
        ]
        with pytest.raises(ValidationError):
            classifications.import_classifications(items)
        assert classifications.get_statistics()["total"] == 0
        assert classifications.import_classifications(items[:1]) == 1
        assert classifications.export_classifications()[0]["url"] == "a.com"


# ── Challenges ──────────────────────────────────────────────────────────────

class TestChallengeService:
    @pytest.fixture
    def challenges(self, clock):
        return ChallengeService(random.Random(42), clock)

    def test_breathing_defaults(self, challenges):
        c = challenges.generate(make_context(), challenge_type="breathing")
        assert (c.type, c.difficulty, c.timeout_seconds, c.options) == ("breathing", 1, 20, None)
        assert c.prompt in TEMPLATES["breathing"].prompts
        assert re.fullmatch(r"breathing-\d+-[a-z0-9]{9}", c.id)

    def test_intention_has_options(self, challenges):
        c = challenges.generate(make_context(), challenge_type="intention")
        assert c.timeout_seconds == 54
        assert tuple(c.options) in TEMPLATES["intention"].options

    def test_difficulty_and_timeout_scale(self, challenges):
        ctx = make_context(session=90, idle=45)
        c = challenges.generate(ctx, challenge_type="quick-task")
        assert c.difficulty == 4
        assert c.timeout_seconds == 96

    def test_difficulty_capped(self):
        ctx = make_context(session=90, idle=45)
        assert ChallengeService.calculate_difficulty(ctx, 4) == 5

    def test_recent_prompts_not_repeated(self, challenges):
        prompts = [challenges.generate(make_context(), "reflection").prompt for _ in range(4)]
        assert len(set(prompts)) == 4

    def test_unknown_type(self, challenges):
        with pytest.raises(ValueError):
            challenges.generate(make_context(), challenge_type="juggling")

    def test_type_selection(self, challenges):
        for _ in range(10):
            assert challenges.generate(make_context(), preferred_types=["breathing"]).type == "breathing"
            assert challenges.select_type(make_context(hour=23)) in ("breathing", "reflection")
            assert challenges.select_type(make_context()) in ("intention", "quick-task")
            assert challenges.select_type(make_context(hour=20)) in ("reflection", "intention")

    def test_generate_multiple_cycles_types(self, challenges):
        batch = challenges.generate_multiple(3, make_context(), ["breathing", "reflection"])
        assert [c.type for c in batch] == ["breathing", "reflection", "breathing"]

    def test_validate_response(self, challenges):
        intention = challenges.generate(make_context(), "intention")
        assert ChallengeService.validate_response(intention, intention.options[0])
        assert not ChallengeService.validate_response(intention, "something else")
        reflection = challenges.generate(make_context(), "reflection")
        assert not ChallengeService.validate_response(reflection, "   ")

    def test_difficulty_level_bounds(self, challenges):
        challenges.record_dismissal(steps=3)
        assert challenges.difficulty_level == 1.0
        for _ in range(60):
            challenges.record_completion()
        assert challenges.difficulty_level == 5.0
        assert challenges.record_dismissal() == pytest.approx(4.8)


# ── Dismissals ──────────────────────────────────────────────────────────────

class TestDismissalService:
    def test_strategy_thresholds(self):
        assert strategy_for(2) == NO_ADAPTATION
        assert strategy_for(3) == MINOR
        assert strategy_for(5) == MODERATE
        assert strategy_for(10) == MAJOR
        assert MAJOR.intervention_frequency == "minimal"

    def test_count_and_clear_on_completion(self, repo, clock):
        svc = DismissalService(repo, clock)
        for _ in range(3):
            count, strategy = svc.record_dismissal(REDDIT)
        assert (count, strategy) == (3, MINOR)
        svc.record_completion(REDDIT)
        assert svc.get_dismissal_count(REDDIT) == 0
        assert svc.get_record(REDDIT) is None

    def test_records_persist(self, repo, clock):
        DismissalService(repo, clock).record_dismissal(REDDIT)
        assert DismissalService(repo, clock).get_dismissal_count(REDDIT) == 1

    def test_high_dismissal_rate_window(self, clock):
        svc = DismissalService(clock=clock)
        for url in ("a", "b", "c"):
            svc.record_dismissal(url)
        assert not svc.is_high_dismissal_rate()
        svc.record_dismissal("d")
        assert svc.is_high_dismissal_rate()
        clock.advance(minutes=61)
        assert not svc.is_high_dismissal_rate()
        assert svc.get_total_dismissals() == 4

    def test_whitelist_suggestions(self, clock):
        svc = DismissalService(clock=clock)
        for url, n in (("https://a.example/", 5), ("https://b.example/", 6), ("https://c.example/", 2)):
            for _ in range(n):
                svc.record_dismissal(url)
        assert svc.suggest_whitelist_additions([]) == ["https://b.example/", "https://a.example/"]
        assert svc.suggest_whitelist_additions(["a.example"]) == ["https://b.example/"]

    def test_statistics(self, clock):
        svc = DismissalService(clock=clock)
        svc.record_dismissal("a")
        svc.record_dismissal("a")
        svc.record_dismissal("b")
        stats = svc.get_statistics()
        assert stats["total_dismissals"] == 3
        assert stats["unique_urls"] == 2
        assert stats["average_per_url"] == pytest.approx(1.5)
        assert svc.get_most_dismissed(1) == [("a", 2)]

    def test_export_import(self, clock):
        svc = DismissalService(clock=clock)
        svc.record_dismissal("a")
        other = DismissalService(clock=clock)
        other.import_records(svc.export_records())
        assert other.get_dismissal_count("a") == 1


# ── Feedback ────────────────────────────────────────────────────────────────

class TestFeedbackService:
    @pytest.fixture
    def feedback(self, repo, classifications):
        return FeedbackService(repo, classifications.scorer, classifications)

    def _event(self, clock, kind, url=REDDIT, **metadata):
        return FeedbackEvent(kind, url, clock(), make_context(url), metadata)

    def test_manual_classification_for_domain(self, feedback, classifications, clock):
        feedback.process(self._event(clock, FeedbackType.MANUAL_CLASSIFICATION,
                                     "https://docs.example.com/a",
                                     category="productive", apply_to_domain=True))
        assert "docs.example.com" in classifications.get_user_classifications()
        assert feedback.get_feedback_stats() == {"total": 1, "distraction": 0, "productive": 1}

    def test_manual_classification_requires_category(self, feedback, clock):
        with pytest.raises(ValidationError):
            feedback.process(self._event(clock, FeedbackType.MANUAL_CLASSIFICATION))

    def test_unknown_type(self, feedback, clock):
        with pytest.raises(ValidationError):
            feedback.process(self._event(clock, "shrug"))

    def test_dismissal_learns_after_three(self, feedback, clock):
        feedback.process(self._event(clock, FeedbackType.INTERVENTION_DISMISSED, dismissal_count=2))
        assert feedback.get_feedback_stats()["total"] == 0
        feedback.process(self._event(clock, FeedbackType.INTERVENTION_DISMISSED, dismissal_count=3))
        # scorer update plus the classification refresh
        assert feedback.get_feedback_stats() == {"total": 2, "distraction": 0, "productive": 2}

    def test_completion_confirms_distraction(self, feedback, clock):
        feedback.process(self._event(clock, FeedbackType.INTERVENTION_COMPLETED))
        assert feedback.get_feedback_stats()["distraction"] == 2

    def test_batch_continues_past_failures(self, feedback, clock):
        events = [
            self._event(clock, "shrug"),
            self._event(clock, FeedbackType.SESSION_PRODUCTIVE, "https://github.com"),
            self._event(clock, FeedbackType.SESSION_DISTRACTED),
        ]
        assert feedback.batch_process(events) == 2

    def test_learn_from_history(self, feedback, repo):
        base = datetime(2024, 3, 4, 9, 0)
        repo.add_history(HistoryEntry(url="https://github.com", start_time=base, was_productive=True))
        repo.add_history(HistoryEntry(url=REDDIT, start_time=base + timedelta(hours=1),
                                      intervention_triggered=True))
        repo.add_history(HistoryEntry(url="https://example.org", start_time=base + timedelta(hours=2)))
        assert feedback.learn_from_history(base - timedelta(days=1), base + timedelta(days=1)) == 2


# ── Activity intake ─────────────────────────────────────────────────────────

class FlakyRepository(Repository):
    """Repository whose activity writes fail while `failing` is set."""

    failing = False

    def save_activity(self, event):
        if self.failing:
            raise StorageError("disk full")
        super().save_activity(event)


class TestActivityService:
    @pytest.fixture
    def flaky(self, conn):
        return FlakyRepository(conn)

    @pytest.fixture
    def svc(self, flaky, clock):
        quiet = lambda ctx: DistractionAssessment(False, 0.0, "ok")
        return ActivityService(flaky, quiet, lambda url, ctx: True, clock)

    def _event(self, url, ts, kind="navigation"):
        return ActivityEvent(url, ts, kind, make_context(url))

    def test_navigation_opens_and_closes_visits(self, svc, flaky, clock):
        closed = []
        svc.on_visit_closed = closed.append
        t0 = clock()
        assert svc.submit(self._event("https://github.com", t0)).reason == "ok"
        svc.submit(self._event("https://example.org", t0 + timedelta(minutes=10)))

        assert flaky.count_activities() == 2
        assert flaky.count_history() == 1
        assert closed[0].url == "https://github.com"
        assert closed[0].duration_minutes == 10
        assert closed[0].was_productive
        assert svc.current_visit.url == "https://example.org"

    def test_non_navigation_returns_none(self, svc, clock):
        assert svc.submit(self._event(REDDIT, clock(), "scroll")) is None
        assert svc.current_visit is None

    def test_invalid_event_not_queued(self, svc, clock):
        with pytest.raises(ValidationError):
            svc.submit(self._event(REDDIT, clock(), "hover"))
        assert svc.pending() == 0

    def test_failed_write_requeued_in_order(self, svc, flaky, clock):
        t0 = clock()
        svc.submit(self._event("https://a.example/", t0, "click"))
        flaky.failing = True
        svc.submit(self._event("https://b.example/", t0 + timedelta(seconds=1), "click"))
        svc.submit(self._event("https://c.example/", t0 + timedelta(seconds=2), "click"))
        assert svc.pending() == 2

        flaky.failing = False
        assert svc.drain() == 2
        urls = [r["url"] for r in flaky.conn.execute("SELECT url FROM activities ORDER BY id")]
        assert urls == ["https://a.example/", "https://b.example/", "https://c.example/"]

    def test_triggered_visit_is_not_productive(self, flaky, clock):
        loud = lambda ctx: DistractionAssessment(True, 0.9, "flagged")
        svc = ActivityService(flaky, loud, lambda url, ctx: True, clock)
        svc.submit(self._event(REDDIT, clock()))
        visit = svc.close_current_visit()
        assert visit.intervention_triggered
        assert not visit.was_productive


# ── Housekeeping timers ─────────────────────────────────────────────────────

@pytest.fixture(scope="module")
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


class TestTrackingService:
    @pytest.fixture
    def engine(self, repo, clock):
        return AttentionEngine(repo, clock, random.Random(0))

    def test_start_and_stop(self, qapp, engine):
        tracking = TrackingService(engine)
        tracking.start()
        assert tracking.is_running()
        tracking.stop_all()
        assert not tracking.is_running()

    def test_inactivity_callback(self, engine, clock):
        broken = []
        tracking = TrackingService(engine, on_streak_break=broken.append)
        engine.record_productive_activity()
        clock.advance(minutes=31)
        assert len(tracking.check_inactivity()) == 1
        assert broken[0].type == "break"
        assert broken[0].streak_value == 1

    def test_refresh_and_flush(self, engine):
        tracking = TrackingService(engine)
        assert tracking.refresh_patterns()
        assert not tracking.refresh_patterns()
        assert tracking.flush()

    def test_prune_history(self, engine, repo, clock):
        repo.add_history(HistoryEntry(url=REDDIT, start_time=clock() - timedelta(days=100)))
        repo.add_history(HistoryEntry(url=REDDIT, start_time=clock() - timedelta(days=1)))
        assert TrackingService(engine).prune_history() == 1
        assert repo.count_history() == 1

    def test_prune_runs_under_engine_lock(self, engine, repo, clock, monkeypatch):
        repo.add_history(HistoryEntry(url=REDDIT, start_time=clock() - timedelta(days=100)))
        other_thread_got_lock = []
        original = repo.prune_history

        def prune_while_checking_lock(cutoff):
            def try_acquire():
                got = engine._lock.acquire(blocking=False)
                if got:
                    engine._lock.release()
                other_thread_got_lock.append(got)
            t = threading.Thread(target=try_acquire)
            t.start()
            t.join()
            return original(cutoff)

        monkeypatch.setattr(repo, "prune_history", prune_while_checking_lock)
        assert TrackingService(engine).prune_history() == 1
        assert other_thread_got_lock == [False]


# ── Replay host ─────────────────────────────────────────────────────────────

class TestReplay:
    def test_replay_skips_bad_lines(self, repo, clock, tmp_path):
        import main

        lines = [
            {"url": "https://github.com", "timestamp": "2024-03-05T10:00:00",
             "context": {"url": "https://github.com", "hour": 10, "weekday": 2}},
            {"timestamp": "2024-03-05T10:01:00"},
            {"url": REDDIT, "timestamp": "2024-03-05T10:02:00", "event_type": "hover"},
        ]
        log = tmp_path / "activity.jsonl"
        log.write_text("\n".join(json.dumps(line) for line in lines) + "\n", encoding="utf-8")

        engine = AttentionEngine(repo, clock, random.Random(0))
        assert main.replay(engine, log) == 1
        assert repo.count_activities() == 1
