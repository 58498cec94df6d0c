"""Unit tests for the streak state machine, the reward engine and their wiring."""

import random
import pytest
import numpy as np
from datetime import date, datetime, timedelta
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from attention_rescue.data.models import ActivityEvent, BrowsingContext, UserProgress
from attention_rescue.data.repository import KEY_PROGRESS, KEY_STREAK, Repository
from attention_rescue.errors import StorageError
from attention_rescue.services.engine import AttentionEngine
from attention_rescue.services.reward_service import (
    ACHIEVEMENTS,
    LEVEL_THRESHOLDS,
    RewardService,
    level_for,
    points_to_next_level,
    session_points,
)
from attention_rescue.services.streak_service import (
    IllegalTransitionError,
    StreakService,
    StreakSnapshot,
    StreakState,
    multiplier_for,
    next_milestone,
    transition,
)

T0 = datetime(2024, 3, 5, 10, 0)


class FlakyRepository(Repository):
    """Repository whose key/value writes fail while `failing` is set."""

    failing = False

    def set(self, key, value):
        if self.failing:
            raise StorageError("write failed", key)
        super().set(key, value)


# ── Pure transitions ────────────────────────────────────────────────────────

class TestStreakTransitions:
    def test_start_from_inactive(self):
        snap, events = transition(StreakSnapshot(), "start", T0)
        assert (snap.state, snap.current, snap.longest, snap.multiplier) == (StreakState.ACTIVE, 1, 1, 1.0)
        assert [e.type for e in events] == ["start"]

    def test_start_while_active_is_illegal(self):
        snap, _ = transition(StreakSnapshot(), "start", T0)
        with pytest.raises(IllegalTransitionError):
            transition(snap, "start", T0 + timedelta(minutes=10))

    def test_increment_requires_active(self):
        with pytest.raises(IllegalTransitionError):
            transition(StreakSnapshot(), "increment", T0)

    def test_increment_gate(self):
        snap, _ = transition(StreakSnapshot(), "start", T0)
        with pytest.raises(IllegalTransitionError, match="5 minutes"):
            transition(snap, "increment", T0 + timedelta(minutes=4, seconds=59))

    def test_fifth_increment_hits_milestone(self):
        snap = StreakSnapshot(StreakState.ACTIVE, current=4, longest=4, last_update=T0)
        new, events = transition(snap, "increment", T0 + timedelta(minutes=5))
        assert new.current == 5
        assert new.multiplier == 1.2
        assert [(e.type, e.streak_value) for e in events] == [("increment", 5), ("milestone", 5)]
        assert events[0].is_personal_best

    def test_break_reports_old_value_and_resets(self):
        snap = StreakSnapshot(StreakState.ACTIVE, current=12, longest=20, multiplier=1.5, last_update=T0)
        new, events = transition(snap, "break", T0)
        assert (new.state, new.current, new.longest, new.multiplier) == (StreakState.BROKEN, 0, 20, 1.0)
        assert events[0].streak_value == 12

    def test_break_requires_active(self):
        with pytest.raises(IllegalTransitionError):
            transition(StreakSnapshot(StreakState.BROKEN), "break", T0)

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            transition(StreakSnapshot(), "pause", T0)

    def test_invariants_hold_over_random_histories(self):
        rng = random.Random(7)
        snap, now = StreakSnapshot(), T0
        for _ in range(500):
            now += timedelta(minutes=rng.choice([1, 3, 5, 6, 40]))
            action = rng.choice(["start", "increment", "increment", "increment", "break"])
            try:
                snap, _ = transition(snap, action, now)
            except IllegalTransitionError:
                continue
            assert snap.current <= snap.longest
            if action == "break":
                assert snap.multiplier == 1.0

    def test_multiplier_bands(self):
        assert [multiplier_for(v) for v in (0, 4, 5, 9, 10, 19, 20, 49, 50)] == \
            [1.0, 1.0, 1.2, 1.2, 1.5, 1.5, 2.0, 2.0, 2.5]
        assert next_milestone(5) == 10
        assert next_milestone(1000) is None


# ── Streak service ──────────────────────────────────────────────────────────

class TestStreakService:
    def test_productive_activity_drives_transitions(self, clock):
        svc = StreakService(clock=clock)
        assert [e.type for e in svc.record_productive_activity()] == ["start"]
        clock.advance(minutes=3)
        assert svc.record_productive_activity() == []
        clock.advance(minutes=2)
        assert [e.type for e in svc.record_productive_activity()] == ["increment"]
        assert svc.get_streak().current == 2

    def test_distraction_breaks_once(self, clock):
        svc = StreakService(clock=clock)
        svc.record_productive_activity()
        assert [e.type for e in svc.record_distraction()] == ["break"]
        assert svc.record_distraction() == []
        assert svc.get_state() == StreakState.BROKEN

    def test_inactivity_watchdog(self, clock):
        svc = StreakService(clock=clock)
        svc.record_productive_activity()
        clock.advance(minutes=29)
        assert svc.check_inactivity() == []
        clock.advance(minutes=1)
        assert [e.type for e in svc.check_inactivity()] == ["break"]

    def test_gated_activity_still_counts_for_inactivity(self, clock):
        svc = StreakService(clock=clock)
        svc.record_productive_activity()
        clock.advance(minutes=4)
        svc.record_productive_activity()     # inside the gate, no increment
        clock.advance(minutes=27)
        assert svc.check_inactivity() == []

    def test_events_are_published(self, clock):
        svc = StreakService(clock=clock)
        seen = []
        svc.subscribe(seen.append)
        svc.record_productive_activity()
        svc.record_distraction()
        assert [e.type for e in seen] == ["start", "break"]

    def test_resume_recent_streak(self, repo, clock):
        svc = StreakService(repo, clock)
        svc.record_productive_activity()
        clock.advance(minutes=10)
        resumed = StreakService(repo, clock)
        assert resumed.get_state() == StreakState.ACTIVE
        assert resumed.get_streak().current == 1

    def test_expired_streak_resets_on_load(self, repo, clock):
        svc = StreakService(repo, clock)
        svc.record_productive_activity()
        clock.advance(minutes=5)
        svc.record_productive_activity()
        clock.advance(minutes=45)
        loaded = StreakService(repo, clock)
        assert loaded.get_state() == StreakState.INACTIVE
        assert (loaded.get_streak().current, loaded.get_streak().longest) == (0, 2)
        assert repo.get(KEY_STREAK)["current"] == 0

    def test_failed_write_retried_on_flush(self, conn, clock):
        flaky = FlakyRepository(conn)
        svc = StreakService(flaky, clock)
        flaky.failing = True
        svc.record_productive_activity()
        assert svc.get_streak().current == 1
        assert not svc.flush()
        flaky.failing = False
        assert svc.flush()
        assert flaky.get(KEY_STREAK)["current"] == 1


# ── Reward math ─────────────────────────────────────────────────────────────

class TestLevels:
    def test_950_points(self):
        assert level_for(950) == 4
        assert points_to_next_level(950) == 50

    def test_boundaries(self):
        assert level_for(0) == 1
        assert level_for(99) == 1
        assert level_for(100) == 2
        assert level_for(30000) == 10
        assert points_to_next_level(29999) == 1
        assert points_to_next_level(30000) == 0
        assert points_to_next_level(100000) == 0

    def test_monotonic(self):
        totals = np.arange(0, 40000, 37)
        levels = [level_for(int(t)) for t in totals]
        assert all(a <= b for a, b in zip(levels, levels[1:]))
        to_next = [points_to_next_level(int(t)) for t in totals]
        assert all((n == 0) == (t >= LEVEL_THRESHOLDS[-1]) for t, n in zip(totals, to_next))

    def test_session_tiers(self):
        assert session_points(4.9) == 0
        assert session_points(5) == 5
        assert session_points(29.9) == 15
        assert session_points(15, 1.2) == 18
        assert session_points(60, 2.5) == 150
        assert session_points(30, 1.5) == 45


class TestRewardService:
    def test_catalog(self):
        assert len(ACHIEVEMENTS) == 13

    def test_streak_achievements_count_increments_not_minutes(self):
        streak = {a.id: a.description for a in ACHIEVEMENTS if a.id.startswith("streak_")}
        assert streak["streak_5"] == "Reach a streak of 5"
        assert not any("minute" in d for d in streak.values())
        assert len({a.id for a in ACHIEVEMENTS}) == 13

    def test_first_intervention(self, clock):
        svc = RewardService(clock=clock)
        assert svc.award_intervention() == 10
        progress = svc.get_progress()
        assert progress.total_points == 10
        assert progress.points_to_next_level == 90
        assert progress.has_achievement("first_intervention")

    def test_unlock_is_idempotent(self, clock):
        svc = RewardService(clock=clock)
        assert svc.unlock_achievement("streak_5")
        first = svc.get_unlocked_achievements()
        clock.advance(minutes=10)
        assert not svc.unlock_achievement("streak_5")
        second = svc.get_unlocked_achievements()
        assert len(second) == len(first) == 1
        assert second[0].unlocked_at == first[0].unlocked_at

    def test_unknown_achievement(self, clock):
        assert not RewardService(clock=clock).unlock_achievement("moon_landing")

    def test_locked_and_unlocked_partition_catalog(self, clock):
        svc = RewardService(clock=clock)
        svc.award_streak_milestone(10)
        assert len(svc.get_locked_achievements()) + len(svc.get_unlocked_achievements()) == 13
        assert svc.get_progress().has_achievement("streak_10")

    def test_level_up_events(self, clock):
        svc = RewardService(clock=clock)
        seen = []
        svc.subscribe(seen.append)
        svc.award_personal_best()
        assert [e.type for e in seen] == ["points", "level_up"]
        assert seen[-1].level == 2

    def test_multi_level_jump_unlocks_crossed_levels(self, repo, clock):
        repo.set(KEY_PROGRESS, UserProgress(level=1, total_points=990).to_dict())
        svc = RewardService(repo, clock)
        svc.award_intervention()
        progress = svc.get_progress()
        assert progress.level == 5
        assert progress.has_achievement("level_5")

    def test_productive_minutes_achievement(self, clock):
        svc = RewardService(clock=clock)
        for _ in range(17):
            svc.award_productive_session(60)
        progress = svc.get_progress()
        assert progress.total_productive_minutes == 1020
        assert progress.has_achievement("productive_1000")

    def test_short_session_earns_nothing(self, clock):
        svc = RewardService(clock=clock)
        assert svc.award_productive_session(3) == 0
        assert svc.get_progress().total_productive_minutes == 0

    def test_week_streak_needs_consecutive_days(self, clock):
        svc = RewardService(clock=clock)
        start = date(2024, 3, 1)
        for offset in (0, 1, 2, 3, 4, 6, 7):
            svc.award_daily_goal(start + timedelta(days=offset))
        assert not svc.get_progress().has_achievement("week_streak")
        for offset in range(8, 15):
            svc.award_daily_goal(start + timedelta(days=offset))
        assert svc.get_progress().has_achievement("week_streak")

    def test_progress_persists(self, repo, clock):
        svc = RewardService(repo, clock)
        svc.award_intervention()
        svc.award_daily_goal(date(2024, 3, 5))
        restored = RewardService(repo, clock)
        assert restored.get_progress().total_points == 35
        assert restored.daily_goal_met(date(2024, 3, 5))

    def test_get_progress_is_a_copy(self, clock):
        svc = RewardService(clock=clock)
        svc.get_progress().achievements.append(ACHIEVEMENTS[0])
        assert svc.get_progress().achievements == []


# ── Engine wiring ───────────────────────────────────────────────────────────

class TestEngineWiring:
    @pytest.fixture
    def engine(self, repo, clock):
        return AttentionEngine(repo, clock, random.Random(0))

    def test_streak_events_award_points(self, engine, clock):
        engine.record_productive_activity()
        for _ in range(4):
            clock.advance(minutes=5)
            engine.record_productive_activity()
        progress = engine.get_progress()
        # four personal bests (2..5) plus the milestone at 5
        assert progress.total_points == 450
        assert progress.has_achievement("streak_5")
        assert engine.get_streak().current == 5

    def test_daily_goal_awarded_once_per_day(self, engine, clock):
        engine.settings.set_streak_goal(2)
        engine.record_productive_activity()
        clock.advance(minutes=5)
        engine.record_productive_activity()
        assert engine.get_progress().total_points == 125
        clock.advance(minutes=5)
        engine.record_productive_activity()
        assert engine.get_progress().total_points == 225

    def test_completion_awards_and_starts_streak(self, engine):
        assert engine.record_completion("https://www.reddit.com/") == 10
        assert engine.get_progress().total_interventions == 1
        assert engine.get_streak().current == 1

    def test_dismissal_breaks_streak(self, engine):
        engine.record_productive_activity()
        engine.record_dismissal("https://www.reddit.com/")
        assert engine.get_streak().current == 0
        assert engine.streak.get_state() == StreakState.BROKEN

    def test_productive_visit_earns_session_points(self, engine, repo, clock):
        def nav(url, ts):
            ctx = BrowsingContext(url=url, hour=ts.hour, weekday=2, timestamp=ts)
            return ActivityEvent(url, ts, "navigation", ctx)

        t0 = clock()
        engine.submit_activity(nav("https://github.com/org/repo", t0))
        engine.submit_activity(nav("https://example.org", t0 + timedelta(minutes=20)))
        assert repo.count_history() == 1
        assert engine.get_streak().current == 1
        assert engine.get_progress().total_points == 15

    def test_reward_subscription(self, engine):
        seen = []
        unsubscribe = engine.subscribe_rewards(seen.append)
        engine.award_intervention()
        unsubscribe()
        engine.award_intervention()
        assert [e.type for e in seen] == ["points", "achievement"]

    def test_shutdown_closes_open_visit(self, engine, repo, clock):
        ctx = BrowsingContext(url="https://example.org", hour=10, weekday=2)
        engine.submit_activity(ActivityEvent("https://example.org", clock(), "navigation", ctx))
        clock.advance(minutes=3)
        engine.shutdown()
        assert repo.count_history() == 1
