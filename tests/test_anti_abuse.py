"""
Tests for the anti-abuse risk aggregator.
"""

import os
import tempfile

import pytest

from economy_guard.anti_abuse import AbuseConfig, AntiAbuseSystem, AutoAction, RiskLevel
from economy_guard.context import EconomyContext, ManualClock
from economy_guard.database import Database


class RecordingNotifier:
    """Notifier double that remembers what it was asked to send."""

    def __init__(self):
        self.risky_players = []

    async def send_risky_player_alert(self, user_id, risk_score, patterns, stats=None, recent_games=None, context=None):
        self.risky_players.append({
            "user_id": user_id,
            "risk_score": risk_score,
            "patterns": patterns,
            "stats": stats,
            "recent_games": recent_games,
        })
        return True


@pytest.fixture
def test_db():
    """Create a temporary test database."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db = Database(db_path=path)
    yield db
    os.unlink(path)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def system(test_db, clock, notifier):
    return AntiAbuseSystem(database=test_db, context=EconomyContext(clock=clock), notifier=notifier)


async def play_wins(system, clock, count, user_id="u1", gap_seconds=10):
    assessment = None
    for _ in range(count):
        clock.advance(gap_seconds)
        assessment = await system.analyze_game_action(
            user_id, "blackjack", "play", {"bet_amount": 500, "payout": 1000, "result": "win"}
        )
    return assessment


class TestRiskClassification:
    """Tests for risk levels and action tiers."""

    def test_risk_levels(self, system):
        assert system.get_risk_level(0) == RiskLevel.MINIMAL
        assert system.get_risk_level(20) == RiskLevel.LOW
        assert system.get_risk_level(45) == RiskLevel.MEDIUM
        assert system.get_risk_level(60) == RiskLevel.HIGH
        assert system.get_risk_level(100) == RiskLevel.CRITICAL

    def test_highest_tier_wins(self, system):
        assert system.get_auto_action(29) is None
        assert system.get_auto_action(30) == AutoAction.FLAG_FOR_REVIEW
        assert system.get_auto_action(55) == AutoAction.REDUCE_LIMITS
        assert system.get_auto_action(75) == AutoAction.TEMPORARY_RESTRICTION
        assert system.get_auto_action(150) == AutoAction.SUSPEND_NOTIFY

    def test_config_instances_do_not_share_thresholds(self, test_db, clock):
        tuned = AbuseConfig()
        tuned.RISK_THRESHOLDS[RiskLevel.HIGH] = 10
        strict = AntiAbuseSystem(database=test_db, context=EconomyContext(clock=clock), config=tuned)
        default = AntiAbuseSystem(database=test_db, context=EconomyContext(clock=clock))
        assert strict.get_risk_level(15) == RiskLevel.HIGH
        assert default.get_risk_level(15) == RiskLevel.MINIMAL


class TestAnalyzeGameAction:
    """Tests for analyze_game_action."""

    @pytest.mark.asyncio
    async def test_first_action_is_minimal(self, system):
        assessment = await system.analyze_game_action("u1", "slots", "bet", {"bet_amount": 500})
        assert assessment.risk_score == 0
        assert assessment.risk_level == RiskLevel.MINIMAL
        assert assessment.action == "ALLOW"

    @pytest.mark.asyncio
    async def test_fifteen_wins_trigger_tier(self, system, clock):
        assessment = await play_wins(system, clock, 15)

        assert "consistent_wins" in assessment.patterns
        assert assessment.raw_score == 60
        assert assessment.risk_level == RiskLevel.HIGH
        assert assessment.action == "RESTRICT"
        assert assessment.auto_action == AutoAction.REDUCE_LIMITS
        assert system.suspicious_activity

    @pytest.mark.asyncio
    async def test_reduce_limits_record(self, system, clock):
        await play_wins(system, clock, 15)
        # base 10000 reduced by 60%
        assert system.get_user_bet_limit("u1") == pytest.approx(4000)
        assert "LIMIT_FLAGGED_4000" in system.get_user_restrictions("u1")

    @pytest.mark.asyncio
    async def test_reported_score_is_clamped(self, system, clock):
        # Rapid bets, identical stakes, perfect timing and a win streak together exceed 100
        assessment = None
        for _ in range(25):
            clock.advance(2)
            assessment = await system.analyze_game_action(
                "u1", "blackjack", "bet", {"bet_amount": 5000, "result": "win"}
            )
        await system.wait_for_notifications()

        assert assessment.raw_score > 100
        assert assessment.risk_score == 100
        assert assessment.risk_level == RiskLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_suspend_blocks_and_notifies(self, system, clock, notifier, test_db):
        test_db.record_game_result("u1", "blackjack", 500, 1000, won=True)

        # 21 wins two seconds apart: win streak 60 plus perfect timing 40
        assessment = await play_wins(system, clock, 21, gap_seconds=2)
        await system.wait_for_notifications()

        assert assessment.auto_action == AutoAction.SUSPEND_NOTIFY
        assert system.is_blocked("u1")
        assert any(r.startswith("HIGH_RISK_MONITORED_") for r in system.get_user_restrictions("u1"))
        assert len(test_db.get_risk_alerts("u1", open_only=True)) == 1

        assert len(notifier.risky_players) == 1
        report = notifier.risky_players[0]
        assert report["user_id"] == "u1"
        assert report["stats"]["favorite_game"] == "blackjack"
        assert len(report["recent_games"]) == 1


class TestActionPermission:
    """Tests for is_user_action_allowed."""

    def test_unknown_user_allowed(self, system):
        assert system.is_user_action_allowed("nobody", "bet", 1000).allowed

    def test_blocked_user_denied(self, system):
        system.block_user("u1", "testing")
        permission = system.is_user_action_allowed("u1", "bet", 10)
        assert not permission.allowed
        assert permission.restriction_type == "BLOCKED"

    def test_unblock_restores_access(self, system, test_db):
        system.block_user("u1")
        assert system.unblock_user("u1") is True
        assert system.is_user_action_allowed("u1", "bet", 10).allowed
        assert test_db.get_audit_log(event_type="unblock_user")

    def test_unblock_unknown_user(self, system):
        assert system.unblock_user("nobody") is False

    def test_restriction_is_advisory_by_default(self, system):
        system.apply_temporary_restriction("u1", 3600)
        system.reduce_betting_limits("u1", 50)
        assert system.is_user_action_allowed("u1", "bet", 1_000_000).allowed

    def test_restriction_enforced_when_enabled(self, test_db, clock):
        system = AntiAbuseSystem(database=test_db, context=EconomyContext(clock=clock), enforce_restrictions=True)
        system.apply_temporary_restriction("u1", 3600)
        permission = system.is_user_action_allowed("u1", "bet", 10)
        assert not permission.allowed
        assert permission.restriction_type == "TEMPORARY_BAN"

        clock.advance(hours=2)
        assert system.is_user_action_allowed("u1", "bet", 10).allowed

    def test_bet_limit_enforced_when_enabled(self, test_db, clock):
        system = AntiAbuseSystem(database=test_db, context=EconomyContext(clock=clock), enforce_restrictions=True)
        system.reduce_betting_limits("u1", 50)
        assert system.is_user_action_allowed("u1", "bet", 4000).allowed
        permission = system.is_user_action_allowed("u1", "bet", 6000)
        assert not permission.allowed
        assert permission.restriction_type == "BET_LIMIT"


class TestHousekeeping:
    """Tests for expiry sweeps and cleanup."""

    def test_flag_persists_review_record(self, system, test_db):
        system.flag_user_for_review("u1", 35, ["rapid_betting"], {"game_type": "slots"})
        flagged = test_db.get_flagged_users()
        assert flagged[0]["user_id"] == "u1"
        assert "u1" in system.flagged_users

    def test_expired_records_swept(self, system, clock):
        system.apply_temporary_restriction("u1", 3600)
        system.reduce_betting_limits("u2", 50)
        clock.advance(hours=2)
        assert system.cleanup_expired_restrictions() == 1
        clock.advance(hours=23)
        assert system.cleanup_expired_restrictions() == 1
        assert system.get_system_status()["active_limits"] == 0

    @pytest.mark.asyncio
    async def test_continuous_monitoring_rescoring(self, system, clock):
        await play_wins(system, clock, 6, user_id="active")
        await play_wins(system, clock, 6, user_id="idle")
        clock.advance(minutes=4)
        await system.analyze_game_action("active", "slots", "bet", {"bet_amount": 100})
        clock.advance(minutes=2)
        assert system.perform_continuous_monitoring() == 1

    @pytest.mark.asyncio
    async def test_daily_cleanup(self, system, clock):
        await play_wins(system, clock, 15)
        assert system.suspicious_activity
        clock.advance(hours=25)
        removed = system.perform_daily_cleanup()
        assert removed > 0
        assert system.suspicious_activity == []

    def test_daily_cleanup_prunes_old_flags(self, system, clock, test_db):
        system.flag_user_for_review("old", 35, ["rapid_betting"], {})
        clock.advance(hours=20)
        system.flag_user_for_review("recent", 35, ["rapid_betting"], {})
        clock.advance(hours=5)

        assert system.perform_daily_cleanup() == 1
        assert set(system.flagged_users) == {"recent"}
        assert len(test_db.get_flagged_users()) == 2

    def test_unknown_user_assessment(self, system):
        assessment = system.get_user_risk_assessment("nobody")
        assert assessment.risk_level == RiskLevel.UNKNOWN
        assert not system.is_high_risk("nobody")
