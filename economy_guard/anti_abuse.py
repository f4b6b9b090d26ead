"""
Anti-abuse risk aggregation.

Turns detector output into a per-action RiskAssessment, runs the
automatic action tier for suspicious users and answers the one question
callers ask before every game action: is this user allowed to act?

Only an explicit block denies an action. Temporary restrictions and
reduced bet limits are advisory unless enforce_restrictions is on, in
which case they deny as well.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .behavior import BehaviorProfile, BehaviorProfileStore
from .cache import ExpiringCache
from .config import settings
from .context import EconomyContext
from .database import Database, LedgerUnavailable, get_database
from .detectors import DetectorConfig, run_detectors
from .utils import clamp

logger = logging.getLogger(__name__)


class RiskLevel(str, Enum):
    """Risk classification for a score."""
    UNKNOWN = "UNKNOWN"
    MINIMAL = "MINIMAL"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AutoAction(str, Enum):
    """Automatic responses to suspicious activity, mildest first."""
    FLAG_FOR_REVIEW = "flag_for_review"
    REDUCE_LIMITS = "reduce_limits"
    TEMPORARY_RESTRICTION = "temporary_restriction"
    SUSPEND_NOTIFY = "suspend_notify"


class AbuseConfig:
    """Thresholds and durations for the risk aggregator."""

    RISK_THRESHOLDS = {
        RiskLevel.LOW: 20,
        RiskLevel.MEDIUM: 40,
        RiskLevel.HIGH: 60,
        RiskLevel.CRITICAL: 80,
    }

    # Highest threshold first; only the first match fires
    AUTO_ACTIONS = (
        (90, AutoAction.SUSPEND_NOTIFY),
        (70, AutoAction.TEMPORARY_RESTRICTION),
        (50, AutoAction.REDUCE_LIMITS),
        (30, AutoAction.FLAG_FOR_REVIEW),
    )

    BASE_BET_LIMIT = 10000
    MAX_LIMIT_REDUCTION = 0.8
    LIMIT_TTL_SECONDS = 86400         # 24 hours
    RESTRICTION_SECONDS = 3600        # 1 hour
    RISK_ALERT_TTL_SECONDS = 86400

    ACTIVE_WINDOW_SECONDS = 300       # Users rescored by continuous monitoring
    ACTIVITY_RETENTION_HOURS = 24
    REPORTED_SCORE_CAP = 100

    def __init__(self):
        self.RISK_THRESHOLDS = dict(self.RISK_THRESHOLDS)


@dataclass
class RiskAssessment:
    """Risk verdict for a user after an action."""
    user_id: str
    risk_score: float = 0.0       # Clamped to 0..100
    raw_score: float = 0.0        # Unbounded detector sum
    risk_level: RiskLevel = RiskLevel.MINIMAL
    patterns: list[str] = field(default_factory=list)
    action: str = "ALLOW"
    restrictions: list[str] = field(default_factory=list)
    auto_action: Optional[AutoAction] = None
    last_activity: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "risk_score": round(self.risk_score, 2),
            "raw_score": round(self.raw_score, 2),
            "risk_level": self.risk_level.value,
            "patterns": self.patterns,
            "action": self.action,
            "restrictions": self.restrictions,
            "auto_action": self.auto_action.value if self.auto_action else None,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
        }


@dataclass
class ActionPermission:
    """Answer to "may this user act right now"."""
    allowed: bool
    reason: Optional[str] = None
    restriction_type: Optional[str] = None

    def to_dict(self) -> dict:
        result = {"allowed": self.allowed}
        if self.reason:
            result["reason"] = self.reason
        if self.restriction_type:
            result["restriction_type"] = self.restriction_type
        return result


class AntiAbuseSystem:
    """
    Risk aggregator and restriction bookkeeping.

    Holds behaviour profiles, advisory restriction/limit records (with
    expiry), the explicit block list and the in-memory flag registry.
    """

    def __init__(
        self,
        database: Optional[Database] = None,
        context: Optional[EconomyContext] = None,
        notifier=None,
        config: Optional[AbuseConfig] = None,
        detector_config: Optional[DetectorConfig] = None,
        enforce_restrictions: Optional[bool] = None,
    ):
        """
        Initialize the aggregator.

        Args:
            database: Ledger used for audit records and player stats.
            context: Shared clock and controls.
            notifier: EconomicNotifier for high-risk player reports.
            config: Aggregator thresholds.
            detector_config: Detector thresholds.
            enforce_restrictions: Deny on temporary restrictions and limits.
                Uses settings default if not provided.
        """
        self.db = database or get_database()
        self.context = context or EconomyContext()
        self.notifier = notifier
        self.config = config or AbuseConfig()
        self.detector_config = detector_config or DetectorConfig()
        self.enforce_restrictions = (
            settings.enforce_restrictions if enforce_restrictions is None else enforce_restrictions
        )

        self.profiles = BehaviorProfileStore(clock=self.context.clock)
        self.records = ExpiringCache(clock=self.context.clock)
        self.blocked_users: set[str] = set()
        self.flagged_users: dict[str, dict] = {}
        self.suspicious_activity: list[dict] = []
        self._pending_notifications: set[asyncio.Task] = set()

    # ========== Scoring ==========

    def get_risk_level(self, score: float) -> RiskLevel:
        thresholds = self.config.RISK_THRESHOLDS
        if score >= thresholds[RiskLevel.CRITICAL]:
            return RiskLevel.CRITICAL
        if score >= thresholds[RiskLevel.HIGH]:
            return RiskLevel.HIGH
        if score >= thresholds[RiskLevel.MEDIUM]:
            return RiskLevel.MEDIUM
        if score >= thresholds[RiskLevel.LOW]:
            return RiskLevel.LOW
        return RiskLevel.MINIMAL

    def get_auto_action(self, raw_score: float) -> Optional[AutoAction]:
        """Highest action tier matching the score, if any."""
        for threshold, action in self.config.AUTO_ACTIONS:
            if raw_score >= threshold:
                return action
        return None

    def score_profile(self, profile: BehaviorProfile, game_type: str, now: Optional[datetime] = None) -> float:
        """Run detectors for a game and store the result on the profile."""
        now = now or self.context.now()
        detection = run_detectors(profile, game_type, now, self.detector_config)

        profile.patterns[game_type] = detection.patterns
        profile.risk_score = detection.total_score

        if detection.patterns:
            logger.warning(
                f"Suspicious patterns for user {profile.user_id}: "
                f"{', '.join(detection.patterns)} (risk {detection.total_score:.1f})"
            )
        return detection.total_score

    async def analyze_game_action(
        self,
        user_id: str,
        game_type: str,
        action: str,
        data: Optional[dict] = None
    ) -> RiskAssessment:
        """
        Record an action and assess the user's risk.

        Args:
            user_id: Discord user ID.
            game_type: Game identifier.
            action: Action name ("bet", "win", ...).
            data: bet_amount, payout, multiplier, result.

        Returns:
            RiskAssessment for the user after this action.
        """
        data = data or {}
        now = self.context.now()

        profile = self.profiles.record_action(user_id, game_type, action, data, timestamp=now)
        raw_score = self.score_profile(profile, game_type, now)
        reported = clamp(raw_score, 0, self.config.REPORTED_SCORE_CAP)

        auto_action = None
        if raw_score >= self.config.RISK_THRESHOLDS[RiskLevel.MEDIUM]:
            auto_action = await self.handle_suspicious_activity(
                user_id, raw_score, profile.patterns.get(game_type, []),
                {"game_type": game_type, "action": action, "data": data},
            )

        return RiskAssessment(
            user_id=user_id,
            risk_score=reported,
            raw_score=raw_score,
            risk_level=self.get_risk_level(reported),
            patterns=list(profile.patterns.get(game_type, [])),
            action="RESTRICT" if raw_score >= self.config.RISK_THRESHOLDS[RiskLevel.HIGH] else "ALLOW",
            restrictions=self.get_user_restrictions(user_id),
            auto_action=auto_action,
            last_activity=now,
        )

    # ========== Automatic actions ==========

    async def handle_suspicious_activity(
        self,
        user_id: str,
        raw_score: float,
        patterns: list[str],
        context: dict
    ) -> Optional[AutoAction]:
        """Run the single highest matching action tier and log the activity."""
        auto_action = self.get_auto_action(raw_score)

        if auto_action == AutoAction.FLAG_FOR_REVIEW:
            self.flag_user_for_review(user_id, raw_score, patterns, context)
        elif auto_action == AutoAction.REDUCE_LIMITS:
            self.reduce_betting_limits(user_id, raw_score)
        elif auto_action == AutoAction.TEMPORARY_RESTRICTION:
            self.apply_temporary_restriction(user_id, self.config.RESTRICTION_SECONDS)
        elif auto_action == AutoAction.SUSPEND_NOTIFY:
            self.suspend_user(user_id, raw_score, patterns, context)

        self.suspicious_activity.append({
            "user_id": user_id,
            "timestamp": self.context.now(),
            "risk_score": raw_score,
            "risk_level": self.get_risk_level(raw_score).value,
            "patterns": patterns,
            "context": context,
            "auto_action": auto_action.value if auto_action else None,
        })

        logger.warning(
            f"SUSPICIOUS ACTIVITY: user {user_id} risk {raw_score:.1f} "
            f"({self.get_risk_level(raw_score).value}) action {auto_action.value if auto_action else 'none'}"
        )
        return auto_action

    def flag_user_for_review(self, user_id: str, risk_score: float, patterns: list[str], context: dict) -> dict:
        flag = {
            "user_id": user_id,
            "timestamp": self.context.now(),
            "risk_score": risk_score,
            "reason": "Automated detection",
            "patterns": patterns,
            "status": "PENDING_REVIEW",
        }
        self.flagged_users[user_id] = flag

        try:
            self.db.record_flagged_user(user_id, risk_score, flag["reason"], patterns, context)
        except LedgerUnavailable as e:
            logger.error(f"Failed to record flagged user {user_id}: {e}")

        logger.info(f"User {user_id} flagged for review (risk {risk_score:.1f})")
        return flag

    def reduce_betting_limits(self, user_id: str, risk_score: float) -> dict:
        """Store an advisory max bet that shrinks as risk grows."""
        reduction = min(self.config.MAX_LIMIT_REDUCTION, risk_score / 100)
        max_bet = self.config.BASE_BET_LIMIT * (1 - reduction)
        limit = {
            "max_bet": max_bet,
            "reason": "Risk-based reduction",
            "expires": self.context.now() + timedelta(seconds=self.config.LIMIT_TTL_SECONDS),
        }
        self.records.set(f"limit_{user_id}", limit, ttl=self.config.LIMIT_TTL_SECONDS)

        logger.info(f"Betting limit reduced for user {user_id}: max bet now {max_bet:,.0f}")
        return limit

    def apply_temporary_restriction(self, user_id: str, duration_seconds: float) -> dict:
        now = self.context.now()
        restriction = {
            "user_id": user_id,
            "type": "TEMPORARY_BAN",
            "start_time": now,
            "end_time": now + timedelta(seconds=duration_seconds),
            "reason": "Suspicious activity detected",
            "auto_applied": True,
        }
        self.records.set(f"restriction_{user_id}", restriction, ttl=duration_seconds)

        logger.warning(f"Temporary restriction applied to user {user_id} for {duration_seconds / 60:.0f} minutes")
        return restriction

    def suspend_user(self, user_id: str, risk_score: float, patterns: list[str], context: dict) -> dict:
        """Block the user, keep a risk alert and notify operators."""
        self.blocked_users.add(user_id)

        alert = {
            "user_id": user_id,
            "timestamp": self.context.now(),
            "risk_score": risk_score,
            "context": context,
            "status": "HIGH_RISK_DETECTED",
            "requires_manual_review": True,
        }
        self.records.set(f"risk_alert_{user_id}", alert, ttl=self.config.RISK_ALERT_TTL_SECONDS)

        logger.warning(f"HIGH RISK USER BLOCKED: {user_id} - risk score {risk_score:.1f}")

        try:
            self.db.record_risk_alert(user_id, risk_score, context)
        except LedgerUnavailable as e:
            logger.error(f"Failed to record risk alert for {user_id}: {e}")

        if self.notifier:
            task = asyncio.create_task(self._notify_risky_player(user_id, risk_score, patterns, context))
            self._pending_notifications.add(task)
            task.add_done_callback(self._pending_notifications.discard)

        return alert

    async def _notify_risky_player(self, user_id: str, risk_score: float, patterns: list[str], context: dict) -> None:
        stats = None
        recent_games: list[dict] = []
        try:
            stats = self.db.get_user_stats(user_id)
            recent_games = self.db.get_recent_games(user_id, limit=5)
            if stats is not None:
                stats["favorite_game"] = self.db.get_favorite_game(user_id)
        except LedgerUnavailable as e:
            logger.error(f"Could not load stats for high-risk report on {user_id}: {e}")

        try:
            await self.notifier.send_risky_player_alert(
                user_id, risk_score, patterns, stats=stats, recent_games=recent_games, context=context
            )
        except Exception as e:
            logger.error(f"Failed to notify about risky player {user_id}: {e}")

    async def wait_for_notifications(self) -> None:
        """Wait for background operator notifications to finish."""
        if self._pending_notifications:
            await asyncio.gather(*list(self._pending_notifications), return_exceptions=True)

    # ========== Permission checks ==========

    def is_user_action_allowed(self, user_id: str, action: str, amount: float = 0) -> ActionPermission:
        """
        Decide whether a user may perform an action.

        Args:
            user_id: Discord user ID.
            action: Action name, e.g. "bet".
            amount: Stake for bet actions.

        Returns:
            ActionPermission. Denied for blocked users, and for active
            restrictions or exceeded limits only when enforcement is on.
        """
        if user_id in self.blocked_users:
            return ActionPermission(
                allowed=False,
                reason="User temporarily suspended due to suspicious activity. Please contact support.",
                restriction_type="BLOCKED",
            )

        if self.records.get(f"risk_alert_{user_id}"):
            logger.debug(f"High-risk user {user_id} performing {action} (amount {amount})")

        restriction = self.records.get(f"restriction_{user_id}")
        if restriction and self.context.now() < restriction["end_time"]:
            if self.enforce_restrictions:
                return ActionPermission(
                    allowed=False,
                    reason=f"Temporarily restricted until {restriction['end_time'].strftime('%H:%M UTC')}",
                    restriction_type="TEMPORARY_BAN",
                )
            logger.debug(f"User {user_id} has a temporary restriction; allowed in notification-only mode")

        if action == "bet" and amount > 0:
            limit = self.records.get(f"limit_{user_id}")
            if limit and amount > limit["max_bet"]:
                if self.enforce_restrictions:
                    return ActionPermission(
                        allowed=False,
                        reason=f"Bet exceeds your current limit of {limit['max_bet']:,.0f}",
                        restriction_type="BET_LIMIT",
                    )
                logger.debug(
                    f"User {user_id} bet {amount:,.0f} over limit {limit['max_bet']:,.0f}; "
                    "allowed in notification-only mode"
                )

        return ActionPermission(allowed=True)

    def block_user(self, user_id: str, reason: str = "Manual block", actor: str = "admin") -> None:
        self.blocked_users.add(user_id)
        logger.warning(f"User {user_id} blocked by {actor}: {reason}")
        try:
            self.db.record_audit_event("block_user", actor, {"user_id": user_id, "reason": reason})
        except LedgerUnavailable as e:
            logger.error(f"Failed to audit block of {user_id}: {e}")

    def unblock_user(self, user_id: str, actor: str = "admin") -> bool:
        """
        Lift a block and clear the user's risk alert.

        Returns:
            True if the user was blocked.
        """
        was_blocked = user_id in self.blocked_users
        self.blocked_users.discard(user_id)
        self.records.delete(f"risk_alert_{user_id}")

        if was_blocked:
            logger.info(f"User {user_id} unblocked by {actor}")
            try:
                self.db.resolve_risk_alerts(user_id)
                self.db.record_audit_event("unblock_user", actor, {"user_id": user_id})
            except LedgerUnavailable as e:
                logger.error(f"Failed to audit unblock of {user_id}: {e}")
        return was_blocked

    def is_blocked(self, user_id: str) -> bool:
        return user_id in self.blocked_users

    # ========== Queries ==========

    def get_user_restrictions(self, user_id: str) -> list[str]:
        """Monitoring labels for the user's live records."""
        status = []

        alert = self.records.get(f"risk_alert_{user_id}")
        if alert:
            status.append(f"HIGH_RISK_MONITORED_{alert['risk_score']:.1f}")

        restriction = self.records.get(f"restriction_{user_id}")
        if restriction and self.context.now() < restriction["end_time"]:
            status.append("FLAGGED_MONITORED")

        limit = self.records.get(f"limit_{user_id}")
        if limit:
            status.append(f"LIMIT_FLAGGED_{limit['max_bet']:.0f}")

        return status

    def get_user_bet_limit(self, user_id: str) -> Optional[float]:
        limit = self.records.get(f"limit_{user_id}")
        return limit["max_bet"] if limit else None

    def get_user_risk_assessment(self, user_id: str) -> RiskAssessment:
        """Assessment from the cached profile, without recording anything."""
        profile = self.profiles.get(user_id)
        if profile is None:
            return RiskAssessment(
                user_id=user_id,
                risk_level=RiskLevel.UNKNOWN,
                restrictions=self.get_user_restrictions(user_id),
            )

        reported = clamp(profile.risk_score, 0, self.config.REPORTED_SCORE_CAP)
        patterns = sorted({p for labels in profile.patterns.values() for p in labels})
        return RiskAssessment(
            user_id=user_id,
            risk_score=reported,
            raw_score=profile.risk_score,
            risk_level=self.get_risk_level(reported),
            patterns=patterns,
            action="RESTRICT" if profile.risk_score >= self.config.RISK_THRESHOLDS[RiskLevel.HIGH] else "ALLOW",
            restrictions=self.get_user_restrictions(user_id),
            last_activity=profile.last_activity(),
        )

    def is_high_risk(self, user_id: str) -> bool:
        level = self.get_user_risk_assessment(user_id).risk_level
        return level in (RiskLevel.HIGH, RiskLevel.CRITICAL)

    # ========== Housekeeping ==========

    def cleanup_expired_restrictions(self) -> int:
        """Drop expired restriction, limit and alert records."""
        removed = self.records.purge_expired()
        if removed:
            logger.info(f"Removed {removed} expired restriction records")
        return removed

    def perform_continuous_monitoring(self) -> int:
        """
        Sweep expired records and rescore recently active users.

        Returns:
            Number of profiles rescored.
        """
        self.cleanup_expired_restrictions()

        now = self.context.now()
        cutoff = now - timedelta(seconds=self.config.ACTIVE_WINDOW_SECONDS)
        rescored = 0
        for profile in self.profiles.active_since(cutoff):
            game_type = profile.actions[-1].game_type
            score = self.score_profile(profile, game_type, now)
            rescored += 1
            if score >= self.config.RISK_THRESHOLDS[RiskLevel.HIGH]:
                logger.warning(f"Active user {profile.user_id} still at high risk ({score:.1f})")

        logger.debug(f"Continuous monitoring rescored {rescored} active users")
        return rescored

    def perform_daily_cleanup(self) -> int:
        """
        Forget suspicious activity and review flags older than the retention window.

        Flags stay in the ledger; only the in-memory registry is pruned.

        Returns:
            Number of activity entries and flags removed.
        """
        cutoff = self.context.now() - timedelta(hours=self.config.ACTIVITY_RETENTION_HOURS)
        before = len(self.suspicious_activity)
        self.suspicious_activity = [a for a in self.suspicious_activity if a["timestamp"] >= cutoff]
        removed_activity = before - len(self.suspicious_activity)

        stale_flags = [user_id for user_id, flag in self.flagged_users.items() if flag["timestamp"] < cutoff]
        for user_id in stale_flags:
            del self.flagged_users[user_id]

        self.profiles.purge_expired()
        logger.info(
            f"Daily cleanup removed {removed_activity} suspicious activity entries and {len(stale_flags)} review flags"
        )
        return removed_activity + len(stale_flags)

    def get_system_status(self) -> dict:
        return {
            "tracked_users": len(self.profiles),
            "blocked_users": len(self.blocked_users),
            "flagged_users": len(self.flagged_users),
            "active_restrictions": len(self.records.keys("restriction_")),
            "active_limits": len(self.records.keys("limit_")),
            "risk_alerts": len(self.records.keys("risk_alert_")),
            "suspicious_activities": len(self.suspicious_activity),
            "enforce_restrictions": self.enforce_restrictions,
        }
