"""
Economic manager.

Single entry point for game code: validate a bet before it is placed and
adjust a payout before it is credited. Combines the anti-abuse system,
the health analyzer, per-game controls and the fair payout table.

Internal errors never block play. Validation that fails unexpectedly
approves the original amount and logs the error.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from .anti_abuse import AntiAbuseSystem
from .config import settings
from .context import EconomyContext
from .database import Database, LedgerUnavailable, get_database
from .fair_payout import FairPayoutManager
from .models import GameControl, GameControlUpdate
from .notifications import EconomicNotifier
from .stabilizer import EconomicStabilizer, generate_emergency_recommendations

logger = logging.getLogger(__name__)


class ManagerConfig:
    """
    Bet caps and payout reductions.

    The emergency bet cap and emergency payout reduction belong to the
    stabilizer config, which also announces them.
    """

    DEFAULT_MAX_BET = 100000
    MAX_BET_TO_WEALTH_RATIO = 0.05
    EMERGENCY_HOUSE_EDGE = 0.03
    HIGH_RISK_MULTIPLIER_REDUCTION = 0.20
    MAX_MULTIPLIER_REDUCTION = 0.80
    SUSPICIOUS_MULTIPLIER = 100

    # (min_wealth, reduction), ascending; the highest reached tier applies
    WEALTH_TIERS = (
        (50_000_000, 0.25),
        (100_000_000, 0.35),
        (500_000_000, 0.60),
        (1_000_000_000, 0.75),
    )

    def wealth_reduction(self, wealth: Optional[float]) -> float:
        reduction = 0.0
        if not wealth:
            return reduction
        for min_wealth, tier_reduction in self.WEALTH_TIERS:
            if wealth >= min_wealth:
                reduction = tier_reduction
        return reduction


DEFAULT_GAME_CONTROLS = {
    "blackjack": GameControl(max_bet=15_000_000, multiplier_reduction=0.25),
    "slots": GameControl(max_bet=300_000, max_multiplier=50, house_edge_adjustment=0.02),
    "roulette": GameControl(max_bet=15_000_000),
    "crash": GameControl(max_bet=300_000, max_multiplier=10, house_edge_adjustment=0.01),
    "plinko": GameControl(max_bet=300_000, max_multiplier=5, house_edge_adjustment=0.02),
    "ceelo": GameControl(max_bet=50_000),
    "keno": GameControl(max_bet=100_000, max_multiplier=50, house_edge_adjustment=0.01),
}


@dataclass
class BetDecision:
    """Verdict on a proposed bet."""
    approved: bool
    reason: Optional[str] = None
    max_allowed: Optional[float] = None
    restriction: Optional[str] = None
    adjusted_amount: Optional[float] = None
    house_edge_adjustment: float = 0.0
    multiplier_reduction: float = 0.0

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "reason": self.reason,
            "max_allowed": self.max_allowed,
            "restriction": self.restriction,
            "adjusted_amount": self.adjusted_amount,
            "house_edge_adjustment": self.house_edge_adjustment,
            "multiplier_reduction": self.multiplier_reduction,
        }


@dataclass
class PayoutDecision:
    """Adjusted payout for a finished round."""
    approved: bool
    original_payout: float
    adjusted_payout: float
    reduction_applied: float = 0.0
    multiplier_reduction: float = 0.0
    flagged: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "original_payout": self.original_payout,
            "adjusted_payout": self.adjusted_payout,
            "reduction_applied": self.reduction_applied,
            "multiplier_reduction": self.multiplier_reduction,
            "flagged": self.flagged,
            "reason": self.reason,
        }


class EconomicManager:
    """
    Facade over the economy components.

    Owns the per-game controls. Global controls are read from the shared
    EconomyContext on every call.
    """

    def __init__(
        self,
        database: Optional[Database] = None,
        context: Optional[EconomyContext] = None,
        anti_abuse: Optional[AntiAbuseSystem] = None,
        stabilizer: Optional[EconomicStabilizer] = None,
        fair_payout: Optional[FairPayoutManager] = None,
        notifier=None,
        config: Optional[ManagerConfig] = None,
        game_controls: Optional[dict[str, GameControl]] = None,
    ):
        self.db = database or get_database()
        self.context = context or EconomyContext()
        self.notifier = notifier
        self.anti_abuse = anti_abuse or AntiAbuseSystem(self.db, self.context, notifier)
        self.stabilizer = stabilizer or EconomicStabilizer(self.db, self.context, notifier)
        self.fair_payout = fair_payout or FairPayoutManager()

        self.config = config or ManagerConfig()

        source = DEFAULT_GAME_CONTROLS if game_controls is None else game_controls
        self.game_controls = {name: control.model_copy() for name, control in source.items()}

    @property
    def emergency_mode(self) -> bool:
        return self.context.controls.emergency_mode_active

    @property
    def emergency_max_bet(self) -> float:
        return self.stabilizer.config.EMERGENCY_MAX_BET

    @property
    def emergency_multiplier_reduction(self) -> float:
        return self.stabilizer.config.EMERGENCY_MULTIPLIER_REDUCTION

    def get_game_controls(self, game_type: str) -> GameControl:
        """Controls for a game; unknown games get the defaults."""
        control = self.game_controls.get(game_type)
        if control is None:
            return GameControl(max_bet=self.config.DEFAULT_MAX_BET)
        return control

    # ========== Bets ==========

    async def validate_and_process_bet(
        self,
        user_id: str,
        game_type: str,
        bet_amount: float,
        user_wealth: float
    ) -> BetDecision:
        """
        Decide whether a bet may be placed.

        Checks run in order and the first failure wins: block list, wealth
        ratio, game maximum, emergency cap.

        Args:
            user_id: Discord user ID.
            game_type: Game identifier.
            bet_amount: Proposed stake.
            user_wealth: Wallet plus bank.

        Returns:
            BetDecision. Denials carry the largest amount that would pass.
        """
        try:
            permission = self.anti_abuse.is_user_action_allowed(user_id, "bet", bet_amount)
            if not permission.allowed:
                return BetDecision(
                    approved=False,
                    reason=permission.reason,
                    restriction=permission.restriction_type,
                )

            limit = self.get_game_limit(game_type, user_wealth)
            max_allowed = limit["max_bet"]

            if user_wealth > 0 and bet_amount > user_wealth * self.config.MAX_BET_TO_WEALTH_RATIO:
                return BetDecision(
                    approved=False,
                    reason="Bet exceeds maximum percentage of wealth",
                    max_allowed=max_allowed,
                )

            control = self.get_game_controls(game_type)
            if bet_amount > control.max_bet:
                return BetDecision(
                    approved=False,
                    reason=f"Exceeds {game_type} maximum bet limit",
                    max_allowed=max_allowed,
                )

            if self.emergency_mode and bet_amount > self.emergency_max_bet:
                return BetDecision(
                    approved=False,
                    reason="Emergency mode active - reduced betting limits",
                    max_allowed=max_allowed,
                )

            return BetDecision(
                approved=True,
                adjusted_amount=bet_amount,
                house_edge_adjustment=self.get_house_edge_adjustment(game_type),
                multiplier_reduction=self.get_multiplier_reduction(game_type, user_id, user_wealth),
            )

        except Exception as e:
            logger.error(f"Bet validation failed for user {user_id}, allowing bet: {e}")
            return BetDecision(approved=True, adjusted_amount=bet_amount, reason="Validation unavailable")

    def get_game_limit(self, game_type: str, user_wealth: Optional[float] = None) -> dict:
        """
        Largest bet that passes every cap.

        Returns:
            Dict with max_bet and the reason of the binding cap
            (game_limit, wealth_based or emergency).
        """
        max_bet = self.get_game_controls(game_type).max_bet
        reason = "game_limit"

        if user_wealth and user_wealth > 0:
            wealth_limit = user_wealth * self.config.MAX_BET_TO_WEALTH_RATIO
            if wealth_limit < max_bet:
                max_bet = wealth_limit
                reason = "wealth_based"

        if self.emergency_mode and self.emergency_max_bet < max_bet:
            max_bet = self.emergency_max_bet
            reason = "emergency"

        return {"max_bet": max_bet, "reason": reason}

    # ========== Payouts ==========

    async def validate_and_process_payout(
        self,
        user_id: str,
        game_type: str,
        bet_amount: float,
        payout: float,
        game_data: Optional[dict] = None
    ) -> PayoutDecision:
        """
        Apply economic reductions to a payout and record the outcome.

        Args:
            user_id: Discord user ID.
            game_type: Game identifier.
            bet_amount: Stake of the round.
            payout: Payout produced by the game.
            game_data: Extra round data; user_wealth avoids a ledger read.

        Returns:
            PayoutDecision. Payouts are never denied; winning payouts on
            non-lottery games never drop below the stake.
        """
        game_data = dict(game_data or {})

        try:
            multiplier = payout / bet_amount if bet_amount > 0 else 0.0

            flagged = False
            if multiplier > self.config.SUSPICIOUS_MULTIPLIER:
                flagged = True
                logger.warning(f"SUSPICIOUS WIN: user {user_id} won {multiplier:.2f}x in {game_type}")
                self.anti_abuse.flag_user_for_review(
                    user_id,
                    self.anti_abuse.get_user_risk_assessment(user_id).raw_score,
                    ["high_multiplier_win"],
                    {"game_type": game_type, "bet_amount": bet_amount, "payout": payout, "multiplier": multiplier},
                )

            user_wealth = game_data.pop("user_wealth", None)
            if user_wealth is None:
                user_wealth = self._lookup_wealth(user_id)

            reduction = self.get_multiplier_reduction(game_type, user_id, user_wealth)
            adjusted = payout
            if payout > bet_amount and reduction > 0:
                floor = 0.0 if self.fair_payout.is_lottery_style(game_type) else bet_amount
                adjusted = max(floor, payout * (1 - reduction))
                logger.debug(f"Payout reduced by {reduction:.1%}: {payout:,.0f} -> {adjusted:,.0f}")

            if adjusted > bet_amount:
                result = "win"
            elif adjusted < bet_amount:
                result = "lose"
            else:
                result = "push"

            await self.anti_abuse.analyze_game_action(user_id, game_type, "payout", {
                **game_data,
                "bet_amount": bet_amount,
                "payout": adjusted,
                "multiplier": adjusted / bet_amount if bet_amount > 0 else 0,
                "result": result,
            })

            return PayoutDecision(
                approved=True,
                original_payout=payout,
                adjusted_payout=adjusted,
                reduction_applied=(payout - adjusted) / payout if payout > 0 else 0.0,
                multiplier_reduction=reduction,
                flagged=flagged,
                reason="Economic stability reduction applied" if adjusted < payout else None,
            )

        except Exception as e:
            logger.error(f"Payout validation failed for user {user_id}, paying original amount: {e}")
            return PayoutDecision(
                approved=True,
                original_payout=payout,
                adjusted_payout=payout,
                reason="Validation unavailable",
            )

    def _lookup_wealth(self, user_id: str) -> Optional[float]:
        try:
            return self.db.get_user_wealth(user_id)
        except LedgerUnavailable as e:
            logger.warning(f"Could not read wealth for {user_id}, skipping wealth tier: {e}")
            return None

    # ========== Adjustments ==========

    def get_house_edge_adjustment(self, game_type: str) -> float:
        adjustment = self.get_game_controls(game_type).house_edge_adjustment
        adjustment += self.stabilizer.get_house_edge_adjustment()
        if self.emergency_mode:
            adjustment += self.config.EMERGENCY_HOUSE_EDGE
        return adjustment

    def get_multiplier_reduction(
        self,
        game_type: str,
        user_id: Optional[str] = None,
        user_wealth: Optional[float] = None
    ) -> float:
        """
        Total payout reduction for a user on a game.

        Sum of the game reduction, the wealth tier, the emergency reduction
        and the high-risk reduction, capped at MAX_MULTIPLIER_REDUCTION.
        """
        reduction = self.get_game_controls(game_type).multiplier_reduction
        reduction += self.config.wealth_reduction(user_wealth)

        if self.emergency_mode:
            reduction += self.emergency_multiplier_reduction

        if user_id and self.anti_abuse.is_high_risk(user_id):
            reduction += self.config.HIGH_RISK_MULTIPLIER_REDUCTION

        return min(self.config.MAX_MULTIPLIER_REDUCTION, reduction)

    # ========== Actions ==========

    async def record_action(self, user_id: str, game_type: str, action: str, data: Optional[dict] = None):
        """Feed a game action to the anti-abuse system."""
        return await self.anti_abuse.analyze_game_action(user_id, game_type, action, data)

    def is_action_allowed(self, user_id: str, action: str, amount: float = 0):
        return self.anti_abuse.is_user_action_allowed(user_id, action, amount)

    # ========== Admin ==========

    def set_emergency_mode(self, active: bool, reason: str = "Manual override", actor: str = "admin") -> dict:
        """
        Manually toggle emergency mode.

        A manual emergency stays on until turned off here. Turning it off
        hands control back to the analysis cycle.
        """
        now = self.context.now()
        if active:
            self.context.update_controls(
                emergency_mode_active=True,
                manual_override=True,
                emergency_started_at=now,
                emergency_reason=reason,
            )
            logger.warning(f"MANUAL EMERGENCY MODE ACTIVATED by {actor}: {reason}")
        else:
            self.context.update_controls(
                emergency_mode_active=False,
                manual_override=False,
                emergency_started_at=None,
                emergency_reason=None,
            )
            logger.info(f"Emergency mode manually deactivated by {actor}: {reason}")

        try:
            self.db.record_audit_event("set_emergency_mode", actor, {"active": active, "reason": reason})
        except LedgerUnavailable as e:
            logger.error(f"Failed to audit emergency mode change: {e}")

        return self.get_system_status()

    def update_game_controls(
        self,
        game_type: str,
        changes: Union[GameControlUpdate, dict],
        actor: str = "admin"
    ) -> bool:
        """
        Merge new values into a known game's controls. Null values are ignored.

        Returns:
            False for unknown games.

        Raises:
            pydantic.ValidationError: If a value is out of range.
        """
        current = self.game_controls.get(game_type)
        if current is None:
            logger.warning(f"Ignoring control update for unknown game {game_type}")
            return False

        if isinstance(changes, dict):
            changes = GameControlUpdate(**changes)
        updates = changes.model_dump(exclude_unset=True, exclude_none=True)

        self.game_controls[game_type] = GameControl(**{**current.model_dump(), **updates})
        logger.info(f"Game controls updated for {game_type}: {updates}")

        try:
            self.db.record_audit_event("update_game_controls", actor, {"game_type": game_type, "changes": updates})
        except LedgerUnavailable as e:
            logger.error(f"Failed to audit game control update: {e}")
        return True

    def generate_emergency_recommendations(self) -> list[str]:
        return generate_emergency_recommendations(self.stabilizer.latest_breakers)

    # ========== Reporting ==========

    def get_system_status(self) -> dict:
        controls = self.context.controls
        anti_abuse = self.anti_abuse.get_system_status()
        return {
            "emergency_mode": controls.emergency_mode_active,
            "health_score": controls.economic_health_score,
            "tracked_users": anti_abuse["tracked_users"],
            "blocked_users": anti_abuse["blocked_users"],
            "flagged_users": anti_abuse["flagged_users"],
            "controls": controls.to_dict(),
            "systems": {
                "stabilizer": self.stabilizer.get_economic_status(),
                "anti_abuse": anti_abuse,
            },
            "game_controls": {name: control.model_dump() for name, control in self.game_controls.items()},
            "timestamp": self.context.now().isoformat(),
        }

    def _risk_level_counts(self) -> dict:
        counts = {"minimal": 0, "low": 0, "medium": 0, "high": 0, "critical": 0}
        for user_id in self.anti_abuse.profiles.user_ids():
            level = self.anti_abuse.get_user_risk_assessment(user_id).risk_level.value.lower()
            if level in counts:
                counts[level] += 1
        return counts

    def get_economic_report(self) -> dict:
        """Full report for operators."""
        controls = self.context.controls

        try:
            ledger = self.db.get_stats()
        except LedgerUnavailable as e:
            logger.error(f"Ledger statistics unavailable for report: {e}")
            ledger = None

        fairness = self.fair_payout.verify_fairness()
        return {
            "overview": {
                "health_score": controls.economic_health_score,
                "emergency_mode": controls.emergency_mode_active,
                "manual_override": controls.manual_override,
                "emergency_reason": controls.emergency_reason,
            },
            "stabilizer": self.stabilizer.get_economic_status(),
            "anti_abuse": {
                **self.anti_abuse.get_system_status(),
                "risk_levels": self._risk_level_counts(),
            },
            "controls": {
                "game_controls": {name: control.model_dump() for name, control in self.game_controls.items()},
                "emergency_max_bet": self.emergency_max_bet,
                "wealth_tiers": [list(tier) for tier in self.config.WEALTH_TIERS],
            },
            "recommendations": self.generate_emergency_recommendations() if controls.emergency_mode_active else [],
            "fairness": {"passed": fairness["passed"], "issues": fairness["issues"]},
            "ledger": ledger,
            "timestamp": self.context.now().isoformat(),
        }


def create_default_manager(database: Optional[Database] = None, context: Optional[EconomyContext] = None) -> EconomicManager:
    """
    Wire every component from settings.

    Returns:
        EconomicManager sharing one ledger, context and notifier.
    """
    database = database or get_database()
    context = context or EconomyContext()
    notifier = EconomicNotifier(clock=context.clock) if settings.has_notification_channel else None
    if notifier is None:
        logger.warning("No webhook configured, operator notifications disabled")

    anti_abuse = AntiAbuseSystem(database, context, notifier)
    stabilizer = EconomicStabilizer(database, context, notifier)
    return EconomicManager(
        database=database,
        context=context,
        anti_abuse=anti_abuse,
        stabilizer=stabilizer,
        notifier=notifier,
    )
