"""
Economic health analysis for Economy Guard.

This module periodically samples the ledger and derives server-wide
health metrics:

1. Wealth distribution:
   - Gini coefficient
   - Share held by the top 1% of participants

2. Flow of money:
   - Realized house edge
   - Velocity of money

3. Stability:
   - 0-100 score from an additive rubric
   - Circuit breakers and emergency mode
   - Anomalies and dynamic house edge adjustment

The decision logic lives in pure functions ending in tick(), which maps
(now, controls, data) to new controls. EconomicStabilizer wraps it with
ledger reads, the shared context and notifications.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Optional

from .config import settings
from .context import DEFAULT_HEALTH_SCORE, EconomyContext, GlobalControls
from .database import Database, LedgerUnavailable, get_database

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================

class StabilizerConfig:
    """Thresholds for health scoring, breakers and emergency mode."""

    NEUTRAL_SCORE = DEFAULT_HEALTH_SCORE
    TOP_PERCENT = 0.01             # Concentration is the share of the top 1%
    VELOCITY_DAYS = 30

    # Stability rubric: (threshold, points). First match per metric wins.
    GINI_PENALTIES = ((0.9, 40), (0.8, 30), (0.7, 20), (0.6, 15), (0.5, 10), (0.4, 5))
    CONCENTRATION_PENALTIES = ((0.95, 35), (0.90, 25), (0.85, 20), (0.75, 15), (0.65, 10), (0.55, 5))
    HOUSE_EDGE_PENALTIES = ((-0.05, 40), (-0.02, 30), (0.005, 20), (0.01, 10))  # edge below threshold
    OPTIMAL_EDGE_RANGE = (0.03, 0.06)
    OPTIMAL_EDGE_BONUS = 15
    GOOD_EDGE_RANGE = (0.06, 0.08)  # lower bound exclusive
    GOOD_EDGE_BONUS = 10
    EXCESSIVE_EDGE = 0.10
    EXCESSIVE_EDGE_PENALTY = 15

    # Extreme metrics cap the score
    EXTREME_GINI = 0.995
    EXTREME_CONCENTRATION = 0.995
    EXTREME_HOUSE_EDGE = -0.10
    EXTREME_SCORE_CAP = 25

    # A healthy score with no near-extreme metric never triggers emergency
    SAFE_SCORE = 80
    SAFE_MAX_GINI = 0.98
    SAFE_MAX_CONCENTRATION = 0.985
    SAFE_MIN_HOUSE_EDGE = 0.01

    # Circuit breakers
    MAX_DAILY_LOSS = 100_000_000
    MAX_WEALTH_CONCENTRATION = 0.98
    CRITICAL_WEALTH_CONCENTRATION = 0.99
    MIN_HOUSE_EDGE = 0.01
    CRITICAL_HOUSE_EDGE = 0.005

    # Emergency mode
    EMERGENCY_SCORE_THRESHOLD = 50
    EMERGENCY_DURATION_MINUTES = 60
    EMERGENCY_MULTIPLIER_REDUCTION = 0.25
    EMERGENCY_MAX_BET = 50000

    # Anomalies
    RAPID_WEALTH_CHANGE = 0.10
    ANOMALY_CONCENTRATION = 0.97
    ANOMALY_HOUSE_EDGE = 0.02
    WEALTHY_USER_SHARE = 0.05
    SUSPICIOUS_USER_SCORE = 75     # All three patterns
    HIGH_WIN_RATE = 0.7
    HIGH_WIN_RATE_POINTS = 30
    BIG_WIN_RATIO = 50
    BIG_WIN_POINTS = 25
    HIGH_RISK_BET_RATIO = 0.1
    HIGH_RISK_BET_POINTS = 20

    # Dynamic house edge adjustment
    LOSS_EDGE_ADJUSTMENT = 0.01
    CONCENTRATION_EDGE_TRIGGER = 0.7
    CONCENTRATION_EDGE_ADJUSTMENT = 0.005
    LOW_STABILITY_TRIGGER = 70
    LOW_STABILITY_EDGE_ADJUSTMENT = 0.01
    EMERGENCY_EDGE_ADJUSTMENT = 0.02


DEFAULT_CONFIG = StabilizerConfig()


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class EconomicData:
    """Ledger sample used for one analysis cycle."""
    participants: list[dict] = field(default_factory=list)  # richest first
    total_wealth: float = 0.0
    total_wagered: float = 0.0
    total_won: float = 0.0
    total_games: int = 0
    gathered_at: Optional[datetime] = None

    @property
    def total_users(self) -> int:
        return len(self.participants)

    @property
    def house_profit(self) -> float:
        return self.total_wagered - self.total_won

    @property
    def wealth_values(self) -> list[float]:
        return [p["wealth"] for p in self.participants]

    @classmethod
    def from_participants(cls, rows: list[dict], gathered_at: Optional[datetime] = None) -> "EconomicData":
        """Build a sample from ledger rows (user_id, wealth, wins, losses, totals)."""
        participants = []
        total_wagered = total_won = 0.0
        total_games = 0

        for row in rows:
            wealth = row.get("wealth")
            if wealth is None:
                wealth = (row.get("wallet") or 0) + (row.get("bank") or 0)
            participants.append({**row, "wealth": float(wealth)})

            if row.get("wins") is not None or row.get("losses") is not None:
                total_games += (row.get("wins") or 0) + (row.get("losses") or 0)
                total_wagered += row.get("total_wagered") or 0
                total_won += row.get("total_won") or 0

        participants.sort(key=lambda p: p["wealth"], reverse=True)
        return cls(
            participants=participants,
            total_wealth=sum(p["wealth"] for p in participants),
            total_wagered=total_wagered,
            total_won=total_won,
            total_games=total_games,
            gathered_at=gathered_at,
        )


@dataclass(frozen=True)
class HealthSnapshot:
    """Server-wide health metrics from one cycle."""
    total_wealth: float = 0.0
    gini_coefficient: float = 0.0
    wealth_concentration: float = 0.0
    house_advantage: float = 0.0
    velocity_of_money: float = 0.0
    economic_stability: float = DEFAULT_HEALTH_SCORE
    total_users: int = 0
    total_wagered: float = 0.0
    total_won: float = 0.0
    house_profit: float = 0.0
    computed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "total_wealth": self.total_wealth,
            "gini_coefficient": round(self.gini_coefficient, 4),
            "wealth_concentration": round(self.wealth_concentration, 4),
            "house_advantage": round(self.house_advantage, 4),
            "velocity_of_money": round(self.velocity_of_money, 6),
            "economic_stability": self.economic_stability,
            "total_users": self.total_users,
            "total_wagered": self.total_wagered,
            "total_won": self.total_won,
            "house_profit": self.house_profit,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
        }


@dataclass
class CircuitBreaker:
    """A tripped circuit breaker."""
    type: str
    severity: str
    value: float
    threshold: float

    def to_dict(self) -> dict:
        return {"type": self.type, "severity": self.severity, "value": self.value, "threshold": self.threshold}


@dataclass
class Anomaly:
    """Something unusual about the economy or a wealthy participant."""
    type: str
    severity: str
    value: float
    threshold: float
    user_id: Optional[str] = None
    patterns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {"type": self.type, "severity": self.severity, "value": self.value, "threshold": self.threshold}
        if self.user_id:
            result["user_id"] = self.user_id
            result["patterns"] = self.patterns
        return result


@dataclass
class TickResult:
    """Outcome of one analysis cycle."""
    controls: GlobalControls
    snapshot: HealthSnapshot
    breakers: list[CircuitBreaker] = field(default_factory=list)
    anomalies: list[Anomaly] = field(default_factory=list)
    entered_emergency: bool = False
    cleared_emergency: bool = False


# ============================================================================
# Metrics
# ============================================================================

def calculate_gini_coefficient(values: list[float]) -> float:
    """
    Gini coefficient of a wealth distribution.

    Args:
        values: Wealth per user, any order.

    Returns:
        0 (equal) to just under 1 (one holder). 0 for no users or no wealth.
    """
    if not values:
        return 0.0

    ordered = sorted(values)
    n = len(ordered)
    total = sum(ordered)
    if total == 0:
        return 0.0

    numerator = sum((2 * (i + 1) - n - 1) * v for i, v in enumerate(ordered))
    return numerator / (n * total)


def calculate_wealth_concentration(values: list[float], top_percent: float = 0.01) -> float:
    """Share of total wealth held by the top slice of users (at least one)."""
    total = sum(values)
    if not values or total <= 0:
        return 0.0

    top_count = max(1, int(len(values) * top_percent))
    top_wealth = sum(sorted(values, reverse=True)[:top_count])
    return top_wealth / total


def calculate_house_edge(total_wagered: float, total_won: float) -> float:
    if total_wagered <= 0:
        return 0.0
    return (total_wagered - total_won) / total_wagered


def calculate_velocity(total_wagered: float, total_wealth: float, days: int = 30) -> float:
    if total_wealth <= 0:
        return 0.0
    return (total_wagered / days) / total_wealth


def _first_penalty(value: float, tiers: list[tuple[float, float]]) -> float:
    for threshold, points in tiers:
        if value > threshold:
            return points
    return 0


def is_extreme(gini: float, concentration: float, house_edge: float, config: StabilizerConfig = DEFAULT_CONFIG) -> bool:
    return (
        gini > config.EXTREME_GINI
        or concentration > config.EXTREME_CONCENTRATION
        or house_edge < config.EXTREME_HOUSE_EDGE
    )


def calculate_stability_score(
    gini: float,
    concentration: float,
    house_edge: float,
    config: StabilizerConfig = DEFAULT_CONFIG
) -> float:
    """
    Economic stability score from the additive rubric.

    Args:
        gini: Gini coefficient.
        concentration: Top 1% wealth share.
        house_edge: Realized house edge.
        config: Rubric thresholds.

    Returns:
        Score clamped to 0..100.
    """
    score = 100.0
    score -= _first_penalty(gini, config.GINI_PENALTIES)
    score -= _first_penalty(concentration, config.CONCENTRATION_PENALTIES)

    for threshold, points in config.HOUSE_EDGE_PENALTIES:
        if house_edge < threshold:
            score -= points
            break

    optimal_low, optimal_high = config.OPTIMAL_EDGE_RANGE
    good_low, good_high = config.GOOD_EDGE_RANGE
    if optimal_low <= house_edge <= optimal_high:
        score += config.OPTIMAL_EDGE_BONUS
    elif good_low < house_edge <= good_high:
        score += config.GOOD_EDGE_BONUS
    elif house_edge > config.EXCESSIVE_EDGE:
        score -= config.EXCESSIVE_EDGE_PENALTY

    if is_extreme(gini, concentration, house_edge, config):
        score = min(score, config.EXTREME_SCORE_CAP)

    return max(0.0, min(100.0, score))


def compute_snapshot(
    data: EconomicData,
    now: Optional[datetime] = None,
    config: StabilizerConfig = DEFAULT_CONFIG
) -> HealthSnapshot:
    """Derive every health metric from a ledger sample."""
    values = data.wealth_values
    gini = calculate_gini_coefficient(values)
    concentration = calculate_wealth_concentration(values, config.TOP_PERCENT)
    house_edge = calculate_house_edge(data.total_wagered, data.total_won)

    if data.total_users == 0:
        stability = config.NEUTRAL_SCORE
    else:
        stability = calculate_stability_score(gini, concentration, house_edge, config)

    return HealthSnapshot(
        total_wealth=data.total_wealth,
        gini_coefficient=gini,
        wealth_concentration=concentration,
        house_advantage=house_edge,
        velocity_of_money=calculate_velocity(data.total_wagered, data.total_wealth, config.VELOCITY_DAYS),
        economic_stability=stability,
        total_users=data.total_users,
        total_wagered=data.total_wagered,
        total_won=data.total_won,
        house_profit=data.house_profit,
        computed_at=now,
    )


# ============================================================================
# Breakers, anomalies and adjustments
# ============================================================================

def check_circuit_breakers(snapshot: HealthSnapshot, config: StabilizerConfig = DEFAULT_CONFIG) -> list[CircuitBreaker]:
    """
    Evaluate every circuit breaker against a snapshot.

    The house edge breaker only runs once something has been wagered.
    """
    triggered = []

    if snapshot.house_profit < -config.MAX_DAILY_LOSS:
        triggered.append(CircuitBreaker(
            type="max_daily_loss",
            severity="CRITICAL",
            value=snapshot.house_profit,
            threshold=-config.MAX_DAILY_LOSS,
        ))

    if snapshot.wealth_concentration > config.MAX_WEALTH_CONCENTRATION:
        severity = "CRITICAL" if snapshot.wealth_concentration > config.CRITICAL_WEALTH_CONCENTRATION else "HIGH"
        triggered.append(CircuitBreaker(
            type="wealth_concentration",
            severity=severity,
            value=snapshot.wealth_concentration,
            threshold=config.MAX_WEALTH_CONCENTRATION,
        ))

    if snapshot.total_wagered > 0 and snapshot.house_advantage < config.MIN_HOUSE_EDGE:
        severity = "CRITICAL" if snapshot.house_advantage < config.CRITICAL_HOUSE_EDGE else "HIGH"
        triggered.append(CircuitBreaker(
            type="low_house_edge",
            severity=severity,
            value=snapshot.house_advantage,
            threshold=config.MIN_HOUSE_EDGE,
        ))

    return triggered


def analyze_user_pattern(participant: dict, config: StabilizerConfig = DEFAULT_CONFIG) -> tuple[float, list[str]]:
    """
    Score a participant's lifetime stats for suspicious gambling.

    Returns:
        (risk score, pattern labels).
    """
    wins = participant.get("wins") or 0
    losses = participant.get("losses") or 0
    total_games = wins + losses
    if total_games == 0:
        return 0, []

    score = 0
    patterns = []

    if wins / total_games > config.HIGH_WIN_RATE:
        score += config.HIGH_WIN_RATE_POINTS
        patterns.append("high_win_rate")

    total_wagered = participant.get("total_wagered") or 0
    biggest_win = participant.get("biggest_win") or 0
    if total_wagered > 0:
        avg_bet = total_wagered / total_games
        if biggest_win > 0 and biggest_win / avg_bet > config.BIG_WIN_RATIO:
            score += config.BIG_WIN_POINTS
            patterns.append("abnormal_big_win")

        wealth = participant.get("wealth") or 0
        if wealth > 0 and avg_bet / wealth > config.HIGH_RISK_BET_RATIO:
            score += config.HIGH_RISK_BET_POINTS
            patterns.append("high_risk_betting")

    return score, patterns


def detect_anomalies(
    snapshot: HealthSnapshot,
    data: EconomicData,
    previous: Optional[HealthSnapshot] = None,
    config: StabilizerConfig = DEFAULT_CONFIG
) -> list[Anomaly]:
    """Economy-level anomalies plus suspicious wealthy participants."""
    anomalies = []

    if previous and previous.total_wealth > 0:
        growth = (snapshot.total_wealth - previous.total_wealth) / previous.total_wealth
        if abs(growth) > config.RAPID_WEALTH_CHANGE:
            anomalies.append(Anomaly("rapid_wealth_change", "HIGH", growth, config.RAPID_WEALTH_CHANGE))

    if snapshot.wealth_concentration > config.ANOMALY_CONCENTRATION:
        anomalies.append(Anomaly(
            "extreme_wealth_concentration", "CRITICAL",
            snapshot.wealth_concentration, config.ANOMALY_CONCENTRATION,
        ))

    if snapshot.total_wagered > 0 and snapshot.house_advantage < config.ANOMALY_HOUSE_EDGE:
        anomalies.append(Anomaly("low_house_edge", "HIGH", snapshot.house_advantage, config.ANOMALY_HOUSE_EDGE))

    wealth_threshold = data.total_wealth * config.WEALTHY_USER_SHARE
    for participant in data.participants:
        if participant["wealth"] <= wealth_threshold:
            break
        score, patterns = analyze_user_pattern(participant, config)
        if score >= config.SUSPICIOUS_USER_SCORE:
            anomalies.append(Anomaly(
                "suspicious_user_pattern", "HIGH", score, config.SUSPICIOUS_USER_SCORE,
                user_id=str(participant.get("user_id")), patterns=patterns,
            ))

    return anomalies


def calculate_house_edge_adjustment(
    snapshot: HealthSnapshot,
    emergency: bool,
    config: StabilizerConfig = DEFAULT_CONFIG
) -> float:
    adjustment = 0.0
    if snapshot.house_profit < 0:
        adjustment += config.LOSS_EDGE_ADJUSTMENT
    if snapshot.wealth_concentration > config.CONCENTRATION_EDGE_TRIGGER:
        adjustment += config.CONCENTRATION_EDGE_ADJUSTMENT
    if snapshot.economic_stability < config.LOW_STABILITY_TRIGGER:
        adjustment += config.LOW_STABILITY_EDGE_ADJUSTMENT
    if emergency:
        adjustment += config.EMERGENCY_EDGE_ADJUSTMENT
    return adjustment


def is_safe(snapshot: HealthSnapshot, config: StabilizerConfig = DEFAULT_CONFIG) -> bool:
    """High score with no metric near its extreme."""
    return (
        snapshot.economic_stability > config.SAFE_SCORE
        and snapshot.gini_coefficient <= config.SAFE_MAX_GINI
        and snapshot.wealth_concentration <= config.SAFE_MAX_CONCENTRATION
        and snapshot.house_advantage >= config.SAFE_MIN_HOUSE_EDGE
    )


def should_trigger_emergency(
    snapshot: HealthSnapshot,
    breakers: list[CircuitBreaker],
    config: StabilizerConfig = DEFAULT_CONFIG
) -> bool:
    if is_safe(snapshot, config):
        return False
    has_critical = any(b.severity == "CRITICAL" for b in breakers)
    return has_critical and snapshot.economic_stability < config.EMERGENCY_SCORE_THRESHOLD


def generate_emergency_recommendations(breakers: list[CircuitBreaker]) -> list[str]:
    recommendations = []
    for breaker in breakers:
        if breaker.type == "wealth_concentration":
            recommendations.extend([
                "Consider implementing progressive taxation",
                "Monitor operator account activity",
                "Review wealth distribution policies",
            ])
        elif breaker.type in ("max_daily_loss", "low_house_edge"):
            recommendations.extend([
                "Adjust house edge parameters",
                "Review game multipliers",
                "Implement emergency betting limits",
            ])

    recommendations.append("Monitor system closely for 24 hours")
    recommendations.append("Review economic policy effectiveness")
    return list(dict.fromkeys(recommendations))


def tick(
    now: datetime,
    controls: GlobalControls,
    data: EconomicData,
    config: StabilizerConfig = DEFAULT_CONFIG,
    previous: Optional[HealthSnapshot] = None
) -> TickResult:
    """
    Run one analysis cycle without side effects.

    Args:
        now: Cycle time.
        controls: Controls in force before the cycle.
        data: Ledger sample.
        config: Thresholds.
        previous: Snapshot from the previous cycle, for change detection.

    Returns:
        TickResult carrying the new controls and what changed.
    """
    snapshot = compute_snapshot(data, now, config)
    breakers = check_circuit_breakers(snapshot, config)
    anomalies = detect_anomalies(snapshot, data, previous, config)
    triggering = should_trigger_emergency(snapshot, breakers, config)

    active = controls.emergency_mode_active
    started_at = controls.emergency_started_at
    reason = controls.emergency_reason
    entered = cleared = False

    if active and not controls.manual_override:
        duration = timedelta(minutes=config.EMERGENCY_DURATION_MINUTES)
        expired = started_at is not None and now - started_at >= duration
        if expired and triggering:
            # Conditions persist past the window: renew quietly
            started_at = now
            logger.warning("Emergency window elapsed but conditions persist; renewing emergency mode")
        elif expired or not triggering:
            active = False
            started_at = None
            reason = None
            cleared = True
    elif not active and triggering:
        active = True
        started_at = now
        reason = ", ".join(f"{b.type} ({b.severity})" for b in breakers)
        entered = True

    new_controls = replace(
        controls,
        emergency_mode_active=active,
        emergency_started_at=started_at,
        emergency_reason=reason,
        economic_health_score=snapshot.economic_stability,
        house_edge_adjustment=calculate_house_edge_adjustment(snapshot, active, config),
        updated_at=now,
    )

    return TickResult(
        controls=new_controls,
        snapshot=snapshot,
        breakers=breakers,
        anomalies=anomalies,
        entered_emergency=entered,
        cleared_emergency=cleared,
    )


# ============================================================================
# Stabilizer service
# ============================================================================

class EconomicStabilizer:
    """
    Runs analysis cycles against the ledger and publishes the results.

    Each cycle reads the ledger, applies tick() and swaps the new
    GlobalControls into the shared context. Ledger failures leave the
    controls as they were.
    """

    def __init__(
        self,
        database: Optional[Database] = None,
        context: Optional[EconomyContext] = None,
        notifier=None,
        config: Optional[StabilizerConfig] = None,
        excluded_user_ids: Optional[list[str]] = None,
        max_user_wealth: Optional[float] = None,
    ):
        self.db = database or get_database()
        self.context = context or EconomyContext()
        self.notifier = notifier
        if config is None:
            config = StabilizerConfig()
            config.EMERGENCY_DURATION_MINUTES = settings.emergency_duration_minutes
            config.EMERGENCY_MAX_BET = settings.emergency_max_bet
        self.config = config
        self.excluded_user_ids = list(settings.excluded_user_ids if excluded_user_ids is None else excluded_user_ids)
        self.max_user_wealth = settings.max_user_wealth if max_user_wealth is None else max_user_wealth

        self.latest_snapshot = HealthSnapshot()
        self.previous_snapshot: Optional[HealthSnapshot] = None
        self.latest_breakers: list[CircuitBreaker] = []
        self.latest_anomalies: list[Anomaly] = []
        self.last_analysis_at: Optional[datetime] = None
        self.analysis_count = 0
        self.failed_analyses = 0

    def gather_economic_data(self) -> EconomicData:
        """
        Sample the eligible economy from the ledger.

        Raises:
            LedgerUnavailable: If the ledger cannot be read.
        """
        rows = self.db.get_economy_participants(self.excluded_user_ids, self.max_user_wealth)
        data = EconomicData.from_participants(rows, gathered_at=self.context.now())
        logger.info(f"Economic data gathered for {data.total_users} economy participants")
        return data

    async def perform_economic_analysis(self) -> Optional[TickResult]:
        """
        Run one full analysis cycle.

        Returns:
            TickResult, or None when the ledger could not be read.
        """
        before = self.context.controls

        try:
            data = self.gather_economic_data()
        except LedgerUnavailable as e:
            self.failed_analyses += 1
            logger.error(f"Economic analysis skipped, ledger unavailable: {e}")
            return None

        now = self.context.now()
        result = tick(now, before, data, self.config, previous=self.latest_snapshot if self.analysis_count else None)

        if self.context.controls is before:
            self.context.set_controls(result.controls)
        else:
            # Manual change landed mid-cycle; keep its emergency fields
            self.context.update_controls(
                economic_health_score=result.controls.economic_health_score,
                house_edge_adjustment=result.controls.house_edge_adjustment,
            )
            result.entered_emergency = result.cleared_emergency = False

        self.previous_snapshot = self.latest_snapshot if self.analysis_count else None
        self.latest_snapshot = result.snapshot
        self.latest_breakers = result.breakers
        self.latest_anomalies = result.anomalies
        self.last_analysis_at = now
        self.analysis_count += 1

        snapshot = result.snapshot
        logger.info(
            f"Economic analysis: stability {snapshot.economic_stability:.1f}, gini {snapshot.gini_coefficient:.3f}, "
            f"concentration {snapshot.wealth_concentration:.3f}, house edge {snapshot.house_advantage:.2%}"
        )
        if result.breakers and not result.entered_emergency:
            logger.debug(
                f"Circuit breakers tripped but emergency not warranted: "
                f"{[b.type for b in result.breakers]} (stability {snapshot.economic_stability:.1f})"
            )

        await self._publish(result)
        return result

    async def _publish(self, result: TickResult) -> None:
        if result.entered_emergency:
            logger.warning(f"ECONOMIC EMERGENCY TRIGGERED: {len(result.breakers)} circuit breakers")
            for breaker in result.breakers:
                logger.warning(
                    f"Circuit breaker {breaker.type} ({breaker.severity}): "
                    f"value {breaker.value:.4g}, threshold {breaker.threshold:.4g}"
                )
        if result.cleared_emergency:
            logger.info("Emergency mode cleared")

        if not self.notifier:
            return

        if result.entered_emergency:
            await self.notifier.send_emergency_notification(self.build_emergency_data(result))
        if result.cleared_emergency:
            await self.notifier.send_recovery_notification({
                "health_score": result.snapshot.economic_stability,
                "initialized": True,
            })
        if any(a.type == "extreme_wealth_concentration" for a in result.anomalies):
            top_count = max(1, int(result.snapshot.total_users * self.config.TOP_PERCENT))
            await self.notifier.send_wealth_concentration_alert({
                "concentration": result.snapshot.wealth_concentration,
                "user_count": top_count,
                "total_wealth": result.snapshot.total_wealth,
            })

    def build_emergency_data(self, result: TickResult) -> dict:
        return {
            "health_score": result.snapshot.economic_stability,
            "emergency_mode": result.controls.emergency_mode_active,
            "initialized": True,
            "reason": result.controls.emergency_reason,
            "circuit_breakers": [b.to_dict() for b in result.breakers],
            "emergency_measures": {
                "multiplier_reduction": self.config.EMERGENCY_MULTIPLIER_REDUCTION,
                "house_edge_increase": self.config.EMERGENCY_EDGE_ADJUSTMENT,
                "max_bet": self.config.EMERGENCY_MAX_BET,
            },
            "recommendations": generate_emergency_recommendations(result.breakers),
        }

    def get_house_edge_adjustment(self) -> float:
        return self.context.controls.house_edge_adjustment

    def get_economic_status(self) -> dict:
        controls = self.context.controls
        return {
            "health_metrics": self.latest_snapshot.to_dict(),
            "emergency_mode": controls.emergency_mode_active,
            "health_score": controls.economic_health_score,
            "house_edge_adjustment": controls.house_edge_adjustment,
            "circuit_breakers": [b.to_dict() for b in self.latest_breakers],
            "anomalies": [a.to_dict() for a in self.latest_anomalies],
            "last_analysis": self.last_analysis_at.isoformat() if self.last_analysis_at else None,
            "analysis_count": self.analysis_count,
            "failed_analyses": self.failed_analyses,
        }
