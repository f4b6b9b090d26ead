"""
Behaviour pattern detectors.

Each detector is a pure function that looks at a BehaviorProfile and
returns a risk contribution (0 when the pattern is absent). Detectors:

1. rapid_betting       - too many bets inside a trailing minute
2. consistent_wins     - long win streaks on one game
3. unusual_betting     - machine-like or round-number bet sizing
4. perfect_timing      - near-constant gaps between actions
5. impossible_winrate  - win rate well above what the house edge allows
6. statistical_anomaly - too many high-multiplier outcomes

Scores are summed by the caller without normalization.
"""

import logging
import statistics
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from .behavior import BehaviorProfile

logger = logging.getLogger(__name__)


class DetectorConfig:
    """Configuration parameters for detector thresholds."""

    MIN_ACTIONS = 5                 # Below this every detector scores 0

    # Rapid betting
    RAPID_WINDOW_SECONDS = 60
    MAX_BETS_PER_WINDOW = 10
    RAPID_SCORE_PER_BET = 5
    RAPID_SCORE_CAP = 50

    # Consistent wins
    WIN_STREAK_WINDOW = 20          # Last N decided games of the type
    MAX_CONSECUTIVE_WINS = 8
    WIN_STREAK_SCORE_PER_WIN = 8
    WIN_STREAK_SCORE_CAP = 60

    # Unusual bet sizing
    BET_SIZE_WINDOW = 20
    BET_SIZE_MIN_SAMPLES = 10
    BET_SIZE_MAX_REL_STDDEV = 0.01  # Std-dev below 1% of the mean
    BET_SIZE_MIN_MEAN = 1000
    ROUND_BET_UNIT = 1000
    ROUND_BET_RATIO = 0.8
    CONSISTENT_BET_SCORE = 25
    ROUND_BET_SCORE = 15

    # Perfect timing
    TIMING_MAX_GAP_MS = 30000
    TIMING_MIN_SAMPLES = 10
    TIMING_FLAG_SAMPLES = 20
    TIMING_MAX_VARIANCE_MS2 = 1000
    TIMING_SCORE = 40

    # Impossible win rate
    WINRATE_MIN_GAMES = 20
    WINRATE_MARGIN = 0.15
    WINRATE_SCORE_FACTOR = 200
    WINRATE_SCORE_CAP = 70
    DEFAULT_HOUSE_EDGE = 0.05
    EXPECTED_HOUSE_EDGES = {
        "blackjack": 0.02,
        "slots": 0.08,
        "roulette": 0.053,
        "crash": 0.03,
        "plinko": 0.08,
        "bingo": 0.05,
    }

    # Statistical anomaly (multipliers)
    MULTIPLIER_WINDOW = 50
    MULTIPLIER_MIN_ACTIONS = 20
    MULTIPLIER_MIN_SAMPLES = 10
    HIGH_MULTIPLIER = 10
    HIGH_MULTIPLIER_BASELINE = 0.01
    HIGH_MULTIPLIER_FACTOR = 3
    MULTIPLIER_SCORE_PER_HIT = 10
    MULTIPLIER_SCORE_CAP = 50

    def __init__(self):
        self.EXPECTED_HOUSE_EDGES = dict(self.EXPECTED_HOUSE_EDGES)

    def expected_house_edge(self, game_type: str) -> float:
        return self.EXPECTED_HOUSE_EDGES.get(game_type, self.DEFAULT_HOUSE_EDGE)


DEFAULT_CONFIG = DetectorConfig()


@dataclass
class DetectionResult:
    """Outcome of running every detector against a profile."""
    total_score: float = 0.0
    scores: dict[str, float] = field(default_factory=dict)

    @property
    def patterns(self) -> list[str]:
        return [name for name, score in self.scores.items() if score > 0]


def detect_rapid_betting(
    profile: BehaviorProfile,
    game_type: str,
    now: datetime,
    config: DetectorConfig = DEFAULT_CONFIG
) -> float:
    """Score bursts of bet actions inside the trailing window."""
    window_start = now - timedelta(seconds=config.RAPID_WINDOW_SECONDS)
    recent_bets = sum(
        1 for a in profile.actions
        if a.action == "bet" and window_start < a.timestamp <= now
    )

    if recent_bets > config.MAX_BETS_PER_WINDOW:
        logger.debug(f"Rapid betting: {recent_bets} bets in last {config.RAPID_WINDOW_SECONDS}s")
        return min(config.RAPID_SCORE_CAP, recent_bets * config.RAPID_SCORE_PER_BET)
    return 0


def longest_win_streak(results: list[Optional[str]]) -> int:
    """Longest run of consecutive "win" results."""
    longest = current = 0
    for result in results:
        if result == "win":
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def detect_consistent_wins(
    profile: BehaviorProfile,
    game_type: str,
    now: datetime,
    config: DetectorConfig = DEFAULT_CONFIG
) -> float:
    """Score win streaks over the most recent decided games of this type."""
    decided = [a.result for a in profile.actions_for(game_type) if a.result]
    streak = longest_win_streak(decided[-config.WIN_STREAK_WINDOW:])

    if streak > config.MAX_CONSECUTIVE_WINS:
        logger.debug(f"Consistent wins: {streak} in a row on {game_type}")
        return min(config.WIN_STREAK_SCORE_CAP, streak * config.WIN_STREAK_SCORE_PER_WIN)
    return 0


def detect_unusual_betting(
    profile: BehaviorProfile,
    game_type: str,
    now: datetime,
    config: DetectorConfig = DEFAULT_CONFIG
) -> float:
    """
    Score bet sizing that looks scripted.

    Near-identical stakes above BET_SIZE_MIN_MEAN score CONSISTENT_BET_SCORE.
    Otherwise, mostly round-number stakes score ROUND_BET_SCORE.
    """
    amounts = [a.bet_amount for a in profile.actions if a.bet_amount > 0][-config.BET_SIZE_WINDOW:]
    if len(amounts) < config.BET_SIZE_MIN_SAMPLES:
        return 0

    mean = statistics.fmean(amounts)
    stddev = statistics.pstdev(amounts)

    if stddev < mean * config.BET_SIZE_MAX_REL_STDDEV and mean > config.BET_SIZE_MIN_MEAN:
        logger.debug(f"Extremely consistent bet sizing: stddev {stddev:.2f} around {mean:.2f}")
        return config.CONSISTENT_BET_SCORE

    round_bets = sum(1 for amount in amounts if amount % config.ROUND_BET_UNIT == 0)
    if round_bets / len(amounts) > config.ROUND_BET_RATIO:
        logger.debug(f"Round-number betting: {round_bets}/{len(amounts)}")
        return config.ROUND_BET_SCORE

    return 0


def detect_perfect_timing(
    profile: BehaviorProfile,
    game_type: str,
    now: datetime,
    config: DetectorConfig = DEFAULT_CONFIG
) -> float:
    """Score near-constant gaps between consecutive actions."""
    actions = list(profile.actions)
    gaps = []
    for previous, current in zip(actions, actions[1:]):
        gap_ms = (current.timestamp - previous.timestamp).total_seconds() * 1000
        if gap_ms < config.TIMING_MAX_GAP_MS:
            gaps.append(gap_ms)

    if len(gaps) < config.TIMING_MIN_SAMPLES:
        return 0

    variance = statistics.pvariance(gaps)
    if variance < config.TIMING_MAX_VARIANCE_MS2 and len(gaps) >= config.TIMING_FLAG_SAMPLES:
        logger.debug(f"Perfect timing: variance {variance:.2f}ms^2 over {len(gaps)} gaps")
        return config.TIMING_SCORE
    return 0


def detect_impossible_winrate(
    profile: BehaviorProfile,
    game_type: str,
    now: datetime,
    config: DetectorConfig = DEFAULT_CONFIG
) -> float:
    """Score a win rate far above 1 - expected house edge."""
    stats = profile.games.get(game_type)
    if not stats or stats.total_games < config.WINRATE_MIN_GAMES:
        return 0

    decided = stats.wins + stats.losses
    if decided == 0:
        return 0

    observed = stats.wins / decided
    expected = 1 - config.expected_house_edge(game_type)

    if observed > expected + config.WINRATE_MARGIN:
        logger.debug(f"Impossible win rate on {game_type}: {observed:.1%} vs expected {expected:.1%}")
        return min(config.WINRATE_SCORE_CAP, (observed - expected) * config.WINRATE_SCORE_FACTOR)
    return 0


def detect_statistical_anomaly(
    profile: BehaviorProfile,
    game_type: str,
    now: datetime,
    config: DetectorConfig = DEFAULT_CONFIG
) -> float:
    """Score an excess of high-multiplier outcomes on this game."""
    recent = profile.actions_for(game_type)[-config.MULTIPLIER_WINDOW:]
    if len(recent) < config.MULTIPLIER_MIN_ACTIONS:
        return 0

    multipliers = [a.multiplier for a in recent if a.multiplier > 0]
    if len(multipliers) < config.MULTIPLIER_MIN_SAMPLES:
        return 0

    high = sum(1 for m in multipliers if m > config.HIGH_MULTIPLIER)
    expected = len(multipliers) * config.HIGH_MULTIPLIER_BASELINE

    if high > expected * config.HIGH_MULTIPLIER_FACTOR:
        logger.debug(f"Statistical anomaly on {game_type}: {high} high multipliers vs {expected:.1f} expected")
        return min(config.MULTIPLIER_SCORE_CAP, high * config.MULTIPLIER_SCORE_PER_HIT)
    return 0


Detector = Callable[[BehaviorProfile, str, datetime, DetectorConfig], float]

DETECTORS: dict[str, Detector] = {
    "rapid_betting": detect_rapid_betting,
    "consistent_wins": detect_consistent_wins,
    "unusual_betting": detect_unusual_betting,
    "perfect_timing": detect_perfect_timing,
    "impossible_winrate": detect_impossible_winrate,
    "statistical_anomaly": detect_statistical_anomaly,
}


def run_detectors(
    profile: BehaviorProfile,
    game_type: str,
    now: datetime,
    config: DetectorConfig = DEFAULT_CONFIG
) -> DetectionResult:
    """
    Run every detector and sum their scores.

    Args:
        profile: Profile to analyze.
        game_type: Game the triggering action belongs to.
        now: Reference time for windowed detectors.
        config: Detector thresholds.

    Returns:
        DetectionResult with per-detector scores. Profiles with fewer
        than MIN_ACTIONS actions score 0 everywhere.
    """
    result = DetectionResult()
    if len(profile.actions) < config.MIN_ACTIONS:
        return result

    for name, detector in DETECTORS.items():
        try:
            score = detector(profile, game_type, now, config)
        except Exception as e:
            logger.error(f"Detector {name} failed for user {profile.user_id}: {e}")
            score = 0
        result.scores[name] = score
        result.total_score += score

    return result
