"""
Fair payout table.

A fixed, published house edge per game type. Game code asks this table
for the payout of a finished round instead of hardcoding its own edge.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_HOUSE_EDGE = 0.03

FAIR_HOUSE_EDGES = {
    # Table and skill games
    "blackjack": 0.005,
    "battleship": 0.015,
    "wordchain": 0.015,
    "rps": 0.015,
    "duck": 0.015,
    "uno": 0.015,
    "war": 0.015,
    "spades": 0.015,
    "31": 0.015,
    "plinko": 0.02,
    "russianroulette": 0.02,
    "crash": 0.025,
    "ceelo": 0.025,
    "roulette": 0.027,
    # Slots and wheels
    "slots": 0.03,
    "multi_slots": 0.03,
    "fishing": 0.03,
    "treasurevault": 0.035,
    "yahtzee": 0.04,
    "heist": 0.05,
    "mines": 0.08,
    "bingo": 0.08,
    # Lottery style
    "keno": 0.15,
    "scratch": 0.15,
    "lottery": 0.35,
}

# Substrings marking games exempt from the minimum-return floor
LOTTERY_MARKERS = ("lottery", "scratch")
MIN_RETURN_RATIO = 0.8


@dataclass
class PayoutQuote:
    """Result of a fair payout calculation."""
    game_type: str
    bet_amount: float
    base_multiplier: float
    house_edge: float
    rtp: float
    fair_multiplier: float
    payout: float
    won: bool
    floor_applied: bool = False

    @property
    def calculation(self) -> str:
        return f"{self.bet_amount:g} x {self.fair_multiplier:.3f} = {self.payout:.2f}"

    def to_dict(self) -> dict:
        return {
            "game_type": self.game_type,
            "bet_amount": self.bet_amount,
            "base_multiplier": self.base_multiplier,
            "house_edge": self.house_edge,
            "rtp": self.rtp,
            "fair_multiplier": self.fair_multiplier,
            "payout": self.payout,
            "won": self.won,
            "floor_applied": self.floor_applied,
            "calculation": self.calculation,
        }


class FairPayoutManager:
    """Stateless lookup of target house edges."""

    def __init__(self, house_edges: Optional[dict[str, float]] = None, default_edge: float = DEFAULT_HOUSE_EDGE):
        self.house_edges = dict(FAIR_HOUSE_EDGES if house_edges is None else house_edges)
        self.default_edge = default_edge

    def get_house_edge(self, game_type: str) -> float:
        return self.house_edges.get(game_type, self.default_edge)

    def get_rtp(self, game_type: str) -> float:
        return 1 - self.get_house_edge(game_type)

    @staticmethod
    def is_lottery_style(game_type: str) -> bool:
        return any(marker in game_type for marker in LOTTERY_MARKERS)

    def calculate_fair_payout(self, game_type: str, bet_amount: float, base_multiplier: float) -> PayoutQuote:
        """
        Apply the game's house edge to a raw multiplier.

        Args:
            game_type: Game identifier.
            bet_amount: Stake.
            base_multiplier: Multiplier produced by the game logic.

        Returns:
            PayoutQuote. Non-lottery games never return less than 80% of
            the stake.
        """
        house_edge = self.get_house_edge(game_type)
        rtp = 1 - house_edge
        fair_multiplier = base_multiplier * rtp
        payout = bet_amount * fair_multiplier

        min_return = 0.0 if self.is_lottery_style(game_type) else bet_amount * MIN_RETURN_RATIO
        final_payout = max(payout, min_return)

        quote = PayoutQuote(
            game_type=game_type,
            bet_amount=bet_amount,
            base_multiplier=base_multiplier,
            house_edge=house_edge,
            rtp=rtp,
            fair_multiplier=fair_multiplier,
            payout=final_payout,
            won=final_payout > bet_amount,
            floor_applied=final_payout > payout,
        )
        logger.debug(
            f"Fair payout {game_type}: bet {bet_amount}, multiplier {base_multiplier} -> "
            f"{fair_multiplier:.3f}, payout {final_payout:.2f}"
        )
        return quote

    @staticmethod
    def categorize_game(house_edge: float) -> str:
        if house_edge <= 0.02:
            return "Very Fair"
        if house_edge <= 0.05:
            return "Fair"
        if house_edge <= 0.10:
            return "Standard"
        if house_edge <= 0.20:
            return "High Edge"
        return "Lottery Style"

    def get_fairness_report(self) -> dict:
        games = {}
        for game_type, house_edge in sorted(self.house_edges.items()):
            games[game_type] = {
                "house_edge": round(house_edge, 4),
                "rtp": round(1 - house_edge, 4),
                "category": self.categorize_game(house_edge),
            }

        return {
            "report_date": datetime.now(timezone.utc).isoformat(),
            "default_house_edge": self.default_edge,
            "games": games,
        }

    def verify_fairness(self) -> dict:
        """
        Check every configured edge against sanity limits.

        Returns:
            Dict with passed, issues (edges above 50%) and warnings
            (edges above 20%).
        """
        issues = []
        warnings = []
        for game_type, house_edge in self.house_edges.items():
            if house_edge > 0.5:
                issues.append(f"{game_type}: {house_edge * 100:.1f}% house edge is extremely high")
            elif house_edge > 0.2:
                warnings.append(f"{game_type}: {house_edge * 100:.1f}% house edge is high but acceptable for lottery-style games")

        return {
            "passed": not issues,
            "issues": issues,
            "warnings": warnings,
            "summary": f"{len(self.house_edges)} games configured with fair house edges",
        }
