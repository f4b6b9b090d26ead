"""
Per-user behaviour tracking.

Each user gets a BehaviorProfile holding a bounded history of their
recent game actions plus running per-game counters. Profiles live in an
ExpiringCache and are rebuilt from scratch after they expire.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .cache import ExpiringCache
from .utils import safe_float

logger = logging.getLogger(__name__)

MAX_ACTIONS = 100
PROFILE_TTL_SECONDS = 1800

WIN_RESULTS = {"win"}
LOSS_RESULTS = {"lose", "loss"}


@dataclass
class GameAction:
    """One recorded game action."""
    timestamp: datetime
    game_type: str
    action: str
    bet_amount: float = 0.0
    payout: float = 0.0
    multiplier: float = 0.0
    result: Optional[str] = None
    response_time: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "game_type": self.game_type,
            "action": self.action,
            "bet_amount": self.bet_amount,
            "payout": self.payout,
            "multiplier": self.multiplier,
            "result": self.result,
        }


@dataclass
class GameStats:
    """Running counters for one game type."""
    total_games: int = 0
    total_wagered: float = 0.0
    total_won: float = 0.0
    wins: int = 0
    losses: int = 0
    last_played: Optional[datetime] = None

    @property
    def win_rate(self) -> float:
        decided = self.wins + self.losses
        return self.wins / decided if decided else 0.0


@dataclass
class BehaviorProfile:
    """Rolling behaviour record for a single user."""
    user_id: str
    first_seen: datetime
    actions: deque = field(default_factory=lambda: deque(maxlen=MAX_ACTIONS))
    games: dict[str, GameStats] = field(default_factory=dict)
    patterns: dict[str, list[str]] = field(default_factory=dict)
    risk_score: float = 0.0

    def record(self, action: GameAction) -> None:
        """Append an action and roll it into the per-game counters."""
        self.actions.append(action)

        stats = self.games.setdefault(action.game_type, GameStats())
        stats.total_games += 1
        stats.total_wagered += action.bet_amount
        stats.total_won += action.payout
        stats.last_played = action.timestamp

        if action.result in WIN_RESULTS:
            stats.wins += 1
        elif action.result in LOSS_RESULTS:
            stats.losses += 1

    def actions_for(self, game_type: str) -> list[GameAction]:
        return [a for a in self.actions if a.game_type == game_type]

    def last_activity(self) -> Optional[datetime]:
        return self.actions[-1].timestamp if self.actions else None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "first_seen": self.first_seen.isoformat(),
            "action_count": len(self.actions),
            "games": {
                game: {
                    "total_games": s.total_games,
                    "total_wagered": s.total_wagered,
                    "total_won": s.total_won,
                    "wins": s.wins,
                    "losses": s.losses,
                    "win_rate": round(s.win_rate, 4),
                }
                for game, s in self.games.items()
            },
            "patterns": dict(self.patterns),
            "risk_score": self.risk_score,
        }


class BehaviorProfileStore:
    """
    Cache of BehaviorProfiles keyed by user id.

    Concurrent actions for the same user are not serialized here; callers
    are expected to process one action per user at a time.
    """

    def __init__(self, clock=None, ttl_seconds: float = PROFILE_TTL_SECONDS):
        self.cache = ExpiringCache(default_ttl=ttl_seconds, clock=clock)
        self.clock = self.cache.clock

    def _key(self, user_id: str) -> str:
        return f"profile_{user_id}"

    def get(self, user_id: str) -> Optional[BehaviorProfile]:
        return self.cache.get(self._key(user_id))

    def get_or_create(self, user_id: str, now: Optional[datetime] = None) -> BehaviorProfile:
        profile = self.get(user_id)
        if profile is None:
            profile = BehaviorProfile(user_id=user_id, first_seen=now or self.clock.now())
        return profile

    def record_action(
        self,
        user_id: str,
        game_type: str,
        action: str,
        data: Optional[dict] = None,
        timestamp: Optional[datetime] = None
    ) -> BehaviorProfile:
        """
        Record a game action for a user.

        Args:
            user_id: Discord user ID.
            game_type: Game identifier.
            action: Action name such as "bet" or "win".
            data: Optional bet_amount, payout, multiplier, result, response_time.
            timestamp: When the action happened. Defaults to now.

        Returns:
            The updated profile.
        """
        data = data or {}
        now = timestamp or self.clock.now()

        profile = self.get_or_create(user_id, now)
        profile.record(GameAction(
            timestamp=now,
            game_type=game_type,
            action=action,
            bet_amount=safe_float(data.get("bet_amount")),
            payout=safe_float(data.get("payout")),
            multiplier=safe_float(data.get("multiplier")),
            result=data.get("result"),
            response_time=data.get("response_time"),
        ))

        # Every write refreshes the TTL
        self.cache.set(self._key(user_id), profile)
        return profile

    def user_ids(self) -> list[str]:
        return [key[len("profile_"):] for key in self.cache.keys("profile_")]

    def active_since(self, cutoff: datetime) -> list[BehaviorProfile]:
        """Profiles with at least one action at or after cutoff."""
        active = []
        for user_id in self.user_ids():
            profile = self.get(user_id)
            last = profile.last_activity() if profile else None
            if last and last >= cutoff:
                active.append(profile)
        return active

    def purge_expired(self) -> int:
        return self.cache.purge_expired()

    def __len__(self) -> int:
        return len(self.cache.keys("profile_"))
