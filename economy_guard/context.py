"""
Shared runtime context for the economy components.

Holds the clock and the global economic controls. Components receive an
EconomyContext through their constructors instead of reaching for
module-level state, so tests can drive time and controls directly.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)

# Health score assumed before the first analysis cycle completes
DEFAULT_HEALTH_SCORE = 75.0


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to. Used by tests and replays."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        """Move the clock forward and return the new time."""
        self._now = self._now + timedelta(seconds=seconds, **kwargs)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when


@dataclass(frozen=True)
class GlobalControls:
    """Immutable snapshot of server-wide economic controls."""
    emergency_mode_active: bool = False
    economic_health_score: float = DEFAULT_HEALTH_SCORE
    emergency_started_at: Optional[datetime] = None
    emergency_reason: Optional[str] = None
    manual_override: bool = False
    house_edge_adjustment: float = 0.0
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "emergency_mode_active": self.emergency_mode_active,
            "economic_health_score": self.economic_health_score,
            "emergency_started_at": self.emergency_started_at.isoformat() if self.emergency_started_at else None,
            "emergency_reason": self.emergency_reason,
            "manual_override": self.manual_override,
            "house_edge_adjustment": self.house_edge_adjustment,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class EconomyContext:
    """
    Clock plus the current GlobalControls snapshot.

    Readers take `context.controls` and work with that object; writers
    build a new snapshot and swap it in under the lock. A reader never
    sees a half-applied update.
    """

    def __init__(self, clock=None, controls: Optional[GlobalControls] = None):
        self.clock = clock or SystemClock()
        self._controls = controls or GlobalControls()
        self._lock = threading.Lock()

    def now(self) -> datetime:
        return self.clock.now()

    @property
    def controls(self) -> GlobalControls:
        return self._controls

    def set_controls(self, controls: GlobalControls) -> GlobalControls:
        """Replace the controls snapshot."""
        with self._lock:
            self._controls = controls
        return controls

    def update_controls(self, **changes) -> GlobalControls:
        """
        Apply field changes to the current snapshot atomically.

        Args:
            **changes: GlobalControls fields to replace.

        Returns:
            The new snapshot.
        """
        with self._lock:
            changes.setdefault("updated_at", self.clock.now())
            self._controls = replace(self._controls, **changes)
            return self._controls
