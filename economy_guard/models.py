"""
Pydantic models for game controls and admin payloads.

These models validate the game controls owned by the economic manager
and the bodies accepted by the admin API.
"""

from typing import Optional
from pydantic import BaseModel, Field


class GameControl(BaseModel):
    """Per-game betting and payout controls."""

    max_bet: float = Field(default=100000.0, gt=0)
    house_edge_adjustment: float = Field(default=0.0, ge=0, le=0.5)
    multiplier_reduction: float = Field(default=0.0, ge=0, le=0.8)
    max_multiplier: Optional[float] = Field(default=None, gt=0)


class GameControlUpdate(BaseModel):
    """Partial update for a game's controls. Unset fields are left alone."""

    max_bet: Optional[float] = Field(default=None, gt=0)
    house_edge_adjustment: Optional[float] = Field(default=None, ge=0, le=0.5)
    multiplier_reduction: Optional[float] = Field(default=None, ge=0, le=0.8)
    max_multiplier: Optional[float] = Field(default=None, gt=0)


class EmergencyRequest(BaseModel):
    """Manual emergency mode toggle."""

    active: bool
    reason: str = "Manual override"
