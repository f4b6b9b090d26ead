"""
Utility functions for Economy Guard.

This module provides helper functions for common operations
like number coercion, formatting, and serialization.
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

logger = logging.getLogger(__name__)


def safe_float(value: Any, default: float = 0.0) -> float:
    """
    Safely convert a value to float.

    Args:
        value: Value to convert.
        default: Default value if conversion fails.

    Returns:
        Float value or default.
    """
    if value is None:
        return default
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def format_amount(amount: float) -> str:
    """
    Format a currency amount for display.

    Args:
        amount: Amount in coins.

    Returns:
        Formatted string like "$1.23B", "$4.50M" or "$12,345".
    """
    sign = "-" if amount < 0 else ""
    value = abs(amount)
    if value >= 1_000_000_000:
        return f"{sign}${value / 1_000_000_000:.2f}B"
    elif value >= 1_000_000:
        return f"{sign}${value / 1_000_000:.2f}M"
    else:
        return f"{sign}${value:,.0f}"


def format_percent(ratio: float, digits: int = 1) -> str:
    """Format a 0-1 ratio as a percentage string."""
    return f"{ratio * 100:.{digits}f}%"


def truncate(text: str, limit: int = 1024) -> str:
    """
    Truncate text to fit a Discord embed field.

    Args:
        text: Text to truncate.
        limit: Maximum length including the ellipsis.

    Returns:
        Text no longer than limit.
    """
    if len(text) <= limit:
        return text
    return text[:limit - 3] + "..."


def json_dumps_safe(obj: Any) -> str:
    """
    Safely serialize an object to JSON.

    Handles Decimal, datetime, set, and other non-serializable types.

    Args:
        obj: Object to serialize.

    Returns:
        JSON string.
    """
    def default_serializer(o):
        if isinstance(o, Decimal):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, (set, frozenset)):
            return sorted(o)
        raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")

    return json.dumps(obj, default=default_serializer)
