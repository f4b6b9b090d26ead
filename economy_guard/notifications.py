"""
Operator notifications for Economy Guard.

This module delivers economic events to Discord channels:
- Webhook sink with retries (the only transport)
- Embeds for emergency activation, recovery and periodic status
- Wealth concentration and high-risk player alerts
- Alert deduplication

Delivery is best effort. Failures are logged and reported as False,
never raised to the caller.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from .config import settings
from .context import SystemClock
from .utils import format_amount, format_percent, truncate

logger = logging.getLogger(__name__)

# Embed colors
COLOR_EMERGENCY = 0xFF0000
COLOR_RECOVERY = 0x00FF00
COLOR_WARNING = 0xFFFF00
COLOR_CONCENTRATION = 0xFFAA00
COLOR_HIGH_RISK = 0xFF8C00

FOOTER_TEXT = "Economic Management System"

NOTIFICATION_CHANNEL = "notification"
EMERGENCY_CHANNEL = "emergency"
MONITORING_CHANNEL = "monitoring"


@dataclass
class NotificationConfig:
    """Configuration for the notification sink."""

    notification_webhook_url: str = ""
    emergency_webhook_url: str = ""  # Falls back to the notification channel
    monitoring_webhook_url: str = ""  # Falls back to the notification channel
    timeout_seconds: float = 10.0

    # Deduplication
    dedup_window_minutes: int = 30

    @classmethod
    def from_settings(cls) -> "NotificationConfig":
        return cls(
            notification_webhook_url=settings.notification_webhook_url,
            emergency_webhook_url=settings.emergency_webhook_url,
            monitoring_webhook_url=settings.monitoring_webhook_url,
            timeout_seconds=settings.request_timeout_seconds,
        )


class WebhookDeliveryError(Exception):
    """Transient webhook failure worth retrying."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class AlertDeduplicator:
    """Prevents duplicate alerts for the same event."""

    def __init__(self, window_minutes: int = 30, clock=None):
        self.window = timedelta(minutes=window_minutes)
        self.clock = clock or SystemClock()
        self.sent_alerts: dict[str, datetime] = {}

    def _generate_key(self, alert_type: str, identifier: str) -> str:
        """Generate unique key for an alert."""
        raw = f"{alert_type}:{identifier}"
        return hashlib.md5(raw.encode()).hexdigest()

    def should_send(self, alert_type: str, identifier: str) -> bool:
        """Check if alert should be sent (not duplicate)."""
        key = self._generate_key(alert_type, identifier)
        now = self.clock.now()

        # Clean old entries
        cutoff = now - self.window
        self.sent_alerts = {k: v for k, v in self.sent_alerts.items() if v > cutoff}

        if key in self.sent_alerts:
            return False

        self.sent_alerts[key] = now
        return True


class WebhookSink:
    """
    Posts structured messages to Discord webhooks.

    Channel references are either one of the configured channel names
    ("notification", "emergency", "monitoring") or a webhook URL.
    """

    def __init__(self, config: Optional[NotificationConfig] = None, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the sink.

        Args:
            config: Webhook URLs and timeouts. Uses settings if not provided.
            client: Preconfigured HTTP client, mainly for tests.
        """
        self.config = config or NotificationConfig.from_settings()
        self._client = client
        self.sent_count = 0
        self.failed_count = 0

    def resolve_channel(self, channel_ref: str) -> str:
        """Map a channel name to its webhook URL."""
        if channel_ref.startswith(("http://", "https://")):
            return channel_ref

        fallback = self.config.notification_webhook_url
        urls = {
            NOTIFICATION_CHANNEL: fallback,
            EMERGENCY_CHANNEL: self.config.emergency_webhook_url or fallback,
            MONITORING_CHANNEL: self.config.monitoring_webhook_url or fallback,
        }
        return urls.get(channel_ref, "")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @retry(
        stop=stop_after_attempt(settings.max_retries),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type((httpx.TransportError, WebhookDeliveryError)),
        reraise=True,
    )
    async def _post(self, url: str, message: dict) -> None:
        client = await self._get_client()
        response = await client.post(url, json=message)

        if response.status_code == 429 or response.status_code >= 500:
            raise WebhookDeliveryError(
                f"Webhook returned {response.status_code}",
                status_code=response.status_code,
            )
        response.raise_for_status()

    async def send(self, channel_ref: str, message: dict) -> bool:
        """
        Deliver a message.

        Args:
            channel_ref: Channel name or webhook URL.
            message: Discord webhook payload, e.g. {"embeds": [...]}.

        Returns:
            True if the webhook accepted the message.
        """
        url = self.resolve_channel(channel_ref)
        if not url:
            logger.debug(f"No webhook configured for channel '{channel_ref}', dropping message")
            return False

        try:
            await self._post(url, message)
            self.sent_count += 1
            return True
        except Exception as e:
            self.failed_count += 1
            logger.error(f"Failed to send notification to {channel_ref}: {e}")
            return False


class EconomicNotifier:
    """
    Formats economic events as Discord embeds and hands them to a sink.
    """

    def __init__(self, sink=None, config: Optional[NotificationConfig] = None, clock=None):
        self.config = config or NotificationConfig.from_settings()
        self.sink = sink or WebhookSink(self.config)
        self.clock = clock or SystemClock()
        self.deduplicator = AlertDeduplicator(self.config.dedup_window_minutes, clock=self.clock)

    def _timestamp(self) -> str:
        return self.clock.now().isoformat()

    async def _deliver(self, channel: str, embed: dict, label: str) -> bool:
        try:
            sent = await self.sink.send(channel, {"embeds": [embed]})
        except Exception as e:
            logger.error(f"Failed to send {label}: {e}")
            return False

        if sent:
            logger.info(f"{label.capitalize()} sent successfully")
        return sent

    # ========== Embed builders ==========

    def build_emergency_embed(self, data: dict) -> dict:
        """
        Build the emergency activation embed.

        Args:
            data: health_score, emergency_mode, initialized, circuit_breakers,
                emergency_measures and recommendations.

        Returns:
            Discord embed dict.
        """
        embed = {
            "title": "ECONOMIC EMERGENCY ACTIVATED",
            "description": "Critical economic conditions detected - Emergency measures in effect",
            "color": COLOR_EMERGENCY,
            "fields": [
                {"name": "Health Score", "value": f"{data.get('health_score', 0):.1f}/100", "inline": True},
                {"name": "Emergency Mode", "value": "ACTIVE" if data.get("emergency_mode", True) else "INACTIVE", "inline": True},
                {"name": "Systems Status", "value": "ONLINE" if data.get("initialized", True) else "OFFLINE", "inline": True},
            ],
            "timestamp": self._timestamp(),
            "footer": {"text": FOOTER_TEXT},
        }

        if data.get("reason"):
            embed["fields"].append({"name": "Reason", "value": truncate(str(data["reason"])), "inline": False})

        breakers = data.get("circuit_breakers") or []
        if breakers:
            breaker_text = "\n".join(
                f"- {b['type']}: {b['value']:.4g} (threshold: {b['threshold']:.4g})" for b in breakers
            )
            embed["fields"].append({
                "name": "Circuit Breakers Triggered",
                "value": truncate(breaker_text),
                "inline": False,
            })

        measures = data.get("emergency_measures") or {}
        measure_lines = []
        if measures.get("multiplier_reduction"):
            measure_lines.append(f"Multiplier Reduction: {format_percent(measures['multiplier_reduction'])}")
        if measures.get("house_edge_increase"):
            measure_lines.append(f"House Edge Increase: +{format_percent(measures['house_edge_increase'])}")
        if measures.get("max_bet"):
            measure_lines.append(f"Max Bet: {format_amount(measures['max_bet'])}")
        if measure_lines:
            embed["fields"].append({"name": "Emergency Measures", "value": "\n".join(measure_lines), "inline": False})

        recommendations = (data.get("recommendations") or [])[:5]
        if recommendations:
            embed["fields"].append({
                "name": "Recommendations",
                "value": truncate("\n".join(f"- {rec}" for rec in recommendations)),
                "inline": False,
            })

        return embed

    def build_recovery_embed(self, data: dict) -> dict:
        return {
            "title": "ECONOMIC RECOVERY",
            "description": "Emergency conditions resolved - Normal operations resumed",
            "color": COLOR_RECOVERY,
            "fields": [
                {"name": "Health Score", "value": f"{data.get('health_score', 0):.1f}/100", "inline": True},
                {"name": "Systems Status", "value": "ONLINE" if data.get("initialized", True) else "OFFLINE", "inline": True},
                {"name": "Status", "value": "NORMAL OPERATIONS", "inline": True},
            ],
            "timestamp": self._timestamp(),
            "footer": {"text": FOOTER_TEXT},
        }

    def build_status_embed(self, data: dict) -> dict:
        health = data.get("health_score", 0)
        if health >= 70:
            color = COLOR_RECOVERY
        elif health >= 40:
            color = COLOR_WARNING
        else:
            color = COLOR_EMERGENCY

        embed = {
            "title": "Economic Status Update",
            "description": "Periodic economic system status report",
            "color": color,
            "fields": [
                {"name": "Health Score", "value": f"{health:.1f}/100", "inline": True},
                {"name": "Emergency Mode", "value": "ACTIVE" if data.get("emergency_mode") else "INACTIVE", "inline": True},
                {"name": "Systems Status", "value": "ONLINE" if data.get("initialized", True) else "OFFLINE", "inline": True},
            ],
            "timestamp": self._timestamp(),
            "footer": {"text": FOOTER_TEXT},
        }

        for key in ("tracked_users", "blocked_users", "flagged_users"):
            if key in data:
                embed["fields"].append({
                    "name": key.replace("_", " ").title(),
                    "value": str(data[key]),
                    "inline": True,
                })
        return embed

    def build_wealth_concentration_embed(self, data: dict) -> dict:
        return {
            "title": "Wealth Concentration Alert",
            "description": "High wealth concentration detected in the economy",
            "color": COLOR_CONCENTRATION,
            "fields": [
                {"name": "Concentration Level", "value": format_percent(data.get("concentration", 0), 2), "inline": True},
                {"name": "Affected Users", "value": f"{data.get('user_count', 0)} users", "inline": True},
                {"name": "Total Wealth", "value": format_amount(data.get("total_wealth", 0)), "inline": True},
            ],
            "timestamp": self._timestamp(),
            "footer": {"text": FOOTER_TEXT},
        }

    def build_risky_player_embed(
        self,
        user_id: str,
        risk_score: float,
        patterns: list[str],
        stats: Optional[dict] = None,
        recent_games: Optional[list[dict]] = None,
        context: Optional[dict] = None
    ) -> dict:
        """
        Build the high-risk player report.

        Args:
            user_id: Discord user ID.
            risk_score: Raw risk score that triggered the report.
            patterns: Detector labels that fired.
            stats: Ledger stats (wins, losses, total_wagered, total_won, biggest_win, favorite_game).
            recent_games: Up to five recent rounds from the ledger.
            context: Triggering action and game.

        Returns:
            Discord embed dict.
        """
        context = context or {}
        embed = {
            "title": "HIGH RISK PLAYER DETECTED",
            "description": f"<@{user_id}> crossed the suspension threshold and was blocked pending review.",
            "color": COLOR_HIGH_RISK,
            "fields": [
                {"name": "User ID", "value": f"`{user_id}`", "inline": True},
                {"name": "Risk Score", "value": f"**{risk_score:.1f}**", "inline": True},
                {"name": "Game", "value": str(context.get("game_type", "unknown")), "inline": True},
            ],
            "timestamp": self._timestamp(),
            "footer": {"text": "Blocked pending manual review"},
        }

        if patterns:
            embed["fields"].append({
                "name": "Risk Factors",
                "value": ", ".join(p.replace("_", " ").title() for p in patterns),
                "inline": False,
            })

        if recent_games:
            lines = []
            for game in recent_games[:5]:
                outcome = "WIN" if game.get("won") else "LOSS"
                lines.append(
                    f"{game.get('game_type', '?')}: {format_amount(game.get('bet_amount', 0))} -> "
                    f"{format_amount(game.get('payout', 0))} ({outcome})"
                )
            embed["fields"].append({"name": "Last 5 Games", "value": truncate("\n".join(lines)), "inline": False})

        if stats:
            wins = stats.get("wins") or 0
            losses = stats.get("losses") or 0
            total = wins + losses
            net = (stats.get("total_won") or 0) - (stats.get("total_wagered") or 0)
            summary = [
                f"Total Bets: {total:,}",
                f"Win Rate: {format_percent(wins / total) if total else 'N/A'}",
                f"Total Wagered: {format_amount(stats.get('total_wagered') or 0)}",
                f"Net Profit/Loss: {format_amount(net)}",
                f"Biggest Win: {format_amount(stats.get('biggest_win') or 0)}",
            ]
            if stats.get("favorite_game"):
                summary.append(f"Favorite Game: {stats['favorite_game']}")
            embed["fields"].append({"name": "Player Stats", "value": "\n".join(summary), "inline": False})

        return embed

    # ========== Senders ==========

    async def send_emergency_notification(self, data: dict) -> bool:
        return await self._deliver(EMERGENCY_CHANNEL, self.build_emergency_embed(data), "emergency notification")

    async def send_recovery_notification(self, data: dict) -> bool:
        return await self._deliver(NOTIFICATION_CHANNEL, self.build_recovery_embed(data), "recovery notification")

    async def send_status_notification(self, data: dict) -> bool:
        return await self._deliver(NOTIFICATION_CHANNEL, self.build_status_embed(data), "status notification")

    async def send_wealth_concentration_alert(self, data: dict) -> bool:
        """Send a concentration alert, at most once per dedup window per level."""
        level = f"{data.get('concentration', 0):.2f}"
        if not self.deduplicator.should_send("concentration", level):
            logger.debug(f"Duplicate wealth concentration alert suppressed ({level})")
            return False
        return await self._deliver(
            NOTIFICATION_CHANNEL, self.build_wealth_concentration_embed(data), "wealth concentration alert"
        )

    async def send_risky_player_alert(
        self,
        user_id: str,
        risk_score: float,
        patterns: list[str],
        stats: Optional[dict] = None,
        recent_games: Optional[list[dict]] = None,
        context: Optional[dict] = None
    ) -> bool:
        """Send the high-risk player report to the monitoring channel."""
        if not self.deduplicator.should_send("risky_player", user_id):
            logger.debug(f"Duplicate high-risk alert suppressed for user {user_id}")
            return False

        embed = self.build_risky_player_embed(user_id, risk_score, patterns, stats, recent_games, context)
        return await self._deliver(MONITORING_CHANNEL, embed, "high-risk player alert")

    async def close(self) -> None:
        close = getattr(self.sink, "close", None)
        if close:
            await close()
