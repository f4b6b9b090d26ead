"""
Tests for the notifications module.
"""

import json

import httpx
import pytest

from economy_guard.context import ManualClock
from economy_guard.notifications import (
    COLOR_EMERGENCY,
    COLOR_RECOVERY,
    COLOR_WARNING,
    AlertDeduplicator,
    EconomicNotifier,
    NotificationConfig,
    WebhookSink,
)

NOTIFY_URL = "https://discord.test/api/webhooks/notify"
MONITOR_URL = "https://discord.test/api/webhooks/monitor"


class RecordingSink:
    """Sink double that records messages per channel."""

    def __init__(self, result=True):
        self.result = result
        self.messages = []

    async def send(self, channel_ref, message):
        self.messages.append((channel_ref, message))
        return self.result


def field_value(embed, name):
    for field in embed["fields"]:
        if field["name"] == name:
            return field["value"]
    return None


@pytest.fixture
def config():
    return NotificationConfig(notification_webhook_url=NOTIFY_URL, monitoring_webhook_url=MONITOR_URL)


@pytest.fixture
def clock():
    return ManualClock()


class TestWebhookSink:
    """Tests for WebhookSink."""

    def test_channel_fallback(self, config):
        sink = WebhookSink(config)
        assert sink.resolve_channel("notification") == NOTIFY_URL
        assert sink.resolve_channel("emergency") == NOTIFY_URL
        assert sink.resolve_channel("monitoring") == MONITOR_URL
        assert sink.resolve_channel("https://example.test/hook") == "https://example.test/hook"
        assert sink.resolve_channel("unknown") == ""

    @pytest.mark.asyncio
    async def test_successful_post(self, config):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = WebhookSink(config, client=client)

        assert await sink.send("monitoring", {"embeds": [{"title": "hello"}]}) is True
        assert str(requests[0].url) == MONITOR_URL
        assert json.loads(requests[0].content) == {"embeds": [{"title": "hello"}]}
        assert sink.sent_count == 1
        await sink.close()

    @pytest.mark.asyncio
    async def test_server_error_retried_then_reported(self, config):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(500)

        sink = WebhookSink(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        assert await sink.send("notification", {"content": "x"}) is False
        assert len(attempts) == 3
        assert sink.failed_count == 1
        await sink.close()

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, config):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(404)

        sink = WebhookSink(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        assert await sink.send("notification", {"content": "x"}) is False
        assert len(attempts) == 1
        await sink.close()

    @pytest.mark.asyncio
    async def test_unconfigured_channel_dropped(self):
        sink = WebhookSink(NotificationConfig())
        assert await sink.send("emergency", {"content": "x"}) is False
        assert sink.failed_count == 0


class TestAlertDeduplicator:
    """Tests for AlertDeduplicator."""

    def test_duplicate_suppressed_within_window(self, clock):
        dedup = AlertDeduplicator(window_minutes=30, clock=clock)
        assert dedup.should_send("risky_player", "u1")
        assert not dedup.should_send("risky_player", "u1")
        assert dedup.should_send("risky_player", "u2")

    def test_window_expiry(self, clock):
        dedup = AlertDeduplicator(window_minutes=30, clock=clock)
        dedup.should_send("concentration", "0.99")
        clock.advance(minutes=31)
        assert dedup.should_send("concentration", "0.99")


class TestEconomicNotifier:
    """Tests for EconomicNotifier embeds and delivery."""

    def test_emergency_embed(self, config, clock):
        notifier = EconomicNotifier(sink=RecordingSink(), config=config, clock=clock)
        embed = notifier.build_emergency_embed({
            "health_score": 5,
            "emergency_mode": True,
            "circuit_breakers": [{"type": "wealth_concentration", "value": 0.995, "threshold": 0.98}],
            "emergency_measures": {"multiplier_reduction": 0.25, "house_edge_increase": 0.02, "max_bet": 50000},
            "recommendations": ["a", "b", "c", "d", "e", "f"],
        })

        assert embed["color"] == COLOR_EMERGENCY
        assert field_value(embed, "Health Score") == "5.0/100"
        assert "wealth_concentration" in field_value(embed, "Circuit Breakers Triggered")
        assert "Max Bet: $50,000" in field_value(embed, "Emergency Measures")
        assert field_value(embed, "Recommendations").count("\n") == 4
        assert embed["timestamp"] == clock.now().isoformat()

    def test_status_embed_color(self, config, clock):
        notifier = EconomicNotifier(sink=RecordingSink(), config=config, clock=clock)
        assert notifier.build_status_embed({"health_score": 80})["color"] == COLOR_RECOVERY
        assert notifier.build_status_embed({"health_score": 50})["color"] == COLOR_WARNING
        assert notifier.build_status_embed({"health_score": 10})["color"] == COLOR_EMERGENCY

    def test_risky_player_embed(self, config, clock):
        notifier = EconomicNotifier(sink=RecordingSink(), config=config, clock=clock)
        embed = notifier.build_risky_player_embed(
            "u1",
            105,
            ["consistent_wins", "perfect_timing"],
            stats={"wins": 3, "losses": 1, "total_wagered": 4000, "total_won": 6000, "biggest_win": 2000},
            recent_games=[{"game_type": "blackjack", "bet_amount": 1000, "payout": 2000, "won": 1}],
            context={"game_type": "blackjack"},
        )

        assert field_value(embed, "Risk Score") == "**105.0**"
        assert field_value(embed, "Risk Factors") == "Consistent Wins, Perfect Timing"
        assert "(WIN)" in field_value(embed, "Last 5 Games")
        assert "Win Rate: 75.0%" in field_value(embed, "Player Stats")

    @pytest.mark.asyncio
    async def test_channels_per_event(self, config, clock):
        sink = RecordingSink()
        notifier = EconomicNotifier(sink=sink, config=config, clock=clock)

        await notifier.send_emergency_notification({"health_score": 10})
        await notifier.send_recovery_notification({"health_score": 90})
        await notifier.send_risky_player_alert("u1", 100, ["consistent_wins"])

        assert [channel for channel, _ in sink.messages] == ["emergency", "notification", "monitoring"]

    @pytest.mark.asyncio
    async def test_risky_player_alert_deduplicated(self, config, clock):
        sink = RecordingSink()
        notifier = EconomicNotifier(sink=sink, config=config, clock=clock)

        assert await notifier.send_risky_player_alert("u1", 100, ["consistent_wins"])
        assert not await notifier.send_risky_player_alert("u1", 110, ["consistent_wins"])
        assert len(sink.messages) == 1

    @pytest.mark.asyncio
    async def test_sink_failure_reported_as_false(self, config, clock):
        notifier = EconomicNotifier(sink=RecordingSink(result=False), config=config, clock=clock)
        assert await notifier.send_status_notification({"health_score": 50}) is False
