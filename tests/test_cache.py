"""
Tests for the expiring cache and the economy context.
"""

from datetime import datetime, timezone

import pytest

from economy_guard.cache import ExpiringCache
from economy_guard.context import DEFAULT_HEALTH_SCORE, EconomyContext, GlobalControls, ManualClock


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def cache(clock):
    return ExpiringCache(default_ttl=60, clock=clock)


class TestExpiringCache:
    """Tests for ExpiringCache."""

    def test_get_before_expiry(self, cache, clock):
        cache.set("a", 1)
        clock.advance(59)
        assert cache.get("a") == 1
        assert "a" in cache

    def test_entry_expires(self, cache, clock):
        cache.set("a", 1)
        clock.advance(60)
        assert cache.get("a") is None
        assert "a" not in cache

    def test_custom_ttl(self, cache, clock):
        cache.set("short", 1, ttl=5)
        cache.set("long", 2, ttl=500)
        clock.advance(100)
        assert cache.get("short", "gone") == "gone"
        assert cache.get("long") == 2

    def test_zero_ttl_never_expires(self, clock):
        cache = ExpiringCache(clock=clock)
        cache.set("forever", True, ttl=0)
        clock.advance(days=365)
        assert cache.get("forever") is True
        assert cache.expires_at("forever") is None

    def test_set_refreshes_expiry(self, cache, clock):
        cache.set("a", 1)
        clock.advance(50)
        cache.set("a", 2)
        clock.advance(50)
        assert cache.get("a") == 2

    def test_keys_with_prefix(self, cache, clock):
        cache.set("limit_1", {})
        cache.set("limit_2", {}, ttl=1)
        cache.set("restriction_1", {})
        clock.advance(2)
        assert cache.keys("limit_") == ["limit_1"]

    def test_purge_expired(self, cache, clock):
        cache.set("a", 1, ttl=10)
        cache.set("b", 2, ttl=10)
        cache.set("c", 3, ttl=100)
        clock.advance(11)
        assert cache.purge_expired() == 2
        assert len(cache) == 1

    def test_delete(self, cache):
        cache.set("a", 1)
        assert cache.delete("a") is True
        assert cache.delete("a") is False

    def test_hit_miss_stats(self, cache):
        cache.set("a", 1)
        cache.get("a")
        cache.get("missing")
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1


class TestEconomyContext:
    """Tests for EconomyContext and GlobalControls."""

    def test_default_controls(self):
        context = EconomyContext()
        assert context.controls.emergency_mode_active is False
        assert context.controls.economic_health_score == DEFAULT_HEALTH_SCORE

    def test_update_controls_replaces_snapshot(self, clock):
        context = EconomyContext(clock=clock)
        before = context.controls
        after = context.update_controls(emergency_mode_active=True, emergency_reason="test")

        assert before.emergency_mode_active is False
        assert after.emergency_mode_active is True
        assert after.updated_at == clock.now()
        assert context.controls is after

    def test_controls_are_frozen(self):
        controls = GlobalControls()
        with pytest.raises(Exception):
            controls.emergency_mode_active = True

    def test_manual_clock(self):
        clock = ManualClock(datetime(2024, 6, 1, tzinfo=timezone.utc))
        clock.advance(minutes=5)
        assert clock.now() == datetime(2024, 6, 1, 0, 5, tzinfo=timezone.utc)
