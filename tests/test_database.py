"""
Tests for the database module.
"""

import json
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from economy_guard.database import Database, LedgerUnavailable


@pytest.fixture
def test_db():
    """Create a temporary test database."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db = Database(db_path=path)
    yield db
    os.unlink(path)


class TestDatabase:
    """Tests for Database class."""

    def test_init_creates_tables(self, test_db):
        """Test that initialization creates all required tables."""
        stats = test_db.get_stats()
        assert stats["total_users"] == 0
        assert stats["total_games"] == 0
        assert stats["flagged_users"] == 0
        assert stats["open_risk_alerts"] == 0

    def test_balance_roundtrip(self, test_db):
        """Test inserting and updating balances."""
        test_db.upsert_user_balance("u1", wallet=100.0, bank=50.0)
        assert test_db.get_user_wealth("u1") == 150.0

        test_db.upsert_user_balance("u1", wallet=10.0, bank=0.0)
        assert test_db.get_user_balance("u1")["wallet"] == 10.0
        assert test_db.get_stats()["total_users"] == 1

    def test_unknown_user_has_zero_wealth(self, test_db):
        assert test_db.get_user_wealth("nobody") == 0.0

    def test_record_game_result_updates_stats(self, test_db):
        """Test that settled rounds roll into lifetime stats."""
        test_db.record_game_result("u1", "slots", 100, 300, won=True, multiplier=3)
        test_db.record_game_result("u1", "slots", 200, 0, won=False)

        stats = test_db.get_user_stats("u1")
        assert stats["wins"] == 1
        assert stats["losses"] == 1
        assert stats["total_wagered"] == 300
        assert stats["total_won"] == 300
        assert stats["biggest_win"] == 200
        assert stats["biggest_loss"] == 200

    def test_recent_games_and_favorite(self, test_db):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for i, game in enumerate(["slots", "crash", "crash", "keno", "crash", "slots", "plinko"]):
            test_db.record_game_result("u1", game, 100, 0, won=False, played_at=start + timedelta(minutes=i))

        recent = test_db.get_recent_games("u1")
        assert len(recent) == 5
        assert recent[0]["game_type"] == "plinko"
        assert test_db.get_favorite_game("u1") == "crash"
        assert test_db.get_user_stats("nobody") is None

    def test_economy_participants_filters(self, test_db):
        """Test that statistics only include real economy participants."""
        test_db.upsert_user_balance("rich", wallet=900, bank=100)
        test_db.upsert_user_balance("poor", wallet=10)
        test_db.upsert_user_balance("broke", wallet=0)
        test_db.upsert_user_balance("bot", wallet=500, off_economy=True)
        test_db.upsert_user_balance("owner", wallet=700)
        test_db.upsert_user_balance("whale", wallet=5000)
        test_db.record_game_result("poor", "slots", 5, 0, won=False)

        rows = test_db.get_economy_participants(excluded_ids=["owner"], max_wealth=5000)

        assert [row["user_id"] for row in rows] == ["rich", "poor"]
        assert rows[0]["wealth"] == 1000
        assert rows[0]["wins"] is None
        assert rows[1]["losses"] == 1

    def test_audit_records(self, test_db):
        test_db.record_flagged_user("u1", 35, "risk", ["rapid_betting"], {"game_type": "slots"})
        alert_id = test_db.record_risk_alert("u1", 110, {"game_type": "blackjack"})
        test_db.record_audit_event("unblock_user", "admin", {"user_id": "u1"})

        flagged = test_db.get_flagged_users()
        assert json.loads(flagged[0]["patterns"]) == ["rapid_betting"]
        assert test_db.get_risk_alerts("u1", open_only=True)[0]["id"] == alert_id
        assert test_db.get_audit_log(event_type="unblock_user")[0]["actor"] == "admin"

        assert test_db.resolve_risk_alerts("u1") == 1
        assert test_db.get_risk_alerts("u1", open_only=True) == []
        assert test_db.get_stats()["open_risk_alerts"] == 0

    def test_sqlite_errors_become_ledger_unavailable(self, test_db):
        with pytest.raises(LedgerUnavailable):
            with test_db.get_connection() as conn:
                conn.execute("SELECT * FROM missing_table")
