"""
Tests for the admin API.
"""

import os
import tempfile

import pytest
from fastapi.testclient import TestClient

from economy_guard.context import EconomyContext, ManualClock
from economy_guard.database import Database
from economy_guard.economic_manager import EconomicManager
from economy_guard.web.app import create_app


@pytest.fixture
def test_db():
    """Create a temporary test database."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db = Database(db_path=path)
    yield db
    os.unlink(path)


@pytest.fixture
def manager(test_db):
    return EconomicManager(database=test_db, context=EconomyContext(clock=ManualClock()))


@pytest.fixture
def client(manager):
    return TestClient(create_app(manager))


class TestStatusEndpoints:
    """Tests for read-only endpoints."""

    def test_status(self, client):
        response = client.get("/api/status")
        assert response.status_code == 200
        data = response.json()
        assert data["emergency_mode"] is False
        assert "slots" in data["game_controls"]

    def test_report(self, client):
        response = client.get("/api/report")
        assert response.status_code == 200
        assert response.json()["fairness"]["passed"] is True

    def test_fairness(self, client):
        data = client.get("/api/fairness").json()
        assert "blackjack" in data["games"]
        assert data["verification"]["passed"] is True

    def test_analysis_on_empty_ledger(self, client):
        response = client.post("/api/analysis")
        assert response.status_code == 200
        data = response.json()
        assert data["entered_emergency"] is False
        assert data["circuit_breakers"] == []

    def test_analysis_ledger_unavailable(self, client, manager, monkeypatch):
        from economy_guard.database import LedgerUnavailable

        def unavailable(*args, **kwargs):
            raise LedgerUnavailable("database is locked")

        monkeypatch.setattr(manager.db, "get_economy_participants", unavailable)
        assert client.post("/api/analysis").status_code == 503


class TestControlEndpoints:
    """Tests for operator controls."""

    def test_toggle_emergency(self, client, manager):
        response = client.post("/api/emergency", json={"active": True, "reason": "maintenance"})
        assert response.status_code == 200
        assert response.json()["emergency_mode"] is True
        assert manager.context.controls.manual_override

        client.post("/api/emergency", json={"active": False})
        assert not manager.emergency_mode

    def test_update_game(self, client, manager):
        response = client.patch("/api/games/slots", json={"max_bet": 1000})
        assert response.status_code == 200
        assert response.json()["controls"]["max_bet"] == 1000
        assert manager.game_controls["slots"].max_bet == 1000

    def test_update_null_field_ignored(self, client, manager):
        response = client.patch("/api/games/slots", json={"max_bet": None, "multiplier_reduction": 0.1})
        assert response.status_code == 200
        assert response.json()["controls"]["max_bet"] == 300_000
        assert manager.game_controls["slots"].multiplier_reduction == 0.1

    def test_update_unknown_game(self, client):
        assert client.patch("/api/games/tiddlywinks", json={"max_bet": 1000}).status_code == 404

    def test_update_invalid_value(self, client):
        assert client.patch("/api/games/slots", json={"multiplier_reduction": 2}).status_code == 422


class TestUserEndpoints:
    """Tests for per-user endpoints."""

    def test_user_risk(self, client, manager):
        manager.anti_abuse.reduce_betting_limits("u1", 50)
        data = client.get("/api/users/u1/risk").json()
        assert data["risk_level"] == "UNKNOWN"
        assert data["blocked"] is False
        assert data["bet_limit"] == 5000

    def test_unblock(self, client, manager):
        manager.anti_abuse.block_user("u1")
        response = client.delete("/api/users/u1/block")
        assert response.status_code == 200
        assert not manager.anti_abuse.is_blocked("u1")

    def test_unblock_not_blocked(self, client):
        assert client.delete("/api/users/u1/block").status_code == 404
