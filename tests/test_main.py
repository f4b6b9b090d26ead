"""
Tests for the job runner and CLI output.
"""

import asyncio
import os
import tempfile

import pytest
import uvicorn
from fastapi.testclient import TestClient

from economy_guard.context import EconomyContext, ManualClock
from economy_guard.database import Database
from economy_guard.economic_manager import EconomicManager
from economy_guard.main import EconomyGuard, print_analysis, print_status


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


def fill_concentrated_ledger(db):
    """One account holding almost all of the wealth."""
    db.upsert_user_balance("whale", wallet=1_000_000_000)
    for i in range(99):
        db.upsert_user_balance(f"user{i}", wallet=10_000)


class TestEconomyGuard:
    """Tests for EconomyGuard."""

    @pytest.mark.asyncio
    async def test_run_once(self, manager, test_db):
        test_db.upsert_user_balance("u1", wallet=1000)
        guard = EconomyGuard(manager)
        await guard.start(run_once=True)

        assert manager.stabilizer.analysis_count == 1
        assert guard.scheduler is None

    @pytest.mark.asyncio
    async def test_scheduler_jobs_and_stop(self, manager):
        guard = EconomyGuard(manager)
        task = asyncio.create_task(guard.start(serve_api=False))
        await asyncio.sleep(0.1)

        job_ids = {job.id for job in guard.scheduler.get_jobs()}
        assert {"continuous_monitoring", "daily_cleanup", "alert_flush"} <= job_ids

        await guard.stop()
        await asyncio.wait_for(task, timeout=5)
        assert not guard.scheduler.running

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, manager):
        guard = EconomyGuard(manager)
        guard.start_scheduler()
        await guard.stop()
        await guard.stop()
        assert not guard.scheduler.running

    @pytest.mark.asyncio
    async def test_serves_api_alongside_jobs(self, manager, monkeypatch):
        seen = {}

        async def fake_serve(server, sockets=None):
            seen["app"] = server.config.app
            seen["scheduler_running"] = guard.scheduler.running

        monkeypatch.setattr(uvicorn.Server, "serve", fake_serve)
        guard = EconomyGuard(manager)
        await asyncio.wait_for(guard.start(serve_api=True), timeout=5)

        assert seen["scheduler_running"]
        assert seen["app"].state.manager is manager
        # Server exit tears down the jobs too
        assert not guard.scheduler.running


class TestSharedManager:
    """Tests that the jobs, the admin API and bet validation share one manager."""

    @pytest.mark.asyncio
    async def test_scheduled_emergency_reaches_bet_validation(self, manager, test_db):
        fill_concentrated_ledger(test_db)
        guard = EconomyGuard(manager)
        task = asyncio.create_task(guard.start(serve_api=False))

        for _ in range(100):
            if manager.stabilizer.analysis_count:
                break
            await asyncio.sleep(0.05)

        await guard.stop()
        await asyncio.wait_for(task, timeout=5)

        assert manager.emergency_mode
        decision = await guard.manager.validate_and_process_bet("u1", "blackjack", 1_000_000, 1_000_000_000)
        assert not decision.approved
        assert decision.reason == "Emergency mode active - reduced betting limits"

    @pytest.mark.asyncio
    async def test_api_changes_reach_bet_validation(self, manager):
        guard = EconomyGuard(manager)
        client = TestClient(guard.create_api())

        assert client.post("/api/emergency", json={"active": True, "reason": "maintenance"}).status_code == 200
        assert guard.manager.emergency_mode

        client.patch("/api/games/slots", json={"max_bet": 1000})
        decision = await guard.manager.validate_and_process_bet("u1", "slots", 2000, 1_000_000_000)
        assert not decision.approved
        assert decision.max_allowed == 1000

    def test_server_uses_runner_manager(self, manager):
        guard = EconomyGuard(manager)
        assert guard.build_server().config.app.state.manager is manager


class TestOutput:
    """Tests for the CLI printers."""

    @pytest.mark.asyncio
    async def test_print_analysis(self, manager, test_db, capsys):
        test_db.upsert_user_balance("u1", wallet=1000)
        await manager.stabilizer.perform_economic_analysis()
        print_analysis(manager)
        out = capsys.readouterr().out
        assert "Participants:       1" in out

    def test_print_status(self, manager, capsys):
        manager.set_emergency_mode(True, "test")
        print_status(manager)
        out = capsys.readouterr().out
        assert "Emergency Mode:      ACTIVE" in out
        assert "keno" in out
