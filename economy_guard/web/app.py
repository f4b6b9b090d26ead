"""
FastAPI admin API for Economy Guard.

Lets operators inspect economic health, toggle emergency mode, tune game
controls and lift blocks without restarting the bot.
"""

import logging

from fastapi import FastAPI, HTTPException, Request
from pydantic import ValidationError

from ..economic_manager import EconomicManager
from ..models import EmergencyRequest, GameControlUpdate

logger = logging.getLogger(__name__)


def create_app(manager: EconomicManager) -> FastAPI:
    """
    Build the admin API.

    Args:
        manager: Manager to expose. This must be the same manager the
            scheduled jobs and the bot use, or operator changes never
            reach bet validation.
    """
    app = FastAPI(title="Economy Guard Admin", docs_url="/docs")
    app.state.manager = manager

    def get_manager(request: Request) -> EconomicManager:
        return request.app.state.manager

    # -----------------------------------------------------------------------
    # Status and reports
    # -----------------------------------------------------------------------

    @app.get("/api/status")
    async def api_status(request: Request):
        return get_manager(request).get_system_status()

    @app.get("/api/report")
    async def api_report(request: Request):
        return get_manager(request).get_economic_report()

    @app.get("/api/fairness")
    async def api_fairness(request: Request):
        fair_payout = get_manager(request).fair_payout
        return {**fair_payout.get_fairness_report(), "verification": fair_payout.verify_fairness()}

    @app.post("/api/analysis")
    async def api_analysis(request: Request):
        """Run one health analysis cycle now."""
        manager = get_manager(request)
        result = await manager.stabilizer.perform_economic_analysis()
        if result is None:
            raise HTTPException(status_code=503, detail="Ledger unavailable")
        return {
            "snapshot": result.snapshot.to_dict(),
            "controls": result.controls.to_dict(),
            "circuit_breakers": [b.to_dict() for b in result.breakers],
            "anomalies": [a.to_dict() for a in result.anomalies],
            "entered_emergency": result.entered_emergency,
            "cleared_emergency": result.cleared_emergency,
        }

    # -----------------------------------------------------------------------
    # Controls
    # -----------------------------------------------------------------------

    @app.post("/api/emergency")
    async def api_emergency(request: Request, body: EmergencyRequest):
        return get_manager(request).set_emergency_mode(body.active, body.reason)

    @app.patch("/api/games/{game_type}")
    async def api_update_game(request: Request, game_type: str, body: GameControlUpdate):
        manager = get_manager(request)
        try:
            updated = manager.update_game_controls(game_type, body)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        if not updated:
            raise HTTPException(status_code=404, detail=f"Unknown game type: {game_type}")
        return {"game_type": game_type, "controls": manager.game_controls[game_type].model_dump()}

    # -----------------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------------

    @app.get("/api/users/{user_id}/risk")
    async def api_user_risk(request: Request, user_id: str):
        anti_abuse = get_manager(request).anti_abuse
        return {
            **anti_abuse.get_user_risk_assessment(user_id).to_dict(),
            "blocked": anti_abuse.is_blocked(user_id),
            "bet_limit": anti_abuse.get_user_bet_limit(user_id),
        }

    @app.delete("/api/users/{user_id}/block")
    async def api_unblock(request: Request, user_id: str):
        if not get_manager(request).anti_abuse.unblock_user(user_id):
            raise HTTPException(status_code=404, detail=f"User {user_id} is not blocked")
        return {"user_id": user_id, "blocked": False}

    return app
