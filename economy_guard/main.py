"""
Main entry point for Economy Guard.

This module provides the CLI interface and the job runner. The runner owns
the one EconomicManager of the process: the scheduled health analysis and
anti-abuse housekeeping jobs and the admin API all act on it, on one event
loop.

Usage:
    # Run the scheduled jobs and serve the admin API
    python -m economy_guard.main

    # Run the scheduled jobs without the admin API
    python -m economy_guard.main --no-api

    # Run a single health analysis cycle and print the result
    python -m economy_guard.main --once

    # Show the current system status
    python -m economy_guard.main --status

    # Show ledger statistics
    python -m economy_guard.main --stats
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from typing import Optional

import uvicorn
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI

from .config import settings
from .database import get_database
from .economic_manager import EconomicManager, create_default_manager
from .utils import format_amount, format_percent
from .web.app import create_app

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(settings.log_file),
        ],
    )


class EconomyGuard:
    """
    Main application class for Economy Guard.

    Owns the scheduler that drives the periodic jobs and the uvicorn server
    for the admin API, and shuts both down gracefully.
    """

    ALERT_FLUSH_INTERVAL_SECONDS = 60

    def __init__(self, manager: Optional[EconomicManager] = None):
        self.manager = manager or create_default_manager()
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.server: Optional[uvicorn.Server] = None
        self._stopped = False
        self._shutdown_event = asyncio.Event()

    async def start(self, run_once: bool = False, serve_api: Optional[bool] = None) -> None:
        """
        Start the job runner.

        Args:
            run_once: If True, run a single analysis cycle and exit.
            serve_api: Serve the admin API next to the jobs. Defaults to
                settings.api_enabled.
        """
        if serve_api is None:
            serve_api = settings.api_enabled

        logger.info("=" * 60)
        logger.info("Economy Guard Starting")
        logger.info(f"Ledger: {settings.database_path}")
        logger.info(f"Health analysis: {'every %d minutes' % settings.health_analysis_interval_minutes if settings.health_analysis_enabled else 'disabled'}")
        logger.info(f"Restriction enforcement: {'ON' if settings.enforce_restrictions else 'notification-only'}")
        if serve_api and not run_once:
            logger.info(f"Admin API: http://{settings.api_host}:{settings.api_port}")
        logger.info("=" * 60)

        if run_once:
            await self.manager.stabilizer.perform_economic_analysis()
            await self.close()
            return

        self.start_scheduler()

        if serve_api:
            self.server = self.build_server()
            await self.server.serve()
            # uvicorn returns on its own shutdown signal
            await self.stop()
        else:
            await self._shutdown_event.wait()

    def start_scheduler(self) -> AsyncIOScheduler:
        """Register the periodic jobs and start the scheduler on the running loop."""
        self.scheduler = AsyncIOScheduler()

        if settings.health_analysis_enabled:
            self.scheduler.add_job(
                self._run_health_analysis,
                trigger=IntervalTrigger(minutes=settings.health_analysis_interval_minutes),
                id="health_analysis",
                name="Economic Health Analysis",
                next_run_time=datetime.now(),
            )

        self.scheduler.add_job(
            self._run_monitoring,
            trigger=IntervalTrigger(minutes=settings.restriction_cleanup_interval_minutes),
            id="continuous_monitoring",
            name="Restriction Sweep and Monitoring",
        )
        self.scheduler.add_job(
            self._run_daily_cleanup,
            trigger=IntervalTrigger(hours=settings.daily_cleanup_interval_hours),
            id="daily_cleanup",
            name="Suspicious Activity Cleanup",
        )
        self.scheduler.add_job(
            self._flush_pending_alerts,
            trigger=IntervalTrigger(seconds=self.ALERT_FLUSH_INTERVAL_SECONDS),
            id="alert_flush",
            name="Pending Alert Flush",
        )

        self.scheduler.start()
        logger.info("Scheduler started")
        return self.scheduler

    def create_api(self) -> FastAPI:
        return create_app(self.manager)

    def build_server(self) -> uvicorn.Server:
        config = uvicorn.Config(
            self.create_api(),
            host=settings.api_host,
            port=settings.api_port,
            log_config=None,
        )
        return uvicorn.Server(config)

    async def _run_health_analysis(self) -> None:
        try:
            await self.manager.stabilizer.perform_economic_analysis()
        except Exception as e:
            logger.error(f"Health analysis job failed: {e}")

    async def _run_monitoring(self) -> None:
        try:
            self.manager.anti_abuse.perform_continuous_monitoring()
        except Exception as e:
            logger.error(f"Monitoring job failed: {e}")

    async def _run_daily_cleanup(self) -> None:
        try:
            self.manager.anti_abuse.perform_daily_cleanup()
        except Exception as e:
            logger.error(f"Daily cleanup job failed: {e}")

    async def _flush_pending_alerts(self) -> None:
        try:
            await self.manager.anti_abuse.wait_for_notifications()
        except Exception as e:
            logger.error(f"Alert flush failed: {e}")

    async def close(self) -> None:
        await self.manager.anti_abuse.wait_for_notifications()
        if self.manager.notifier:
            await self.manager.notifier.close()

    async def stop(self) -> None:
        """Stop the job runner gracefully."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down...")

        if self.server:
            self.server.should_exit = True

        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

        await self.close()
        self._shutdown_event.set()

    def handle_signal(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}")
        asyncio.create_task(self.stop())


def print_analysis(manager: EconomicManager) -> None:
    """Print the latest health snapshot."""
    status = manager.stabilizer.get_economic_status()
    metrics = status["health_metrics"]
    print("\n" + "=" * 50)
    print("Economic Health Analysis")
    print("=" * 50)
    print(f"  Participants:       {metrics['total_users']:,}")
    print(f"  Total Wealth:       {format_amount(metrics['total_wealth'])}")
    print(f"  Gini Coefficient:   {metrics['gini_coefficient']:.3f}")
    print(f"  Top 1% Share:       {format_percent(metrics['wealth_concentration'])}")
    print(f"  House Edge:         {format_percent(metrics['house_advantage'], 2)}")
    print(f"  Stability Score:    {metrics['economic_stability']:.1f}/100")
    print(f"  Emergency Mode:     {'ACTIVE' if status['emergency_mode'] else 'inactive'}")
    print("=" * 50)

    if status["circuit_breakers"]:
        print("\nCircuit Breakers:")
        print("-" * 50)
        for breaker in status["circuit_breakers"]:
            print(f"  {breaker['type']} ({breaker['severity']}): {breaker['value']:.4g} vs {breaker['threshold']:.4g}")

    if status["anomalies"]:
        print("\nAnomalies:")
        print("-" * 50)
        for anomaly in status["anomalies"]:
            who = f" user {anomaly['user_id']}" if anomaly.get("user_id") else ""
            print(f"  {anomaly['type']}{who} ({anomaly['severity']})")

    print()


def print_status(manager: EconomicManager) -> None:
    status = manager.get_system_status()
    anti_abuse = status["systems"]["anti_abuse"]
    print("\n" + "=" * 50)
    print("Economy Guard Status")
    print("=" * 50)
    print(f"  Health Score:        {status['health_score']:.1f}")
    print(f"  Emergency Mode:      {'ACTIVE' if status['emergency_mode'] else 'inactive'}")
    print(f"  House Edge Adjust:   {format_percent(status['controls']['house_edge_adjustment'], 2)}")
    print(f"  Tracked Users:       {status['tracked_users']:,}")
    print(f"  Blocked Users:       {status['blocked_users']:,}")
    print(f"  Flagged Users:       {status['flagged_users']:,}")
    print(f"  Enforcement:         {'ON' if anti_abuse['enforce_restrictions'] else 'notification-only'}")
    print("=" * 50)

    print("\nGame Controls:")
    print("-" * 50)
    for game_type, control in status["game_controls"].items():
        print(f"  {game_type:<12} max bet {format_amount(control['max_bet']):>10}")
    print()


def print_stats() -> None:
    """Print ledger statistics."""
    db = get_database()
    stats = db.get_stats()
    print("\n" + "=" * 50)
    print("Economy Ledger Statistics")
    print("=" * 50)
    print(f"  Total Users:       {stats['total_users']:,}")
    print(f"  Total Wealth:      {format_amount(stats['total_wealth'])}")
    print(f"  Total Games:       {stats['total_games']:,}")
    print(f"  Total Wagered:     {format_amount(stats['total_wagered'])}")
    print(f"  Total Paid Out:    {format_amount(stats['total_paid'])}")
    print(f"  Flagged Users:     {stats['flagged_users']:,}")
    print(f"  Open Risk Alerts:  {stats['open_risk_alerts']:,}")
    print("=" * 50)

    flagged = db.get_flagged_users(limit=5)
    if flagged:
        print("\nRecently Flagged:")
        print("-" * 50)
        for flag in flagged:
            print(f"  {flag['flagged_at']} - {flag['user_id']} risk {flag['risk_score']:.1f}")

    print()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Economy Guard - Economic risk scoring and anti-abuse for casino economies"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single health analysis cycle, print it and exit"
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show system status and exit"
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show ledger statistics and exit"
    )
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Run the scheduled jobs without serving the admin API"
    )
    args = parser.parse_args()

    configure_logging()

    if args.stats:
        print_stats()
        return

    if args.status:
        print_status(create_default_manager())
        return

    async def run():
        guard = EconomyGuard()

        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, guard.handle_signal)

        await guard.start(run_once=args.once, serve_api=False if args.no_api else None)
        if args.once:
            print_analysis(guard.manager)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
