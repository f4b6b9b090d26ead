"""
SQLite ledger for Economy Guard.

This module handles all ledger operations including:
- Schema creation
- Balance and gambling statistics reads for risk scoring
- Economy-wide aggregates for health analysis
- Audit records for flagged users, risk alerts and manual overrides
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Iterable, Optional

from .config import settings

logger = logging.getLogger(__name__)


# SQL schema for all tables
SCHEMA = """
-- Balances: wallet plus bank make up a user's wealth
CREATE TABLE IF NOT EXISTS user_balances (
    user_id TEXT PRIMARY KEY,
    wallet REAL DEFAULT 0.0,
    bank REAL DEFAULT 0.0,
    off_economy BOOLEAN DEFAULT 0,
    updated_at TEXT
);

-- Lifetime gambling statistics per user
CREATE TABLE IF NOT EXISTS user_stats (
    user_id TEXT PRIMARY KEY,
    wins INTEGER DEFAULT 0,
    losses INTEGER DEFAULT 0,
    total_wagered REAL DEFAULT 0.0,
    total_won REAL DEFAULT 0.0,
    biggest_win REAL DEFAULT 0.0,
    biggest_loss REAL DEFAULT 0.0,
    updated_at TEXT
);

-- Individual settled rounds
CREATE TABLE IF NOT EXISTS game_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    game_type TEXT NOT NULL,
    bet_amount REAL NOT NULL,
    payout REAL DEFAULT 0.0,
    won BOOLEAN DEFAULT 0,
    multiplier REAL DEFAULT 0.0,
    played_at TEXT NOT NULL
);

-- Users flagged for manual review
CREATE TABLE IF NOT EXISTS flagged_users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    risk_score REAL NOT NULL,
    reason TEXT,
    patterns TEXT,  -- JSON array of detector labels
    context TEXT,  -- JSON of the triggering action
    flagged_at TEXT NOT NULL,
    reviewed BOOLEAN DEFAULT 0
);

-- High-risk alerts raised by automatic suspension
CREATE TABLE IF NOT EXISTS risk_alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    risk_score REAL NOT NULL,
    status TEXT DEFAULT 'HIGH_RISK_DETECTED',
    context TEXT,
    created_at TEXT NOT NULL,
    resolved BOOLEAN DEFAULT 0
);

-- Operator actions (manual emergency toggles, game control edits, unblocks)
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    actor TEXT,
    details TEXT,  -- JSON
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_game_results_user ON game_results(user_id, played_at DESC);
CREATE INDEX IF NOT EXISTS idx_flagged_users_user ON flagged_users(user_id);
CREATE INDEX IF NOT EXISTS idx_risk_alerts_user ON risk_alerts(user_id);
CREATE INDEX IF NOT EXISTS idx_audit_log_created ON audit_log(created_at DESC);
"""


class LedgerUnavailable(Exception):
    """Raised when the ledger cannot be read or written."""


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """SQLite ledger consumed by the economy components."""

    def __init__(self, db_path: Optional[str] = None, timeout: Optional[float] = None):
        """
        Initialize the ledger.

        Args:
            db_path: Path to SQLite database file. Uses settings default if not provided.
            timeout: Seconds to wait on a locked database before failing.
        """
        self.db_path = db_path or settings.database_path
        self.timeout = timeout if timeout is not None else settings.ledger_timeout_seconds
        self._ensure_db_directory()
        self._init_schema()

    def _ensure_db_directory(self) -> None:
        """Ensure the database directory exists."""
        db_dir = Path(self.db_path).parent
        if db_dir and not db_dir.exists():
            db_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection with automatic cleanup.

        Yields:
            sqlite3.Connection: Database connection.

        Raises:
            LedgerUnavailable: If SQLite reports any error.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise LedgerUnavailable(f"Cannot open ledger {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LedgerUnavailable(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self.get_connection() as conn:
            conn.executescript(SCHEMA)
        logger.info(f"Ledger initialized at {self.db_path}")

    # ========== Balance Operations ==========

    def upsert_user_balance(
        self,
        user_id: str,
        wallet: float = 0.0,
        bank: float = 0.0,
        off_economy: bool = False
    ) -> None:
        """
        Insert or replace a user's balance.

        Args:
            user_id: Discord user ID.
            wallet: Wallet amount.
            bank: Bank amount.
            off_economy: Exclude the account from economy statistics.
        """
        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO user_balances (user_id, wallet, bank, off_economy, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    wallet = excluded.wallet,
                    bank = excluded.bank,
                    off_economy = excluded.off_economy,
                    updated_at = excluded.updated_at
                """,
                (user_id, wallet, bank, int(off_economy), _utcnow())
            )

    def get_user_balance(self, user_id: str) -> dict:
        """
        Get a user's balance.

        Args:
            user_id: Discord user ID.

        Returns:
            Dict with wallet and bank. Unknown users have zero balances.
        """
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT wallet, bank, off_economy FROM user_balances WHERE user_id = ?",
                (user_id,)
            ).fetchone()

        if not row:
            return {"wallet": 0.0, "bank": 0.0, "off_economy": False}
        return {"wallet": row["wallet"] or 0.0, "bank": row["bank"] or 0.0, "off_economy": bool(row["off_economy"])}

    def get_user_wealth(self, user_id: str) -> float:
        balance = self.get_user_balance(user_id)
        return balance["wallet"] + balance["bank"]

    # ========== Game Statistics ==========

    def record_game_result(
        self,
        user_id: str,
        game_type: str,
        bet_amount: float,
        payout: float,
        won: bool,
        multiplier: float = 0.0,
        played_at: Optional[datetime] = None
    ) -> None:
        """
        Store a settled round and roll it into the user's lifetime stats.

        Args:
            user_id: Discord user ID.
            game_type: Game identifier, e.g. "slots".
            bet_amount: Stake.
            payout: Amount paid back to the user (0 on a loss).
            won: Whether the round counts as a win.
            multiplier: Payout multiplier.
            played_at: Settlement time. Defaults to now.
        """
        when = (played_at or datetime.now(timezone.utc)).isoformat()
        profit = payout - bet_amount

        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO game_results (user_id, game_type, bet_amount, payout, won, multiplier, played_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, game_type, bet_amount, payout, int(won), multiplier, when)
            )
            conn.execute(
                """
                INSERT INTO user_stats (user_id, wins, losses, total_wagered, total_won, biggest_win, biggest_loss, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    wins = wins + excluded.wins,
                    losses = losses + excluded.losses,
                    total_wagered = total_wagered + excluded.total_wagered,
                    total_won = total_won + excluded.total_won,
                    biggest_win = MAX(biggest_win, excluded.biggest_win),
                    biggest_loss = MAX(biggest_loss, excluded.biggest_loss),
                    updated_at = excluded.updated_at
                """,
                (
                    user_id,
                    1 if won else 0,
                    0 if won else 1,
                    bet_amount,
                    payout,
                    max(0.0, profit),
                    max(0.0, -profit),
                    when,
                )
            )

    def get_user_stats(self, user_id: str) -> Optional[dict]:
        """
        Get a user's lifetime gambling statistics.

        Args:
            user_id: Discord user ID.

        Returns:
            Stats record as dict or None if the user never played.
        """
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM user_stats WHERE user_id = ?",
                (user_id,)
            ).fetchone()
            return dict(row) if row else None

    def get_recent_games(self, user_id: str, limit: int = 5) -> list[dict]:
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT game_type, bet_amount, payout, won, multiplier, played_at
                FROM game_results
                WHERE user_id = ?
                ORDER BY played_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit)
            )
            return [dict(row) for row in cursor.fetchall()]

    def get_favorite_game(self, user_id: str) -> Optional[str]:
        """Most played game type for a user."""
        with self.get_connection() as conn:
            row = conn.execute(
                """
                SELECT game_type, COUNT(*) as plays
                FROM game_results
                WHERE user_id = ?
                GROUP BY game_type
                ORDER BY plays DESC
                LIMIT 1
                """,
                (user_id,)
            ).fetchone()
            return row["game_type"] if row else None

    # ========== Economy Aggregates ==========

    def get_economy_participants(
        self,
        excluded_ids: Iterable[str] = (),
        max_wealth: Optional[float] = None
    ) -> list[dict]:
        """
        Get every account that counts toward economy statistics.

        Off-economy accounts, zero balances, explicitly excluded ids and
        accounts at or above max_wealth are left out.

        Args:
            excluded_ids: User IDs to skip (operators, developers).
            max_wealth: Wealth ceiling. Uses settings default if not provided.

        Returns:
            List of dicts ordered by wealth, richest first.
        """
        ceiling = max_wealth if max_wealth is not None else settings.max_user_wealth
        excluded = list(excluded_ids)

        query = """
            SELECT ub.user_id, ub.wallet, ub.bank, ub.wallet + ub.bank AS wealth,
                   us.wins, us.losses, us.total_wagered, us.total_won, us.biggest_win
            FROM user_balances ub
            LEFT JOIN user_stats us ON ub.user_id = us.user_id
            WHERE (ub.off_economy IS NULL OR ub.off_economy = 0)
            AND ub.wallet + ub.bank > 0
            AND ub.wallet + ub.bank < ?
        """
        params: list = [ceiling]
        if excluded:
            placeholders = ", ".join("?" for _ in excluded)
            query += f" AND ub.user_id NOT IN ({placeholders})"
            params.extend(excluded)
        query += " ORDER BY wealth DESC"

        with self.get_connection() as conn:
            cursor = conn.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    # ========== Audit Records ==========

    def record_flagged_user(
        self,
        user_id: str,
        risk_score: float,
        reason: str,
        patterns: Optional[list] = None,
        context: Optional[dict] = None
    ) -> int:
        """
        Store a review record for a user.

        Returns:
            Row id of the new record.
        """
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO flagged_users (user_id, risk_score, reason, patterns, context, flagged_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    risk_score,
                    reason,
                    json.dumps(patterns or []),
                    json.dumps(context or {}, default=str),
                    _utcnow(),
                )
            )
            return cursor.lastrowid

    def record_risk_alert(self, user_id: str, risk_score: float, context: Optional[dict] = None) -> int:
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO risk_alerts (user_id, risk_score, context, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, risk_score, json.dumps(context or {}, default=str), _utcnow())
            )
            return cursor.lastrowid

    def resolve_risk_alerts(self, user_id: str) -> int:
        """Mark all open alerts for a user as resolved."""
        with self.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE risk_alerts SET resolved = 1 WHERE user_id = ? AND resolved = 0",
                (user_id,)
            )
            return cursor.rowcount

    def record_audit_event(self, event_type: str, actor: str = "system", details: Optional[dict] = None) -> int:
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO audit_log (event_type, actor, details, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (event_type, actor, json.dumps(details or {}, default=str), _utcnow())
            )
            return cursor.lastrowid

    def get_flagged_users(self, limit: int = 50) -> list[dict]:
        with self.get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM flagged_users ORDER BY flagged_at DESC, id DESC LIMIT ?",
                (limit,)
            )
            return [dict(row) for row in cursor.fetchall()]

    def get_risk_alerts(self, user_id: Optional[str] = None, open_only: bool = False) -> list[dict]:
        query = "SELECT * FROM risk_alerts WHERE 1=1"
        params: list = []
        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)
        if open_only:
            query += " AND resolved = 0"
        query += " ORDER BY created_at DESC, id DESC"

        with self.get_connection() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def get_audit_log(self, limit: int = 50, event_type: Optional[str] = None) -> list[dict]:
        query = "SELECT * FROM audit_log"
        params: list = []
        if event_type:
            query += " WHERE event_type = ?"
            params.append(event_type)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        with self.get_connection() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    # ========== Statistics ==========

    def get_stats(self) -> dict:
        """
        Get ledger statistics.

        Returns:
            Dictionary with counts and totals.
        """
        with self.get_connection() as conn:
            stats = {}

            row = conn.execute(
                "SELECT COUNT(*) as count, COALESCE(SUM(wallet + bank), 0) as total FROM user_balances"
            ).fetchone()
            stats["total_users"] = row["count"]
            stats["total_wealth"] = row["total"]

            row = conn.execute(
                """
                SELECT COUNT(*) as count, COALESCE(SUM(bet_amount), 0) as wagered,
                       COALESCE(SUM(payout), 0) as paid
                FROM game_results
                """
            ).fetchone()
            stats["total_games"] = row["count"]
            stats["total_wagered"] = row["wagered"]
            stats["total_paid"] = row["paid"]

            stats["flagged_users"] = conn.execute(
                "SELECT COUNT(DISTINCT user_id) as count FROM flagged_users"
            ).fetchone()["count"]

            stats["open_risk_alerts"] = conn.execute(
                "SELECT COUNT(*) as count FROM risk_alerts WHERE resolved = 0"
            ).fetchone()["count"]

            return stats


_default_db: Optional[Database] = None


def get_database() -> Database:
    """Shared ledger built from settings on first use."""
    global _default_db
    if _default_db is None:
        _default_db = Database()
    return _default_db
