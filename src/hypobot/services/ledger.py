"""Bet Ledger - async SQLite persistence for bets and cycle results.

This service:
- Records one pending bet per trade idea
- Serves the pending queue to reconciliation, oldest first
- Applies resolutions with a conditional write so a bet settles once
- Aggregates P&L per partition (live vs simulated), never mixing them
"""

import asyncio
import json
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Optional

import aiosqlite
import structlog

from hypobot.core.config import ConfigManager
from hypobot.core.lifecycle import BaseComponent, HealthCheckResult
from hypobot.core.retry import ValidationError
from hypobot.domain.bet import Bet, BetStatus

log = structlog.get_logger()

SCHEMA_VERSION = 1
DEFAULT_DB_PATH = "./data/hypobot.db"

# pnl is rounded here and nowhere else
PNL_DECIMALS = 6

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS bets (
    id TEXT PRIMARY KEY,
    cycle INTEGER NOT NULL DEFAULT 0,
    market TEXT NOT NULL,
    condition_id TEXT,
    market_slug TEXT,
    token_id TEXT,
    order_id TEXT,
    side TEXT NOT NULL CHECK (side IN ('BUY', 'SELL')),
    recommended_price REAL NOT NULL,
    size REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'won', 'lost', 'void', 'expired')),
    resolution TEXT,
    pnl REAL,
    is_live INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    resolved_at TEXT,
    CHECK ((status IN ('won', 'lost')) = (pnl IS NOT NULL))
);

CREATE TABLE IF NOT EXISTS cycles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cycle INTEGER NOT NULL,
    is_live INTEGER NOT NULL DEFAULT 0,
    bankroll REAL NOT NULL,
    sharpe REAL NOT NULL DEFAULT 0,
    mdd REAL NOT NULL DEFAULT 0,
    hypo_count INTEGER NOT NULL DEFAULT 0,
    rules TEXT NOT NULL DEFAULT '[]',
    log TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bets_status_created ON bets(status, created_at);
CREATE INDEX IF NOT EXISTS idx_bets_is_live ON bets(is_live);
CREATE INDEX IF NOT EXISTS idx_cycles_partition ON cycles(is_live, id);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);
INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""

_BET_COLUMNS = (
    "id, cycle, market, condition_id, market_slug, token_id, order_id, side, "
    "recommended_price, size, status, resolution, pnl, is_live, created_at, resolved_at"
)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConnectionPool:
    """Single shared aiosqlite connection guarded by a lock.

    SQLite serializes writers anyway; WAL mode lets reads proceed while a
    write is in progress.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        async with self._lock:
            if self._connection is not None:
                return

            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

            self._connection = await aiosqlite.connect(self._db_path)
            self._connection.row_factory = aiosqlite.Row

            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.execute("PRAGMA busy_timeout=5000")

    async def close(self) -> None:
        async with self._lock:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def acquire(self) -> aiosqlite.Connection:
        """Return the shared connection.

        Raises:
            RuntimeError: If pool is not connected.
        """
        if self._connection is None:
            raise RuntimeError("Connection pool not connected")
        return self._connection

    @property
    def lock(self) -> asyncio.Lock:
        """Lock held for the duration of every write transaction."""
        return self._lock

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the write lock; commit on success, roll back on any error."""
        conn = await self.acquire()
        async with self._lock:
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()


class BetLedger(BaseComponent):
    """SQLite-backed ledger of bets and cycle results.

    The ledger is append/update-only: bets are inserted as ``pending`` and
    transition once, through ``resolve_bet``, to ``won`` or ``lost``.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        config: Optional[ConfigManager] = None,
    ):
        """Initialize the ledger.

        Args:
            db_path: Direct path to database file (takes precedence).
            config: Configuration manager (``database.path``).
        """
        super().__init__(name="BetLedger")
        self._log = log.bind(component="bet_ledger")

        if db_path:
            self._db_path = db_path
        elif config:
            self._db_path = config.get("database.path", DEFAULT_DB_PATH)
        else:
            self._db_path = DEFAULT_DB_PATH

        self._pool = ConnectionPool(self._db_path)

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def is_connected(self) -> bool:
        return self._pool.is_connected

    async def connect(self) -> None:
        """Open the database and apply the schema."""
        self._log.info("connecting_bet_ledger", db_path=str(self._db_path))
        await self._pool.connect()

        async with self._pool.transaction() as conn:
            await conn.executescript(SCHEMA_SQL)

        self._log.info("bet_ledger_connected")

    async def close(self) -> None:
        await self._pool.close()
        self._log.info("bet_ledger_closed")

    async def _do_start(self) -> None:
        await self.connect()

    async def _do_stop(self) -> None:
        await self.close()

    async def _do_health_check(self) -> HealthCheckResult:
        if not self.is_connected:
            return HealthCheckResult.unhealthy("Database disconnected")
        try:
            conn = await self._pool.acquire()
            async with conn.execute(
                "SELECT COUNT(*) AS n FROM bets WHERE status = 'pending'"
            ) as cursor:
                row = await cursor.fetchone()
        except Exception as e:
            return HealthCheckResult.unhealthy(f"Database query failed: {e}")
        return HealthCheckResult.healthy(
            db_path=str(self._db_path),
            pending_bets=row["n"] if row else 0,
        )

    # ============ Bet Operations ============

    @staticmethod
    def _bet_params(bet: Bet) -> tuple[Any, ...]:
        price, size = float(bet.recommended_price), float(bet.size)
        if not (math.isfinite(price) and math.isfinite(size)):
            raise ValidationError(f"bet {bet.id} has a non-finite price or size")
        return (
            bet.id,
            int(bet.cycle),
            bet.market,
            bet.condition_id,
            bet.market_slug,
            bet.token_id,
            bet.order_id,
            bet.side.value,
            price,
            size,
            bet.status.value,
            bet.resolution,
            bet.pnl,
            1 if bet.is_live else 0,
            bet.created_at,
            bet.resolved_at,
        )

    async def record_bet(self, bet: Bet) -> Bet:
        """Insert a new bet."""
        await self.record_bets([bet])
        return bet

    async def record_bets(self, bets: Iterable[Bet]) -> int:
        """Insert several bets in one transaction.

        Returns:
            Number of bets written.
        """
        rows = [self._bet_params(b) for b in bets]
        if not rows:
            return 0

        async with self._pool.transaction() as conn:
            await conn.executemany(
                f"INSERT INTO bets ({_BET_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )

        self._log.debug("bets_recorded", count=len(rows))
        return len(rows)

    async def get_bet(self, bet_id: str) -> Optional[Bet]:
        conn = await self._pool.acquire()
        async with conn.execute(
            f"SELECT {_BET_COLUMNS} FROM bets WHERE id = ?", (bet_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_bet(row) if row else None

    async def get_pending_bets(self, limit: Optional[int] = None) -> list[Bet]:
        """Pending bets, oldest first (insertion order breaks ties)."""
        query = (
            f"SELECT {_BET_COLUMNS} FROM bets WHERE status = 'pending' "
            "ORDER BY created_at ASC, rowid ASC"
        )
        params: list[Any] = []
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        conn = await self._pool.acquire()
        async with conn.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_bet(r) for r in rows]

    async def resolve_bet(
        self,
        bet_id: str,
        status: BetStatus,
        resolution: str,
        pnl: float,
        resolved_at: Optional[str] = None,
    ) -> bool:
        """Settle a pending bet.

        The write only applies while the row is still ``pending``, so a
        second writer racing on the same bet is a no-op.

        Returns:
            True if this call settled the bet, False if it was no longer
            pending (or does not exist).

        Raises:
            ValidationError: If status is not won/lost.
        """
        status = BetStatus(status)
        if not status.is_settled:
            raise ValidationError(f"resolve_bet needs won/lost, got {status.value}")

        async with self._pool.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE bets
                SET status = ?, resolution = ?, pnl = ?, resolved_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (
                    status.value,
                    resolution,
                    round(float(pnl), PNL_DECIMALS),
                    resolved_at or _utcnow_iso(),
                    bet_id,
                ),
            )
            updated = cursor.rowcount
            await cursor.close()

        if updated != 1:
            self._log.info("bet_already_settled", bet_id=bet_id)
            return False
        return True

    async def attach_order(self, bet_id: str, order_id: Optional[str], token_id: Optional[str] = None) -> None:
        """Store the exchange order id of a live bet."""
        async with self._pool.transaction() as conn:
            await conn.execute(
                "UPDATE bets SET order_id = ?, token_id = COALESCE(?, token_id) WHERE id = ?",
                (order_id, token_id, bet_id),
            )

    async def list_bets(
        self,
        status: Optional[BetStatus] = None,
        is_live: Optional[bool] = None,
        limit: int = 100,
    ) -> list[Bet]:
        """Most recent bets first, with optional filters."""
        query = f"SELECT {_BET_COLUMNS} FROM bets WHERE 1=1"
        params: list[Any] = []

        if status is not None:
            query += " AND status = ?"
            params.append(BetStatus(status).value)

        if is_live is not None:
            query += " AND is_live = ?"
            params.append(1 if is_live else 0)

        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        conn = await self._pool.acquire()
        async with conn.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_bet(r) for r in rows]

    # ============ P&L Rollups ============

    async def get_pnl_summary(self) -> dict[str, dict[str, Any]]:
        """Per-partition counts by status, realized P&L, win rate and latest cycle."""
        conn = await self._pool.acquire()
        async with conn.execute(
            """
            SELECT is_live, status, COUNT(*) AS n, COALESCE(SUM(pnl), 0) AS pnl
            FROM bets
            GROUP BY is_live, status
            """
        ) as cursor:
            rows = await cursor.fetchall()

        summary: dict[str, dict[str, Any]] = {}
        for partition in ("live", "simulated"):
            summary[partition] = {
                "counts": {s.value: 0 for s in BetStatus},
                "realized_pnl": 0.0,
                "win_rate": None,
            }

        for row in rows:
            partition = "live" if row["is_live"] else "simulated"
            entry = summary[partition]
            entry["counts"][row["status"]] = row["n"]
            if row["status"] in (BetStatus.WON.value, BetStatus.LOST.value):
                entry["realized_pnl"] += float(row["pnl"])

        for entry in summary.values():
            won = entry["counts"][BetStatus.WON.value]
            lost = entry["counts"][BetStatus.LOST.value]
            entry["realized_pnl"] = round(entry["realized_pnl"], PNL_DECIMALS)
            if won + lost:
                entry["win_rate"] = won / (won + lost)

        for partition, entry in summary.items():
            entry["latest_cycle"] = await self.get_latest_cycle(is_live=partition == "live")

        return summary

    # ============ Cycle Operations ============

    async def record_cycle(
        self,
        cycle: int,
        bankroll: float,
        is_live: bool = False,
        sharpe: float = 0.0,
        mdd: float = 0.0,
        hypo_count: int = 0,
        rules: Optional[list[str]] = None,
        log_text: str = "",
    ) -> None:
        async with self._pool.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO cycles
                (cycle, is_live, bankroll, sharpe, mdd, hypo_count, rules, log, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(cycle),
                    1 if is_live else 0,
                    float(bankroll),
                    float(sharpe),
                    float(mdd),
                    int(hypo_count),
                    json.dumps(rules or []),
                    log_text,
                    _utcnow_iso(),
                ),
            )

    async def get_latest_cycle(self, is_live: bool = False) -> Optional[dict[str, Any]]:
        conn = await self._pool.acquire()
        async with conn.execute(
            "SELECT cycle, bankroll, sharpe, mdd, hypo_count, rules, log, created_at "
            "FROM cycles WHERE is_live = ? ORDER BY id DESC LIMIT 1",
            (1 if is_live else 0,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "cycle": row["cycle"],
            "bankroll": row["bankroll"],
            "sharpe": row["sharpe"],
            "mdd": row["mdd"],
            "hypo_count": row["hypo_count"],
            "rules": json.loads(row["rules"]),
            "log": row["log"],
            "created_at": row["created_at"],
        }

    # ============ Helpers ============

    @staticmethod
    def _row_to_bet(row: aiosqlite.Row) -> Bet:
        return Bet(
            id=row["id"],
            cycle=row["cycle"],
            market=row["market"],
            condition_id=row["condition_id"],
            market_slug=row["market_slug"],
            token_id=row["token_id"],
            order_id=row["order_id"],
            side=row["side"],
            recommended_price=row["recommended_price"],
            size=row["size"],
            status=BetStatus(row["status"]),
            resolution=row["resolution"],
            pnl=row["pnl"],
            is_live=bool(row["is_live"]),
            created_at=row["created_at"],
            resolved_at=row["resolved_at"],
        )
