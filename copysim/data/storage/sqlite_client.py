import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

from loguru import logger

from copysim.data.sources.base import MarketDataSource, metric_attribute
from copysim.models import LeaderboardEntry, MarketSnapshot, OrderbookSnapshot, PriceTick, Trade
from copysim.utils.exceptions import DataSourceError, MissingMarketMetadata


def _iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


class SQLiteClient(MarketDataSource):
    """
    SQLite-backed market data store.

    Timestamps are stored as UTC ISO-8601 strings so lexical order matches
    time order.
    """

    name = "sqlite"

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        except sqlite3.Error as e:
            raise DataSourceError(str(e), self.name) from e
        self.conn.row_factory = sqlite3.Row
        self._in_transaction = False
        logger.info(f"Connected to SQLite at {db_path}")

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        try:
            yield self.conn.cursor()
        except sqlite3.Error as e:
            logger.error(f"SQLite error on {self.db_path}: {e}")
            raise DataSourceError(str(e), self.name) from e

    @contextmanager
    def transaction(self) -> Iterator["SQLiteClient"]:
        """
        Group several writes into one commit.

        Writes inside the block skip their own commit; any exception rolls
        every one of them back and propagates.
        """
        if self._in_transaction:
            yield self
            return
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self.conn.rollback()
            logger.warning(f"Rolled back transaction on {self.db_path}")
            raise
        else:
            try:
                self.conn.commit()
            except sqlite3.Error as e:
                raise DataSourceError(str(e), self.name) from e
        finally:
            self._in_transaction = False

    def _commit(self) -> None:
        if not self._in_transaction:
            self.conn.commit()

    def initialize_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS trades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    wallet_address TEXT NOT NULL,
                    condition_id TEXT NOT NULL,
                    token_id TEXT NOT NULL,
                    side TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    size REAL NOT NULL,
                    price REAL NOT NULL,
                    usdc_size REAL,
                    timestamp TEXT NOT NULL,
                    tx_hash TEXT,
                    market_title TEXT
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_trades_timestamp ON trades (timestamp)"
            )
            # A missing tx_hash still identifies the trade
            cursor.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_trades_identity
                ON trades (wallet_address, COALESCE(tx_hash, ''), token_id, timestamp)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS markets (
                    condition_id TEXT PRIMARY KEY,
                    title TEXT,
                    outcomes TEXT NOT NULL,
                    daily_volume REAL,
                    is_closed INTEGER NOT NULL DEFAULT 0,
                    winning_outcome TEXT,
                    last_price_primary REAL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS price_ticks (
                    token_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    price REAL NOT NULL,
                    PRIMARY KEY (token_id, timestamp)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS orderbook_snapshots (
                    token_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    best_bid REAL NOT NULL,
                    best_ask REAL NOT NULL,
                    mid_price REAL NOT NULL,
                    spread_bps REAL NOT NULL,
                    bid_depth_100bps REAL NOT NULL DEFAULT 0,
                    ask_depth_100bps REAL NOT NULL DEFAULT 0,
                    bid_depth_500bps REAL NOT NULL DEFAULT 0,
                    ask_depth_500bps REAL NOT NULL DEFAULT 0,
                    PRIMARY KEY (token_id, timestamp)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS leaderboard (
                    wallet_address TEXT PRIMARY KEY,
                    rank INTEGER NOT NULL,
                    realized_pnl REAL NOT NULL DEFAULT 0,
                    total_pnl REAL NOT NULL DEFAULT 0,
                    volume REAL NOT NULL DEFAULT 0,
                    trade_count INTEGER NOT NULL DEFAULT 0,
                    win_rate REAL NOT NULL DEFAULT 0,
                    roi_percent REAL NOT NULL DEFAULT 0
                )
            """)

        self.conn.commit()
        logger.info("SQLite schema initialized")

    # -------------------------------------------------------------- writes

    def insert_trades(self, trades: Iterable[Trade]) -> int:
        """Insert trades, skipping ones already stored. Returns the number added."""
        rows = [t.to_db_dict() for t in trades]
        before = self.conn.total_changes
        with self._cursor() as cursor:
            cursor.executemany("""
                INSERT OR IGNORE INTO trades (
                    wallet_address, condition_id, token_id, side, outcome,
                    size, price, usdc_size, timestamp, tx_hash, market_title
                ) VALUES (
                    :wallet_address, :condition_id, :token_id, :side, :outcome,
                    :size, :price, :usdc_size, :timestamp, :tx_hash, :market_title
                )
            """, rows)
        self._commit()
        inserted = self.conn.total_changes - before
        if inserted < len(rows):
            logger.debug(f"Skipped {len(rows) - inserted} trades already stored")
        logger.debug(f"Inserted {inserted} trades")
        return inserted

    def upsert_market(self, market: MarketSnapshot) -> None:
        row = market.to_db_dict()
        row["outcomes"] = json.dumps(row["outcomes"])
        row["is_closed"] = int(row["is_closed"])
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO markets (
                    condition_id, title, outcomes, daily_volume, is_closed,
                    winning_outcome, last_price_primary
                ) VALUES (
                    :condition_id, :title, :outcomes, :daily_volume, :is_closed,
                    :winning_outcome, :last_price_primary
                )
                ON CONFLICT(condition_id) DO UPDATE SET
                    title = excluded.title,
                    outcomes = excluded.outcomes,
                    daily_volume = excluded.daily_volume,
                    is_closed = excluded.is_closed,
                    winning_outcome = excluded.winning_outcome,
                    last_price_primary = excluded.last_price_primary
            """, row)
        self._commit()
        logger.debug(f"Upserted market {market.condition_id}")

    def insert_price_ticks(self, ticks: Iterable[PriceTick]) -> int:
        rows = [(t.token_id, _iso(t.timestamp), t.price) for t in ticks]
        with self._cursor() as cursor:
            cursor.executemany(
                "INSERT OR REPLACE INTO price_ticks (token_id, timestamp, price) VALUES (?, ?, ?)",
                rows,
            )
        self._commit()
        logger.debug(f"Inserted {len(rows)} price ticks")
        return len(rows)

    def insert_orderbooks(self, books: Iterable[OrderbookSnapshot]) -> int:
        rows = []
        for book in books:
            row = book.model_dump()
            row["timestamp"] = _iso(book.timestamp)
            rows.append(row)
        with self._cursor() as cursor:
            cursor.executemany("""
                INSERT OR REPLACE INTO orderbook_snapshots (
                    token_id, timestamp, best_bid, best_ask, mid_price, spread_bps,
                    bid_depth_100bps, ask_depth_100bps, bid_depth_500bps, ask_depth_500bps
                ) VALUES (
                    :token_id, :timestamp, :best_bid, :best_ask, :mid_price, :spread_bps,
                    :bid_depth_100bps, :ask_depth_100bps, :bid_depth_500bps, :ask_depth_500bps
                )
            """, rows)
        self._commit()
        logger.debug(f"Inserted {len(rows)} orderbook snapshots")
        return len(rows)

    def upsert_leaderboard(self, entries: Iterable[LeaderboardEntry]) -> None:
        rows = [e.model_dump() for e in entries]
        with self._cursor() as cursor:
            cursor.executemany("""
                INSERT INTO leaderboard (
                    wallet_address, rank, realized_pnl, total_pnl, volume,
                    trade_count, win_rate, roi_percent
                ) VALUES (
                    :wallet_address, :rank, :realized_pnl, :total_pnl, :volume,
                    :trade_count, :win_rate, :roi_percent
                )
                ON CONFLICT(wallet_address) DO UPDATE SET
                    rank = excluded.rank,
                    realized_pnl = excluded.realized_pnl,
                    total_pnl = excluded.total_pnl,
                    volume = excluded.volume,
                    trade_count = excluded.trade_count,
                    win_rate = excluded.win_rate,
                    roi_percent = excluded.roi_percent
            """, rows)
        self._commit()
        logger.debug(f"Upserted {len(rows)} leaderboard entries")

    # --------------------------------------------------------------- reads

    def leaderboard(self, metric: str, limit: int) -> list[LeaderboardEntry]:
        # Column name comes from a fixed whitelist, never from the caller
        column = metric_attribute(metric)
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT * FROM leaderboard ORDER BY {column} DESC, wallet_address LIMIT ?",
                [limit],
            )
            rows = cursor.fetchall()
        return [
            LeaderboardEntry(**{**dict(row), "rank": idx + 1})
            for idx, row in enumerate(rows)
        ]

    def trades_since(self, window_start: datetime) -> list[Trade]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM trades WHERE timestamp >= ? ORDER BY timestamp, id",
                [_iso(window_start)],
            )
            rows = cursor.fetchall()
        trades = []
        for row in rows:
            data = dict(row)
            data.pop("id")
            trades.append(Trade(**data))
        return trades

    def market_snapshot(self, condition_id: str) -> MarketSnapshot:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM markets WHERE condition_id = ?", [condition_id])
            row = cursor.fetchone()
        if row is None:
            raise MissingMarketMetadata(condition_id)
        data = dict(row)
        data["outcomes"] = json.loads(data["outcomes"]) if data["outcomes"] else []
        data["is_closed"] = bool(data["is_closed"])
        return MarketSnapshot(**data)

    def price_history(self, token_id: str, start: datetime, end: datetime) -> list[PriceTick]:
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT token_id, timestamp, price FROM price_ticks
                WHERE token_id = ? AND timestamp >= ? AND timestamp <= ?
                ORDER BY timestamp
            """, [token_id, _iso(start), _iso(end)])
            rows = cursor.fetchall()
        return [PriceTick(**dict(row)) for row in rows]

    def orderbook_history(
        self, token_id: str, start: datetime, end: datetime
    ) -> list[OrderbookSnapshot]:
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT * FROM orderbook_snapshots
                WHERE token_id = ? AND timestamp >= ? AND timestamp <= ?
                ORDER BY timestamp
            """, [token_id, _iso(start), _iso(end)])
            rows = cursor.fetchall()
        return [OrderbookSnapshot(**dict(row)) for row in rows]

    def table_counts(self) -> dict[str, int]:
        counts = {}
        with self._cursor() as cursor:
            for table in ("trades", "markets", "price_ticks", "orderbook_snapshots", "leaderboard"):
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                counts[table] = cursor.fetchone()[0]
        return counts

    def close(self) -> None:
        self.conn.close()
        logger.info("Closed SQLite connection")

    def __enter__(self) -> "SQLiteClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
