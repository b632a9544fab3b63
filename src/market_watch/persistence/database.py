"""Database persistence for bars, levels, setups and patterns.

Implements SQLite-based storage. Each operation opens its own connection,
so the store can be shared between the scheduler and worker threads.
Upserts are last-writer-wins.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from market_watch.models import PriceBar, SetupStatus, SupportResistanceLevel, LevelType, TradingSetup
from market_watch.patterns.models import GeometricPattern, pattern_from_dict

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the underlying database operation fails."""
    pass


class MarketStore:
    """Manages market data persistence using SQLite."""

    def __init__(self, db_path: str = "data/market_watch.db"):
        """Initialize store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._ensure_database()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and wrap sqlite errors."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise StoreError(f"Database operation failed: {e}") from e
        finally:
            conn.close()

    def _ensure_database(self) -> None:
        """Create database and tables if they don't exist."""
        # Create directory if needed
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS price_bars (
                    symbol TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    open REAL NOT NULL,
                    high REAL NOT NULL,
                    low REAL NOT NULL,
                    close REAL NOT NULL,
                    volume REAL NOT NULL,
                    PRIMARY KEY (symbol, timestamp)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sr_levels (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    price REAL NOT NULL,
                    level_type TEXT NOT NULL,
                    touch_count INTEGER NOT NULL,
                    first_touch TEXT NOT NULL,
                    last_touch TEXT NOT NULL,
                    avg_bounce_percent REAL DEFAULT 0.0,
                    max_bounce_percent REAL DEFAULT 0.0,
                    volume_confirmed INTEGER DEFAULT 0,
                    strength_score REAL DEFAULT 0.0,
                    active INTEGER DEFAULT 1
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS trading_setups (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    setup_type TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    status TEXT NOT NULL,
                    quality_score REAL NOT NULL,
                    confidence TEXT NOT NULL,
                    detected_at TEXT NOT NULL,
                    expires_at TEXT,
                    payload TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS patterns (
                    id TEXT PRIMARY KEY,
                    symbol TEXT NOT NULL,
                    pattern_type TEXT NOT NULL,
                    signature TEXT NOT NULL,
                    phase TEXT NOT NULL,
                    is_complete INTEGER DEFAULT 0,
                    detected_at TEXT NOT NULL,
                    last_updated TEXT,
                    payload TEXT NOT NULL
                )
            """)

            # Create indexes for common queries
            conn.execute("CREATE INDEX IF NOT EXISTS idx_levels_symbol ON sr_levels(symbol, active)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_setups_symbol ON trading_setups(symbol, status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_patterns_active ON patterns(is_complete)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_patterns_signature ON patterns(signature)")

    # Bars

    def insert_bars(self, bars: list[PriceBar]) -> int:
        """Persist bars, ignoring ones already stored.

        Returns:
            Number of new bars written
        """
        with self._connection() as conn:
            before = conn.total_changes
            conn.executemany("""
                INSERT OR IGNORE INTO price_bars (symbol, timestamp, open, high, low, close, volume)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                (b.symbol, b.timestamp.isoformat(), b.open, b.high, b.low, b.close, b.volume)
                for b in bars
            ])
            return conn.total_changes - before

    def get_bars(
        self,
        symbol: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[PriceBar]:
        """Get bars for a symbol in ascending time order.

        Args:
            symbol: Instrument symbol
            start: Inclusive lower bound
            end: Inclusive upper bound
        """
        query = "SELECT * FROM price_bars WHERE symbol = ?"
        params: list = [symbol]
        if start is not None:
            query += " AND timestamp >= ?"
            params.append(start.isoformat())
        if end is not None:
            query += " AND timestamp <= ?"
            params.append(end.isoformat())
        query += " ORDER BY timestamp ASC"

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            PriceBar(
                symbol=row["symbol"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                open=row["open"],
                high=row["high"],
                low=row["low"],
                close=row["close"],
                volume=row["volume"],
            )
            for row in rows
        ]

    # Levels

    def get_active_levels(self, symbol: str) -> list[SupportResistanceLevel]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM sr_levels WHERE symbol = ? AND active = 1 ORDER BY price ASC",
                (symbol,),
            ).fetchall()
        return [self._row_to_level(row) for row in rows]

    def upsert_level(self, level: SupportResistanceLevel) -> int:
        """Insert a new level or overwrite an existing one by id.

        Returns:
            The level id (also set on the level)
        """
        values = (
            level.symbol,
            level.price,
            level.level_type.value,
            level.touch_count,
            level.first_touch.isoformat(),
            level.last_touch.isoformat(),
            level.avg_bounce_percent,
            level.max_bounce_percent,
            int(level.volume_confirmed),
            level.strength_score,
            int(level.active),
        )
        with self._connection() as conn:
            if level.id is None:
                cursor = conn.execute("""
                    INSERT INTO sr_levels (
                        symbol, price, level_type, touch_count, first_touch, last_touch,
                        avg_bounce_percent, max_bounce_percent, volume_confirmed,
                        strength_score, active
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, values)
                level.id = cursor.lastrowid
            else:
                conn.execute("""
                    UPDATE sr_levels
                    SET symbol = ?, price = ?, level_type = ?, touch_count = ?,
                        first_touch = ?, last_touch = ?, avg_bounce_percent = ?,
                        max_bounce_percent = ?, volume_confirmed = ?,
                        strength_score = ?, active = ?
                    WHERE id = ?
                """, values + (level.id,))
        return level.id

    @staticmethod
    def _row_to_level(row: sqlite3.Row) -> SupportResistanceLevel:
        return SupportResistanceLevel(
            id=row["id"],
            symbol=row["symbol"],
            price=row["price"],
            level_type=LevelType(row["level_type"]),
            touch_count=row["touch_count"],
            first_touch=datetime.fromisoformat(row["first_touch"]),
            last_touch=datetime.fromisoformat(row["last_touch"]),
            avg_bounce_percent=row["avg_bounce_percent"],
            max_bounce_percent=row["max_bounce_percent"],
            volume_confirmed=bool(row["volume_confirmed"]),
            strength_score=row["strength_score"],
            active=bool(row["active"]),
        )

    # Setups

    def insert_setup(self, setup: TradingSetup) -> int:
        """Persist a scored setup.

        Returns:
            The new setup id (also set on the setup)
        """
        with self._connection() as conn:
            cursor = conn.execute("""
                INSERT INTO trading_setups (
                    symbol, setup_type, direction, status, quality_score,
                    confidence, detected_at, expires_at, payload
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                setup.symbol,
                setup.setup_type.value,
                setup.direction.value,
                setup.status.value,
                setup.quality_score,
                setup.confidence.value,
                setup.detected_at.isoformat(),
                setup.expires_at.isoformat() if setup.expires_at else None,
                setup.to_json(),
            ))
            setup.id = cursor.lastrowid
        return setup.id

    def update_setup(self, setup: TradingSetup) -> None:
        """Overwrite a stored setup's status and payload."""
        if setup.id is None:
            raise StoreError("Cannot update a setup that was never inserted")
        with self._connection() as conn:
            conn.execute("""
                UPDATE trading_setups
                SET status = ?, quality_score = ?, confidence = ?, payload = ?
                WHERE id = ?
            """, (
                setup.status.value,
                setup.quality_score,
                setup.confidence.value,
                setup.to_json(),
                setup.id,
            ))

    def get_setups(
        self,
        symbol: Optional[str] = None,
        status: Optional[SetupStatus] = None,
        limit: int = 50,
    ) -> list[TradingSetup]:
        """Get setups, most recent first.

        Args:
            symbol: Only this symbol
            status: Only this status
            limit: Maximum number of setups to return
        """
        query = "SELECT id, payload FROM trading_setups WHERE 1 = 1"
        params: list = []
        if symbol is not None:
            query += " AND symbol = ?"
            params.append(symbol)
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY detected_at DESC, id DESC LIMIT ?"
        params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()

        setups = []
        for row in rows:
            setup = TradingSetup.from_dict(json.loads(row["payload"]))
            setup.id = row["id"]
            setups.append(setup)
        return setups

    # Patterns

    def upsert_pattern(self, pattern: GeometricPattern) -> None:
        """Insert or overwrite a pattern by id."""
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO patterns (
                    id, symbol, pattern_type, signature, phase, is_complete,
                    detected_at, last_updated, payload
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    phase = excluded.phase,
                    is_complete = excluded.is_complete,
                    last_updated = excluded.last_updated,
                    payload = excluded.payload
            """, (
                pattern.id,
                pattern.symbol,
                pattern.pattern_type.value,
                pattern.signature,
                pattern.thesis.phase.value,
                int(pattern.is_complete),
                pattern.detected_at.isoformat(),
                pattern.last_updated.isoformat() if pattern.last_updated else None,
                json.dumps(pattern.to_dict()),
            ))

    def get_active_patterns(self, symbol: Optional[str] = None) -> list[GeometricPattern]:
        """Incomplete patterns, oldest first."""
        query = "SELECT payload FROM patterns WHERE is_complete = 0"
        params: list = []
        if symbol is not None:
            query += " AND symbol = ?"
            params.append(symbol)
        query += " ORDER BY detected_at ASC"

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [pattern_from_dict(json.loads(row["payload"])) for row in rows]

    def get_pattern(self, pattern_id: str) -> Optional[GeometricPattern]:
        with self._connection() as conn:
            row = conn.execute("SELECT payload FROM patterns WHERE id = ?", (pattern_id,)).fetchone()
        return pattern_from_dict(json.loads(row["payload"])) if row else None

    def has_pattern(self, signature: str) -> bool:
        """Whether a pattern with these vertices was already recorded."""
        with self._connection() as conn:
            row = conn.execute("SELECT 1 FROM patterns WHERE signature = ? LIMIT 1", (signature,)).fetchone()
        return row is not None
