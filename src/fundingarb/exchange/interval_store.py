"""Memoization backends for discovered funding intervals, keyed by symbol.

Cadence rarely changes, so a stale entry is acceptable and concurrent
writers use last-writer-wins. Two backends:

- InMemoryIntervalStore: process-local dict (tests, short-lived runs)
- SqliteIntervalStore: aiosqlite-backed table that survives restarts

Usage:
    async with SqliteIntervalStore("data/intervals.db") as store:
        await store.set("BTCUSDT", FundingInterval.from_hours(8))
        interval = await store.get("BTCUSDT")
"""

import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Self

import aiosqlite

from fundingarb.logging import get_logger

logger = get_logger(__name__)

_MS_PER_HOUR = 60 * 60 * 1000

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS funding_intervals (
    symbol TEXT PRIMARY KEY,
    hours INTEGER NOT NULL,
    milliseconds INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
"""


@dataclass(frozen=True)
class FundingInterval:
    """Funding cadence of one market."""

    hours: int
    milliseconds: int

    @classmethod
    def from_hours(cls, hours: int) -> "FundingInterval":
        return cls(hours=hours, milliseconds=hours * _MS_PER_HOUR)

    @classmethod
    def from_milliseconds(cls, milliseconds: int) -> "FundingInterval":
        """Round a measured gap between funding events to whole hours (minimum 1)."""
        gap = abs(milliseconds)
        return cls(hours=max(1, round(gap / _MS_PER_HOUR)), milliseconds=gap)


class IntervalStore(ABC):
    """Key-value store of symbol -> FundingInterval."""

    @abstractmethod
    async def get(self, symbol: str) -> FundingInterval | None:
        ...

    @abstractmethod
    async def set(self, symbol: str, interval: FundingInterval) -> None:
        ...

    async def close(self) -> None:
        return None


class InMemoryIntervalStore(IntervalStore):
    """Dict-backed store. Each instance is isolated, so tests never share state."""

    def __init__(self) -> None:
        self._intervals: dict[str, FundingInterval] = {}

    async def get(self, symbol: str) -> FundingInterval | None:
        return self._intervals.get(symbol)

    async def set(self, symbol: str, interval: FundingInterval) -> None:
        self._intervals[symbol] = interval

    def __len__(self) -> int:
        return len(self._intervals)


class SqliteIntervalStore(IntervalStore):
    """Persisted store in a single SQLite table.

    Opens lazily on first use; can also be used as an async context manager.
    """

    def __init__(self, db_path: str = "data/intervals.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open the database, enable WAL and create the table if needed."""
        if self._connection is not None:
            return
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)
        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.executescript(_CREATE_TABLE_SQL)
        await self._connection.commit()
        logger.info("interval_store_connected", db_path=self._db_path)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("interval_store_closed", db_path=self._db_path)

    async def _db(self) -> aiosqlite.Connection:
        if self._connection is None:
            await self.connect()
        assert self._connection is not None
        return self._connection

    async def get(self, symbol: str) -> FundingInterval | None:
        db = await self._db()
        async with db.execute(
            "SELECT hours, milliseconds FROM funding_intervals WHERE symbol = ?",
            (symbol,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return FundingInterval(hours=int(row[0]), milliseconds=int(row[1]))

    async def set(self, symbol: str, interval: FundingInterval) -> None:
        db = await self._db()
        await db.execute(
            "INSERT OR REPLACE INTO funding_intervals "
            "(symbol, hours, milliseconds, updated_at) VALUES (?, ?, ?, ?)",
            (symbol, interval.hours, interval.milliseconds, int(time.time() * 1000)),
        )
        await db.commit()
