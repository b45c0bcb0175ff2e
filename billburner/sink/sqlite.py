"""SQLite sink storing bill points locally.

Useful when no InfluxDB is available: every point the InfluxDB sink would
write is stored as one row of the ``points`` table instead.
"""

import asyncio
from datetime import datetime
from pathlib import Path

import aiosqlite
import structlog

from billburner.models import Bill
from billburner.sink.points import bill_point

logger = structlog.get_logger(__name__)


class SqliteSink:
    """SQLite-backed point store.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the database and create the ``points`` table if needed."""
        async with self._lock:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute(
                """
                CREATE TABLE IF NOT EXISTS points (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    measurement TEXT NOT NULL,
                    type TEXT NOT NULL,
                    amount_due REAL NOT NULL,
                    due_date TEXT NOT NULL,
                    days_until_due INTEGER NOT NULL,
                    time TEXT NOT NULL
                )
                """
            )
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_points_type_time ON points(type, time)"
            )
            await self._db.commit()

            logger.info("sink_database_initialized", db_path=self.db_path)

    async def write_bill(self, name: str, bill: Bill, now: datetime) -> None:
        if not self._db:
            await self.initialize()

        point = bill_point(name, bill, now)
        fields = point["fields"]

        async with self._lock:
            try:
                await self._db.execute(  # type: ignore
                    """
                    INSERT INTO points
                        (measurement, type, amount_due, due_date, days_until_due, time)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        point["measurement"],
                        point["tags"]["type"],
                        fields["amount_due"],
                        fields["due_date"],
                        fields["days_until_due"],
                        point["time"].isoformat(),
                    ),
                )
                await self._db.commit()  # type: ignore
                logger.info("bill_point_written", type=name, sink="sqlite")
            except aiosqlite.Error as e:
                logger.error("sqlite_write_failed", type=name, error=str(e))

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("sink_database_closed")
