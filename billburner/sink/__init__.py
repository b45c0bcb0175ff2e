"""Sinks receiving retrieved bills.

Every sink exposes ``async write_bill(name, bill, now)`` and ``async close()``.
"""

import structlog

from billburner.config import Settings
from billburner.sink.influx import InfluxSink
from billburner.sink.points import bill_point
from billburner.sink.sqlite import SqliteSink

logger = structlog.get_logger(__name__)


async def create_sink(settings: Settings) -> InfluxSink | SqliteSink | None:
    """Build the sink selected by ``settings.sink_backend``.

    Returns:
        The sink, or None when the backend is "none".

    Raises:
        ValueError: If the backend name is unknown.
    """
    backend = settings.sink_backend.lower()
    if backend == "influx":
        return InfluxSink(
            url=settings.influxdb_url,
            token=settings.influxdb_token.get_secret_value(),
            org=settings.influxdb_org,
            bucket=settings.influxdb_bucket,
            timeout_ms=settings.influxdb_timeout_ms,
        )
    if backend == "sqlite":
        sink = SqliteSink(settings.sink_db_path)
        await sink.initialize()
        return sink
    if backend == "none":
        logger.info("sink_disabled")
        return None
    raise ValueError(f"Unknown sink backend: {settings.sink_backend}")


__all__ = [
    "InfluxSink",
    "SqliteSink",
    "bill_point",
    "create_sink",
]
