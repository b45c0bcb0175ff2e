"""InfluxDB sink for retrieved bills."""

import asyncio
from datetime import datetime

import structlog
from influxdb_client import InfluxDBClient, Point
from influxdb_client.client.write_api import SYNCHRONOUS

from billburner.models import Bill
from billburner.sink.points import bill_point

logger = structlog.get_logger(__name__)


class InfluxSink:
    """Writes one ``bill`` point per retrieved bill using the blocking write API.

    Each write runs in a worker thread bounded by ``timeout_ms``.

    Attributes:
        bucket: Destination bucket.
        org: Organization owning the bucket.
    """

    def __init__(
        self,
        url: str,
        token: str,
        org: str,
        bucket: str,
        timeout_ms: int = 10000,
        client: InfluxDBClient | None = None,
    ) -> None:
        self.bucket = bucket
        self.org = org
        self._client = client or InfluxDBClient(url=url, token=token, org=org, timeout=timeout_ms)
        self._write_api = self._client.write_api(write_options=SYNCHRONOUS)

        logger.info("influx_sink_initialized", url=url, org=org, bucket=bucket)

    async def write_bill(self, name: str, bill: Bill, now: datetime) -> None:
        """Write a bill point. Write errors are logged, never raised."""
        point = Point.from_dict(bill_point(name, bill, now))
        try:
            await asyncio.to_thread(
                self._write_api.write, bucket=self.bucket, org=self.org, record=point
            )
            logger.info("bill_point_written", type=name, sink="influx")
        except Exception as e:
            logger.error("influx_write_failed", type=name, error=str(e))

    async def close(self) -> None:
        self._client.close()
        logger.info("influx_sink_closed")
