"""Time-series point layout shared by all sinks."""

from datetime import datetime
from typing import Any

from billburner.models import Bill
from billburner.normalize import days_until, isoformat_utc

MEASUREMENT = "bill"


def bill_point(name: str, bill: Bill, now: datetime) -> dict[str, Any]:
    """Build the point written for one retrieved bill.

    Args:
        name: Provider name, stored as the ``type`` tag.
        bill: A bill with ``retrieved`` set.
        now: Point timestamp and reference for ``days_until_due``.

    Returns:
        Dictionary with measurement, tags, fields and time keys.
    """
    return {
        "measurement": MEASUREMENT,
        "tags": {"type": name},
        "fields": {
            "amount_due": float(bill.amount_due),
            "due_date": isoformat_utc(bill.due_date),
            "days_until_due": days_until(bill.due_date, now),
        },
        "time": now,
    }
