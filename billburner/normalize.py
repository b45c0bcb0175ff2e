"""Conversion of raw page text into amounts and due dates.

Portals render amounts as ``$123.45`` embedded in arbitrary text and use a
different date layout each. Parsing never raises to the caller: an amount
that cannot be found becomes zero and a date that cannot be parsed becomes
``UNKNOWN_DUE_DATE``. A genuine zero balance is therefore indistinguishable
from a missing one.
"""

import math
import re
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

import structlog

from billburner.errors import ParseFailure
from billburner.models import UNKNOWN_DUE_DATE

logger = structlog.get_logger(__name__)

AMOUNT_PATTERN = re.compile(r"\$\s*(\d{1,3}(?:,\d{3})+|\d+)\.(\d{2})(?!\d)")

# Displayed day counts below this are treated as stale data and shown as 0.
STALE_DAYS_THRESHOLD = -100

DISPLAY_DATE_FORMAT = "%m/%d/%Y"


def parse_amount(text: str) -> Decimal:
    """Parse the first dollar amount found in ``text``.

    Args:
        text: Page text such as "Amount due: $1,234.56".

    Returns:
        The amount as a Decimal with two places, or Decimal("0") if no
        amount is present.
    """
    try:
        return _parse_amount(text)
    except ParseFailure as e:
        logger.warning("amount_parse_failed", text=text, error=str(e))
        return Decimal("0")


def _parse_amount(text: str) -> Decimal:
    match = AMOUNT_PATTERN.search(text or "")
    if not match:
        raise ParseFailure("no dollar amount in text")

    whole, cents = match.groups()
    try:
        return Decimal(f"{whole.replace(',', '')}.{cents}")
    except InvalidOperation as e:
        raise ParseFailure(f"invalid amount {match.group(0)!r}") from e


def clean_date_text(
    text: str,
    *,
    after: str | None = None,
    before: str | None = None,
    remove: Iterable[str] = (),
    first_token: bool = False,
    year: int | None = None,
) -> str:
    """Strip provider-specific decoration around a displayed date.

    Args:
        text: Raw element text.
        after: Keep only the text following the first occurrence of this marker.
        before: Keep only the text preceding the first occurrence of this marker.
        remove: Literal fragments to delete.
        first_token: Keep only the first whitespace-separated token.
        year: Append this year, for portals that omit it.

    Returns:
        The cleaned text with whitespace collapsed, or "" if a marker is missing.
    """
    cleaned = text or ""
    if after is not None:
        _, found, tail = cleaned.partition(after)
        if not found:
            return ""
        cleaned = tail
    if before is not None:
        cleaned = cleaned.partition(before)[0]
    for fragment in remove:
        cleaned = cleaned.replace(fragment, " ")

    tokens = cleaned.split()
    if first_token:
        tokens = tokens[:1]
    cleaned = " ".join(tokens).rstrip(".,;:")
    if not cleaned:
        return ""
    if year is not None:
        cleaned = f"{cleaned} {year}"
    return cleaned


def parse_due_date(text: str, layout: str) -> datetime:
    """Parse a displayed due date and shift it forward one calendar day.

    Portals show the last day on which payment is accepted; the stored due
    instant is midnight UTC of the following day.

    Args:
        text: Cleaned date text, e.g. "May 08, 2024".
        layout: ``strptime`` format matching the text, e.g. "%b %d, %Y".

    Returns:
        Aware UTC datetime, or UNKNOWN_DUE_DATE if the text does not parse.
    """
    try:
        parsed = _parse_date(text, layout)
    except ParseFailure as e:
        logger.warning("due_date_parse_failed", text=text, layout=layout, error=str(e))
        return UNKNOWN_DUE_DATE
    return parsed + timedelta(days=1)


def _parse_date(text: str, layout: str) -> datetime:
    try:
        parsed = datetime.strptime(text.strip(), layout)
    except (ValueError, AttributeError) as e:
        raise ParseFailure(str(e)) from e
    return parsed.replace(tzinfo=timezone.utc)


def next_month_day(day: int, now: datetime) -> datetime:
    """Return ``day`` of the month after ``now`` at midnight UTC."""
    year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
    return datetime(year, month, day, tzinfo=timezone.utc)


def days_until(due_date: datetime, now: datetime) -> int:
    """Whole days from ``now`` until ``due_date``, rounded down.

    Values below -100 come from stale or mis-parsed dates and are reported
    as 0. The stored due date itself is left untouched.
    """
    days = math.floor((due_date - now) / timedelta(days=1))
    if days < STALE_DAYS_THRESHOLD:
        return 0
    return days


def format_due_date(due_date: datetime) -> str:
    """Format a due date for display, "N/A" when it is unknown."""
    if due_date == UNKNOWN_DUE_DATE:
        return "N/A"
    return due_date.strftime(DISPLAY_DATE_FORMAT)


def format_days_until(due_date: datetime, now: datetime) -> str:
    if due_date == UNKNOWN_DUE_DATE:
        return "N/A"
    return str(days_until(due_date, now))


def isoformat_utc(moment: datetime) -> str:
    """Serialize an instant as ISO 8601 in UTC with a ``Z`` suffix."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
