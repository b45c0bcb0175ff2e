"""Status table of all bills in the run."""

from datetime import datetime
from decimal import Decimal

from rich.console import Console
from rich.table import Table

from billburner.models import ProviderEntry
from billburner.normalize import format_days_until, format_due_date

HEADERS = ("Bill Type", "Amount Due ($)", "Due Date", "Days Until Due")


def bill_rows(entries: list[ProviderEntry], now: datetime) -> list[tuple[str, str, str, str]]:
    """Rows of the status table, followed by the totals row."""
    rows = []
    total = Decimal("0")
    for entry in entries:
        bill = entry.bill
        rows.append(
            (
                entry.name,
                f"{bill.amount_due:.2f}",
                format_due_date(bill.due_date),
                format_days_until(bill.due_date, now),
            )
        )
        total += bill.amount_due
    rows.append(("Total", f"{total:.2f}", "", ""))
    return rows


def build_table(entries: list[ProviderEntry], now: datetime) -> Table:
    table = Table(title="Bills")
    for header in HEADERS:
        table.add_column(header, justify="right" if header.startswith(("Amount", "Days")) else "left")

    rows = bill_rows(entries, now)
    for row in rows[:-1]:
        table.add_row(*row)
    table.add_section()
    table.add_row(*rows[-1], style="bold")
    return table


def render_bills(console: Console, entries: list[ProviderEntry], now: datetime) -> None:
    """Clear the terminal and print the current status table."""
    console.clear()
    console.print(build_table(entries, now))
