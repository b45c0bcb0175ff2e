"""Bill records shared by the workflows, the status table and the sinks."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

# Reserved due date meaning "unknown / not retrieved".
UNKNOWN_DUE_DATE = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass
class Bill:
    """Amount and due date for one provider.

    Attributes:
        amount_due: Non-negative amount in dollars.
        due_date: Aware UTC datetime, or UNKNOWN_DUE_DATE.
        retrieved: True only once the provider's workflow finished successfully.
    """

    amount_due: Decimal = field(default_factory=lambda: Decimal("0"))
    due_date: datetime = UNKNOWN_DUE_DATE
    retrieved: bool = False

    @property
    def has_due_date(self) -> bool:
        return self.due_date != UNKNOWN_DUE_DATE


@dataclass
class ProviderEntry:
    """A named bill in the run's fixed display order."""

    name: str
    bill: Bill = field(default_factory=Bill)
