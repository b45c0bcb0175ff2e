"""Run-wide cancellation token.

Both the OS signal handler and the wall-clock watchdog cancel the run by
setting this token. The first reason wins and determines the exit code.
Workflows check it between states; the runner races each workflow against
it so that a step blocked inside the browser is abandoned immediately.
"""

import asyncio
from enum import Enum

import structlog

from billburner.errors import RunCancelled

logger = structlog.get_logger(__name__)


class CancelReason(str, Enum):
    INTERRUPT = "interrupt"
    WATCHDOG = "watchdog"


EXIT_CODES = {
    CancelReason.INTERRUPT: 1,
    CancelReason.WATCHDOG: 2,
}


class CancelToken:
    """Single-assignment cancellation flag shared by the whole run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: CancelReason | None = None

    def cancel(self, reason: CancelReason) -> None:
        if self.reason is not None:
            return
        self.reason = reason
        self._event.set()
        logger.warning("run_cancelled", reason=reason.value)

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> CancelReason:
        await self._event.wait()
        return self.reason  # type: ignore[return-value]

    def raise_if_cancelled(self) -> None:
        if self.reason is not None:
            raise RunCancelled(self.reason.value)

    @property
    def exit_code(self) -> int:
        if self.reason is None:
            return 0
        return EXIT_CODES[self.reason]
