"""Sequential execution of all provider workflows.

The runner walks the provider catalog in order, one workflow at a time,
re-rendering the status table after each and writing retrieved bills to
the sink. It owns the run's cancellation: every workflow is raced against
the cancel token and abandoned as soon as the token fires.
"""

import asyncio
import contextlib
from typing import Callable

import structlog
from rich.console import Console

from billburner.definitions import ProviderCatalog, ProviderDefinition
from billburner.errors import RunCancelled
from billburner.models import Bill, ProviderEntry
from billburner.report import render_bills
from billburner.workflow import ExecutionContext, ProviderWorkflow, WorkflowState

logger = structlog.get_logger(__name__)


class BillRunner:
    """Runs every provider of a catalog against one execution context.

    Attributes:
        entries: One entry per provider, in catalog order.
        sink: Destination for retrieved bills, or None to skip writing.
    """

    def __init__(
        self,
        catalog: ProviderCatalog,
        context: ExecutionContext,
        sink=None,
        console: Console | None = None,
        workflow_factory: Callable[[ProviderDefinition, ExecutionContext], ProviderWorkflow] = ProviderWorkflow,
    ) -> None:
        self.catalog = catalog
        self.context = context
        self.sink = sink
        self.console = console or Console()
        self.workflow_factory = workflow_factory
        self.entries = [ProviderEntry(provider.name) for provider in catalog.providers]

    @property
    def bills(self) -> dict[str, Bill]:
        return {entry.name: entry.bill for entry in self.entries}

    async def run(self) -> int:
        """Run all providers in order.

        Returns:
            Process exit code: 0 when every provider ran, otherwise the
            cancel token's code (1 interrupt, 2 watchdog).
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        cancel = self.context.cancel

        logger.info("run_started", providers=[entry.name for entry in self.entries])

        for provider in self.catalog.providers:
            if cancel.is_set():
                break
            if not provider.runs_workflow:
                logger.debug("provider_shared", provider=provider.name, shared_with=provider.shared_with)
                continue

            state = await self._run_workflow(provider)
            if state is None:
                break

            now = self.context.clock()
            render_bills(self.console, self.entries, now)
            await self._write_bills(provider, now)

        if cancel.is_set():
            logger.warning("run_aborted", reason=cancel.reason.value, exit_code=cancel.exit_code)
            return cancel.exit_code

        elapsed = loop.time() - started
        self.console.print("Done :)")
        self.console.print(f"Time Elapsed: {elapsed:.1f}s")
        logger.info("run_completed", elapsed_seconds=round(elapsed, 1))
        return 0

    async def _run_workflow(self, provider: ProviderDefinition) -> WorkflowState | None:
        """Run one workflow, racing it against the cancel token.

        Returns:
            The workflow's final state, or None if the run was cancelled.
        """
        workflow = self.workflow_factory(provider, self.context)
        task = asyncio.create_task(workflow.run(self.bills))
        cancelled = asyncio.create_task(self.context.cancel.wait())
        try:
            done, _ = await asyncio.wait({task, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()

        if task not in done:
            logger.warning("workflow_abandoned", provider=provider.name, state=workflow.state.value)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, RunCancelled):
                await task
            return None

        try:
            return task.result()
        except RunCancelled:
            return None
        except Exception as e:
            # Unexpected bugs in one provider must not stop the others.
            logger.error(
                "workflow_crashed",
                provider=provider.name,
                error=str(e),
                exc_info=True,
            )
            return WorkflowState.FAILED

    async def _write_bills(self, provider: ProviderDefinition, now) -> None:
        if self.sink is None:
            return
        bills = self.bills
        for name in provider.bill_names:
            bill = bills[name]
            if not bill.retrieved:
                logger.debug("bill_not_written", provider=name)
                continue
            await self.sink.write_bill(name, bill, now)
