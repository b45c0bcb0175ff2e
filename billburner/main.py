"""Command entry point: retrieve every bill once and exit.

Exit codes: 0 after all providers ran, 1 on SIGINT/SIGTERM, 2 when the
watchdog expires, 3 when the browser or provider config cannot be loaded.
"""

import asyncio
import logging
import signal
import sys

import structlog
from rich.console import Console

from billburner.browser.context import BrowserManager
from billburner.cancel import CancelReason, CancelToken
from billburner.config import Settings, settings
from billburner.definitions import load_providers
from billburner.errors import SessionConnectionError
from billburner.mail.otp import OtpRetriever
from billburner.runner import BillRunner
from billburner.sink import create_sink
from billburner.workflow import ExecutionContext

STARTUP_FAILURE_EXIT_CODE = 3


def configure_logging(config: Settings) -> None:
    """Configure structlog for JSON or console output."""
    if config.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, config.log_level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)


async def run(config: Settings) -> int:
    """Retrieve all bills with a fresh browser, sink and cancel token."""
    try:
        catalog = load_providers(config.providers_path)
        logger.info("providers_loaded", path=config.providers_path, count=len(catalog.providers))
    except Exception as e:
        logger.error("failed_to_load_providers", error=str(e), exc_info=True)
        return STARTUP_FAILURE_EXIT_CODE

    cancel = CancelToken()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, cancel.cancel, CancelReason.INTERRUPT)
    watchdog = loop.call_later(config.watchdog_seconds, cancel.cancel, CancelReason.WATCHDOG)

    browser = BrowserManager(
        config.browser_profile_dir,
        headless=config.browser_headless,
        fresh=config.browser_fresh_profile,
        stealth=config.browser_stealth,
        poll_interval_ms=config.poll_interval_ms,
    )
    sink = None
    try:
        sink = await create_sink(config)
        session = await browser.new_session()
        context = ExecutionContext(
            session=session,
            otp=OtpRetriever(),
            settings=config,
            cancel=cancel,
        )
        runner = BillRunner(catalog, context, sink=sink, console=Console())
        return await runner.run()
    except (SessionConnectionError, ValueError) as e:
        logger.error("startup_failed", error_type=type(e).__name__, error=str(e))
        return STARTUP_FAILURE_EXIT_CODE
    finally:
        watchdog.cancel()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)
        await browser.shutdown()
        if sink is not None:
            await sink.close()


def main() -> None:
    configure_logging(settings)
    sys.exit(asyncio.run(run(settings)))


if __name__ == "__main__":
    main()
