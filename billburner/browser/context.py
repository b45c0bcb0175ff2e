"""Browser lifecycle management with a Playwright persistent context.

BrowserManager owns the single Chromium instance used for a run. Workflows
never touch it directly; they receive an ExtractionCapability bound to the
manager's page through the execution context.
"""

import asyncio
import shutil
from pathlib import Path

import structlog
from playwright.async_api import (
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from billburner.browser.session import ExtractionCapability
from billburner.errors import SessionConnectionError

logger = structlog.get_logger(__name__)

# Hides the most common automation fingerprints from bot-detection scripts.
STEALTH_SCRIPT = """
(function(w, n, wn) {
    Object.defineProperty(n, 'webdriver', {get: () => false});
    Object.defineProperty(n, 'plugins', {get: () => [1, 2, 3, 4, 5]});
    Object.defineProperty(n, 'languages', {get: () => ['en-US', 'en']});
    w.chrome = {runtime: {}};
    const originalQuery = wn.permissions.query;
    wn.permissions.query = (parameters) => (
        parameters.name === 'notifications'
            ? Promise.resolve({state: Notification.permission})
            : originalQuery(parameters)
    );
})(window, navigator, window.navigator);
"""


class BrowserManager:
    """Manager for the Playwright browser used by one run.

    Usage:
        manager = BrowserManager(profile_dir, headless=False)
        await manager.initialize()
        session = await manager.new_session()
        # ... run workflows against session ...
        await manager.shutdown()
    """

    def __init__(
        self,
        profile_dir: str,
        *,
        headless: bool = False,
        fresh: bool = True,
        stealth: bool = True,
        poll_interval_ms: int = 250,
    ) -> None:
        self.profile_dir = Path(profile_dir)
        self.headless = headless
        self.fresh = fresh
        self.stealth = stealth
        self.poll_interval_ms = poll_interval_ms
        self._playwright: Playwright | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Launch Chromium with a persistent profile.

        Raises:
            SessionConnectionError: If the browser fails to launch.
        """
        async with self._lock:
            if self._context is not None:
                logger.info("browser_already_initialized")
                return

            try:
                self._prepare_profile_dir()

                logger.info("initializing_playwright")
                self._playwright = await async_playwright().start()

                logger.info(
                    "launching_persistent_context",
                    user_data_dir=str(self.profile_dir),
                    headless=self.headless,
                )
                self._context = await self._playwright.chromium.launch_persistent_context(
                    user_data_dir=str(self.profile_dir),
                    headless=self.headless,
                    viewport={"width": 1280, "height": 850},
                    args=["--disable-blink-features=AutomationControlled"],
                )

                if self.stealth:
                    await self._context.add_init_script(STEALTH_SCRIPT)

                pages = self._context.pages
                self._page = pages[0] if pages else await self._context.new_page()
                await self._page.goto("about:blank")

                logger.info("browser_initialized_successfully")

            except Exception as e:
                logger.error(
                    "browser_initialization_failed",
                    error=str(e),
                    exc_info=True,
                )
                raise SessionConnectionError(f"Failed to initialize browser: {e}") from e

    def _prepare_profile_dir(self) -> None:
        if self.fresh and self.profile_dir.exists():
            logger.debug("removing_browser_profile", path=str(self.profile_dir))
            shutil.rmtree(self.profile_dir)
        self.profile_dir.mkdir(parents=True, exist_ok=True)

    async def new_session(self) -> ExtractionCapability:
        """Return the extraction capability bound to the run's page.

        Raises:
            SessionConnectionError: If the browser could not be started.
        """
        if self._page is None:
            await self.initialize()

        if self._page is None:
            raise SessionConnectionError("Browser page is not available")

        return ExtractionCapability(self._page, poll_interval_ms=self.poll_interval_ms)

    async def shutdown(self) -> None:
        """Close the browser and stop Playwright.

        Safe to call more than once, including from the cancellation path.
        """
        async with self._lock:
            self._page = None
            if self._context is not None:
                logger.info("closing_browser_context")
                try:
                    await self._context.close()
                except Exception as e:
                    logger.warning(
                        "error_closing_context",
                        error=str(e),
                    )
                finally:
                    self._context = None

            if self._playwright is not None:
                logger.info("stopping_playwright")
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.warning(
                        "error_stopping_playwright",
                        error=str(e),
                    )
                finally:
                    self._playwright = None

            logger.info("browser_shutdown_complete")
