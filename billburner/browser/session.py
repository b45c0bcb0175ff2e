"""Extraction capability: the browser actions available to provider workflows.

Every operation fails soft. Errors are logged and turned into the zero value
of the return type ("" / False / None / b""), so a caller cannot tell an
empty element from a failed read. Workflows rely on the bounded polls
(``element_exists`` and ``wait_for_text_change``) to detect missing pages.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog
from playwright.async_api import Page

logger = structlog.get_logger(__name__)

# Delay before synthetic input/change events, so frameworks see the typed value.
EVENT_DISPATCH_DELAY = 0.5

_TEXT_SCRIPT = "(s) => { const el = document.querySelector(s); return el ? el.textContent : ''; }"
_ATTRIBUTE_SCRIPT = (
    "([s, name]) => { const el = document.querySelector(s);"
    " return el ? el.getAttribute(name) : null; }"
)
_CLICK_SCRIPT = "(s) => document.querySelector(s).click()"
_SET_VALUE_SCRIPT = "([s, value]) => { document.querySelector(s).value = value; }"
_DISPATCH_SCRIPT = (
    "([s, type]) => document.querySelector(s)"
    ".dispatchEvent(new Event(type, { bubbles: true }))"
)


class ExtractionCapability:
    """Thin facade over one live Playwright page.

    Attributes:
        page: The page all actions run against.
        poll_interval: Seconds between checks in the bounded polls.
    """

    def __init__(self, page: Page, *, poll_interval_ms: int = 250) -> None:
        self.page = page
        self.poll_interval = poll_interval_ms / 1000

    async def navigate(self, url: str) -> None:
        logger.debug("navigating_to_url", url=url)
        try:
            await self.page.goto(url, wait_until="load")
            logger.debug("navigation_complete", url=url)
        except Exception as e:
            logger.warning("navigation_failed", url=url, error=str(e))

    async def wait_ready(self, selector: str) -> None:
        """Block until ``selector`` matches a node. There is no timeout."""
        try:
            await self.page.wait_for_selector(selector, state="attached", timeout=0)
        except Exception as e:
            logger.warning("wait_ready_failed", selector=selector, error=str(e))

    async def element_exists(self, selector: str, timeout_ms: int) -> bool:
        """Poll until ``selector`` matches or ``timeout_ms`` has elapsed.

        Returns:
            True as soon as a poll sees at least one match, False once the
            elapsed time exceeds the timeout without any match.
        """

        async def matched() -> bool:
            try:
                nodes = await self.page.query_selector_all(selector)
            except Exception as e:
                logger.warning("element_check_failed", selector=selector, error=str(e))
                return False
            return len(nodes) > 0

        found = await self._poll(matched, timeout_ms)
        logger.debug("element_exists_checked", selector=selector, found=found)
        return found

    async def wait_for_text_change(self, previous: Mapping[str, str], timeout_ms: int) -> bool:
        """Poll until any selector in ``previous`` shows new, non-empty text.

        Args:
            previous: Selector to the text it showed before the change.
            timeout_ms: Bound on the whole poll.
        """

        async def changed() -> bool:
            for selector, before in previous.items():
                text = await self.get_text(selector)
                if text and text != before:
                    return True
            return False

        return await self._poll(changed, timeout_ms)

    async def _poll(self, condition: Callable[[], Awaitable[bool]], timeout_ms: int) -> bool:
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            if await condition():
                return True
            if (loop.time() - started) * 1000 > timeout_ms:
                return False
            await asyncio.sleep(self.poll_interval)

    async def get_text(self, selector: str, *, use_script: bool = False) -> str:
        """Read the text of the first element matching ``selector``.

        Args:
            selector: CSS selector.
            use_script: Read ``textContent`` through an in-page script instead
                of ``inner_text``; catches values set after render.
        """
        try:
            if use_script:
                text = await self.page.evaluate(_TEXT_SCRIPT, selector)
            else:
                element = await self.page.query_selector(selector)
                text = await element.inner_text() if element else ""
            return (text or "").strip()
        except Exception as e:
            logger.warning("text_extraction_failed", selector=selector, error=str(e))
            return ""

    async def get_attribute(self, name: str, selector: str, *, use_script: bool = False) -> str:
        try:
            if use_script:
                value = await self.page.evaluate(_ATTRIBUTE_SCRIPT, [selector, name])
            else:
                element = await self.page.query_selector(selector)
                value = await element.get_attribute(name) if element else None
            return value or ""
        except Exception as e:
            logger.warning(
                "attribute_extraction_failed",
                selector=selector,
                attribute=name,
                error=str(e),
            )
            return ""

    async def click(self, selector: str, *, use_script: bool = False) -> None:
        """Click an element, natively or through ``element.click()`` in the page.

        The script path bypasses overlays that intercept pointer events.
        """
        try:
            if use_script:
                await self.page.evaluate(_CLICK_SCRIPT, selector)
            else:
                await self.page.click(selector)
            logger.debug("element_clicked", selector=selector, use_script=use_script)
        except Exception as e:
            logger.warning("click_failed", selector=selector, error=str(e))

    async def input_text(
        self,
        selector: str,
        value: str,
        *,
        use_script: bool = False,
        dispatch_events: bool = False,
    ) -> None:
        """Enter ``value`` into an input.

        Args:
            selector: CSS selector of the input.
            value: Text to enter.
            use_script: Assign ``element.value`` directly instead of typing.
            dispatch_events: Fire ``input`` and ``change`` events afterwards for
                pages that only react to those.
        """
        try:
            if use_script:
                await self.page.evaluate(_SET_VALUE_SCRIPT, [selector, value])
            else:
                # Type with human-like delay to avoid bot detection
                await self.page.type(selector, value, delay=50)

            if dispatch_events:
                await asyncio.sleep(EVENT_DISPATCH_DELAY)
                await self.page.evaluate(_DISPATCH_SCRIPT, [selector, "input"])
                await self.page.evaluate(_DISPATCH_SCRIPT, [selector, "change"])
        except Exception as e:
            logger.warning("input_text_failed", selector=selector, error=str(e))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        try:
            return await self.page.evaluate(script, arg)
        except Exception as e:
            logger.warning("script_evaluation_failed", error=str(e))
            return None

    async def current_url(self) -> str:
        try:
            return self.page.url
        except Exception as e:
            logger.warning("current_url_failed", error=str(e))
            return ""

    async def capture_screenshot(self) -> bytes:
        try:
            return await self.page.screenshot(full_page=True)
        except Exception as e:
            logger.warning("screenshot_failed", error=str(e))
            return b""
