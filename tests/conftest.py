"""Shared fixtures: a scripted browser session, test settings and the shipped catalog."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from billburner.cancel import CancelToken
from billburner.config import PACKAGE_DIR, Settings
from billburner.definitions import load_providers
from billburner.workflow import ExecutionContext

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


class FakeSession:
    """Stands in for ExtractionCapability with a scripted page.

    Attributes:
        present: Selectors that ``element_exists`` reports as present.
        texts: Selector to text returned by ``get_text``.
        on_click: Selector to callback run when that selector is clicked.
        calls: Every action performed, in order.
    """

    def __init__(self, present=(), texts=None, on_click=None) -> None:
        self.present = set(present)
        self.texts = dict(texts or {})
        self.on_click = dict(on_click or {})
        self.calls: list[tuple] = []

    async def navigate(self, url):
        self.calls.append(("navigate", url))

    async def element_exists(self, selector, timeout_ms):
        self.calls.append(("exists", selector))
        return selector in self.present

    async def wait_for_text_change(self, previous, timeout_ms):
        self.calls.append(("await_change", *previous))
        for selector, before in previous.items():
            text = self.texts.get(selector, "")
            if text and text != before:
                return True
        return False

    async def get_text(self, selector, *, use_script=False):
        return self.texts.get(selector, "")

    async def click(self, selector, *, use_script=False):
        self.calls.append(("click", selector))
        callback = self.on_click.get(selector)
        if callback:
            callback(self)

    async def input_text(self, selector, value, *, use_script=False, dispatch_events=False):
        self.calls.append(("input", selector, value))

    async def capture_screenshot(self):
        return b"\x89PNG"

    def inputs(self) -> list[tuple]:
        return [call for call in self.calls if call[0] == "input"]


@pytest.fixture
def test_settings() -> Settings:
    """Settings with every provider configured and short timeouts."""
    return Settings(
        _env_file=None,
        ameren_username="power-user",
        ameren_password="power-pass",
        spire_username="gas-user",
        spire_password="gas-pass",
        att_username="att-user",
        att_password="att-pass",
        pennymac_username="pm-user",
        pennymac_password="pm-pass",
        state_farm_username="sf-user",
        state_farm_password="sf-pass",
        imap_host="mail.example.com",
        imap_username="codes@example.com",
        imap_password="mail-pass",
        step_timeout_ms=10,
        otp_timeout_seconds=0,
        otp_poll_interval_seconds=0,
    )


@pytest.fixture
def catalog():
    """The provider catalog shipped with the package."""
    return load_providers(PACKAGE_DIR / "providers.yaml")


@pytest.fixture
def make_context(test_settings):
    """Build an ExecutionContext around a FakeSession."""

    def _make(session: FakeSession, otp=None, settings=None) -> ExecutionContext:
        return ExecutionContext(
            session=session,
            otp=otp or AsyncMock(),
            settings=settings or test_settings,
            cancel=CancelToken(),
            clock=lambda: NOW,
        )

    return _make
