"""Browser automation module for bill portals.

This module provides browser lifecycle management and the extraction
capability used by provider workflows, built on Playwright with a
persistent Chromium profile.
"""

from billburner.browser.context import BrowserManager
from billburner.browser.session import ExtractionCapability

__all__ = [
    "BrowserManager",
    "ExtractionCapability",
]
