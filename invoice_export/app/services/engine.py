"""
Rendering engine boundary.

The pipeline talks to the browser only through the three small
protocols below. ``PlaywrightEngine`` is the production implementation
(headless Chromium via Playwright's async API); tests substitute a fake
engine that records launches and closes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Protocol, TypeVar

from playwright.async_api import Browser, Playwright, async_playwright

from invoice_export.app.core.config import Settings

logger = logging.getLogger("invoice_export.engine")

T = TypeVar("T")

# Outer asyncio bound sits just past the timeout Playwright enforces itself.
_TIMEOUT_GRACE_S = 1.0


async def bounded(awaitable: Awaitable[T], timeout_ms: int) -> T:
    """Await ``awaitable``, raising asyncio.TimeoutError past ``timeout_ms``."""
    return await asyncio.wait_for(
        awaitable,
        timeout=timeout_ms / 1000 + _TIMEOUT_GRACE_S,
    )


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class BrowserPage(Protocol):
    async def goto(
        self,
        url: str,
        *,
        wait_until: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        ...

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        ...

    async def pdf(self, **options: Any) -> bytes:
        ...

    async def close(self) -> None:
        ...


class BrowserHandle(Protocol):
    async def new_page(self) -> BrowserPage:
        ...

    async def close(self) -> None:
        ...


class BrowserEngine(Protocol):
    async def launch(self, settings: Settings) -> BrowserHandle:
        ...


# ---------------------------------------------------------------------------
# Playwright implementation
# ---------------------------------------------------------------------------


class PlaywrightBrowser:
    """A launched Chromium process together with its Playwright driver."""

    def __init__(
        self,
        *,
        playwright: Playwright,
        browser: Browser,
        ignore_https_errors: bool,
    ) -> None:
        self._playwright = playwright
        self._browser = browser
        self._ignore_https_errors = ignore_https_errors

    async def new_page(self) -> BrowserPage:
        return await self._browser.new_page(
            ignore_https_errors=self._ignore_https_errors,
        )

    async def close(self) -> None:
        try:
            await self._browser.close()
        finally:
            await self._playwright.stop()


class PlaywrightEngine:
    """Launches headless Chromium with the configured hardened flags."""

    async def launch(self, settings: Settings) -> BrowserHandle:
        playwright = await async_playwright().start()

        try:
            browser = await playwright.chromium.launch(
                executable_path=settings.browser_executable_path,
                headless=settings.browser_headless,
                args=list(settings.browser_args),
                timeout=settings.launch_timeout_ms,
            )
        except BaseException:
            await playwright.stop()
            raise

        logger.debug(
            "chromium_launched",
            extra={
                "executable_path": settings.browser_executable_path,
                "browser_version": browser.version,
            },
        )

        return PlaywrightBrowser(
            playwright=playwright,
            browser=browser,
            ignore_https_errors=settings.ignore_https_errors,
        )
