"""
Render session lifecycle.

A RenderSession owns exactly one page on one browser for the duration of
a single export request. Sessions are only handed out through a session
provider's ``session()`` context manager, which releases them on every
exit path: normal return, raised error, timeout and task cancellation.

Two providers exist:

    OneShotSessionProvider   launches a browser per request and closes it
                             on release (``session_pool_size = 0``).
    SessionPool              keeps up to N browsers alive and leases one
                             of them, with one fresh page, per request.
                             A browser is never shared by two in-flight
                             hydrations.

Release never raises on close failures; they are logged. Providers shield
release from cancellation so a cancelled request still closes its browser.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from enum import Enum
from typing import (
    AsyncContextManager,
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Optional,
    Protocol,
    Set,
)
from uuid import uuid4

from invoice_export.app.core.config import Settings
from invoice_export.app.schemas.invoice import DocumentPayload
from invoice_export.app.services.capture import INVOICE_PDF_LAYOUT, PdfLayout, capture_pdf
from invoice_export.app.services.engine import (
    BrowserEngine,
    BrowserHandle,
    BrowserPage,
    bounded,
)
from invoice_export.app.services.errors import LaunchError, SessionClosedError
from invoice_export.app.services.hydration import load_and_hydrate

logger = logging.getLogger("invoice_export.session")

Disposer = Callable[[BrowserHandle, bool], Awaitable[None]]


class SessionState(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Launch helpers
# ---------------------------------------------------------------------------


async def launch_browser(engine: BrowserEngine, settings: Settings) -> BrowserHandle:
    try:
        return await bounded(engine.launch(settings), settings.launch_timeout_ms)
    except Exception as exc:
        logger.error(
            "browser_launch_failed",
            extra={
                "executable_path": settings.browser_executable_path,
                "error_type": type(exc).__name__,
            },
        )
        raise LaunchError(f"Failed to launch rendering engine: {exc}") from exc


async def open_page(browser: BrowserHandle, settings: Settings) -> BrowserPage:
    try:
        return await bounded(browser.new_page(), settings.launch_timeout_ms)
    except Exception as exc:
        raise LaunchError(f"Failed to open a browser page: {exc}") from exc


async def close_browser_quietly(browser: BrowserHandle) -> None:
    try:
        await browser.close()
    except Exception:
        logger.warning("browser_close_failed", exc_info=True)


async def _close_browser(browser: BrowserHandle, reusable: bool) -> None:
    await close_browser_quietly(browser)


async def acquire_session(engine: BrowserEngine, settings: Settings) -> RenderSession:
    """
    Launch a dedicated browser and open its single page.

    Raises LaunchError when either step fails. Nothing is left running
    in that case, so the caller owes no cleanup.
    """
    browser = await launch_browser(engine, settings)

    try:
        page = await open_page(browser, settings)
    except LaunchError:
        await close_browser_quietly(browser)
        raise

    return RenderSession(browser=browser, page=page, settings=settings)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class RenderSession:
    """A live browser/page pair scoped to one export request."""

    def __init__(
        self,
        *,
        browser: BrowserHandle,
        page: BrowserPage,
        settings: Settings,
        dispose: Optional[Disposer] = None,
    ) -> None:
        self.session_id = uuid4().hex[:12]
        self._browser = browser
        self._page = page
        self._settings = settings
        self._dispose = dispose or _close_browser
        self._state = SessionState.ACTIVE
        self._opened_at = time.perf_counter()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def page(self) -> BrowserPage:
        if self._state is SessionState.CLOSED:
            raise SessionClosedError(
                f"Render session {self.session_id} has been released"
            )
        return self._page

    async def hydrate_and_capture(
        self,
        url: str,
        payload: DocumentPayload,
        layout: PdfLayout = INVOICE_PDF_LAYOUT,
    ) -> bytes:
        """Navigate, hydrate and print the template page to PDF bytes."""
        page = self.page

        await load_and_hydrate(page, url, payload, self._settings)

        return await capture_pdf(
            page,
            timeout_ms=self._settings.capture_timeout_ms,
            layout=layout,
        )

    async def release(self) -> None:
        """Close the page and hand the browser to the disposer. Idempotent."""
        if self._state is SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED

        # Until the page is confirmed closed the browser must not be reused.
        reusable = False
        try:
            await bounded(self._page.close(), self._settings.launch_timeout_ms)
            reusable = True
        except Exception:
            logger.warning(
                "page_close_failed",
                extra={"session_id": self.session_id},
                exc_info=True,
            )
        finally:
            try:
                await self._dispose(self._browser, reusable)
            except Exception:
                logger.warning(
                    "browser_dispose_failed",
                    extra={"session_id": self.session_id},
                    exc_info=True,
                )

        logger.debug(
            "render_session_released",
            extra={
                "session_id": self.session_id,
                "lifetime_s": round(time.perf_counter() - self._opened_at, 3),
            },
        )


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class SessionProvider(Protocol):
    def session(self) -> AsyncContextManager[RenderSession]:
        ...

    async def aclose(self) -> None:
        ...


class OneShotSessionProvider:
    """One browser process per request."""

    def __init__(self, engine: BrowserEngine, settings: Settings) -> None:
        self._engine = engine
        self._settings = settings

    @asynccontextmanager
    async def session(self) -> AsyncIterator[RenderSession]:
        session = await acquire_session(self._engine, self._settings)
        try:
            yield session
        finally:
            await asyncio.shield(session.release())

    async def aclose(self) -> None:
        return


class SessionPool:
    """
    Bounded pool of reusable browsers.

    A semaphore caps the number of leased browsers at ``size``. A browser
    whose page failed to close is discarded instead of being reused.
    """

    def __init__(self, engine: BrowserEngine, settings: Settings, size: int) -> None:
        if size < 1:
            raise ValueError("SessionPool size must be at least 1")

        self._engine = engine
        self._settings = settings
        self._size = size
        self._slots = asyncio.Semaphore(size)
        self._idle: List[BrowserHandle] = []
        self._live: Set[int] = set()
        self._closed = False

    @property
    def live_browsers(self) -> int:
        return len(self._live)

    @property
    def idle_browsers(self) -> int:
        return len(self._idle)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[RenderSession]:
        if self._closed:
            raise LaunchError("Session pool is closed")

        async with self._slots:
            browser = await self._checkout()

            try:
                page = await open_page(browser, self._settings)
            except LaunchError:
                await self._discard(browser)
                raise

            session = RenderSession(
                browser=browser,
                page=page,
                settings=self._settings,
                dispose=self._give_back,
            )
            try:
                yield session
            finally:
                await asyncio.shield(session.release())

    async def _checkout(self) -> BrowserHandle:
        if self._idle:
            return self._idle.pop()

        browser = await launch_browser(self._engine, self._settings)
        self._live.add(id(browser))
        logger.info(
            "pool_browser_launched",
            extra={"live": len(self._live), "size": self._size},
        )
        return browser

    async def _give_back(self, browser: BrowserHandle, reusable: bool) -> None:
        if reusable and not self._closed:
            self._idle.append(browser)
            return
        await self._discard(browser)

    async def _discard(self, browser: BrowserHandle) -> None:
        self._live.discard(id(browser))
        await close_browser_quietly(browser)

    async def aclose(self) -> None:
        self._closed = True
        idle, self._idle = self._idle, []
        for browser in idle:
            await self._discard(browser)
        logger.info("session_pool_closed", extra={"closed": len(idle)})


def build_session_provider(engine: BrowserEngine, settings: Settings) -> SessionProvider:
    if settings.session_pool_size > 0:
        return SessionPool(engine, settings, settings.session_pool_size)
    return OneShotSessionProvider(engine, settings)
