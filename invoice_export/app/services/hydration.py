"""
Template hydration.

A template page loads without data and listens for a window message of
type ``INVOICE_DATA``. This module navigates to the page, waits for the
network to go idle, posts the payload and establishes the point after
which the page may be captured.

Two ready signals are supported:

    acknowledge   The page posts ``{type: "INVOICE_DATA_READY"}`` back
                  once it has rendered the data. The wait is bounded by
                  ``hydration_ack_timeout_ms``; no acknowledgment is a
                  HydrationTimeoutError.

    settle        The page is given a fixed ``hydration_settle_ms`` after
                  the message is posted. Nothing is awaited, so this
                  step cannot fail, and it cannot detect a slow page.
"""

import asyncio
import logging
from typing import Any, Dict

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from invoice_export.app.core.config import Settings
from invoice_export.app.schemas.invoice import DocumentPayload
from invoice_export.app.services.engine import BrowserPage, bounded
from invoice_export.app.services.errors import (
    HydrationTimeoutError,
    NavigationError,
    NavigationTimeoutError,
    RenderError,
)

logger = logging.getLogger("invoice_export.hydration")

HYDRATION_MESSAGE_TYPE = "INVOICE_DATA"
READY_MESSAGE_TYPE = "INVOICE_DATA_READY"

_POST_SCRIPT = """
(message) => {
    window.postMessage(message, '*');
}
"""

# The listener is installed before the data is posted, so an immediate
# acknowledgment cannot be missed.
_POST_AND_AWAIT_SCRIPT = """
([message, readyType, timeoutMs]) => new Promise((resolve) => {
    const onMessage = (event) => {
        if (event.data && event.data.type === readyType) {
            window.clearTimeout(timer);
            window.removeEventListener('message', onMessage);
            resolve(true);
        }
    };
    const timer = window.setTimeout(() => {
        window.removeEventListener('message', onMessage);
        resolve(false);
    }, timeoutMs);
    window.addEventListener('message', onMessage);
    window.postMessage(message, '*');
})
"""


def hydration_message(payload: DocumentPayload) -> Dict[str, Any]:
    return {"type": HYDRATION_MESSAGE_TYPE, "data": payload.to_wire()}


async def navigate(page: BrowserPage, url: str, *, timeout_ms: int) -> None:
    """Load ``url`` and wait until the network has been idle."""
    try:
        response = await bounded(
            page.goto(url, wait_until="networkidle", timeout=timeout_ms),
            timeout_ms,
        )
    except (asyncio.TimeoutError, PlaywrightTimeoutError) as exc:
        raise NavigationTimeoutError(
            f"Template page did not reach network idle within "
            f"{timeout_ms}ms: {url}"
        ) from exc
    except Exception as exc:
        raise NavigationError(
            f"Failed to load template page {url}: {exc}"
        ) from exc

    status = getattr(response, "status", None)
    if status is not None and status >= 400:
        raise NavigationError(
            f"Template page {url} answered with HTTP {status}"
        )


async def hydrate(
    page: BrowserPage,
    payload: DocumentPayload,
    settings: Settings,
) -> None:
    """Post the payload into the loaded page and wait for the ready point."""
    message = hydration_message(payload)
    ack_timeout_ms = settings.hydration_ack_timeout_ms

    if settings.hydration_strategy == "settle":
        try:
            await bounded(page.evaluate(_POST_SCRIPT, message), ack_timeout_ms)
        except Exception as exc:
            raise RenderError(f"Failed to post invoice data: {exc}") from exc

        await asyncio.sleep(settings.hydration_settle_ms / 1000)
        return

    try:
        acknowledged = await bounded(
            page.evaluate(
                _POST_AND_AWAIT_SCRIPT,
                [message, READY_MESSAGE_TYPE, ack_timeout_ms],
            ),
            ack_timeout_ms,
        )
    except asyncio.TimeoutError as exc:
        raise HydrationTimeoutError(
            f"Template page did not acknowledge invoice data "
            f"within {ack_timeout_ms}ms"
        ) from exc
    except Exception as exc:
        raise RenderError(f"Failed to post invoice data: {exc}") from exc

    if acknowledged is not True:
        raise HydrationTimeoutError(
            f"Template page did not acknowledge invoice data "
            f"within {ack_timeout_ms}ms"
        )


async def load_and_hydrate(
    page: BrowserPage,
    url: str,
    payload: DocumentPayload,
    settings: Settings,
) -> None:
    started = asyncio.get_running_loop().time()

    await navigate(page, url, timeout_ms=settings.navigation_timeout_ms)
    await hydrate(page, payload, settings)

    logger.info(
        "template_hydrated",
        extra={
            "url": url,
            "invoice_number": payload.invoice_number,
            "strategy": settings.hydration_strategy,
            "elapsed_s": round(asyncio.get_running_loop().time() - started, 3),
        },
    )
