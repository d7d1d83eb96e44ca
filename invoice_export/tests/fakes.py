"""
Fake rendering engine and mail sender for pipeline tests.

The fake engine mirrors the small slice of Playwright the pipeline uses
and counts every launch, page open and close so tests can assert that
sessions are released exactly once.

IMPORTANT:
- Deterministic
- Never launches a real browser
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, List, Optional

from invoice_export.app.core.config import Settings
from invoice_export.app.schemas.artifact import SendInstruction
from invoice_export.app.schemas.invoice import DocumentPayload

FAKE_PDF = b"%PDF-1.7\n% fake invoice\n%%EOF\n"

INVOICE = {
    "locale": "de",
    "sender": {"name": "Acme GmbH", "city": "Berlin"},
    "receiver": {"name": "Globex Ltd", "email": "billing@globex.test"},
    "details": {
        "invoiceNumber": "INV-042",
        "pdfTemplate": 2,
        "currency": "EUR",
        "items": [
            {"name": "Consulting", "quantity": 3, "unitPrice": 120.5},
            {"name": "Travel", "quantity": 1, "unitPrice": 80},
        ],
        "taxDetails": {"amount": 19, "amountType": "percentage"},
    },
}


def invoice_dict(**overrides: Any) -> Dict[str, Any]:
    data = copy.deepcopy(INVOICE)
    data.update(overrides)
    return data


def make_payload(**overrides: Any) -> DocumentPayload:
    return DocumentPayload.model_validate(invoice_dict(**overrides))


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "hydration_settle_ms": 0,
        "hydration_ack_timeout_ms": 2_000,
        "template_host": None,
        "session_pool_size": 0,
        "mail_backend": "log",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeResponse:
    def __init__(self, status: int) -> None:
        self.status = status


class FakePage:
    def __init__(self, engine: FakeEngine) -> None:
        self._engine = engine

    async def goto(
        self,
        url: str,
        *,
        wait_until: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> FakeResponse:
        engine = self._engine
        engine.visited.append({"url": url, "wait_until": wait_until, "timeout": timeout})
        engine.goto_started.set()

        if engine.goto_delay:
            await asyncio.sleep(engine.goto_delay)
        if engine.goto_error is not None:
            raise engine.goto_error

        return FakeResponse(engine.goto_status)

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        self._engine.evaluated.append({"expression": expression, "arg": arg})
        if self._engine.evaluate_delay:
            await asyncio.sleep(self._engine.evaluate_delay)
        if self._engine.evaluate_error is not None:
            raise self._engine.evaluate_error
        return self._engine.ack

    async def pdf(self, **options: Any) -> bytes:
        self._engine.pdf_options.append(options)
        if self._engine.pdf_delay:
            await asyncio.sleep(self._engine.pdf_delay)
        if self._engine.pdf_error is not None:
            raise self._engine.pdf_error
        return self._engine.pdf_bytes

    async def close(self) -> None:
        self._engine.page_closes += 1
        self._engine.page_close_started.set()
        if self._engine.page_close_delay:
            await asyncio.sleep(self._engine.page_close_delay)
        if self._engine.page_close_error is not None:
            raise self._engine.page_close_error


class FakeBrowser:
    def __init__(self, engine: FakeEngine) -> None:
        self._engine = engine
        self.pages_opened = 0

    async def new_page(self) -> FakePage:
        self._engine.pages_opened += 1
        if self._engine.new_page_error is not None:
            raise self._engine.new_page_error
        self.pages_opened += 1
        return FakePage(self._engine)

    async def close(self) -> None:
        self._engine.browser_closes += 1
        self._engine.browser_closed.set()
        if self._engine.browser_close_error is not None:
            raise self._engine.browser_close_error


class FakeEngine:
    def __init__(
        self,
        *,
        launch_error: Optional[BaseException] = None,
        new_page_error: Optional[BaseException] = None,
        goto_error: Optional[BaseException] = None,
        goto_status: int = 200,
        goto_delay: float = 0,
        ack: Any = True,
        evaluate_error: Optional[BaseException] = None,
        evaluate_delay: float = 0,
        pdf_bytes: bytes = FAKE_PDF,
        pdf_error: Optional[BaseException] = None,
        pdf_delay: float = 0,
        page_close_delay: float = 0,
        page_close_error: Optional[BaseException] = None,
        browser_close_error: Optional[BaseException] = None,
    ) -> None:
        self.launch_error = launch_error
        self.new_page_error = new_page_error
        self.goto_error = goto_error
        self.goto_status = goto_status
        self.goto_delay = goto_delay
        self.ack = ack
        self.evaluate_error = evaluate_error
        self.evaluate_delay = evaluate_delay
        self.pdf_bytes = pdf_bytes
        self.pdf_error = pdf_error
        self.pdf_delay = pdf_delay
        self.page_close_delay = page_close_delay
        self.page_close_error = page_close_error
        self.browser_close_error = browser_close_error

        self.launches = 0
        self.browsers: List[FakeBrowser] = []
        self.pages_opened = 0
        self.page_closes = 0
        self.browser_closes = 0
        self.visited: List[Dict[str, Any]] = []
        self.evaluated: List[Dict[str, Any]] = []
        self.pdf_options: List[Dict[str, Any]] = []
        self.goto_started = asyncio.Event()
        self.page_close_started = asyncio.Event()
        self.browser_closed = asyncio.Event()

    async def launch(self, settings: Settings) -> FakeBrowser:
        self.launches += 1
        if self.launch_error is not None:
            raise self.launch_error
        browser = FakeBrowser(self)
        self.browsers.append(browser)
        return browser

    @property
    def open_browsers(self) -> int:
        return len(self.browsers) - self.browser_closes


class RecordingMailSender:
    def __init__(
        self,
        *,
        result: bool = True,
        error: Optional[BaseException] = None,
    ) -> None:
        self.result = result
        self.error = error
        self.sent: List[SendInstruction] = []

    async def send(self, instruction: SendInstruction) -> bool:
        self.sent.append(instruction)
        if self.error is not None:
            raise self.error
        return self.result


class StaticEmailRenderer:
    def render(self, *, invoice_number: str) -> str:
        return f"<p>Invoice {invoice_number}</p>"
