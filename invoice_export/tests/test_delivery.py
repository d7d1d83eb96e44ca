import base64
import json

import httpx
import pytest

from invoice_export.app.schemas.artifact import RenderedArtifact, SendInstruction
from invoice_export.app.schemas.invoice import ExportRequest
from invoice_export.app.services.delivery import (
    DeliveryChannel,
    EmailDelivery,
    build_download_response,
    compose_send_instruction,
    content_disposition,
    email_subject,
    select_channel,
)
from invoice_export.app.services.email_template import JinjaEmailRenderer
from invoice_export.app.services.errors import DeliveryError
from invoice_export.app.services.mail import (
    HttpMailSender,
    LoggingMailSender,
    build_mail_sender,
)
from invoice_export.tests.fakes import (
    FAKE_PDF,
    RecordingMailSender,
    StaticEmailRenderer,
    invoice_dict,
    make_payload,
    make_settings,
)

pytestmark = pytest.mark.anyio

ARTIFACT = RenderedArtifact(content=FAKE_PDF, filename="invoice-INV-042.pdf")


# ---------------------------------------------------------------------------
# Download channel
# ---------------------------------------------------------------------------


def test_download_response_carries_attachment_disposition():
    response = build_download_response(ARTIFACT, extra_headers={"X-Correlation-ID": "abc"})

    assert response.status_code == 200
    assert response.body == FAKE_PDF
    assert response.media_type == "application/pdf"
    assert response.headers["content-disposition"] == "attachment; filename=invoice-INV-042.pdf"
    assert response.headers["x-correlation-id"] == "abc"


def test_non_ascii_filename_gets_rfc_6266_parameter():
    header = content_disposition("invoice-СЧ-2024-01.pdf")

    assert header == (
        "attachment; filename=invoice-__-2024-01.pdf; "
        "filename*=UTF-8''invoice-%D0%A1%D0%A7-2024-01.pdf"
    )
    header.encode("latin-1")


def test_ascii_filename_is_left_plain():
    assert content_disposition("invoice-INV-042.json") == "attachment; filename=invoice-INV-042.json"


def test_channel_follows_delivery_target():
    plain = ExportRequest.model_validate({"data": invoice_dict(), "format": "pdf"})
    targeted = ExportRequest.model_validate(
        {"data": invoice_dict(), "format": "pdf", "deliveryTarget": "ap@globex.test"}
    )

    assert select_channel(plain) is DeliveryChannel.DOWNLOAD
    assert select_channel(targeted) is DeliveryChannel.EMAIL


# ---------------------------------------------------------------------------
# Send instruction
# ---------------------------------------------------------------------------


def test_subject_names_invoice_and_sender():
    assert email_subject(make_payload()) == "Invoice #INV-042 from Acme GmbH"
    assert email_subject(make_payload(sender={"city": "Berlin"})) == "Invoice #INV-042"


def test_send_instruction_wire_shape():
    instruction = compose_send_instruction(
        payload=make_payload(),
        artifact=ARTIFACT,
        to="ap@globex.test",
        html_body="<p>hi</p>",
        sender_address="invoices@acme.test",
    )

    wire = instruction.model_dump(by_alias=True, exclude_none=True)

    assert wire == {
        "to": "ap@globex.test",
        "from": "invoices@acme.test",
        "subject": "Invoice #INV-042 from Acme GmbH",
        "htmlBody": "<p>hi</p>",
        "attachments": [
            {
                "content": base64.b64encode(FAKE_PDF).decode("ascii"),
                "filename": "invoice-INV-042.pdf",
                "mimeType": "application/pdf",
            }
        ],
    }


async def test_email_delivery_hands_off_once():
    sender = RecordingMailSender()
    delivery = EmailDelivery(sender=sender, body_renderer=StaticEmailRenderer())

    assert await delivery.deliver(make_payload(), ARTIFACT, "ap@globex.test") is True

    assert len(sender.sent) == 1
    assert sender.sent[0].html_body == "<p>Invoice INV-042</p>"
    assert sender.sent[0].sender_address is None


async def test_unconfirmed_handoff_is_a_delivery_error():
    delivery = EmailDelivery(
        sender=RecordingMailSender(result=False),
        body_renderer=StaticEmailRenderer(),
    )

    with pytest.raises(DeliveryError):
        await delivery.deliver(make_payload(), ARTIFACT, "ap@globex.test")


async def test_sender_exception_is_wrapped_as_delivery_error():
    delivery = EmailDelivery(
        sender=RecordingMailSender(error=ConnectionResetError("smtp gone")),
        body_renderer=StaticEmailRenderer(),
    )

    with pytest.raises(DeliveryError, match="smtp gone"):
        await delivery.deliver(make_payload(), ARTIFACT, "ap@globex.test")


# ---------------------------------------------------------------------------
# Email body
# ---------------------------------------------------------------------------


def test_jinja_body_mentions_invoice_number():
    html = JinjaEmailRenderer().render(invoice_number="INV-042")

    assert "Your invoice #INV-042 is ready" in html


def test_jinja_body_escapes_markup():
    html = JinjaEmailRenderer().render(invoice_number="<b>1</b>")

    assert "<b>1</b>" not in html
    assert "&lt;b&gt;1&lt;/b&gt;" in html


def test_missing_template_root_fails_fast(tmp_path):
    with pytest.raises(RuntimeError):
        JinjaEmailRenderer(template_root=tmp_path / "missing")


# ---------------------------------------------------------------------------
# Mail senders
# ---------------------------------------------------------------------------


def _instruction() -> SendInstruction:
    return compose_send_instruction(
        payload=make_payload(),
        artifact=ARTIFACT,
        to="ap@globex.test",
        html_body="<p>hi</p>",
    )


async def test_logging_sender_confirms():
    assert await LoggingMailSender().send(_instruction()) is True


async def test_http_sender_posts_camel_case_json():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, json={"id": "msg-1"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sender = HttpMailSender(
            http_client=client,
            endpoint="https://mail.example.test/send",
            api_key="secret",
        )
        assert await sender.send(_instruction()) is True

    body = json.loads(seen[0].content)
    assert body["htmlBody"] == "<p>hi</p>"
    assert body["attachments"][0]["mimeType"] == "application/pdf"
    assert "from" not in body
    assert seen[0].headers["authorization"] == "Bearer secret"
    assert seen[0].headers["x-correlation-id"].startswith("invoice-export-")


async def test_http_sender_rejects_provider_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="mailbox unavailable")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sender = HttpMailSender(http_client=client, endpoint="https://mail.example.test/send")

        with pytest.raises(DeliveryError, match="status=500"):
            await sender.send(_instruction())


async def test_http_sender_wraps_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sender = HttpMailSender(http_client=client, endpoint="https://mail.example.test/send")

        with pytest.raises(DeliveryError, match="connection refused"):
            await sender.send(_instruction())


def test_backend_selection():
    assert isinstance(build_mail_sender(make_settings()), LoggingMailSender)

    with pytest.raises(RuntimeError):
        build_mail_sender(make_settings(mail_backend="http"))


async def test_http_backend_is_built_from_settings():
    settings = make_settings(
        mail_backend="http",
        mail_http_url="https://mail.example.test/send",
        mail_api_key="secret",
    )

    async with httpx.AsyncClient() as client:
        sender = build_mail_sender(settings, client)

    assert isinstance(sender, HttpMailSender)
