"""
Tests for the Resend invoice email provider.
"""
import json
from decimal import Decimal

import httpx
import pytest

from cardshop.services.email_provider import (
    InvoiceEmail,
    InvoiceLine,
    ResendProvider,
    format_price,
    render_invoice_html,
)


def _invoice(**overrides) -> InvoiceEmail:
    data = dict(
        to="buyer@example.com",
        order_number="CS-20261019-ABCDEF12",
        customer_name="Yamada Taro",
        subtotal=Decimal(9000),
        shipping=Decimal(1500),
        total=Decimal(10500),
        items=[InvoiceLine(name="Charizard <1st Edition>", quantity=3, price=Decimal(3000))],
    )
    data.update(overrides)
    return InvoiceEmail(**data)


def _provider_with(handler) -> ResendProvider:
    provider = ResendProvider(api_key="re_test")
    provider._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return provider


class TestFormatPrice:

    def test_yen_has_no_decimals(self):
        assert format_price(Decimal(12000), "JPY") == "¥12,000"

    def test_dollars_keep_cents(self):
        assert format_price(Decimal("19.9"), "USD") == "$19.90"


class TestRenderInvoice:

    def test_contains_totals_and_wise_reference(self):
        body = render_invoice_html(_invoice())

        assert "¥10,500" in body
        assert "Reference: #CS-20261019-ABCDEF12" in body
        assert "Wise" in body

    def test_item_names_are_escaped(self):
        body = render_invoice_html(_invoice())

        assert "Charizard &lt;1st Edition&gt;" in body
        assert "<1st Edition>" not in body


class TestResendProvider:

    @pytest.mark.asyncio
    async def test_send_invoice_success(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "email_123"})

        provider = _provider_with(handler)
        result = await provider.send_invoice_email(_invoice())
        await provider.close()

        assert result.success is True
        assert result.message_id == "email_123"
        assert captured["url"] == "https://api.resend.com/emails"
        assert captured["body"]["to"] == ["buyer@example.com"]
        assert captured["body"]["subject"] == "Invoice for Order #CS-20261019-ABCDEF12"

    @pytest.mark.asyncio
    async def test_provider_error_is_reported_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="upstream broke")

        provider = _provider_with(handler)
        result = await provider.send_invoice_email(_invoice())
        await provider.close()

        assert result.success is False
        assert result.error == "HTTP 500"

    @pytest.mark.asyncio
    async def test_transport_error_is_reported_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = _provider_with(handler)
        result = await provider.send_invoice_email(_invoice())
        await provider.close()

        assert result.success is False
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        provider = ResendProvider(api_key="")

        result = await provider.send_invoice_email(_invoice())

        assert result.success is False
        assert result.error == "Email service not configured"
