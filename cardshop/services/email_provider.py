"""
Email Provider (Resend)

Transactional invoice email sent after an order is placed. Delivery failures
are reported through SendResult and never raised; order placement must not
depend on the mail provider being up.
"""
import html
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

import httpx

from cardshop.core.config import settings

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {
    "JPY": "¥",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
}

# Currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW"}


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class InvoiceLine:
    name: str
    quantity: int
    price: Decimal


@dataclass
class InvoiceEmail:
    to: str
    order_number: str
    customer_name: str
    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    currency: str = "JPY"
    items: List[InvoiceLine] = field(default_factory=list)


def format_price(amount, currency: str = "JPY") -> str:
    """Format an amount for display, e.g. ¥12,000 or $19.99."""
    currency = currency.upper()
    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    exponent = Decimal("1") if currency in ZERO_DECIMAL_CURRENCIES else Decimal("0.01")
    quantized = Decimal(str(amount)).quantize(exponent, rounding=ROUND_HALF_UP)
    return f"{symbol}{quantized:,}"


def render_invoice_html(data: InvoiceEmail) -> str:
    """Render the invoice body with Wise bank-transfer instructions."""
    rows = "".join(
        f"""
    <tr>
      <td style="padding: 12px; border-bottom: 1px solid #e5e5e5;">{html.escape(item.name)}</td>
      <td style="padding: 12px; text-align: center;">{item.quantity}</td>
      <td style="padding: 12px; text-align: right;">{format_price(item.price, data.currency)}</td>
      <td style="padding: 12px; text-align: right;">{format_price(Decimal(str(item.price)) * item.quantity, data.currency)}</td>
    </tr>"""
        for item in data.items
    )
    order_number = html.escape(data.order_number)

    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Invoice #{order_number}</title></head>
<body style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h1>{html.escape(settings.APP_NAME)} - Invoice</h1>
  <p>Order #{order_number}</p>
  <p>Bill To: {html.escape(data.customer_name)} ({html.escape(data.to)})</p>
  <table style="width: 100%; border-collapse: collapse;">
    <thead><tr style="background: #333; color: white;">
      <th style="padding: 12px;">Item</th><th>Qty</th><th>Price</th><th>Total</th>
    </tr></thead>
    <tbody>{rows}</tbody>
  </table>
  <p style="text-align: right;">Subtotal: {format_price(data.subtotal, data.currency)}</p>
  <p style="text-align: right;">Shipping: {format_price(data.shipping, data.currency)}</p>
  <p style="text-align: right; font-size: 20px;"><strong>Total: {format_price(data.total, data.currency)}</strong></p>
  <div style="background: #e8f5e9; padding: 20px; border-radius: 8px; margin: 20px 0;">
    <h3>Payment Instructions (Wise)</h3>
    <p>Account Holder: {html.escape(settings.WISE_ACCOUNT_HOLDER)}</p>
    <p>IBAN: {html.escape(settings.WISE_IBAN or "Provided on request")}</p>
    <p>Reference: #{order_number}</p>
    <p>Your items are reserved for {settings.RESERVATION_TTL_MINUTES} minutes.</p>
  </div>
</body>
</html>"""


class ResendProvider:
    """Resend transactional email provider."""

    BASE_URL = "https://api.resend.com"

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = settings.RESEND_API_KEY if api_key is None else api_key
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=30.0,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._http_client

    async def close(self):
        """Explicit cleanup method."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def send_transactional(self, to_email: str, subject: str, html_body: str) -> SendResult:
        """Send a single email."""
        if not self.api_key:
            logger.error("RESEND_API_KEY is not set")
            return SendResult(success=False, error="Email service not configured")

        payload = {
            "from": f"{self.from_name} <{self.from_email}>",
            "to": [to_email],
            "subject": subject,
            "html": html_body,
        }

        http = await self._get_http_client()
        try:
            resp = await http.post(f"{self.BASE_URL}/emails", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Resend request failed: {e}")
            return SendResult(success=False, error=str(e))

        if resp.status_code in (200, 201, 202):
            message_id = resp.json().get("id")
            return SendResult(success=True, message_id=message_id)

        logger.error(f"Resend send failed: {resp.status_code} - {resp.text}")
        return SendResult(success=False, error=f"HTTP {resp.status_code}")

    async def send_invoice_email(self, data: InvoiceEmail) -> SendResult:
        return await self.send_transactional(
            to_email=data.to,
            subject=f"Invoice for Order #{data.order_number}",
            html_body=render_invoice_html(data),
        )


email_provider = ResendProvider()
