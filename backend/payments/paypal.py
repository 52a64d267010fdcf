"""
PayPal Orders API Client

Handles order creation and capture for customer payments.
Uses OAuth client-credentials tokens, cached until shortly before expiry.

Capture must be confirmed (status COMPLETED) before any invoice is touched;
every failure surfaces as GatewayError.
"""

import time
from dataclasses import dataclass

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import Settings, get_settings
from core.errors import GatewayError

logger = structlog.get_logger()

SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
LIVE_BASE_URL = "https://api-m.paypal.com"

# Refresh the token this many seconds before PayPal expires it.
TOKEN_EXPIRY_MARGIN = 60

_transport_retry = retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(min=1, max=10),
    reraise=True,
)


def format_amount(amount: float) -> str:
    """PayPal wants money as a string with exactly two decimals."""
    return f"{round(float(amount), 2):.2f}"


@dataclass(frozen=True)
class PayPalOrder:
    order_id: str
    status: str
    approve_url: str | None = None


@dataclass(frozen=True)
class PayPalCapture:
    order_id: str
    status: str
    transaction_id: str | None
    amount: float
    currency: str | None
    payer_email: str | None = None


class PayPalClient:
    """Client for the PayPal Orders v2 API."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        environment: str = "sandbox",
        brand_name: str = "CargoDesk Shipping",
        public_url: str = "http://localhost:3000",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = LIVE_BASE_URL if environment == "production" else SANDBOX_BASE_URL
        self.brand_name = brand_name
        self.public_url = public_url.rstrip("/")
        self._transport = transport
        self._token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PayPalClient":
        settings = settings or get_settings()
        return cls(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            environment=settings.paypal_environment,
            brand_name=settings.paypal_brand_name,
            public_url=settings.app_public_url,
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, transport=self._transport, timeout=30.0)

    @_transport_retry
    async def _fetch_token(self) -> dict:
        async with self._client() as client:
            response = await client.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            return response.json()

    async def access_token(self) -> str:
        if not self.configured:
            raise GatewayError("PayPal is not configured")
        if self._token and time.time() < self._token_expires_at:
            return self._token
        try:
            body = await self._fetch_token()
        except httpx.HTTPError as exc:
            logger.error("paypal.token_failed", error=str(exc))
            raise GatewayError("PayPal authentication failed") from exc

        self._token = body["access_token"]
        self._token_expires_at = time.time() + int(body.get("expires_in", 0)) - TOKEN_EXPIRY_MARGIN
        return self._token

    @_transport_retry
    async def _post(self, path: str, token: str, payload: dict) -> httpx.Response:
        async with self._client() as client:
            return await client.post(
                path,
                json=payload,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            )

    async def _call(self, path: str, payload: dict, action: str) -> dict:
        token = await self.access_token()
        try:
            response = await self._post(path, token, payload)
        except httpx.HTTPError as exc:
            logger.error(f"paypal.{action}_failed", error=str(exc))
            raise GatewayError(f"PayPal {action} failed") from exc

        if response.status_code not in (200, 201):
            logger.error(f"paypal.{action}_rejected", status=response.status_code, body=response.text[:500])
            raise GatewayError(f"PayPal {action} failed", details={"status": response.status_code})
        return response.json()

    def build_order_payload(
        self,
        amount: float,
        currency: str,
        items: list[dict] | None = None,
        description: str | None = None,
        custom_id: str | None = None,
    ) -> dict:
        currency = currency.upper()
        unit: dict = {
            "amount": {"currency_code": currency, "value": format_amount(amount)},
        }
        if items:
            unit["amount"]["breakdown"] = {
                "item_total": {"currency_code": currency, "value": format_amount(amount)},
            }
            unit["items"] = [
                {
                    "name": item["name"][:127],
                    "quantity": str(item.get("quantity", 1)),
                    "unit_amount": {"currency_code": currency, "value": format_amount(item["amount"])},
                }
                for item in items
            ]
        if description:
            unit["description"] = description[:127]
        if custom_id:
            unit["custom_id"] = custom_id[:127]

        return {
            "intent": "CAPTURE",
            "purchase_units": [unit],
            "application_context": {
                "brand_name": self.brand_name,
                "user_action": "PAY_NOW",
                "return_url": f"{self.public_url}/customer/payments/success",
                "cancel_url": f"{self.public_url}/customer/payments/cancel",
            },
        }

    async def create_order(
        self,
        amount: float,
        currency: str,
        items: list[dict] | None = None,
        description: str | None = None,
        custom_id: str | None = None,
    ) -> PayPalOrder:
        if amount is None or amount <= 0:
            raise GatewayError("PayPal order amount must be positive")
        body = await self._call(
            "/v2/checkout/orders",
            self.build_order_payload(amount, currency, items, description, custom_id),
            "create_order",
        )
        approve = next((link["href"] for link in body.get("links", []) if link.get("rel") == "approve"), None)
        logger.info("paypal.order_created", order_id=body.get("id"), amount=format_amount(amount), currency=currency)
        return PayPalOrder(order_id=body["id"], status=body.get("status", "CREATED"), approve_url=approve)

    async def capture_order(self, order_id: str) -> PayPalCapture:
        if not order_id:
            raise GatewayError("PayPal order id is required")
        body = await self._call(f"/v2/checkout/orders/{order_id}/capture", {}, "capture")

        status = body.get("status", "")
        units = body.get("purchase_units") or [{}]
        captures = (units[0].get("payments") or {}).get("captures") or [{}]
        capture = captures[0]
        amount = capture.get("amount") or {}

        if status != "COMPLETED" or capture.get("status", "COMPLETED") != "COMPLETED":
            logger.warning("paypal.capture_incomplete", order_id=order_id, status=status)
            raise GatewayError(f"PayPal capture not completed (status {status or 'unknown'})")

        result = PayPalCapture(
            order_id=body.get("id", order_id),
            status=status,
            transaction_id=capture.get("id"),
            amount=float(amount.get("value", 0) or 0),
            currency=amount.get("currency_code"),
            payer_email=(body.get("payer") or {}).get("email_address"),
        )
        logger.info(
            "paypal.order_captured",
            order_id=result.order_id,
            transaction_id=result.transaction_id,
            amount=result.amount,
        )
        return result
