# Overview: Gateway-neutral payment contract shared by the Mercado Pago and Asaas adapters.

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date

import httpx


class PaymentGatewayError(Exception):
    """Raised when a gateway rejects a request; message is the gateway's own text."""
    def __init__(self, message: str, *, gateway: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.gateway = gateway
        self.status_code = status_code


# Methods a gateway can charge (installments are billed as PIX)
METHOD_PIX = "PIX"
METHOD_CARD = "CARD"

# Gateway statuses of a charge that can never be paid
FAILED_STATUSES = ("rejected", "cancelled")


@dataclass
class Payer:
    name: str
    email: str | None = None
    tax_id: str | None = None
    phone: str | None = None
    gateway_customer_id: str | None = None

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else ""

    @property
    def last_name(self) -> str:
        return " ".join(self.name.split()[1:])


@dataclass
class PaymentRequest:
    sale_id: int
    amount_cents: int
    method: str
    payer: Payer
    description: str = ""
    token: str | None = None
    installments: int = 1
    remote_ip: str | None = None
    installment_number: int | None = None
    due_date: date | None = None

    @property
    def idempotency_key(self) -> str:
        """Stable per sale (and installment) so a resent request is not charged twice."""
        key = f"aurora-sale-{self.sale_id}-{self.method.lower()}"
        if self.installment_number is not None:
            key += f"-{self.installment_number}"
        if self.token:
            # A new card token is a new attempt
            key += "-" + hashlib.sha256(self.token.encode()).hexdigest()[:16]
        return key


@dataclass
class PaymentResult:
    gateway_payment_id: str
    status: str
    pix_payload: str | None = None
    pix_qr_code: str | None = None
    gateway_customer_id: str | None = None
    raw: dict = field(default_factory=dict, repr=False)

    @property
    def failed(self) -> bool:
        """The gateway answered but refused the charge (e.g. a declined card)."""
        return (self.status or "").lower() in FAILED_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.gateway_payment_id,
            "status": self.status,
            "pix_payload": self.pix_payload,
            "pix_qr_code": self.pix_qr_code,
        }


@dataclass
class WebhookOutcome:
    """What an inbound notification means for a local sale."""
    sale_id: int | None
    gateway_payment_id: str | None
    confirmed: bool


def amount_in_reais(amount_cents: int) -> float:
    return round(amount_cents / 100, 2)


def parse_external_reference(value) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


class PaymentGateway:
    """
    Base adapter.

    Subclasses translate PaymentRequest into their API call and turn webhook
    payloads into a WebhookOutcome. A transport can be injected so tests run
    against httpx.MockTransport.
    """
    name = "base"

    def __init__(self, *, base_url: str, headers: dict, timeout: float = 15.0,
                 transport: httpx.BaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.headers = headers
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    def _json(self, response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError:
            raise PaymentGatewayError(
                f"Invalid response from {self.name} (HTTP {response.status_code})",
                gateway=self.name,
                status_code=response.status_code,
            )
        if not isinstance(body, dict):
            raise PaymentGatewayError(f"Unexpected response from {self.name}", gateway=self.name)
        return body

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            with self._client() as client:
                response = client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"{self.name} unreachable: {e}", gateway=self.name)
        body = self._json(response)
        message = self.error_message(body)
        if message or response.status_code >= 400:
            raise PaymentGatewayError(
                message or f"{self.name} returned HTTP {response.status_code}",
                gateway=self.name,
                status_code=response.status_code,
            )
        return body

    def error_message(self, body: dict) -> str | None:
        raise NotImplementedError

    def create_payment(self, request: PaymentRequest) -> PaymentResult:
        raise NotImplementedError

    def parse_webhook(self, payload: dict) -> WebhookOutcome | None:
        raise NotImplementedError
