# Overview: Asaas adapter (customer sync, PIX and tokenized card billing, payment webhooks).

from __future__ import annotations

import httpx

from aurora.time_utils import utcnow
from .base import (
    PaymentGateway,
    PaymentGatewayError,
    PaymentRequest,
    PaymentResult,
    WebhookOutcome,
    Payer,
    METHOD_PIX,
    METHOD_CARD,
    amount_in_reais,
    parse_external_reference,
)


_BILLING_TYPES = {
    METHOD_PIX: "PIX",
    METHOD_CARD: "CREDIT_CARD",
}

CONFIRMATION_EVENTS = ("PAYMENT_RECEIVED", "PAYMENT_CONFIRMED")


class AsaasGateway(PaymentGateway):
    name = "asaas"

    def __init__(self, *, api_key: str, base_url: str = "https://sandbox.asaas.com/api/v3",
                 timeout: float = 15.0, transport: httpx.BaseTransport | None = None):
        super().__init__(
            base_url=base_url,
            headers={"access_token": api_key},
            timeout=timeout,
            transport=transport,
        )

    def error_message(self, body: dict) -> str | None:
        errors = body.get("errors")
        if errors:
            first = errors[0]
            return first.get("description") if isinstance(first, dict) else str(first)
        return None

    def get_or_create_customer(self, payer: Payer) -> str:
        """Asaas customer id for a payer: cached id, then search by CPF, then create."""
        if payer.gateway_customer_id:
            return payer.gateway_customer_id
        if not payer.tax_id:
            raise PaymentGatewayError("Asaas requires the customer's CPF", gateway=self.name)

        found = self._request("GET", "/customers", params={"cpfCnpj": payer.tax_id})
        if found.get("data"):
            return found["data"][0]["id"]

        created = self._request("POST", "/customers", json={
            "name": payer.name,
            "cpfCnpj": payer.tax_id,
            "email": payer.email,
            "mobilePhone": payer.phone,
            "notificationDisabled": True,
        })
        return created["id"]

    def create_payment(self, request: PaymentRequest) -> PaymentResult:
        billing_type = _BILLING_TYPES.get(request.method)
        if billing_type is None:
            raise PaymentGatewayError(f"Asaas does not handle {request.method}", gateway=self.name)

        customer_id = self.get_or_create_customer(request.payer)
        today = utcnow().date()
        # Asaas refuses due dates in the past (overdue installments are billed for today)
        due_date = max(request.due_date or today, today)
        body = {
            "customer": customer_id,
            "billingType": billing_type,
            "value": amount_in_reais(request.amount_cents),
            "dueDate": due_date.isoformat(),
            "description": request.description,
            "externalReference": str(request.sale_id),
        }
        if request.method == METHOD_CARD:
            if not request.token:
                raise PaymentGatewayError("Card payments require a card token", gateway=self.name)
            body["creditCardToken"] = request.token
            body["remoteIp"] = request.remote_ip or "127.0.0.1"

        payment = self._request("POST", "/payments", json=body)

        pix_payload = pix_qr_code = None
        if request.method == METHOD_PIX:
            pix = self._request("GET", f"/payments/{payment['id']}/pixQrCode")
            pix_payload = pix.get("payload")
            pix_qr_code = pix.get("encodedImage")

        return PaymentResult(
            gateway_payment_id=str(payment["id"]),
            status=payment.get("status") or "PENDING",
            pix_payload=pix_payload,
            pix_qr_code=pix_qr_code,
            gateway_customer_id=customer_id,
            raw=payment,
        )

    def parse_webhook(self, payload: dict) -> WebhookOutcome | None:
        event = payload.get("event")
        payment = payload.get("payment")
        if not event or not isinstance(payment, dict):
            return None
        return WebhookOutcome(
            sale_id=parse_external_reference(payment.get("externalReference")),
            gateway_payment_id=payment.get("id"),
            confirmed=event in CONFIRMATION_EVENTS,
        )
