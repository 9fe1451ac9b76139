# Overview: Mercado Pago adapter (PIX and tokenized card payments, payment webhooks).

from __future__ import annotations

import httpx

from .base import (
    PaymentGateway,
    PaymentGatewayError,
    PaymentRequest,
    PaymentResult,
    WebhookOutcome,
    METHOD_PIX,
    METHOD_CARD,
    amount_in_reais,
    parse_external_reference,
)


_METHOD_IDS = {
    METHOD_PIX: "pix",
    METHOD_CARD: "credit_card",
}

STATUS_APPROVED = "approved"


class MercadoPagoGateway(PaymentGateway):
    name = "mercadopago"

    def __init__(self, *, access_token: str, notification_url: str | None = None,
                 base_url: str = "https://api.mercadopago.com", timeout: float = 15.0,
                 transport: httpx.BaseTransport | None = None):
        super().__init__(
            base_url=base_url,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )
        self.notification_url = notification_url

    def error_message(self, body: dict) -> str | None:
        if body.get("errors"):
            first = body["errors"][0]
            return body.get("message") or (first.get("message") if isinstance(first, dict) else str(first))
        if body.get("status") in (400, 401, 403, 404, 500):
            return body.get("message") or "Mercado Pago rejected the request"
        return None

    def create_payment(self, request: PaymentRequest) -> PaymentResult:
        method_id = _METHOD_IDS.get(request.method)
        if method_id is None:
            raise PaymentGatewayError(f"Mercado Pago does not handle {request.method}", gateway=self.name)

        payer = request.payer
        body = {
            "transaction_amount": amount_in_reais(request.amount_cents),
            "description": request.description,
            "payment_method_id": method_id,
            "payer": {
                "email": payer.email or f"{payer.phone or 'cliente'}@aurora.com.br",
                "first_name": payer.first_name,
                "last_name": payer.last_name,
            },
            "external_reference": str(request.sale_id),
        }
        if payer.tax_id:
            body["payer"]["identification"] = {"type": "CPF", "number": payer.tax_id}
        if self.notification_url:
            body["notification_url"] = self.notification_url

        if request.method == METHOD_CARD:
            if not request.token:
                raise PaymentGatewayError("Card payments require a card token", gateway=self.name)
            body["token"] = request.token
            body["installments"] = request.installments or 1

        result = self._request(
            "POST",
            "/v1/payments",
            json=body,
            headers={"X-Idempotency-Key": request.idempotency_key},
        )

        transaction_data = (result.get("point_of_interaction") or {}).get("transaction_data") or {}
        return PaymentResult(
            gateway_payment_id=str(result.get("id")),
            status=result.get("status") or "pending",
            pix_payload=transaction_data.get("qr_code"),
            pix_qr_code=transaction_data.get("qr_code_base64"),
            raw=result,
        )

    def get_payment(self, payment_id: str) -> dict:
        return self._request("GET", f"/v1/payments/{payment_id}")

    def parse_webhook(self, payload: dict) -> WebhookOutcome | None:
        """
        Notifications only carry the payment id; the payment is fetched to
        read its status and the external reference (our sale id).
        """
        action = str(payload.get("action") or "")
        if payload.get("type") != "payment" and not action.startswith("payment."):
            return None

        payment_id = (payload.get("data") or {}).get("id") or payload.get("id")
        if not payment_id:
            return None

        payment = self.get_payment(str(payment_id))
        return WebhookOutcome(
            sale_id=parse_external_reference(payment.get("external_reference")),
            gateway_payment_id=str(payment_id),
            confirmed=payment.get("status") == STATUS_APPROVED,
        )
