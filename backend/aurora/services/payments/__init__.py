# Overview: Payment gateway registry; builds adapters from application config.

from __future__ import annotations

from flask import current_app

from .base import (
    PaymentGateway,
    PaymentGatewayError,
    PaymentRequest,
    PaymentResult,
    WebhookOutcome,
    Payer,
    METHOD_PIX,
    METHOD_CARD,
)
from .mercadopago import MercadoPagoGateway
from .asaas import AsaasGateway


GATEWAY_MERCADOPAGO = MercadoPagoGateway.name
GATEWAY_ASAAS = AsaasGateway.name

VALID_GATEWAYS = (GATEWAY_MERCADOPAGO, GATEWAY_ASAAS)


def get_gateway(name: str | None = None, *, transport=None) -> PaymentGateway:
    """
    Build the adapter for a gateway name (defaults to DEFAULT_GATEWAY).

    Raises PaymentGatewayError for unknown names.
    """
    config = current_app.config
    name = (name or config.get("DEFAULT_GATEWAY") or GATEWAY_MERCADOPAGO).lower()
    timeout = config.get("GATEWAY_TIMEOUT_SECONDS", 15.0)
    transport = transport or current_app.extensions.get("payment_transport")

    if name == GATEWAY_MERCADOPAGO:
        base = (config.get("PUBLIC_BASE_URL") or "").rstrip("/")
        return MercadoPagoGateway(
            access_token=config.get("MERCADOPAGO_ACCESS_TOKEN", ""),
            notification_url=f"{base}/api/payments/webhooks/{GATEWAY_MERCADOPAGO}" if base else None,
            base_url=config.get("MERCADOPAGO_BASE_URL", "https://api.mercadopago.com"),
            timeout=timeout,
            transport=transport,
        )
    if name == GATEWAY_ASAAS:
        return AsaasGateway(
            api_key=config.get("ASAAS_API_KEY", ""),
            base_url=config.get("ASAAS_BASE_URL", "https://sandbox.asaas.com/api/v3"),
            timeout=timeout,
            transport=transport,
        )
    raise PaymentGatewayError(f"Unknown payment gateway: {name}. Must be one of {list(VALID_GATEWAYS)}")


__all__ = [
    "PaymentGateway", "PaymentGatewayError", "PaymentRequest", "PaymentResult",
    "WebhookOutcome", "Payer", "METHOD_PIX", "METHOD_CARD",
    "MercadoPagoGateway", "AsaasGateway",
    "GATEWAY_MERCADOPAGO", "GATEWAY_ASAAS", "VALID_GATEWAYS", "get_gateway",
]
