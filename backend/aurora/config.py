# backend/aurora/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///aurora.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment gateways (credentials come from the environment only)
    MERCADOPAGO_ACCESS_TOKEN = os.environ.get("MERCADOPAGO_ACCESS_TOKEN", "")
    MERCADOPAGO_BASE_URL = os.environ.get("MERCADOPAGO_BASE_URL", "https://api.mercadopago.com")
    ASAAS_API_KEY = os.environ.get("ASAAS_API_KEY", "")
    ASAAS_BASE_URL = os.environ.get("ASAAS_BASE_URL", "https://sandbox.asaas.com/api/v3")
    DEFAULT_GATEWAY = os.environ.get("DEFAULT_GATEWAY", "mercadopago")
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "15"))

    # Base URL the gateways use for webhook notifications
    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:5000")

    # Seconds between keep-alive comments on the sale event stream
    SALE_EVENTS_HEARTBEAT_SECONDS = float(os.environ.get("SALE_EVENTS_HEARTBEAT_SECONDS", "15"))

    # Browser origins allowed to call the API
    CORS_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if origin.strip()
    )
