# backend/shoppad/config.py
from __future__ import annotations
import os


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "shoppad-dev-secret-change-me")

    # SQLite DB stored in backend/instance/shoppad.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shoppad.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # QR login handshake
    QR_SESSION_TTL_SECONDS = int(os.environ.get("QR_SESSION_TTL_SECONDS", "300"))
    QR_SESSION_RETENTION_DAYS = int(os.environ.get("QR_SESSION_RETENTION_DAYS", "7"))

    # Bearer tokens
    ACCESS_TOKEN_TTL_DAYS = int(os.environ.get("ACCESS_TOKEN_TTL_DAYS", "7"))

    # Simulated settlement: probability that a payment is approved
    PAYMENT_APPROVAL_RATE = float(os.environ.get("PAYMENT_APPROVAL_RATE", "0.9"))

    # NFC reader. The tap-to-pay lock is refreshed just before the gateway
    # call, so the timeout must exceed the gateway's own request timeout.
    NFC_LOCK_TIMEOUT_SECONDS = int(os.environ.get("NFC_LOCK_TIMEOUT_SECONDS", "30"))
    NFC_EVENT_RETENTION_DAYS = int(os.environ.get("NFC_EVENT_RETENTION_DAYS", "7"))
    NFC_EVENT_LIST_MAX = int(os.environ.get("NFC_EVENT_LIST_MAX", "100"))

    CORS_ALLOWED_ORIGINS = _csv(os.environ.get(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:8080,http://127.0.0.1:8080",
    ))
