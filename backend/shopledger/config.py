# backend/shopledger/config.py
from __future__ import annotations
import os


def _csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///shopledger.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Receipt numbers look like RCP-000001; invoices swap the tag to INV
    RECEIPT_PREFIX = os.environ.get("RECEIPT_PREFIX", "RCP")
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")
    RECEIPT_NUMBER_PAD = int(os.environ.get("RECEIPT_NUMBER_PAD", "6"))

    # Synthetic product that anchors blended-scent sale lines
    MASTER_SCENT_PRODUCT_NAME = os.environ.get("MASTER_SCENT_PRODUCT_NAME", "Oil Perfume")

    # "strict": a department scent and a global scent with the same name is an error
    # "department_first": the department row wins
    SCENT_SCOPE_POLICY = os.environ.get("SCENT_SCOPE_POLICY", "strict")

    # Stock at or below this raises a low-stock alert when a product sets no min_stock
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "5"))

    NON_CASH_PAYMENT_METHODS = _csv(
        os.environ.get("NON_CASH_PAYMENT_METHODS", "mobile_money,card,bank")
    )

    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))

    # Browser origins allowed to call the JSON API
    CORS_ORIGINS = _csv(
        os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        )
    )
