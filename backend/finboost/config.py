# backend/finboost/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///finboost.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # PayPal Payouts API credentials. "sandbox" or "live".
    PAYPAL_CLIENT_ID = os.environ.get("PAYPAL_CLIENT_ID", "")
    PAYPAL_CLIENT_SECRET = os.environ.get("PAYPAL_CLIENT_SECRET", "")
    PAYPAL_ENVIRONMENT = os.environ.get("PAYPAL_ENVIRONMENT", "sandbox")
    # Overrides the environment-derived host (e.g. for a local stub)
    PAYPAL_BASE_URL = os.environ.get("PAYPAL_BASE_URL", "")

    # Submission retry policy (network errors and 5xx only)
    PAYPAL_TIMEOUT_SECONDS = float(os.environ.get("PAYPAL_TIMEOUT_SECONDS", "30"))
    PAYPAL_MAX_RETRIES = int(os.environ.get("PAYPAL_MAX_RETRIES", "3"))
    PAYPAL_BACKOFF_BASE_SECONDS = float(os.environ.get("PAYPAL_BACKOFF_BASE_SECONDS", "1.0"))
    PAYPAL_BACKOFF_MAX_SECONDS = float(os.environ.get("PAYPAL_BACKOFF_MAX_SECONDS", "30"))

    # Payout presentation
    PAYOUT_CURRENCY = os.environ.get("PAYOUT_CURRENCY", "USD")
    PAYOUT_EMAIL_SUBJECT = os.environ.get("PAYOUT_EMAIL_SUBJECT", "FinBoost Reward Payout")
    PAYOUT_EMAIL_MESSAGE = os.environ.get(
        "PAYOUT_EMAIL_MESSAGE", "You have received a reward payout from FinBoost!"
    )
    PAYOUT_ITEM_NOTE = os.environ.get("PAYOUT_ITEM_NOTE", "FinBoost cycle reward")
