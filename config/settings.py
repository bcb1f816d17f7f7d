"""App settings — loaded from environment."""
from __future__ import annotations

import os
from dotenv import load_dotenv

load_dotenv()


def _csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings:
    # API
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "8000"))

    # Public URLs (gateway redirect + webhook targets)
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000")
    API_BASE_URL = os.getenv("API_BASE_URL", "")

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///cv_payments.db")

    # Auth — tokens are minted by the identity bridge with this shared secret
    AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "cv-payments-dev-secret-change-in-prod")

    # Kashier (live)
    KASHIER_MODE = os.getenv("KASHIER_MODE", "live")
    KASHIER_MERCHANT_ID = os.getenv("KASHIER_MERCHANT_ID", "")
    KASHIER_API_KEY = os.getenv("KASHIER_API_KEY", "")
    KASHIER_SECRET_KEY = os.getenv("KASHIER_SECRET_KEY", "")

    # Kashier (sandbox)
    KASHIER_TEST_MERCHANT_ID = os.getenv("KASHIER_TEST_MERCHANT_ID", "")
    KASHIER_TEST_API_KEY = os.getenv("KASHIER_TEST_API_KEY", "")
    KASHIER_TEST_SECRET_KEY = os.getenv("KASHIER_TEST_SECRET_KEY", "")

    # Users routed to sandbox credentials (comma-separated ids)
    KASHIER_TEST_USER_IDS = _csv(os.getenv("KASHIER_TEST_USER_IDS", ""))

    KASHIER_CHECKOUT_BASE = os.getenv("KASHIER_CHECKOUT_BASE", "https://checkout.kashier.io")

    # Raw gateway status tokens that count as a successful payment
    KASHIER_SUCCESS_STATUSES = _csv(
        os.getenv("KASHIER_SUCCESS_STATUSES", "SUCCESS,APPROVED,CAPTURED,PAID")
    )
    KASHIER_VERIFY_SIGNATURES = os.getenv("KASHIER_VERIFY_SIGNATURES", "true").lower() in ("true", "1", "on")
    # Reject unsigned server webhooks (the approved redirect may still arrive unsigned)
    KASHIER_REQUIRE_WEBHOOK_SIGNATURE = os.getenv("KASHIER_REQUIRE_WEBHOOK_SIGNATURE", "false").lower() in ("true", "1", "on")

    # Optimistic-concurrency retry budgets
    RECONCILE_MAX_RETRIES = int(os.getenv("RECONCILE_MAX_RETRIES", "3"))
    ACTIVATION_MAX_RETRIES = int(os.getenv("ACTIVATION_MAX_RETRIES", "3"))

    # Purchase tracking (server-side pixels)
    META_PIXEL_ID = os.getenv("META_PIXEL_ID", "")
    META_ACCESS_TOKEN = os.getenv("META_ACCESS_TOKEN", "")
    GA_MEASUREMENT_ID = os.getenv("GA_MEASUREMENT_ID", "")
    GA_API_SECRET = os.getenv("GA_API_SECRET", "")

    # CORS origins (comma-separated, or * for dev)
    CORS_ORIGINS = [
        o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")
    ]

    # Observability
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

    # Logging
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
