"""Startup validation — catch misconfigurations before the app serves traffic."""
from __future__ import annotations

import logging
import sys

from config.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "cv-payments-dev-secret-change-in-prod"


def validate_settings() -> list[str]:
    """Validate configuration. Returns list of warnings (empty = all good).

    Raises SystemExit for critical misconfigurations in production.
    """
    warnings: list[str] = []
    is_prod = settings.DATABASE_URL and "sqlite" not in settings.DATABASE_URL

    # Critical: token secret must be changed in production
    if is_prod and settings.AUTH_JWT_SECRET == DEFAULT_JWT_SECRET:
        logger.critical("AUTH_JWT_SECRET is still the default! Set a real secret for production.")
        sys.exit(1)

    if is_prod and "*" in settings.CORS_ORIGINS:
        warnings.append("CORS_ORIGINS is set to * — restrict in production")

    if settings.KASHIER_MODE.lower() not in ("test", "live"):
        warnings.append(f"KASHIER_MODE={settings.KASHIER_MODE!r} is not test/live — live will be used")

    if not (settings.KASHIER_MERCHANT_ID and settings.KASHIER_API_KEY):
        warnings.append("Kashier live credentials not set — live checkout disabled")
    if settings.KASHIER_TEST_USER_IDS and not (settings.KASHIER_TEST_MERCHANT_ID and settings.KASHIER_TEST_API_KEY):
        warnings.append("KASHIER_TEST_USER_IDS set but sandbox credentials missing — their checkouts will fail")
    if not settings.KASHIER_VERIFY_SIGNATURES:
        warnings.append("KASHIER_VERIFY_SIGNATURES is off — callback signatures are not checked")
    if is_prod and not settings.KASHIER_REQUIRE_WEBHOOK_SIGNATURE:
        warnings.append(
            "KASHIER_REQUIRE_WEBHOOK_SIGNATURE is off — unsigned callbacks are trusted and can mark a payment as paid"
        )

    if not settings.KASHIER_SUCCESS_STATUSES:
        warnings.append("KASHIER_SUCCESS_STATUSES is empty — no callback will ever count as paid")

    if not settings.API_BASE_URL:
        warnings.append("API_BASE_URL not set — checkout will not register a server webhook")

    for w in warnings:
        logger.warning(f"⚠️  {w}")

    if not warnings:
        logger.info("✅ All startup checks passed")

    return warnings
