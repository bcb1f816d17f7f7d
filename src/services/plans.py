"""
CV Builder Plan Catalog
---
Static table of the premium plans sold through the gateway.

Plans:
- one_time    — single CV, 7 days of edits
- flex_pack   — 5 CV credits valid for 6 months
- annual_pass — unlimited CVs for a year

Transactions copy a plan's fields at checkout, so edits here never change what
an in-flight or historic purchase grants.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.models.payment import PlanId
from src.services.payment_errors import UnknownPlan

SUPPORTED_LANGUAGES = ("en", "ar")
DEFAULT_CURRENCY = "EGP"


@dataclass(frozen=True)
class PlanConfig:
    plan_id: PlanId
    name: str
    price: float
    currency: str
    duration: str          # stored as text, e.g. "6"
    duration_unit: str     # days | months | years
    description: str
    credits: Optional[int] = None  # flex_pack only


@dataclass(frozen=True)
class _PlanEntry:
    price: float
    duration: str
    duration_unit: str
    names: dict[str, str]
    descriptions: dict[str, str]
    credits: Optional[int] = None


_CATALOG: dict[PlanId, _PlanEntry] = {
    PlanId.ONE_TIME: _PlanEntry(
        price=49,
        duration="7",
        duration_unit="days",
        names={"en": "Single CV Purchase", "ar": "شراء سيرة واحدة"},
        descriptions={
            "en": "One professional CV with 3 templates and 7 days of edits.",
            "ar": "سيرة ذاتية احترافية واحدة مع 3 قوالب وتعديلات لمدة 7 أيام.",
        },
    ),
    PlanId.FLEX_PACK: _PlanEntry(
        price=149,
        duration="6",
        duration_unit="months",
        names={"en": "Flex Pack", "ar": "باقة مرنة"},
        descriptions={
            "en": "Create up to 5 professional CVs with credits valid for 6 months.",
            "ar": "أنشئ حتى 5 سير ذاتية احترافية برصيد صالح لمدة 6 أشهر.",
        },
        credits=5,
    ),
    PlanId.ANNUAL_PASS: _PlanEntry(
        price=299,
        duration="1",
        duration_unit="years",
        names={"en": "Annual Pass", "ar": "البطاقة السنوية"},
        descriptions={
            "en": "Unlimited CVs for a full year with all premium features.",
            "ar": "سير ذاتية غير محدودة لمدة عام كامل مع جميع الميزات المميزة.",
        },
    ),
}

# Used when a transaction's stored duration cannot be interpreted
DEFAULT_DURATIONS: dict[PlanId, tuple[int, str]] = {
    PlanId.ONE_TIME: (7, "days"),
    PlanId.FLEX_PACK: (6, "months"),
    PlanId.ANNUAL_PASS: (1, "years"),
}


def parse_plan_id(plan_id: str | PlanId) -> PlanId:
    try:
        return PlanId(plan_id)
    except ValueError:
        raise UnknownPlan(str(plan_id)) from None


def normalize_language(language: Optional[str]) -> str:
    lang = (language or "en").lower()[:2]
    return lang if lang in SUPPORTED_LANGUAGES else "en"


def plan_config(plan_id: str | PlanId, language: str = "en") -> PlanConfig:
    """Look up a plan. Raises UnknownPlan for anything outside the catalog."""
    pid = parse_plan_id(plan_id)
    entry = _CATALOG[pid]
    lang = normalize_language(language)
    return PlanConfig(
        plan_id=pid,
        name=entry.names[lang],
        price=entry.price,
        currency=DEFAULT_CURRENCY,
        duration=entry.duration,
        duration_unit=entry.duration_unit,
        description=entry.descriptions[lang],
        credits=entry.credits,
    )


def list_plans(language: str = "en") -> list[PlanConfig]:
    return [plan_config(pid, language) for pid in PlanId]
