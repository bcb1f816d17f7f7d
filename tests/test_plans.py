"""Tests for the plan catalog."""
from __future__ import annotations

import pytest

from src.models.payment import PlanId
from src.services.payment_errors import UnknownPlan
from src.services.plans import DEFAULT_DURATIONS, list_plans, normalize_language, plan_config


class TestPlanCatalog:
    def test_prices_in_egp(self):
        assert plan_config("one_time").price == 49
        assert plan_config("flex_pack").price == 149
        assert plan_config("annual_pass").price == 299
        assert {p.currency for p in list_plans()} == {"EGP"}

    def test_durations(self):
        assert (plan_config("one_time").duration, plan_config("one_time").duration_unit) == ("7", "days")
        assert (plan_config("flex_pack").duration, plan_config("flex_pack").duration_unit) == ("6", "months")
        assert (plan_config("annual_pass").duration, plan_config("annual_pass").duration_unit) == ("1", "years")

    def test_only_flex_pack_has_credits(self):
        assert plan_config("flex_pack").credits == 5
        assert plan_config("one_time").credits is None
        assert plan_config("annual_pass").credits is None

    def test_arabic_names(self):
        en = plan_config("annual_pass", "en")
        ar = plan_config("annual_pass", "ar")
        assert en.name == "Annual Pass"
        assert ar.name != en.name
        assert ar.price == en.price

    def test_unknown_plan_rejected(self):
        with pytest.raises(UnknownPlan) as exc:
            plan_config("lifetime")
        assert exc.value.status_code == 400
        assert exc.value.plan_id == "lifetime"

    def test_language_normalized(self):
        assert normalize_language("AR") == "ar"
        assert normalize_language("ar-EG") == "ar"
        assert normalize_language("fr") == "en"
        assert normalize_language(None) == "en"

    def test_every_plan_has_default_duration(self):
        assert set(DEFAULT_DURATIONS) == set(PlanId)


@pytest.mark.asyncio
async def test_plans_endpoint_localized(client):
    resp = await client.get("/api/v1/plans?lang=ar")
    assert resp.status_code == 200
    data = resp.json()
    assert data["language"] == "ar"
    assert [p["plan_id"] for p in data["plans"]] == ["one_time", "flex_pack", "annual_pass"]
    assert data["plans"][1]["credits"] == 5
