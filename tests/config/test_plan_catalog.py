"""
Plan catalog loading and validation.
"""

import copy
from decimal import Decimal

import pytest
import yaml

from split_config import compute_checksum, load_billing_settings
from split_config.loader import DEFAULT_PLANS_PATH, load_yaml_file, parse_billing_settings


@pytest.fixture
def raw_catalog():
    return load_yaml_file(DEFAULT_PLANS_PATH)


class TestDefaultCatalog:
    def test_billing_settings(self, billing_settings):
        assert billing_settings.currency == "BRL"
        assert billing_settings.due_day == 10
        assert billing_settings.boleto_markup == Decimal("1.51")
        assert billing_settings.operational_fee_feature == "boletos"
        assert billing_settings.default_plan == "FREE"
        assert billing_settings.plan_names == (
            "FREE", "ESSENTIAL", "PROFESSIONAL", "ENTERPRISE",
        )

    def test_free_plan_features(self, billing_settings):
        free = billing_settings.plan(None)

        assert free.name == "FREE"
        inspections = free.feature("inspections")
        assert inspections.free_limit == 2
        assert inspections.unit_price == Decimal("9.90")
        assert free.feature("api_calls").unit_price == Decimal("0.01")
        assert free.feature("boletos") is None

    def test_plan_lookup_is_case_insensitive(self, billing_settings):
        assert billing_settings.plan("essential").name == "ESSENTIAL"

    def test_unknown_plan(self, billing_settings):
        with pytest.raises(KeyError):
            billing_settings.plan("PLATINUM")

    def test_allowances_feed_the_overage_engine(self, billing_settings):
        allowances = billing_settings.plan("ENTERPRISE").allowances()
        by_feature = {a.feature: a for a in allowances}
        assert by_feature["inspections"].free_limit == 150
        assert by_feature["api_calls"].free_limit == 100000


class TestValidation:
    @pytest.mark.parametrize("due_day", [0, 29])
    def test_due_day_range(self, raw_catalog, due_day):
        raw_catalog["billing"]["due_day"] = due_day
        with pytest.raises(ValueError, match="due_day"):
            parse_billing_settings(raw_catalog)

    def test_duplicate_plan_names(self, raw_catalog):
        raw_catalog["plans"].append(copy.deepcopy(raw_catalog["plans"][0]))
        with pytest.raises(ValueError, match="Duplicate"):
            parse_billing_settings(raw_catalog)

    def test_unknown_default_plan(self, raw_catalog):
        raw_catalog["billing"]["default_plan"] = "GOLD"
        with pytest.raises(ValueError, match="default_plan"):
            parse_billing_settings(raw_catalog)

    def test_negative_price(self, raw_catalog):
        raw_catalog["plans"][0]["features"]["inspections"]["unit_price"] = "-1"
        with pytest.raises(ValueError, match="unit_price"):
            parse_billing_settings(raw_catalog)

    def test_negative_free_limit(self, raw_catalog):
        raw_catalog["plans"][1]["features"]["screenings"]["free_limit"] = -3
        with pytest.raises(ValueError, match="free_limit"):
            parse_billing_settings(raw_catalog)

    def test_missing_section(self, raw_catalog):
        del raw_catalog["billing"]
        with pytest.raises(KeyError):
            parse_billing_settings(raw_catalog)


class TestLoading:
    def test_custom_file(self, tmp_path):
        path = tmp_path / "plans.yaml"
        path.write_text(yaml.safe_dump({
            "currency": "USD",
            "billing": {"due_day": 5, "boleto_markup": "2.00"},
            "plans": [
                {
                    "name": "starter",
                    "features": {"inspections": {"free_limit": 1, "unit_price": "3.50"}},
                },
            ],
        }))

        settings = load_billing_settings(path)

        assert settings.currency == "USD"
        assert settings.default_plan == "STARTER"
        assert settings.operational_fee_feature == "boletos"
        assert settings.plan(None).feature("inspections").unit_price == Decimal("3.50")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_billing_settings(tmp_path / "absent.yaml")

    def test_checksum_is_deterministic(self, raw_catalog):
        reordered = dict(reversed(list(raw_catalog.items())))

        assert compute_checksum(raw_catalog) == compute_checksum(reordered)
        assert load_billing_settings().checksum == compute_checksum(raw_catalog)

    def test_checksum_changes_with_content(self, raw_catalog):
        original = compute_checksum(raw_catalog)
        raw_catalog["billing"]["due_day"] = 15
        assert compute_checksum(raw_catalog) != original
