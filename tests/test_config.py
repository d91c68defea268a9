from decimal import Decimal

import pytest

from checkout_service import config
from checkout_service.errors import ConfigurationError


def test_schedule_requires_both_rates():
    with pytest.raises(ConfigurationError):
        config.load_commission_schedule({})
    with pytest.raises(ConfigurationError):
        config.load_commission_schedule({"DIRECT_COMMISSION_RATE": "0.10"})


def test_schedule_from_environment():
    schedule = config.load_commission_schedule(
        {"DIRECT_COMMISSION_RATE": "0.10", "REFERRAL_COMMISSION_RATES": "0.05, 0.02"}
    )

    assert schedule.direct_rate == Decimal("0.10")
    assert schedule.referral_rates == (Decimal("0.05"), Decimal("0.02"))
    assert schedule.referral_depth == 2


def test_empty_referral_rates_disable_referrals():
    schedule = config.load_commission_schedule({"DIRECT_COMMISSION_RATE": "0.1", "REFERRAL_COMMISSION_RATES": ""})

    assert schedule.referral_depth == 0


@pytest.mark.parametrize("raw", ["ten percent", "1.5", "-0.1", "NaN", "sNaN", "Infinity"])
def test_malformed_rates_are_rejected(raw):
    with pytest.raises(ConfigurationError):
        config.load_commission_schedule({"DIRECT_COMMISSION_RATE": raw, "REFERRAL_COMMISSION_RATES": ""})


def test_shipping_cost(monkeypatch):
    monkeypatch.setattr(config, "SHIPPING_COST", "12.50")
    assert config.shipping_cost() == Decimal("12.50")

    monkeypatch.setattr(config, "SHIPPING_COST", "-1")
    with pytest.raises(ConfigurationError):
        config.shipping_cost()

    monkeypatch.setattr(config, "SHIPPING_COST", "free")
    with pytest.raises(ConfigurationError):
        config.shipping_cost()


@pytest.mark.parametrize("raw", ["NaN", "Infinity"])
def test_non_finite_shipping_cost_is_rejected(monkeypatch, raw):
    monkeypatch.setattr(config, "SHIPPING_COST", raw)

    with pytest.raises(ConfigurationError):
        config.shipping_cost()
