from decimal import Decimal

import pytest

from checkout_service.models import Product, Role
from checkout_service.pricing import resolve_price


def make_product(public_price, affiliate_price, **kwargs):
    return Product(
        id=kwargs.pop("id", 7),
        name="Moringa Capsules",
        public_price=Decimal(public_price),
        affiliate_price=Decimal(affiliate_price),
        stock=kwargs.pop("stock", 5),
        **kwargs,
    )


def test_visitor_pays_public_price():
    quote = resolve_price(make_product("100.00", "80.00"), Role.VISITOR)

    assert quote.unit_price == Decimal("100.00")
    assert quote.comparison_price is None
    assert quote.savings_percent is None
    assert quote.warnings == []


def test_affiliate_pays_affiliate_price_with_savings():
    quote = resolve_price(make_product("100.00", "80.00"), Role.AFFILIATE)

    assert quote.unit_price == Decimal("80.00")
    assert quote.comparison_price == Decimal("100.00")
    assert quote.savings_percent == 20


def test_savings_percent_rounds_half_up():
    # 33.33% -> 33, 12.5% -> 13
    assert resolve_price(make_product("30.00", "20.00"), "affiliate").savings_percent == 33
    assert resolve_price(make_product("10.00", "8.75"), "affiliate").savings_percent == 13


def test_admin_roles_pay_public_price():
    for role in (Role.ADMIN, Role.ADMIN_GENERAL):
        assert resolve_price(make_product("100.00", "80.00"), role).unit_price == Decimal("100.00")


def test_equal_prices_show_no_comparison():
    quote = resolve_price(make_product("35.00", "35.00"), Role.AFFILIATE)

    assert quote.unit_price == Decimal("35.00")
    assert quote.comparison_price is None


def test_affiliate_price_above_public_uses_lower_price_and_warns(caplog):
    product = make_product("50.00", "60.00")

    visitor_quote = resolve_price(product, Role.VISITOR)
    affiliate_quote = resolve_price(product, Role.AFFILIATE)

    assert visitor_quote.unit_price == Decimal("50.00")
    assert affiliate_quote.unit_price == Decimal("50.00")
    assert affiliate_quote.comparison_price is None
    assert affiliate_quote.warnings
    assert "exceeds public price" in caplog.text


def test_negative_price_is_clamped_to_zero():
    quote = resolve_price(make_product("-5.00", "-1.00"), Role.VISITOR)

    assert quote.unit_price == Decimal("0.00")
    assert any("negative" in warning for warning in quote.warnings)


def test_resolution_is_deterministic():
    product = make_product("19.99", "14.49")

    assert resolve_price(product, Role.AFFILIATE) == resolve_price(product, Role.AFFILIATE)


@pytest.mark.parametrize("role", [Role.VISITOR, Role.ADMIN, Role.ADMIN_GENERAL])
def test_non_affiliates_never_pay_the_affiliate_price(role):
    for public_price, affiliate_price in (("100.00", "80.00"), ("50.00", "60.00"), ("9.99", "0.01")):
        quote = resolve_price(make_product(public_price, affiliate_price), role)

        assert quote.unit_price == Decimal(public_price)
        assert quote.comparison_price is None
        assert quote.savings_percent is None
