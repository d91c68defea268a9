"""
pricing.py — Role-based price resolution.

Single authority for which unit price a viewer pays. Cart insertion, cart
summaries and any listing in the API go through `resolve_price`, so the price
shown and the price charged cannot drift apart.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

from .models import PriceQuote, Role, money

log = logging.getLogger(__name__)

ZERO = Decimal("0")


def resolve_price(product, viewer_role):
    """
    Selects the unit price a viewer pays for a product.

    Affiliates pay the affiliate price when it is lower than the public price and
    get the public price as comparison together with the rounded savings
    percentage. Everyone else pays the public price.

    A product whose affiliate price exceeds its public price is misconfigured:
    affiliates then pay the public price too, and a data-integrity warning is
    attached to the quote. Negative catalog prices are clamped to zero the same way.

    Args:
        product (Product): Catalog entry.
        viewer_role (Role | str): Role of the viewer.

    Returns:
        PriceQuote: unit price, optional comparison price and savings percent.
    """
    role = Role(viewer_role)
    warnings = []

    public_price = money(product.public_price)
    affiliate_price = money(product.affiliate_price)
    if public_price < ZERO or affiliate_price < ZERO:
        warnings.append(f"Product {product.id} has a negative price; clamped to 0")
        public_price = max(public_price, ZERO)
        affiliate_price = max(affiliate_price, ZERO)

    if affiliate_price > public_price:
        warnings.append(
            f"Product {product.id} affiliate price {affiliate_price} exceeds public price "
            f"{public_price}; using the public price"
        )

    for warning in warnings:
        log.warning(f"[Pricing] {warning}")

    if role is Role.AFFILIATE and affiliate_price < public_price:
        savings = (public_price - affiliate_price) / public_price * 100
        return PriceQuote(
            unit_price=affiliate_price,
            comparison_price=public_price,
            savings_percent=int(savings.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
            warnings=warnings,
        )

    return PriceQuote(unit_price=public_price, warnings=warnings)
