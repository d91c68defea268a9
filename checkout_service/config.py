"""
config.py — Environment configuration for the Checkout Service.

Service addresses, timeouts and logging settings have defaults suitable for a
local setup. Commission rates have no defaults: they belong to the deploying
platform and must be supplied explicitly (see `load_commission_schedule`).
"""

import os
from decimal import Decimal, InvalidOperation

from .commissions import CommissionSchedule
from .errors import ConfigurationError

# Remote platform API (catalog, addresses, orders/payments, sponsorship, ledger)
PLATFORM_API_URL = os.environ.get("PLATFORM_API_URL", "http://localhost:3001")
HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "5.0"))
HTTP_READ_TIMEOUT_SECONDS = float(os.environ.get("HTTP_READ_TIMEOUT_SECONDS", "8.0"))

# Flat shipping fee added on top of the cart subtotal
SHIPPING_COST = os.environ.get("SHIPPING_COST", "0.00")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("LOG_FILE")


def _parse_rate(name, raw):
    try:
        rate = Decimal(raw.strip())
    except InvalidOperation:
        raise ConfigurationError(f"{name} must be a decimal fraction, got {raw!r}")
    if not rate.is_finite():
        raise ConfigurationError(f"{name} must be a finite decimal fraction, got {raw!r}")
    if rate < 0 or rate > 1:
        raise ConfigurationError(f"{name} must be between 0 and 1, got {rate}")
    return rate


def shipping_cost():
    """Returns the configured flat shipping fee as a Decimal."""
    try:
        cost = Decimal(SHIPPING_COST)
    except InvalidOperation:
        raise ConfigurationError(f"SHIPPING_COST must be a decimal amount, got {SHIPPING_COST!r}")
    if not cost.is_finite():
        raise ConfigurationError(f"SHIPPING_COST must be a finite amount, got {SHIPPING_COST!r}")
    if cost < 0:
        raise ConfigurationError("SHIPPING_COST must not be negative")
    return cost


def load_commission_schedule(environ=None):
    """
    Builds the commission schedule from the environment.

    Expected variables:
        DIRECT_COMMISSION_RATE: fraction paid to the purchaser's sponsor (e.g. "0.10").
        REFERRAL_COMMISSION_RATES: comma separated fractions, one per referral level
            above the sponsor (e.g. "0.05" or "0.05,0.02"). An empty value disables
            referral commissions.

    Raises:
        ConfigurationError: If a variable is missing or malformed.
    """
    env = os.environ if environ is None else environ
    direct_raw = env.get("DIRECT_COMMISSION_RATE")
    referral_raw = env.get("REFERRAL_COMMISSION_RATES")
    if direct_raw is None or referral_raw is None:
        raise ConfigurationError(
            "DIRECT_COMMISSION_RATE and REFERRAL_COMMISSION_RATES must be configured"
        )

    referral_rates = [
        _parse_rate("REFERRAL_COMMISSION_RATES", part)
        for part in referral_raw.split(",")
        if part.strip()
    ]
    return CommissionSchedule(
        direct_rate=_parse_rate("DIRECT_COMMISSION_RATE", direct_raw),
        referral_rates=referral_rates,
    )
