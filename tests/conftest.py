from decimal import Decimal

import httpx
import pytest

from checkout_service.clients import PlatformClients, build_http_client
from checkout_service.commissions import CommissionSchedule
from checkout_service.context import SessionContext
from checkout_service.main import CheckoutEngine
from checkout_service.models import Role
from mock_services.mock_platform_api import PlatformState, create_mock_platform

PLATFORM_URL = "http://platform.test"

AFFILIATE_ID = 1
SPONSOR_ID = 2
UPLINE_ID = 3
TOP_ID = 4
NO_ADDRESS_ID = 5
VISITOR_ID = 10
VISITOR_SPONSOR_ID = 11


@pytest.fixture
def platform():
    """Seeded platform: products, address book and a sponsorship chain 1 -> 2 -> 3 -> 4."""
    state = PlatformState()
    state.add_product(1, "100.00", "80.00", 3, name="Moringa Capsules")
    state.add_product(2, "50.00", "40.00", 10, name="Maca Powder")
    state.add_product(3, "35.00", "35.00", 0, name="Camu Camu Extract")
    state.add_product(4, "20.00", "15.00", 5, name="Sacha Inchi Oil", is_active=False)

    state.add_address(AFFILIATE_ID, is_default=True)
    state.add_address(AFFILIATE_ID, city="Arequipa")
    state.add_address(VISITOR_ID, is_default=True)

    state.set_sponsor(AFFILIATE_ID, SPONSOR_ID)
    state.set_sponsor(SPONSOR_ID, UPLINE_ID)
    state.set_sponsor(UPLINE_ID, TOP_ID)
    state.set_sponsor(VISITOR_ID, VISITOR_SPONSOR_ID)
    return state


@pytest.fixture
def clients(platform):
    transport = httpx.ASGITransport(app=create_mock_platform(platform))
    return PlatformClients(build_http_client(base_url=PLATFORM_URL, transport=transport))


@pytest.fixture
def schedule():
    return CommissionSchedule(direct_rate=Decimal("0.10"), referral_rates=(Decimal("0.05"),))


@pytest.fixture
def engine(clients, schedule):
    return CheckoutEngine(clients, schedule, shipping_cost=Decimal("0.00"))


@pytest.fixture
def affiliate():
    return SessionContext(user_id=AFFILIATE_ID, role=Role.AFFILIATE)


@pytest.fixture
def visitor():
    return SessionContext(user_id=VISITOR_ID, role=Role.VISITOR)


@pytest.fixture
def admin():
    return SessionContext(user_id=99, role=Role.ADMIN)
