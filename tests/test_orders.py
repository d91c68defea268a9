from datetime import datetime, timezone
from decimal import Decimal

import pytest

from checkout_service.errors import InvalidStatusTransition, OrderNotFound, PermissionDenied
from checkout_service.models import OrderStatus, PaymentMethod
from checkout_service.orders import ALLOWED_TRANSITIONS, OrderAdminService, apply_transition, can_transition

from .test_commissions import make_order

ALLOWED = {
    ("pending", "paid"),
    ("pending", "cancelled"),
    ("paid", "shipped"),
    ("paid", "cancelled"),
    ("shipped", "delivered"),
}


@pytest.mark.parametrize("current", [status.value for status in OrderStatus])
@pytest.mark.parametrize("target", [status.value for status in OrderStatus])
def test_transition_table(current, target):
    assert can_transition(current, target) == ((current, target) in ALLOWED)


def test_terminal_states_have_no_exit():
    assert ALLOWED_TRANSITIONS[OrderStatus.DELIVERED] == frozenset()
    assert ALLOWED_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()


def test_apply_transition_stamps_timestamp_and_keeps_items():
    order = make_order("100.00", status=OrderStatus.PAID)
    at = datetime(2026, 4, 1, tzinfo=timezone.utc)

    shipped = apply_transition(order, OrderStatus.SHIPPED, at=at, tracking_code="TRK-1")

    assert shipped.status is OrderStatus.SHIPPED
    assert shipped.shipped_at == at
    assert shipped.tracking_code == "TRK-1"
    assert shipped.order_items == order.order_items
    assert order.status is OrderStatus.PAID


def test_skipping_a_state_is_rejected():
    with pytest.raises(InvalidStatusTransition) as exc_info:
        apply_transition(make_order("10.00", status=OrderStatus.PENDING), OrderStatus.DELIVERED)

    assert exc_info.value.details == {"current": "pending", "target": "delivered"}


async def paid_order(engine, affiliate):
    await engine.carts.add_item(affiliate, 2, 1)
    await engine.checkout.select_fulfillment(affiliate)
    await engine.checkout.create_order(affiliate)
    session = await engine.checkout.confirm_payment(affiliate, PaymentMethod.BANK_TRANSFER)
    return session.order


@pytest.mark.asyncio
async def test_admin_ships_and_delivers(engine, affiliate, admin, platform):
    order = await paid_order(engine, affiliate)
    service = OrderAdminService(engine.clients.orders)

    shipped = await service.transition(admin, order.id, OrderStatus.SHIPPED, tracking_code="TRK-42")
    delivered = await service.transition(admin, order.id, OrderStatus.DELIVERED)

    assert shipped.tracking_code == "TRK-42"
    assert delivered.status is OrderStatus.DELIVERED
    assert delivered.delivered_at is not None
    assert platform.orders[order.id].status is OrderStatus.DELIVERED
    assert delivered.total_amount == Decimal("40.00")


@pytest.mark.asyncio
async def test_only_admins_change_status(engine, affiliate, platform):
    order = await paid_order(engine, affiliate)

    with pytest.raises(PermissionDenied):
        await engine.orders.transition(affiliate, order.id, OrderStatus.SHIPPED)
    assert platform.calls["update_status"] == 0


@pytest.mark.asyncio
async def test_invalid_transition_is_rejected_before_calling_the_service(engine, affiliate, admin, platform):
    order = await paid_order(engine, affiliate)

    with pytest.raises(InvalidStatusTransition):
        await engine.orders.transition(admin, order.id, OrderStatus.DELIVERED)
    assert platform.calls["update_status"] == 0
    assert platform.orders[order.id].status is OrderStatus.PAID


@pytest.mark.asyncio
async def test_order_visibility(engine, affiliate, visitor, admin):
    order = await paid_order(engine, affiliate)

    assert (await engine.orders.get_order(affiliate, order.id)).id == order.id
    assert (await engine.orders.get_order(admin, order.id)).id == order.id
    with pytest.raises(OrderNotFound):
        await engine.orders.get_order(visitor, order.id)
    with pytest.raises(OrderNotFound):
        await engine.orders.get_order(admin, 424242)

    assert [o.id for o in await engine.orders.list_orders(affiliate)] == [order.id]
    assert await engine.orders.list_orders(visitor) == []


@pytest.mark.asyncio
async def test_address_book_changes_do_not_alter_orders(engine, affiliate, platform):
    order = await paid_order(engine, affiliate)

    platform.addresses[1] = platform.addresses[1].model_copy(update={"city": "Cusco"})

    stored = await engine.orders.get_order(affiliate, order.id)
    assert stored.shipping_address.city == "Lima"
