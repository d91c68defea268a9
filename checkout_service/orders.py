"""
orders.py — Order Aggregate lifecycle

    pending → paid → shipped → delivered
       └────────┴──→ cancelled

`cancelled` is reachable from `pending` and `paid` only. Items and amounts of an
order never change; a status change yields a new `Order` value with the
matching timestamp set.
"""

import logging

from .errors import InvalidStatusTransition, OrderNotFound, PermissionDenied
from .models import OrderStatus, utcnow

log = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Statuses an order can only reach after payment was confirmed.
PAID_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED})

_TIMESTAMP_FIELDS = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def can_transition(current, target):
    return OrderStatus(target) in ALLOWED_TRANSITIONS[OrderStatus(current)]


def ensure_transition(current, target):
    """
    Raises:
        InvalidStatusTransition: If `current → target` skips or reverses a state.
    """
    current, target = OrderStatus(current), OrderStatus(target)
    if not can_transition(current, target):
        raise InvalidStatusTransition(
            current.value,
            target.value,
            f"Order cannot move from '{current.value}' to '{target.value}'",
        )


def apply_transition(order, target, at=None, **changes):
    """Returns a copy of `order` in `target` status with its timestamp stamped."""
    target = OrderStatus(target)
    ensure_transition(order.status, target)
    update = {"status": target, _TIMESTAMP_FIELDS[target]: at or utcnow()}
    update.update(changes)
    return order.model_copy(update=update)


class OrderAdminService:
    """
    Administrative status changes and read-only order views.

    Args:
        orders (OrderClient): Order service client.
    """

    def __init__(self, orders):
        self.orders = orders

    async def get_order(self, ctx, order_id):
        """
        Returns an order visible to the caller (its owner or an admin).

        Raises:
            OrderNotFound: If the order does not exist or belongs to someone else.
        """
        order = await self.orders.get_order(order_id)
        if order.user_id != ctx.user_id and not ctx.role.is_admin:
            raise OrderNotFound(order_id)
        return order

    async def list_orders(self, ctx):
        orders = await self.orders.list_orders(ctx.user_id)
        return sorted(orders, key=lambda order: order.created_at, reverse=True)

    async def transition(self, ctx, order_id, target, tracking_code=None):
        """
        Moves an order to `target` after validating the transition locally.

        Raises:
            PermissionDenied: If the caller is not an administrator.
            InvalidStatusTransition: If the transition is not allowed.
        """
        if not ctx.role.is_admin:
            raise PermissionDenied("Only administrators can change order status")

        target = OrderStatus(target)
        order = await self.orders.get_order(order_id)
        ensure_transition(order.status, target)

        log.info(f"[Order: {order_id}] {ctx.log_prefix} Status {order.status.value} -> {target.value}")
        return await self.orders.update_status(order_id, target, tracking_code=tracking_code)
