"""
checkout.py — Checkout State Machine and Orchestration

This module converts a cart into a paid order in strictly ordered steps:

    SelectingFulfillment → OrderCreated → PaymentConfirmed → Completed

Workflow Overview:
1. Fulfillment selection: shipping address and payment method (the user's
   default address is pre-selected).
2. Order creation: the cart must be non-empty, an address selected and every
   line available; the order service receives a snapshot of the cart and
   reserves stock atomically. The cart is kept so a failed payment can be
   retried from the same cart.
3. Payment confirmation: reference-code methods need the operation code. The
   order becomes `paid` and commission attribution runs.
4. Completion: the cart is cleared.

The state is an explicit `CheckoutSession` value. A step computes the next value
and stores it only after every external call succeeded, so a timeout or a
rejection leaves the session where it was and the step can simply be retried.
Order creation uses an idempotency key bound to the session; payment
confirmation on an already confirmed session returns the stored result without
attributing commissions again.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from .errors import (
    EmptyCart,
    InvalidStatusTransition,
    MissingAddress,
    MissingPaymentReference,
    OutOfStock,
    UnavailableItems,
    UpstreamUnavailable,
)
from .models import ApiModel, Order, OrderStatus, PaymentMethod, utcnow
from .orders import PAID_STATUSES

log = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    SELECTING_FULFILLMENT = "selecting_fulfillment"
    ORDER_CREATED = "order_created"
    PAYMENT_CONFIRMED = "payment_confirmed"
    COMPLETED = "completed"


NEXT_STATE = {
    CheckoutState.SELECTING_FULFILLMENT: CheckoutState.ORDER_CREATED,
    CheckoutState.ORDER_CREATED: CheckoutState.PAYMENT_CONFIRMED,
    CheckoutState.PAYMENT_CONFIRMED: CheckoutState.COMPLETED,
}


def _new_session_id():
    return uuid.uuid4().hex


class CheckoutSession(ApiModel):
    """
    Serializable checkout state of one user.

    Attributes:
        id (str): Session id; also the base of the order-creation idempotency key.
        user_id (int): Owner of the session.
        state (CheckoutState): Current step.
        address_id (int | None): Selected shipping address.
        payment_method (PaymentMethod): Selected payment method.
        order (Order | None): Order created by this session.
        payment_reference (str | None): Operation code given at confirmation.
        commission_ids (list[int]): Commissions created when payment was confirmed.
    """
    id: str = Field(default_factory=_new_session_id)
    user_id: int
    state: CheckoutState = CheckoutState.SELECTING_FULFILLMENT
    address_id: Optional[int] = None
    payment_method: PaymentMethod = PaymentMethod.BCP_CODE
    order: Optional[Order] = None
    payment_reference: Optional[str] = None
    commission_ids: List[int] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def order_idempotency_key(self):
        return f"checkout-{self.id}"

    def require(self, state, action):
        if self.state is not state:
            raise InvalidStatusTransition(
                self.state.value,
                NEXT_STATE.get(state, state).value,
                f"Cannot {action} while checkout is in step '{self.state.value}'",
            )

    def advance(self, target, **changes):
        """Returns the session moved to `target`; only the next step is allowed."""
        target = CheckoutState(target)
        if NEXT_STATE.get(self.state) is not target:
            raise InvalidStatusTransition(self.state.value, target.value)
        changes.update(state=target, updated_at=utcnow())
        return self.model_copy(update=changes)


class CheckoutSessionStore:
    """In-memory checkout sessions, one per user, with a per-user lock."""

    def __init__(self):
        self._sessions = {}
        self._locks = defaultdict(asyncio.Lock)

    def lock(self, user_id):
        return self._locks[user_id]

    def get(self, user_id):
        session = self._sessions.get(user_id)
        if session is None:
            session = CheckoutSession(user_id=user_id)
            self._sessions[user_id] = session
        return session

    def save(self, session):
        self._sessions[session.user_id] = session
        return session


class CheckoutService:
    """
    Drives checkout sessions.

    Args:
        carts (CartService): Cart of the session owner.
        addresses (AddressClient): Address book lookups.
        orders (OrderClient): Order creation and payment confirmation.
        commissions (CommissionService): Attribution on payment confirmation.
        sessions (CheckoutSessionStore | None): Session storage.
    """

    def __init__(self, carts, addresses, orders, commissions, sessions=None):
        self.carts = carts
        self.addresses = addresses
        self.orders = orders
        self.commissions = commissions
        self.sessions = sessions or CheckoutSessionStore()

    async def get_checkout(self, ctx):
        return self.sessions.get(ctx.user_id)

    async def select_fulfillment(self, ctx, address_id=None, payment_method=None):
        """
        Selects the shipping address and/or payment method.

        Without an explicit address the user's default address is pre-selected
        (if the session has none yet).

        Raises:
            InvalidStatusTransition: If the order was already created.
            MissingAddress: If `address_id` is not in the user's address book.
        """
        async with self.sessions.lock(ctx.user_id):
            session = self.sessions.get(ctx.user_id)
            session.require(CheckoutState.SELECTING_FULFILLMENT, "change the shipping address")

            changes = {}
            if address_id is not None:
                book = await self.addresses.get_addresses(ctx.user_id)
                if not any(address.id == address_id for address in book):
                    raise MissingAddress(f"Address {address_id} is not in your address book")
                changes["address_id"] = address_id
            elif session.address_id is None:
                default = await self.addresses.get_default_address(ctx.user_id)
                if default is not None:
                    changes["address_id"] = default.id
            if payment_method is not None:
                changes["payment_method"] = PaymentMethod(payment_method)

            return self.sessions.save(session.model_copy(update=changes))

    async def create_order(self, ctx, address_id=None, payment_method=None):
        """
        SelectingFulfillment → OrderCreated.

        Validation order: empty cart, missing address, unavailable lines. A call
        repeated after success returns the same session with the order as the
        order service reports it now. If that order was cancelled in the meantime,
        checkout reopens and a new order is created from the current cart.

        Raises:
            EmptyCart: If the cart has no lines.
            MissingAddress: If no address is selected.
            UnavailableItems: If lines are unavailable or exceed live stock.
            OutOfStock: If the order service rejected the stock reservation (retryable).
            UpstreamUnavailable: On service failure; the session is unchanged.
            InvalidStatusTransition: If payment was already confirmed.
        """
        async with self.sessions.lock(ctx.user_id):
            session = self.sessions.get(ctx.user_id)
            if session.state is CheckoutState.ORDER_CREATED:
                order = await self.orders.get_order(session.order.id)
                if order.status is not OrderStatus.CANCELLED:
                    return self.sessions.save(session.model_copy(update={"order": order}))
                session = self.sessions.save(self._reopen(session))
            session.require(CheckoutState.SELECTING_FULFILLMENT, "create an order")

            cart = await self.carts.get_cart(ctx)
            if cart.is_empty:
                raise EmptyCart()

            address_id = address_id if address_id is not None else session.address_id
            if address_id is None:
                raise MissingAddress()
            method = PaymentMethod(payment_method) if payment_method is not None else session.payment_method

            flagged = await self.carts.check_availability(ctx)
            if flagged:
                raise UnavailableItems([
                    {
                        "itemId": item.id,
                        "productId": item.product_id,
                        "productName": item.product_name,
                        "quantity": item.quantity,
                        "note": item.availability_note,
                    }
                    for item in flagged
                ])

            snapshot = await self.carts.snapshot(ctx)
            log.info(
                f"{ctx.log_prefix} Creating order: items={len(snapshot.items)} "
                f"subtotal={snapshot.subtotal} address={address_id} method={method.value}"
            )
            try:
                order = await self.orders.create_order(
                    snapshot, address_id, method, idempotency_key=session.order_idempotency_key
                )
            except OutOfStock as e:
                log.warning(f"{ctx.log_prefix} Stock reservation rejected: {e.message}")
                raise
            except UpstreamUnavailable:
                log.error(f"{ctx.log_prefix} Order creation failed upstream; checkout stays in fulfillment step")
                raise

            log.info(f"[Order: {order.id}] {ctx.log_prefix} Order created, total={order.total_amount}")
            session = session.advance(
                CheckoutState.ORDER_CREATED,
                order=order,
                address_id=address_id,
                payment_method=method,
            )
            return self.sessions.save(session)

    async def confirm_payment(self, ctx, payment_method=None, reference=None):
        """
        OrderCreated → PaymentConfirmed.

        Marks the order as paid and attributes commissions. Re-submitting for a
        session whose payment is already confirmed returns the stored session.
        An order already past `paid` (e.g. shipped after an earlier attempt
        failed during attribution) counts as paid and is attributed.

        Raises:
            InvalidStatusTransition: If no order was created yet, or the order was
                cancelled (checkout can then be restarted).
            MissingPaymentReference: If a reference-code method has no reference.
            UpstreamUnavailable: On service failure; safe to retry.
        """
        async with self.sessions.lock(ctx.user_id):
            session = self.sessions.get(ctx.user_id)
            if session.state in (CheckoutState.PAYMENT_CONFIRMED, CheckoutState.COMPLETED):
                log.info(f"[Order: {session.order.id}] Payment already confirmed; returning stored result")
                return session
            session.require(CheckoutState.ORDER_CREATED, "confirm payment")

            method = PaymentMethod(payment_method) if payment_method is not None else session.payment_method
            reference = (reference or "").strip() or None
            if method.requires_reference and reference is None:
                raise MissingPaymentReference(method.value)

            order_id = session.order.id
            log.info(f"[Order: {order_id}] Confirming payment via {method.value}")
            try:
                order = await self.orders.confirm_payment(order_id, method, reference)
            except InvalidStatusTransition:
                order = await self.orders.get_order(order_id)
                if order.status is OrderStatus.CANCELLED:
                    raise self._cancelled(order)
                raise
            if order.status is OrderStatus.CANCELLED:
                raise self._cancelled(order)
            if order.status not in PAID_STATUSES:
                raise InvalidStatusTransition(
                    order.status.value,
                    OrderStatus.PAID.value,
                    f"Order {order_id} is '{order.status.value}' and cannot be paid",
                )

            attribution = await self.commissions.attribute(order)
            session = session.advance(
                CheckoutState.PAYMENT_CONFIRMED,
                order=order,
                payment_method=method,
                payment_reference=reference,
                commission_ids=[commission.id for commission in attribution.created],
            )
            log.info(f"[Order: {order_id}] Payment confirmed")
            return self.sessions.save(session)

    async def complete(self, ctx):
        """PaymentConfirmed → Completed; clears the cart."""
        async with self.sessions.lock(ctx.user_id):
            session = self.sessions.get(ctx.user_id)
            if session.state is CheckoutState.COMPLETED:
                return session
            session.require(CheckoutState.PAYMENT_CONFIRMED, "complete checkout")

            await self.carts.clear(ctx)
            session = session.advance(CheckoutState.COMPLETED)
            log.info(f"[Order: {session.order.id}] Checkout completed")
            return self.sessions.save(session)

    async def restart(self, ctx):
        """
        Starts a fresh session. Allowed before an order exists, after completion,
        or when the order of this session was cancelled; a pending order is never
        abandoned through checkout.
        """
        async with self.sessions.lock(ctx.user_id):
            session = self.sessions.get(ctx.user_id)
            if session.state is CheckoutState.ORDER_CREATED:
                order = await self.orders.get_order(session.order.id)
                if order.status is OrderStatus.CANCELLED:
                    return self.sessions.save(CheckoutSession(user_id=ctx.user_id))
            if session.state not in (CheckoutState.SELECTING_FULFILLMENT, CheckoutState.COMPLETED):
                raise InvalidStatusTransition(
                    session.state.value,
                    CheckoutState.SELECTING_FULFILLMENT.value,
                    "An order was already created; confirm its payment to finish checkout",
                )
            return self.sessions.save(CheckoutSession(user_id=ctx.user_id))

    @staticmethod
    def _reopen(session):
        """Fresh session for the same user after the previous order was cancelled."""
        log.info(f"[Order: {session.order.id}] Order was cancelled; checkout reopened")
        return CheckoutSession(
            user_id=session.user_id,
            address_id=session.address_id,
            payment_method=session.payment_method,
        )

    @staticmethod
    def _cancelled(order):
        return InvalidStatusTransition(
            order.status.value,
            OrderStatus.PAID.value,
            f"Order {order.id} was cancelled; restart checkout to place a new order",
        )
