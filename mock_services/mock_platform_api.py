"""
mock_platform_api.py — Mock Implementation of the Remote Platform API (REST)

This module provides an in-memory stand-in for the remote platform API the
checkout service depends on. It is used for local runs and for the test suite,
where it is mounted on an `httpx.ASGITransport`.

Exposed services:
    • Catalog — products, live stock, availability check
    • Addresses — address book and default address per user
    • Orders/Payments — order creation with atomic stock reservation and
      idempotency keys, idempotent payment confirmation, status changes
    • Sponsorship graph — sponsor and upstream chain of a user
    • Commission ledger — commissions keyed by (orderItemId, type, beneficiaryUserId)

Simulation controls (on `PlatformState`):
    • outages: operations that answer HTTP 503 without doing anything
    • lost_responses: operations that commit and then answer HTTP 503 once,
      like a response lost after the server finished
    • latency: seconds every handler waits before touching state

Port:
    Default: 3001 (HTTP)
"""

import asyncio
import itertools
import logging
from collections import Counter
from decimal import Decimal
from typing import List, Optional

from fastapi import FastAPI, Header, HTTPException

from checkout_service.errors import InvalidStatusTransition
from checkout_service.models import (
    Address,
    ApiModel,
    CartSnapshot,
    Commission,
    CommissionDraft,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    Product,
    money,
    utcnow,
)
from checkout_service.orders import apply_transition


class AvailabilityRequest(ApiModel):
    ids: List[int]


class CreateOrderPayload(ApiModel):
    cart: CartSnapshot
    address_id: int
    payment_method: PaymentMethod


class ConfirmPaymentPayload(ApiModel):
    payment_method: PaymentMethod
    reference: Optional[str] = None


class StatusPayload(ApiModel):
    status: OrderStatus
    tracking_code: Optional[str] = None


class PlatformState:
    """In-memory data of the mock platform plus seed helpers."""

    def __init__(self):
        self.products = {}
        self.addresses = {}
        self.sponsors = {}
        self.orders = {}
        self.order_keys = {}
        self.commissions = {}

        self.outages = set()
        self.lost_responses = set()
        self.latency = 0.0
        self.calls = Counter()

        self._order_ids = itertools.count(1001)
        self._order_item_ids = itertools.count(1)
        self._address_ids = itertools.count(1)
        self._commission_ids = itertools.count(1)

    # Seed helpers
    def add_product(self, product_id, public_price, affiliate_price, stock, name=None, is_active=True):
        product = Product(
            id=product_id,
            name=name or f"Product {product_id}",
            public_price=Decimal(str(public_price)),
            affiliate_price=Decimal(str(affiliate_price)),
            stock=stock,
            is_active=is_active,
        )
        self.products[product_id] = product
        return product

    def add_address(self, user_id, city="Lima", is_default=False):
        address = Address(
            id=next(self._address_ids),
            user_id=user_id,
            name=f"User {user_id}",
            phone="999888777",
            region="Lima",
            city=city,
            address="Av. Arequipa 123",
            is_default=is_default,
        )
        self.addresses[address.id] = address
        return address

    def set_sponsor(self, user_id, sponsor_id):
        self.sponsors[user_id] = sponsor_id

    def commissions_for_order(self, order_id):
        return [c for c in self.commissions.values() if c.order_id == order_id]

    @classmethod
    def demo(cls):
        state = cls()
        state.add_product(1, "100.00", "80.00", 10, name="Moringa Capsules")
        state.add_product(2, "50.00", "40.00", 25, name="Maca Powder")
        state.add_product(3, "35.00", "35.00", 0, name="Camu Camu Extract")
        state.add_address(1, is_default=True)
        state.add_address(1, city="Arequipa")
        state.set_sponsor(1, 2)
        state.set_sponsor(2, 3)
        return state


def _error(status_code, code, message, **details):
    return HTTPException(status_code=status_code, detail={"code": code, "message": message, "details": details})


def _dump(model):
    return model.model_dump(mode="json", by_alias=True)


def create_mock_platform(state=None):
    """Builds the mock platform FastAPI app over `state` (a demo state by default)."""
    state = state or PlatformState.demo()
    app = FastAPI(title="Mock Platform API")
    app.state.platform = state

    async def enter(operation):
        state.calls[operation] += 1
        if state.latency:
            await asyncio.sleep(state.latency)
        if operation in state.outages:
            logging.warning(f"[Platform] Simulated outage for {operation}")
            raise _error(503, "UNAVAILABLE", f"{operation} unavailable")

    def lose_response(operation):
        if operation in state.lost_responses:
            state.lost_responses.discard(operation)
            logging.warning(f"[Platform] Simulated lost response for {operation}")
            raise _error(503, "UNAVAILABLE", f"{operation} response lost")

    # --- Catalog ---
    @app.get("/products/{product_id}")
    async def get_product(product_id: int):
        await enter("get_product")
        product = state.products.get(product_id)
        if product is None:
            raise _error(404, "NOT_FOUND", f"Product {product_id} not found", productId=product_id)
        return _dump(product)

    @app.post("/products/check-availability")
    async def check_availability(body: AvailabilityRequest):
        await enter("check_availability")
        result = []
        for product_id in body.ids:
            product = state.products.get(product_id)
            result.append({
                "id": product_id,
                "available": bool(product and product.is_available),
                "stock": product.stock if product else 0,
            })
        return result

    # --- Addresses ---
    @app.get("/users/{user_id}/addresses")
    async def get_addresses(user_id: int):
        await enter("get_addresses")
        return [_dump(a) for a in state.addresses.values() if a.user_id == user_id]

    @app.get("/users/{user_id}/addresses/default")
    async def get_default_address(user_id: int):
        await enter("get_default_address")
        address = next((a for a in state.addresses.values() if a.user_id == user_id and a.is_default), None)
        return _dump(address) if address else None

    # --- Orders / Payments ---
    @app.post("/orders", status_code=201)
    async def create_order(body: CreateOrderPayload, idempotency_key: str = Header(..., alias="Idempotency-Key")):
        await enter("create_order")
        logging.info(f"[Platform] Order request for user {body.cart.user_id} (Idempotency: {idempotency_key})")

        if idempotency_key in state.order_keys:
            return _dump(state.orders[state.order_keys[idempotency_key]])

        address = state.addresses.get(body.address_id)
        if address is None or address.user_id != body.cart.user_id:
            raise _error(422, "MISSING_ADDRESS", f"Address {body.address_id} not found for this user")
        if not body.cart.items:
            raise _error(422, "EMPTY_CART", "Cannot create an order without items")

        # Check-then-decrement with no suspension point in between: atomic in the event loop.
        for item in body.cart.items:
            product = state.products.get(item.product_id)
            available = product.stock if product and product.is_active else 0
            if available < item.quantity:
                raise _error(
                    409, "OUT_OF_STOCK",
                    f"Only {available} units available",
                    productId=item.product_id,
                    productName=product.name if product else None,
                    requested=item.quantity,
                    available=available,
                )
        for item in body.cart.items:
            state.products[item.product_id].stock -= item.quantity

        items = tuple(
            OrderItem(
                id=next(state._order_item_ids),
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=money(item.unit_price * item.quantity),
            )
            for item in body.cart.items
        )
        subtotal = money(sum((item.line_total for item in items), Decimal("0")))
        order = Order(
            id=next(state._order_ids),
            user_id=body.cart.user_id,
            shipping_address=address,
            order_items=items,
            subtotal=subtotal,
            shipping_cost=body.cart.shipping_cost,
            total_amount=money(subtotal + body.cart.shipping_cost),
            payment_method=body.payment_method,
            created_at=utcnow(),
        )
        state.orders[order.id] = order
        state.order_keys[idempotency_key] = order.id
        logging.info(f"[Platform] Order {order.id} created, total={order.total_amount}")

        lose_response("create_order")
        return _dump(order)

    @app.post("/orders/{order_id}/confirm-payment")
    async def confirm_payment(order_id: int, body: ConfirmPaymentPayload):
        await enter("confirm_payment")
        order = state.orders.get(order_id)
        if order is None:
            raise _error(404, "NOT_FOUND", f"Order {order_id} not found", orderId=order_id)

        if order.status is OrderStatus.PENDING:
            try:
                order = apply_transition(
                    order,
                    OrderStatus.PAID,
                    payment_method=body.payment_method,
                    payment_reference=body.reference,
                )
            except InvalidStatusTransition as e:
                raise _error(409, e.code, e.message, **e.details)
            state.orders[order_id] = order
            logging.info(f"[Platform] Payment for order {order_id} confirmed ({body.payment_method.value})")
        elif order.status is OrderStatus.CANCELLED:
            raise _error(409, "INVALID_STATUS_TRANSITION", f"Order {order_id} is cancelled",
                         current=order.status.value, target=OrderStatus.PAID.value)

        lose_response("confirm_payment")
        return _dump(order)

    @app.get("/orders/{order_id}")
    async def get_order(order_id: int):
        await enter("get_order")
        order = state.orders.get(order_id)
        if order is None:
            raise _error(404, "NOT_FOUND", f"Order {order_id} not found", orderId=order_id)
        return _dump(order)

    @app.get("/users/{user_id}/orders")
    async def list_orders(user_id: int):
        await enter("list_orders")
        return [_dump(o) for o in state.orders.values() if o.user_id == user_id]

    @app.patch("/orders/{order_id}/status")
    async def update_status(order_id: int, body: StatusPayload):
        await enter("update_status")
        order = state.orders.get(order_id)
        if order is None:
            raise _error(404, "NOT_FOUND", f"Order {order_id} not found", orderId=order_id)
        changes = {"tracking_code": body.tracking_code} if body.tracking_code else {}
        try:
            order = apply_transition(order, body.status, **changes)
        except InvalidStatusTransition as e:
            raise _error(409, e.code, e.message, **e.details)
        state.orders[order_id] = order
        return _dump(order)

    # --- Sponsorship graph ---
    @app.get("/users/{user_id}/sponsor")
    async def get_sponsor(user_id: int):
        await enter("get_sponsor")
        return {"sponsorId": state.sponsors.get(user_id)}

    @app.get("/users/{user_id}/upstream")
    async def get_upstream(user_id: int, maxDepth: int = 1):
        await enter("get_upstream")
        chain = []
        current = state.sponsors.get(user_id)
        while current is not None and len(chain) < maxDepth:
            chain.append(current)
            current = state.sponsors.get(current)
        return {"chain": chain}

    # --- Commission ledger ---
    @app.post("/commissions", status_code=201)
    async def create_commission(body: CommissionDraft):
        await enter("create_commission")
        existing = state.commissions.get(body.idempotency_key)
        if existing is not None:
            raise _error(409, "ALREADY_EXISTS", "Commission already recorded", commissionId=existing.id)
        commission = Commission(id=next(state._commission_ids), created_at=utcnow(), **body.model_dump())
        state.commissions[body.idempotency_key] = commission

        lose_response("create_commission")
        return _dump(commission)

    @app.get("/users/{user_id}/commissions")
    async def list_commissions(user_id: int):
        await enter("list_commissions")
        return [_dump(c) for c in state.commissions.values() if c.beneficiary_user_id == user_id]

    return app


app = create_mock_platform()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=3001)
