"""
cart.py — Cart Aggregate

One active cart per user, created lazily on the first added product. Every
mutation re-reads the product from the live catalog, validates the requested
quantity against the stock observed at that moment and leaves the totals
consistent (line totals and cart totals are computed, never stored).

Mutations of one cart are serialized through a per-cart lock, so requests from
the same caller apply in submission order; carts of different users never share
a lock.

Stock violations are raised to the caller together with the current cart state
(`details["cart"]`) so the affected lines can be re-rendered. Quantities are
only adjusted (capped at stock) when merging into an existing line, and the
result then carries a notice.
"""

import asyncio
import itertools
import logging
from collections import defaultdict
from decimal import Decimal

from .config import shipping_cost as configured_shipping_cost
from .errors import InvalidQuantity, ItemNotFound, OutOfStock, ProductUnavailable
from .models import (
    Cart,
    CartLineItem,
    CartMutation,
    CartSnapshot,
    CartSnapshotItem,
    CartSummary,
    money,
    utcnow,
)
from .pricing import resolve_price

log = logging.getLogger(__name__)


class CartStore:
    """In-memory cart storage with one lock per cart."""

    def __init__(self):
        self._carts = {}
        self._locks = defaultdict(asyncio.Lock)
        self._item_ids = itertools.count(1)

    def lock(self, user_id):
        return self._locks[user_id]

    def get(self, user_id):
        return self._carts.get(user_id)

    def get_or_create(self, user_id):
        cart = self._carts.get(user_id)
        if cart is None:
            cart = Cart(user_id=user_id)
            self._carts[user_id] = cart
        return cart

    def next_item_id(self):
        return next(self._item_ids)


def _attach_cart(error, cart):
    error.details["cart"] = cart.model_dump(mode="json", by_alias=True)
    return error


class CartService:
    """
    Cart operations. Each call receives the caller's `SessionContext`.

    Args:
        catalog (CatalogClient): Source of live product data.
        store (CartStore | None): Cart storage; a fresh in-memory store by default.
        shipping_cost (Decimal | None): Flat shipping fee; `SHIPPING_COST` by default.
    """

    def __init__(self, catalog, store=None, shipping_cost=None):
        self.catalog = catalog
        self.store = store or CartStore()
        self.shipping_cost = money(configured_shipping_cost() if shipping_cost is None else shipping_cost)

    def _current(self, ctx):
        return self.store.get(ctx.user_id) or Cart(user_id=ctx.user_id)

    async def get_cart(self, ctx):
        return self._current(ctx)

    async def add_item(self, ctx, product_id, quantity):
        """
        Adds a product to the cart.

        A product already in the cart gets its quantity increased (capped at the
        live stock, with a notice); the original unit price of that line is kept.
        A new line captures the unit price for the caller's role.

        Raises:
            InvalidQuantity: If quantity <= 0.
            ProductUnavailable: If the product is inactive or has no stock.
            OutOfStock: If quantity exceeds the live stock.
        """
        if quantity <= 0:
            raise InvalidQuantity(quantity)

        async with self.store.lock(ctx.user_id):
            product = await self.catalog.get_product(product_id)
            if not product.is_available:
                raise _attach_cart(ProductUnavailable(product.id, product.name), self._current(ctx))
            if quantity > product.stock:
                log.info(f"{ctx.log_prefix} Add rejected: {product.id} requested={quantity} stock={product.stock}")
                raise _attach_cart(
                    OutOfStock(product.id, quantity, product.stock, product_name=product.name),
                    self._current(ctx),
                )

            cart = self.store.get_or_create(ctx.user_id)
            notice = None
            line = cart.find_by_product(product.id)
            if line is not None:
                wanted = line.quantity + quantity
                line.quantity = min(wanted, product.stock)
                line.available = True
                line.availability_note = None
                if line.quantity < wanted:
                    notice = (
                        f"Only {product.stock} units of '{product.name or product.id}' available; "
                        f"quantity set to {line.quantity}"
                    )
            else:
                quote = resolve_price(product, ctx.role)
                line = CartLineItem(
                    id=self.store.next_item_id(),
                    product_id=product.id,
                    product_name=product.name,
                    quantity=quantity,
                    unit_price=quote.unit_price,
                    comparison_price=quote.comparison_price,
                )
                cart.items.append(line)
            cart.updated_at = utcnow()

            log.info(f"{ctx.log_prefix} Cart line {line.id}: product={product.id} qty={line.quantity}")
            return CartMutation(cart=cart, notice=notice)

    async def update_quantity(self, ctx, item_id, quantity):
        """
        Sets the quantity of an existing line.

        Raises:
            InvalidQuantity: If quantity <= 0 (use `remove_item` instead).
            ItemNotFound: If the line does not exist.
            ProductUnavailable: If the product is no longer available.
            OutOfStock: If quantity exceeds the live stock; the line is unchanged.
        """
        if quantity <= 0:
            raise InvalidQuantity(quantity)

        async with self.store.lock(ctx.user_id):
            cart = self._current(ctx)
            line = cart.find_item(item_id)
            if line is None:
                raise ItemNotFound(item_id)

            product = await self.catalog.get_product(line.product_id)
            if not product.is_available:
                line.available = False
                line.availability_note = "No longer available"
                raise _attach_cart(ProductUnavailable(product.id, product.name), cart)
            if quantity > product.stock:
                raise _attach_cart(
                    OutOfStock(product.id, quantity, product.stock, product_name=product.name),
                    cart,
                )

            line.quantity = quantity
            line.available = True
            line.availability_note = None
            cart.updated_at = utcnow()
            return CartMutation(cart=cart)

    async def remove_item(self, ctx, item_id):
        """
        Removes a line.

        Raises:
            ItemNotFound: If the line does not exist.
        """
        async with self.store.lock(ctx.user_id):
            cart = self._current(ctx)
            line = cart.find_item(item_id)
            if line is None:
                raise ItemNotFound(item_id)
            cart.items.remove(line)
            cart.updated_at = utcnow()
            return cart

    async def clear(self, ctx):
        async with self.store.lock(ctx.user_id):
            cart = self._current(ctx)
            cart.items.clear()
            cart.updated_at = utcnow()
            log.info(f"{ctx.log_prefix} Cart cleared")
            return cart

    async def check_availability(self, ctx):
        """
        Re-validates every line against live availability and stock.

        Lines that became unavailable, or whose quantity exceeds the live stock,
        are flagged (`available=False` with a note) but kept in the cart.

        Returns:
            list[CartLineItem]: The flagged lines; empty when everything is available.
        """
        async with self.store.lock(ctx.user_id):
            cart = self._current(ctx)
            if cart.is_empty:
                return []

            statuses = await self.catalog.check_availability([item.product_id for item in cart.items])
            by_id = {status.id: status for status in statuses}

            flagged = []
            for item in cart.items:
                status = by_id.get(item.product_id)
                if status is None or not status.available:
                    item.available = False
                    item.availability_note = "No longer available"
                elif status.stock is not None and item.quantity > status.stock:
                    item.available = False
                    item.availability_note = f"Only {status.stock} units available"
                else:
                    item.available = True
                    item.availability_note = None
                    continue
                flagged.append(item)

            if flagged:
                log.warning(f"{ctx.log_prefix} {len(flagged)} cart line(s) flagged as unavailable")
            return flagged

    async def summary(self, ctx):
        cart = self._current(ctx)
        savings = sum(
            (
                (item.comparison_price - item.unit_price) * item.quantity
                for item in cart.items
                if item.comparison_price is not None
            ),
            Decimal("0"),
        )
        shipping = Decimal("0.00") if cart.is_empty else self.shipping_cost
        return CartSummary(
            total_items=cart.total_items,
            subtotal=cart.total_price,
            shipping_cost=shipping,
            final_total=money(cart.total_price + shipping),
            savings=money(savings),
            is_empty=cart.is_empty,
            unavailable_items=sum(1 for item in cart.items if not item.available),
        )

    async def snapshot(self, ctx):
        """Returns a frozen copy of the cart as it is now."""
        async with self.store.lock(ctx.user_id):
            cart = self._current(ctx)
            return CartSnapshot(
                user_id=ctx.user_id,
                items=tuple(
                    CartSnapshotItem(
                        product_id=item.product_id,
                        product_name=item.product_name,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        line_total=item.line_total,
                    )
                    for item in cart.items
                ),
                subtotal=cart.total_price,
                shipping_cost=self.shipping_cost,
            )
