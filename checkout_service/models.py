"""
models.py — Data Models for Cart, Order and Commission Processing

This module defines the data structures shared by the cart, checkout, order
and commission components. It uses Pydantic models to ensure type safety and
automatic validation of data exchanged with the remote platform API and the UI.

Field names are snake_case in Python and camelCase on the wire.

Models:
    - Product: Catalog entry as returned by the catalog service (read-only).
    - PriceQuote: Result of the pricing resolver for one product and role.
    - CartLineItem / Cart: The cart aggregate and its lines.
    - CartSnapshot: Frozen copy of a cart handed to the order service.
    - Address: Shipping destination owned by the address service.
    - OrderItem / Order: Immutable-once-created order record.
    - Commission: Ledger entry produced by commission attribution.
    - Request bodies accepted by the API layer.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

CENT = Decimal("0.01")


def money(value):
    """Quantizes an amount to cents (half-up)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def utcnow():
    return datetime.now(timezone.utc)


class Role(str, Enum):
    VISITOR = "visitor"
    AFFILIATE = "affiliate"
    ADMIN = "admin"
    ADMIN_GENERAL = "admin_general"

    @property
    def is_admin(self):
        return self in (Role.ADMIN, Role.ADMIN_GENERAL)


class PaymentMethod(str, Enum):
    BCP_CODE = "BCP_code"
    BANK_TRANSFER = "bank_transfer"

    @property
    def requires_reference(self):
        """Reference-code methods need the bank operation code to confirm payment."""
        return self is PaymentMethod.BCP_CODE


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class CommissionType(str, Enum):
    DIRECT = "direct"
    REFERRAL = "referral"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# --- Catalog ---
class Product(ApiModel):
    """
    Catalog entry, owned by the catalog service.

    Attributes:
        id (int): Product identifier.
        name (str): Display name, used in error messages.
        category_id (int | None): Category reference.
        public_price (Decimal): Price for visitors.
        affiliate_price (Decimal): Price for affiliates.
        stock (int): Units on hand, never negative.
        is_active (bool): Whether the product is listed.
        discount_percentage (Decimal): Catalog discount metadata (0-100).
    """
    id: int
    name: str = ""
    category_id: Optional[int] = None
    public_price: Decimal
    affiliate_price: Decimal
    stock: int = Field(..., ge=0)
    is_active: bool = True
    discount_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)

    @computed_field(alias="isAvailable")
    @property
    def is_available(self) -> bool:
        return self.stock > 0 and self.is_active


class PriceQuote(ApiModel):
    unit_price: Decimal
    comparison_price: Optional[Decimal] = None
    savings_percent: Optional[int] = None
    warnings: List[str] = Field(default_factory=list)


class AvailabilityStatus(ApiModel):
    id: int
    available: bool
    stock: Optional[int] = None


# --- Cart ---
class CartLineItem(ApiModel):
    """
    A single cart line. `unit_price` is captured when the line is created and is
    not re-derived from the live catalog; `line_total` is always computed.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)

    id: int
    product_id: int
    product_name: str = ""
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    comparison_price: Optional[Decimal] = None
    available: bool = True
    availability_note: Optional[str] = None

    @computed_field(alias="lineTotal")
    @property
    def line_total(self) -> Decimal:
        return money(self.unit_price * self.quantity)


class Cart(ApiModel):
    user_id: int
    items: List[CartLineItem] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field(alias="totalItems")
    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    @computed_field(alias="totalPrice")
    @property
    def total_price(self) -> Decimal:
        return money(sum((item.line_total for item in self.items), Decimal("0")))

    @computed_field(alias="isEmpty")
    @property
    def is_empty(self) -> bool:
        return len(self.items) == 0

    def find_item(self, item_id):
        return next((item for item in self.items if item.id == item_id), None)

    def find_by_product(self, product_id):
        return next((item for item in self.items if item.product_id == product_id), None)


class CartMutation(ApiModel):
    """Result of a cart mutation; `notice` is set when the request was adjusted."""
    cart: Cart
    notice: Optional[str] = None


class CartSummary(ApiModel):
    total_items: int
    subtotal: Decimal
    shipping_cost: Decimal
    final_total: Decimal
    savings: Decimal
    is_empty: bool
    unavailable_items: int = 0


class CartSnapshotItem(FrozenApiModel):
    product_id: int
    product_name: str = ""
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class CartSnapshot(FrozenApiModel):
    user_id: int
    items: Tuple[CartSnapshotItem, ...]
    subtotal: Decimal
    shipping_cost: Decimal = Decimal("0")


# --- Addresses ---
class Address(FrozenApiModel):
    id: int
    user_id: int
    name: str
    phone: str
    region: str
    city: str
    address: str
    reference: Optional[str] = None
    is_default: bool = False


# --- Orders ---
class OrderItem(FrozenApiModel):
    id: int
    product_id: int
    product_name: str = ""
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class Order(FrozenApiModel):
    """
    An order created from a cart snapshot. The shipping address and the line
    items are copies; only `status` and the status timestamps ever change.
    """
    id: int
    user_id: int
    shipping_address: Address
    order_items: Tuple[OrderItem, ...]
    subtotal: Decimal
    shipping_cost: Decimal = Decimal("0")
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    payment_method: PaymentMethod
    payment_reference: Optional[str] = None
    tracking_code: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


# --- Commissions ---
class Commission(ApiModel):
    id: int
    type: CommissionType
    order_id: int
    order_item_id: int
    beneficiary_user_id: int
    source_user_id: int
    level: int = 1
    amount: Decimal
    percentage: Decimal
    status: CommissionStatus = CommissionStatus.PENDING
    created_at: datetime
    approved_at: Optional[datetime] = None

    @property
    def idempotency_key(self):
        return (self.order_item_id, self.type, self.beneficiary_user_id)


class CommissionDraft(FrozenApiModel):
    """Commission to be recorded; amount and percentage are fixed at creation."""
    type: CommissionType
    order_id: int
    order_item_id: int
    beneficiary_user_id: int
    source_user_id: int
    level: int
    amount: Decimal
    percentage: Decimal

    @property
    def idempotency_key(self):
        return (self.order_item_id, self.type, self.beneficiary_user_id)


class CommissionTotals(ApiModel):
    total: Decimal = Decimal("0.00")
    direct: Decimal = Decimal("0.00")
    referral: Decimal = Decimal("0.00")
    pending: Decimal = Decimal("0.00")
    approved: Decimal = Decimal("0.00")
    paid: Decimal = Decimal("0.00")


class CommissionSummary(ApiModel):
    current_month: CommissionTotals
    all_time: CommissionTotals


# --- Request bodies ---
class AddItemRequest(ApiModel):
    product_id: int
    quantity: int = 1


class UpdateQuantityRequest(ApiModel):
    quantity: int


class FulfillmentSelection(ApiModel):
    address_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None


class ConfirmPaymentRequest(ApiModel):
    payment_method: Optional[PaymentMethod] = None
    reference: Optional[str] = None


class StatusTransitionRequest(ApiModel):
    status: OrderStatus
    tracking_code: Optional[str] = None


# --- Response bodies ---
class CartAvailability(ApiModel):
    cart: Cart
    unavailable_items: List[CartLineItem] = Field(default_factory=list)


class CommissionOverview(ApiModel):
    commissions: List[Commission]
    summary: CommissionSummary
