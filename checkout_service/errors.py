"""
errors.py — Error taxonomy of the Checkout Service.

Every failure the core can report is a subclass of `CheckoutServiceError`.
Each error carries:
    • code (str): stable machine-readable identifier (e.g. "OUT_OF_STOCK")
    • message (str): specific, user-actionable text
    • details (dict): data needed to re-render the affected cart lines or orders
    • status_code (int): HTTP status used by the API layer
    • retryable (bool): whether the same call may simply be retried
"""


class CheckoutServiceError(Exception):
    code = "CHECKOUT_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        return {"code": self.code, "message": self.message, "details": self.details}


class ConfigurationError(CheckoutServiceError):
    code = "CONFIGURATION_ERROR"
    status_code = 500


# --- Cart / stock ---
class OutOfStock(CheckoutServiceError):
    """Requested quantity exceeds the live stock. Retry after refetching the cart."""
    code = "OUT_OF_STOCK"
    status_code = 409
    retryable = True

    def __init__(self, product_id, requested, available, product_name=None, message=None):
        label = f"'{product_name}'" if product_name else f"product {product_id}"
        super().__init__(
            message or f"Only {available} units of {label} available (requested {requested})",
            {"productId": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ProductUnavailable(CheckoutServiceError):
    code = "PRODUCT_UNAVAILABLE"
    status_code = 409

    def __init__(self, product_id, product_name=None):
        label = f"'{product_name}'" if product_name else f"Product {product_id}"
        super().__init__(f"{label} is no longer available", {"productId": product_id})
        self.product_id = product_id


class InvalidQuantity(CheckoutServiceError):
    code = "INVALID_QUANTITY"
    status_code = 422

    def __init__(self, quantity):
        super().__init__(
            f"Quantity must be at least 1 (got {quantity}); remove the item instead",
            {"quantity": quantity},
        )


class ItemNotFound(CheckoutServiceError):
    code = "ITEM_NOT_FOUND"
    status_code = 404

    def __init__(self, item_id):
        super().__init__(f"Cart item {item_id} does not exist", {"itemId": item_id})


class EmptyCart(CheckoutServiceError):
    code = "EMPTY_CART"
    status_code = 409

    def __init__(self):
        super().__init__("Your cart is empty; add products before checking out")


# --- Checkout ---
class MissingAddress(CheckoutServiceError):
    code = "MISSING_ADDRESS"
    status_code = 422

    def __init__(self, message="Select a shipping address before placing the order"):
        super().__init__(message)


class UnavailableItems(CheckoutServiceError):
    code = "UNAVAILABLE_ITEMS"
    status_code = 409

    def __init__(self, items):
        names = ", ".join(str(item.get("productName") or item["productId"]) for item in items)
        super().__init__(
            f"Some products in your cart are no longer available: {names}",
            {"items": items},
        )
        self.items = items


class MissingPaymentReference(CheckoutServiceError):
    code = "MISSING_PAYMENT_REFERENCE"
    status_code = 422

    def __init__(self, method):
        super().__init__(
            f"Payment method {method} requires the bank operation code",
            {"paymentMethod": method},
        )


class InvalidStatusTransition(CheckoutServiceError):
    code = "INVALID_STATUS_TRANSITION"
    status_code = 409

    def __init__(self, current, target, message=None):
        super().__init__(
            message or f"Cannot move from '{current}' to '{target}'",
            {"current": current, "target": target},
        )
        self.current = current
        self.target = target


# --- Orders / access ---
class OrderNotFound(CheckoutServiceError):
    code = "ORDER_NOT_FOUND"
    status_code = 404

    def __init__(self, order_id):
        super().__init__(f"Order {order_id} does not exist", {"orderId": order_id})


class PermissionDenied(CheckoutServiceError):
    code = "PERMISSION_DENIED"
    status_code = 403


# --- Idempotency / upstream ---
class AlreadyExists(CheckoutServiceError):
    """Idempotency hit: the record was created by an earlier attempt."""
    code = "ALREADY_EXISTS"
    status_code = 200


class UpstreamUnavailable(CheckoutServiceError):
    code = "UPSTREAM_UNAVAILABLE"
    status_code = 503
    retryable = True

    def __init__(self, service, reason):
        super().__init__(
            f"The {service} service is temporarily unavailable; please try again",
            {"service": service, "reason": str(reason)},
        )
        self.service = service
