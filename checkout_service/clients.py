"""
This module provides communication clients for the external systems the core
depends on. All of them are endpoints of the remote platform API (REST/JSON):
- Catalog Service (products, live stock and availability)
- Address Service (address book, default address)
- Order/Payment Service (order creation with atomic stock reservation, payment confirmation)
- Sponsorship Graph Service (sponsor and upstream chain of a user)
- Commission Ledger Service (idempotent commission creation)
Each class encapsulates its endpoints and error translation; they share one
`httpx.AsyncClient` so connections are pooled.
"""

import logging

import httpx

from .config import HTTP_READ_TIMEOUT_SECONDS, HTTP_TIMEOUT_SECONDS, PLATFORM_API_URL
from .errors import (
    AlreadyExists,
    CheckoutServiceError,
    InvalidStatusTransition,
    MissingAddress,
    OrderNotFound,
    OutOfStock,
    ProductUnavailable,
    UpstreamUnavailable,
)
from .models import Address, AvailabilityStatus, Commission, Order, Product

log = logging.getLogger(__name__)


def build_http_client(base_url=None, transport=None):
    """
    Creates the shared async HTTP client for the platform API.

    Args:
        base_url (str | None): Overrides `PLATFORM_API_URL`.
        transport (httpx.AsyncBaseTransport | None): Custom transport, e.g. an
            `httpx.ASGITransport` wrapping the mock platform in tests.
    """
    timeout_config = httpx.Timeout(HTTP_TIMEOUT_SECONDS, read=HTTP_READ_TIMEOUT_SECONDS)
    return httpx.AsyncClient(
        base_url=base_url or PLATFORM_API_URL,
        timeout=timeout_config,
        transport=transport,
    )


class PlatformServiceClient:
    """
    Base class for the platform API clients.
    Translates transport failures, timeouts and 5xx responses into
    `UpstreamUnavailable`; 4xx responses are passed to `_handle_client_error`.
    """
    service = "platform"

    def __init__(self, http):
        self.http = http

    async def _request(self, method, path, *, json=None, params=None, headers=None):
        try:
            response = await self.http.request(method, path, json=json, params=params, headers=headers)
        except httpx.TimeoutException as e:
            log.error(f"[{self.service}] Timeout on {method} {path}: {e!r}")
            raise UpstreamUnavailable(self.service, "timeout") from e
        except httpx.TransportError as e:
            log.error(f"[{self.service}] Connection failure on {method} {path}: {e!r}")
            raise UpstreamUnavailable(self.service, e) from e

        if response.status_code >= 500:
            log.error(f"[{self.service}] HTTP {response.status_code} on {method} {path}")
            raise UpstreamUnavailable(self.service, f"HTTP {response.status_code}")

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error = self._error_body(e.response)
            log.warning(f"[{self.service}] HTTP {e.response.status_code} on {method} {path}: {error}")
            self._handle_client_error(e.response.status_code, error)
            raise CheckoutServiceError(error.get("message") or str(e), error.get("details")) from e

        return response.json() if response.content else None

    @staticmethod
    def _error_body(response):
        try:
            body = response.json()
        except ValueError:
            return {"message": response.text}
        detail = body.get("detail", body) if isinstance(body, dict) else body
        return detail if isinstance(detail, dict) else {"message": str(detail)}

    def _handle_client_error(self, status_code, error):
        """Hook for subclasses; raise a domain error to replace the generic one."""


# --- Catalog Client ---
class CatalogClient(PlatformServiceClient):
    service = "catalog"

    async def get_product(self, product_id):
        """
        Fetches a product with its live stock.

        Raises:
            ProductUnavailable: If the product does not exist.
            UpstreamUnavailable: If the catalog cannot be reached.
        """
        data = await self._request("GET", f"/products/{product_id}")
        return Product.model_validate(data)

    def _handle_client_error(self, status_code, error):
        if status_code == 404:
            raise ProductUnavailable((error.get("details") or {}).get("productId"))

    async def check_availability(self, product_ids):
        """Returns `[{id, available, stock}]` for the given product ids."""
        data = await self._request("POST", "/products/check-availability", json={"ids": list(product_ids)})
        return [AvailabilityStatus.model_validate(entry) for entry in data]


# --- Address Client ---
class AddressClient(PlatformServiceClient):
    service = "address"

    async def get_addresses(self, user_id):
        data = await self._request("GET", f"/users/{user_id}/addresses")
        return [Address.model_validate(entry) for entry in data]

    async def get_default_address(self, user_id):
        """Returns the default address of a user, or None if none is set."""
        data = await self._request("GET", f"/users/{user_id}/addresses/default")
        return Address.model_validate(data) if data else None


# --- Order / Payment Client ---
class OrderClient(PlatformServiceClient):
    """
    Client for the order/payment endpoints.
    Order creation and payment confirmation send an `Idempotency-Key` header;
    retrying with the same key returns the original result instead of creating
    a second order or confirming twice.
    """
    service = "order"

    def _handle_client_error(self, status_code, error):
        code = error.get("code")
        details = error.get("details") or {}
        if code == "OUT_OF_STOCK":
            raise OutOfStock(
                details.get("productId"),
                details.get("requested"),
                details.get("available"),
                product_name=details.get("productName"),
            )
        if code == "INVALID_STATUS_TRANSITION":
            raise InvalidStatusTransition(details.get("current"), details.get("target"), error.get("message"))
        if code == "MISSING_ADDRESS":
            raise MissingAddress(error.get("message") or "The selected address does not exist")
        if status_code == 404:
            raise OrderNotFound(details.get("orderId"))

    async def create_order(self, snapshot, address_id, payment_method, idempotency_key):
        """
        Creates an order from a cart snapshot; the service reserves stock atomically.

        Args:
            snapshot (CartSnapshot): Items, unit prices and totals to copy.
            address_id (int): Selected shipping address; copied into the order.
            payment_method (PaymentMethod): Chosen payment method.
            idempotency_key (str): Stable key for this checkout attempt.

        Returns:
            Order: The created (or previously created) order, status `pending`.

        Raises:
            OutOfStock: If the atomic stock reservation was rejected.
            UpstreamUnavailable: On timeout or service failure; safe to retry with the same key.
        """
        payload = {
            "cart": snapshot.model_dump(mode="json", by_alias=True),
            "addressId": address_id,
            "paymentMethod": payment_method.value,
        }
        data = await self._request("POST", "/orders", json=payload, headers={"Idempotency-Key": idempotency_key})
        return Order.model_validate(data)

    async def confirm_payment(self, order_id, payment_method, reference=None):
        """Marks an order as paid. Idempotent on the service side."""
        payload = {"paymentMethod": payment_method.value, "reference": reference}
        headers = {"Idempotency-Key": f"confirm-payment-{order_id}"}
        data = await self._request("POST", f"/orders/{order_id}/confirm-payment", json=payload, headers=headers)
        return Order.model_validate(data)

    async def get_order(self, order_id):
        data = await self._request("GET", f"/orders/{order_id}")
        return Order.model_validate(data)

    async def list_orders(self, user_id):
        data = await self._request("GET", f"/users/{user_id}/orders")
        return [Order.model_validate(entry) for entry in data]

    async def update_status(self, order_id, status, tracking_code=None):
        payload = {"status": status.value, "trackingCode": tracking_code}
        data = await self._request("PATCH", f"/orders/{order_id}/status", json=payload)
        return Order.model_validate(data)


# --- Sponsorship Graph Client ---
class SponsorshipClient(PlatformServiceClient):
    service = "sponsorship"

    async def get_sponsor(self, user_id):
        """Returns the id of the affiliate who referred `user_id`, or None."""
        data = await self._request("GET", f"/users/{user_id}/sponsor")
        return (data or {}).get("sponsorId")

    async def get_upstream_chain(self, user_id, max_depth):
        """Returns up to `max_depth` ancestors of `user_id`, nearest first."""
        if max_depth <= 0:
            return []
        data = await self._request("GET", f"/users/{user_id}/upstream", params={"maxDepth": max_depth})
        return list((data or {}).get("chain", []))[:max_depth]


# --- Commission Ledger Client ---
class CommissionLedgerClient(PlatformServiceClient):
    service = "commission-ledger"

    def _handle_client_error(self, status_code, error):
        if status_code == 409 or error.get("code") == "ALREADY_EXISTS":
            raise AlreadyExists(error.get("message") or "Commission already recorded", error.get("details"))

    async def create_commission(self, draft):
        """
        Records a commission. The ledger keys records by
        (orderItemId, type, beneficiaryUserId).

        Raises:
            AlreadyExists: If the record was created by an earlier attempt.
        """
        data = await self._request("POST", "/commissions", json=draft.model_dump(mode="json", by_alias=True))
        return Commission.model_validate(data)

    async def list_commissions(self, beneficiary_id):
        data = await self._request("GET", f"/users/{beneficiary_id}/commissions")
        return [Commission.model_validate(entry) for entry in data]


class PlatformClients:
    """Bundle of the platform API clients sharing one HTTP client."""

    def __init__(self, http=None):
        self.http = http or build_http_client()
        self.catalog = CatalogClient(self.http)
        self.addresses = AddressClient(self.http)
        self.orders = OrderClient(self.http)
        self.sponsorship = SponsorshipClient(self.http)
        self.ledger = CommissionLedgerClient(self.http)

    async def aclose(self):
        await self.http.aclose()
