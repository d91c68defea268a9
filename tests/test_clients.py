from decimal import Decimal

import httpx
import pytest

from checkout_service.clients import (
    CatalogClient,
    CommissionLedgerClient,
    OrderClient,
    SponsorshipClient,
    build_http_client,
)
from checkout_service.errors import (
    AlreadyExists,
    CheckoutServiceError,
    InvalidStatusTransition,
    OrderNotFound,
    OutOfStock,
    ProductUnavailable,
    UpstreamUnavailable,
)
from checkout_service.models import CommissionDraft, CommissionType, OrderStatus, PaymentMethod


def client_for(handler):
    return build_http_client(base_url="http://platform.test", transport=httpx.MockTransport(handler))


def error_response(status_code, code, message="", **details):
    return httpx.Response(status_code, json={"detail": {"code": code, "message": message, "details": details}})


@pytest.mark.asyncio
async def test_timeout_becomes_upstream_unavailable():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UpstreamUnavailable) as exc_info:
        await CatalogClient(client_for(handler)).get_product(1)

    assert exc_info.value.retryable
    assert exc_info.value.details == {"service": "catalog", "reason": "timeout"}


@pytest.mark.asyncio
async def test_connection_failure_becomes_upstream_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamUnavailable):
        await OrderClient(client_for(handler)).get_order(1)


@pytest.mark.asyncio
async def test_server_error_becomes_upstream_unavailable():
    with pytest.raises(UpstreamUnavailable):
        await CatalogClient(client_for(lambda request: httpx.Response(502))).check_availability([1])


@pytest.mark.asyncio
async def test_unknown_product_is_unavailable():
    def handler(request):
        return error_response(404, "NOT_FOUND", "missing", productId=8)

    with pytest.raises(ProductUnavailable) as exc_info:
        await CatalogClient(client_for(handler)).get_product(8)

    assert exc_info.value.product_id == 8


@pytest.mark.asyncio
async def test_order_service_errors_are_mapped():
    def handler(request):
        if request.url.path == "/orders/1/status":
            return error_response(409, "INVALID_STATUS_TRANSITION", "nope", current="delivered", target="paid")
        if request.url.path == "/orders/2":
            return error_response(404, "NOT_FOUND", orderId=2)
        return error_response(409, "OUT_OF_STOCK", productId=5, productName="Maca", requested=4, available=1)

    orders = OrderClient(client_for(handler))

    with pytest.raises(InvalidStatusTransition) as exc_info:
        await orders.update_status(1, OrderStatus.PAID)
    assert exc_info.value.current == "delivered"

    with pytest.raises(OrderNotFound):
        await orders.get_order(2)

    with pytest.raises(OutOfStock) as exc_info:
        await orders.confirm_payment(3, PaymentMethod.BANK_TRANSFER)
    assert exc_info.value.message == "Only 1 units of 'Maca' available (requested 4)"


@pytest.mark.asyncio
async def test_unmapped_client_error_keeps_the_message():
    def handler(request):
        return httpx.Response(400, json={"detail": "bad request body"})

    with pytest.raises(CheckoutServiceError) as exc_info:
        await SponsorshipClient(client_for(handler)).get_sponsor(1)

    assert exc_info.value.message == "bad request body"


@pytest.mark.asyncio
async def test_ledger_conflict_is_already_exists():
    draft = CommissionDraft(
        type=CommissionType.DIRECT,
        order_id=1,
        order_item_id=1,
        beneficiary_user_id=2,
        source_user_id=1,
        level=1,
        amount=Decimal("10.00"),
        percentage=Decimal("10.00"),
    )
    seen = []

    def handler(request):
        seen.append(request.read())
        return error_response(409, "ALREADY_EXISTS", "Commission already recorded")

    with pytest.raises(AlreadyExists):
        await CommissionLedgerClient(client_for(handler)).create_commission(draft)

    assert b'"orderItemId":1' in seen[0].replace(b" ", b"")
    assert b'"beneficiaryUserId":2' in seen[0].replace(b" ", b"")


@pytest.mark.asyncio
async def test_create_order_sends_idempotency_key(clients, affiliate, engine):
    await engine.carts.add_item(affiliate, 2, 1)
    snapshot = await engine.carts.snapshot(affiliate)

    first = await clients.orders.create_order(snapshot, 1, PaymentMethod.BANK_TRANSFER, idempotency_key="checkout-abc")
    second = await clients.orders.create_order(snapshot, 1, PaymentMethod.BANK_TRANSFER, idempotency_key="checkout-abc")

    assert first.id == second.id


@pytest.mark.asyncio
async def test_upstream_chain_with_zero_depth_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert await SponsorshipClient(client_for(handler)).get_upstream_chain(1, 0) == []


@pytest.mark.asyncio
async def test_sponsorship_lookups(clients):
    assert await clients.sponsorship.get_sponsor(1) == 2
    assert await clients.sponsorship.get_sponsor(2222) is None
    assert await clients.sponsorship.get_upstream_chain(2, 2) == [3, 4]


@pytest.mark.asyncio
async def test_default_address_may_be_missing(clients):
    assert (await clients.addresses.get_default_address(1)).id == 1
    assert await clients.addresses.get_default_address(5) is None
