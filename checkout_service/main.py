"""
main.py — FastAPI Entry Point for the Checkout Service

This module provides the REST API used by the storefront UI. Identity is issued
by the authentication layer and arrives in the `X-User-Id` / `X-User-Role`
headers; every handler turns it into an explicit `SessionContext`.

Responsibilities:
    • Cart queries and mutations
    • Checkout steps (fulfillment selection, order creation, payment confirmation, completion)
    • Read-only order and commission views, administrative order status changes
    • Mapping of domain errors to JSON error responses
    • Provide system health information
"""

from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .cart import CartService
from .checkout import CheckoutService, CheckoutSession
from .clients import PlatformClients
from .commissions import CommissionService, summarize_commissions
from .config import load_commission_schedule
from .context import SessionContext
from .errors import CheckoutServiceError, ConfigurationError
from .logging_config import get_logger, setup_logging
from .models import (
    AddItemRequest,
    Cart,
    CartAvailability,
    CartMutation,
    CartSummary,
    CommissionOverview,
    ConfirmPaymentRequest,
    FulfillmentSelection,
    Order,
    Role,
    StatusTransitionRequest,
    UpdateQuantityRequest,
)
from .orders import OrderAdminService

# Initialization
# Configure logging and initialize FastAPI app
setup_logging()
log = get_logger(__name__)
app = FastAPI(title="Affiliate Checkout Service")


class CheckoutEngine:
    """Wires the core services onto one set of platform clients."""

    def __init__(self, clients, schedule, shipping_cost=None):
        self.clients = clients
        self.carts = CartService(clients.catalog, shipping_cost=shipping_cost)
        self.commissions = CommissionService(clients.sponsorship, clients.ledger, schedule)
        self.checkout = CheckoutService(self.carts, clients.addresses, clients.orders, self.commissions)
        self.orders = OrderAdminService(clients.orders)

    async def aclose(self):
        await self.clients.aclose()


@app.on_event("startup")
async def on_startup():
    """
    Builds the engine from the environment unless one was installed already
    (tests install their own). Fails fast when commission rates are missing.
    """
    if getattr(app.state, "engine", None) is None:
        app.state.engine = CheckoutEngine(PlatformClients(), load_commission_schedule())
    log.info("Checkout service started.")


@app.on_event("shutdown")
async def on_shutdown():
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.aclose()


@app.exception_handler(CheckoutServiceError)
async def handle_checkout_error(request: Request, exc: CheckoutServiceError):
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        log.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


def get_engine(request: Request) -> CheckoutEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ConfigurationError("Checkout engine is not initialised")
    return engine


def get_session(
        user_id: int = Header(..., alias="X-User-Id"),
        role: Role = Header(Role.VISITOR, alias="X-User-Role"),
) -> SessionContext:
    return SessionContext(user_id=user_id, role=role)


# --- Cart ---
@app.get("/cart", response_model=Cart)
async def get_cart(ctx: SessionContext = Depends(get_session), engine: CheckoutEngine = Depends(get_engine)):
    return await engine.carts.get_cart(ctx)


@app.get("/cart/summary", response_model=CartSummary)
async def get_cart_summary(ctx: SessionContext = Depends(get_session), engine: CheckoutEngine = Depends(get_engine)):
    return await engine.carts.summary(ctx)


@app.post("/cart/items", response_model=CartMutation, status_code=201)
async def add_cart_item(
        body: AddItemRequest,
        ctx: SessionContext = Depends(get_session),
        engine: CheckoutEngine = Depends(get_engine),
):
    return await engine.carts.add_item(ctx, body.product_id, body.quantity)


@app.put("/cart/items/{item_id}", response_model=CartMutation)
async def update_cart_item(
        item_id: int,
        body: UpdateQuantityRequest,
        ctx: SessionContext = Depends(get_session),
        engine: CheckoutEngine = Depends(get_engine),
):
    return await engine.carts.update_quantity(ctx, item_id, body.quantity)


@app.delete("/cart/items/{item_id}", response_model=Cart)
async def remove_cart_item(
        item_id: int,
        ctx: SessionContext = Depends(get_session),
        engine: CheckoutEngine = Depends(get_engine),
):
    return await engine.carts.remove_item(ctx, item_id)


@app.delete("/cart", response_model=Cart)
async def clear_cart(ctx: SessionContext = Depends(get_session), engine: CheckoutEngine = Depends(get_engine)):
    return await engine.carts.clear(ctx)


@app.post("/cart/check-availability", response_model=CartAvailability)
async def check_cart_availability(
        ctx: SessionContext = Depends(get_session),
        engine: CheckoutEngine = Depends(get_engine),
):
    flagged = await engine.carts.check_availability(ctx)
    return CartAvailability(cart=await engine.carts.get_cart(ctx), unavailable_items=flagged)


# --- Checkout ---
@app.get("/checkout", response_model=CheckoutSession)
async def get_checkout(ctx: SessionContext = Depends(get_session), engine: CheckoutEngine = Depends(get_engine)):
    return await engine.checkout.get_checkout(ctx)


@app.put("/checkout/fulfillment", response_model=CheckoutSession)
async def select_fulfillment(
        body: FulfillmentSelection,
        ctx: SessionContext = Depends(get_session),
        engine: CheckoutEngine = Depends(get_engine),
):
    return await engine.checkout.select_fulfillment(ctx, body.address_id, body.payment_method)


@app.post("/checkout/order", response_model=CheckoutSession, status_code=201)
async def create_order(
        body: Optional[FulfillmentSelection] = None,
        ctx: SessionContext = Depends(get_session),
        engine: CheckoutEngine = Depends(get_engine),
):
    body = body or FulfillmentSelection()
    return await engine.checkout.create_order(ctx, body.address_id, body.payment_method)


@app.post("/checkout/payment", response_model=CheckoutSession)
async def confirm_payment(
        body: ConfirmPaymentRequest,
        ctx: SessionContext = Depends(get_session),
        engine: CheckoutEngine = Depends(get_engine),
):
    return await engine.checkout.confirm_payment(ctx, body.payment_method, body.reference)


@app.post("/checkout/complete", response_model=CheckoutSession)
async def complete_checkout(ctx: SessionContext = Depends(get_session), engine: CheckoutEngine = Depends(get_engine)):
    return await engine.checkout.complete(ctx)


@app.post("/checkout/restart", response_model=CheckoutSession)
async def restart_checkout(ctx: SessionContext = Depends(get_session), engine: CheckoutEngine = Depends(get_engine)):
    return await engine.checkout.restart(ctx)


# --- Orders ---
@app.get("/orders", response_model=List[Order])
async def list_orders(ctx: SessionContext = Depends(get_session), engine: CheckoutEngine = Depends(get_engine)):
    return await engine.orders.list_orders(ctx)


@app.get("/orders/{order_id}", response_model=Order)
async def get_order(
        order_id: int,
        ctx: SessionContext = Depends(get_session),
        engine: CheckoutEngine = Depends(get_engine),
):
    return await engine.orders.get_order(ctx, order_id)


@app.patch("/admin/orders/{order_id}/status", response_model=Order)
async def update_order_status(
        order_id: int,
        body: StatusTransitionRequest,
        ctx: SessionContext = Depends(get_session),
        engine: CheckoutEngine = Depends(get_engine),
):
    return await engine.orders.transition(ctx, order_id, body.status, tracking_code=body.tracking_code)


# --- Commissions ---
@app.get("/commissions", response_model=CommissionOverview)
async def list_commissions(ctx: SessionContext = Depends(get_session), engine: CheckoutEngine = Depends(get_engine)):
    commissions = await engine.commissions.list_for(ctx)
    return CommissionOverview(commissions=commissions, summary=summarize_commissions(commissions))


# Health Check Endpoint
@app.get("/health")
def health_check():
    """
    Simple health check endpoint for monitoring systems and container orchestrators.

    Returns:
        dict: A basic JSON object indicating service availability.
    """
    return {"status": "ok"}
