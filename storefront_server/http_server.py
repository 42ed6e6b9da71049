"""HTTP server exposing the storefront client as a REST API."""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .app_state import StorefrontApp
from .config import load_settings
from .errors import AuthError, NetworkError, NotFoundError, StorefrontError, ValidationError
from .models import AddressDraft, PaymentMethod

logger = logging.getLogger("storefront-http-server")

ERROR_STATUS = (
    (ValidationError, 400),
    (AuthError, 401),
    (NotFoundError, 404),
    (NetworkError, 503),
)


def status_for(error: StorefrontError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 502


# Request models
class PhoneRequest(BaseModel):
    phone: str


class VerifyOtpRequest(BaseModel):
    phone: str
    otp: str


class CartItemRequest(BaseModel):
    product_id: str
    quantity: int = 1


class RemoveFromCartRequest(BaseModel):
    product_id: str


class SelectAddressRequest(BaseModel):
    address_id: Optional[str] = None


class SelectSlotRequest(BaseModel):
    slot_id: str
    day: str = "today"


class PaymentRequest(BaseModel):
    method: PaymentMethod


class ProfileRequest(BaseModel):
    name: str
    email: Optional[str] = None


class OrderStatusRequest(BaseModel):
    status: str


def _default_factory() -> StorefrontApp:
    return StorefrontApp(load_settings())


def create_app(factory: Callable[[], StorefrontApp] = _default_factory) -> FastAPI:
    """Build the FastAPI app; the StorefrontApp is created on startup and closed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Storefront HTTP Server...")
        storefront = factory()
        storefront.start()
        app.state.storefront = storefront
        yield
        logger.info("Shutting down Storefront HTTP Server...")
        storefront.close()

    app = FastAPI(
        title="Storefront MCP Server",
        description="HTTP API for browsing, cart, checkout and order tracking",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status, content={"detail": exc.message})

    def current(request: Request) -> StorefrontApp:
        return request.app.state.storefront

    def require_login(storefront: StorefrontApp) -> None:
        if not storefront.auth_manager.is_authenticated():
            raise AuthError("Not authenticated")

    def cart_view(storefront: StorefrontApp) -> dict:
        cart = storefront.cart
        return {
            "lines": [line.model_dump(mode="json") for line in cart.lines],
            "line_count": cart.total_line_count(),
            "quantity": cart.total_quantity(),
            "totals": storefront.orders.calculate_totals().model_dump(mode="json"),
            "notification": cart.notification.model_dump() if cart.notification else None,
        }

    def addresses_view(storefront: StorefrontApp) -> dict:
        default = storefront.addresses.default_address
        return {
            "addresses": [a.model_dump(mode="json") for a in storefront.addresses.addresses],
            "default_address_id": default.id if default else None,
        }

    def checkout_view(storefront: StorefrontApp) -> dict:
        return storefront.orders.state.model_dump(mode="json")

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        return {
            "status": "healthy",
            "authenticated": current(request).auth_manager.is_authenticated(),
        }

    # Authentication endpoints
    @app.post("/auth/send-otp")
    async def send_otp(body: PhoneRequest, request: Request):
        result = current(request).send_otp(body.phone)
        return {"success": result.success, "message": result.message}

    @app.post("/auth/verify-otp")
    async def verify_otp(body: VerifyOtpRequest, request: Request):
        storefront = current(request)
        result = storefront.verify_otp(body.phone, body.otp)
        return {
            "success": result.success,
            "message": result.message,
            "customer_id": storefront.auth_manager.customer_id if result.success else None,
            "has_addresses": result.has_addresses,
        }

    @app.post("/auth/logout")
    async def logout(request: Request):
        current(request).logout()
        return {"success": True, "message": "Successfully logged out"}

    @app.get("/auth/status")
    async def auth_status(request: Request):
        auth = current(request).auth_manager
        return {
            "authenticated": auth.is_authenticated(),
            "customer_id": auth.customer_id,
        }

    @app.put("/profile")
    async def update_profile(body: ProfileRequest, request: Request):
        storefront = current(request)
        require_login(storefront)
        user = storefront.update_profile(body.name, body.email)
        return user.model_dump(mode="json", by_alias=True)

    # Product endpoints
    @app.get("/products")
    async def list_products(
        request: Request,
        category: Optional[str] = None,
        sale_type: Optional[str] = None,
        available_only: bool = False,
    ):
        products = current(request).products
        if category:
            items = products.by_category(category)
        elif sale_type:
            items = products.by_sale_type(sale_type)
        elif available_only:
            items = products.available()
        else:
            items = products.all()
        return {"count": len(items), "products": [p.model_dump(mode="json") for p in items]}

    @app.get("/products/{product_id}")
    async def get_product(product_id: str, request: Request):
        return current(request).products.get(product_id).model_dump(mode="json")

    # Cart endpoints
    @app.get("/cart")
    async def get_cart(request: Request):
        return cart_view(current(request))

    @app.post("/cart/add")
    async def add_to_cart(body: CartItemRequest, request: Request):
        storefront = current(request)
        product = storefront.products.get(body.product_id)
        if not product.available:
            raise ValidationError(f"{product.name} is out of stock")
        storefront.cart.add_item(product, body.quantity)
        return cart_view(storefront)

    @app.post("/cart/update")
    async def update_cart(body: CartItemRequest, request: Request):
        storefront = current(request)
        storefront.cart.set_quantity(body.product_id, body.quantity)
        return cart_view(storefront)

    @app.post("/cart/remove")
    async def remove_from_cart(body: RemoveFromCartRequest, request: Request):
        storefront = current(request)
        storefront.cart.remove_item(body.product_id)
        return cart_view(storefront)

    @app.post("/cart/clear")
    async def clear_cart(request: Request):
        storefront = current(request)
        storefront.cart.clear()
        return cart_view(storefront)

    # Address endpoints
    @app.get("/addresses")
    async def list_addresses(request: Request):
        storefront = current(request)
        require_login(storefront)
        storefront.addresses.load()
        return addresses_view(storefront)

    @app.post("/addresses")
    async def add_address(draft: AddressDraft, request: Request):
        storefront = current(request)
        require_login(storefront)
        storefront.addresses.add(draft)
        return addresses_view(storefront)

    @app.put("/addresses/{address_id}")
    async def update_address(address_id: str, draft: AddressDraft, request: Request):
        storefront = current(request)
        require_login(storefront)
        storefront.addresses.update(address_id, draft)
        return addresses_view(storefront)

    @app.delete("/addresses/{address_id}")
    async def delete_address(address_id: str, request: Request):
        storefront = current(request)
        require_login(storefront)
        storefront.addresses.remove(address_id)
        return addresses_view(storefront)

    @app.post("/addresses/{address_id}/default")
    async def set_default_address(address_id: str, request: Request):
        storefront = current(request)
        require_login(storefront)
        storefront.addresses.set_default(address_id)
        return addresses_view(storefront)

    # Checkout endpoints
    @app.get("/checkout")
    async def get_checkout(request: Request):
        return checkout_view(current(request))

    @app.post("/checkout/begin")
    async def begin_checkout(request: Request):
        storefront = current(request)
        require_login(storefront)
        storefront.orders.begin()
        storefront.orders.choose_address()
        return checkout_view(storefront)

    @app.post("/checkout/address")
    async def select_address(body: SelectAddressRequest, request: Request):
        storefront = current(request)
        storefront.orders.choose_address(body.address_id)
        return checkout_view(storefront)

    @app.get("/checkout/slots")
    async def list_slots(request: Request):
        menu = current(request).orders.slot_menu()
        return {day: [option.model_dump(mode="json") for option in options] for day, options in menu.items()}

    @app.post("/checkout/slot")
    async def select_slot(body: SelectSlotRequest, request: Request):
        storefront = current(request)
        storefront.orders.choose_slot(body.slot_id, body.day)
        return checkout_view(storefront)

    @app.post("/checkout/summary")
    async def review_summary(request: Request):
        storefront = current(request)
        storefront.orders.review()
        return checkout_view(storefront)

    @app.post("/checkout/payment")
    async def select_payment(body: PaymentRequest, request: Request):
        storefront = current(request)
        storefront.orders.choose_payment(body.method)
        return checkout_view(storefront)

    @app.post("/checkout/place")
    async def place_order(request: Request):
        storefront = current(request)
        storefront.orders.place_order()
        return checkout_view(storefront)

    @app.post("/checkout/retry")
    async def retry_order(request: Request):
        storefront = current(request)
        storefront.orders.retry()
        return checkout_view(storefront)

    @app.post("/checkout/cancel")
    async def cancel_checkout(request: Request):
        storefront = current(request)
        storefront.orders.cancel()
        return checkout_view(storefront)

    @app.post("/checkout/back")
    async def checkout_back(request: Request):
        storefront = current(request)
        storefront.orders.back()
        return checkout_view(storefront)

    # Order endpoints
    @app.get("/orders")
    async def list_orders(request: Request):
        storefront = current(request)
        require_login(storefront)
        orders = storefront.orders.refresh_orders()
        return {"count": len(orders), "orders": [o.model_dump(mode="json") for o in orders]}

    @app.get("/orders/{order_id}/tracking")
    async def track_order(order_id: str, request: Request):
        order, stage = current(request).orders.track(order_id)
        return {"order": order.model_dump(mode="json"), "stage": stage}

    @app.patch("/orders/{order_id}/status")
    async def update_order_status(order_id: str, body: OrderStatusRequest, request: Request):
        order = current(request).orders.set_order_status(order_id, body.status)
        return order.model_dump(mode="json")

    return app


def run_http_server(host: str = "0.0.0.0", port: int = 8000):
    """Run the HTTP server."""
    import uvicorn

    settings = load_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    uvicorn.run(create_app(lambda: StorefrontApp(settings)), host=host, port=port, log_level="info")
