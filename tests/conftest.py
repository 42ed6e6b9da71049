from decimal import Decimal
from typing import Callable, Optional

import httpx
import pytest

from storefront_server.app_state import StorefrontApp
from storefront_server.config import Settings
from storefront_server.models import Address, AuthResult, Product, User

API_URL = "http://backend.test/api"


class FakeBackend:
    """Routes httpx requests to canned responses and records what was sent."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def route(
        self,
        method: str,
        path: str,
        json=None,
        status: int = 200,
        handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ) -> None:
        if handler is None:
            def handler(request, json=json, status=status):
                return httpx.Response(status, json=json)
        self.routes[(method, path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api")
        self.requests.append(request)
        handler = self.routes.get((request.method, path))
        if handler is None:
            return httpx.Response(404, json={"message": f"No route for {request.method} {path}"})
        return handler(request)

    def sent(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and r.url.path.removeprefix("/api") == path
        ]


def product_record(product_id="1", name="Tomato", price=25, **extra) -> dict:
    record = {"id": product_id, "name": name, "price": price, "available": True}
    record.update(extra)
    return record


def address_record(address_id="10", is_default=False, **extra) -> dict:
    record = {
        "id": address_id,
        "addressLine1": f"{address_id} MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "zipCode": "560001",
        "addressType": "HOME",
        "isDefault": is_default,
    }
    record.update(extra)
    return record


def make_product(product_id="1", name="Tomato", price="25") -> Product:
    return Product(id=product_id, name=name, price=Decimal(price))


def make_address(address_id="10", is_default=False) -> Address:
    return Address.model_validate(address_record(address_id, is_default))


def login(storefront: StorefrontApp, customer_id="7", token="tok-123") -> None:
    """Log in without going through OTP, and point the address book at the customer."""
    storefront.auth_manager.login(
        AuthResult(success=True, user=User(id=customer_id, phone="9876543210"), token=token)
    )
    storefront.addresses.customer_id = customer_id


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def session_file(tmp_path) -> str:
    return str(tmp_path / "session.json")


@pytest.fixture
def settings(session_file) -> Settings:
    return Settings(api_url=API_URL, session_file=session_file)


@pytest.fixture
def storefront(settings, backend):
    app = StorefrontApp(settings, transport=httpx.MockTransport(backend))
    yield app
    app.close()
