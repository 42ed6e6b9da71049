"""Service objects wrapping the storefront REST endpoints."""

import logging
import re
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from .api_client import ApiClient, unwrap_collection, unwrap_record
from .errors import NotFoundError, ServerError, StorefrontError, ValidationError
from .models import (
    Address,
    AddressDraft,
    AddressType,
    AuthResult,
    Customer,
    Order,
    OrderRequest,
    Product,
)

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")
OTP_PATTERN = re.compile(r"^\d{6}$")


def _parse(model, data: Any, what: str):
    """Validate one backend record, turning schema errors into ServerError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        logger.error(f"Malformed {what} in response: {e}")
        raise ServerError(f"Malformed {what} in backend response")


def _parse_many(model, records: list[dict], what: str) -> list:
    return [_parse(model, record, what) for record in records]


class ProductService:
    """Catalogue endpoints."""

    def __init__(self, api: ApiClient) -> None:
        self.api = api

    def all(self) -> list[Product]:
        return _parse_many(Product, self.api.get_collection("/products"), "product")

    def available(self) -> list[Product]:
        return _parse_many(Product, self.api.get_collection("/products/available"), "product")

    def get(self, product_id: str) -> Product:
        return _parse(Product, unwrap_record(self.api.get(f"/products/{product_id}")), "product")

    def by_category(self, category: str) -> list[Product]:
        return _parse_many(
            Product, self.api.get_collection(f"/products/category/{category}"), "product"
        )

    def by_sale_type(self, sale_type: str) -> list[Product]:
        """Products in a sale campaign; an unknown or failing campaign yields []."""
        try:
            return _parse_many(
                Product, self.api.get_collection(f"/products/sale/{sale_type}"), "product"
            )
        except StorefrontError as e:
            logger.debug(f"No products for sale type {sale_type}: {e}")
            return []

    def update_stock(self, product_id: str, quantity: int) -> Product:
        payload = self.api.patch(f"/products/{product_id}/stock", params={"quantity": quantity})
        return _parse(Product, unwrap_record(payload), "product")


class AddressService:
    """Address book endpoints."""

    def __init__(self, api: ApiClient) -> None:
        self.api = api

    def by_customer(self, customer_id: str) -> list[Address]:
        records = self.api.get_collection(f"/addresses/customer/{customer_id}")
        return _parse_many(Address, records, "address")

    def default_for(self, customer_id: str) -> Optional[Address]:
        try:
            payload = self.api.get(f"/addresses/customer/{customer_id}/default")
        except NotFoundError:
            logger.info(f"No default address for customer {customer_id}")
            return None
        return _parse(Address, unwrap_record(payload), "address")

    def get(self, address_id: str) -> Address:
        return _parse(Address, unwrap_record(self.api.get(f"/addresses/{address_id}")), "address")

    def create(self, customer_id: str, draft: AddressDraft) -> Address:
        payload = self.api.post(f"/addresses/customer/{customer_id}", json=draft.to_payload())
        return _parse(Address, unwrap_record(payload), "address")

    def update(self, address_id: str, draft: AddressDraft) -> Address:
        payload = self.api.put(f"/addresses/{address_id}", json=draft.to_payload())
        return _parse(Address, unwrap_record(payload), "address")

    def delete(self, address_id: str) -> None:
        self.api.delete(f"/addresses/{address_id}")

    def set_default(self, address_id: str) -> Optional[Address]:
        payload = self.api.patch(f"/addresses/{address_id}/set-default", json={})
        if payload is None:
            return None
        return _parse(Address, unwrap_record(payload), "address")

    def by_type(self, customer_id: str, address_type: AddressType) -> list[Address]:
        records = self.api.get_collection(
            f"/addresses/customer/{customer_id}/type/{AddressType(address_type).value}"
        )
        return _parse_many(Address, records, "address")

    def exists(self, customer_id: str) -> bool:
        payload = self.api.get(f"/addresses/customer/{customer_id}/exists")
        if isinstance(payload, dict):
            payload = payload.get("data", payload.get("exists"))
        return bool(payload)


class OrderService:
    """Order endpoints."""

    def __init__(self, api: ApiClient) -> None:
        self.api = api

    def create(self, request: OrderRequest) -> Order:
        logger.info(
            f"Creating order for customer {request.customer_id} "
            f"({len(request.order_items)} items, {request.payment_method.value})"
        )
        payload = self.api.post("/orders", json=request.to_payload())
        order = _parse(Order, unwrap_record(payload), "order")
        logger.info(f"Order {order.id} created with status {order.status}")
        return order

    def get(self, order_id: str) -> Order:
        return _parse(Order, unwrap_record(self.api.get(f"/orders/{order_id}")), "order")

    def by_customer(self, customer_id: str) -> list[Order]:
        try:
            records = self.api.get_collection(f"/orders/customer/{customer_id}")
        except NotFoundError:
            return []
        return _parse_many(Order, records, "order")

    def by_status(self, status: str) -> list[Order]:
        try:
            records = self.api.get_collection(f"/orders/status/{status}")
        except NotFoundError:
            return []
        return _parse_many(Order, records, "order")

    def update_status(self, order_id: str, status: str) -> Order:
        payload = self.api.patch(f"/orders/{order_id}/status", params={"status": status})
        return _parse(Order, unwrap_record(payload), "order")


class CustomerService:
    """Customer profile endpoints."""

    def __init__(self, api: ApiClient) -> None:
        self.api = api

    def get(self, customer_id: str) -> Customer:
        return _parse(Customer, unwrap_record(self.api.get(f"/customers/{customer_id}")), "customer")

    def update(self, customer_id: str, changes: dict[str, Any]) -> Customer:
        payload = self.api.put(f"/customers/{customer_id}", json=changes)
        return _parse(Customer, unwrap_record(payload), "customer")


def validate_phone(phone: Optional[str]) -> str:
    """Return the trimmed phone number or raise ValidationError."""
    phone = (phone or "").strip()
    if not PHONE_PATTERN.match(phone):
        raise ValidationError("Please enter a valid 10-digit phone number starting with 6-9")
    return phone


class AuthService:
    """OTP login endpoints."""

    def __init__(self, api: ApiClient) -> None:
        self.api = api

    def send_otp(self, phone: str) -> AuthResult:
        phone = validate_phone(phone)
        logger.info(f"Sending OTP to ******{phone[-4:]}")
        payload = self.api.post("/auth/send-otp", json={"phoneNumber": phone})
        result = _parse(AuthResult, payload or {}, "auth response")
        if not result.message:
            result.message = "OTP sent" if result.success else "Failed to send OTP"
        return result

    def verify_otp(self, phone: str, code: str) -> AuthResult:
        phone = validate_phone(phone)
        code = (code or "").strip()
        if not OTP_PATTERN.match(code):
            raise ValidationError("Please enter a valid 6-digit OTP")
        payload = self.api.post("/auth/verify-otp", json={"phoneNumber": phone, "otp": code})
        result = _parse(AuthResult, payload or {}, "auth response")
        if result.success and result.user is None:
            raise ServerError("Verification succeeded but no user was returned")
        if not result.message:
            result.message = "Login successful" if result.success else "Invalid OTP"
        return result
