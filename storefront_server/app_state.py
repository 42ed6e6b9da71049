"""Application state: every store and service, created together and closed together."""

import logging
import re
from typing import Optional

import httpx

from .addresses import AddressStore
from .api_client import ApiClient
from .auth import AuthManager, SessionStore
from .cart import CartStore
from .checkout import OrderOrchestrator, PricingRules
from .config import Settings
from .errors import AuthError, StorefrontError, ValidationError
from .models import AuthResult, User
from .services import AddressService, AuthService, CustomerService, OrderService, ProductService

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class StorefrontApp:
    """Owns the session, HTTP client, services and stores for one process."""

    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.settings = settings
        self.session_store = SessionStore(settings.session_file)
        self.auth_manager = AuthManager(self.session_store)
        self.api = ApiClient(
            self.auth_manager,
            base_url=settings.api_url,
            timeout=settings.timeout,
            transport=transport,
        )

        self.products = ProductService(self.api)
        self.address_service = AddressService(self.api)
        self.order_service = OrderService(self.api)
        self.customers = CustomerService(self.api)
        self.auth_service = AuthService(self.api)

        self.cart = CartStore()
        self.addresses = AddressStore(self.address_service, self.auth_manager)
        self.orders = OrderOrchestrator(
            self.cart,
            self.addresses,
            self.order_service,
            self.auth_manager,
            PricingRules(
                delivery_threshold=settings.delivery_threshold,
                delivery_fee=settings.delivery_fee,
                tax_rate=settings.tax_rate,
            ),
        )

    def start(self) -> None:
        """Restore the persisted session into the address book."""
        if not self.auth_manager.is_authenticated():
            return
        try:
            self.addresses.bootstrap()
        except StorefrontError as e:
            # The app still starts; the address book can be reloaded later
            logger.error(f"Could not load addresses on startup: {e.message}")

    def send_otp(self, phone: str) -> AuthResult:
        return self.auth_service.send_otp(phone)

    def verify_otp(self, phone: str, code: str) -> AuthResult:
        """
        Verify an OTP and, on success, log in and load the customer's addresses.

        A failed verification leaves the session and the address book untouched.
        """
        result = self.auth_service.verify_otp(phone, code)
        if not result.success:
            logger.warning("OTP verification rejected")
            return result

        previous_customer = self.auth_manager.customer_id
        user = self.auth_manager.login(result, phone=phone.strip())
        if previous_customer and previous_customer != user.id:
            self._forget_customer_state()
        self.addresses.set_customer_id(user.id)
        return result

    def update_profile(self, name: str, email: Optional[str] = None) -> User:
        """Save name and email on the backend, then in the local session."""
        customer_id = self.auth_manager.customer_id
        if not customer_id:
            raise AuthError("Please login to edit your profile.")
        name = (name or "").strip()
        email = (email or "").strip() or None
        if not name:
            raise ValidationError("Please enter your name")
        if email and not EMAIL_PATTERN.match(email):
            raise ValidationError("Please enter a valid email address")

        customer = self.customers.update(customer_id, {"name": name, "email": email})
        logger.info(f"Profile updated for customer {customer_id}")
        return self.auth_manager.update_user(
            name=customer.name or name,
            email=customer.email if customer.email is not None else email,
        )

    def _forget_customer_state(self) -> None:
        self.orders.reset()
        self.cart.clear()

    def logout(self) -> None:
        self.auth_manager.clear_session()
        self.addresses.set_customer_id(None)
        self._forget_customer_state()
        logger.info("Logged out")

    def close(self) -> None:
        self.api.close()
