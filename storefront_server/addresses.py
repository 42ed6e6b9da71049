"""Customer address book, cached locally and resynchronized after every change."""

import logging
import re
from typing import Optional

from .auth import AuthManager
from .errors import NotFoundError, StorefrontError, ValidationError
from .models import Address, AddressDraft, AddressType
from .services import AddressService

logger = logging.getLogger(__name__)

ZIP_PATTERN = re.compile(r"^\d{6}$")
CONTACT_PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")

TYPE_DISPLAY_NAMES = {
    AddressType.HOME: "Home",
    AddressType.WORK: "Work",
    AddressType.OTHER: "Other",
}


def validate_address(draft: AddressDraft) -> None:
    """Raise ValidationError if the draft cannot be submitted."""
    if not draft.line1.strip():
        raise ValidationError("Please enter address line 1 (House/Flat number & Street)")
    if not draft.city.strip():
        raise ValidationError("Please enter city")
    if not draft.state.strip():
        raise ValidationError("Please enter state")
    if not ZIP_PATTERN.match(draft.zip_code.strip()):
        raise ValidationError("Please enter a valid 6-digit PIN code")
    if draft.contact_phone and not CONTACT_PHONE_PATTERN.match(draft.contact_phone):
        raise ValidationError("Please enter a valid 10-digit mobile number")


def format_address(address: Optional[AddressDraft]) -> str:
    """Render an address on one line."""
    if address is None:
        return ""
    parts = [
        address.line1,
        address.line2,
        address.landmark,
        address.city,
        address.state,
        f"PIN: {address.zip_code}" if address.zip_code else None,
    ]
    return ", ".join(part for part in parts if part)


def type_display(address_type: AddressType) -> str:
    return TYPE_DISPLAY_NAMES.get(AddressType(address_type), str(address_type))


def pick_default(addresses: list[Address]) -> Optional[Address]:
    """First address flagged default, else the first address, else None."""
    for address in addresses:
        if address.is_default:
            return address
    return addresses[0] if addresses else None


class AddressStore:
    """Holds the customer's saved addresses and the default selection."""

    def __init__(self, service: AddressService, auth_manager: AuthManager) -> None:
        self.service = service
        self.auth_manager = auth_manager
        self.customer_id: Optional[str] = None
        self.addresses: list[Address] = []
        self.default_address: Optional[Address] = None

    def bootstrap(self) -> list[Address]:
        """Pick up the customer from the persisted session and load their addresses."""
        customer_id = self.auth_manager.customer_id
        if not customer_id:
            logger.info("No persisted customer; address book stays empty")
            return []
        self.customer_id = customer_id
        return self.load(customer_id)

    def set_customer_id(self, customer_id: Optional[str]) -> list[Address]:
        """Switch to another customer (after login) and load their addresses."""
        logger.info(f"Address book now tracks customer {customer_id}")
        self.customer_id = customer_id
        if not customer_id:
            self.reset()
            return []
        return self.load(customer_id)

    def reset(self) -> None:
        self.addresses = []
        self.default_address = None

    def _require_customer(self, customer_id: Optional[str]) -> str:
        customer_id = customer_id or self.customer_id
        if not customer_id:
            raise ValidationError("Customer ID is required to manage addresses")
        return customer_id

    def load(self, customer_id: Optional[str] = None) -> list[Address]:
        """Replace the local cache with the backend's address list."""
        customer_id = customer_id or self.customer_id
        if not customer_id:
            logger.warning("No customer ID available for fetching addresses")
            return []

        try:
            addresses = self.service.by_customer(customer_id)
        except NotFoundError:
            logger.info(f"No addresses found for customer {customer_id}")
            addresses = []

        self.addresses = addresses
        self.default_address = pick_default(addresses)
        return list(addresses)

    def add(self, draft: AddressDraft, customer_id: Optional[str] = None) -> Address:
        validate_address(draft)
        customer_id = self._require_customer(customer_id)
        created = self.service.create(customer_id, draft)
        logger.info(f"Address {created.id} added for customer {customer_id}")
        self.load(customer_id)
        return created

    def update(self, address_id: str, draft: AddressDraft) -> Address:
        validate_address(draft)
        updated = self.service.update(address_id, draft)
        self.load()
        return updated

    def remove(self, address_id: str) -> None:
        self.service.delete(address_id)
        logger.info(f"Address {address_id} deleted")
        self.load()

    def set_default(self, address_id: str) -> Optional[Address]:
        self.service.set_default(address_id)
        self.load()
        return self.default_address

    def fetch_default(self) -> Optional[Address]:
        if not self.customer_id:
            return None
        address = self.service.default_for(self.customer_id)
        if address is not None:
            self.default_address = address
        return address

    def get_address(self, address_id: str) -> Address:
        for address in self.addresses:
            if address.id == address_id:
                return address
        return self.service.get(address_id)

    def by_type(self, address_type: AddressType) -> list[Address]:
        if not self.customer_id:
            return []
        try:
            return self.service.by_type(self.customer_id, address_type)
        except NotFoundError:
            return []

    def has_addresses(self) -> bool:
        if not self.customer_id:
            return False
        try:
            return self.service.exists(self.customer_id)
        except StorefrontError as e:
            logger.error(f"Error checking addresses: {e}")
            return False
