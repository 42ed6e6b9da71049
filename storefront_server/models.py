"""Data models for storefront entities."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class WireModel(BaseModel):
    """Base for models that cross the REST boundary (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)


class AddressType(str, Enum):
    HOME = "HOME"
    WORK = "WORK"
    OTHER = "OTHER"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    COD = "COD"
    UPI = "UPI"
    CARD = "CARD"


class Product(WireModel):
    """Represents a product from the catalogue."""

    id: str = Field(description="Product ID")
    name: str = Field(validation_alias=AliasChoices("name", "title"), description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    price: Decimal = Field(default=Decimal("0"), description="Unit price in major currency units")
    category: Optional[str] = Field(None, description="Catalogue category")
    stock_quantity: Optional[int] = Field(None, alias="stockQuantity", description="Units in stock")
    unit: Optional[str] = Field(None, description="Selling unit (kg, pack, ...)")
    image_url: Optional[str] = Field(None, alias="imageUrl", description="Product image path or URL")
    available: bool = Field(default=True, description="Product availability")
    sale_type: Optional[str] = Field(None, alias="saleType", description="Sale campaign type")


class CartLine(BaseModel):
    """One product in the cart."""

    product_id: str
    title: str
    unit_price: Decimal
    quantity: int = Field(ge=1)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Notification(BaseModel):
    """Transient cart notification (toast)."""

    message: str
    kind: Literal["success", "info"] = "success"


class AddressDraft(WireModel):
    """Address fields as entered by the customer, before submission."""

    line1: str = Field(default="", alias="addressLine1")
    line2: Optional[str] = Field(None, alias="addressLine2")
    landmark: Optional[str] = None
    city: str = ""
    state: str = ""
    zip_code: str = Field(default="", alias="zipCode")
    contact_phone: Optional[str] = Field(None, alias="contactPhone")
    type: AddressType = Field(default=AddressType.HOME, alias="addressType")
    is_default: bool = Field(default=False, alias="isDefault")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Address(AddressDraft):
    """A saved delivery address."""

    id: str


class User(WireModel):
    """Logged-in customer as kept in the session."""

    id: str
    phone: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("phone", "phoneNumber"),
        serialization_alias="phone",
    )
    name: Optional[str] = None
    email: Optional[str] = None
    has_addresses: bool = Field(default=False, alias="hasAddresses")
    created_at: Optional[str] = Field(None, alias="createdAt")
    updated_at: Optional[str] = Field(None, alias="updatedAt")


class AuthResult(WireModel):
    """Outcome of an OTP request or verification."""

    success: bool = False
    message: str = ""
    user: Optional[User] = None
    token: str = ""
    has_addresses: bool = Field(default=False, alias="hasAddresses")


class DeliverySlot(BaseModel):
    """Chosen delivery date and time window."""

    model_config = ConfigDict(frozen=True)

    date: date
    time_range: str
    label: str

    def display(self) -> str:
        """Render the slot the way the order backend expects it."""
        return f"{self.date.strftime('%a %b %d %Y')} - {self.time_range}"


class SlotOption(BaseModel):
    """One entry of the delivery slot menu."""

    model_config = ConfigDict(frozen=True)

    id: str
    date: date
    time_range: str
    label: str
    available: bool = True

    def to_slot(self) -> DeliverySlot:
        return DeliverySlot(date=self.date, time_range=self.time_range, label=self.label)


class OrderTotals(BaseModel):
    """Derived order totals, in whole currency units except delivery."""

    model_config = ConfigDict(frozen=True)

    subtotal: Decimal
    delivery_charge: Decimal
    tax: Decimal
    total: Decimal


class OrderItemRequest(WireModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True, frozen=True)

    product_id: str = Field(alias="productId")
    quantity: int


class OrderRequest(WireModel):
    """Order payload submitted at checkout."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True, frozen=True)

    customer_id: str = Field(alias="customerId")
    address_id: str = Field(alias="addressId")
    delivery_slot: str = Field(alias="deliverySlot")
    payment_method: PaymentMethod = Field(alias="paymentMethod")
    special_instructions: str = Field(default="", alias="specialInstructions")
    order_items: tuple[OrderItemRequest, ...] = Field(alias="orderItems")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class OrderItem(WireModel):
    """Represents an item in an order."""

    product_id: Optional[str] = Field(None, alias="productId")
    product_name: Optional[str] = Field(None, alias="productName")
    quantity: int = 1
    price: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_product(cls, data: Any) -> Any:
        # The backend nests the product on some endpoints: {"product": {"id": 3, "name": ...}}
        if isinstance(data, dict) and isinstance(data.get("product"), dict):
            product = data["product"]
            data = dict(data)
            data.setdefault("productId", product.get("id"))
            data.setdefault("productName", product.get("name"))
        return data


class Order(WireModel):
    """Represents an order."""

    id: str = Field(description="Order ID")
    customer_id: Optional[str] = Field(None, alias="customerId")
    address_id: Optional[str] = Field(None, alias="addressId")
    items: list[OrderItem] = Field(
        default_factory=list,
        validation_alias=AliasChoices("orderItems", "items"),
        description="Order items",
    )
    delivery_slot: Optional[str] = Field(None, alias="deliverySlot")
    payment_method: Optional[str] = Field(None, alias="paymentMethod")
    status: str = Field(default=OrderStatus.PENDING.value, description="Order status")
    total_amount: Decimal = Field(default=Decimal("0"), alias="totalAmount")
    created_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("createdAt", "orderDate")
    )
    delivery_address_line1: Optional[str] = Field(None, alias="deliveryAddressLine1")
    delivery_city: Optional[str] = Field(None, alias="deliveryCity")
    delivery_zip_code: Optional[str] = Field(None, alias="deliveryZipCode")


class Customer(WireModel):
    """Customer profile as stored by the backend."""

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = Field(None, validation_alias=AliasChoices("phone", "phoneNumber"))
