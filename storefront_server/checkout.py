"""Checkout state machine, order totals and the order orchestrator.

The checkout flow is an explicit tagged union of states::

    CartReview -> AddressSelected -> SlotSelected -> SummaryReviewed
        -> Placing -> Placed | Failed

Transition functions are pure: they take a state plus inputs and return
the next state, raising ``CheckoutStateError`` for transitions that are not
allowed from the given state. ``OrderOrchestrator`` drives them against the
live cart, address book and order service.
"""

import logging
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .addresses import AddressStore, pick_default
from .auth import AuthManager
from .cart import CartStore
from .errors import AuthError, StorefrontError, ValidationError
from .models import (
    Address,
    CartLine,
    DeliverySlot,
    Order,
    OrderItemRequest,
    OrderRequest,
    OrderStatus,
    OrderTotals,
    PaymentMethod,
    SlotOption,
)
from .services import OrderService

logger = logging.getLogger(__name__)

# (id, time range, label, available)
TIME_WINDOWS = (
    ("1", "6:00 AM - 9:00 AM", "Early Morning", True),
    ("2", "9:00 AM - 12:00 PM", "Morning", True),
    ("3", "12:00 PM - 3:00 PM", "Afternoon", True),
    ("4", "3:00 PM - 6:00 PM", "Evening", False),
    ("5", "6:00 PM - 9:00 PM", "Night", True),
)

DELIVERY_DAYS = ("today", "tomorrow")

TRACKING_STAGES = {
    OrderStatus.PENDING.value: "confirmed",
    OrderStatus.CONFIRMED.value: "confirmed",
    OrderStatus.PROCESSING.value: "preparing",
    OrderStatus.OUT_FOR_DELIVERY.value: "out_for_delivery",
    OrderStatus.DELIVERED.value: "delivered",
    OrderStatus.CANCELLED.value: "cancelled",
}


class CheckoutStateError(ValidationError):
    """A transition was requested from a state that does not allow it."""


class CartChangedError(ValidationError):
    """The cart no longer matches the reviewed order summary."""


class PricingRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    delivery_threshold: Decimal = Decimal("500")
    delivery_fee: Decimal = Decimal("40")
    tax_rate: Decimal = Decimal("0.05")


def _whole_units(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def compute_order_totals(
    lines: list[CartLine], pricing: Optional[PricingRules] = None
) -> OrderTotals:
    """
    Compute order totals for a set of cart lines.

    Delivery is free only when the exact subtotal is strictly above the
    threshold. Subtotal and tax are rounded half-up to whole units before
    they are summed.
    """
    pricing = pricing or PricingRules()
    exact_subtotal = sum((line.unit_price * line.quantity for line in lines), Decimal("0"))
    delivery_charge = Decimal("0") if exact_subtotal > pricing.delivery_threshold else pricing.delivery_fee
    tax = _whole_units(exact_subtotal * pricing.tax_rate)
    subtotal = _whole_units(exact_subtotal)
    return OrderTotals(
        subtotal=subtotal,
        delivery_charge=delivery_charge,
        tax=tax,
        total=subtotal + delivery_charge + tax,
    )


def build_slot_menu(today: Optional[date] = None) -> dict[str, list[SlotOption]]:
    """The fixed menu of delivery windows for today and tomorrow."""
    today = today or date.today()
    menu = {}
    for offset, day in enumerate(DELIVERY_DAYS):
        slot_date = today + timedelta(days=offset)
        menu[day] = [
            SlotOption(id=window_id, date=slot_date, time_range=time_range, label=label, available=available)
            for window_id, time_range, label, available in TIME_WINDOWS
        ]
    return menu


def tracking_stage(status: str) -> str:
    return TRACKING_STAGES.get((status or "").upper(), "confirmed")


class _State(BaseModel):
    model_config = ConfigDict(frozen=True)


class CartReview(_State):
    stage: Literal["cart_review"] = "cart_review"


class AddressRequired(_State):
    stage: Literal["address_required"] = "address_required"


class AddressSelected(_State):
    stage: Literal["address_selected"] = "address_selected"
    address: Address


class SlotSelected(_State):
    stage: Literal["slot_selected"] = "slot_selected"
    address: Address
    slot: DeliverySlot


class SummaryReviewed(_State):
    stage: Literal["summary_reviewed"] = "summary_reviewed"
    address: Address
    slot: DeliverySlot
    payment_method: PaymentMethod = PaymentMethod.COD
    # The cart lines the totals were computed from; placing requires the cart to still match
    lines: tuple[CartLine, ...]
    totals: OrderTotals


class Placing(_State):
    stage: Literal["placing"] = "placing"
    request: OrderRequest


class Placed(_State):
    stage: Literal["placed"] = "placed"
    request: OrderRequest
    order: Order


class Failed(_State):
    stage: Literal["failed"] = "failed"
    request: OrderRequest
    error: str


CheckoutState = Annotated[
    Union[
        CartReview,
        AddressRequired,
        AddressSelected,
        SlotSelected,
        SummaryReviewed,
        Placing,
        Placed,
        Failed,
    ],
    Field(discriminator="stage"),
]

PRE_PLACING = (CartReview, AddressRequired, AddressSelected, SlotSelected, SummaryReviewed)


def _expect(state, allowed: tuple, action: str) -> None:
    if not isinstance(state, allowed):
        raise CheckoutStateError(f"Cannot {action} during {state.stage.replace('_', ' ')}")


def start_checkout(lines: list[CartLine]) -> CartReview:
    if not lines:
        raise ValidationError("Your cart is empty")
    return CartReview()


def select_address(
    state, addresses: list[Address], address_id: Optional[str] = None
) -> Union[AddressSelected, AddressRequired]:
    """Select a delivery address; without saved addresses the flow goes to address creation."""
    _expect(state, PRE_PLACING, "select an address")
    if not addresses:
        return AddressRequired()
    if address_id is None:
        return AddressSelected(address=pick_default(addresses))
    for address in addresses:
        if address.id == address_id:
            return AddressSelected(address=address)
    raise ValidationError(f"Unknown address {address_id}")


def select_slot(state, option: SlotOption) -> SlotSelected:
    _expect(state, (AddressSelected, SlotSelected, SummaryReviewed), "select a delivery slot")
    if not option.available:
        raise ValidationError(f"{option.label} ({option.time_range}) is not available")
    return SlotSelected(address=state.address, slot=option.to_slot())


def review_summary(
    state,
    lines: list[CartLine],
    pricing: Optional[PricingRules] = None,
    payment_method: PaymentMethod = PaymentMethod.COD,
) -> SummaryReviewed:
    _expect(state, (SlotSelected, SummaryReviewed), "review the order summary")
    if not lines:
        raise ValidationError("Your cart is empty")
    return SummaryReviewed(
        address=state.address,
        slot=state.slot,
        payment_method=PaymentMethod(payment_method),
        lines=tuple(lines),
        totals=compute_order_totals(lines, pricing),
    )


def select_payment(
    state, method: PaymentMethod, lines: list[CartLine], pricing: Optional[PricingRules] = None
) -> SummaryReviewed:
    _expect(state, (SummaryReviewed,), "select a payment method")
    return review_summary(state, lines, pricing, PaymentMethod(method))


def begin_placing(state, customer_id: Optional[str], lines: list[CartLine]) -> Placing:
    """Freeze the order payload; from Failed the identical payload is resubmitted."""
    if isinstance(state, Failed):
        return Placing(request=state.request)
    _expect(state, (SummaryReviewed,), "place the order")
    if not customer_id:
        raise AuthError("Please login with your mobile number to place an order.")
    if not lines:
        raise ValidationError("Your cart is empty")
    if list(state.lines) != list(lines):
        raise CartChangedError("Your cart changed after the summary was reviewed; please review it again")
    request = OrderRequest(
        customer_id=customer_id,
        address_id=state.address.id,
        delivery_slot=state.slot.display(),
        payment_method=state.payment_method,
        order_items=tuple(
            OrderItemRequest(product_id=line.product_id, quantity=line.quantity) for line in lines
        ),
    )
    return Placing(request=request)


def mark_placed(state, order: Order) -> Placed:
    _expect(state, (Placing,), "complete the order")
    return Placed(request=state.request, order=order)


def mark_failed(state, error: str) -> Failed:
    _expect(state, (Placing,), "fail the order")
    return Failed(request=state.request, error=error)


def cancel_checkout(state) -> CartReview:
    """Abandon checkout, including a failed order; slot and payment selections are dropped."""
    _expect(state, PRE_PLACING + (Failed,), "cancel checkout")
    return CartReview()


def go_back(state):
    """Step back one screen, dropping the slot and payment selection."""
    _expect(state, PRE_PLACING, "go back")
    if isinstance(state, (SlotSelected, SummaryReviewed)):
        return AddressSelected(address=state.address)
    return CartReview()


class OrderOrchestrator:
    """Drives checkout against the live stores and keeps finalized orders."""

    def __init__(
        self,
        cart: CartStore,
        address_store: AddressStore,
        order_service: OrderService,
        auth_manager: AuthManager,
        pricing: Optional[PricingRules] = None,
    ) -> None:
        self.cart = cart
        self.address_store = address_store
        self.order_service = order_service
        self.auth_manager = auth_manager
        self.pricing = pricing or PricingRules()
        self.state = CartReview()
        self.orders: list[Order] = []
        self.current_order: Optional[Order] = None

    @property
    def delivery_slot(self) -> Optional[DeliverySlot]:
        return getattr(self.state, "slot", None)

    @property
    def payment_method(self) -> Optional[PaymentMethod]:
        return getattr(self.state, "payment_method", None)

    def calculate_totals(self, lines: Optional[list[CartLine]] = None) -> OrderTotals:
        return compute_order_totals(self.cart.lines if lines is None else lines, self.pricing)

    def begin(self) -> CartReview:
        # A finished or failed checkout is replaced by a fresh one
        self.state = start_checkout(self.cart.lines)
        return self.state

    def choose_address(self, address_id: Optional[str] = None):
        addresses = self.address_store.addresses
        if address_id is not None and addresses and all(a.id != address_id for a in addresses):
            # Not cached yet (e.g. added elsewhere); ask the backend
            addresses = addresses + [self.address_store.get_address(address_id)]
        self.state = select_address(self.state, addresses, address_id)
        return self.state

    def slot_menu(self, today: Optional[date] = None) -> dict[str, list[SlotOption]]:
        return build_slot_menu(today)

    def choose_slot(self, option_id: str, day: str = "today", today: Optional[date] = None) -> SlotSelected:
        menu = self.slot_menu(today)
        if day not in menu:
            raise ValidationError(f"Unknown delivery day {day!r}; choose one of {', '.join(DELIVERY_DAYS)}")
        for option in menu[day]:
            if option.id == option_id:
                self.state = select_slot(self.state, option)
                return self.state
        raise ValidationError(f"Unknown delivery slot {option_id!r}")

    def review(self, payment_method: Optional[PaymentMethod] = None) -> SummaryReviewed:
        method = payment_method or self.payment_method or PaymentMethod.COD
        self.state = review_summary(self.state, self.cart.lines, self.pricing, method)
        return self.state

    def choose_payment(self, method: PaymentMethod) -> SummaryReviewed:
        self.state = select_payment(self.state, method, self.cart.lines, self.pricing)
        return self.state

    def cancel(self) -> CartReview:
        self.state = cancel_checkout(self.state)
        return self.state

    def back(self):
        self.state = go_back(self.state)
        return self.state

    def place_order(self):
        """Submit the reviewed order; ends in Placed or Failed."""
        if not self.auth_manager.is_authenticated():
            raise AuthError("Please login with your mobile number to place an order.")
        try:
            self.state = begin_placing(self.state, self.auth_manager.customer_id, self.cart.lines)
        except CartChangedError:
            # Back to the slot step so the summary is reviewed against the current cart
            self.state = SlotSelected(address=self.state.address, slot=self.state.slot)
            raise
        return self._submit()

    def retry(self):
        """Resubmit the payload of a failed order."""
        _expect(self.state, (Failed,), "retry the order")
        if not self.auth_manager.is_authenticated():
            raise AuthError("Please login with your mobile number to place an order.")
        if self.state.request.customer_id != self.auth_manager.customer_id:
            logger.warning("Discarding failed order of another customer")
            self.state = CartReview()
            raise AuthError("This order belongs to another account; please checkout again.")
        self.state = begin_placing(self.state, self.auth_manager.customer_id, self.cart.lines)
        return self._submit()

    def reset(self) -> None:
        """Forget checkout progress and order records (on logout or customer switch)."""
        self.state = CartReview()
        self.orders = []
        self.current_order = None

    def _submit(self):
        request = self.state.request
        try:
            order = self.order_service.create(request)
        except StorefrontError as e:
            logger.error(f"Order placement failed: {e.message}")
            self.state = mark_failed(self.state, e.message)
            return self.state

        # The backend does not always echo the slot and payment method back
        order = order.model_copy(
            update={
                "delivery_slot": order.delivery_slot or request.delivery_slot,
                "payment_method": order.payment_method or request.payment_method.value,
            }
        )
        self.cart.clear()
        self._record(order)
        self.state = mark_placed(self.state, order)
        logger.info(f"Order {order.id} placed")
        return self.state

    def _record(self, order: Order) -> None:
        self.orders = [order] + [o for o in self.orders if o.id != order.id]
        self.current_order = order

    def get_order(self, order_id: str) -> Optional[Order]:
        for order in self.orders:
            if order.id == order_id:
                return order
        return None

    def update_order_status(self, order_id: str, status: str) -> Optional[Order]:
        """Update the locally recorded status of an order."""
        order = self.get_order(order_id)
        if order is None:
            return None
        updated = order.model_copy(update={"status": status})
        self.orders = [updated if o.id == order_id else o for o in self.orders]
        if self.current_order is not None and self.current_order.id == order_id:
            self.current_order = updated
        return updated

    def set_order_status(self, order_id: str, status: str) -> Order:
        """Change an order's status on the backend and mirror it locally."""
        try:
            status = OrderStatus(str(status).upper()).value
        except ValueError:
            choices = ", ".join(s.value for s in OrderStatus)
            raise ValidationError(f"Unknown order status {status!r}; choose one of {choices}")
        order = self.order_service.update_status(order_id, status)
        self.update_order_status(order_id, order.status)
        return order

    def refresh_orders(self) -> list[Order]:
        """Reload the order history of the logged-in customer."""
        customer_id = self.auth_manager.customer_id
        if not customer_id:
            raise AuthError("Please login to view your orders.")
        self.orders = self.order_service.by_customer(customer_id)
        return list(self.orders)

    def track(self, order_id: str) -> tuple[Order, str]:
        order = self.order_service.get(order_id)
        return order, tracking_stage(order.status)
