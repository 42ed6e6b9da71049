import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from conftest import address_record, login, make_address, make_product
from storefront_server.checkout import (
    AddressRequired,
    AddressSelected,
    CartChangedError,
    CartReview,
    CheckoutStateError,
    Failed,
    Placed,
    SlotSelected,
    SummaryReviewed,
    begin_placing,
    build_slot_menu,
    cancel_checkout,
    mark_placed,
    review_summary,
    select_address,
    select_slot,
    start_checkout,
)
from storefront_server.errors import AuthError, ValidationError
from storefront_server.models import CartLine, PaymentMethod

MONDAY = date(2024, 1, 15)


def cart_lines():
    return [CartLine(product_id="1", title="Paneer", unit_price=Decimal("225"), quantity=2)]


def morning_slot():
    return build_slot_menu(MONDAY)["today"][1]


def test_start_checkout_requires_items():
    with pytest.raises(ValidationError, match="empty"):
        start_checkout([])
    assert isinstance(start_checkout(cart_lines()), CartReview)


def test_select_address_without_addresses_routes_to_creation():
    assert isinstance(select_address(CartReview(), []), AddressRequired)


def test_select_address_prefers_default():
    addresses = [make_address("10"), make_address("11", is_default=True)]
    state = select_address(CartReview(), addresses)
    assert state.address.id == "11"


def test_select_address_falls_back_to_first():
    state = select_address(CartReview(), [make_address("10"), make_address("12")])
    assert state.address.id == "10"


def test_select_unknown_address_fails():
    with pytest.raises(ValidationError):
        select_address(CartReview(), [make_address("10")], "99")


def test_unavailable_slot_is_rejected():
    evening = build_slot_menu(MONDAY)["today"][3]
    state = AddressSelected(address=make_address())
    with pytest.raises(ValidationError, match="not available"):
        select_slot(state, evening)


def test_slot_requires_address():
    with pytest.raises(CheckoutStateError):
        select_slot(CartReview(), morning_slot())


def test_cannot_skip_to_placed():
    with pytest.raises(CheckoutStateError):
        mark_placed(CartReview(), order=None)


def test_placing_requires_reviewed_summary():
    state = SlotSelected(address=make_address(), slot=morning_slot().to_slot())
    with pytest.raises(CheckoutStateError):
        begin_placing(state, "7", cart_lines())


def test_failed_order_can_be_cancelled():
    state = Failed(
        request=begin_placing(_summary(), "7", cart_lines()).request,
        error="boom",
    )
    assert isinstance(cancel_checkout(state), CartReview)


def test_cancel_is_not_allowed_while_placing():
    state = begin_placing(_summary(), "7", cart_lines())
    with pytest.raises(CheckoutStateError):
        cancel_checkout(state)


def test_placing_rejects_lines_that_differ_from_summary():
    changed = cart_lines() + [CartLine(product_id="2", title="Ghee", unit_price=Decimal("300"), quantity=1)]
    with pytest.raises(CartChangedError):
        begin_placing(_summary(), "7", changed)


def _summary():
    slot_state = SlotSelected(address=make_address("10"), slot=morning_slot().to_slot())
    return review_summary(slot_state, cart_lines())


def test_order_payload_is_frozen_from_summary():
    placing = begin_placing(_summary(), "7", cart_lines())
    payload = placing.request.to_payload()

    assert payload == {
        "customerId": "7",
        "addressId": "10",
        "deliverySlot": "Mon Jan 15 2024 - 9:00 AM - 12:00 PM",
        "paymentMethod": "COD",
        "specialInstructions": "",
        "orderItems": [{"productId": "1", "quantity": 2}],
    }


# Orchestrator against a fake backend


@pytest.fixture
def shopper(storefront):
    login(storefront)
    storefront.addresses.addresses = [make_address("10"), make_address("11", is_default=True)]
    storefront.cart.add_item(make_product("1", "Paneer", "225"), 2)
    return storefront


def _reach_summary(storefront, method=PaymentMethod.COD):
    orders = storefront.orders
    orders.begin()
    orders.choose_address()
    orders.choose_slot("2", "today", today=MONDAY)
    orders.review()
    if method != PaymentMethod.COD:
        orders.choose_payment(method)
    return orders.state


def test_summary_has_totals_and_selection(shopper):
    state = _reach_summary(shopper, PaymentMethod.UPI)

    assert isinstance(state, SummaryReviewed)
    assert state.address.id == "11"
    assert state.payment_method == PaymentMethod.UPI
    assert state.totals.total == Decimal("513")
    assert shopper.orders.delivery_slot.label == "Morning"


def test_place_order_success_clears_cart(shopper, backend):
    backend.route("POST", "/orders", json={"id": 501, "status": "PENDING", "totalAmount": 513})
    _reach_summary(shopper, PaymentMethod.UPI)

    state = shopper.orders.place_order()

    assert isinstance(state, Placed)
    assert state.order.id == "501"
    assert state.order.payment_method == "UPI"
    assert state.order.delivery_slot == "Mon Jan 15 2024 - 9:00 AM - 12:00 PM"
    assert shopper.cart.lines == []
    assert shopper.orders.current_order.id == "501"
    assert [o.id for o in shopper.orders.orders] == ["501"]

    body = json.loads(backend.sent("POST", "/orders")[0].content)
    assert body["customerId"] == "7"
    assert body["addressId"] == "11"
    assert body["orderItems"] == [{"productId": "1", "quantity": 2}]
    assert backend.sent("POST", "/orders")[0].headers["Authorization"] == "Bearer tok-123"


def test_failed_order_keeps_cart_and_retries_same_payload(shopper, backend):
    backend.route("POST", "/orders", status=500, json={"message": "Inventory unavailable"})
    _reach_summary(shopper)

    state = shopper.orders.place_order()

    assert isinstance(state, Failed)
    assert state.error == "Inventory unavailable"
    assert shopper.cart.total_quantity() == 2

    # The cart changing after the failure does not alter the retried order
    shopper.cart.add_item(make_product("2", "Milk", "30"))
    backend.route("POST", "/orders", json={"id": 502, "status": "CONFIRMED"})
    state = shopper.orders.retry()

    assert isinstance(state, Placed)
    first, second = backend.sent("POST", "/orders")
    assert json.loads(first.content) == json.loads(second.content)


def test_network_failure_ends_in_failed(shopper, backend):
    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    backend.route("POST", "/orders", handler=unreachable)
    _reach_summary(shopper)

    state = shopper.orders.place_order()

    assert isinstance(state, Failed)
    assert state.error == "Network error. Please check your connection."


def test_unauthorized_order_clears_session(shopper, backend):
    backend.route("POST", "/orders", status=401, json={"message": "Token expired"})
    _reach_summary(shopper)

    state = shopper.orders.place_order()

    assert isinstance(state, Failed)
    assert not shopper.auth_manager.is_authenticated()
    with pytest.raises(AuthError):
        shopper.orders.retry()


def test_place_order_requires_login(storefront):
    storefront.addresses.addresses = [make_address("10")]
    storefront.cart.add_item(make_product("1"))
    orders = storefront.orders
    orders.begin()
    orders.choose_address()
    orders.choose_slot("1", today=MONDAY)
    orders.review()

    with pytest.raises(AuthError):
        orders.place_order()
    assert isinstance(orders.state, SummaryReviewed)


def test_unavailable_slot_leaves_state_unchanged(shopper):
    orders = shopper.orders
    orders.begin()
    orders.choose_address()

    with pytest.raises(ValidationError):
        orders.choose_slot("4", "today", today=MONDAY)
    assert isinstance(orders.state, AddressSelected)


def test_unknown_delivery_day(shopper):
    shopper.orders.begin()
    shopper.orders.choose_address()
    with pytest.raises(ValidationError):
        shopper.orders.choose_slot("1", "yesterday")


def test_cancel_discards_slot_and_payment(shopper):
    _reach_summary(shopper, PaymentMethod.CARD)

    shopper.orders.cancel()

    assert isinstance(shopper.orders.state, CartReview)
    assert shopper.orders.delivery_slot is None
    assert shopper.orders.payment_method is None
    assert shopper.cart.total_quantity() == 2


def test_back_from_summary_returns_to_address(shopper):
    _reach_summary(shopper)
    state = shopper.orders.back()
    assert isinstance(state, AddressSelected)
    assert shopper.orders.delivery_slot is None


def test_checkout_without_addresses(storefront):
    login(storefront)
    storefront.cart.add_item(make_product("1"))
    storefront.orders.begin()
    assert isinstance(storefront.orders.choose_address(), AddressRequired)


def test_retry_only_from_failed(shopper):
    _reach_summary(shopper)
    with pytest.raises(CheckoutStateError):
        shopper.orders.retry()


def test_refresh_orders(shopper, backend):
    backend.route(
        "GET",
        "/orders/customer/7",
        json={"data": [{"id": 9, "status": "DELIVERED", "orderItems": [{"product": {"id": 1, "name": "Paneer"}, "quantity": 2}]}]},
    )

    orders = shopper.orders.refresh_orders()

    assert [o.id for o in orders] == ["9"]
    assert orders[0].items[0].product_id == "1"
    assert orders[0].items[0].product_name == "Paneer"


def test_refresh_orders_not_found_is_empty(shopper):
    assert shopper.orders.refresh_orders() == []


def test_refresh_orders_requires_login(storefront):
    with pytest.raises(AuthError):
        storefront.orders.refresh_orders()


def test_track_order(shopper, backend):
    backend.route("GET", "/orders/501", json={"id": 501, "status": "OUT_FOR_DELIVERY"})
    order, stage = shopper.orders.track("501")
    assert order.id == "501"
    assert stage == "out_for_delivery"


def test_update_order_status_locally(shopper, backend):
    backend.route("POST", "/orders", json={"id": 501})
    _reach_summary(shopper)
    shopper.orders.place_order()

    updated = shopper.orders.update_order_status("501", "DELIVERED")

    assert updated.status == "DELIVERED"
    assert shopper.orders.current_order.status == "DELIVERED"
    assert shopper.orders.update_order_status("nope", "DELIVERED") is None


def test_cart_change_after_review_requires_new_summary(shopper, backend):
    backend.route("POST", "/orders", json={"id": 601})
    _reach_summary(shopper)
    shopper.cart.add_item(make_product("2", "Ghee", "300"))

    with pytest.raises(CartChangedError):
        shopper.orders.place_order()
    assert isinstance(shopper.orders.state, SlotSelected)
    assert backend.sent("POST", "/orders") == []

    summary = shopper.orders.review()
    assert summary.totals.total == Decimal("788")
    shopper.orders.place_order()

    body = json.loads(backend.sent("POST", "/orders")[0].content)
    assert body["orderItems"] == [{"productId": "1", "quantity": 2}, {"productId": "2", "quantity": 1}]


def test_failed_order_cancel_keeps_cart(shopper, backend):
    backend.route("POST", "/orders", status=500, json={"message": "boom"})
    _reach_summary(shopper)
    shopper.orders.place_order()

    assert isinstance(shopper.orders.cancel(), CartReview)
    assert shopper.cart.total_quantity() == 2


def test_logout_discards_checkout_and_orders(shopper, backend):
    backend.route("POST", "/orders", status=500, json={"message": "boom"})
    _reach_summary(shopper)
    shopper.orders.place_order()

    shopper.logout()

    assert isinstance(shopper.orders.state, CartReview)
    assert shopper.orders.orders == []
    assert shopper.orders.current_order is None
    assert shopper.cart.lines == []


def test_retry_refuses_order_of_previous_customer(shopper, backend):
    backend.route("POST", "/orders", status=500, json={"message": "boom"})
    _reach_summary(shopper)
    shopper.orders.place_order()

    # Session dropped without a logout (e.g. expired token), then another customer logs in
    shopper.auth_manager.clear_session()
    login(shopper, customer_id="8", token="tok-other")

    with pytest.raises(AuthError):
        shopper.orders.retry()
    assert isinstance(shopper.orders.state, CartReview)
    assert len(backend.sent("POST", "/orders")) == 1


def test_choose_address_fetches_uncached_address(shopper, backend):
    backend.route("GET", "/addresses/20", json=address_record("20"))
    shopper.orders.begin()

    state = shopper.orders.choose_address("20")

    assert state.address.id == "20"


def test_set_order_status(shopper, backend):
    backend.route("POST", "/orders", json={"id": 501})
    backend.route("PATCH", "/orders/501/status", json={"id": 501, "status": "DELIVERED"})
    _reach_summary(shopper)
    shopper.orders.place_order()

    order = shopper.orders.set_order_status("501", "delivered")

    assert order.status == "DELIVERED"
    assert backend.sent("PATCH", "/orders/501/status")[0].url.params["status"] == "DELIVERED"
    assert shopper.orders.current_order.status == "DELIVERED"


def test_set_order_status_rejects_unknown_status(shopper, backend):
    with pytest.raises(ValidationError):
        shopper.orders.set_order_status("501", "LOST")
    assert backend.sent("PATCH", "/orders/501/status") == []
