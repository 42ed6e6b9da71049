from decimal import Decimal

import pytest

from conftest import make_product
from storefront_server.cart import CartStore
from storefront_server.errors import ValidationError


def test_add_new_product_creates_line():
    cart = CartStore()
    line = cart.add_item(make_product("1", "Tomato", "25"), 2)

    assert line.quantity == 2
    assert cart.total_line_count() == 1
    assert cart.total_quantity() == 2
    assert cart.notification.message == "Tomato added to cart!"
    assert cart.notification.kind == "success"


def test_adding_same_product_increments_quantity():
    cart = CartStore()
    tomato = make_product("1", "Tomato", "25")
    cart.add_item(tomato)
    cart.add_item(tomato, 3)

    assert cart.total_line_count() == 1
    assert cart.lines[0].quantity == 4
    assert cart.notification.message == "Tomato quantity updated!"


def test_add_rejects_non_positive_quantity():
    cart = CartStore()
    with pytest.raises(ValidationError):
        cart.add_item(make_product(), 0)
    assert cart.lines == []


def test_set_quantity_to_zero_removes_line():
    cart = CartStore()
    cart.add_item(make_product("1"))
    cart.add_item(make_product("2", "Onion", "30"))

    cart.set_quantity("1", 0)

    assert [line.product_id for line in cart.lines] == ["2"]
    assert cart.notification.message == "Item removed from cart"
    assert cart.notification.kind == "info"


def test_set_quantity_for_unknown_product_is_ignored():
    cart = CartStore()
    cart.add_item(make_product("1"))
    cart.set_quantity("99", 5)
    assert cart.total_quantity() == 1


def test_set_quantity_replaces_quantity():
    cart = CartStore()
    cart.add_item(make_product("1"), 2)
    cart.set_quantity("1", 5)
    assert cart.lines[0].quantity == 5


def test_subtotal_is_exact_decimal():
    cart = CartStore()
    cart.add_item(make_product("1", "Paneer", "225"), 2)
    cart.add_item(make_product("2", "Bread", "50.50"))
    assert cart.subtotal() == Decimal("500.50")


def test_lines_is_a_copy():
    cart = CartStore()
    cart.add_item(make_product("1"))
    cart.lines.clear()
    assert cart.total_line_count() == 1


def test_clear_empties_cart_and_notifies_listeners():
    cart = CartStore()
    seen = []
    cart.subscribe(seen.append)
    cart.add_item(make_product("1"))

    cart.clear()

    assert cart.lines == []
    assert cart.subtotal() == Decimal("0")
    assert [n.message for n in seen] == ["Tomato added to cart!", "Cart cleared"]


def test_dismiss_notification():
    cart = CartStore()
    cart.add_item(make_product("1"))
    cart.dismiss_notification()
    assert cart.notification is None


PRICES = {"1": "225", "2": "49.50", "3": "12.25"}


@pytest.mark.parametrize(
    "operations",
    [
        [("add", "1", 2), ("add", "2", 1), ("set", "1", 5)],
        [("add", "1", 1), ("add", "1", 2), ("remove", "1", 0), ("add", "3", 4)],
        [("add", "2", 3), ("set", "2", 0), ("add", "1", 1), ("set", "3", 7)],
        [("add", "3", 2), ("add", "2", 2), ("set", "3", 1), ("remove", "9", 0), ("add", "2", 1)],
        [("add", "1", 1), ("clear", None, 0), ("add", "2", 2)],
    ],
)
def test_subtotal_matches_surviving_lines(operations):
    cart = CartStore()
    expected = {}
    for op, product_id, quantity in operations:
        if op == "add":
            cart.add_item(make_product(product_id, f"Item {product_id}", PRICES[product_id]), quantity)
            expected[product_id] = expected.get(product_id, 0) + quantity
        elif op == "set":
            cart.set_quantity(product_id, quantity)
            if quantity <= 0:
                expected.pop(product_id, None)
            elif product_id in expected:
                expected[product_id] = quantity
        elif op == "remove":
            cart.remove_item(product_id)
            expected.pop(product_id, None)
        else:
            cart.clear()
            expected.clear()

    assert {line.product_id: line.quantity for line in cart.lines} == expected
    assert cart.subtotal() == sum(
        (Decimal(PRICES[pid]) * qty for pid, qty in expected.items()), Decimal("0")
    )
    assert cart.total_quantity() == sum(expected.values())
