"""In-memory shopping cart."""

import logging
from decimal import Decimal
from typing import Callable, Optional

from .errors import ValidationError
from .models import CartLine, Notification, Product

logger = logging.getLogger(__name__)

NotificationListener = Callable[[Notification], None]


class CartStore:
    """Session-scoped cart; lines are unique by product id and never persisted."""

    def __init__(self) -> None:
        self._lines: list[CartLine] = []
        self.notification: Optional[Notification] = None
        self._listeners: list[NotificationListener] = []

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines)

    def subscribe(self, listener: NotificationListener) -> None:
        self._listeners.append(listener)

    def dismiss_notification(self) -> None:
        self.notification = None

    def _notify(self, message: str, kind: str = "success") -> None:
        self.notification = Notification(message=message, kind=kind)
        for listener in self._listeners:
            listener(self.notification)

    def _find(self, product_id: str) -> Optional[int]:
        for index, line in enumerate(self._lines):
            if line.product_id == product_id:
                return index
        return None

    def add_item(self, product: Product, quantity: int = 1) -> CartLine:
        """Add a product, or bump its quantity if it is already in the cart."""
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        index = self._find(product.id)
        if index is not None:
            current = self._lines[index]
            line = current.model_copy(update={"quantity": current.quantity + quantity})
            self._lines[index] = line
            self._notify(f"{product.name} quantity updated!")
        else:
            line = CartLine(
                product_id=product.id,
                title=product.name,
                unit_price=product.price,
                quantity=quantity,
            )
            self._lines.append(line)
            self._notify(f"{product.name} added to cart!")
        logger.info(f"Cart: {line.product_id} x{line.quantity}")
        return line

    def set_quantity(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove_item(product_id)
            return
        index = self._find(product_id)
        if index is None:
            logger.debug(f"Ignoring quantity change for {product_id}: not in cart")
            return
        self._lines[index] = self._lines[index].model_copy(update={"quantity": quantity})

    def remove_item(self, product_id: str) -> None:
        self._lines = [line for line in self._lines if line.product_id != product_id]
        self._notify("Item removed from cart", "info")

    def clear(self) -> None:
        self._lines = []
        self._notify("Cart cleared", "info")

    def total_line_count(self) -> int:
        return len(self._lines)

    def total_quantity(self) -> int:
        return sum(line.quantity for line in self._lines)

    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self._lines), Decimal("0"))
