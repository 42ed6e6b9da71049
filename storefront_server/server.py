"""MCP server exposing the storefront to agents over stdio."""

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from .addresses import format_address, type_display
from .app_state import StorefrontApp
from .checkout import (
    AddressRequired,
    AddressSelected,
    CartReview,
    Failed,
    Placed,
    SlotSelected,
    SummaryReviewed,
)
from .config import load_settings
from .errors import StorefrontError, ValidationError
from .models import AddressDraft, OrderTotals, PaymentMethod

logger = logging.getLogger("storefront-mcp-server")

NOT_LOGGED_IN = "Error: Not logged in. Use storefront_send_otp and storefront_verify_otp first."

_ADDRESS_PROPERTIES = {
    "line1": {"type": "string", "description": "House/flat number and street"},
    "line2": {"type": "string", "description": "Second address line (optional)"},
    "landmark": {"type": "string", "description": "Nearby landmark (optional)"},
    "city": {"type": "string"},
    "state": {"type": "string"},
    "zip_code": {"type": "string", "description": "6-digit PIN code"},
    "contact_phone": {"type": "string", "description": "10-digit mobile number (optional)"},
    "type": {"type": "string", "enum": ["HOME", "WORK", "OTHER"], "default": "HOME"},
    "is_default": {"type": "boolean", "default": False},
}


def tool_definitions() -> list[Tool]:
    """Tools offered by the server."""
    empty = {"type": "object", "properties": {}}
    return [
        Tool(
            name="storefront_send_otp",
            description="Send a login OTP to a 10-digit mobile number",
            inputSchema={
                "type": "object",
                "properties": {"phone": {"type": "string", "description": "10-digit mobile number"}},
                "required": ["phone"],
            },
        ),
        Tool(
            name="storefront_verify_otp",
            description="Verify the OTP and log in; loads saved addresses",
            inputSchema={
                "type": "object",
                "properties": {
                    "phone": {"type": "string", "description": "Mobile number the OTP was sent to"},
                    "otp": {"type": "string", "description": "6-digit code"},
                },
                "required": ["phone", "otp"],
            },
        ),
        Tool(name="storefront_logout", description="Logout and clear the saved session", inputSchema=empty),
        Tool(name="storefront_auth_status", description="Show who is logged in", inputSchema=empty),
        Tool(
            name="storefront_list_products",
            description="List products, optionally by category, sale campaign or availability",
            inputSchema={
                "type": "object",
                "properties": {
                    "category": {"type": "string", "description": "Category name"},
                    "sale_type": {"type": "string", "description": "Sale campaign type"},
                    "available_only": {"type": "boolean", "default": False},
                },
            },
        ),
        Tool(
            name="storefront_get_product",
            description="Get one product by ID",
            inputSchema={
                "type": "object",
                "properties": {"product_id": {"type": "string"}},
                "required": ["product_id"],
            },
        ),
        Tool(
            name="storefront_add_to_cart",
            description="Add a product to the cart (increments quantity if already present)",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "string", "description": "Product ID to add"},
                    "quantity": {"type": "integer", "description": "Quantity to add (default: 1)", "default": 1},
                },
                "required": ["product_id"],
            },
        ),
        Tool(
            name="storefront_update_cart_quantity",
            description="Set the quantity of a cart line; 0 removes it",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "string"},
                    "quantity": {"type": "integer", "description": "New quantity"},
                },
                "required": ["product_id", "quantity"],
            },
        ),
        Tool(
            name="storefront_remove_from_cart",
            description="Remove a product from the cart",
            inputSchema={
                "type": "object",
                "properties": {"product_id": {"type": "string"}},
                "required": ["product_id"],
            },
        ),
        Tool(name="storefront_clear_cart", description="Empty the cart", inputSchema=empty),
        Tool(name="storefront_get_cart", description="Cart contents with delivery and totals", inputSchema=empty),
        Tool(name="storefront_list_addresses", description="Reload and list saved addresses", inputSchema=empty),
        Tool(
            name="storefront_add_address",
            description="Save a new delivery address",
            inputSchema={
                "type": "object",
                "properties": _ADDRESS_PROPERTIES,
                "required": ["line1", "city", "state", "zip_code"],
            },
        ),
        Tool(
            name="storefront_update_address",
            description="Edit a saved address",
            inputSchema={
                "type": "object",
                "properties": {"address_id": {"type": "string"}, **_ADDRESS_PROPERTIES},
                "required": ["address_id", "line1", "city", "state", "zip_code"],
            },
        ),
        Tool(
            name="storefront_delete_address",
            description="Delete a saved address",
            inputSchema={
                "type": "object",
                "properties": {"address_id": {"type": "string"}},
                "required": ["address_id"],
            },
        ),
        Tool(
            name="storefront_set_default_address",
            description="Make an address the default",
            inputSchema={
                "type": "object",
                "properties": {"address_id": {"type": "string"}},
                "required": ["address_id"],
            },
        ),
        Tool(name="storefront_checkout_begin", description="Start checkout with the current cart", inputSchema=empty),
        Tool(
            name="storefront_checkout_select_address",
            description="Choose the delivery address (default address if none given)",
            inputSchema={"type": "object", "properties": {"address_id": {"type": "string"}}},
        ),
        Tool(name="storefront_checkout_slots", description="List delivery slots for today and tomorrow", inputSchema=empty),
        Tool(
            name="storefront_checkout_select_slot",
            description="Choose a delivery slot",
            inputSchema={
                "type": "object",
                "properties": {
                    "day": {"type": "string", "enum": ["today", "tomorrow"], "default": "today"},
                    "slot_id": {"type": "string", "description": "Slot ID from storefront_checkout_slots"},
                },
                "required": ["slot_id"],
            },
        ),
        Tool(name="storefront_checkout_summary", description="Review the order summary and totals", inputSchema=empty),
        Tool(
            name="storefront_checkout_select_payment",
            description="Choose the payment method",
            inputSchema={
                "type": "object",
                "properties": {"method": {"type": "string", "enum": ["COD", "UPI", "CARD"]}},
                "required": ["method"],
            },
        ),
        Tool(name="storefront_place_order", description="Place the reviewed order", inputSchema=empty),
        Tool(name="storefront_retry_order", description="Retry a failed order with the same details", inputSchema=empty),
        Tool(name="storefront_checkout_cancel", description="Cancel checkout and return to the cart", inputSchema=empty),
        Tool(name="storefront_checkout_back", description="Go back one checkout step", inputSchema=empty),
        Tool(name="storefront_get_orders", description="Order history of the logged-in customer", inputSchema=empty),
        Tool(
            name="storefront_track_order",
            description="Current tracking stage of an order",
            inputSchema={
                "type": "object",
                "properties": {"order_id": {"type": "string"}},
                "required": ["order_id"],
            },
        ),
        Tool(
            name="storefront_update_order_status",
            description="Change the status of an order (store staff)",
            inputSchema={
                "type": "object",
                "properties": {
                    "order_id": {"type": "string"},
                    "status": {
                        "type": "string",
                        "enum": ["PENDING", "CONFIRMED", "PROCESSING", "OUT_FOR_DELIVERY", "DELIVERED", "CANCELLED"],
                    },
                },
                "required": ["order_id", "status"],
            },
        ),
        Tool(
            name="storefront_update_profile",
            description="Update the logged-in customer's name and email",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "email": {"type": "string", "description": "Email address (optional)"},
                },
                "required": ["name"],
            },
        ),
    ]


def format_totals(totals: OrderTotals, threshold: Decimal, exact_subtotal: Decimal) -> list[str]:
    lines = [f"Subtotal: ₹{totals.subtotal}"]
    if totals.delivery_charge == 0:
        lines.append("Delivery: FREE")
    else:
        lines.append(f"Delivery: ₹{totals.delivery_charge}")
        # Measured on the unrounded subtotal
        if exact_subtotal < threshold:
            lines.append(f"Add ₹{threshold - exact_subtotal} more for FREE delivery")
    lines.append(f"Tax: ₹{totals.tax}")
    lines.append(f"Total: ₹{totals.total}")
    return lines


def format_cart(storefront: StorefrontApp) -> str:
    cart = storefront.cart
    if cart.total_line_count() == 0:
        return "Your cart is empty"
    result_lines = [f"Shopping Cart ({cart.total_line_count()} products, {cart.total_quantity()} items):\n"]
    for line in cart.lines:
        result_lines.append(
            f"  - {line.title} (ID {line.product_id}): {line.quantity} x ₹{line.unit_price} = ₹{line.line_total}"
        )
    result_lines.append("")
    result_lines.extend(
        format_totals(
            storefront.orders.calculate_totals(),
            storefront.settings.delivery_threshold,
            cart.subtotal(),
        )
    )
    return "\n".join(result_lines)


def describe_state(storefront: StorefrontApp) -> str:
    """Human-readable description of the checkout state."""
    state = storefront.orders.state
    if isinstance(state, CartReview):
        return f"Checkout: reviewing cart ({storefront.cart.total_quantity()} items)"
    if isinstance(state, AddressRequired):
        return "Checkout: no saved address. Add one with storefront_add_address, then select it."
    if isinstance(state, AddressSelected):
        return f"Checkout: delivering to {format_address(state.address)}\nNext: choose a delivery slot"
    if isinstance(state, SlotSelected):
        return (
            f"Checkout: delivering to {format_address(state.address)}\n"
            f"Slot: {state.slot.label}, {state.slot.display()}\nNext: review the summary"
        )
    if isinstance(state, SummaryReviewed):
        lines = [
            "Order Summary",
            f"Address: {format_address(state.address)}",
            f"Slot: {state.slot.label}, {state.slot.display()}",
            f"Payment: {state.payment_method.value}",
            "",
        ]
        reviewed_subtotal = sum((line.line_total for line in state.lines), Decimal("0"))
        lines.extend(format_totals(state.totals, storefront.settings.delivery_threshold, reviewed_subtotal))
        if list(state.lines) != storefront.cart.lines:
            lines.append("\n⚠️ Your cart changed since this summary; run storefront_checkout_summary again.")
        return "\n".join(lines)
    if isinstance(state, Placed):
        return (
            f"✅ Order {state.order.id} placed (status: {state.order.status})\n"
            f"Total: ₹{state.order.total_amount}\nDelivery: {state.request.delivery_slot}"
        )
    if isinstance(state, Failed):
        return f"❌ Order failed: {state.error}\nUse storefront_retry_order to try again or storefront_checkout_cancel."
    return f"Checkout: {state.stage}"


def _draft_from(arguments: dict) -> AddressDraft:
    return AddressDraft(
        line1=arguments.get("line1", ""),
        line2=arguments.get("line2"),
        landmark=arguments.get("landmark"),
        city=arguments.get("city", ""),
        state=arguments.get("state", ""),
        zip_code=str(arguments.get("zip_code", "")),
        contact_phone=arguments.get("contact_phone") or None,
        type=arguments.get("type", "HOME"),
        is_default=bool(arguments.get("is_default", False)),
    )


def _format_addresses(storefront: StorefrontApp) -> str:
    addresses = storefront.addresses.addresses
    if not addresses:
        return "No saved addresses"
    default = storefront.addresses.default_address
    result_lines = [f"Saved addresses ({len(addresses)}):"]
    for address in addresses:
        marker = " [default]" if default is not None and address.id == default.id else ""
        result_lines.append(f"  - {address.id} ({type_display(address.type)}){marker}: {format_address(address)}")
    return "\n".join(result_lines)


def handle_tool(storefront: StorefrontApp, name: str, arguments: dict) -> str:
    """Run one tool and return its text result. Storefront errors propagate."""
    auth = storefront.auth_manager

    if name == "storefront_send_otp":
        result = storefront.send_otp(arguments.get("phone", ""))
        if result.success:
            return f"OTP sent to {arguments['phone']}"
        return f"❌ {result.message}"

    elif name == "storefront_verify_otp":
        result = storefront.verify_otp(arguments.get("phone", ""), arguments.get("otp", ""))
        if not result.success:
            return f"❌ {result.message}"
        if result.has_addresses:
            follow_up = "Saved addresses loaded."
        else:
            follow_up = "No saved addresses yet; add one with storefront_add_address."
        return f"✅ Logged in as customer {auth.customer_id}\n{follow_up}"

    elif name == "storefront_logout":
        storefront.logout()
        return "✅ Successfully logged out"

    elif name == "storefront_auth_status":
        if not auth.is_authenticated():
            return "Not logged in"
        return f"Logged in as customer {auth.customer_id} ({auth.user.phone or 'no phone'})"

    elif name == "storefront_update_profile":
        if not auth.is_authenticated():
            return NOT_LOGGED_IN
        user = storefront.update_profile(arguments.get("name", ""), arguments.get("email"))
        return f"✅ Profile updated: {user.name}" + (f" <{user.email}>" if user.email else "")

    elif name == "storefront_list_products":
        if arguments.get("category"):
            products = storefront.products.by_category(arguments["category"])
        elif arguments.get("sale_type"):
            products = storefront.products.by_sale_type(arguments["sale_type"])
        elif arguments.get("available_only"):
            products = storefront.products.available()
        else:
            products = storefront.products.all()
        if not products:
            return "No products found"
        result_lines = [f"Found {len(products)} product(s):\n"]
        for i, product in enumerate(products, 1):
            stock = "" if product.available else " (out of stock)"
            unit = f" / {product.unit}" if product.unit else ""
            result_lines.append(f"{i}. {product.name} - ₹{product.price}{unit}{stock}")
            result_lines.append(f"   ID: {product.id}")
        return "\n".join(result_lines)

    elif name == "storefront_get_product":
        return storefront.products.get(arguments["product_id"]).model_dump_json(indent=2)

    elif name == "storefront_add_to_cart":
        product = storefront.products.get(arguments["product_id"])
        if not product.available:
            raise ValidationError(f"{product.name} is out of stock")
        storefront.cart.add_item(product, int(arguments.get("quantity", 1)))
        return f"✅ {storefront.cart.notification.message}\n\n{format_cart(storefront)}"

    elif name == "storefront_update_cart_quantity":
        storefront.cart.set_quantity(arguments["product_id"], int(arguments["quantity"]))
        return format_cart(storefront)

    elif name == "storefront_remove_from_cart":
        storefront.cart.remove_item(arguments["product_id"])
        return f"✅ Removed product {arguments['product_id']} from cart\n\n{format_cart(storefront)}"

    elif name == "storefront_clear_cart":
        storefront.cart.clear()
        return "✅ Cart cleared"

    elif name == "storefront_get_cart":
        return format_cart(storefront)

    elif name == "storefront_list_addresses":
        if not auth.is_authenticated():
            return NOT_LOGGED_IN
        storefront.addresses.load()
        return _format_addresses(storefront)

    elif name == "storefront_add_address":
        if not auth.is_authenticated():
            return NOT_LOGGED_IN
        created = storefront.addresses.add(_draft_from(arguments))
        return f"✅ Address {created.id} added\n\n{_format_addresses(storefront)}"

    elif name == "storefront_update_address":
        if not auth.is_authenticated():
            return NOT_LOGGED_IN
        storefront.addresses.update(arguments["address_id"], _draft_from(arguments))
        return f"✅ Address {arguments['address_id']} updated\n\n{_format_addresses(storefront)}"

    elif name == "storefront_delete_address":
        if not auth.is_authenticated():
            return NOT_LOGGED_IN
        storefront.addresses.remove(arguments["address_id"])
        return f"✅ Address {arguments['address_id']} deleted\n\n{_format_addresses(storefront)}"

    elif name == "storefront_set_default_address":
        if not auth.is_authenticated():
            return NOT_LOGGED_IN
        storefront.addresses.set_default(arguments["address_id"])
        return _format_addresses(storefront)

    elif name == "storefront_checkout_begin":
        if not auth.is_authenticated():
            return NOT_LOGGED_IN
        storefront.orders.begin()
        storefront.orders.choose_address()
        return describe_state(storefront)

    elif name == "storefront_checkout_select_address":
        storefront.orders.choose_address(arguments.get("address_id"))
        return describe_state(storefront)

    elif name == "storefront_checkout_slots":
        result_lines = []
        for day, options in storefront.orders.slot_menu().items():
            result_lines.append(f"{day.capitalize()} ({options[0].date.strftime('%a %b %d %Y')}):")
            for option in options:
                status = "" if option.available else " - Not Available"
                result_lines.append(f"  [{option.id}] {option.label}: {option.time_range}{status}")
        return "\n".join(result_lines)

    elif name == "storefront_checkout_select_slot":
        storefront.orders.choose_slot(str(arguments["slot_id"]), arguments.get("day", "today"))
        return describe_state(storefront)

    elif name == "storefront_checkout_summary":
        storefront.orders.review()
        return describe_state(storefront)

    elif name == "storefront_checkout_select_payment":
        try:
            method = PaymentMethod(str(arguments["method"]).upper())
        except ValueError:
            raise ValidationError(f"Unknown payment method {arguments['method']!r}")
        storefront.orders.choose_payment(method)
        return describe_state(storefront)

    elif name == "storefront_place_order":
        storefront.orders.place_order()
        return describe_state(storefront)

    elif name == "storefront_retry_order":
        storefront.orders.retry()
        return describe_state(storefront)

    elif name == "storefront_checkout_cancel":
        storefront.orders.cancel()
        return "Checkout cancelled; your cart is unchanged"

    elif name == "storefront_checkout_back":
        storefront.orders.back()
        return describe_state(storefront)

    elif name == "storefront_get_orders":
        if not auth.is_authenticated():
            return NOT_LOGGED_IN
        orders = storefront.orders.refresh_orders()
        if not orders:
            return "No orders yet"
        result_lines = [f"Orders ({len(orders)}):"]
        for order in orders:
            placed = order.created_at.strftime("%Y-%m-%d %H:%M") if order.created_at else "unknown date"
            result_lines.append(f"  - {order.id}: {order.status}, ₹{order.total_amount}, {placed}")
        return "\n".join(result_lines)

    elif name == "storefront_track_order":
        order, stage = storefront.orders.track(arguments["order_id"])
        return f"Order {order.id}: {stage.replace('_', ' ')} (status {order.status})"

    elif name == "storefront_update_order_status":
        order = storefront.orders.set_order_status(arguments["order_id"], arguments["status"])
        return f"✅ Order {order.id} is now {order.status}"

    return f"Unknown tool: {name}"


def build_server(storefront: StorefrontApp) -> Server:
    """Create an MCP server bound to one StorefrontApp."""
    app = Server("storefront-mcp-server")

    @app.list_resources()
    async def list_resources() -> list[Resource]:
        """List available resources."""
        resources = [
            Resource(
                uri=AnyUrl("storefront://cart"),
                name="Shopping Cart",
                mimeType="application/json",
                description="Current shopping cart contents and totals",
            )
        ]
        if storefront.auth_manager.is_authenticated():
            resources.append(
                Resource(
                    uri=AnyUrl("storefront://orders"),
                    name="Orders",
                    mimeType="application/json",
                    description="Orders placed in this session",
                )
            )
        return resources

    @app.read_resource()
    async def read_resource(uri: AnyUrl) -> str:
        """Read a resource by URI."""
        uri_str = str(uri)

        if uri_str == "storefront://cart":
            return json.dumps(
                {
                    "lines": [line.model_dump(mode="json") for line in storefront.cart.lines],
                    "totals": storefront.orders.calculate_totals().model_dump(mode="json"),
                },
                indent=2,
            )

        elif uri_str == "storefront://orders":
            if not storefront.auth_manager.is_authenticated():
                return "Error: Not authenticated. Please login first."
            return json.dumps([order.model_dump(mode="json") for order in storefront.orders.orders], indent=2)

        raise ValueError(f"Unknown resource: {uri}")

    @app.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return tool_definitions()

    @app.call_tool()
    async def call_tool(name: str, arguments: Any) -> list[TextContent]:
        """Handle tool calls."""
        try:
            text = handle_tool(storefront, name, arguments or {})
        except StorefrontError as e:
            logger.warning(f"Tool {name} failed: {e.message}")
            text = f"Error: {e.message}"
        except Exception as e:
            logger.error(f"Error executing tool {name}: {e}", exc_info=True)
            text = f"Error: {str(e)}"
        return [TextContent(type="text", text=text)]

    return app


async def main() -> None:
    """Main entry point."""
    settings = load_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    storefront = StorefrontApp(settings)
    storefront.start()
    if storefront.auth_manager.is_authenticated():
        logger.info(f"Resumed session for customer {storefront.auth_manager.customer_id}")
    else:
        logger.info("No saved session; log in with storefront_send_otp / storefront_verify_otp")

    app = build_server(storefront)
    logger.info(f"Starting Storefront MCP Server against {settings.api_url}...")

    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        storefront.close()


if __name__ == "__main__":
    asyncio.run(main())
