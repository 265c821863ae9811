"""MCP Server for the Click & Carry storefront."""

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any

from mcp.server import Server
from mcp.types import Resource, Tool, TextContent
from pydantic import AnyUrl

from .config import Settings, configure_logging
from .models import CartItem, Notice, Product
from .storefront import Storefront

logger = logging.getLogger("clickcarry-mcp-server")

NOT_AUTHENTICATED = (
    "Error: Not authenticated. Please login first or configure "
    "CLICKCARRY_EMAIL and CLICKCARRY_PASSWORD in the MCP settings."
)

PRODUCT_FIELDS = {
    "name": {"type": "string", "description": "Product name"},
    "description": {"type": "string", "description": "Product description"},
    "price": {"type": "string", "description": "Price, a positive number (e.g. \"1999.99\")"},
    "image_url": {"type": "string", "description": "Main image URL"},
    "image_url_2": {"type": "string", "description": "Additional image URL (optional)"},
    "image_url_3": {"type": "string", "description": "Additional image URL (optional)"},
    "image_url_4": {"type": "string", "description": "Additional image URL (optional)"},
    "image_url_5": {"type": "string", "description": "Additional image URL (optional)"},
}


def format_price(value: Decimal) -> str:
    return f"₱{value:.2f}"


def format_notices(notices: list[Notice]) -> str:
    lines = ["Notices:"]
    for notice in notices:
        lines.append(f"- [{notice.level}] {notice.message}")
    return "\n".join(lines)


def format_products(products: list[Product], show_variants: bool = True) -> str:
    if not products:
        return "No products found"

    result_lines = [f"Found {len(products)} product(s):\n"]
    for i, product in enumerate(products, 1):
        result_lines.append(f"\n{i}. {product.name}")
        result_lines.append(f"   ID: {product.id}")
        result_lines.append(f"   Price: {format_price(product.price)}")
        if product.description:
            result_lines.append(f"   Description: {product.description}")
        result_lines.append(f"   Images: {', '.join(product.images())}")
        if show_variants:
            for group in product.variants:
                result_lines.append(f"   {group.name} ({group.id}): {', '.join(group.options)}")
    return "\n".join(result_lines)


def _format_item(i: int, item: CartItem) -> list[str]:
    name = item.product.name if item.product else f"Product {item.product_id}"
    lines = [f"\n{i}. {name}"]
    lines.append(f"   Item ID: {item.id}")
    lines.append(f"   Product ID: {item.product_id}")
    lines.append(f"   Quantity: {item.quantity}")
    lines.append(f"   Price: {format_price(item.unit_price)}")
    lines.append(f"   Subtotal: {format_price(item.subtotal)}")
    if item.selected_variants:
        options = ", ".join(f"{key}: {value}" for key, value in item.selected_variants.items())
        lines.append(f"   Options: {options}")
    return lines


def format_cart(items: list[CartItem], total_items: int, total_price: Decimal) -> str:
    if not items:
        return "Your cart is empty"

    result_lines = [f"Shopping Cart ({len(items)} item(s)):"]
    for i, item in enumerate(items, 1):
        result_lines.extend(_format_item(i, item))
    result_lines.append(f"\nTotal items: {total_items}")
    result_lines.append(f"Total: {format_price(total_price)}")
    return "\n".join(result_lines)


def _product_values(arguments: dict[str, Any]) -> dict[str, Any]:
    return {key: arguments[key] for key in PRODUCT_FIELDS if key in arguments}


def create_server(storefront: Storefront) -> Server:
    """
    Create the MCP server for a storefront.

    Args:
        storefront: Storefront every handler works on

    Returns:
        Configured MCP server
    """
    app = Server("clickcarry-mcp-server")

    def reply(text: str) -> list[TextContent]:
        # every reply ends with the notices the call produced
        notices = storefront.drain_notices()
        if notices:
            text = f"{text}\n\n{format_notices(notices)}"
        return [TextContent(type="text", text=text)]

    @app.list_resources()
    async def list_resources() -> list[Resource]:
        """List available resources."""
        resources = [
            Resource(
                uri=AnyUrl("clickcarry://products"),
                name="Products",
                mimeType="application/json",
                description="Product catalog with variant options",
            )
        ]

        if storefront.auth_state.is_authenticated:
            resources.append(
                Resource(
                    uri=AnyUrl("clickcarry://cart"),
                    name="Shopping Cart",
                    mimeType="application/json",
                    description="Current shopping cart contents",
                )
            )

        return resources

    @app.read_resource()
    async def read_resource(uri: AnyUrl) -> str:
        """Read a resource by URI."""
        uri_str = str(uri)

        if uri_str == "clickcarry://products":
            products = await storefront.products()
            result = [product.model_dump(mode="json") for product in products]
            return json.dumps(result, indent=2)

        elif uri_str == "clickcarry://cart":
            if not storefront.auth_state.is_authenticated:
                return "Error: Not authenticated. Please login first."

            return storefront.cart.cart().model_dump_json(indent=2)

        raise ValueError(f"Unknown resource: {uri}")

    @app.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return [
            Tool(
                name="clickcarry_login",
                description="Sign in to the store. Uses credentials from environment (CLICKCARRY_EMAIL, CLICKCARRY_PASSWORD) if not provided.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "email": {
                            "type": "string",
                            "description": "User email address (optional if CLICKCARRY_EMAIL is configured)",
                        },
                        "password": {
                            "type": "string",
                            "description": "User password (optional if CLICKCARRY_PASSWORD is configured)",
                        },
                    },
                },
            ),
            Tool(
                name="clickcarry_signup",
                description="Create a new shopper account",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Full name (at least 2 characters)"},
                        "email": {"type": "string", "description": "Email address"},
                        "password": {"type": "string", "description": "Password (at least 6 characters)"},
                        "gender": {
                            "type": "string",
                            "enum": ["male", "female"],
                            "description": "Gender (default: male)",
                            "default": "male",
                        },
                    },
                    "required": ["name", "email", "password"],
                },
            ),
            Tool(
                name="clickcarry_logout",
                description="Sign out and clear the session",
                inputSchema={"type": "object", "properties": {}},
            ),
            Tool(
                name="clickcarry_admin_login",
                description="Sign in with an admin account. Non-admin accounts are signed out again.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "email": {"type": "string", "description": "Admin email address"},
                        "password": {"type": "string", "description": "Admin password"},
                    },
                    "required": ["email", "password"],
                },
            ),
            Tool(
                name="clickcarry_list_products",
                description="List the product catalog with the RAM, storage and processor options of each product",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "reload": {
                            "type": "boolean",
                            "description": "Fetch the catalog again (default: false)",
                            "default": False,
                        },
                    },
                },
            ),
            Tool(
                name="clickcarry_add_to_cart",
                description="Add a product to the shopping cart. An option must be selected for every variant group (ram, storage, processor).",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "product_id": {
                            "type": "string",
                            "description": "Product ID (from clickcarry_list_products)",
                        },
                        "quantity": {
                            "type": "integer",
                            "description": "Quantity to add (default: 1)",
                            "default": 1,
                        },
                        "selected_variants": {
                            "type": "object",
                            "description": "Variant group ID to option, e.g. {\"ram\": \"16GB\", \"storage\": \"512GB SSD\", \"processor\": \"Intel i7\"}",
                            "additionalProperties": {"type": "string"},
                        },
                    },
                    "required": ["product_id", "selected_variants"],
                },
            ),
            Tool(
                name="clickcarry_remove_from_cart",
                description="Remove an item from the shopping cart",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "item_id": {
                            "type": "string",
                            "description": "Cart item ID (from clickcarry_get_cart)",
                        },
                    },
                    "required": ["item_id"],
                },
            ),
            Tool(
                name="clickcarry_update_cart_quantity",
                description="Update the quantity of a cart item. A quantity below 1 removes the item.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "item_id": {
                            "type": "string",
                            "description": "Cart item ID to update",
                        },
                        "quantity": {
                            "type": "integer",
                            "description": "New quantity to set",
                        },
                    },
                    "required": ["item_id", "quantity"],
                },
            ),
            Tool(
                name="clickcarry_get_cart",
                description="Get current shopping cart contents with all items and total",
                inputSchema={"type": "object", "properties": {}},
            ),
            Tool(
                name="clickcarry_checkout",
                description="Place the order: clears the cart and returns the confirmation",
                inputSchema={"type": "object", "properties": {}},
            ),
            Tool(
                name="clickcarry_admin_list_products",
                description="List all products, newest first (admin only)",
                inputSchema={"type": "object", "properties": {}},
            ),
            Tool(
                name="clickcarry_admin_save_product",
                description="Add a product, or update an existing one when product_id is given (admin only)",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "product_id": {
                            "type": "string",
                            "description": "Product ID to update (omit to add a new product)",
                        },
                        **PRODUCT_FIELDS,
                    },
                    "required": ["name", "description", "price", "image_url"],
                },
            ),
            Tool(
                name="clickcarry_admin_delete_product",
                description="Delete a product (admin only). Nothing is deleted unless confirm is true.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "product_id": {
                            "type": "string",
                            "description": "Product ID to delete",
                        },
                        "confirm": {
                            "type": "boolean",
                            "description": "Confirm the deletion (default: false)",
                            "default": False,
                        },
                    },
                    "required": ["product_id"],
                },
            ),
        ]

    @app.call_tool()
    async def call_tool(name: str, arguments: Any) -> list[TextContent]:
        """Handle tool calls."""
        arguments = arguments or {}
        try:
            if name == "clickcarry_login":
                email = arguments.get("email")
                password = arguments.get("password")

                # fall back to environment credentials
                if not email or not password:
                    credentials = storefront.credentials
                    if credentials is None:
                        return reply(
                            "Error: No credentials provided and CLICKCARRY_EMAIL/CLICKCARRY_PASSWORD not configured."
                        )
                    email = email or credentials.email
                    password = password or credentials.password

                if await storefront.sign_in(email, password):
                    return reply(f"Successfully logged in as {email}")
                return reply("Login failed. Please check your credentials.")

            elif name == "clickcarry_signup":
                success = await storefront.accounts.sign_up(
                    arguments["name"],
                    arguments["email"],
                    arguments["password"],
                    arguments.get("gender", "male"),
                )
                if success:
                    return reply(f"Account created for {arguments['email']}")
                return reply("Signup failed")

            elif name == "clickcarry_logout":
                await storefront.sign_out()
                return reply("Logged out")

            elif name == "clickcarry_admin_login":
                if await storefront.admin_sign_in(arguments["email"], arguments["password"]):
                    return reply(f"Successfully logged in as admin {arguments['email']}")
                return reply("Admin login failed")

            elif name == "clickcarry_list_products":
                products = await storefront.products(reload=arguments.get("reload", False))
                return reply(format_products(products))

            elif name == "clickcarry_add_to_cart":
                if not await storefront.ensure_authenticated():
                    return reply(NOT_AUTHENTICATED)

                product_id = arguments["product_id"]
                quantity = arguments.get("quantity", 1)
                logger.info(f"Adding to cart: {product_id}")
                success = await storefront.add_to_cart(
                    product_id, quantity, arguments.get("selected_variants")
                )
                if success:
                    cart = storefront.cart
                    return reply(
                        f"Added {quantity} x {product_id} to cart\n"
                        f"Cart now has {cart.total_items} item(s), total {format_price(cart.total_price)}"
                    )
                return reply(f"Failed to add product {product_id} to cart")

            elif name == "clickcarry_remove_from_cart":
                if not await storefront.ensure_authenticated():
                    return reply(NOT_AUTHENTICATED)

                item_id = arguments["item_id"]
                if await storefront.cart.remove_from_cart(item_id):
                    return reply(f"Removed item {item_id} from cart")
                return reply(f"Failed to remove item {item_id}")

            elif name == "clickcarry_update_cart_quantity":
                if not await storefront.ensure_authenticated():
                    return reply(NOT_AUTHENTICATED)

                item_id = arguments["item_id"]
                quantity = arguments["quantity"]
                if await storefront.cart.update_quantity(item_id, quantity):
                    if quantity < 1:
                        return reply(f"Removed item {item_id} from cart")
                    return reply(f"Updated item {item_id} to quantity {quantity}")
                return reply(f"Failed to update item {item_id}")

            elif name == "clickcarry_get_cart":
                if not await storefront.ensure_authenticated():
                    return reply(NOT_AUTHENTICATED)

                cart = storefront.cart
                if not await cart.refresh():
                    return reply("Could not load the cart")
                return reply(format_cart(cart.items, cart.total_items, cart.total_price))

            elif name == "clickcarry_checkout":
                if not await storefront.ensure_authenticated():
                    return reply(NOT_AUTHENTICATED)

                result = await storefront.cart.checkout()
                lines = ["Thank you for your order!", result.message]
                if not result.cleared:
                    lines.append("The cart could not be cleared.")
                return reply("\n".join(lines))

            elif name == "clickcarry_admin_list_products":
                await storefront.ensure_authenticated()
                decision = await storefront.admin.enter()
                if not decision.allowed:
                    return reply("Error: Admin access required")

                products = await storefront.admin.load_products()
                return reply(format_products(products, show_variants=False))

            elif name == "clickcarry_admin_save_product":
                await storefront.ensure_authenticated()
                product_id = arguments.get("product_id")
                success = await storefront.save_product(_product_values(arguments), product_id)
                if success:
                    return reply(f"Saved product {arguments.get('name', '')}".rstrip())
                return reply("Product was not saved")

            elif name == "clickcarry_admin_delete_product":
                await storefront.ensure_authenticated()
                product_id = arguments["product_id"]
                outcome = await storefront.delete_product(product_id, arguments.get("confirm", False))
                if outcome.pending_confirmation:
                    return reply(f"{outcome.prompt} Call again with confirm=true to delete {product_id}.")
                if outcome.deleted:
                    return reply(f"Deleted product {product_id}")
                return reply(f"Product {product_id} was not deleted")

            else:
                return reply(f"Unknown tool: {name}")

        except Exception as e:
            logger.error(f"Error executing tool {name}: {e}", exc_info=True)
            return reply(f"Error: {str(e)}")

    return app


async def main() -> None:
    """Main entry point for the MCP server."""
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    storefront = Storefront(settings)
    if storefront.credentials:
        logger.info(f"Credentials loaded from environment for: {storefront.credentials.email}")
    else:
        logger.warning("No credentials found in environment variables (CLICKCARRY_EMAIL, CLICKCARRY_PASSWORD)")
        logger.warning("Cart operations will require manual login via clickcarry_login tool")

    await storefront.start()
    app = create_server(storefront)

    logger.info("Starting Click & Carry MCP Server...")

    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        await storefront.close()


if __name__ == "__main__":
    asyncio.run(main())
