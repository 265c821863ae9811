"""HTTP server for the Click & Carry storefront with hot reloading support."""

import logging
from contextlib import asynccontextmanager
from typing import Any, NoReturn, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from .admin import UNAUTHORIZED_MESSAGE
from .config import Settings, configure_logging
from .models import Notice
from .storefront import Storefront

logger = logging.getLogger("clickcarry-http-server")


# Request/Response Models
class LoginRequest(BaseModel):
    email: str
    password: str


class SignUpRequest(BaseModel):
    name: str
    email: str
    password: str
    gender: str = "male"


class ActionResponse(BaseModel):
    success: bool
    message: str
    notices: list[Notice] = Field(default_factory=list)


class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = 1
    selected_variants: dict[str, str] = Field(default_factory=dict)


class RemoveFromCartRequest(BaseModel):
    item_id: str


class UpdateCartRequest(BaseModel):
    item_id: str
    quantity: int


class ProductRequest(BaseModel):
    name: str = ""
    description: str = ""
    price: str = ""
    image_url: str = ""
    image_url_2: Optional[str] = None
    image_url_3: Optional[str] = None
    image_url_4: Optional[str] = None
    image_url_5: Optional[str] = None


def _respond(storefront: Storefront, success: bool, message: str) -> ActionResponse:
    return ActionResponse(success=success, message=message, notices=storefront.drain_notices())


def _deny(storefront: Storefront, status_code: int, detail: str) -> NoReturn:
    # notices of a refused request are not carried into the next reply
    storefront.drain_notices()
    raise HTTPException(status_code=status_code, detail=detail)


def _fail(storefront: Storefront, action: str, error: Exception) -> NoReturn:
    logger.error(f"{action} error: {error}", exc_info=True)
    _deny(storefront, 500, str(error))


async def _require_user(storefront: Storefront) -> None:
    if not await storefront.ensure_authenticated():
        _deny(storefront, 401, "Not authenticated")


async def _require_admin(storefront: Storefront) -> None:
    await _require_user(storefront)
    decision = await storefront.admin.enter()
    if not decision.allowed:
        _deny(storefront, 403, UNAUTHORIZED_MESSAGE)


def create_app(storefront: Optional[Storefront] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        storefront: Storefront to serve. When omitted, one is built from the
            environment at startup and closed at shutdown.

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown."""
        if storefront is not None:
            yield
            return

        # Startup
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        logger.info("Starting Click & Carry HTTP Server...")
        app.state.storefront = Storefront(settings)
        if app.state.storefront.credentials:
            logger.info(f"Credentials loaded from environment for: {settings.email}")
        else:
            logger.warning("No credentials found in environment variables (CLICKCARRY_EMAIL, CLICKCARRY_PASSWORD)")
        await app.state.storefront.start()

        yield

        # Shutdown
        logger.info("Shutting down Click & Carry HTTP Server...")
        await app.state.storefront.close()

    app = FastAPI(
        title="Click & Carry MCP Server",
        description="HTTP API for the Click & Carry storefront",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.storefront = storefront

    def get_storefront(request: Request) -> Storefront:
        return request.app.state.storefront

    # Root endpoint
    @app.get("/")
    async def root(request: Request):
        """Root endpoint with API information."""
        current = get_storefront(request)
        return {
            "name": "Click & Carry MCP Server",
            "version": "0.1.0",
            "description": "HTTP API for the Click & Carry storefront",
            "mcp_compatible": True,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": {
                    "login": "POST /auth/login",
                    "signup": "POST /auth/signup",
                    "logout": "POST /auth/logout",
                    "admin_login": "POST /auth/admin-login",
                    "status": "GET /auth/status",
                },
                "products": {
                    "list": "GET /products",
                },
                "cart": {
                    "get": "GET /cart",
                    "add": "POST /cart/add",
                    "remove": "POST /cart/remove",
                    "update": "POST /cart/update",
                    "checkout": "POST /cart/checkout",
                },
                "admin": {
                    "list": "GET /admin/products",
                    "create": "POST /admin/products",
                    "update": "PUT /admin/products/{product_id}",
                    "delete": "DELETE /admin/products/{product_id}?confirm=true",
                },
            },
            "authenticated": current.auth_state.is_authenticated if current else False,
        }

    # Health check endpoint
    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        current = get_storefront(request)
        return {
            "status": "healthy",
            "authenticated": current.auth_state.is_authenticated if current else False,
        }

    # Authentication endpoints
    @app.post("/auth/login", response_model=ActionResponse)
    async def login(body: LoginRequest, request: Request):
        """Sign in a shopper."""
        current = get_storefront(request)
        try:
            if await current.sign_in(body.email, body.password):
                return _respond(current, True, f"Successfully logged in as {body.email}")
            return _respond(current, False, "Login failed. Check your credentials.")
        except Exception as e:
            _fail(current, "Login", e)

    @app.post("/auth/signup", response_model=ActionResponse)
    async def signup(body: SignUpRequest, request: Request):
        """Create a shopper account."""
        current = get_storefront(request)
        try:
            success = await current.accounts.sign_up(body.name, body.email, body.password, body.gender)
            if success:
                return _respond(current, True, f"Account created for {body.email}")
            return _respond(current, False, "Signup failed")
        except Exception as e:
            _fail(current, "Signup", e)

    @app.post("/auth/logout", response_model=ActionResponse)
    async def logout(request: Request):
        """Sign out."""
        current = get_storefront(request)
        try:
            success = await current.sign_out()
            return _respond(current, success, "Logged out" if success else "Logout failed")
        except Exception as e:
            _fail(current, "Logout", e)

    @app.post("/auth/admin-login", response_model=ActionResponse)
    async def admin_login(body: LoginRequest, request: Request):
        """Sign in with an admin account."""
        current = get_storefront(request)
        try:
            if await current.admin_sign_in(body.email, body.password):
                return _respond(current, True, f"Successfully logged in as admin {body.email}")
            return _respond(current, False, "Admin login failed")
        except Exception as e:
            _fail(current, "Admin login", e)

    @app.get("/auth/status")
    async def auth_status(request: Request):
        """Get authentication status."""
        user = get_storefront(request).auth_state.user
        return {
            "authenticated": user is not None,
            "email": user.email if user else None,
            "user_id": user.id if user else None,
        }

    # Product endpoints
    @app.get("/products")
    async def list_products(request: Request, reload: bool = False):
        """List the catalog with variant options."""
        current = get_storefront(request)
        try:
            products = await current.products(reload=reload)
            return {
                "count": len(products),
                "products": [product.model_dump(mode="json") for product in products],
            }
        except Exception as e:
            _fail(current, "List products", e)

    # Cart endpoints
    @app.get("/cart")
    async def get_cart(request: Request):
        """Get current shopping cart."""
        current = get_storefront(request)
        try:
            await _require_user(current)
            await current.cart.refresh()
            result: dict[str, Any] = current.cart.cart().model_dump(mode="json")
            result["notices"] = [notice.model_dump(mode="json") for notice in current.drain_notices()]
            return result
        except HTTPException:
            raise
        except Exception as e:
            _fail(current, "Get cart", e)

    @app.post("/cart/add", response_model=ActionResponse)
    async def add_to_cart(body: AddToCartRequest, request: Request):
        """Add a product to the cart."""
        current = get_storefront(request)
        try:
            await _require_user(current)
            success = await current.add_to_cart(body.product_id, body.quantity, body.selected_variants)
            if success:
                return _respond(current, True, f"Added {body.quantity} x {body.product_id} to cart")
            return _respond(current, False, f"Failed to add product {body.product_id} to cart")
        except HTTPException:
            raise
        except Exception as e:
            _fail(current, "Add to cart", e)

    @app.post("/cart/remove", response_model=ActionResponse)
    async def remove_from_cart(body: RemoveFromCartRequest, request: Request):
        """Remove an item from the cart."""
        current = get_storefront(request)
        try:
            await _require_user(current)
            success = await current.cart.remove_from_cart(body.item_id)
            message = f"Removed item {body.item_id}" if success else f"Failed to remove item {body.item_id}"
            return _respond(current, success, message)
        except HTTPException:
            raise
        except Exception as e:
            _fail(current, "Remove from cart", e)

    @app.post("/cart/update", response_model=ActionResponse)
    async def update_cart(body: UpdateCartRequest, request: Request):
        """Update the quantity of a cart item; below 1 removes it."""
        current = get_storefront(request)
        try:
            await _require_user(current)
            success = await current.cart.update_quantity(body.item_id, body.quantity)
            message = f"Updated item {body.item_id}" if success else f"Failed to update item {body.item_id}"
            return _respond(current, success, message)
        except HTTPException:
            raise
        except Exception as e:
            _fail(current, "Update cart", e)

    @app.post("/cart/checkout")
    async def checkout(request: Request):
        """Place the order: clear the cart and return the confirmation."""
        current = get_storefront(request)
        try:
            await _require_user(current)
            result = await current.cart.checkout()
            response = result.model_dump()
            response["notices"] = [notice.model_dump(mode="json") for notice in current.drain_notices()]
            return response
        except HTTPException:
            raise
        except Exception as e:
            _fail(current, "Checkout", e)

    # Admin endpoints
    @app.get("/admin/products")
    async def admin_list_products(request: Request):
        """List all products, newest first."""
        current = get_storefront(request)
        try:
            await _require_admin(current)
            products = await current.admin.load_products()
            return {
                "count": len(products),
                "products": [product.model_dump(mode="json") for product in products],
                "notices": [notice.model_dump(mode="json") for notice in current.drain_notices()],
            }
        except HTTPException:
            raise
        except Exception as e:
            _fail(current, "Admin list products", e)

    @app.post("/admin/products", response_model=ActionResponse)
    async def admin_create_product(body: ProductRequest, request: Request):
        """Add a product."""
        current = get_storefront(request)
        try:
            await _require_admin(current)
            success = await current.save_product(body.model_dump())
            return _respond(current, success, "Product saved" if success else "Product was not saved")
        except HTTPException:
            raise
        except Exception as e:
            _fail(current, "Admin create product", e)

    @app.put("/admin/products/{product_id}", response_model=ActionResponse)
    async def admin_update_product(product_id: str, body: ProductRequest, request: Request):
        """Update a product."""
        current = get_storefront(request)
        try:
            await _require_admin(current)
            success = await current.save_product(body.model_dump(), product_id)
            return _respond(current, success, "Product saved" if success else "Product was not saved")
        except HTTPException:
            raise
        except Exception as e:
            _fail(current, "Admin update product", e)

    @app.delete("/admin/products/{product_id}")
    async def admin_delete_product(product_id: str, request: Request, confirm: bool = False):
        """Delete a product; nothing is deleted unless confirm=true."""
        current = get_storefront(request)
        try:
            await _require_admin(current)
            outcome = await current.delete_product(product_id, confirmed=confirm)
            response = outcome.model_dump()
            response["notices"] = [notice.model_dump(mode="json") for notice in current.drain_notices()]
            return response
        except HTTPException:
            raise
        except Exception as e:
            _fail(current, "Admin delete product", e)

    return app


app = create_app()


def run_http_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """
    Run the HTTP server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to bind to (default: 8000)
        reload: Enable hot reloading (default: False)
    """
    import uvicorn

    logger.info(f"Starting server on {host}:{port} (reload={'enabled' if reload else 'disabled'})")

    if reload:
        # Hot reloading - watches for file changes
        uvicorn.run(
            "clickcarry_server.http_server:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["clickcarry_server"],
            log_level="info"
        )
    else:
        # Regular mode
        uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    # Enable hot reloading by default when running directly
    run_http_server(reload=True)
