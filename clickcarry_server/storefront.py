"""Wires the storefront components around one store client."""

import logging
from typing import Any, Mapping, Optional

import httpx

from .accounts import AccountService
from .admin import AdminCatalogEditor, DeleteOutcome
from .auth import AuthManager
from .auth_state import AuthStateObserver
from .cart import CartSynchronizer
from .catalog import CatalogReader, validate_selection
from .config import Settings
from .exceptions import ValidationError
from .models import AuthCredentials, Notice, Product
from .notices import NoticeBoard
from .store_client import RemoteStoreClient

logger = logging.getLogger(__name__)


class Storefront:
    """
    One storefront session.

    Every component receives the same RemoteStoreClient explicitly; there is
    no module-level session.
    """

    def __init__(
        self,
        settings: Settings,
        auth_manager: Optional[AuthManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        store: Optional[RemoteStoreClient] = None,
    ) -> None:
        """
        Initialize the storefront.

        Args:
            settings: Runtime configuration
            auth_manager: Session manager (default: one backed by settings.session_file)
            transport: Optional httpx transport for the store client
            store: Ready-made store client; settings are then only used for credentials
        """
        self.settings = settings
        if store is None:
            store = RemoteStoreClient(
                settings.supabase_url,
                settings.supabase_anon_key,
                auth_manager or AuthManager(settings.session_file),
                timeout=settings.timeout,
                transport=transport,
            )
        self.store = store
        self.auth_manager = store.auth_manager
        self.notices = NoticeBoard()
        self.auth_state = AuthStateObserver(self.store)
        self.cart = CartSynchronizer(self.store, self.auth_state, self.notices)
        self.catalog = CatalogReader(self.store)
        self.accounts = AccountService(self.store, self.notices)
        self.admin = AdminCatalogEditor(self.store, self.auth_state, self.notices)
        self.credentials: Optional[AuthCredentials] = settings.credentials()

    async def start(self) -> None:
        """Restore the saved session (if still valid) and load its cart."""
        await self.auth_state.start()
        await self.cart.settle()
        if self.auth_state.is_authenticated:
            logger.info(f"Restored session for {self.auth_state.user.email}")

    async def ensure_authenticated(self) -> bool:
        """Ensure there is a session, auto-login if credentials are available."""
        if self.auth_state.is_authenticated:
            return True

        if self.credentials:
            logger.info("Auto-logging in with configured credentials...")
            success = await self.accounts.sign_in(self.credentials.email, self.credentials.password)
            await self.cart.settle()
            if success:
                logger.info("Auto-login successful")
                return True
            logger.warning("Auto-login failed")

        return False

    async def products(self, reload: bool = False) -> list[Product]:
        if reload or self.catalog.is_loading:
            await self.catalog.load()
        return self.catalog.products

    async def find_product(self, product_id: str) -> Optional[Product]:
        product = self.catalog.get(product_id)
        if product is None:
            await self.catalog.load()
            product = self.catalog.get(product_id)
        return product

    async def add_to_cart(
        self,
        product_id: str,
        quantity: int = 1,
        selected_variants: Optional[dict[str, str]] = None,
    ) -> bool:
        """
        Add a catalog product to the cart.

        Like the product card, every variant group needs a selected option.
        """
        product = await self.find_product(product_id)
        if product is None:
            self.notices.error(f"Product {product_id} not found")
            return False

        try:
            selection = validate_selection(product, selected_variants, require_complete=True)
        except ValidationError as e:
            self.notices.error(e.message)
            return False

        return await self.cart.add_to_cart(product, quantity, selection or None)

    async def sign_in(self, email: str, password: str) -> bool:
        success = await self.accounts.sign_in(email, password)
        await self.cart.settle()
        return success

    async def admin_sign_in(self, email: str, password: str) -> bool:
        success = await self.accounts.admin_sign_in(email, password)
        await self.cart.settle()
        return success

    async def sign_out(self) -> bool:
        return await self.accounts.sign_out()

    # =====================================================
    # Admin
    # =====================================================
    async def _admin_product(self, product_id: str) -> Optional[Product]:
        for product in self.admin.products:
            if product.id == product_id:
                return product
        for product in await self.admin.load_products():
            if product.id == product_id:
                return product
        return None

    async def save_product(self, values: Mapping[str, Any], product_id: Optional[str] = None) -> bool:
        """
        Add a product, or update product_id when given.

        Args:
            values: Product form values
            product_id: Existing product to update

        Returns:
            True if the product was saved
        """
        if product_id is None:
            self.admin.cancel_edit()
            return await self.admin.submit(values)

        decision = await self.admin.enter()
        if not decision.allowed:
            return False
        product = await self._admin_product(product_id)
        if product is None:
            self.notices.error(f"Product {product_id} not found")
            return False
        self.admin.begin_edit(product)
        return await self.admin.submit(values)

    async def delete_product(self, product_id: str, confirmed: bool = False) -> DeleteOutcome:
        return await self.admin.delete_product(product_id, confirmed=confirmed)

    def drain_notices(self) -> list[Notice]:
        return self.notices.drain()

    async def close(self) -> None:
        self.cart.close()
        self.admin.close()
        self.catalog.dispose()
        self.auth_state.close()
        await self.store.close()
