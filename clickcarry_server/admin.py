"""Admin catalog editor, gated by the profile role."""

import logging
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from .auth_state import AuthStateObserver
from .exceptions import AuthError, StoreError, ValidationError
from .models import Product, ProductForm, Profile, User
from .notices import NoticeBoard
from .store_client import RemoteStoreClient

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
PRODUCTS_TABLE = "products"
PROFILES_TABLE = "profiles"
UNAUTHORIZED_MESSAGE = "Unauthorized: Admin access required"
DELETE_PROMPT = "Are you sure you want to delete this product?"


async def fetch_profile(store: RemoteStoreClient, user_id: str) -> Optional[Profile]:
    """Look up a user's profile row (None if there is none)."""
    rows = await store.table(PROFILES_TABLE).select("id,role", {"id": user_id}, limit=1)
    if not rows:
        return None
    return Profile.model_validate({"id": user_id, **rows[0]})


async def is_admin(store: RemoteStoreClient, user_id: str) -> bool:
    profile = await fetch_profile(store, user_id)
    return profile is not None and profile.role == ADMIN_ROLE


class GateDecision(BaseModel):
    """Result of the admin role check."""

    allowed: bool
    redirect_to: Optional[str] = None


class DeleteOutcome(BaseModel):
    """Result of a delete request."""

    deleted: bool
    pending_confirmation: bool = False
    prompt: Optional[str] = None


class AdminCatalogEditor:
    """
    CRUD over the products table for admins.

    The role check runs once per editor (one page view) and is forgotten as
    soon as the identity changes. It is never persisted.
    """

    def __init__(
        self,
        store: RemoteStoreClient,
        auth_state: AuthStateObserver,
        notices: NoticeBoard,
    ) -> None:
        self.store = store
        self.auth_state = auth_state
        self.notices = notices
        self.products: list[Product] = []
        self.is_loading = True
        self.editing: Optional[Product] = None
        self._gate: Optional[GateDecision] = None
        self._generation = 0
        self._subscription = auth_state.subscribe(self._on_identity_change)

    def _on_identity_change(self, user: Optional[User]) -> None:
        self._gate = None
        self.editing = None
        self._generation += 1

    def _table(self):
        return self.store.table(PRODUCTS_TABLE)

    # =====================================================
    # Role gate
    # =====================================================
    async def enter(self) -> GateDecision:
        """
        Check that the current user is signed in and has the admin role.

        Returns:
            GateDecision; when not allowed, redirect_to says where to go
        """
        if self._gate is not None and self._gate.allowed:
            return self._gate

        user = self.auth_state.user
        if user is None:
            self.notices.error("Please sign in to continue")
            return GateDecision(allowed=False, redirect_to="/auth")

        generation = self._generation
        try:
            allowed = await is_admin(self.store, user.id)
        except (StoreError, PydanticValidationError) as e:
            logger.error(f"Role lookup failed for {user.id}: {e}")
            allowed = False

        decision = GateDecision(allowed=allowed, redirect_to=None if allowed else "/")
        if generation == self._generation:
            self._gate = decision
        if not allowed:
            logger.warning(f"User {user.id} refused admin access")
            self.notices.error(UNAUTHORIZED_MESSAGE)
        return decision

    async def _require_admin(self) -> bool:
        decision = await self.enter()
        return decision.allowed

    # =====================================================
    # Query
    # =====================================================
    async def load_products(self) -> list[Product]:
        """Fetch the catalog, newest first."""
        if not await self._require_admin():
            return []
        await self._fetch(report_failure=True)
        return self.products

    async def _fetch(self, report_failure: bool) -> None:
        generation = self._generation
        try:
            rows = await self._table().select(order="created_at.desc")
            products = [Product.model_validate(row) for row in rows]
        except (StoreError, PydanticValidationError) as e:
            logger.error(f"Error fetching products: {e}", exc_info=True)
            if generation == self._generation:
                self.is_loading = False
                if report_failure:
                    self.notices.error("Failed to fetch products")
            return

        if generation != self._generation:
            logger.debug("Dropping product list fetched for a previous identity")
            return
        self.products = products
        self.is_loading = False

    # =====================================================
    # Commands
    # =====================================================
    def begin_edit(self, product: Product) -> ProductForm:
        """Select a row for editing and return the pre-filled form."""
        self.editing = product
        return ProductForm.from_product(product)

    def cancel_edit(self) -> None:
        self.editing = None

    async def submit(self, values: Union[ProductForm, Mapping[str, Any]]) -> bool:
        """
        Validate the form, then insert or update.

        Inserts when no row is being edited, otherwise updates that row.
        The catalog is re-fetched after a successful write.
        """
        if isinstance(values, ProductForm):
            values = values.model_dump()
        try:
            form = ProductForm.model_validate(dict(values))
        except PydanticValidationError as e:
            error = ValidationError.from_pydantic(e)
            logger.info(f"Product form rejected: {error.field}: {error.message}")
            self.notices.error(error.message)
            return False

        if not await self._require_admin():
            return False

        editing = self.editing
        try:
            if editing is not None:
                rows = await self._table().update(form.to_row(clear_blank=True), {"id": editing.id})
                if not rows:
                    raise StoreError(f"Product {editing.id} not found", status_code=404)
                message = "Product updated successfully"
            else:
                await self._table().insert(form.to_row())
                message = "Product added successfully"
        except StoreError as e:
            logger.error(f"Error saving product: {e}")
            self.notices.error(e.message or "Failed to save product")
            return False

        self.notices.success(message)
        self.editing = None
        await self._fetch(report_failure=False)
        return True

    async def delete_product(self, product_id: str, confirmed: bool = False) -> DeleteOutcome:
        """
        Delete a product. Nothing happens until the deletion is confirmed.

        Args:
            product_id: Product to delete
            confirmed: Whether the user confirmed the prompt
        """
        if not confirmed:
            return DeleteOutcome(deleted=False, pending_confirmation=True, prompt=DELETE_PROMPT)

        if not await self._require_admin():
            return DeleteOutcome(deleted=False)

        try:
            rows = await self._table().delete({"id": product_id})
            if not rows:
                raise StoreError(f"Product {product_id} not found", status_code=404)
        except StoreError as e:
            logger.error(f"Error deleting product: {e}")
            self.notices.error(e.message or "Failed to delete product")
            return DeleteOutcome(deleted=False)

        self.notices.success("Product deleted successfully")
        if self.editing is not None and self.editing.id == product_id:
            self.editing = None
        await self._fetch(report_failure=False)
        return DeleteOutcome(deleted=True)

    async def sign_out(self) -> bool:
        """Admin logout."""
        try:
            await self.store.auth.sign_out()
        except AuthError as e:
            logger.error(f"Admin logout error: {e}")
            self.notices.error("Error logging out")
            return False
        self.notices.success("Logged out successfully")
        return True

    def close(self) -> None:
        self._subscription.unsubscribe()
        self._generation += 1
