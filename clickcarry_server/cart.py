"""Cart synchronizer: local mirror of the user's cart_items rows."""

import asyncio
from decimal import Decimal
import logging
from typing import Any, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

from .auth_state import AuthStateObserver
from .catalog import validate_selection
from .exceptions import StoreError, ValidationError
from .models import Cart, CartItem, Product, User, calculate_totals
from .notices import NoticeBoard
from .store_client import RemoteStoreClient

logger = logging.getLogger(__name__)

CART_TABLE = "cart_items"

THANK_YOU_MESSAGE = (
    "Your order has been received and is now being processed. "
    "You will receive an order confirmation email shortly."
)


class CheckoutResult(BaseModel):
    """Outcome of a checkout: the cart is cleared and a confirmation shown."""

    cleared: bool
    redirect_to: str = "/thank-you"
    message: str = THANK_YOU_MESSAGE


class CartSynchronizer:
    """
    Owns the in-memory cart of the signed-in user.

    All operations run one at a time through a lock, so there is never more
    than one remote mutation in flight for a cart. Each operation remembers
    the identity generation it started under; if the user changes while a
    remote call is in flight, the result is dropped instead of applied.
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
        self.is_loading = True
        self._items: list[CartItem] = []
        self._lock = asyncio.Lock()
        self._generation = 0
        self._owner_id: Optional[str] = auth_state.user.id if auth_state.user else None
        self._refresh_task: Optional[asyncio.Task] = None
        self._closed = False
        self._subscription = auth_state.subscribe(self._on_identity_change)

    # =====================================================
    # State
    # =====================================================
    @property
    def user(self) -> Optional[User]:
        return self.auth_state.user

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state.is_authenticated

    @property
    def items(self) -> list[CartItem]:
        return list(self._items)

    @property
    def total_items(self) -> int:
        return calculate_totals(self._items)[0]

    @property
    def total_price(self) -> Decimal:
        return calculate_totals(self._items)[1]

    def cart(self) -> Cart:
        return Cart(items=self.items)

    def _table(self):
        return self.store.table(CART_TABLE)

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _find_by_product(self, product_id: str) -> Optional[CartItem]:
        for item in self._items:
            if item.product_id == product_id:
                return item
        return None

    # =====================================================
    # Identity changes
    # =====================================================
    def _on_identity_change(self, user: Optional[User]) -> None:
        new_owner = user.id if user else None
        if new_owner == self._owner_id:
            # token refresh for the same user
            return

        logger.info(f"Cart owner changed: {self._owner_id} -> {new_owner}")
        self._generation += 1
        self._owner_id = new_owner
        self._items = []
        self.is_loading = new_owner is not None

        if new_owner is not None:
            self._schedule_refresh()

    def _schedule_refresh(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop yet, the first explicit refresh() will load the cart
            return
        self._refresh_task = loop.create_task(self.refresh())

    async def settle(self) -> None:
        """Wait for a refresh scheduled by an identity change."""
        if self._refresh_task is not None:
            await self._refresh_task
            self._refresh_task = None

    # =====================================================
    # Query
    # =====================================================
    async def refresh(self) -> bool:
        """
        Reload the whole cart from the store.

        Unauthenticated: empties the list without a remote call.
        On failure the previous list is kept and a notice is posted.
        """
        async with self._lock:
            return await self._refresh_locked(report_failure=True)

    async def _refresh_locked(self, report_failure: bool) -> bool:
        user = self.auth_state.user
        if user is None:
            self._items = []
            self.is_loading = False
            return True

        generation = self._generation
        self.is_loading = True
        try:
            rows = await self._table().select("*,products(*)", {"user_id": user.id})
            items = [CartItem.model_validate(row) for row in rows]
        except (StoreError, PydanticValidationError) as e:
            logger.error(f"Error fetching cart: {e}")
            if not self._is_stale(generation):
                self.is_loading = False
                if report_failure:
                    self.notices.error("Failed to load your cart")
            return False

        if self._is_stale(generation):
            logger.debug("Dropping cart rows fetched for a previous identity")
            return False

        self._items = items
        self.is_loading = False
        return True

    # =====================================================
    # Commands
    # =====================================================
    async def _update_remote(
        self, item_id: str, quantity: int, selection: Optional[dict[str, str]] = None
    ) -> None:
        patch: dict[str, Any] = {"quantity": quantity}
        if selection:
            patch["selected_variants"] = selection
        rows = await self._table().update(patch, {"id": item_id})
        if not rows:
            raise StoreError(f"Cart item {item_id} not found", status_code=404)

    def _patch_quantity(
        self, item_id: str, quantity: int, selection: Optional[dict[str, str]] = None
    ) -> None:
        update: dict[str, Any] = {"quantity": quantity}
        if selection:
            update["selected_variants"] = selection
        self._items = [
            item.model_copy(update=update) if item.id == item_id else item
            for item in self._items
        ]

    async def add_to_cart(
        self,
        product: Product,
        quantity: int = 1,
        selected_variants: Optional[dict[str, str]] = None,
    ) -> bool:
        """
        Add a product, or raise the quantity of its existing line.

        Args:
            product: Product to add
            quantity: Quantity to add (default: 1)
            selected_variants: Variant group ID -> chosen option, stored on the row

        Returns:
            True if the cart changed
        """
        user = self.auth_state.user
        if user is None:
            logger.info("Add to cart ignored: not authenticated")
            return False

        try:
            if quantity < 1:
                raise ValidationError("Quantity must be at least 1", field="quantity")
            selection = validate_selection(product, selected_variants) if selected_variants else None
        except ValidationError as e:
            self.notices.error(e.message)
            return False

        logger.info(f"=== ADD TO CART: product_id={product.id}, quantity={quantity} ===")

        async with self._lock:
            user = self.auth_state.user
            if user is None:
                return False
            generation = self._generation
            existing = self._find_by_product(product.id)
            try:
                if existing is not None:
                    new_quantity = existing.quantity + quantity
                    await self._update_remote(existing.id, new_quantity, selection)
                    if self._is_stale(generation):
                        return False
                    self._patch_quantity(existing.id, new_quantity, selection)
                else:
                    # one row per (user, product), even if the local list is behind
                    rows = await self._table().select(
                        "id,quantity", {"user_id": user.id, "product_id": product.id}, limit=1
                    )
                    if rows:
                        logger.info(f"Product {product.id} already stored in cart, increasing quantity")
                        await self._update_remote(
                            str(rows[0]["id"]), int(rows[0]["quantity"]) + quantity, selection
                        )
                    else:
                        row = {"user_id": user.id, "product_id": product.id, "quantity": quantity}
                        if selection:
                            row["selected_variants"] = selection
                        await self._table().insert(row)
                    if self._is_stale(generation):
                        return False
                    await self._refresh_locked(report_failure=False)
            except StoreError as e:
                logger.error(f"Error adding to cart: {e}")
                self.notices.error("Failed to add item to cart")
                return False

        self.notices.success("Added to cart")
        return True

    async def remove_from_cart(self, item_id: str) -> bool:
        """Delete one cart line by ID."""
        async with self._lock:
            return await self._remove_locked(item_id)

    async def _remove_locked(self, item_id: str) -> bool:
        generation = self._generation
        try:
            rows = await self._table().delete({"id": item_id})
            if not rows:
                raise StoreError(f"Cart item {item_id} not found", status_code=404)
        except StoreError as e:
            logger.error(f"Error removing from cart: {e}")
            self.notices.error("Failed to remove item")
            return False

        if self._is_stale(generation):
            return False

        self._items = [item for item in self._items if item.id != item_id]
        self.notices.success("Item removed from cart")
        return True

    async def update_quantity(self, item_id: str, quantity: int) -> bool:
        """Set the quantity of a cart line; below 1 removes it."""
        async with self._lock:
            if quantity < 1:
                return await self._remove_locked(item_id)

            generation = self._generation
            try:
                await self._update_remote(item_id, quantity)
            except StoreError as e:
                logger.error(f"Error updating quantity: {e}")
                self.notices.error("Failed to update quantity")
                return False

            if self._is_stale(generation):
                return False

            self._patch_quantity(item_id, quantity)
            self.notices.success("Cart updated")
            return True

    async def clear_cart(self) -> bool:
        """Delete every cart line of the current user."""
        user = self.auth_state.user
        if user is None:
            logger.info("Clear cart ignored: not authenticated")
            return False

        async with self._lock:
            user = self.auth_state.user
            if user is None:
                return False
            generation = self._generation
            try:
                await self._table().delete({"user_id": user.id})
            except StoreError as e:
                logger.error(f"Error clearing cart: {e}")
                self.notices.error("Failed to clear cart")
                return False

            if self._is_stale(generation):
                return False

            self._items = []
            self.notices.success("Order placed successfully")
            return True

    async def checkout(self) -> CheckoutResult:
        """Clear the cart and report the confirmation. No payment or stock checks."""
        cleared = await self.clear_cart()
        logger.info(f"Checkout finished (cart cleared: {cleared})")
        return CheckoutResult(cleared=cleared)

    def close(self) -> None:
        """Stop following the auth state; in-flight results are dropped."""
        self._closed = True
        self._subscription.unsubscribe()
