"""Product catalog reader and read-time variant enrichment."""

import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from .exceptions import StoreError, ValidationError
from .models import Product, VariantGroup
from .store_client import RemoteStoreClient

logger = logging.getLogger(__name__)

VARIANT_RULES: tuple[VariantGroup, ...] = (
    VariantGroup(id="ram", name="RAM", options=["8GB", "16GB", "32GB"]),
    VariantGroup(id="storage", name="Storage", options=["256GB SSD", "512GB SSD", "1TB SSD"]),
    VariantGroup(
        id="processor",
        name="Processor",
        options=["Intel i5", "Intel i7", "Intel i9", "AMD Ryzen 7", "AMD Ryzen 9"],
    ),
)


def variant_groups_for(product_name: str) -> list[VariantGroup]:
    """
    Variant groups offered for a product.

    Every product currently gets the same RAM/Storage/Processor groups,
    whatever its name or category.
    """
    return [group.model_copy(deep=True) for group in VARIANT_RULES]


def attach_variants(product: Product) -> Product:
    """Return a copy of product with its synthetic variant groups attached."""
    return product.model_copy(update={"variants": variant_groups_for(product.name.lower())})


def validate_selection(
    product: Product,
    selected: Optional[dict[str, str]],
    require_complete: bool = False,
) -> dict[str, str]:
    """
    Check a variant selection against the product's groups.

    Args:
        product: Product the selection is for
        selected: Mapping of variant group ID to chosen option
        require_complete: Every group of the product must have a choice

    Returns:
        The selection (empty dict when none was given)

    Raises:
        ValidationError: On an unknown group, an unknown option or a missing choice
    """
    selected = dict(selected or {})
    groups = {group.id: group for group in product.variants}

    for group_id, option in selected.items():
        group = groups.get(group_id)
        if group is None:
            raise ValidationError(f"Unknown variant: {group_id}", field=group_id)
        if option not in group.options:
            raise ValidationError(f"Invalid {group.name} option: {option}", field=group_id)

    if require_complete:
        for group in product.variants:
            if not selected.get(group.id):
                raise ValidationError(f"Please select {group.name}", field=group.id)

    return selected


class CatalogReader:
    """One-shot reader of the products table."""

    def __init__(self, store: RemoteStoreClient) -> None:
        self.store = store
        self.products: list[Product] = []
        self.is_loading = True
        self._disposed = False

    async def load(self) -> list[Product]:
        """
        Fetch every product and attach variants.

        On failure the product list is empty and the error is logged.
        """
        self.is_loading = True
        try:
            rows = await self.store.table("products").select()
            products = [attach_variants(Product.model_validate(row)) for row in rows]
        except (StoreError, PydanticValidationError) as e:
            logger.error(f"Error fetching products: {e}")
            products = []

        if self._disposed:
            logger.debug("Catalog reader disposed, dropping late result")
            return []

        self.products = products
        self.is_loading = False
        logger.info(f"Loaded {len(products)} product(s)")
        return products

    def get(self, product_id: str) -> Optional[Product]:
        for product in self.products:
            if product.id == product_id:
                return product
        return None

    def dispose(self) -> None:
        self._disposed = True
