"""Catalog seeding and admin promotion."""

import logging
from typing import Any

from .admin import ADMIN_ROLE, PRODUCTS_TABLE, PROFILES_TABLE
from .exceptions import StoreError
from .store_client import NOT_NULL, RemoteStoreClient

logger = logging.getLogger(__name__)


def _laptop(index: int, name: str, description: str, price: float, photo: str) -> dict[str, Any]:
    image = f"https://images.unsplash.com/{photo}"
    return {
        "id": f"123e4567-e89b-12d3-a456-42661417400{index}",
        "name": name,
        "description": description,
        "price": price,
        "image_url": image,
        "image_url_2": image,
        "image_url_3": image,
    }


LAPTOP_PRODUCTS: list[dict[str, Any]] = [
    _laptop(0, 'MacBook Pro 16"',
            "Powerful laptop with M2 Pro chip, perfect for professionals and creatives.",
            2499.99, "photo-1517336714731-489689fd1ca8"),
    _laptop(1, "Dell XPS 15",
            "Premium ultrabook with stunning display and powerful performance.",
            1999.99, "photo-1593642632823-8f785ba67e45"),
    _laptop(2, "Lenovo ThinkPad X1",
            "Business laptop with legendary durability and security features.",
            1799.99, "photo-1496181133206-80ce9b88a853"),
    _laptop(3, "ASUS ROG Zephyrus",
            "Gaming laptop with high refresh rate display and powerful GPU.",
            2299.99, "photo-1603302576837-37561b2e2302"),
    _laptop(4, "HP Spectre x360",
            "Convertible laptop with premium design and all-day battery life.",
            1599.99, "photo-1496181133206-80ce9b88a853"),
]


async def seed_catalog(store: RemoteStoreClient) -> int:
    """
    Replace the whole catalog with the laptop products.

    Returns:
        Number of products inserted

    Raises:
        StoreError: If the delete or the insert fails
    """
    table = store.table(PRODUCTS_TABLE)
    deleted = await table.delete({"id": NOT_NULL})
    logger.info(f"Deleted {len(deleted)} existing product(s)")

    inserted = 0
    for product in LAPTOP_PRODUCTS:
        await table.insert(product)
        inserted += 1
    logger.info(f"Database seeded successfully with {inserted} product(s)")
    return inserted


async def promote_to_admin(store: RemoteStoreClient, user_id: str) -> None:
    """
    Give a user the admin role.

    Raises:
        StoreError: If the update fails or the profile does not exist
    """
    rows = await store.table(PROFILES_TABLE).update({"role": ADMIN_ROLE}, {"id": user_id})
    if not rows:
        raise StoreError(f"Profile {user_id} not found", status_code=404)
    logger.info(f"Successfully updated user {user_id} to admin role")
