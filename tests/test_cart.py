"""Tests for the cart synchronizer."""

import asyncio
from decimal import Decimal

from conftest import sign_in

from clickcarry_server.auth import SessionEvent


def messages(notices):
    return [notice.message for notice in notices.drain()]


async def test_repeated_add_accumulates_quantity(store, cart, notices, shopper, laptop):
    await sign_in(store, shopper.email, cart)

    assert await cart.add_to_cart(laptop, 1)
    assert [(item.product_id, item.quantity) for item in cart.items] == [(laptop.id, 1)]
    assert cart.total_price == Decimal("1999.99")

    assert await cart.add_to_cart(laptop, 2)
    assert [(item.product_id, item.quantity) for item in cart.items] == [(laptop.id, 3)]
    assert cart.total_items == 3
    assert cart.total_price == Decimal("5999.97")

    assert len(store.tables["cart_items"]) == 1
    assert messages(notices) == ["Added to cart", "Added to cart"]


async def test_add_joins_product_and_keeps_totals(store, cart, shopper, laptop, macbook):
    await sign_in(store, shopper.email, cart)

    await cart.add_to_cart(laptop, 2)
    await cart.add_to_cart(macbook, 1)

    assert {item.product.name for item in cart.items} == {"Dell XPS 15", 'MacBook Pro 16"'}
    assert cart.total_items == 3
    assert cart.total_price == Decimal("1999.99") * 2 + Decimal("2499.99")
    snapshot = cart.cart()
    assert snapshot.total_items == cart.total_items
    assert snapshot.total_price == cart.total_price


async def test_add_increments_stored_row_when_local_list_is_behind(store, cart, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    store.tables["cart_items"].append(
        {"id": "row-1", "user_id": shopper.id, "product_id": laptop.id, "quantity": 2}
    )

    assert await cart.add_to_cart(laptop, 1)

    assert store.count("cart_items", "insert") == 0
    assert store.tables["cart_items"] == [
        {"id": "row-1", "user_id": shopper.id, "product_id": laptop.id, "quantity": 3}
    ]
    assert [(item.id, item.quantity) for item in cart.items] == [("row-1", 3)]


async def test_add_stores_selected_variants(store, cart, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    selection = {"ram": "16GB", "storage": "512GB SSD", "processor": "Intel i7"}

    await cart.add_to_cart(laptop, 1, selection)

    assert store.tables["cart_items"][0]["selected_variants"] == selection
    assert cart.items[0].selected_variants == selection


async def test_readd_with_new_selection_replaces_stored_one(store, cart, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    first = {"ram": "8GB", "storage": "256GB SSD", "processor": "Intel i5"}
    second = {"ram": "32GB", "storage": "1TB SSD", "processor": "Intel i9"}

    await cart.add_to_cart(laptop, 1, first)
    assert await cart.add_to_cart(laptop, 1, second)

    assert store.tables["cart_items"][0]["quantity"] == 2
    assert store.tables["cart_items"][0]["selected_variants"] == second
    assert cart.items[0].selected_variants == second


async def test_readd_without_selection_keeps_stored_one(store, cart, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    selection = {"ram": "16GB", "storage": "512GB SSD", "processor": "Intel i7"}

    await cart.add_to_cart(laptop, 1, selection)
    await cart.add_to_cart(laptop, 1)

    assert store.tables["cart_items"][0]["selected_variants"] == selection
    assert cart.items[0].selected_variants == selection


async def test_concurrent_adds_are_serialized(store, cart, shopper, laptop):
    await sign_in(store, shopper.email, cart)

    results = await asyncio.gather(cart.add_to_cart(laptop, 1), cart.add_to_cart(laptop, 2))

    assert results == [True, True]
    assert store.count("cart_items", "insert") == 1
    assert [(row["product_id"], row["quantity"]) for row in store.tables["cart_items"]] == [(laptop.id, 3)]
    assert [(item.product_id, item.quantity) for item in cart.items] == [(laptop.id, 3)]
    assert cart.total_price == Decimal("5999.97")


async def test_refresh_counts_null_product_price_as_zero(store, cart, notices, shopper, laptop, macbook):
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)
    await cart.add_to_cart(macbook, 2)
    notices.drain()
    next(row for row in store.tables["products"] if row["id"] == laptop.id)["price"] = None

    assert await cart.refresh()

    assert len(cart.items) == 2
    assert cart.total_items == 3
    assert cart.total_price == Decimal("2499.99") * 2
    assert notices.pending() == []


async def test_add_rejects_unknown_variant_option_without_remote_call(store, cart, notices, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    calls = len(store.calls)

    assert not await cart.add_to_cart(laptop, 1, {"ram": "64GB"})

    assert len(store.calls) == calls
    assert messages(notices) == ["Invalid RAM option: 64GB"]
    assert cart.items == []


async def test_add_rejects_quantity_below_one(store, cart, notices, shopper, laptop):
    await sign_in(store, shopper.email, cart)

    assert not await cart.add_to_cart(laptop, 0)

    assert messages(notices) == ["Quantity must be at least 1"]
    assert store.tables["cart_items"] == []


async def test_add_failure_leaves_cart_unchanged(store, cart, notices, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)
    notices.drain()
    store.fail("cart_items", "update")

    assert not await cart.add_to_cart(laptop, 5)

    assert cart.items[0].quantity == 1
    assert messages(notices) == ["Failed to add item to cart"]


async def test_unauthenticated_add_and_clear_are_noops(store, cart, notices, laptop):
    assert not await cart.add_to_cart(laptop, 1)
    assert not await cart.clear_cart()

    assert store.calls == []
    assert notices.pending() == []


async def test_unauthenticated_refresh_empties_without_remote_call(store, cart):
    assert await cart.refresh()

    assert cart.items == []
    assert not cart.is_loading
    assert store.calls == []


async def test_update_below_one_is_remove(store, cart, notices, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 2)
    notices.drain()
    item_id = cart.items[0].id

    assert await cart.update_quantity(item_id, 0)

    assert cart.items == []
    assert store.tables["cart_items"] == []
    assert messages(notices) == ["Item removed from cart"]


async def test_update_patches_local_item_without_refetch(store, cart, notices, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)
    notices.drain()
    selects = store.count("cart_items", "select")

    assert await cart.update_quantity(cart.items[0].id, 4)

    assert store.count("cart_items", "select") == selects
    assert cart.items[0].quantity == 4
    assert store.tables["cart_items"][0]["quantity"] == 4
    assert messages(notices) == ["Cart updated"]


async def test_update_of_missing_item_fails(store, cart, notices, shopper):
    await sign_in(store, shopper.email, cart)

    assert not await cart.update_quantity("missing", 2)

    assert messages(notices) == ["Failed to update quantity"]


async def test_remove_nonexistent_item_posts_notice_and_keeps_state(store, cart, notices, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)
    notices.drain()
    before = cart.items

    assert not await cart.remove_from_cart("missing")

    assert cart.items == before
    assert messages(notices) == ["Failed to remove item"]


async def test_clear_then_refresh_is_empty(store, cart, notices, shopper, laptop, macbook):
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)
    await cart.add_to_cart(macbook, 1)
    notices.drain()

    assert await cart.clear_cart()
    assert await cart.refresh()

    assert cart.items == []
    assert cart.total_items == 0
    assert cart.total_price == Decimal("0")
    assert messages(notices) == ["Order placed successfully"]


async def test_clear_only_removes_own_rows(store, cart, shopper, other_shopper, laptop):
    store.tables["cart_items"].append(
        {"id": "theirs", "user_id": other_shopper.id, "product_id": laptop.id, "quantity": 1}
    )
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)

    await cart.clear_cart()

    assert [row["id"] for row in store.tables["cart_items"]] == ["theirs"]


async def test_checkout_clears_cart_and_confirms(store, cart, notices, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)
    notices.drain()

    result = await cart.checkout()

    assert result.cleared
    assert result.redirect_to == "/thank-you"
    assert cart.items == []
    assert store.tables["cart_items"] == []
    assert messages(notices) == ["Order placed successfully"]


async def test_refresh_failure_keeps_previous_items(store, cart, notices, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)
    notices.drain()
    store.fail("cart_items", "select")

    assert not await cart.refresh()

    assert [item.product_id for item in cart.items] == [laptop.id]
    assert messages(notices) == ["Failed to load your cart"]


async def test_sign_in_loads_existing_cart(store, cart, shopper, laptop):
    store.tables["cart_items"].append(
        {"id": "row-1", "user_id": shopper.id, "product_id": laptop.id, "quantity": 2}
    )

    await sign_in(store, shopper.email, cart)

    assert [(item.id, item.quantity) for item in cart.items] == [("row-1", 2)]
    assert cart.items[0].product.name == "Dell XPS 15"
    assert not cart.is_loading


async def test_sign_out_drops_local_items(store, cart, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)

    await store.auth.sign_out()

    assert cart.items == []
    assert not cart.is_authenticated


async def test_switching_user_shows_only_their_cart(store, cart, shopper, other_shopper, laptop, macbook):
    store.tables["cart_items"].append(
        {"id": "theirs", "user_id": other_shopper.id, "product_id": macbook.id, "quantity": 1}
    )
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)

    await store.auth.sign_out()
    await sign_in(store, other_shopper.email, cart)

    assert [item.id for item in cart.items] == ["theirs"]


async def test_token_refresh_for_same_user_keeps_items(store, cart, auth_manager, shopper, laptop):
    session = await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)
    selects = store.count("cart_items", "select")

    auth_manager.save_session(session, SessionEvent.TOKEN_REFRESHED)
    await cart.settle()

    assert len(cart.items) == 1
    assert store.count("cart_items", "select") == selects


async def test_response_after_sign_out_does_not_repopulate(store, cart, shopper, laptop):
    await sign_in(store, shopper.email, cart)
    await cart.add_to_cart(laptop, 1)

    async def sign_out_midway(table, operation):
        await store.auth.sign_out()

    store.on_call = sign_out_midway
    assert not await cart.refresh()

    assert cart.items == []
    assert cart.user is None


async def test_closed_cart_ignores_identity_changes(store, cart, shopper, laptop):
    cart.close()

    await store.auth.sign_in(shopper.email, "secret123")
    await cart.settle()

    assert store.count("cart_items", "select") == 0
    assert cart.items == []
