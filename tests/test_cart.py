"""
Tests for the local cart store and cart models.

This module tests:
- Adding items and quantity accumulation per product
- Quantity updates, removal at zero and below
- Wholesale replacement and its duplicate policy
- Total price recomputation
- Subscriber notification and remote id tracking
"""

import random

import pytest

from cartsync.cart import CartStore
from cartsync.models import CartLineItem, ProductSnapshot, RemoteCartRecord


def _product(product_id: int, price: float = 10.0, discounted: float = 8.0) -> ProductSnapshot:
    return ProductSnapshot(
        product_id=product_id,
        title=f"Product {product_id}",
        unit_price=price,
        discounted_unit_price=discounted,
    )


class TestCartModels:
    """Test cases for line item and record models."""

    def test_line_item_from_product(self, mouse):
        """Test that a line item snapshots the product values."""
        item = CartLineItem.from_product(mouse, 2)
        assert item.product_id == 1
        assert item.title == "Mouse"
        assert item.unit_price == 20.0
        assert item.discounted_unit_price == 18.0
        assert item.quantity == 2
        assert item.remote_id is None
        assert item.total_price == 36.0

    def test_line_item_without_discount_uses_unit_price(self):
        """Test that a missing discounted price falls back to the list price."""
        product = ProductSnapshot(product_id=5, title="Cable", unit_price=7.5)
        item = CartLineItem.from_product(product, 1)
        assert item.discounted_unit_price == 7.5

    def test_line_item_rejects_zero_quantity(self):
        """Test that a line item cannot exist with quantity 0."""
        with pytest.raises(ValueError):
            CartLineItem(product_id=1, title="x", unit_price=1.0, discounted_unit_price=1.0, quantity=0)

    def test_record_from_row(self):
        """Test mapping of a cart_items row into a record."""
        record = RemoteCartRecord.from_row({
            "id": "row-1",
            "user_id": "user-1",
            "product_id": 3,
            "product_title": "Headset",
            "product_price": "99.00",
            "product_discounted_price": None,
            "product_image": "https://cdn.example.com/headset.png",
            "quantity": 4,
            "created_at": "2025-01-01T00:00:00+00:00",
            "updated_at": "2025-01-01T00:00:00+00:00",
        })
        assert record.id == "row-1"
        assert record.unit_price == 99.0
        assert record.discounted_unit_price is None
        assert record.thumbnail_url == "https://cdn.example.com/headset.png"

    def test_line_item_from_record_carries_remote_id(self):
        """Test that a record becomes a line item with its id as remote_id."""
        record = RemoteCartRecord(
            id="row-9",
            user_id="user-1",
            product_id=9,
            title="Monitor",
            unit_price=200.0,
            discounted_unit_price=None,
            thumbnail_url="thumb.png",
            quantity=2,
        )
        item = CartLineItem.from_record(record)
        assert item.remote_id == "row-9"
        assert item.discounted_unit_price == 200.0
        assert item.thumbnail_image == "thumb.png"
        assert item.quantity == 2


class TestCartStore:
    """Test cases for CartStore."""

    def test_create_empty_cart(self, cart):
        """Test creating an empty cart."""
        assert len(cart) == 0
        assert cart.items == []
        assert cart.total_price() == 0
        assert cart.is_authenticated is False

    def test_add_and_clear_scenario(self, cart, mouse):
        """Test add -> total -> set quantity 0 -> empty."""
        cart.add_item(mouse, 2)
        assert cart.total_price() == 36

        cart.set_quantity(1, 0)
        assert len(cart) == 0
        assert cart.total_price() == 0

    def test_add_duplicate_item_accumulates_quantity(self, cart, mouse):
        """Test that adding the same product twice accumulates quantity."""
        cart.add_item(mouse, 2)
        cart.add_item(mouse, 3)

        assert len(cart) == 1
        assert cart.get(1).quantity == 5

    def test_add_keeps_first_snapshot(self, cart, mouse):
        """Test that re-adding a product keeps the original catalog snapshot."""
        cart.add_item(mouse, 1)
        repriced = mouse.model_copy(update={"discounted_unit_price": 1.0})
        cart.add_item(repriced, 1)

        assert cart.get(1).discounted_unit_price == 18.0

    def test_add_has_no_upper_bound(self, cart, mouse):
        """Test that quantity can grow without limit."""
        cart.add_item(mouse, 10_000)
        cart.add_item(mouse, 10_000)
        assert cart.get(1).quantity == 20_000

    def test_add_non_positive_quantity_is_ignored(self, cart, mouse):
        """Test that adding 0 does not create a line item."""
        assert cart.add_item(mouse, 0) is None
        assert len(cart) == 0

    def test_random_adds_keep_product_ids_unique(self, cart):
        """Test that any sequence of adds yields one line item per product."""
        rng = random.Random(42)
        for _ in range(200):
            cart.add_item(_product(rng.randint(1, 8)), rng.randint(1, 3))

        product_ids = [item.product_id for item in cart.items]
        assert len(product_ids) == len(set(product_ids))

    def test_items_keep_insertion_order(self, cart, mouse, keyboard):
        """Test that line items are ordered by first add."""
        cart.add_item(keyboard, 1)
        cart.add_item(mouse, 1)
        cart.add_item(keyboard, 1)

        assert [item.product_id for item in cart.items] == [2, 1]

    def test_set_quantity_overwrites(self, cart, mouse):
        """Test that set_quantity sets the exact value."""
        cart.add_item(mouse, 2)
        cart.set_quantity(1, 7)
        assert cart.get(1).quantity == 7

    @pytest.mark.parametrize("quantity", [0, -1, -50])
    def test_set_quantity_non_positive_removes(self, cart, mouse, keyboard, quantity):
        """Test that a quantity of 0 or below removes the line item."""
        cart.add_item(mouse, 3)
        cart.add_item(keyboard, 1)

        cart.set_quantity(1, quantity)

        assert 1 not in cart
        assert 2 in cart

    def test_set_quantity_unknown_product_is_noop(self, cart, mouse):
        """Test that set_quantity on a missing product changes nothing."""
        cart.add_item(mouse, 1)
        assert cart.set_quantity(99, 5) is None
        assert [item.product_id for item in cart.items] == [1]

    def test_remove_item(self, cart, mouse):
        """Test removing a line item."""
        cart.add_item(mouse, 1)
        removed = cart.remove_item(1)
        assert removed.product_id == 1
        assert len(cart) == 0

    def test_remove_nonexistent_item(self, cart):
        """Test that removing a missing product does nothing."""
        assert cart.remove_item(999) is None
        assert len(cart) == 0

    def test_clear(self, cart, mouse, keyboard):
        """Test that clear empties the cart."""
        cart.add_item(mouse, 1)
        cart.add_item(keyboard, 2)
        cart.clear()
        assert len(cart) == 0
        assert cart.total_price() == 0

    def test_total_price_is_recomputed(self, cart, mouse, keyboard):
        """Test that total_price always reflects the current items."""
        cart.add_item(mouse, 2)
        cart.add_item(keyboard, 1)
        assert cart.total_price() == pytest.approx(18.0 * 2 + 45.0)

        cart.set_quantity(2, 3)
        assert cart.total_price() == pytest.approx(18.0 * 2 + 45.0 * 3)

        cart.remove_item(1)
        assert cart.total_price() == pytest.approx(45.0 * 3)

    def test_total_price_matches_line_items_after_random_mutations(self, cart):
        """Test subtotal consistency over a random mix of operations."""
        rng = random.Random(7)
        for _ in range(300):
            product = _product(rng.randint(1, 6), price=rng.choice([5.0, 12.5]), discounted=rng.choice([4.0, 9.99]))
            action = rng.choice(["add", "set", "remove"])
            if action == "add":
                cart.add_item(product, rng.randint(1, 4))
            elif action == "set":
                cart.set_quantity(product.product_id, rng.randint(-2, 6))
            else:
                cart.remove_item(product.product_id)

            expected = sum(item.discounted_unit_price * item.quantity for item in cart.items)
            assert cart.total_price() == pytest.approx(expected)
            assert all(item.quantity >= 1 for item in cart.items)

    def test_summary(self, cart, mouse, keyboard):
        """Test the cart summary values."""
        cart.add_item(mouse, 2)
        cart.add_item(keyboard, 3)

        summary = cart.summary()
        assert summary["count_items"] == 2
        assert summary["total_quantity"] == 5
        assert summary["total_price"] == pytest.approx(36.0 + 135.0)


class TestReplaceAll:
    """Test cases for wholesale replacement."""

    def test_replace_all_replaces_contents(self, cart, mouse, keyboard):
        """Test that replace_all discards existing items."""
        cart.add_item(mouse, 1)
        cart.replace_all([CartLineItem.from_product(keyboard, 4)])

        assert [item.product_id for item in cart.items] == [2]
        assert cart.get(2).quantity == 4

    def test_replace_all_duplicates_last_wins(self, cart, mouse, keyboard):
        """Test that the later entry wins when a product appears twice."""
        cart.replace_all([
            CartLineItem.from_product(mouse, 1),
            CartLineItem.from_product(keyboard, 2),
            CartLineItem.from_product(mouse, 5),
        ])

        assert len(cart) == 2
        assert cart.get(1).quantity == 5
        assert [item.product_id for item in cart.items] == [1, 2]

    def test_replace_all_rejects_remote_ids_when_anonymous(self, cart, mouse):
        """Test that an anonymous cart cannot hold remote ids."""
        item = CartLineItem.from_product(mouse, 1).model_copy(update={"remote_id": "row-1"})
        with pytest.raises(ValueError):
            cart.replace_all([item])
        assert len(cart) == 0

    def test_replace_all_accepts_remote_ids_when_owned(self, cart, mouse):
        """Test that an authenticated cart accepts remote ids."""
        cart.user_id = "user-1"
        item = CartLineItem.from_product(mouse, 1).model_copy(update={"remote_id": "row-1"})
        cart.replace_all([item])
        assert cart.get(1).remote_id == "row-1"


class TestSubscriptionsAndRemoteIds:
    """Test cases for change notification and remote id tracking."""

    def test_subscribers_notified_synchronously(self, cart, mouse):
        """Test that every change notifies subscribers before returning."""
        seen = []
        cart.subscribe(lambda store: seen.append(store.total_price()))

        cart.add_item(mouse, 1)
        assert seen == [18.0]

        cart.set_quantity(1, 2)
        cart.remove_item(1)
        assert seen == [18.0, 36.0, 0]

    def test_noop_changes_do_not_notify(self, cart):
        """Test that no-op operations stay silent."""
        seen = []
        cart.subscribe(lambda store: seen.append(len(store)))

        cart.remove_item(1)
        cart.set_quantity(1, 3)
        cart.clear()

        assert seen == []

    def test_unsubscribe(self, cart, mouse):
        """Test that an unsubscribed callback is no longer called."""
        seen = []
        unsubscribe = cart.subscribe(lambda store: seen.append(1))
        unsubscribe()
        unsubscribe()

        cart.add_item(mouse, 1)
        assert seen == []

    def test_set_remote_id_requires_owner(self, cart, mouse):
        """Test that remote ids are not attached to an anonymous cart."""
        cart.add_item(mouse, 1)
        assert cart.set_remote_id(1, "row-1") is False
        assert cart.get(1).remote_id is None

    def test_set_remote_id(self, cart, mouse):
        """Test attaching a remote id to an owned cart."""
        cart.user_id = "user-1"
        cart.add_item(mouse, 1)
        assert cart.set_remote_id(1, "row-1", user_id="user-1") is True
        assert cart.get(1).remote_id == "row-1"

    def test_set_remote_id_for_other_user_is_ignored(self, cart, mouse):
        """Test that a late result for a previous user is not attached."""
        cart.user_id = "user-2"
        cart.add_item(mouse, 1)
        assert cart.set_remote_id(1, "row-1", user_id="user-1") is False
        assert cart.get(1).remote_id is None

    def test_set_remote_id_for_removed_item(self, cart):
        """Test that a remote id for a product no longer in the cart is dropped."""
        cart.user_id = "user-1"
        assert cart.set_remote_id(1, "row-1") is False

    def test_carts_are_independent(self, mouse):
        """Test that two stores never share state."""
        first = CartStore()
        second = CartStore()
        first.add_item(mouse, 1)
        assert len(second) == 0
