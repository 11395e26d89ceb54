"""
In-memory cart store for the current browser session.

The CartStore is the authoritative local representation of "what is in the
cart right now" and the single source of truth for rendering. It performs no
I/O: every operation is synchronous and never fails on valid input.

The store:
- Keeps line items ordered by first insertion and keyed by product_id
- Accumulates quantity when the same product is added twice
- Removes a line item when its quantity would drop to 0 or below
- Notifies subscribers synchronously after every change
- Tracks which user (if any) owns the cart, so remote ids are only attached
  to line items of an authenticated session

# NOTE: One CartStore per session context. There is no module-level cart;
    construct one per session and pass it to whatever needs it.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from .models import CartLineItem, ProductSnapshot

logger = logging.getLogger(__name__)

Subscriber = Callable[["CartStore"], None]


class CartStore:
    """
    Ordered collection of CartLineItem keyed by product_id.

    Usage:
        store = CartStore()
        unsubscribe = store.subscribe(lambda s: render(s.items))
        store.add_item(product, 2)
        store.total_price()
    """

    def __init__(self) -> None:
        self._items: Dict[int, CartLineItem] = {}
        self._subscribers: List[Subscriber] = []
        self.user_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def items(self) -> List[CartLineItem]:
        """Snapshot of the line items in insertion order."""
        return list(self._items.values())

    def get(self, product_id: int) -> Optional[CartLineItem]:
        return self._items.get(product_id)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def total_price(self) -> float:
        """
        Sum of discounted_unit_price * quantity over the current line items.

        Recomputed on every call; the store keeps no separate running total.
        """
        return sum(item.discounted_unit_price * item.quantity for item in self._items.values())

    def summary(self) -> Dict[str, float]:
        """
        Compute a summary of the cart contents.

        Returns:
            Dictionary with:
            - count_items: number of line items
            - total_quantity: sum of all quantities
            - total_price: same value as total_price()
        """
        return {
            "count_items": len(self._items),
            "total_quantity": sum(item.quantity for item in self._items.values()),
            "total_price": self.total_price(),
        }

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback invoked with the store after every change.

        Returns:
            A function that removes the subscription. Calling it twice is safe.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            callback(self)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_item(self, product: ProductSnapshot, quantity: int = 1) -> Optional[CartLineItem]:
        """
        Add a product to the cart or accumulate quantity if it is already present.

        The resulting quantity has no upper bound. Catalog values of an existing
        line item are kept as they were snapshotted on first add. A quantity
        below 1 adds nothing.

        Returns:
            The line item after the change (or the untouched existing one)
        """
        existing = self._items.get(product.product_id)
        if quantity < 1:
            logger.debug("Ignoring add of product %s with quantity %s", product.product_id, quantity)
            return existing

        if existing:
            item = existing.model_copy(update={"quantity": existing.quantity + quantity})
        else:
            item = CartLineItem.from_product(product, quantity)

        self._items[product.product_id] = item
        self._notify()
        return item

    def set_quantity(self, product_id: int, quantity: int) -> Optional[CartLineItem]:
        """
        Set a line item's quantity exactly.

        A quantity of 0 or below removes the line item. Unknown product ids are
        a no-op.

        Returns:
            The updated line item, or None if it was removed or never existed
        """
        if quantity <= 0:
            self.remove_item(product_id)
            return None

        existing = self._items.get(product_id)
        if existing is None:
            return None

        item = existing.model_copy(update={"quantity": quantity})
        self._items[product_id] = item
        self._notify()
        return item

    def remove_item(self, product_id: int) -> Optional[CartLineItem]:
        """Remove a line item if present; returns the removed item."""
        removed = self._items.pop(product_id, None)
        if removed is not None:
            self._notify()
        return removed

    def clear(self) -> None:
        """Empty the cart."""
        if not self._items:
            return
        self._items = {}
        self._notify()

    def replace_all(self, items: Iterable[CartLineItem]) -> None:
        """
        Replace the cart contents wholesale.

        Used by the session reconciler after loading the remote cart. When the
        batch contains the same product_id more than once, the later entry wins
        and keeps the position of the first occurrence.

        Raises:
            ValueError: If an item carries a remote_id while no user owns the cart
        """
        replacement: Dict[int, CartLineItem] = {}
        for item in items:
            if item.remote_id is not None and self.user_id is None:
                raise ValueError(
                    f"line item for product {item.product_id} has a remote_id but the cart is anonymous"
                )
            if item.product_id in replacement:
                logger.debug("Duplicate product %s in replacement batch, keeping later entry", item.product_id)
            replacement[item.product_id] = item

        self._items = replacement
        self._notify()

    def set_remote_id(self, product_id: int, remote_id: str, user_id: Optional[str] = None) -> bool:
        """
        Attach the id of the persisted row to a line item.

        Skipped when the cart is anonymous, when the product has been removed
        in the meantime, or when user_id is given and no longer owns the cart.

        Returns:
            True if the remote id was attached
        """
        if self.user_id is None:
            return False
        if user_id is not None and user_id != self.user_id:
            return False

        existing = self._items.get(product_id)
        if existing is None:
            return False
        if existing.remote_id == remote_id:
            return True

        self._items[product_id] = existing.model_copy(update={"remote_id": remote_id})
        self._notify()
        return True
