"""
UI-facing cart actions with optimistic local updates.

Every action follows the same contract:

1. Mutate the local CartStore (always succeeds, subscribers re-render at once).
2. If a user is signed in, mirror the change to the remote store through the
   PersistenceAdapter.
3. If the remote call fails, post a notification and keep the local change.
   Nothing is rolled back and nothing is retried.

Remote calls are not ordered against each other by default: two quick edits
of the same product can reach the store out of order and leave the remote
quantity different from the local one. With serialize_per_product enabled,
calls for the same product run one at a time in the order they were issued.

An edit or removal of a product whose add is still in flight always waits
for that add, then targets the row it produced.
"""

import asyncio
import logging
from contextlib import nullcontext
from typing import Callable, Dict, Optional, Set

from .cart import CartStore
from .config import CartConfig
from .errors import CartSyncError, RecordNotFoundError, SchemaMissingError, describe
from .events import (
    log_cart_cleared,
    log_cart_item_added,
    log_cart_item_removed,
    log_cart_quantity_updated,
    log_sync_failed,
)
from .models import ProductSnapshot, RemoteCartRecord
from .notifications import Notifier
from .persistence import PersistenceAdapter
from .utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

CLEAR_ALL_KEY = "__all__"


class CartSync:
    """
    Cart actions for one session.

    Args:
        cart: The session's CartStore
        adapter: PersistenceAdapter for the remote store
        current_user: Callable returning the user owning the cart (or None)
        notifier: Where sync failures are reported
        serialize_per_product: Queue remote calls per product (defaults to
            CART_SERIALIZE_PER_PRODUCT)
    """

    def __init__(
        self,
        cart: CartStore,
        adapter: PersistenceAdapter,
        current_user: Callable[[], Optional[str]],
        notifier: Optional[Notifier] = None,
        serialize_per_product: Optional[bool] = None,
    ):
        self.cart = cart
        self.adapter = adapter
        self.current_user = current_user
        self.notifier = notifier or Notifier()
        if serialize_per_product is None:
            serialize_per_product = CartConfig.serialize_per_product()
        self._locks: Optional[KeyedLock] = KeyedLock() if serialize_per_product else None
        # product_id -> futures resolved with the record (or None) of each add in flight
        self._pending_adds: Dict[int, Set["asyncio.Future[Optional[RemoteCartRecord]]"]] = {}

    @property
    def serialized(self) -> bool:
        return self._locks is not None

    def _lock_for(self, key):
        if self._locks is None:
            return nullcontext()
        return self._locks.lock(key)

    def _track_add(self, product_id: int) -> "asyncio.Future[Optional[RemoteCartRecord]]":
        done = asyncio.get_running_loop().create_future()
        self._pending_adds.setdefault(product_id, set()).add(done)
        return done

    def _finish_add(self, product_id: int, done: "asyncio.Future", record: Optional[RemoteCartRecord]) -> None:
        if not done.done():
            done.set_result(record)
        pending = self._pending_adds.get(product_id)
        if pending is not None:
            pending.discard(done)
            if not pending:
                del self._pending_adds[product_id]

    async def _resolve_remote_id(self, user_id: str, product_id: int, known: Optional[str]) -> Optional[str]:
        """
        Id of the remote row an edit should target.

        When the line item had no remote id yet, wait for the adds of that
        product still in flight and use the row a successful one produced for
        this user.
        """
        if known is not None:
            return known
        pending = list(self._pending_adds.get(product_id, ()))
        if not pending:
            return None
        logger.debug("Waiting for %d in-flight add(s) of product %s", len(pending), product_id)
        await asyncio.wait(pending)
        for done in pending:
            record = done.result()
            if record is not None and record.user_id == user_id:
                return record.id
        return None

    def _report(self, error: CartSyncError, user_id: Optional[str], product_id: Optional[int] = None) -> None:
        """Log, record and notify a remote failure. Local state is left as is."""
        log_sync_failed(user_id, error.operation, error.kind, str(error), product_id=product_id)

        if isinstance(error, RecordNotFoundError):
            logger.debug("Cart record vanished during %s (product %s): %s", error.operation, product_id, error)
            return

        if isinstance(error, SchemaMissingError):
            logger.error(
                "Cart table missing during %s; run pending migrations. %s", error.operation, error
            )
        else:
            logger.warning("Cart sync %s failed (%s): %s", error.operation, error.kind, error)

        self.notifier.error(describe(error), kind=error.kind)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def add_to_cart(self, product: ProductSnapshot, quantity: int = 1) -> Optional[RemoteCartRecord]:
        """
        Add a product locally, then add the same quantity to the remote cart.

        On success the remote record id is attached to the line item. A
        quantity below 1 is ignored entirely.

        Returns:
            The remote record, or None when anonymous or the sync failed
        """
        if quantity < 1:
            return None

        self.cart.add_item(product, quantity)
        user_id = self.current_user()
        if user_id is None:
            log_cart_item_added(None, product.product_id, quantity, synced=False)
            return None

        done = self._track_add(product.product_id)
        record = None
        try:
            async with self._lock_for(product.product_id):
                record = await self.adapter.sync_add(user_id, product, quantity)
        except CartSyncError as e:
            self._report(e, user_id, product.product_id)
            log_cart_item_added(user_id, product.product_id, quantity, synced=False)
            return None
        finally:
            if record is not None:
                self.cart.set_remote_id(product.product_id, record.id, user_id=user_id)
            self._finish_add(product.product_id, done, record)

        log_cart_item_added(user_id, product.product_id, quantity, synced=True)
        return record

    async def update_quantity(self, product_id: int, quantity: int) -> Optional[RemoteCartRecord]:
        """
        Set a product's quantity locally, then overwrite the remote quantity.

        A quantity of 0 or below removes the product (locally and remotely).

        Returns:
            The updated remote record, or None when removed, anonymous, not
            yet synced or the sync failed
        """
        existing = self.cart.get(product_id)
        known = existing.remote_id if existing else None
        self.cart.set_quantity(product_id, quantity)

        user_id = self.current_user()
        remote_id = await self._resolve_remote_id(user_id, product_id, known) if user_id else None
        if user_id is None or remote_id is None:
            log_cart_quantity_updated(user_id, product_id, quantity, synced=False)
            return None

        try:
            async with self._lock_for(product_id):
                record = await self.adapter.sync_set_quantity(remote_id, quantity)
        except CartSyncError as e:
            self._report(e, user_id, product_id)
            log_cart_quantity_updated(user_id, product_id, quantity, synced=False)
            return None

        log_cart_quantity_updated(user_id, product_id, quantity, synced=True)
        return record

    async def remove_from_cart(self, product_id: int) -> bool:
        """
        Remove a product locally, then delete its remote record.

        Returns:
            True if a remote record was deleted
        """
        removed = self.cart.remove_item(product_id)
        known = removed.remote_id if removed else None

        user_id = self.current_user()
        remote_id = await self._resolve_remote_id(user_id, product_id, known) if user_id else None
        if user_id is None or remote_id is None:
            log_cart_item_removed(user_id, product_id, synced=False)
            return False

        try:
            async with self._lock_for(product_id):
                deleted = await self.adapter.sync_remove(remote_id)
        except CartSyncError as e:
            self._report(e, user_id, product_id)
            log_cart_item_removed(user_id, product_id, synced=False)
            return False

        log_cart_item_removed(user_id, product_id, synced=True)
        return deleted

    async def clear_cart(self) -> bool:
        """
        Empty the cart locally and delete all of the user's remote records.

        This is the explicit "clear cart" action. Signing out never deletes
        remote records.

        Returns:
            True if the remote cart was cleared
        """
        self.cart.clear()
        user_id = self.current_user()
        if user_id is None:
            log_cart_cleared(None, synced=False)
            return False

        try:
            async with self._lock_for(CLEAR_ALL_KEY):
                cleared = await self.adapter.sync_clear_all(user_id)
        except CartSyncError as e:
            self._report(e, user_id)
            log_cart_cleared(user_id, synced=False)
            return False

        log_cart_cleared(user_id, synced=True)
        return cleared

    async def push_local_cart(self) -> bool:
        """
        Overwrite the user's remote cart with the current local cart and attach
        the new record ids to the line items.

        Returns:
            True if the remote cart now mirrors the local one
        """
        user_id = self.current_user()
        if user_id is None:
            return False

        try:
            async with self._lock_for(CLEAR_ALL_KEY):
                records = await self.adapter.sync_replace_all(user_id, self.cart.items)
        except CartSyncError as e:
            self._report(e, user_id)
            return False

        for record in records:
            self.cart.set_remote_id(record.product_id, record.id, user_id=user_id)
        return True
