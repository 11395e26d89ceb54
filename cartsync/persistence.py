"""
Persistence Adapter: mirrors local cart mutations to the remote record store.

The adapter keeps no state of its own. Each operation is independent and
best-effort: it does not retry, and it never touches the local CartStore.
Failures are raised as CartSyncError subclasses tagged with the adapter
operation; the caller decides whether to surface them (see cartsync.sync).

Merge semantics:
- sync_add is additive: when a record for (user_id, product_id) exists, the
  given quantity is added to the stored quantity, so concurrent adds from two
  devices are both preserved.
- sync_set_quantity overwrites: an explicit quantity edit on a known record
  is last-write-wins.
"""

import logging
from contextlib import contextmanager
from typing import Iterable, List, Optional

from .db import CartRecordStore
from .errors import CartSyncError, UnauthenticatedError, classify_error
from .models import CartLineItem, ProductSnapshot, RemoteCartRecord

logger = logging.getLogger(__name__)


@contextmanager
def translate_errors(operation: str):
    """
    Re-raise anything coming out of the store as a CartSyncError tagged with
    the adapter operation.
    """
    try:
        yield
    except CartSyncError as e:
        e.operation = operation
        raise
    except Exception as e:
        raise classify_error(e, operation) from e


def _require_user(user_id: Optional[str], operation: str) -> str:
    if not user_id:
        raise UnauthenticatedError(operation=operation)
    return user_id


class PersistenceAdapter:
    """
    Translate cart mutations into create/update/delete calls on a CartRecordStore.

    Usage:
        adapter = PersistenceAdapter(SupabaseCartRecordStore(client))
        record = await adapter.sync_add(user_id, product, 2)
    """

    def __init__(self, store: CartRecordStore):
        self.store = store

    async def sync_add(self, user_id: Optional[str], product: ProductSnapshot, quantity: int) -> RemoteCartRecord:
        """
        Add quantity of a product to the user's remote cart.

        Looks up the existing record for (user_id, product_id). If found, the
        stored quantity is increased by quantity; otherwise a new record is
        inserted with the product snapshot.

        Returns:
            The resulting remote record

        Raises:
            UnauthenticatedError: If user_id is empty
            CartSyncError: On any store failure
        """
        user_id = _require_user(user_id, "sync_add")
        with translate_errors("sync_add"):
            existing = await self.store.get_item(user_id, product.product_id)
            if existing is not None:
                return await self.store.update(existing.id, {"quantity": existing.quantity + quantity})
            return await self.store.insert(user_id, CartLineItem.from_product(product, quantity))

    async def sync_set_quantity(self, remote_id: str, quantity: int) -> Optional[RemoteCartRecord]:
        """
        Set the stored quantity of a record exactly.

        A quantity of 0 or below deletes the record instead.

        Returns:
            The updated record, or None when the record was deleted

        Raises:
            RecordNotFoundError: If the record no longer exists
            CartSyncError: On any other store failure
        """
        with translate_errors("sync_set_quantity"):
            if quantity <= 0:
                await self.store.delete(remote_id)
                return None
            return await self.store.update(remote_id, {"quantity": quantity})

    async def sync_remove(self, remote_id: str) -> bool:
        """
        Delete a record by id.

        Returns:
            True if the record existed and was removed
        """
        with translate_errors("sync_remove"):
            return await self.store.delete(remote_id)

    async def sync_clear_all(self, user_id: Optional[str]) -> bool:
        """
        Delete every record of a user.

        Returns:
            True once the delete request succeeded (also when there was nothing to delete)
        """
        user_id = _require_user(user_id, "sync_clear_all")
        with translate_errors("sync_clear_all"):
            removed = await self.store.delete_all(user_id)
        logger.debug("Cleared %d remote cart records for user %s", removed, user_id)
        return True

    async def sync_replace_all(self, user_id: Optional[str], items: Iterable[CartLineItem]) -> List[RemoteCartRecord]:
        """
        Push the whole local cart to the remote store.

        Clears the user's records first, then inserts one record per line item.
        Not atomic: if the insert fails the remote cart is left empty.

        Returns:
            The inserted records
        """
        user_id = _require_user(user_id, "sync_replace_all")
        items = list(items)
        with translate_errors("sync_replace_all"):
            await self.store.delete_all(user_id)
            return await self.store.insert_many(user_id, items)

    async def fetch_all(self, user_id: Optional[str]) -> List[RemoteCartRecord]:
        """Read every record of a user, newest first."""
        user_id = _require_user(user_id, "fetch_all")
        with translate_errors("fetch_all"):
            return await self.store.list_for_user(user_id)
