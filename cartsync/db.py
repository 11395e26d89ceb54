"""
Persistence layer for remote cart records.

This module defines the keyed record store the Persistence Adapter talks to,
and two implementations:

- SupabaseCartRecordStore: the cart_items table in Supabase, accessed through
  the async supabase-py client. Row-level security scopes rows to the signed
  in user.
- InMemoryCartRecordStore: a process-local store with the same semantics
  (including the (user_id, product_id) uniqueness constraint). Used for local
  development without Supabase credentials and in tests.

All store methods raise CartSyncError subclasses (see cartsync.errors); raw
client exceptions never escape this module.

Table layout (cart_items):
    id uuid primary key, user_id uuid, product_id integer, product_title text,
    product_price numeric, product_discounted_price numeric null,
    product_image text null, quantity integer, created_at timestamptz,
    updated_at timestamptz, unique (user_id, product_id)
"""

import itertools
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from supabase import AsyncClient, acreate_client

from .config import CartConfig, SupabaseConfig
from .errors import RecordNotFoundError, TransientError, classify_error
from .models import CartLineItem, RemoteCartRecord

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _insert_row(user_id: str, item: CartLineItem) -> Dict[str, Any]:
    """Column mapping for a new cart_items row."""
    return {
        "user_id": user_id,
        "product_id": item.product_id,
        "product_title": item.title,
        "product_price": item.unit_price,
        "product_discounted_price": item.discounted_unit_price,
        "product_image": item.thumbnail_image,
        "quantity": item.quantity,
    }


class CartRecordStore(ABC):
    """
    Abstract keyed record store for persisted cart rows.

    Implementations must enforce uniqueness of (user_id, product_id) and raise
    CartSyncError subclasses on failure.
    """

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[RemoteCartRecord]:
        """Return all records of a user, newest first."""

    @abstractmethod
    async def get_item(self, user_id: str, product_id: int) -> Optional[RemoteCartRecord]:
        """Return the record for (user_id, product_id), or None."""

    @abstractmethod
    async def insert(self, user_id: str, item: CartLineItem) -> RemoteCartRecord:
        """Insert a new record built from a line item."""

    @abstractmethod
    async def insert_many(self, user_id: str, items: Iterable[CartLineItem]) -> List[RemoteCartRecord]:
        """Insert several records in one request."""

    @abstractmethod
    async def update(self, record_id: str, fields: Dict[str, Any]) -> RemoteCartRecord:
        """
        Update columns of an existing record.

        Raises:
            RecordNotFoundError: If no record has this id
        """

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        """Delete a record by id; returns whether it existed."""

    @abstractmethod
    async def delete_all(self, user_id: str) -> int:
        """Delete every record of a user; returns the number removed."""


# ============================================================================
# Supabase
# ============================================================================

async def create_supabase_client(url: Optional[str] = None, key: Optional[str] = None) -> AsyncClient:
    """
    Create an async Supabase client with the anon/public key.

    The client respects row-level security, so cart rows are only visible to
    the signed in user.

    Raises:
        RuntimeError: If SUPABASE_URL or SUPABASE_ANON_KEY is not configured
    """
    url = url or SupabaseConfig.get_url()
    key = key or SupabaseConfig.get_anon_key()
    if not url or not key:
        raise RuntimeError("Missing SUPABASE_URL or SUPABASE_ANON_KEY in .env")
    return await acreate_client(url, key)


class SupabaseCartRecordStore(CartRecordStore):
    """
    cart_items table accessed through supabase-py.

    Usage:
        client = await create_supabase_client()
        store = SupabaseCartRecordStore(client)
        records = await store.list_for_user(user_id)
    """

    def __init__(self, client: AsyncClient, table_name: Optional[str] = None):
        self.client = client
        self.table_name = table_name or CartConfig.get_table_name()

    def _table(self):
        return self.client.table(self.table_name)

    async def _execute(self, query, operation: str) -> List[Dict[str, Any]]:
        try:
            response = await query.execute()
        except Exception as e:
            raise classify_error(e, operation) from e
        return response.data or []

    async def list_for_user(self, user_id: str) -> List[RemoteCartRecord]:
        rows = await self._execute(
            self._table().select("*").eq("user_id", user_id).order("created_at", desc=True),
            "list_for_user",
        )
        return [RemoteCartRecord.from_row(row) for row in rows]

    async def get_item(self, user_id: str, product_id: int) -> Optional[RemoteCartRecord]:
        rows = await self._execute(
            self._table().select("*").eq("user_id", user_id).eq("product_id", product_id).limit(1),
            "get_item",
        )
        if not rows:
            return None
        return RemoteCartRecord.from_row(rows[0])

    async def insert(self, user_id: str, item: CartLineItem) -> RemoteCartRecord:
        rows = await self._execute(self._table().insert(_insert_row(user_id, item)), "insert")
        if not rows:
            # Insert succeeded but the policy hides the row from us
            raise classify_error(RuntimeError("insert returned no row"), "insert")
        return RemoteCartRecord.from_row(rows[0])

    async def insert_many(self, user_id: str, items: Iterable[CartLineItem]) -> List[RemoteCartRecord]:
        payload = [_insert_row(user_id, item) for item in items]
        if not payload:
            return []
        rows = await self._execute(self._table().insert(payload), "insert_many")
        return [RemoteCartRecord.from_row(row) for row in rows]

    async def update(self, record_id: str, fields: Dict[str, Any]) -> RemoteCartRecord:
        values = dict(fields)
        values["updated_at"] = _now().isoformat()
        rows = await self._execute(self._table().update(values).eq("id", record_id), "update")
        if not rows:
            raise RecordNotFoundError(f"cart record {record_id} not found", "update")
        return RemoteCartRecord.from_row(rows[0])

    async def delete(self, record_id: str) -> bool:
        rows = await self._execute(self._table().delete().eq("id", record_id), "delete")
        return bool(rows)

    async def delete_all(self, user_id: str) -> int:
        rows = await self._execute(self._table().delete().eq("user_id", user_id), "delete_all")
        return len(rows)


# ============================================================================
# In-memory
# ============================================================================

class InMemoryCartRecordStore(CartRecordStore):
    """
    Process-local cart_items table.

    Rows are stored as column dictionaries so they go through the same
    RemoteCartRecord.from_row() mapping as Supabase rows.
    """

    def __init__(self) -> None:
        self.rows: Dict[str, Dict[str, Any]] = {}
        self._seq = itertools.count()
        self._order: Dict[str, int] = {}

    def _find(self, user_id: str, product_id: int) -> Optional[Dict[str, Any]]:
        for row in self.rows.values():
            if row["user_id"] == user_id and row["product_id"] == product_id:
                return row
        return None

    async def list_for_user(self, user_id: str) -> List[RemoteCartRecord]:
        rows = [row for row in self.rows.values() if row["user_id"] == user_id]
        rows.sort(key=lambda row: self._order[row["id"]], reverse=True)
        return [RemoteCartRecord.from_row(row) for row in rows]

    async def get_item(self, user_id: str, product_id: int) -> Optional[RemoteCartRecord]:
        row = self._find(user_id, product_id)
        return RemoteCartRecord.from_row(row) if row else None

    async def insert(self, user_id: str, item: CartLineItem) -> RemoteCartRecord:
        if self._find(user_id, item.product_id) is not None:
            raise TransientError(
                f"duplicate key value violates unique constraint (user_id, product_id)=({user_id}, {item.product_id})",
                "insert",
            )
        now = _now()
        row = _insert_row(user_id, item)
        row.update({"id": str(uuid.uuid4()), "created_at": now, "updated_at": now})
        self.rows[row["id"]] = row
        self._order[row["id"]] = next(self._seq)
        return RemoteCartRecord.from_row(row)

    async def insert_many(self, user_id: str, items: Iterable[CartLineItem]) -> List[RemoteCartRecord]:
        return [await self.insert(user_id, item) for item in items]

    async def update(self, record_id: str, fields: Dict[str, Any]) -> RemoteCartRecord:
        row = self.rows.get(record_id)
        if row is None:
            raise RecordNotFoundError(f"cart record {record_id} not found", "update")
        row.update(fields)
        row["updated_at"] = _now()
        return RemoteCartRecord.from_row(row)

    async def delete(self, record_id: str) -> bool:
        self._order.pop(record_id, None)
        return self.rows.pop(record_id, None) is not None

    async def delete_all(self, user_id: str) -> int:
        doomed = [record_id for record_id, row in self.rows.items() if row["user_id"] == user_id]
        for record_id in doomed:
            await self.delete(record_id)
        return len(doomed)
