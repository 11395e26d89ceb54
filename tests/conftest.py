"""Pytest configuration and fakes for the cart sync tests."""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from cartsync.cart import CartStore
from cartsync.db import InMemoryCartRecordStore
from cartsync.models import AuthEvent, CartLineItem, ProductSnapshot, RemoteCartRecord
from cartsync.notifications import Notifier
from cartsync.persistence import PersistenceAdapter
from cartsync.session import SessionProvider


class FakeCartRecordStore(InMemoryCartRecordStore):
    """
    In-memory store with hooks for ordering and failure tests.

    - list_gates[user_id]: list_for_user(user_id) waits for this event
    - insert_gates, update_gates: consumed in call order; each call waits for
      its event (None means no wait)
    - failures[method]: exception raised by that method
    """

    def __init__(self) -> None:
        super().__init__()
        self.list_gates: Dict[str, asyncio.Event] = {}
        self.insert_gates: List[Optional[asyncio.Event]] = []
        self.update_gates: List[Optional[asyncio.Event]] = []
        self.failures: Dict[str, BaseException] = {}
        self.calls: List[tuple] = []

    def _maybe_fail(self, method: str) -> None:
        exc = self.failures.get(method)
        if exc is not None:
            raise exc

    async def list_for_user(self, user_id: str) -> List[RemoteCartRecord]:
        self.calls.append(("list_for_user", user_id))
        gate = self.list_gates.get(user_id)
        if gate is not None:
            await gate.wait()
        self._maybe_fail("list_for_user")
        return await super().list_for_user(user_id)

    async def get_item(self, user_id: str, product_id: int) -> Optional[RemoteCartRecord]:
        self.calls.append(("get_item", user_id, product_id))
        self._maybe_fail("get_item")
        return await super().get_item(user_id, product_id)

    async def insert(self, user_id: str, item: CartLineItem) -> RemoteCartRecord:
        self.calls.append(("insert", user_id, item.product_id))
        gate = self.insert_gates.pop(0) if self.insert_gates else None
        if gate is not None:
            await gate.wait()
        self._maybe_fail("insert")
        return await super().insert(user_id, item)

    async def update(self, record_id: str, fields: Dict[str, Any]) -> RemoteCartRecord:
        self.calls.append(("update", record_id, dict(fields)))
        gate = self.update_gates.pop(0) if self.update_gates else None
        if gate is not None:
            await gate.wait()
        self._maybe_fail("update")
        return await super().update(record_id, fields)

    async def delete(self, record_id: str) -> bool:
        self.calls.append(("delete", record_id))
        self._maybe_fail("delete")
        return await super().delete(record_id)

    async def delete_all(self, user_id: str) -> int:
        self.calls.append(("delete_all", user_id))
        self._maybe_fail("delete_all")
        return await super().delete_all(user_id)

    def quantity_of(self, user_id: str, product_id: int) -> Optional[int]:
        for row in self.rows.values():
            if row["user_id"] == user_id and row["product_id"] == product_id:
                return row["quantity"]
        return None


class FakeSessionProvider(SessionProvider):
    """Session provider driven by the test."""

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id
        self.listeners: List[Callable[[AuthEvent], None]] = []
        self.sign_out_calls = 0
        self.current_user_gate: Optional[asyncio.Event] = None

    async def get_current_user(self) -> Optional[str]:
        user_id = self.user_id
        if self.current_user_gate is not None:
            await self.current_user_gate.wait()
        return user_id

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        self.user_id = None
        self.emit(AuthEvent.signed_out())

    def subscribe(self, listener: Callable[[AuthEvent], None]) -> Callable[[], None]:
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)

    def sign_in(self, user_id: str) -> None:
        self.user_id = user_id
        self.emit(AuthEvent.signed_in(user_id))

    def emit(self, event: AuthEvent) -> None:
        for listener in list(self.listeners):
            listener(event)


@pytest.fixture(autouse=True)
def event_log_file(tmp_path, monkeypatch):
    """Send telemetry events to a per-test file."""
    path = tmp_path / "events.log"
    monkeypatch.setattr("cartsync.events.EVENT_LOG_FILE", path)
    return path


@pytest.fixture
def mouse():
    return ProductSnapshot(product_id=1, title="Mouse", unit_price=20.0, discounted_unit_price=18.0)


@pytest.fixture
def keyboard():
    return ProductSnapshot(product_id=2, title="Keyboard", unit_price=50.0, discounted_unit_price=45.0)


@pytest.fixture
def cart():
    return CartStore()


@pytest.fixture
def record_store():
    return FakeCartRecordStore()


@pytest.fixture
def adapter(record_store):
    return PersistenceAdapter(record_store)


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def provider():
    return FakeSessionProvider()
