# cartsync/events.py
"""
Telemetry events for cart activity and remote sync failures.

Responsibilities:
- Provide a single log_event(...) function that appends one JSON line to the
  event log file and never raises (telemetry is strictly non-blocking).
- Provide small helpers for the cart events:
  - log_cart_item_added(...)
  - log_cart_quantity_updated(...)
  - log_cart_item_removed(...)
  - log_cart_cleared(...)
  - log_cart_loaded(...)
  - log_sync_failed(...)

Sync failures of kind "schema_missing" are tagged with
operator_action="run_migrations" so they can be told apart from user errors.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .config import CartConfig

logger = logging.getLogger(__name__)

EVENT_LOG_FILE = CartConfig.get_event_log_file()


def _write_to_file(record: Dict[str, Any]) -> None:
    """
    Append a single JSON record to the event log as JSONL.
    Never raise exceptions.
    """
    try:
        path = Path(EVENT_LOG_FILE)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
    except Exception as exc:
        logger.debug("Failed to write event to %s: %s", EVENT_LOG_FILE, exc)


def log_event(
    event: str,
    user_id: Optional[str],
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Core event logger.

    Builds a record with keys ts, event, user_id, payload and appends it to
    the event log. Never raises.
    """
    record = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "user_id": user_id,
        "payload": payload or {},
    }
    _write_to_file(record)


# ---------------------------------------------------------------------------
# Helper functions for common event types
# ---------------------------------------------------------------------------

def log_cart_item_added(user_id: Optional[str], product_id: int, quantity: int, synced: bool) -> None:
    log_event("cart_item_added", user_id, {"product_id": product_id, "quantity": quantity, "synced": synced})


def log_cart_quantity_updated(user_id: Optional[str], product_id: int, quantity: int, synced: bool) -> None:
    log_event("cart_quantity_updated", user_id, {"product_id": product_id, "quantity": quantity, "synced": synced})


def log_cart_item_removed(user_id: Optional[str], product_id: int, synced: bool) -> None:
    log_event("cart_item_removed", user_id, {"product_id": product_id, "synced": synced})


def log_cart_cleared(user_id: Optional[str], synced: bool) -> None:
    log_event("cart_cleared", user_id, {"synced": synced})


def log_cart_loaded(user_id: str, item_count: int, degraded: bool = False) -> None:
    """
    Log a cart_loaded event after sign-in.

    payload:
    {
        "item_count": 3,
        "degraded": false   # true when the fetch failed and an empty cart was used
    }
    """
    log_event("cart_loaded", user_id, {"item_count": item_count, "degraded": degraded})


def log_sync_failed(
    user_id: Optional[str],
    operation: Optional[str],
    kind: str,
    message: str,
    product_id: Optional[int] = None,
) -> None:
    """
    Log a sync_failed event.

    payload:
    {
        "operation": "sync_add",
        "kind": "schema_missing",
        "message": "...",
        "product_id": 1,
        "operator_action": "run_migrations"   # only for schema_missing
    }
    """
    payload: Dict[str, Any] = {
        "operation": operation,
        "kind": kind,
        "message": message,
    }
    if product_id is not None:
        payload["product_id"] = product_id
    if kind == "schema_missing":
        payload["operator_action"] = "run_migrations"
    log_event("sync_failed", user_id, payload)
