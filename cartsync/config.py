"""
Configuration management for the cart sync core.

This module centralizes environment variable loading from the .env file at
project root. It is imported by cartsync.db and cartsync.events, so .env is
loaded before any other code reads environment variables.

In production .env will usually not exist; load_dotenv() is safe to call and
will no-op, and platform environment variables are used instead.

Environment Variables:
- SUPABASE_URL: Required, Supabase project URL
- SUPABASE_ANON_KEY: Required, anon/public key (row-level security applies)
- CART_TABLE_NAME: Optional, defaults to "cart_items"
- CART_EVENT_LOG_FILE: Optional, JSONL telemetry file, defaults to "events.log"
- CART_SERIALIZE_PER_PRODUCT: Optional, "1"/"true" to run remote calls for the
  same product one at a time (defaults to off)
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_TABLE_NAME = "cart_items"
DEFAULT_EVENT_LOG_FILE = "events.log"

_TRUTHY = {"1", "true", "yes", "on"}


def load_env_file() -> None:
    """
    Load environment variables from .env at project root.

    Safe to call multiple times. Existing environment variables take precedence
    over values in the file.
    """
    # cartsync/config.py -> cartsync/ -> project root
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env", override=False)


load_env_file()


class SupabaseConfig:
    """Configuration for the Supabase project backing the cart."""

    @staticmethod
    def get_url() -> Optional[str]:
        """
        Get the Supabase project URL.

        Returns:
            URL string or None if not set
        """
        return os.getenv("SUPABASE_URL")

    @staticmethod
    def get_anon_key() -> Optional[str]:
        """
        Get the Supabase anon key.

        Returns:
            Key string or None if not set
        """
        return os.getenv("SUPABASE_ANON_KEY")


class CartConfig:
    """Configuration for cart persistence and sync behaviour."""

    @staticmethod
    def get_table_name() -> str:
        return os.getenv("CART_TABLE_NAME", DEFAULT_TABLE_NAME)

    @staticmethod
    def get_event_log_file() -> Path:
        return Path(os.getenv("CART_EVENT_LOG_FILE", DEFAULT_EVENT_LOG_FILE))

    @staticmethod
    def serialize_per_product() -> bool:
        """
        Whether remote calls for the same product are queued one after another.

        Returns:
            True if CART_SERIALIZE_PER_PRODUCT is set to a truthy value
        """
        return os.getenv("CART_SERIALIZE_PER_PRODUCT", "").strip().lower() in _TRUTHY


def get_required_env_vars() -> dict:
    """
    Get a dictionary of all required environment variables and their status.

    Returns:
        Dictionary with keys:
        - supabase_url: bool (True if set)
        - supabase_anon_key: bool (True if set)
    """
    return {
        "supabase_url": SupabaseConfig.get_url() is not None,
        "supabase_anon_key": SupabaseConfig.get_anon_key() is not None,
    }


def validate_required_config() -> None:
    """
    Validate that all required environment variables are set.

    Raises:
        RuntimeError: If any required configuration is missing
    """
    missing = []

    if not SupabaseConfig.get_url():
        missing.append("SUPABASE_URL")

    if not SupabaseConfig.get_anon_key():
        missing.append("SUPABASE_ANON_KEY")

    if missing:
        raise RuntimeError(
            "Missing required environment variables:\n"
            + "\n".join(f"  - {var}" for var in missing)
            + "\n\nPlease create a .env file at the project root with these variables."
        )
