"""
Per-session wiring of the cart sync core.

A CartSessionContext owns exactly one CartStore, one SessionReconciler and
one CartSync, built explicitly for a single browser session. Nothing is kept
at module level, so two contexts (or two tests) never share a cart.

Usage:
    client = await create_supabase_client()
    async with CartSessionContext.from_supabase(client) as session:
        session.cart.subscribe(render)
        await session.actions.add_to_cart(product, 2)
"""

import logging
from typing import Callable, Optional

from supabase import AsyncClient

from .cart import CartStore
from .db import CartRecordStore, SupabaseCartRecordStore
from .models import AuthEvent
from .notifications import Notifier
from .persistence import PersistenceAdapter
from .session import SessionProvider, SessionReconciler, SupabaseSessionProvider
from .sync import CartSync

logger = logging.getLogger(__name__)


class CartSessionContext:
    """Cart, reconciler and actions for one session, with start/close lifecycle."""

    def __init__(
        self,
        provider: SessionProvider,
        record_store: CartRecordStore,
        notifier: Optional[Notifier] = None,
        serialize_per_product: Optional[bool] = None,
    ):
        self.provider = provider
        self.cart = CartStore()
        self.notifier = notifier or Notifier()
        self.adapter = PersistenceAdapter(record_store)
        self.reconciler = SessionReconciler(self.cart, self.adapter)
        self.actions = CartSync(
            self.cart,
            self.adapter,
            current_user=lambda: self.cart.user_id,
            notifier=self.notifier,
            serialize_per_product=serialize_per_product,
        )
        self._unsubscribe: Optional[Callable[[], None]] = None

    @classmethod
    def from_supabase(cls, client: AsyncClient, **kwargs) -> "CartSessionContext":
        return cls(SupabaseSessionProvider(client), SupabaseCartRecordStore(client), **kwargs)

    @property
    def user_id(self) -> Optional[str]:
        """User owning the cart, None while anonymous or switching users."""
        return self.cart.user_id

    async def start(self) -> None:
        """
        Start reconciling: subscribe to auth events and load the cart of the
        user already signed in, if any.
        """
        if self._unsubscribe is not None:
            return
        self.reconciler.start()
        self._unsubscribe = self.provider.subscribe(self.reconciler.submit)
        user_id = await self.provider.get_current_user()
        self.reconciler.submit(AuthEvent.initial(user_id))
        logger.debug("Cart session started (initial user: %s)", user_id)

    async def sign_out(self) -> None:
        """Sign out through the provider; the resulting event clears the cart."""
        await self.provider.sign_out()

    async def close(self) -> None:
        """Unsubscribe from auth events and stop the reconciler."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.reconciler.stop()

    async def __aenter__(self) -> "CartSessionContext":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
