"""
Session Reconciler: keeps the local cart consistent with the remote cart
across sign-in and sign-out.

Authentication changes arrive as discrete AuthEvent messages on a queue and
are consumed by a single reconciler task, the only place that replaces or
clears the CartStore on behalf of the session. Remote fetches run as separate
tasks and post their result back onto the same queue.

State machine:

    Anonymous / Authenticated(u1) --any auth event--> Authenticating
    Authenticating --fetch for u completes--> Authenticated(u)
    Authenticating --signed out--> Anonymous

- Sign-in (or an initial session with a user) fetches the user's remote cart
  and replaces the local cart with it. Anything added while anonymous is
  discarded.
- Sign-out clears the local cart. Remote rows are left untouched so they come
  back at the next sign-in.
- A failed fetch is logged and the user gets an empty cart; sign-in itself is
  never blocked.
- Every auth event bumps a generation counter. A fetch result whose
  generation is no longer current is discarded.
- Switching directly to another user drops the previous user's cart (and
  its owner) at once; the cart stays ownerless until the new fetch lands.
- An initial session snapshot arriving after a real sign-in or sign-out is
  stale and ignored.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Set, Union

from supabase import AsyncClient

from .cart import CartStore
from .errors import CartSyncError, SchemaMissingError, StaleGenerationError
from .events import log_cart_loaded
from .models import AuthEvent, AuthEventType, CartLineItem, RemoteCartRecord
from .persistence import PersistenceAdapter

logger = logging.getLogger(__name__)

AuthListener = Callable[[AuthEvent], None]


# ============================================================================
# Session providers
# ============================================================================

class SessionProvider(ABC):
    """
    Source of authentication state.

    Implementations emit AuthEvent messages to subscribers and expose the
    current user and sign-out.
    """

    @abstractmethod
    async def get_current_user(self) -> Optional[str]:
        """Return the id of the signed in user, or None."""

    @abstractmethod
    async def sign_out(self) -> None:
        """End the current session."""

    @abstractmethod
    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener for auth events; returns an unsubscribe function."""


class SupabaseSessionProvider(SessionProvider):
    """
    Session provider backed by Supabase Auth.

    Supabase auth change events are mapped as:
    - INITIAL_SESSION -> AuthEvent.initial(user id or None)
    - SIGNED_IN       -> AuthEvent.signed_in(user id)
    - SIGNED_OUT      -> AuthEvent.signed_out()
    Token refreshes and profile updates are ignored.
    """

    def __init__(self, client: AsyncClient):
        self.client = client

    async def get_current_user(self) -> Optional[str]:
        session = await self.client.auth.get_session()
        if session is None or session.user is None:
            return None
        return session.user.id

    async def sign_out(self) -> None:
        await self.client.auth.sign_out()

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        def on_change(event, session) -> None:
            auth_event = to_auth_event(str(getattr(event, "value", event)), session)
            if auth_event is not None:
                listener(auth_event)

        subscription = self.client.auth.on_auth_state_change(on_change)
        return subscription.unsubscribe


def to_auth_event(event: str, session) -> Optional[AuthEvent]:
    """Translate a Supabase auth change event name into an AuthEvent."""
    user = getattr(session, "user", None) if session is not None else None
    user_id = user.id if user is not None else None

    if event == "INITIAL_SESSION":
        return AuthEvent.initial(user_id)
    if event == "SIGNED_IN" and user_id:
        return AuthEvent.signed_in(user_id)
    if event == "SIGNED_OUT":
        return AuthEvent.signed_out()
    return None


# ============================================================================
# Reconciler
# ============================================================================

class ReconcilerState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


@dataclass
class FetchCompleted:
    """Result of a remote cart fetch, posted back to the reconciler queue."""
    generation: int
    user_id: str
    records: Optional[List[RemoteCartRecord]] = None
    error: Optional[CartSyncError] = None


Message = Union[AuthEvent, FetchCompleted]


class SessionReconciler:
    """
    Single-owner task reconciling the CartStore with auth transitions.

    Usage:
        reconciler = SessionReconciler(cart, adapter)
        reconciler.start()
        unsubscribe = provider.subscribe(reconciler.submit)
        ...
        await reconciler.stop()
    """

    def __init__(self, cart: CartStore, adapter: PersistenceAdapter):
        self.cart = cart
        self.adapter = adapter
        self.state = ReconcilerState.ANONYMOUS
        self.user_id: Optional[str] = None
        self.generation = 0
        self._transitions_seen = False
        self._queue: "asyncio.Queue[Message]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._fetches: Set[asyncio.Task] = set()
        self._current_fetch: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="cart-session-reconciler")

    async def stop(self) -> None:
        """Cancel the reconciler task and any fetch still in flight."""
        tasks = list(self._fetches)
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._fetches.clear()
        self._current_fetch = None
        self._task = None

    def submit(self, event: AuthEvent) -> None:
        """Queue an auth event. Safe to use directly as a provider listener."""
        self._queue.put_nowait(event)

    async def join(self, include_stale: bool = False) -> None:
        """
        Wait until queued events are handled and the current fetch (if any)
        has been applied.

        Args:
            include_stale: Also wait for fetches of superseded generations
        """
        while True:
            await self._queue.join()
            if include_stale:
                pending = [task for task in self._fetches if not task.done()]
            else:
                current = self._current_fetch
                pending = [current] if current is not None and not current.done() else []
            if not pending:
                if self._queue.empty():
                    return
                continue
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if isinstance(message, FetchCompleted):
                    self._handle_fetch_completed(message)
                else:
                    self._handle_auth_event(message)
            except Exception:
                logger.exception("Cart reconciler failed to handle %r", message)
            finally:
                self._queue.task_done()

    def _handle_auth_event(self, event: AuthEvent) -> None:
        if event.type == AuthEventType.INITIAL and self._transitions_seen:
            logger.debug("Ignoring initial session snapshot after a sign-in/sign-out event")
            return
        if event.type != AuthEventType.INITIAL:
            self._transitions_seen = True

        self.generation += 1
        previous = self.state
        self.state = ReconcilerState.AUTHENTICATING
        logger.debug("Auth event %s (generation %d), %s -> authenticating", event.type.value, self.generation, previous.value)

        if event.type == AuthEventType.SIGNED_OUT or event.user_id is None:
            self._enter_anonymous(clear=event.type == AuthEventType.SIGNED_OUT or self.user_id is not None)
            return

        if self.cart.user_id is not None and self.cart.user_id != event.user_id:
            # The previous user's items and row ids must not be edited on behalf of the new one
            self.cart.user_id = None
            self.cart.clear()
            logger.info("Cart of user %s dropped while switching to %s", self.user_id, event.user_id)

        self.user_id = event.user_id
        self._start_fetch(self.generation, event.user_id)

    def _enter_anonymous(self, clear: bool) -> None:
        self._current_fetch = None
        self.user_id = None
        self.cart.user_id = None
        self.state = ReconcilerState.ANONYMOUS
        if clear:
            self.cart.clear()
        logger.info("Cart session is anonymous (cart cleared: %s)", clear)

    def _start_fetch(self, generation: int, user_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._fetch(generation, user_id))
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)
        self._current_fetch = task

    async def _fetch(self, generation: int, user_id: str) -> None:
        try:
            records = await self.adapter.fetch_all(user_id)
        except CartSyncError as e:
            self._queue.put_nowait(FetchCompleted(generation, user_id, error=e))
        else:
            self._queue.put_nowait(FetchCompleted(generation, user_id, records=records))

    def _check_generation(self, generation: int) -> None:
        if generation != self.generation:
            raise StaleGenerationError(generation, self.generation)

    def _handle_fetch_completed(self, result: FetchCompleted) -> None:
        try:
            self._check_generation(result.generation)
        except StaleGenerationError as e:
            logger.debug("Discarding cart fetch for user %s: %s", result.user_id, e)
            return

        self.cart.user_id = result.user_id
        self.state = ReconcilerState.AUTHENTICATED

        if result.error is not None:
            if isinstance(result.error, SchemaMissingError):
                logger.error("Could not load cart for user %s: %s", result.user_id, result.error)
            else:
                logger.warning("Could not load cart for user %s (%s): %s", result.user_id, result.error.kind, result.error)
            self.cart.replace_all([])
            log_cart_loaded(result.user_id, 0, degraded=True)
            return

        items = [CartLineItem.from_record(record) for record in result.records or []]
        self.cart.replace_all(items)
        logger.info("Loaded %d cart items for user %s", len(items), result.user_id)
        log_cart_loaded(result.user_id, len(items))
