"""
Session State Store for Shop Bot
================================

This module keeps the state of every chat session (current step + order
draft + idempotency markers) with a two-tier storage strategy:
1. **In-Memory Cache**: Fast access for active sessions
2. **Database Persistence**: The abandoned-cart snapshot, durable across restarts

Architecture Overview:
----------------------
The store uses a write-through cache pattern:
- Reads check the cache first, then fall back to the abandoned-cart snapshot
- Writes update both the cache and the snapshot
- The cache is bounded (LRU) and entries expire after SESSION_TTL_SECONDS

Recovery Contract:
------------------
``load`` never loses a known session:
1. cache hit -> cached step and draft
2. cache miss -> step and draft from the AbandonedCart snapshot
3. no snapshot -> a minimal draft (one unit of the conversation's product,
   empty customer fields) at the ``initial`` step

The third case is the degraded path: a session that lost its cache entry
before a snapshot was ever written (for instance mid express flow) restarts
from the product page instead of failing.

Idempotent Save:
----------------
``save(session_id, step, draft)`` claims the ``{step}_saved`` marker as part
of the same call that writes the snapshot. A second call for the same step
is a logged no-op, so handlers may call it without tracking whether they
already did. ``checkpoint`` is the unguarded variant used for transitions
that complete no collection step (navigation, payment state).

Persistence failures are logged and rolled back; the cache keeps the new
state so the conversation continues (a write failure to the durable snapshot
must not block the shopper).

Thread Safety:
--------------
All cache operations are protected by a threading.Lock. Different sessions
may be handled concurrently; a single session has one active conversation.
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from ..config import SESSION_MAX_CACHE_SIZE, SESSION_TTL_SECONDS, TEMP_SESSION_PREFIX
from ..exceptions import PersistenceError
from ..flow.draft import OrderDraft
from ..flow.steps import Step, coerce_step
from ..logging_config import mask_phone
from ..models import AbandonedCart, ChatMessage, Conversation, PaymentTransaction, Product
from .idempotency import IdempotencyGuard

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """Step + draft of one session, as held in the cache."""
    session_id: str
    step: Step
    draft: OrderDraft
    product_id: Optional[str] = None
    store_id: Optional[str] = None

    def copy(self) -> "SessionState":
        return SessionState(
            session_id=self.session_id,
            step=self.step,
            draft=self.draft.model_copy(deep=True),
            product_id=self.product_id,
            store_id=self.store_id,
        )


@dataclass
class LoadedSession:
    """Result of ``SessionStateStore.load``."""
    state: SessionState
    source: str  # "cache", "snapshot" or "minimal"


# =============================================================================
# Session Cache
# =============================================================================

class SessionCache:
    """
    Bounded LRU cache of SessionState with a per-entry TTL.

    Entries are copied on the way in and on the way out, so callers can
    mutate what they get without touching the cached state.
    """

    def __init__(self, max_size: int = SESSION_MAX_CACHE_SIZE, ttl_seconds: int = SESSION_TTL_SECONDS):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, session_id: str) -> Optional[SessionState]:
        now = time.time()
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                self._misses += 1
                return None
            if now - entry["last_access"] > self.ttl_seconds:
                del self._entries[session_id]
                self._misses += 1
                self._evictions += 1
                return None
            entry["last_access"] = now
            self._entries.move_to_end(session_id)
            self._hits += 1
            return entry["state"].copy()

    def put(self, state: SessionState) -> None:
        with self._lock:
            self._entries[state.session_id] = {
                "state": state.copy(),
                "last_access": time.time(),
            }
            self._entries.move_to_end(state.session_id)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("Evicted session %s from cache", evicted)

    def pop(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            entry = self._entries.pop(session_id, None)
            return entry["state"] if entry else None

    def cleanup_expired(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = time.time()
        with self._lock:
            expired = [
                sid for sid, entry in self._entries.items()
                if now - entry["last_access"] > self.ttl_seconds
            ]
            for sid in expired:
                del self._entries[sid]
            self._evictions += len(expired)
        if expired:
            logger.debug("Cleaned up %d expired sessions from cache", len(expired))
        return len(expired)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Cleared %d sessions from cache", count)
        return count

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        """
        Statistics about the session cache.

        Returns:
            Dict with size, max_size, ttl_seconds, hits, misses, evictions,
            oldest_access and newest_access (None when empty).
        """
        with self._lock:
            access_times = [entry["last_access"] for entry in self._entries.values()]
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "oldest_access": min(access_times) if access_times else None,
                "newest_access": max(access_times) if access_times else None,
            }


# Process-wide cache shared by the request-scoped stores
SESSION_CACHE = SessionCache()


def is_temporary_session_id(session_id: Optional[str]) -> bool:
    return bool(session_id) and session_id.startswith(TEMP_SESSION_PREFIX)


def new_session_id(temporary: bool = False) -> str:
    session_id = str(uuid.uuid4())
    return f"{TEMP_SESSION_PREFIX}{session_id}" if temporary else session_id


# =============================================================================
# Session State Store
# =============================================================================

class SessionStateStore:
    """
    Request-scoped store over one database session and the shared cache.

    Args:
        db: SQLAlchemy session used for snapshot reads and writes.
        cache: SessionCache instance (defaults to the process-wide cache).
        guard: IdempotencyGuard used to claim save markers.
    """

    def __init__(self, db: Session, cache: SessionCache = None, guard: IdempotencyGuard = None):
        self.db = db
        self.cache = cache if cache is not None else SESSION_CACHE
        self.guard = guard or IdempotencyGuard()

    # ---- Creation ----

    def start(self, session_id: str, product: Optional[Product], store_id: Optional[str] = None) -> SessionState:
        """
        Create the conversation, the initial snapshot and the cache entry.

        Raises:
            PersistenceError: if the conversation row cannot be created.
        """
        product_id = product.id if product is not None else None
        store_id = store_id or (product.store_id if product is not None else None)
        draft = OrderDraft.for_product(product, product_id=product_id, store_id=store_id)
        if product is not None and product.express_enabled:
            draft.metadata.extra["expressEnabled"] = True

        state = SessionState(
            session_id=session_id,
            step=Step.INITIAL,
            draft=draft,
            product_id=product_id,
            store_id=store_id,
        )
        try:
            self.db.add(Conversation(
                id=session_id,
                product_id=product_id,
                store_id=store_id,
                meta={"step": Step.INITIAL.value, "messageCount": 0},
            ))
            self.db.add(AbandonedCart(
                id=session_id,
                product_id=product_id,
                store_id=store_id,
                cart_stage=Step.INITIAL.value,
                meta=self._snapshot_meta(state, history=[]),
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to start session %s: %s", session_id, e)
            raise PersistenceError(f"Could not start session {session_id}") from e

        self.cache.put(state)
        logger.info("Session %s started for product %s", session_id, product_id)
        return state

    # ---- Reads ----

    def load(self, session_id: str) -> Optional[LoadedSession]:
        """
        Load the step and draft of a session.

        Returns:
            LoadedSession, or None when the session is unknown everywhere.

        Raises:
            PersistenceError: the database could not be read.
        """
        cached = self.cache.get(session_id)
        if cached is not None:
            return LoadedSession(state=cached, source="cache")

        try:
            return self._recover(session_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Could not read session %s: %s", session_id, e)
            raise PersistenceError(f"Could not read session {session_id}") from e

    def _recover(self, session_id: str) -> Optional[LoadedSession]:
        """Snapshot, then minimal draft from the conversation row."""
        cart = self.db.query(AbandonedCart).filter(AbandonedCart.id == session_id).one_or_none()
        meta = (cart.meta or {}) if cart is not None else {}
        if cart is not None and meta.get("orderData"):
            state = SessionState(
                session_id=session_id,
                step=coerce_step(meta.get("currentStep") or cart.cart_stage),
                draft=OrderDraft.from_wire(meta["orderData"]),
                product_id=cart.product_id,
                store_id=cart.store_id,
            )
            self.cache.put(state)
            logger.info("Session %s recovered from snapshot at %s", session_id, state.step.value)
            return LoadedSession(state=state, source="snapshot")

        conversation = self.db.query(Conversation).filter(Conversation.id == session_id).one_or_none()
        if conversation is None and cart is None:
            return None

        product_id = conversation.product_id if conversation is not None else cart.product_id
        store_id = conversation.store_id if conversation is not None else cart.store_id
        product = None
        if product_id:
            product = self.db.query(Product).filter(Product.id == product_id).one_or_none()
        draft = OrderDraft.for_product(product, product_id=product_id, store_id=store_id)
        if product is not None and product.express_enabled:
            draft.metadata.extra["expressEnabled"] = True
        state = SessionState(
            session_id=session_id,
            step=Step.INITIAL,
            draft=draft,
            product_id=product_id,
            store_id=store_id,
        )
        self.cache.put(state)
        logger.warning("Session %s had no snapshot, rebuilt a minimal draft", session_id)
        return LoadedSession(state=state, source="minimal")

    # ---- Writes ----

    def save(self, session_id: str, step: Step, draft: OrderDraft, current_step: Step = None) -> bool:
        """
        Commit the snapshot for a completed ``step``.

        No-op (returns False) when ``{step}_saved`` is already set on the
        draft. Otherwise the marker is claimed, the cache updated and the
        snapshot written (customer fields, cart stage, serialized draft and
        one progressHistory entry).

        Args:
            session_id: Session to write.
            step: The step whose data is being committed (marker key).
            draft: The draft after the step's mutation. Its saved marker is
                set in place.
            current_step: Step the conversation moves to (defaults to ``step``).
        """
        step = coerce_step(step)
        if not self.guard.claim_save(draft, step):
            logger.debug("Save skipped for %s at %s: already saved", session_id, step.value)
            return False

        current_step = coerce_step(current_step or step)
        state = self._state_for(session_id, current_step, draft)
        self.cache.put(state)

        try:
            self._write_snapshot(state, history_step=step)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Snapshot write failed for session %s at %s (phone %s): %s",
                session_id, step.value, mask_phone(draft.phone), e,
            )
            return True

        self._mirror_step(session_id, current_step)
        logger.debug("Saved session %s at %s", session_id, step.value)
        return True

    def checkpoint(self, session_id: str, current_step: Step, draft: OrderDraft) -> None:
        """Unguarded write of the current step and draft."""
        current_step = coerce_step(current_step)
        state = self._state_for(session_id, current_step, draft)
        self.cache.put(state)
        try:
            self._write_snapshot(state, history_step=None)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Checkpoint failed for session %s at %s: %s", session_id, current_step.value, e)
            return
        self._mirror_step(session_id, current_step)

    def restore(self, state: SessionState) -> None:
        """
        Put a previously loaded state back (used to undo a failed turn).

        The cache entry and the snapshot's step and draft are rewritten;
        progressHistory keeps whatever was appended.
        """
        self.db.rollback()
        self.cache.put(state)
        try:
            self._write_snapshot(state, history_step=None)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Could not restore snapshot for session %s: %s", state.session_id, e)
            return
        self._mirror_step(state.session_id, state.step)

    # ---- Temporary sessions ----

    def upgrade_session_id(self, temp_id: str) -> str:
        """
        Replace a ``temp_`` session id with a permanent one.

        Conversation, messages, snapshot and payment transactions are moved
        in one transaction, then the cache entry. On failure nothing moves
        and PersistenceError is raised.
        """
        new_id = new_session_id()
        try:
            for model, column in (
                (Conversation, Conversation.id),
                (AbandonedCart, AbandonedCart.id),
                (ChatMessage, ChatMessage.conversation_id),
                (PaymentTransaction, PaymentTransaction.order_id),
            ):
                self.db.query(model).filter(column == temp_id).update(
                    {column: new_id}, synchronize_session=False
                )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to upgrade session %s: %s", temp_id, e)
            raise PersistenceError(f"Could not upgrade session {temp_id}") from e

        self.db.expire_all()
        cached = self.cache.pop(temp_id)
        if cached is not None:
            cached.session_id = new_id
            self.cache.put(cached)
        logger.info("Upgraded temporary session %s to %s", temp_id, new_id)
        return new_id

    # ---- Internals ----

    def _state_for(self, session_id: str, step: Step, draft: OrderDraft) -> SessionState:
        return SessionState(
            session_id=session_id,
            step=step,
            draft=draft,
            product_id=draft.product_id,
            store_id=draft.store_id,
        )

    @staticmethod
    def _snapshot_meta(state: SessionState, history) -> Dict[str, Any]:
        return {
            "orderData": state.draft.model_dump(mode="json"),
            "currentStep": state.step.value,
            "progressHistory": history,
        }

    def _write_snapshot(self, state: SessionState, history_step: Optional[Step]) -> None:
        """Upsert the AbandonedCart row for ``state``. The caller commits."""
        cart = self.db.query(AbandonedCart).filter(AbandonedCart.id == state.session_id).one_or_none()
        if cart is None:
            cart = AbandonedCart(
                id=state.session_id,
                product_id=state.product_id,
                store_id=state.store_id,
                meta={},
            )
            self.db.add(cart)

        draft = state.draft
        for name in ("first_name", "last_name", "email", "phone", "city", "address"):
            value = getattr(draft, name)
            if value:
                setattr(cart, name, value)
        cart.cart_stage = state.step.value

        history = list((cart.meta or {}).get("progressHistory", []))
        if history_step is not None:
            history.append({
                "step": history_step.value,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            })
        cart.meta = {**(cart.meta or {}), **self._snapshot_meta(state, history)}
        flag_modified(cart, "meta")

    def _mirror_step(self, session_id: str, step: Step) -> None:
        """Best effort: copy the step onto the conversation row."""
        try:
            conversation = self.db.query(Conversation).filter(Conversation.id == session_id).one_or_none()
            if conversation is None:
                return
            conversation.meta = {**(conversation.meta or {}), "step": step.value}
            flag_modified(conversation, "meta")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Could not mirror step for session %s: %s", session_id, e)
