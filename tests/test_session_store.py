"""
Tests for the session cache and the session state store.
"""
import pytest

from shop_bot.flow.draft import Mode, OrderDraft
from shop_bot.flow.steps import Step
from shop_bot.models import AbandonedCart, ChatMessage, Conversation, Product
from shop_bot.services.conversation import ConversationLog
from shop_bot.services.session_store import (
    SESSION_CACHE,
    SessionCache,
    SessionState,
    SessionStateStore,
    is_temporary_session_id,
    new_session_id,
)


def make_state(session_id, step=Step.INITIAL):
    return SessionState(session_id=session_id, step=step, draft=OrderDraft())


@pytest.fixture
def store(db_session):
    return SessionStateStore(db_session)


@pytest.fixture
def awale(db_session):
    return db_session.query(Product).filter_by(id="jeu-awale").one()


# =============================================================================
# Cache
# =============================================================================


class TestSessionCache:
    """Bounded LRU with per-entry TTL."""

    def test_least_recently_used_entry_is_evicted(self):
        cache = SessionCache(max_size=2)
        cache.put(make_state("a"))
        cache.put(make_state("b"))
        cache.get("a")
        cache.put(make_state("c"))

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache
        assert cache.stats()["evictions"] == 1

    def test_expired_entry_is_a_miss(self):
        cache = SessionCache(ttl_seconds=60)
        cache.put(make_state("a"))
        cache._entries["a"]["last_access"] -= 120

        assert cache.get("a") is None
        assert "a" not in cache
        assert cache.stats()["misses"] == 1

    def test_cleanup_expired(self):
        cache = SessionCache(ttl_seconds=60)
        cache.put(make_state("old"))
        cache.put(make_state("new"))
        cache._entries["old"]["last_access"] -= 120

        assert cache.cleanup_expired() == 1
        assert len(cache) == 1

    def test_entries_are_copies(self):
        cache = SessionCache()
        state = make_state("a")
        cache.put(state)
        state.draft.first_name = "Changed"

        cached = cache.get("a")
        assert cached.draft.first_name is None
        cached.draft.first_name = "Again"
        assert cache.get("a").draft.first_name is None

    def test_stats(self):
        cache = SessionCache(max_size=10, ttl_seconds=30)
        assert cache.stats()["oldest_access"] is None
        cache.put(make_state("a"))
        cache.get("a")
        cache.get("missing")

        stats = cache.stats()
        assert stats["size"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["max_size"] == 10


def test_temporary_session_ids():
    temp_id = new_session_id(temporary=True)
    assert temp_id.startswith("temp_")
    assert is_temporary_session_id(temp_id)
    assert not is_temporary_session_id(new_session_id())
    assert not is_temporary_session_id(None)


# =============================================================================
# Store
# =============================================================================


def test_start_creates_conversation_snapshot_and_cache_entry(store, db_session, awale):
    state = store.start("s-1", awale)

    assert state.step == Step.INITIAL
    assert state.draft.items[0].product_id == "jeu-awale"
    assert state.draft.store_id == "store-1"
    assert db_session.query(Conversation).filter_by(id="s-1").one().product_id == "jeu-awale"
    cart = db_session.query(AbandonedCart).filter_by(id="s-1").one()
    assert cart.meta["currentStep"] == "initial"
    assert "s-1" in SESSION_CACHE


def test_start_marks_express_products(store, db_session):
    product = db_session.query(Product).filter_by(id="jeu-express").one()
    state = store.start("s-1", product)
    assert state.draft.metadata.extra["expressEnabled"] is True


def test_save_is_idempotent_per_step(store, db_session, awale):
    state = store.start("s-1", awale)
    draft = state.draft
    draft.phone = "+221771234567"

    assert store.save("s-1", Step.COLLECT_PHONE, draft, current_step=Step.COLLECT_NAME) is True
    assert store.save("s-1", Step.COLLECT_PHONE, draft, current_step=Step.COLLECT_NAME) is False

    db_session.expire_all()
    history = db_session.query(AbandonedCart).filter_by(id="s-1").one().meta["progressHistory"]
    assert [entry["step"] for entry in history] == ["collect_phone"]
    assert Step.COLLECT_PHONE in draft.metadata.saved_steps


def test_save_writes_customer_fields_and_step(store, db_session, awale):
    state = store.start("s-1", awale)
    draft = state.draft
    draft.first_name = "Awa"
    draft.phone = "+221771234567"
    store.save("s-1", Step.COLLECT_NAME, draft, current_step=Step.COLLECT_CITY)

    db_session.expire_all()
    cart = db_session.query(AbandonedCart).filter_by(id="s-1").one()
    assert cart.first_name == "Awa"
    assert cart.phone == "+221771234567"
    assert cart.cart_stage == "collect_city"
    assert db_session.query(Conversation).filter_by(id="s-1").one().meta["step"] == "collect_city"


class TestLoad:
    """cache -> snapshot -> minimal draft"""

    def test_cache_hit(self, store, awale):
        store.start("s-1", awale)
        assert store.load("s-1").source == "cache"

    def test_snapshot_after_cache_loss(self, store, awale):
        state = store.start("s-1", awale)
        draft = state.draft
        draft.phone = "+221771234567"
        draft.metadata.mode = Mode.STANDARD_FLOW
        store.save("s-1", Step.COLLECT_PHONE, draft, current_step=Step.COLLECT_NAME)
        SESSION_CACHE.clear()

        loaded = store.load("s-1")
        assert loaded.source == "snapshot"
        assert loaded.state.step == Step.COLLECT_NAME
        assert loaded.state.draft.phone == "+221771234567"
        assert loaded.state.draft.metadata.mode == Mode.STANDARD_FLOW
        assert Step.COLLECT_PHONE in loaded.state.draft.metadata.saved_steps
        # Recovered sessions go back into the cache
        assert store.load("s-1").source == "cache"

    def test_minimal_draft_when_snapshot_is_missing(self, store, db_session, awale):
        store.start("s-1", awale)
        db_session.query(AbandonedCart).filter_by(id="s-1").delete()
        db_session.commit()
        SESSION_CACHE.clear()

        loaded = store.load("s-1")
        assert loaded.source == "minimal"
        assert loaded.state.step == Step.INITIAL
        assert [(i.product_id, i.quantity) for i in loaded.state.draft.items] == [("jeu-awale", 1)]
        assert loaded.state.draft.phone is None

    def test_unknown_session(self, store):
        assert store.load("nope") is None


def test_restore_undoes_a_turn(store, awale):
    state = store.start("s-1", awale)
    before = state.copy()

    draft = state.draft
    draft.first_name = "Awa"
    store.checkpoint("s-1", Step.COLLECT_CITY, draft)
    store.restore(before)

    loaded = store.load("s-1")
    assert loaded.state.step == Step.INITIAL
    assert loaded.state.draft.first_name is None


def test_upgrade_session_id_moves_everything(store, db_session, awale):
    store.start("temp_abc", awale)
    ConversationLog(db_session).record_user_message("temp_abc", "Bonjour", "initial", "m-1")

    new_id = store.upgrade_session_id("temp_abc")

    assert not new_id.startswith("temp_")
    assert db_session.query(Conversation).filter_by(id="temp_abc").count() == 0
    assert db_session.query(Conversation).filter_by(id=new_id).count() == 1
    assert db_session.query(AbandonedCart).filter_by(id=new_id).count() == 1
    assert db_session.query(ChatMessage).filter_by(conversation_id=new_id).count() == 1
    assert "temp_abc" not in SESSION_CACHE
    assert store.load(new_id).state.session_id == new_id
