"""
Tests for the idempotency guard.
"""
import pytest

from shop_bot.flow.draft import Mode, OrderDraft
from shop_bot.flow.steps import BUY_NOW, Step
from shop_bot.services.conversation import ConversationLog
from shop_bot.services.idempotency import IdempotencyGuard
from shop_bot.services.session_store import SessionStateStore
from shop_bot.models import Product


@pytest.fixture
def guard():
    return IdempotencyGuard()


@pytest.fixture
def draft():
    return OrderDraft()


def test_recursion_flag_is_consumed_once(guard, draft):
    assert guard.consume_recursion_flag(draft) is False
    draft.metadata.prevent_recursion = True
    assert guard.consume_recursion_flag(draft) is True
    assert draft.metadata.prevent_recursion is False
    assert guard.consume_recursion_flag(draft) is False


def test_claim_save_only_once(guard, draft):
    assert guard.claim_save(draft, Step.COLLECT_PHONE) is True
    assert guard.claim_save(draft, Step.COLLECT_PHONE) is False
    assert Step.COLLECT_PHONE in draft.metadata.saved_steps


class TestMarkTransition:
    def test_moving_on_marks_the_previous_step(self, guard, draft):
        guard.mark_transition(draft, Step.COLLECT_PHONE, Step.COLLECT_NAME)
        assert Step.COLLECT_PHONE in draft.metadata.processed_steps
        assert Step.COLLECT_NAME not in draft.metadata.processed_steps

    def test_staying_records_nothing(self, guard, draft):
        guard.mark_transition(draft, Step.COLLECT_PHONE, Step.COLLECT_PHONE)
        assert draft.metadata.processed_steps == set()

    def test_entering_a_step_clears_its_marker(self, guard, draft):
        draft.metadata.processed_steps.add(Step.ORDER_SUMMARY)
        guard.mark_transition(draft, Step.PROCESS_QUANTITY, Step.ORDER_SUMMARY)
        assert Step.ORDER_SUMMARY not in draft.metadata.processed_steps


class TestIsDuplicate:
    """Replays are detected by message id, client flags or a stale step."""

    def test_known_message_id(self, guard, draft, db_session):
        product = db_session.query(Product).filter_by(id="jeu-awale").one()
        SessionStateStore(db_session).start("s-1", product)
        ConversationLog(db_session).record_user_message("s-1", BUY_NOW, "initial", "msg-1")

        assert guard.is_duplicate(db_session, "s-1", Step.INITIAL, draft, message_id="msg-1")
        assert not guard.is_duplicate(db_session, "s-1", Step.INITIAL, draft, message_id="msg-2")

    def test_client_flags(self, guard, draft, db_session):
        flags = {"collect_phone_processed": True}
        assert guard.is_duplicate(db_session, "s-1", Step.COLLECT_PHONE, draft, request_flags=flags)
        assert not guard.is_duplicate(db_session, "s-1", Step.COLLECT_NAME, draft, request_flags=flags)

    def test_stale_step(self, guard, draft, db_session):
        draft.metadata.processed_steps.add(Step.COLLECT_PHONE)
        assert guard.is_duplicate(
            db_session, "s-1", Step.COLLECT_PHONE, draft, stored_step=Step.COLLECT_NAME,
        )

    def test_processed_step_that_is_still_current_is_not_a_duplicate(self, guard, draft, db_session):
        draft.metadata.processed_steps.add(Step.COLLECT_PHONE)
        assert not guard.is_duplicate(
            db_session, "s-1", Step.COLLECT_PHONE, draft, stored_step=Step.COLLECT_PHONE,
        )


def test_reopen_releases_the_modified_steps(guard, draft):
    draft.metadata.saved_steps.update({Step.COLLECT_QUANTITY, Step.COLLECT_PHONE})
    draft.metadata.processed_steps.update({Step.COLLECT_QUANTITY, Step.PROCESS_QUANTITY})

    guard.reopen(draft, Step.PROCESS_QUANTITY)

    assert draft.metadata.saved_steps == {Step.COLLECT_PHONE}
    assert draft.metadata.processed_steps == set()


def test_reopen_ignores_steps_without_targets(guard, draft):
    draft.metadata.saved_steps.add(Step.COLLECT_PHONE)
    guard.reopen(draft, Step.ORDER_SUMMARY)
    assert draft.metadata.saved_steps == {Step.COLLECT_PHONE}


class TestFreeTextSuppression:
    def test_purchase_modes_block_free_text(self, guard, draft):
        draft.metadata.mode = Mode.STANDARD_FLOW
        assert guard.should_prevent_free_text(draft, Step.INITIAL, "Vous livrez à Thiès ?")

    def test_structured_steps_block_free_text(self, guard, draft):
        assert guard.should_prevent_free_text(draft, Step.COLLECT_CITY, "Vous livrez à Thiès ?")

    def test_menu_choice_blocks_free_text(self, guard, draft):
        assert guard.should_prevent_free_text(draft, Step.INITIAL, "comment y jouer ?")

    def test_question_on_exploration_step_is_allowed(self, guard, draft):
        assert not guard.should_prevent_free_text(draft, Step.DESCRIPTION, "Vous livrez à Thiès ?")


def test_reset_to_free_conversation(guard, draft):
    draft.metadata.mode = Mode.AWAITING_PAYMENT
    draft.metadata.was_express = True
    draft.metadata.saved_steps.add(Step.EXPRESS_NAME)

    guard.reset_to_free_conversation(draft)

    assert draft.metadata.mode == Mode.FREE_CONVERSATION
    assert draft.metadata.was_express is False
    assert draft.metadata.saved_steps == {Step.EXPRESS_NAME}
