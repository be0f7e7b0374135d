"""
Tests for the step registry and the step validator.
"""
import pytest

from shop_bot.flow.draft import Mode, OrderDraft
from shop_bot.flow.step_validator import StepValidator, skip_completed
from shop_bot.flow.steps import (
    BUY_NOW,
    EXPRESS_FALLBACK,
    EXPRESS_STEPS,
    STEP_REGISTRY,
    Step,
    allowed_transitions,
    coerce_step,
    default_choices,
    next_step,
)


# ---- Registry topology ----


def test_every_step_has_a_definition():
    assert set(STEP_REGISTRY) == set(Step)


def test_next_step_is_total_and_closed():
    for step in Step:
        assert next_step(step) in Step


def test_every_step_is_reachable_from_initial():
    seen = {Step.INITIAL}
    frontier = [Step.INITIAL]
    while frontier:
        step = frontier.pop()
        for target in allowed_transitions(step):
            if target not in seen:
                seen.add(target)
                frontier.append(target)
    assert seen == set(Step)


def test_successor_walk_returns_to_initial_without_cycles():
    for start in Step:
        seen = set()
        current = start
        while current != Step.INITIAL:
            assert current not in seen, f"successor cycle through {current.value}"
            seen.add(current)
            current = next_step(current)


def test_express_fallback_targets_guided_steps():
    assert set(EXPRESS_FALLBACK) == set(EXPRESS_STEPS)
    for target in EXPRESS_FALLBACK.values():
        assert target not in EXPRESS_STEPS


def test_coerce_step_defaults_unknown_names_to_initial():
    assert coerce_step("collect_phone") == Step.COLLECT_PHONE
    assert coerce_step(Step.ORDER_SUMMARY) == Step.ORDER_SUMMARY
    assert coerce_step("not_a_step") == Step.INITIAL


def test_initial_menu_choices():
    assert default_choices(Step.INITIAL)[0] == BUY_NOW
    assert default_choices(Step.ORDER_SUMMARY) == ["C'est correct", "Je veux modifier"]


# ---- Step validator ----


@pytest.fixture
def validator():
    return StepValidator()


@pytest.fixture
def draft():
    return OrderDraft()


def test_validator_covers_every_step_with_declared_transitions(validator, draft):
    for step in Step:
        result = validator.validate(step, "", draft)
        assert result.next_step in allowed_transitions(step)


class TestMenu:
    """Top-level menu on the exploration steps."""

    def test_buy_goes_to_phone_with_standard_mode(self, validator, draft):
        result = validator.validate(Step.INITIAL, BUY_NOW, draft)
        assert result.is_valid
        assert result.next_step == Step.COLLECT_PHONE
        assert result.metadata["mode"] == Mode.STANDARD_FLOW.value

    def test_buy_offers_flow_choice_for_express_products(self, validator, draft):
        draft.metadata.extra["expressEnabled"] = True
        result = validator.validate(Step.INITIAL, "je veux commander", draft)
        assert result.next_step == Step.CHOOSE_FLOW

    def test_learn_more_and_testimonials(self, validator, draft):
        assert validator.validate(Step.INITIAL, "Je veux en savoir plus", draft).next_step == Step.DESCRIPTION
        assert validator.validate(Step.DESCRIPTION, "Voir les avis", draft).next_step == Step.TESTIMONIALS
        assert validator.validate(Step.TESTIMONIALS, "Comment y jouer ?", draft).next_step == Step.GAME_RULES

    def test_question_is_free_text(self, validator, draft):
        result = validator.validate(Step.INITIAL, "C'est pour quel âge ?", draft)
        assert not result.is_valid
        assert result.is_free_text


class TestCollection:
    """Collection steps reject with a corrective message and keep the step."""

    def test_phone_without_name_asks_for_name(self, validator, draft):
        result = validator.validate(Step.COLLECT_PHONE, "77 123 45 67", draft)
        assert result.is_valid
        assert result.value == "+221771234567"
        assert result.next_step == Step.COLLECT_NAME

    def test_phone_with_name_goes_to_existing_check(self, validator, draft):
        draft.first_name = "Awa"
        result = validator.validate(Step.COLLECT_PHONE, "771234567", draft)
        assert result.next_step == Step.CHECK_EXISTING

    def test_invalid_phone_stays_on_step(self, validator, draft):
        result = validator.validate(Step.COLLECT_PHONE, "12345", draft)
        assert not result.is_valid
        assert result.next_step == Step.COLLECT_PHONE
        assert "Format invalide" in result.error

    def test_quantity_bounds(self, validator, draft):
        assert validator.validate(Step.COLLECT_QUANTITY, "10", draft).value == 10
        assert not validator.validate(Step.COLLECT_QUANTITY, "0", draft).is_valid
        assert not validator.validate(Step.COLLECT_QUANTITY, "11", draft).is_valid

    def test_email_optional_accepts_typed_address(self, validator, draft):
        result = validator.validate(Step.COLLECT_EMAIL_OPT, "awa.diop@gmail.com", draft)
        assert result.is_valid
        assert result.next_step == Step.RECOMMEND_PRODUCTS
        assert result.value == "awa.diop@gmail.com"

    def test_email_optional_no(self, validator, draft):
        result = validator.validate(Step.COLLECT_EMAIL_OPT, "Non, merci", draft)
        assert result.next_step == Step.RECOMMEND_PRODUCTS
        assert result.value is None

    def test_existing_customer_answers(self, validator, draft):
        assert validator.validate(Step.CHECK_EXISTING, "Oui, même adresse", draft).value == "same"
        assert validator.validate(Step.CHECK_EXISTING, "Non, nouvelle adresse", draft).value == "new"


class TestSummaryAndPayment:
    def test_note_length_limit(self, validator, draft):
        assert validator.validate(Step.SAVE_NOTE, "Livrer après 18h", draft).is_valid
        result = validator.validate(Step.SAVE_NOTE, "x" * 501, draft)
        assert not result.is_valid
        assert "500" in result.error

    def test_order_summary_confirm_and_modify(self, validator, draft):
        assert validator.validate(Step.ORDER_SUMMARY, "C'est correct", draft).next_step == Step.PAYMENT_METHOD
        assert validator.validate(Step.ORDER_SUMMARY, "Je veux modifier", draft).next_step == Step.MODIFY_ORDER

    def test_modify_menu_targets(self, validator, draft):
        assert validator.validate(Step.MODIFY_ORDER, "Modifier la quantité", draft).next_step == Step.PROCESS_QUANTITY
        assert validator.validate(Step.MODIFY_ORDER, "Modifier l'adresse", draft).next_step == Step.UPDATE_ADDRESS
        assert validator.validate(Step.MODIFY_ORDER, "Modifier mes informations", draft).next_step == Step.CONTACT_INFO

    def test_contact_info_takes_a_phone(self, validator, draft):
        result = validator.validate(Step.CONTACT_INFO, "76 543 21 09", draft)
        assert result.value == "+221765432109"
        assert result.next_step == Step.ORDER_SUMMARY
        assert not validator.validate(Step.CONTACT_INFO, "Awa Diop", draft).is_valid

    def test_payment_method_labels(self, validator, draft):
        assert validator.validate(Step.PAYMENT_METHOD, "Payer à la livraison", draft).value == "CASH_ON_DELIVERY"
        assert validator.validate(Step.PAYMENT_METHOD, "Orange Money", draft).value == "ORANGE_MONEY"
        assert not validator.validate(Step.PAYMENT_METHOD, "bitcoin", draft).is_valid

    def test_payment_processing_actions(self, validator, draft):
        assert validator.validate(Step.PAYMENT_PROCESSING, "J'ai payé", draft).value == "paid"
        assert validator.validate(Step.PAYMENT_PROCESSING, "Non, pas encore", draft).value == "not_yet"
        assert validator.validate(Step.PAYMENT_PROCESSING, "Je rencontre un problème", draft).value == "problem"
        assert validator.validate(Step.PAYMENT_PROCESSING, "Changer de méthode", draft).value == "switch"


class TestPostPurchase:
    def test_password_minimum_length(self, validator, draft):
        assert not validator.validate(Step.CREATE_ACCOUNT_PASSWORD, "court", draft).is_valid
        assert validator.validate(Step.CREATE_ACCOUNT_PASSWORD, "motdepasse", draft).is_valid

    def test_create_account_skips_email_when_known(self, validator, draft):
        assert validator.validate(Step.CREATE_ACCOUNT, "Oui", draft).next_step == Step.CREATE_ACCOUNT_EMAIL
        draft.email = "awa.diop@gmail.com"
        assert validator.validate(Step.CREATE_ACCOUNT, "Oui", draft).next_step == Step.CREATE_ACCOUNT_PASSWORD

    def test_rating_returns_to_free_conversation(self, validator, draft):
        result = validator.validate(Step.POST_PURCHASE, "⭐⭐⭐⭐", draft)
        assert result.value == 4
        assert result.next_step == Step.INITIAL
        assert result.metadata["mode"] == Mode.FREE_CONVERSATION.value


class TestExpress:
    def test_choose_flow(self, validator, draft):
        express = validator.validate(Step.CHOOSE_FLOW, "✅ Commander rapidement (moins d'1 minute)", draft)
        assert express.next_step == Step.EXPRESS_NAME
        assert express.metadata["mode"] == Mode.EXPRESS_FLOW.value

        guided = validator.validate(Step.CHOOSE_FLOW, "🤖 Être guidé pas à pas avec mes conseils", draft)
        assert guided.next_step == Step.COLLECT_QUANTITY

    def test_express_name_needs_first_and_last_name(self, validator, draft):
        assert not validator.validate(Step.EXPRESS_NAME, "Moussa", draft).is_valid
        assert validator.validate(Step.EXPRESS_NAME, "moussa ndiaye", draft).value == "Moussa Ndiaye"

    def test_express_error_support_goes_home(self, validator, draft):
        result = validator.validate(Step.EXPRESS_ERROR, "Contacter le support", draft)
        assert result.next_step == Step.INITIAL


# ---- Skipping filled steps ----


def test_skip_completed_moves_past_filled_fields(draft):
    draft.first_name = "Awa"
    draft.phone = "+221771234567"
    assert skip_completed(Step.COLLECT_NAME, draft) == Step.COLLECT_CITY


def test_skip_completed_stops_on_known_customer_prompt(draft):
    draft.phone = "+221771234567"
    draft.metadata.extra["existingCustomer"] = True
    assert skip_completed(Step.COLLECT_PHONE, draft) == Step.CHECK_EXISTING


def test_skip_completed_leaves_empty_steps(draft):
    assert skip_completed(Step.COLLECT_PHONE, draft) == Step.COLLECT_PHONE
