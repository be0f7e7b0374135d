"""
Step Validator.

Per-step input validation for the order flow. ``StepValidator.validate``
takes the current step, the raw shopper input and the draft so far, and
returns a ``StepValidationResult``: whether the input was accepted, the step
to go to next, an optional corrective message and a metadata patch.

Validation never raises for user input problems. A rejected input produces a
result with ``is_valid=False`` and an ``error`` that is rendered as the next
assistant message; the session stays on the same step.

This module is pure: no database or network access. Side effects (saving,
customer lookup, catalog lookup, payment calls) belong to the handlers, which
start from the validation result and may refine ``next_step`` within the
transitions allowed by the step registry.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from ..config import MIN_EXPRESS_NAME_LENGTH
from . import vocabulary as vocab
from .draft import Mode, OrderDraft
from .steps import Step, allowed_transitions, coerce_step, next_step
from .validators import (
    PhoneValidator,
    parse_quantity,
    validate_address,
    validate_city,
    validate_email_address,
    validate_full_name,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_NOTE_LENGTH = 500


@dataclass
class StepValidationResult:
    """
    Outcome of validating one input against one step.

    Attributes:
        is_valid: Whether the input was accepted.
        next_step: Step to transition to (the same step when rejected).
        error: Corrective message shown to the shopper when rejected.
        metadata: Patch merged into the draft metadata (see merge_metadata).
        value: The normalized value extracted from the input, if any.
    """
    is_valid: bool
    next_step: Step
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    value: Any = None

    @property
    def is_free_text(self) -> bool:
        """Rejected without an error: the input is conversation, not an answer."""
        return not self.is_valid and self.error is None


def _accept(step: Step, value: Any = None, **metadata) -> StepValidationResult:
    return StepValidationResult(is_valid=True, next_step=step, value=value, metadata=metadata)


def _reject(step: Step, error: Optional[str]) -> StepValidationResult:
    return StepValidationResult(is_valid=False, next_step=step, error=error)


# =============================================================================
# Navigation
# =============================================================================
# Collection steps whose data is already on the draft are skipped when the
# flow advances onto them (buy-now path, returning customers).

_ALREADY_FILLED: Dict[Step, Callable[[OrderDraft], bool]] = {
    Step.COLLECT_NAME: lambda d: bool(d.first_name),
    Step.COLLECT_PHONE: lambda d: bool(d.phone),
    Step.CHECK_EXISTING: lambda d: not d.metadata.extra.get("existingCustomer"),
    Step.COLLECT_CITY: lambda d: bool(d.city),
    Step.COLLECT_ADDRESS: lambda d: bool(d.address),
    Step.EXPRESS_NAME: lambda d: bool(d.first_name),
    Step.EXPRESS_PHONE: lambda d: bool(d.phone),
    Step.EXPRESS_ADDRESS: lambda d: bool(d.address),
    Step.EXPRESS_CITY: lambda d: bool(d.city),
    Step.EXPRESS_PAYMENT: lambda d: bool(d.payment_method),
}


def skip_completed(step: Step, draft: OrderDraft) -> Step:
    """
    Advance past collection steps whose field is already filled.

    Follows default successors only, so the walk always ends on a step
    that still needs input (or a non-collection step).
    """
    seen = set()
    while step in _ALREADY_FILLED and _ALREADY_FILLED[step](draft) and step not in seen:
        seen.add(step)
        step = next_step(step)
    return step


# =============================================================================
# Validator
# =============================================================================

class StepValidator:
    """
    Validate shopper input per step.

    Each step maps to a ``_validate_*`` method; steps sharing a rule
    (the quantity steps, the address steps...) share a method.
    """

    def __init__(self, phone_validator: Optional[PhoneValidator] = None):
        self.phone_validator = phone_validator or PhoneValidator()
        self._rules: Dict[Step, Callable[[Step, str, OrderDraft], StepValidationResult]] = {
            Step.INITIAL: self._validate_menu,
            Step.DESCRIPTION: self._validate_menu,
            Step.TESTIMONIALS: self._validate_menu,
            Step.GAME_RULES: self._validate_menu,
            Step.COLLECT_QUANTITY: self._validate_quantity,
            Step.PROCESS_QUANTITY: self._validate_quantity,
            Step.ADDITIONAL_QUANTITY: self._validate_quantity,
            Step.EXPRESS_QUANTITY: self._validate_quantity,
            Step.COLLECT_NAME: self._validate_name,
            Step.EXPRESS_NAME: self._validate_name,
            Step.COLLECT_PHONE: self._validate_phone,
            Step.EXPRESS_PHONE: self._validate_phone,
            Step.CONTACT_INFO: self._validate_phone,
            Step.CHECK_EXISTING: self._validate_existing,
            Step.COLLECT_CITY: self._validate_city,
            Step.EXPRESS_CITY: self._validate_city,
            Step.COLLECT_ADDRESS: self._validate_address,
            Step.UPDATE_ADDRESS: self._validate_address,
            Step.EXPRESS_ADDRESS: self._validate_address,
            Step.COLLECT_EMAIL_OPT: self._validate_email_opt,
            Step.COLLECT_EMAIL: self._validate_email,
            Step.RECOMMEND_PRODUCTS: self._validate_recommendations,
            Step.SELECT_PRODUCT: self._validate_select_product,
            Step.ADD_PRODUCT_CHOICE: self._validate_add_product_choice,
            Step.ADD_NOTES: self._validate_add_notes,
            Step.SAVE_NOTE: self._validate_note,
            Step.ORDER_SUMMARY: self._validate_order_summary,
            Step.MODIFY_ORDER: self._validate_modify_order,
            Step.PAYMENT_METHOD: self._validate_payment_method,
            Step.EXPRESS_PAYMENT: self._validate_payment_method,
            Step.PAYMENT_PROCESSING: self._validate_payment_processing,
            Step.PAYMENT_ERROR: self._validate_payment_error,
            Step.PAYMENT_COMPLETE: self._validate_payment_complete,
            Step.CREATE_ACCOUNT: self._validate_create_account,
            Step.CREATE_ACCOUNT_EMAIL: self._validate_account_email,
            Step.CREATE_ACCOUNT_PASSWORD: self._validate_password,
            Step.POST_PURCHASE: self._validate_rating,
            Step.CHOOSE_FLOW: self._validate_choose_flow,
            Step.EXPRESS_SUMMARY: self._validate_express_summary,
            Step.EXPRESS_MODIFY: self._validate_express_modify,
            Step.EXPRESS_ERROR: self._validate_express_error,
        }

    def validate(self, step, raw_input: str, draft: OrderDraft) -> StepValidationResult:
        """
        Validate ``raw_input`` for ``step``.

        Returns:
            StepValidationResult. On success ``next_step`` is always one of
            ``allowed_transitions(step)``.
        """
        step = coerce_step(step)
        text = (raw_input or "").strip()
        rule = self._rules[step]
        result = rule(step, text, draft)

        if result.is_valid and result.next_step not in allowed_transitions(step):
            # A rule returned an edge the registry does not declare
            logger.error(
                "Validator for %s produced undeclared transition to %s",
                step.value, result.next_step.value,
            )
            return _reject(step, None)

        if not result.is_valid:
            logger.debug("Input rejected at step %s", step.value)
        return result

    # ---- Exploration ----

    def _validate_menu(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.MAIN_MENU)
        if choice == "buy":
            target = Step.CHOOSE_FLOW if draft.metadata.extra.get("expressEnabled") else Step.COLLECT_PHONE
            return _accept(target, mode=Mode.STANDARD_FLOW.value)
        if choice == "learn" and step != Step.DESCRIPTION:
            return _accept(Step.DESCRIPTION)
        if choice == "testimonials" and step != Step.TESTIMONIALS:
            return _accept(Step.TESTIMONIALS)
        if choice == "rules" and step != Step.INITIAL:
            return _accept(Step.GAME_RULES)
        # Anything else is free conversation
        return _reject(step, None)

    # ---- Collection ----

    def _validate_quantity(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        quantity, error = parse_quantity(text)
        if error:
            return _reject(step, error)
        return _accept(next_step(step), quantity)

    def _validate_name(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        min_length = MIN_EXPRESS_NAME_LENGTH if step == Step.EXPRESS_NAME else 2
        name, error = validate_full_name(text, min_length=min_length)
        if error:
            return _reject(step, error)
        return _accept(next_step(step), name)

    def _validate_phone(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        phone, error = self.phone_validator.validate(text)
        if error:
            return _reject(step, error)
        if step == Step.COLLECT_PHONE and not draft.first_name:
            # Buy-now path: the name has not been asked yet
            return _accept(Step.COLLECT_NAME, phone)
        return _accept(next_step(step), phone)

    def _validate_existing(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.SAME_ADDRESS)
        if choice == "same":
            return _accept(Step.RECOMMEND_PRODUCTS, "same")
        if choice == "new":
            return _accept(Step.COLLECT_CITY, "new")
        return _reject(step, "Souhaitez-vous être livré(e) à la même adresse ? Répondez par oui ou non.")

    def _validate_city(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        city, error = validate_city(text)
        if error:
            return _reject(step, error)
        return _accept(next_step(step), city)

    def _validate_address(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        address, error = validate_address(text)
        if error:
            return _reject(step, error)
        return _accept(next_step(step), address)

    def _validate_email_opt(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.YES_NO)
        if choice == "no":
            return _accept(Step.RECOMMEND_PRODUCTS, None)
        if choice == "yes":
            return _accept(Step.COLLECT_EMAIL)
        if "@" in text:
            # Typed the address straight away
            email, error = validate_email_address(text)
            if error:
                return _reject(step, error)
            return _accept(Step.RECOMMEND_PRODUCTS, email)
        return _reject(step, "Souhaitez-vous recevoir la confirmation par e-mail ? Répondez par oui ou non.")

    def _validate_email(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        if "@" not in text and vocab.classify(text, vocab.YES_NO) == "no":
            return _accept(Step.RECOMMEND_PRODUCTS, None)
        email, error = validate_email_address(text)
        if error:
            return _reject(step, error)
        return _accept(Step.RECOMMEND_PRODUCTS, email)

    # ---- Products ----

    def _validate_recommendations(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.YES_NO)
        if choice == "yes":
            return _accept(Step.SELECT_PRODUCT)
        if choice == "no":
            return _accept(Step.ORDER_SUMMARY)
        return _reject(step, "Souhaitez-vous voir d'autres jeux ? Répondez par oui ou non.")

    def _validate_select_product(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        if not text:
            return _reject(step, "Quel jeu souhaitez-vous ajouter ?")
        if vocab.classify(text, vocab.YES_NO) == "no":
            return _accept(Step.ORDER_SUMMARY)
        # The product handler resolves the label against the catalog
        return _accept(Step.ADDITIONAL_QUANTITY, text)

    def _validate_add_product_choice(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.ADD_PRODUCT_CHOICE)
        if choice == "validate":
            return _accept(Step.ADD_NOTES)
        if choice == "add_more":
            return _accept(Step.SELECT_PRODUCT)
        return _reject(step, "Souhaitez-vous valider la commande ou ajouter un autre jeu ?")

    # ---- Summary ----

    def _validate_add_notes(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.YES_NO)
        if choice == "yes":
            return _accept(Step.SAVE_NOTE)
        if choice == "no":
            return _accept(Step.ORDER_SUMMARY)
        return _reject(step, "Souhaitez-vous ajouter une note ? Répondez par oui ou non.")

    def _validate_note(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        if not text:
            return _reject(step, "Votre note est vide. Écrivez-la ou répondez « non ».")
        if len(text) > MAX_NOTE_LENGTH:
            return _reject(step, f"Votre note est trop longue ({MAX_NOTE_LENGTH} caractères maximum).")
        return _accept(Step.ORDER_SUMMARY, text)

    def _validate_order_summary(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.CONFIRM_ORDER)
        if choice == "confirm":
            return _accept(Step.PAYMENT_METHOD)
        if choice == "modify":
            return _accept(Step.MODIFY_ORDER)
        return _reject(step, "Votre commande est-elle correcte ? Choisissez « C'est correct » ou « Je veux modifier ».")

    def _validate_modify_order(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.MODIFY_ORDER)
        target = {
            "quantity": Step.PROCESS_QUANTITY,
            "address": Step.UPDATE_ADDRESS,
            "info": Step.CONTACT_INFO,
        }.get(choice)
        if target is None:
            return _reject(step, "Que souhaitez-vous modifier : la quantité, l'adresse ou vos informations ?")
        return _accept(target, choice)

    # ---- Payment ----

    def _validate_payment_method(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        method = vocab.classify(text, vocab.PAYMENT_METHODS)
        if method is None:
            return _reject(
                step,
                "Je n'ai pas reconnu ce moyen de paiement. Choisissez : Wave, Orange Money, "
                "Carte bancaire ou Payer à la livraison.",
            )
        return _accept(next_step(step), method)

    def _validate_payment_processing(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        action = vocab.classify(text, vocab.PAYMENT_PROCESSING)
        target = {
            "paid": Step.PAYMENT_COMPLETE,
            "not_yet": Step.PAYMENT_PROCESSING,
            "problem": Step.PAYMENT_ERROR,
            "switch": Step.PAYMENT_METHOD,
        }.get(action)
        if target is None:
            return _reject(step, "Avez-vous effectué le paiement ?")
        return _accept(target, action)

    def _validate_payment_error(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        action = vocab.classify(text, vocab.PAYMENT_ERROR)
        target = {
            "retry": Step.PAYMENT_PROCESSING,
            "switch": Step.PAYMENT_METHOD,
            "support": Step.PAYMENT_ERROR,
        }.get(action)
        if target is None:
            return _reject(step, "Souhaitez-vous réessayer, changer de méthode ou contacter le support ?")
        return _accept(target, action)

    def _validate_payment_complete(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        action = vocab.classify(text, vocab.POST_PAYMENT) or "other"
        return _accept(Step.POST_PURCHASE, action)

    # ---- Post-purchase ----

    def _validate_create_account(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.YES_NO)
        if choice == "yes":
            target = Step.CREATE_ACCOUNT_PASSWORD if draft.email else Step.CREATE_ACCOUNT_EMAIL
            return _accept(target)
        if choice == "no":
            return _accept(Step.POST_PURCHASE)
        return _reject(step, "Souhaitez-vous créer un compte ? Répondez par oui ou non.")

    def _validate_account_email(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        email, error = validate_email_address(text)
        if error:
            return _reject(step, error)
        return _accept(Step.CREATE_ACCOUNT_PASSWORD, email)

    def _validate_password(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        if len(text) < MIN_PASSWORD_LENGTH:
            return _reject(step, f"Le mot de passe doit contenir au moins {MIN_PASSWORD_LENGTH} caractères.")
        return _accept(Step.POST_PURCHASE, text)

    def _validate_rating(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        rating = vocab.parse_rating(text)
        if rating is None:
            return _reject(step, "Merci de noter votre expérience de 1 à 5 étoiles.")
        return _accept(Step.INITIAL, rating, mode=Mode.FREE_CONVERSATION.value)

    # ---- Express ----

    def _validate_choose_flow(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.CHOOSE_FLOW)
        if choice == "express":
            return _accept(Step.EXPRESS_NAME, choice, mode=Mode.EXPRESS_FLOW.value)
        if choice == "guided":
            return _accept(Step.COLLECT_QUANTITY, choice, mode=Mode.STANDARD_FLOW.value)
        return _reject(step, "Souhaitez-vous commander rapidement ou être guidé(e) pas à pas ?")

    def _validate_express_summary(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.EXPRESS_SUMMARY)
        if choice == "validate":
            return _accept(Step.PAYMENT_PROCESSING, choice)
        if choice == "modify":
            return _accept(Step.EXPRESS_MODIFY, choice)
        return _reject(step, "Souhaitez-vous valider ou modifier votre commande ?")

    def _validate_express_modify(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.EXPRESS_MODIFY)
        target = {
            "quantity": Step.EXPRESS_QUANTITY,
            "address": Step.EXPRESS_ADDRESS,
            "payment": Step.EXPRESS_PAYMENT,
        }.get(choice)
        if target is None:
            return _reject(step, "Que souhaitez-vous modifier : la quantité, l'adresse ou le mode de paiement ?")
        return _accept(target, choice)

    def _validate_express_error(self, step: Step, text: str, draft: OrderDraft) -> StepValidationResult:
        choice = vocab.classify(text, vocab.EXPRESS_ERROR)
        if choice == "retry":
            return _accept(Step.EXPRESS_SUMMARY, choice)
        if choice == "support":
            return _accept(Step.INITIAL, choice, mode=Mode.FREE_CONVERSATION.value)
        return _reject(step, "Souhaitez-vous réessayer ou contacter le support ?")
