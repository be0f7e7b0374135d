"""
Payment Flow Coordinator
========================

Drives the payment sub-flow shared by the guided and the express order flows.

States:
-------
    init -> method -> processing -> complete
                \\          \\
                 +-> error <-+

- **init**: the draft must carry a name, phone, city, address, at least one
  item and a positive total. An incomplete draft never reaches a gateway;
  the shopper is sent back to the modify menu instead.
- **method**: the chosen method is one of the four canonical providers.
  Cash on delivery creates the order right away (payment_status=pending).
  Wave, Orange Money and card payments are started with the payment
  provider, which returns a reference and a checkout link; a
  PaymentTransaction row (status pending) records the attempt.
- **processing**: "I have paid" triggers verification with the provider.
  completed -> the order is created (payment_status=completed);
  pending -> re-prompt, or the problem choices once the verification budget
  is spent; failed or "I have a problem" -> retry / switch method / support.
  Switching method loops back to **method**.
- **complete**: terminal. Post-purchase navigation takes over.

The coordinator mutates the draft (payment method, mode, payment reference,
order id) and returns a PaymentOutcome. Saving the session is left to the
calling handler, which knows which step was answered.

Errors:
-------
PaymentProviderError is caught here and turned into the error choices.
AlreadyMaterializedError means the order exists: the existing order id is
reused and the flow completes. PersistenceError from the order insert is not
caught; the orchestrator turns it into a retryable message.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from ..config import (
    CURRENCY,
    PAYMENT_MAX_AMOUNT,
    PAYMENT_MAX_POLLS_PER_MESSAGE,
    PAYMENT_MIN_AMOUNT,
    PAYMENT_POLL_INTERVAL_SECONDS,
    PAYMENT_VERIFICATION_TIMEOUT_SECONDS,
)
from ..exceptions import AlreadyMaterializedError, IncompleteDraftError, PaymentProviderError, PersistenceError
from ..flow.draft import Mode, OrderDraft
from ..flow.message_builder import MessageBuilder, format_amount
from ..flow.steps import Step
from ..logging_config import mask_phone
from ..models import PaymentTransaction
from ..schemas.chat import OutboundMessage
from .order_materializer import OrderMaterializer
from .payment_providers import (
    ONLINE_METHODS,
    PaymentProvider,
    PaymentVerification,
    get_payment_provider,
)

logger = logging.getLogger(__name__)


class PaymentState(str, Enum):
    INIT = "init"
    METHOD = "method"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class PaymentOutcome:
    """Where the payment sub-flow ended up after one shopper message."""
    state: PaymentState
    next_step: Step
    messages: List[OutboundMessage] = field(default_factory=list)
    order_id: Optional[str] = None


# ---- Shopper-facing texts ----

INCOMPLETE_DRAFT_TEXT = (
    "Des informations sont manquantes pour procéder au paiement. "
    "Veuillez vérifier vos coordonnées."
)
PENDING_TEXT = "Le paiement est en cours de traitement. Avez-vous effectué le paiement ?"
PENDING_CHOICES = ["Oui, j'ai payé", "Non, pas encore", "Problème de paiement"]
VERIFY_FAILED_TEXT = (
    "Je n'ai pas pu vérifier l'état de votre paiement. "
    "Vous pouvez réessayer, changer de méthode ou contacter notre support."
)
PAYMENT_FAILED_TEXT = "Votre paiement n'a pas abouti. Que souhaitez-vous faire ?"
VERIFY_EXPIRED_TEXT = (
    "Nous n'avons toujours pas reçu la confirmation de votre paiement. "
    "Que souhaitez-vous faire ?"
)
INITIATE_FAILED_TEXT = (
    "Je n'ai pas pu lancer le paiement pour le moment. "
    "Vous pouvez réessayer, choisir un autre moyen de paiement ou contacter le support."
)
PROBLEM_CHOICES = ["Réessayer", "Changer de méthode", "Contacter le support"]
EXPRESS_ERROR_CHOICES = ["Réessayer", "Contacter le support"]


def payment_reference(session_id: str) -> str:
    """Merchant reference: PAY_{epoch ms}_{session id}."""
    return f"PAY_{int(time.time() * 1000)}_{session_id}"


class PaymentFlowCoordinator:
    """
    Runs the payment sub-state machine for one request.

    Args:
        db: SQLAlchemy session for transactions and orders.
        materializer: OrderMaterializer (built over ``db`` when omitted).
        provider: PaymentProvider (the configured one when omitted).
        message_builder: MessageBuilder for the outbound messages.
        sleep / clock: injectable for the verification polling loop.
    """

    def __init__(
        self,
        db: Session,
        materializer: OrderMaterializer = None,
        provider: PaymentProvider = None,
        message_builder: MessageBuilder = None,
        verification_timeout: float = PAYMENT_VERIFICATION_TIMEOUT_SECONDS,
        poll_interval: float = PAYMENT_POLL_INTERVAL_SECONDS,
        max_polls: int = PAYMENT_MAX_POLLS_PER_MESSAGE,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.materializer = materializer or OrderMaterializer(db)
        self._provider = provider
        self.message_builder = message_builder or MessageBuilder()
        self.verification_timeout = verification_timeout
        self.poll_interval = poll_interval
        self.max_polls = max(1, max_polls)
        self._sleep = sleep
        self._clock = clock

    @property
    def provider(self) -> PaymentProvider:
        if self._provider is None:
            self._provider = get_payment_provider()
        return self._provider

    # =========================================================================
    # init + method
    # =========================================================================

    def check_ready(self, draft: OrderDraft) -> List[str]:
        """Missing required fields (empty list when the draft can be paid)."""
        draft.recalculate()
        return draft.missing_payment_fields()

    def start(self, session_id: str, draft: OrderDraft, method: str, express: bool = False) -> PaymentOutcome:
        """
        Run init and method for the chosen payment ``method``.

        Returns:
            PaymentOutcome landing on payment_complete (cash on delivery),
            payment_processing (online methods) or an error/modify step.
        """
        missing = self.check_ready(draft)
        if missing:
            logger.info("Payment blocked for session %s, missing %s", session_id, missing)
            return self._incomplete(draft, express)

        if not PAYMENT_MIN_AMOUNT <= draft.total_amount <= PAYMENT_MAX_AMOUNT:
            logger.warning(
                "Amount %d out of bounds for session %s", draft.total_amount, session_id,
            )
            content = (
                f"Le montant de {format_amount(draft.total_amount)} ne peut pas être réglé en ligne. "
                f"Il doit être compris entre {format_amount(PAYMENT_MIN_AMOUNT)} "
                f"et {format_amount(PAYMENT_MAX_AMOUNT)}."
            )
            return self._error(draft, content, express, code="amount_out_of_bounds")

        draft.payment_method = method
        draft.metadata.was_express = express
        if method == "CASH_ON_DELIVERY":
            return self._complete(session_id, draft, payment_status="pending")
        if method not in ONLINE_METHODS:
            return self._error(draft, INITIATE_FAILED_TEXT, express, code="unknown_method")
        return self._initiate(session_id, draft, method, express)

    def _initiate(self, session_id: str, draft: OrderDraft, method: str, express: bool) -> PaymentOutcome:
        reference = payment_reference(session_id)
        customer_info = {
            "first_name": draft.first_name,
            "last_name": draft.last_name,
            "phone": draft.phone,
            "email": draft.email,
        }
        try:
            initiation = self.provider.initiate(draft.total_amount, method, customer_info, reference)
        except PaymentProviderError as e:
            logger.error(
                "Payment initiation failed for session %s (%s, customer %s): %s",
                session_id, method, mask_phone(draft.phone), e,
            )
            return self._error(draft, INITIATE_FAILED_TEXT, express, code="payment_initiation_failed")

        self._record_transaction(session_id, draft, method, initiation.reference, initiation.payment_url,
                                 initiation.transaction_id)

        draft.metadata.mode = Mode.AWAITING_PAYMENT
        draft.metadata.extra.update({
            "paymentReference": initiation.reference,
            "transactionId": initiation.transaction_id,
            "paymentUrl": initiation.payment_url,
            "paymentStartedAt": self._clock(),
        })
        logger.info("Payment %s started for session %s via %s", initiation.reference, session_id, method)

        content = self.message_builder.build_payment_instructions(method, initiation.payment_url or "")
        message = self.message_builder.assistant(
            content, Step.PAYMENT_PROCESSING, draft, paymentUrl=initiation.payment_url,
        )
        return PaymentOutcome(PaymentState.PROCESSING, Step.PAYMENT_PROCESSING, [message])

    def _record_transaction(self, session_id, draft, method, reference, payment_url, transaction_id) -> None:
        """Write the pending PaymentTransaction. Failures are logged, the payment goes on."""
        try:
            self.db.add(PaymentTransaction(
                order_id=session_id,
                provider=method,
                amount=draft.total_amount,
                currency=CURRENCY,
                status="pending",
                reference=reference,
                meta={"paymentUrl": payment_url, "transactionId": transaction_id},
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to record payment transaction %s: %s", reference, e)

    # =========================================================================
    # processing
    # =========================================================================

    def handle_processing(self, session_id: str, draft: OrderDraft, action: str) -> PaymentOutcome:
        """
        Handle an answer at payment_processing.

        ``action`` is one of paid, not_yet, problem, switch.
        """
        express = draft.metadata.was_express
        if action == "switch":
            return self.back_to_method(draft)
        if action == "problem":
            return self._problem(draft, PAYMENT_FAILED_TEXT, express, code="payment_problem")
        if action == "not_yet":
            return self._pending(draft)

        transaction_id = draft.metadata.extra.get("transactionId") or draft.metadata.extra.get("paymentReference")
        if not transaction_id:
            # No online payment was started (restored session or cleared draft)
            return self.back_to_method(draft)

        try:
            verification = self.verify_with_timeout(
                session_id,
                transaction_id,
                started_at=draft.metadata.extra.get("paymentStartedAt"),
            )
        except PaymentProviderError as e:
            logger.error("Payment verification failed for session %s: %s", session_id, e)
            return self._problem(draft, VERIFY_FAILED_TEXT, express, code="payment_verification_failed")

        if verification.status == "completed":
            return self._complete(session_id, draft, payment_status="completed")
        if verification.status == "failed":
            return self._problem(draft, PAYMENT_FAILED_TEXT, express, code="payment_failed")
        if verification.expired:
            return self._problem(draft, VERIFY_EXPIRED_TEXT, express, code="payment_timeout")
        return self._pending(draft)

    def verify_with_timeout(
        self,
        session_id: str,
        transaction_id: str,
        started_at: Optional[float] = None,
    ) -> PaymentVerification:
        """
        Poll the provider until the payment leaves ``pending``.

        Polls at most ``max_polls`` times, ``poll_interval`` seconds apart,
        and never past ``started_at + verification_timeout``. A result that
        is still pending once that budget is spent comes back with
        ``expired=True``.

        Raises:
            PaymentProviderError: when the provider cannot be reached.
        """
        started_at = started_at or self._clock()
        deadline = started_at + self.verification_timeout
        verification = PaymentVerification(status="pending", transaction_id=transaction_id)

        for attempt in range(self.max_polls):
            verification = self.provider.verify(session_id, transaction_id, db=self.db)
            if verification.status != "pending":
                return verification
            if self._clock() >= deadline:
                verification.expired = True
                return verification
            if attempt < self.max_polls - 1:
                self._sleep(self.poll_interval)

        logger.debug("Payment %s still pending after %d polls", transaction_id, self.max_polls)
        return verification

    # =========================================================================
    # error
    # =========================================================================

    def handle_error_choice(self, session_id: str, draft: OrderDraft, action: str) -> PaymentOutcome:
        """Handle retry / switch / support at payment_error."""
        express = draft.metadata.was_express
        if action == "switch":
            return self.back_to_method(draft)
        if action == "support":
            message = self.message_builder.assistant(
                self.message_builder.build_support_text(),
                Step.PAYMENT_ERROR,
                draft,
                choices=PROBLEM_CHOICES,
            )
            return PaymentOutcome(PaymentState.ERROR, Step.PAYMENT_ERROR, [message])

        # retry: check the existing payment, or start it again
        if draft.metadata.extra.get("transactionId"):
            return self.handle_processing(session_id, draft, "paid")
        if draft.payment_method:
            return self.start(session_id, draft, draft.payment_method, express=express)
        return self.back_to_method(draft)

    def back_to_method(self, draft: OrderDraft) -> PaymentOutcome:
        """Loop back to the method choice, forgetting the current attempt."""
        for key in ("paymentReference", "transactionId", "paymentUrl", "paymentStartedAt"):
            draft.metadata.extra.pop(key, None)
        draft.metadata.mode = Mode.EXPRESS_FLOW if draft.metadata.was_express else Mode.STANDARD_FLOW
        message = self.message_builder.prompt(Step.PAYMENT_METHOD, draft)
        return PaymentOutcome(PaymentState.METHOD, Step.PAYMENT_METHOD, [message])

    # =========================================================================
    # complete
    # =========================================================================

    def _complete(self, session_id: str, draft: OrderDraft, payment_status: str) -> PaymentOutcome:
        try:
            order_id = self.materializer.materialize(session_id, draft, payment_status=payment_status)
        except AlreadyMaterializedError as e:
            order_id = e.order_id or draft.metadata.extra.get("orderId")
            if not order_id:
                raise PersistenceError(f"Order of session {session_id} exists but its id is unknown") from e
            logger.info("Session %s already has order %s", session_id, order_id)
        except IncompleteDraftError as e:
            logger.warning("Order for session %s not created: %s", session_id, e)
            return self._incomplete(draft, draft.metadata.was_express)

        draft.metadata.mode = Mode.STANDARD_FLOW
        draft.metadata.extra["orderId"] = order_id
        if payment_status == "completed":
            self._settle_transaction(session_id, draft.metadata.extra.get("paymentReference"))

        content = self.message_builder.build_confirmation(order_id, draft)
        message = self.message_builder.assistant(content, Step.PAYMENT_COMPLETE, draft, orderId=order_id)
        return PaymentOutcome(PaymentState.COMPLETE, Step.PAYMENT_COMPLETE, [message], order_id=order_id)

    def _settle_transaction(self, session_id: str, reference: Optional[str]) -> None:
        if not reference:
            return
        try:
            transaction = (
                self.db.query(PaymentTransaction)
                .filter(PaymentTransaction.order_id == session_id, PaymentTransaction.reference == reference)
                .one_or_none()
            )
            if transaction is not None and transaction.status != "completed":
                transaction.status = "completed"
                self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Could not settle transaction %s: %s", reference, e)

    # =========================================================================
    # Outcome helpers
    # =========================================================================

    def _incomplete(self, draft: OrderDraft, express: bool) -> PaymentOutcome:
        step = Step.EXPRESS_MODIFY if express else Step.MODIFY_ORDER
        message = self.message_builder.error(step, draft, INCOMPLETE_DRAFT_TEXT, code="incomplete_draft")
        return PaymentOutcome(PaymentState.ERROR, step, [message])

    def _error(self, draft: OrderDraft, content: str, express: bool, code: str) -> PaymentOutcome:
        step = Step.EXPRESS_ERROR if express else Step.PAYMENT_ERROR
        choices = EXPRESS_ERROR_CHOICES if express else PROBLEM_CHOICES
        message = self.message_builder.assistant(content, step, draft, choices=choices, error=code)
        return PaymentOutcome(PaymentState.ERROR, step, [message])

    def _problem(self, draft: OrderDraft, content: str, express: bool, code: str) -> PaymentOutcome:
        # The payment steps are shared, so a started payment always fails into payment_error
        message = self.message_builder.assistant(
            content, Step.PAYMENT_ERROR, draft, choices=PROBLEM_CHOICES, error=code,
        )
        return PaymentOutcome(PaymentState.ERROR, Step.PAYMENT_ERROR, [message])

    def _pending(self, draft: OrderDraft) -> PaymentOutcome:
        message = self.message_builder.assistant(
            PENDING_TEXT,
            Step.PAYMENT_PROCESSING,
            draft,
            choices=PENDING_CHOICES,
            paymentUrl=draft.metadata.extra.get("paymentUrl"),
        )
        return PaymentOutcome(PaymentState.PROCESSING, Step.PAYMENT_PROCESSING, [message])


def record_payment_callback(db: Session, session_id: str, reference: str, status: str,
                            payload: Optional[dict] = None) -> Optional[PaymentTransaction]:
    """
    Apply a gateway notification to the matching PaymentTransaction.

    Returns:
        The updated transaction, or None when no transaction matches.
    """
    transaction = (
        db.query(PaymentTransaction)
        .filter(PaymentTransaction.order_id == session_id, PaymentTransaction.reference == reference)
        .one_or_none()
    )
    if transaction is None:
        logger.warning("Payment callback for unknown reference %s (session %s)", reference, session_id)
        return None

    transaction.status = status
    meta = dict(transaction.meta or {})
    if payload:
        meta["callback"] = payload
    transaction.meta = meta
    flag_modified(transaction, "meta")
    db.commit()
    logger.info("Payment %s for session %s marked %s", reference, session_id, status)
    return transaction
