"""
Flow Orchestrator.

Entry point for one shopper message. The orchestrator loads the session,
runs the guards, dispatches to the handler owning the current step and
persists what the turn produced.

Turn pipeline:
--------------
1. Load the session (cache -> snapshot -> minimal draft).
2. Recursion guard: a turn flagged ``preventRecursion`` gets one generic
   "continue" message and nothing else.
3. Temporary ``temp_`` ids are upgraded to permanent ones. When the
   upgrade cannot be written the turn goes on under the temporary id.
4. Duplicate detection (client message id, processed markers). Duplicates
   replay the earlier answer and write nothing.
5. The user message is stored.
6. Dispatch: express steps run under a fallback to the guided flow; the
   handler's answer, or the free-text responder when the input is not an
   answer to the step and free text is allowed.
7. Outbound messages are stamped with the final draft and stored.

Any failure after the load restores the session as it was loaded and
answers with a retryable error message, so the shopper can simply resend.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import ANALYSIS_HISTORY_SIZE, BUYING_INTENT_THRESHOLD, MAX_RECOMMENDATIONS
from ..exceptions import MessageAnalysisError, PersistenceError, ProductNotFoundError, SessionNotFoundError
from ..models import Product
from ..schemas.chat import OutboundMessage
from ..services.catalog import CatalogService
from ..services.conversation import ConversationLog
from ..services.idempotency import IdempotencyGuard
from ..services.message_analysis import MessageAnalyzer, get_message_analyzer
from ..services.order_materializer import OrderMaterializer
from ..services.payment_coordinator import PaymentFlowCoordinator
from ..services.session_store import (
    SessionCache,
    SessionState,
    SessionStateStore,
    is_temporary_session_id,
    new_session_id,
)
from .draft import Mode, OrderDraft
from .handlers import (
    BaseHandler,
    ContactHandler,
    ExpressFlowHandler,
    HandlerConfig,
    HandlerResult,
    NavigationHandler,
    PaymentHandler,
    PostPurchaseHandler,
    ProductHandler,
    TurnContext,
)
from .message_builder import MessageBuilder
from .step_validator import StepValidator
from .steps import BUY_NOW, EXPLORATION_STEPS, EXPRESS_FALLBACK, Step, coerce_step, is_express_step

logger = logging.getLogger(__name__)

CONTINUE_TEXT = "Je vais continuer avec votre processus d'achat. Merci de suivre les instructions à l'écran."
SAFETY_NET_PREFIX = "Continuons votre commande 🙂"
RETRY_TEXT = "Oups, un petit souci technique de mon côté. Pouvez-vous renvoyer votre message ?"
FREE_TEXT_RETRY_TEXT = "Je n'ai pas pu traiter votre question pour le moment. Pouvez-vous reformuler ?"
MASKED_PASSWORD = "••••••••"


@dataclass
class TurnResult:
    """What one call to ``FlowOrchestrator.handle`` produced."""
    session_id: str
    messages: List[OutboundMessage]
    step: Step
    draft: OrderDraft


class FlowOrchestrator:
    """
    Runs one conversation turn against the step handlers.

    Args:
        db: SQLAlchemy session of the current request.
        cache: SessionCache (the process-wide one when omitted).
        analyzer: Free-text responder (the configured one, built lazily).
        payments: PaymentFlowCoordinator (built over ``db`` when omitted).
        provider: PaymentProvider passed to the default coordinator.
        message_builder: MessageBuilder shared by every handler.
        phone_validator: Phone validator passed to the StepValidator.
    """

    def __init__(
        self,
        db: Session,
        cache: SessionCache = None,
        analyzer: MessageAnalyzer = None,
        payments: PaymentFlowCoordinator = None,
        provider=None,
        message_builder: MessageBuilder = None,
        phone_validator=None,
    ):
        self.db = db
        self.guard = IdempotencyGuard()
        self.store = SessionStateStore(db, cache, self.guard)
        self.log = ConversationLog(db)
        self.catalog = CatalogService(db)
        self.message_builder = message_builder or MessageBuilder()
        self.validator = StepValidator(phone_validator)
        self.payments = payments or PaymentFlowCoordinator(
            db,
            materializer=OrderMaterializer(db, self.catalog),
            provider=provider,
            message_builder=self.message_builder,
        )
        self._analyzer = analyzer

        self.config = HandlerConfig(
            db=db,
            store=self.store,
            guard=self.guard,
            validator=self.validator,
            message_builder=self.message_builder,
            catalog=self.catalog,
            payments=self.payments,
        )
        self.renderer = BaseHandler(self.config)
        self.express_handler = ExpressFlowHandler(self.config)
        self.handlers: Dict[Step, BaseHandler] = {}
        for handler_cls in (NavigationHandler, ContactHandler, ProductHandler, PaymentHandler, PostPurchaseHandler):
            handler = handler_cls(self.config)
            for step in handler.steps:
                self.handlers[step] = handler
        for step in self.express_handler.steps:
            self.handlers[step] = self.express_handler

    @property
    def analyzer(self) -> MessageAnalyzer:
        if self._analyzer is None:
            self._analyzer = get_message_analyzer()
        return self._analyzer

    # =========================================================================
    # Session start
    # =========================================================================

    def start(self, product_id: str, store_id: Optional[str] = None, temporary: bool = False) -> TurnResult:
        """
        Open a session on a product page and return the welcome message.

        Raises:
            ProductNotFoundError: the product is unknown or inactive.
            PersistenceError: the session rows could not be created.
        """
        product = (
            self.db.query(Product)
            .filter(Product.id == product_id, Product.is_active.is_(True))
            .one_or_none()
        )
        if product is None:
            raise ProductNotFoundError(product_id)

        session_id = new_session_id(temporary=temporary)
        state = self.store.start(session_id, product, store_id)
        identity = self.message_builder.identity
        content = f"Je suis {identity.name}, {identity.title.lower()}. Vous regardez {product.name}."
        message = self.renderer.render_landing(Step.INITIAL, state.draft, prefix=content)
        return self._respond(session_id, [message], Step.INITIAL, state.draft, None)

    # =========================================================================
    # Turn
    # =========================================================================

    def handle(
        self,
        session_id: str,
        user_input: str,
        current_step: Optional[str] = None,
        order_data: Optional[Dict[str, Any]] = None,
        message_id: Optional[str] = None,
        flags: Optional[Dict[str, Any]] = None,
    ) -> TurnResult:
        """
        Process one shopper message.

        Raises:
            SessionNotFoundError: the session id is unknown.
            PersistenceError: the session could not be read.
        """
        loaded = self.store.load(session_id)
        if loaded is None:
            raise SessionNotFoundError(session_id)

        state = loaded.state
        client_step = coerce_step(current_step) if current_step else state.step
        if loaded.source == "minimal" and order_data:
            # Server state was lost; the client's copy is the best we have
            logger.warning("Session %s rebuilt from client order data at %s", session_id, client_step.value)
            state.draft = OrderDraft.from_wire(order_data)
            state.step = client_step
        snapshot = state.copy()
        draft = state.draft
        step = state.step

        try:
            # ---- Recursion guard ----
            if self.guard.consume_recursion_flag(draft) or (flags or {}).get("preventRecursion"):
                draft.metadata.prevent_recursion = False
                self.log.record_user_message(session_id, user_input, step.value, message_id)
                self.store.checkpoint(session_id, step, draft)
                message = self.message_builder.assistant(CONTINUE_TEXT, step, draft, choices=[])
                return self._respond(session_id, [message], step, draft, message_id)

            # ---- Temporary sessions ----
            if is_temporary_session_id(session_id):
                try:
                    session_id = self.store.upgrade_session_id(session_id)
                    snapshot.session_id = session_id
                except PersistenceError as e:
                    # The turn goes on under the temporary id; the next turn retries
                    logger.warning("Keeping temporary session %s: %s", session_id, e)

            # ---- Duplicates ----
            if self.guard.is_duplicate(
                self.db, session_id, client_step, draft,
                stored_step=step, request_flags=flags, message_id=message_id,
            ):
                replay = self.log.replies_to(session_id, message_id) if message_id else []
                if not replay:
                    replay = [self.renderer.render_landing(step, draft)]
                return TurnResult(session_id=session_id, messages=replay, step=step, draft=draft)

            logged_input = MASKED_PASSWORD if step == Step.CREATE_ACCOUNT_PASSWORD else user_input
            self.log.record_user_message(session_id, logged_input, step.value, message_id)

            messages, step, draft = self._dispatch(session_id, step, user_input, draft, snapshot)
        except Exception:
            logger.exception("Turn failed for session %s at %s", session_id, snapshot.step.value)
            self.store.restore(snapshot)
            draft = snapshot.draft.model_copy(deep=True)
            step = snapshot.step
            messages = [self.message_builder.assistant(RETRY_TEXT, step, draft, choices=[], error="retryable")]

        return self._respond(session_id, messages, step, draft, message_id)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _dispatch(self, session_id: str, step: Step, user_input: str, draft: OrderDraft, snapshot: SessionState):
        if draft.metadata.express_mode or is_express_step(step):
            try:
                result = self._run_handler(session_id, step, user_input, draft)
            except Exception:
                logger.exception("Express flow failed for session %s at %s, falling back", session_id, step.value)
                self.store.restore(snapshot)
                draft = snapshot.draft.model_copy(deep=True)
                draft.metadata.was_express = False
                if draft.metadata.mode == Mode.EXPRESS_FLOW:
                    draft.metadata.mode = Mode.STANDARD_FLOW
                step = EXPRESS_FALLBACK.get(step, step)
                result = self._run_handler(session_id, step, user_input, draft)
        else:
            result = self._run_handler(session_id, step, user_input, draft)

        if result is not None:
            return result.messages, result.next_step, result.draft

        if self.guard.should_prevent_free_text(draft, step, user_input):
            logger.debug("Free text suppressed for session %s at %s", session_id, step.value)
            return [self.renderer.render_landing(step, draft, SAFETY_NET_PREFIX)], step, draft

        return self._answer_free_text(session_id, step, user_input, draft)

    def _run_handler(self, session_id: str, step: Step, user_input: str, draft: OrderDraft) -> Optional[HandlerResult]:
        handler = self.handlers.get(step)
        if handler is None:
            return None
        ctx = TurnContext(session_id=session_id, step=step, user_input=user_input, draft=draft)
        return handler.handle(ctx)

    # ---- Free text ----

    def _answer_free_text(self, session_id: str, step: Step, user_input: str, draft: OrderDraft):
        product = self.catalog.get_product(draft.product_id) if draft.product_id else None
        history = self.log.history(session_id, ANALYSIS_HISTORY_SIZE + 1)
        if history and history[-1]["role"] == "user" and history[-1]["content"] == user_input:
            history = history[:-1]

        try:
            analysis = self.analyzer.analyze(user_input, product.as_context() if product else {}, history)
        except (MessageAnalysisError, ValueError) as e:
            logger.warning("Free-text answer unavailable for session %s: %s", session_id, e)
            message = self.message_builder.assistant(FREE_TEXT_RETRY_TEXT, step, draft, error="retryable")
            return [message], step, draft

        target = step
        if analysis.next_step:
            try:
                target = Step(analysis.next_step)
            except ValueError:
                target = step
            if target not in EXPLORATION_STEPS:
                target = step

        choices = list(analysis.choices)
        extra: Dict[str, Any] = {}
        if analysis.buying_intent > BUYING_INTENT_THRESHOLD and draft.product_id:
            recommended = self.catalog.get_recommendations(draft.product_id, limit=MAX_RECOMMENDATIONS)
            if recommended:
                extra["recommendations"] = [p.as_context() for p in recommended]
            if BUY_NOW not in choices:
                choices.insert(0, BUY_NOW)

        if target != step:
            self.store.checkpoint(session_id, target, draft)
        message = self.message_builder.assistant(analysis.content, target, draft, choices=choices, **extra)
        return [message], target, draft

    # ---- Output ----

    def _respond(
        self,
        session_id: str,
        messages: List[OutboundMessage],
        step: Step,
        draft: OrderDraft,
        message_id: Optional[str],
    ) -> TurnResult:
        """Stamp the final draft on every message, store them and build the result."""
        order_data = draft.to_wire()
        turn_flags = draft.metadata.to_flags()
        for message in messages:
            message.metadata.orderData = order_data
            message.metadata.flags = turn_flags
            message.metadata.sessionId = session_id
        self.log.record_assistant_messages(session_id, messages, reply_to=message_id)
        return TurnResult(session_id=session_id, messages=messages, step=step, draft=draft)
