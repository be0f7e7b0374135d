"""
Handler Configuration for the Order Flow Handlers.

This module provides the shared configuration dataclass passed to every
handler class, the per-message context and result types, and BaseHandler
with the helpers every handler uses:

- ``_advance``: answered step -> next step. Skips already-filled collection
  steps, records the processed marker, saves the session and renders the
  landing message.
- ``_reject``: same-step re-prompt for a rejected answer.
- ``render_landing``: the assistant message shown when the flow lands on a
  step (summaries and product lists are rendered from the draft, the rest
  from the step registry prompt).
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from ...schemas.chat import OutboundMessage
from ..draft import OrderDraft
from ..message_builder import MessageBuilder, format_amount
from ..step_validator import StepValidator, skip_completed
from ..steps import Step

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from ...services.catalog import CatalogService, ProductInfo
    from ...services.idempotency import IdempotencyGuard
    from ...services.payment_coordinator import PaymentFlowCoordinator
    from ...services.session_store import SessionStateStore


@dataclass
class HandlerConfig:
    """
    Shared dependencies of the flow handlers.

    Attributes:
        db: SQLAlchemy session of the current request
        store: SessionStateStore for saves and checkpoints
        guard: IdempotencyGuard for processed markers and reopening steps
        validator: StepValidator for per-step input validation
        message_builder: MessageBuilder for outbound messages
        catalog: CatalogService for product lookups
        payments: PaymentFlowCoordinator for the payment sub-flow
    """
    db: "Session"
    store: "SessionStateStore"
    guard: "IdempotencyGuard"
    validator: StepValidator
    message_builder: MessageBuilder
    catalog: "CatalogService"
    payments: "PaymentFlowCoordinator"


@dataclass
class TurnContext:
    """One shopper message, as seen by a handler."""
    session_id: str
    step: Step
    user_input: str
    draft: OrderDraft
    product: Optional["ProductInfo"] = None


@dataclass
class HandlerResult:
    """Messages to send and the step the session is now on."""
    messages: List[OutboundMessage]
    next_step: Step
    draft: OrderDraft
    metadata: dict = field(default_factory=dict)


class BaseHandler:
    """
    Base class for the flow handlers.

    Subclasses list the steps they own in ``steps`` and implement
    ``handle(ctx)``, returning a HandlerResult, or None when the input is
    not an answer to the step (the orchestrator then decides what to do).
    """

    steps: frozenset = frozenset()

    def __init__(self, config: HandlerConfig):
        self.config = config
        self.db = config.db
        self.store = config.store
        self.guard = config.guard
        self.validator = config.validator
        self.message_builder = config.message_builder
        self.catalog = config.catalog
        self.payments = config.payments

    def handle(self, ctx: TurnContext) -> Optional[HandlerResult]:
        raise NotImplementedError

    # ---- Transitions ----

    def _advance(
        self,
        ctx: TurnContext,
        next_step: Step,
        prefix: str = "",
        skip: bool = True,
    ) -> HandlerResult:
        """
        Complete ``ctx.step`` and land on ``next_step``.

        With ``skip`` the landing step moves past collection steps that are
        already filled on the draft.
        """
        draft = ctx.draft
        if skip:
            next_step = skip_completed(next_step, draft)
        next_step = self._resolve_landing(next_step, draft)
        self.guard.mark_transition(draft, ctx.step, next_step)
        self._commit(ctx.session_id, ctx.step, next_step, draft)
        return HandlerResult([self.render_landing(next_step, draft, prefix)], next_step, draft)

    def _finish(self, ctx: TurnContext, next_step: Step, messages: List[OutboundMessage]) -> HandlerResult:
        """Complete ``ctx.step`` with messages built by the caller."""
        self.guard.mark_transition(ctx.draft, ctx.step, next_step)
        self._commit(ctx.session_id, ctx.step, next_step, ctx.draft)
        return HandlerResult(messages, next_step, ctx.draft)

    def _commit(self, session_id: str, step: Step, next_step: Step, draft: OrderDraft) -> None:
        if not self.store.save(session_id, step, draft, current_step=next_step):
            # Step was saved on an earlier pass; keep the snapshot current
            self.store.checkpoint(session_id, next_step, draft)

    def _reject(self, ctx: TurnContext, error: str, choices=None) -> HandlerResult:
        message = self.message_builder.assistant(
            error, ctx.step, ctx.draft, choices=choices, error="validation",
        )
        return HandlerResult([message], ctx.step, ctx.draft)

    def _resolve_landing(self, step: Step, draft: OrderDraft) -> Step:
        """Move past steps that have nothing to show."""
        if step in (Step.RECOMMEND_PRODUCTS, Step.SELECT_PRODUCT) and not self._recommendations(draft):
            return Step.ADD_NOTES if step == Step.SELECT_PRODUCT else Step.ORDER_SUMMARY
        return step

    # ---- Landing messages ----

    def render_landing(self, step: Step, draft: OrderDraft, prefix: str = "") -> OutboundMessage:
        """The assistant message shown when the flow lands on ``step``."""
        builder = self.message_builder
        if step == Step.ORDER_SUMMARY:
            return builder.assistant(self._join(prefix, builder.build_order_summary(draft)), step, draft)
        if step == Step.EXPRESS_SUMMARY:
            return builder.assistant(self._join(prefix, builder.build_express_summary(draft)), step, draft)
        if step == Step.SELECT_PRODUCT:
            products = self._recommendations(draft)
            draft.metadata.extra["recommendedIds"] = [p.id for p in products]
            lines = [f"• {p.name} : {format_amount(p.price)}" for p in products]
            content = self._join(prefix, "\n".join(["Voici quelques jeux qui pourraient vous plaire :", *lines]))
            choices = [p.name for p in products] + ["Non, merci"]
            return builder.assistant(content, step, draft, choices=choices)
        if step == Step.CHECK_EXISTING:
            known = draft.metadata.extra.get("knownAddress") or {}
            name = f" {draft.first_name}" if draft.first_name else ""
            content = (
                f"Ravie de vous revoir{name} ! Souhaitez-vous être livré(e) à la même adresse : "
                f"{known.get('address', '')}, {known.get('city', '')} ?"
            )
            return builder.assistant(self._join(prefix, content), step, draft)
        if step == Step.DESCRIPTION:
            product = self.catalog.get_product(draft.product_id)
            if product is not None and product.description:
                content = f"{product.name} : {product.description}\nPrix : {format_amount(product.price)}"
                return builder.assistant(self._join(prefix, content), step, draft)
        return builder.prompt(step, draft, prefix)

    def _recommendations(self, draft: OrderDraft):
        if not draft.product_id:
            return []
        return self.catalog.get_recommendations(draft.product_id)

    @staticmethod
    def _join(prefix: str, content: str) -> str:
        return f"{prefix}\n\n{content}" if prefix else content
