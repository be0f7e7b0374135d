"""
Payment Handler for the Order Flow.

Thin adapter between the payment steps and the PaymentFlowCoordinator:
validates the answer, hands it to the coordinator and saves where the
payment sub-flow ended up.
"""

import logging
from typing import Optional

from ..draft import merge_metadata
from ..steps import PAYMENT_STEPS, Step
from .handler_config import BaseHandler, HandlerResult, TurnContext

logger = logging.getLogger(__name__)


class PaymentHandler(BaseHandler):
    """Handles payment_method, payment_processing and payment_error."""

    steps = PAYMENT_STEPS - {Step.PAYMENT_COMPLETE}

    def handle(self, ctx: TurnContext) -> Optional[HandlerResult]:
        result = self.validator.validate(ctx.step, ctx.user_input, ctx.draft)
        if result.is_free_text:
            return None
        if not result.is_valid:
            return self._reject(ctx, result.error)

        draft = ctx.draft
        draft.metadata = merge_metadata(draft.metadata, result.metadata)

        if ctx.step == Step.PAYMENT_METHOD:
            outcome = self.payments.start(
                ctx.session_id, draft, result.value, express=draft.metadata.was_express,
            )
        elif ctx.step == Step.PAYMENT_PROCESSING:
            outcome = self.payments.handle_processing(ctx.session_id, draft, result.value)
        else:
            outcome = self.payments.handle_error_choice(ctx.session_id, draft, result.value)

        logger.debug(
            "Payment for session %s: %s -> %s (%s)",
            ctx.session_id, ctx.step.value, outcome.next_step.value, outcome.state.value,
        )
        return self._finish(ctx, outcome.next_step, outcome.messages)
