"""
Navigation Handler for the Order Flow.

This module handles the exploration steps (initial, description,
testimonials, game rules): the top-level menu buttons and their typed
equivalents. Anything that is not a menu choice is left to the
free-text responder.
"""

import logging
from typing import Optional

from ..draft import merge_metadata
from ..steps import EXPLORATION_STEPS, Step
from .handler_config import BaseHandler, HandlerResult, TurnContext

logger = logging.getLogger(__name__)


class NavigationHandler(BaseHandler):
    """Handles the top-level menu of the product page."""

    steps = EXPLORATION_STEPS

    def handle(self, ctx: TurnContext) -> Optional[HandlerResult]:
        result = self.validator.validate(ctx.step, ctx.user_input, ctx.draft)
        if not result.is_valid:
            return None

        ctx.draft.metadata = merge_metadata(ctx.draft.metadata, result.metadata)
        if result.next_step in (Step.COLLECT_PHONE, Step.CHOOSE_FLOW):
            logger.info("Session %s entered the purchase flow at %s", ctx.session_id, result.next_step.value)
            prefix = "Excellent choix ! 🎉" if result.next_step == Step.COLLECT_PHONE else ""
            return self._advance(ctx, result.next_step, prefix=prefix)

        # Browsing between exploration pages completes nothing
        self.store.checkpoint(ctx.session_id, result.next_step, ctx.draft)
        message = self.render_landing(result.next_step, ctx.draft)
        return HandlerResult([message], result.next_step, ctx.draft)
