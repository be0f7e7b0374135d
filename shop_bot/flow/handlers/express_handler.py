"""
Express Flow Handler.

The express flow is the short variant of the purchase: name, phone,
address, city and payment method, then one recap to validate. It is a
sibling state machine to the guided flow, sharing the step validator and
the payment sub-flow.

Express Steps:
--------------
choose_flow -> express_name -> express_phone -> express_address
    -> express_city -> express_payment -> express_summary -> payment

The quantity defaults to one unit; it can be changed from the express
modify menu. A returning customer's stored address is reused, so a known
shopper goes from phone number straight to the payment method.
"""

import logging
from typing import Optional

from ...exceptions import OutOfStockError
from ...logging_config import mask_phone
from ...services.customers import find_customer_by_phone
from ..draft import Mode, delivery_cost_for_city, merge_metadata
from ..steps import EXPRESS_STEPS, Step
from .handler_config import BaseHandler, HandlerResult, TurnContext

logger = logging.getLogger(__name__)


class ExpressFlowHandler(BaseHandler):
    """Handles the express steps."""

    steps = EXPRESS_STEPS

    def handle(self, ctx: TurnContext) -> Optional[HandlerResult]:
        result = self.validator.validate(ctx.step, ctx.user_input, ctx.draft)
        if result.is_free_text:
            return None
        if not result.is_valid:
            return self._reject(ctx, result.error)

        draft = ctx.draft
        draft.metadata = merge_metadata(draft.metadata, result.metadata)
        step = ctx.step
        next_step = result.next_step
        prefix = ""

        if step == Step.CHOOSE_FLOW:
            draft.metadata.was_express = result.value == "express"
            if draft.metadata.was_express:
                logger.info("Session %s chose the express flow", ctx.session_id)
                prefix = "C'est parti, cela ne prendra qu'une minute ! ⚡"

        elif step == Step.EXPRESS_NAME:
            draft.set_full_name(result.value)

        elif step == Step.EXPRESS_PHONE:
            draft.phone = result.value
            self._prefill_known_address(ctx)

        elif step == Step.EXPRESS_ADDRESS:
            draft.address = result.value

        elif step == Step.EXPRESS_CITY:
            draft.city = result.value
            draft.set_delivery_cost(delivery_cost_for_city(draft.city))

        elif step == Step.EXPRESS_QUANTITY:
            try:
                if draft.product_id:
                    self.catalog.check_stock(draft.product_id, result.value)
            except OutOfStockError as e:
                return self._reject(ctx, f"Désolée, il ne reste que {e.available} exemplaire(s) de {e.product_name}.")
            draft.set_primary_quantity(result.value)

        elif step == Step.EXPRESS_PAYMENT:
            draft.payment_method = result.value

        elif step == Step.EXPRESS_SUMMARY:
            if next_step == Step.PAYMENT_PROCESSING:
                return self._validate_order(ctx)

        elif step == Step.EXPRESS_MODIFY:
            self.guard.reopen(draft, next_step)
            if next_step == Step.EXPRESS_PAYMENT:
                draft.payment_method = None
            return self._advance(ctx, next_step, skip=False)

        elif step == Step.EXPRESS_ERROR:
            if result.value == "support":
                self.guard.reset_to_free_conversation(draft)
                return self._advance(ctx, Step.INITIAL, prefix=self.message_builder.build_support_text())

        return self._advance(ctx, next_step, prefix=prefix)

    def _validate_order(self, ctx: TurnContext) -> HandlerResult:
        draft = ctx.draft
        if not draft.payment_method:
            return self._advance(ctx, Step.EXPRESS_PAYMENT, skip=False)
        draft.metadata.mode = Mode.EXPRESS_FLOW
        outcome = self.payments.start(ctx.session_id, draft, draft.payment_method, express=True)
        return self._finish(ctx, outcome.next_step, outcome.messages)

    def _prefill_known_address(self, ctx: TurnContext) -> None:
        draft = ctx.draft
        customer = find_customer_by_phone(self.db, draft.phone)
        if customer is None or draft.address:
            return
        if customer.city and customer.address:
            logger.info("Express: reusing stored address for %s", mask_phone(draft.phone))
            draft.address = customer.address
            draft.city = customer.city
            draft.set_delivery_cost(delivery_cost_for_city(draft.city))
        if not draft.email and customer.email:
            draft.email = customer.email
