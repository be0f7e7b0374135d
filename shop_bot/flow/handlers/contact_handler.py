"""
Contact Handler for the Order Flow.

This module handles the collection steps of the guided flow: quantity,
name, phone, the returning-customer shortcut, city, address and the
optional e-mail, plus the three correction steps opened from the modify
menu (process_quantity, update_address, contact_info).

Returning customers:
    After a valid phone number, a known customer's name is prefilled. When
    the customer also has a stored address the flow asks "same address?"
    (check_existing); "yes" copies city and address and jumps straight to
    the product recommendations.
"""

import logging
from typing import Optional

from ...exceptions import OutOfStockError
from ...logging_config import mask_phone
from ...services.customers import find_customer_by_phone
from ..draft import delivery_cost_for_city, merge_metadata
from ..steps import Step
from .handler_config import BaseHandler, HandlerResult, TurnContext

logger = logging.getLogger(__name__)


class ContactHandler(BaseHandler):
    """Collects quantity and customer details for the guided flow."""

    steps = frozenset({
        Step.COLLECT_QUANTITY,
        Step.COLLECT_NAME,
        Step.COLLECT_PHONE,
        Step.CHECK_EXISTING,
        Step.COLLECT_CITY,
        Step.COLLECT_ADDRESS,
        Step.COLLECT_EMAIL_OPT,
        Step.COLLECT_EMAIL,
        Step.PROCESS_QUANTITY,
        Step.UPDATE_ADDRESS,
        Step.CONTACT_INFO,
    })

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

        if step in (Step.COLLECT_QUANTITY, Step.PROCESS_QUANTITY):
            try:
                if draft.product_id:
                    self.catalog.check_stock(draft.product_id, result.value)
            except OutOfStockError as e:
                return self._reject(
                    ctx,
                    f"Désolée, il ne reste que {e.available} exemplaire(s) de {e.product_name}. "
                    "Combien en souhaitez-vous ?",
                )
            draft.set_primary_quantity(result.value)
            prefix = f"Parfait, {result.value} exemplaire(s) !"

        elif step == Step.COLLECT_NAME:
            draft.set_full_name(result.value)
            prefix = f"Enchantée {draft.first_name} !"

        elif step == Step.COLLECT_PHONE:
            draft.phone = result.value
            next_step = self._apply_returning_customer(ctx, next_step)

        elif step == Step.CONTACT_INFO:
            draft.phone = result.value
            next_step = self._apply_returning_customer(ctx, next_step)
            prefix = "Numéro mis à jour."

        elif step == Step.CHECK_EXISTING:
            known = draft.metadata.extra.get("knownAddress") or {}
            if result.value == "same" and known.get("city") and known.get("address"):
                draft.city = known["city"]
                draft.address = known["address"]
                draft.set_delivery_cost(delivery_cost_for_city(draft.city))
                prefix = "C'est noté, nous livrerons à la même adresse."
            else:
                next_step = Step.COLLECT_CITY

        elif step == Step.COLLECT_CITY:
            draft.city = result.value
            draft.set_delivery_cost(delivery_cost_for_city(draft.city))

        elif step in (Step.COLLECT_ADDRESS, Step.UPDATE_ADDRESS):
            draft.address = result.value
            if step == Step.UPDATE_ADDRESS:
                prefix = "Adresse mise à jour."

        elif step in (Step.COLLECT_EMAIL_OPT, Step.COLLECT_EMAIL):
            if result.value:
                draft.email = result.value
                prefix = "Merci, vous recevrez la confirmation par e-mail."

        return self._advance(ctx, next_step, prefix=prefix)

    def _apply_returning_customer(self, ctx: TurnContext, next_step: Step) -> Step:
        """Prefill from a known customer and pick the step after the phone."""
        draft = ctx.draft
        customer = find_customer_by_phone(self.db, draft.phone)
        if customer is None:
            return next_step

        logger.info("Returning customer %s on session %s", mask_phone(draft.phone), ctx.session_id)
        if not draft.first_name and customer.first_name:
            draft.first_name = customer.first_name
            draft.last_name = customer.last_name
        if not draft.email and customer.email:
            draft.email = customer.email
        if customer.city and customer.address and not draft.address:
            draft.metadata.extra["existingCustomer"] = True
            draft.metadata.extra["knownAddress"] = {"city": customer.city, "address": customer.address}

        if next_step == Step.COLLECT_NAME and draft.first_name:
            return Step.CHECK_EXISTING
        return next_step
