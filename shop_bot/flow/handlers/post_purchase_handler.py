"""
Post-Purchase Handler for the Order Flow.

After the order is confirmed the shopper can view the order, ask when it
will be delivered, create an account to follow their orders, and rate the
experience. The rating ends the purchase: the session goes back to free
conversation at the initial step.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.attributes import flag_modified

from ...logging_config import mask_phone
from ...services.customers import create_account, find_customer_by_phone
from ...services.order_materializer import get_order
from ..draft import merge_metadata
from ..steps import POST_PURCHASE_STEPS, Step
from .handler_config import BaseHandler, HandlerResult, TurnContext

logger = logging.getLogger(__name__)


class PostPurchaseHandler(BaseHandler):
    """Handles payment_complete, account creation and the satisfaction survey."""

    steps = POST_PURCHASE_STEPS | {Step.PAYMENT_COMPLETE}

    def handle(self, ctx: TurnContext) -> Optional[HandlerResult]:
        result = self.validator.validate(ctx.step, ctx.user_input, ctx.draft)
        if result.is_free_text:
            return None
        if not result.is_valid:
            return self._reject(ctx, result.error)

        draft = ctx.draft
        draft.metadata = merge_metadata(draft.metadata, result.metadata)

        if ctx.step == Step.PAYMENT_COMPLETE:
            return self._handle_navigation(ctx, result.value)

        if ctx.step == Step.CREATE_ACCOUNT_EMAIL:
            draft.metadata.extra["accountEmail"] = result.value
            return self._advance(ctx, Step.CREATE_ACCOUNT_PASSWORD)

        if ctx.step == Step.CREATE_ACCOUNT_PASSWORD:
            return self._advance(ctx, Step.POST_PURCHASE, prefix=self._create_account(ctx, result.value))

        if ctx.step == Step.POST_PURCHASE:
            return self._handle_rating(ctx, result.value)

        return self._advance(ctx, result.next_step)

    def _handle_navigation(self, ctx: TurnContext, action: str) -> HandlerResult:
        draft = ctx.draft
        order_id = draft.metadata.extra.get("orderId")
        builder = self.message_builder

        if action == "view_order":
            content = f"Commande {order_id}\n\n{builder.build_order_summary(draft)}"
            return self._stay(ctx, builder.assistant(content, Step.PAYMENT_COMPLETE, draft, orderId=order_id))
        if action == "delivery":
            content = builder.build_delivery_eta(draft)
            return self._stay(ctx, builder.assistant(content, Step.PAYMENT_COMPLETE, draft, orderId=order_id))

        customer = find_customer_by_phone(self.db, draft.phone)
        if customer is None or not customer.password_hash:
            return self._advance(ctx, Step.CREATE_ACCOUNT)
        return self._advance(ctx, Step.POST_PURCHASE)

    def _stay(self, ctx: TurnContext, message) -> HandlerResult:
        self.store.checkpoint(ctx.session_id, ctx.step, ctx.draft)
        return HandlerResult([message], ctx.step, ctx.draft)

    def _create_account(self, ctx: TurnContext, password: str) -> str:
        draft = ctx.draft
        email = draft.metadata.extra.pop("accountEmail", None) or draft.email
        if not draft.phone or not email:
            return "Je n'ai pas pu créer votre compte : il manque votre e-mail ou votre téléphone."
        try:
            create_account(self.db, draft.phone, email, password)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Account creation failed for %s: %s", mask_phone(draft.phone), e)
            return "Je n'ai pas pu créer votre compte pour le moment. Vous pourrez réessayer plus tard."
        return f"🎉 Votre compte a été créé avec l'adresse {email}."

    def _handle_rating(self, ctx: TurnContext, rating: int) -> HandlerResult:
        draft = ctx.draft
        draft.metadata.extra["satisfaction"] = rating
        self._store_rating(draft.metadata.extra.get("orderId"), rating)
        self.guard.reset_to_free_conversation(draft)
        logger.info("Session %s rated the purchase %d/5", ctx.session_id, rating)
        return self._advance(ctx, Step.INITIAL, prefix="Merci pour votre note ! À très bientôt 😊")

    def _store_rating(self, order_id: Optional[str], rating: int) -> None:
        """Best effort: keep the rating on the order."""
        if not order_id:
            return
        try:
            order = get_order(self.db, order_id)
            if order is None:
                return
            order.meta = {**(order.meta or {}), "satisfaction": rating}
            flag_modified(order, "meta")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Could not store rating on order %s: %s", order_id, e)
