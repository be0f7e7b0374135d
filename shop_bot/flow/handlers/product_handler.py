"""
Product & Summary Handler for the Order Flow.

Handles the product recommendations, the "add another game" loop, the
order note, the order summary and the modify menu.

Product loop:
    recommend_products -> select_product -> additional_quantity
        -> add_product_choice -> (select_product again | add_notes)

Adding a product already in the cart merges the quantity into its line;
totals are recomputed after every change.
"""

import logging
from typing import List, Optional

from ...exceptions import OutOfStockError
from ...services.catalog import ProductInfo
from ..draft import merge_metadata
from ..steps import Step
from .handler_config import BaseHandler, HandlerResult, TurnContext

logger = logging.getLogger(__name__)

# Steps replayed on every pass through the product loop
PRODUCT_LOOP_STEPS = (Step.SELECT_PRODUCT, Step.ADDITIONAL_QUANTITY, Step.ADD_PRODUCT_CHOICE)


class ProductHandler(BaseHandler):
    """Handles product additions, notes, summary and modifications."""

    steps = frozenset({
        Step.RECOMMEND_PRODUCTS,
        Step.SELECT_PRODUCT,
        Step.ADDITIONAL_QUANTITY,
        Step.ADD_PRODUCT_CHOICE,
        Step.ADD_NOTES,
        Step.SAVE_NOTE,
        Step.ORDER_SUMMARY,
        Step.MODIFY_ORDER,
    })

    def handle(self, ctx: TurnContext) -> Optional[HandlerResult]:
        if ctx.step == Step.SELECT_PRODUCT:
            return self.handle_select_product(ctx)
        if ctx.step == Step.ADDITIONAL_QUANTITY:
            return self.handle_additional_quantity(ctx)

        result = self.validator.validate(ctx.step, ctx.user_input, ctx.draft)
        if result.is_free_text:
            return None
        if not result.is_valid:
            return self._reject(ctx, result.error)

        draft = ctx.draft
        draft.metadata = merge_metadata(draft.metadata, result.metadata)

        if ctx.step == Step.ADD_PRODUCT_CHOICE and result.next_step == Step.SELECT_PRODUCT:
            self.guard.release(draft, PRODUCT_LOOP_STEPS)
            return self._advance(ctx, Step.SELECT_PRODUCT)

        if ctx.step == Step.SAVE_NOTE:
            draft.notes = result.value
            return self._advance(ctx, result.next_step, prefix="📝 Note enregistrée.")

        if ctx.step == Step.MODIFY_ORDER:
            self.guard.reopen(draft, result.next_step)
            return self._advance(ctx, result.next_step, skip=False)

        if ctx.step == Step.ORDER_SUMMARY and result.next_step == Step.PAYMENT_METHOD:
            logger.info("Order summary confirmed for session %s", ctx.session_id)

        return self._advance(ctx, result.next_step)

    # ---- Product loop ----

    def handle_select_product(self, ctx: TurnContext) -> Optional[HandlerResult]:
        """Resolve the chosen product among the ones that were suggested."""
        result = self.validator.validate(ctx.step, ctx.user_input, ctx.draft)
        if not result.is_valid:
            return self._reject(ctx, result.error) if result.error else None
        if result.next_step == Step.ORDER_SUMMARY:
            return self._advance(ctx, Step.ORDER_SUMMARY)

        candidates = self._suggested_products(ctx)
        product = self.catalog.find_by_label(result.value, candidates)
        if product is None:
            return self._reject(
                ctx,
                "Je n'ai pas trouvé ce jeu. Choisissez l'un des jeux proposés.",
                choices=[p.name for p in candidates] + ["Non, merci"],
            )

        ctx.draft.metadata.extra["pendingProductId"] = product.id
        return self._advance(ctx, Step.ADDITIONAL_QUANTITY, prefix=f"{product.name}, excellent choix !")

    def handle_additional_quantity(self, ctx: TurnContext) -> Optional[HandlerResult]:
        result = self.validator.validate(ctx.step, ctx.user_input, ctx.draft)
        if result.is_free_text:
            return None
        if not result.is_valid:
            return self._reject(ctx, result.error)

        draft = ctx.draft
        product = self.catalog.get_product(draft.metadata.extra.get("pendingProductId"))
        if product is None:
            # The pending product vanished from the catalog; choose again
            draft.metadata.extra.pop("pendingProductId", None)
            self.guard.release(draft, PRODUCT_LOOP_STEPS)
            return self._advance(ctx, Step.SELECT_PRODUCT, prefix="Ce jeu n'est plus disponible.", skip=False)

        already = sum(item.quantity for item in draft.items if item.product_id == product.id)
        try:
            self.catalog.check_stock(product.id, already + result.value)
        except OutOfStockError as e:
            return self._reject(
                ctx,
                f"Désolée, il ne reste que {e.available} exemplaire(s) de {e.product_name}.",
            )

        draft.add_item(product.id, product.name, product.price, result.value)
        draft.metadata.extra.pop("pendingProductId", None)
        logger.info("Session %s added %d x %s", ctx.session_id, result.value, product.id)
        return self._advance(
            ctx,
            Step.ADD_PRODUCT_CHOICE,
            prefix=f"✅ {product.name} x{result.value} ajouté à votre commande.",
        )

    def _suggested_products(self, ctx: TurnContext) -> List[ProductInfo]:
        ids = ctx.draft.metadata.extra.get("recommendedIds") or []
        products = [p for p in (self.catalog.get_product(pid) for pid in ids) if p is not None]
        return products or self._recommendations(ctx.draft)
