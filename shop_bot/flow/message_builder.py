"""
Message Builder for the Order Flow.

This module builds the outbound chat messages and the text blocks used in
them: amounts in FCFA, the order summary, the express recap and the order
confirmation. Every assistant message carries the bot identity and the
routing metadata (next step, wire flags, serialized draft).
"""

from typing import Iterable, List, Optional

from ..config import BOT_NAME, BOT_TITLE, CURRENCY_LABEL, LOCAL_DELIVERY_CITIES, SUPPORT_PHONE
from ..schemas.chat import AssistantIdentity, MessageMetadata, OutboundMessage
from .draft import OrderDraft
from .steps import Step, default_choices, step_prompt


PAYMENT_METHOD_LABELS = {
    "WAVE": "Wave",
    "ORANGE_MONEY": "Orange Money",
    "CARD": "Carte bancaire",
    "CASH_ON_DELIVERY": "Paiement à la livraison",
}


def format_amount(amount: int) -> str:
    """Format a whole-FCFA amount: 12500 -> "12 500 FCFA"."""
    return f"{amount:,}".replace(",", " ") + f" {CURRENCY_LABEL}"


class MessageBuilder:
    """
    Builds outbound messages for the order flow.

    Holds the assistant identity so tests (or a white-label storefront) can
    swap it without touching the handlers.
    """

    def __init__(self, name: str = BOT_NAME, title: str = BOT_TITLE):
        self.identity = AssistantIdentity(name=name, title=title)

    # ---- Messages ----

    def assistant(
        self,
        content: str,
        step: Step,
        draft: Optional[OrderDraft] = None,
        choices: Optional[Iterable[str]] = None,
        **metadata,
    ) -> OutboundMessage:
        """
        Build an assistant message landing on ``step``.

        ``choices`` defaults to the registry choices of ``step``; pass an
        empty list to show no buttons.
        """
        if choices is None:
            choices = default_choices(step)
        meta = MessageMetadata(
            nextStep=step.value,
            orderData=draft.to_wire() if draft is not None else None,
            flags=draft.metadata.to_flags() if draft is not None else {},
            **metadata,
        )
        return OutboundMessage(
            type="assistant",
            content=content,
            choices=list(choices),
            assistant=self.identity,
            metadata=meta,
        )

    def prompt(self, step: Step, draft: Optional[OrderDraft] = None, prefix: str = "") -> OutboundMessage:
        """Registry prompt for ``step``, optionally preceded by an acknowledgement."""
        content = step_prompt(step)
        if prefix:
            content = f"{prefix}\n\n{content}"
        return self.assistant(content, step, draft)

    def user(self, content: str, step: Step) -> OutboundMessage:
        return OutboundMessage(
            type="user",
            content=content,
            metadata=MessageMetadata(nextStep=step.value),
        )

    def error(self, step: Step, draft: Optional[OrderDraft], content: str, code: str = None) -> OutboundMessage:
        """Same-step re-prompt after a rejected input."""
        return self.assistant(content, step, draft, error=code)

    # ---- Text blocks ----

    def build_items_block(self, draft: OrderDraft) -> List[str]:
        return [
            f"• {item.name} x{item.quantity} : {format_amount(item.line_total)}"
            for item in draft.items
        ]

    def build_order_summary(self, draft: OrderDraft) -> str:
        """Full recap: items, customer, note and amounts."""
        lines = ["📋 Récapitulatif de votre commande :", ""]
        lines.extend(self.build_items_block(draft))
        lines.append("")
        if draft.full_name:
            lines.append(f"👤 {draft.full_name}")
        if draft.phone:
            lines.append(f"📱 {draft.phone}")
        if draft.address or draft.city:
            location = ", ".join(p for p in (draft.address, draft.city) if p)
            lines.append(f"📍 {location}")
        if draft.email:
            lines.append(f"✉️ {draft.email}")
        if draft.notes:
            lines.append(f"📝 Note : {draft.notes}")
        lines.append("")
        lines.append(f"Sous-total : {format_amount(draft.subtotal)}")
        lines.append(f"Livraison : {format_amount(draft.delivery_cost)}")
        lines.append(f"Total : {format_amount(draft.total_amount)}")
        return "\n".join(lines)

    def build_express_summary(self, draft: OrderDraft) -> str:
        method = PAYMENT_METHOD_LABELS.get(draft.payment_method or "", draft.payment_method or "-")
        lines = ["⚡ Votre commande express :", ""]
        lines.extend(self.build_items_block(draft))
        lines.append("")
        lines.append(f"👤 {draft.full_name}")
        lines.append(f"📱 {draft.phone}")
        lines.append(f"📍 {draft.address}, {draft.city}")
        lines.append(f"💳 {method}")
        lines.append("")
        lines.append(f"Total (livraison incluse) : {format_amount(draft.total_amount)}")
        return "\n".join(lines)

    def build_confirmation(self, order_id: str, draft: OrderDraft) -> str:
        lines = [
            "🎉 Félicitations ! Votre commande a été confirmée avec succès !",
            f"Numéro de commande : {order_id}",
            "",
            f"Montant total : {format_amount(draft.total_amount)}",
        ]
        if draft.payment_method == "CASH_ON_DELIVERY":
            lines.append("Vous paierez à la livraison.")
        lines.append("Nous vous contacterons très bientôt pour la livraison.")
        return "\n".join(lines)

    def build_payment_instructions(self, method: str, payment_url: str) -> str:
        label = PAYMENT_METHOD_LABELS.get(method, method)
        return (
            f"Veuillez suivre ces étapes pour payer avec {label} :\n"
            "1. Cliquez sur le lien ci-dessous\n"
            "2. Complétez le paiement sur votre téléphone\n"
            "3. Revenez ici et cliquez sur \"J'ai payé\"\n\n"
            f"[Cliquez ici pour payer]({payment_url})"
        )

    def build_support_text(self) -> str:
        return f"Contactez notre service client au {SUPPORT_PHONE}, nous vous aiderons à finaliser votre commande."

    def build_delivery_eta(self, draft: OrderDraft) -> str:
        if draft.city and draft.city.strip().lower() in LOCAL_DELIVERY_CITIES:
            return "Votre commande sera livrée sous 24 à 48 heures à Dakar."
        return "Votre commande sera livrée sous 3 à 5 jours ouvrés."
