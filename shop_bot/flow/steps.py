"""
Step Registry
=============

The closed set of conversation steps and the static table describing them.
This table is the topology of the order flow: for every step it records the
default successor, the alternative transitions a handler is allowed to take
(``branches``), the button choices shown to the shopper, and the prompt used
when the flow lands on the step.

Everything in this module is pure data plus pure functions. Handlers decide
*which* transition to take; this module only says which ones exist.

Step Families:
--------------
- **Exploration**: initial, description, testimonials, game_rules. Free text is
  allowed here and answered by the message analyzer.
- **Collection**: quantity, name, phone, existing customer, city, address, email.
- **Products**: recommendations and the "add another product" loop.
- **Summary**: notes, order summary and the modify loop.
- **Payment**: the payment sub-flow, shared by both flow variants.
- **Post-purchase**: account creation and the satisfaction survey.
- **Express**: the short variant, a sibling state machine to the guided flow.

Graph Rules:
------------
- ``next_step`` is total: every step has exactly one default successor and it
  is itself a member of the set.
- Every step is reachable from ``initial`` over successor + branch edges.
- The successor graph has no cycle except through the reset edge into
  ``initial`` and the loop-back steps listed in ``LOOP_BACK_STEPS``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Tuple


class Step(str, Enum):
    """Closed set of conversation steps."""
    # Exploration
    INITIAL = "initial"
    DESCRIPTION = "description"
    TESTIMONIALS = "testimonials"
    GAME_RULES = "game_rules"

    # Collection
    COLLECT_QUANTITY = "collect_quantity"
    COLLECT_NAME = "collect_name"
    COLLECT_PHONE = "collect_phone"
    CHECK_EXISTING = "check_existing"
    COLLECT_CITY = "collect_city"
    COLLECT_ADDRESS = "collect_address"
    COLLECT_EMAIL_OPT = "collect_email_opt"
    COLLECT_EMAIL = "collect_email"

    # Products
    RECOMMEND_PRODUCTS = "recommend_products"
    SELECT_PRODUCT = "select_product"
    ADDITIONAL_QUANTITY = "additional_quantity"
    ADD_PRODUCT_CHOICE = "add_product_choice"

    # Summary
    ADD_NOTES = "add_notes"
    SAVE_NOTE = "save_note"
    ORDER_SUMMARY = "order_summary"
    MODIFY_ORDER = "modify_order"
    PROCESS_QUANTITY = "process_quantity"
    UPDATE_ADDRESS = "update_address"
    CONTACT_INFO = "contact_info"

    # Payment
    PAYMENT_METHOD = "payment_method"
    PAYMENT_PROCESSING = "payment_processing"
    PAYMENT_COMPLETE = "payment_complete"
    PAYMENT_ERROR = "payment_error"

    # Post-purchase
    CREATE_ACCOUNT = "create_account"
    CREATE_ACCOUNT_EMAIL = "create_account_email"
    CREATE_ACCOUNT_PASSWORD = "create_account_password"
    POST_PURCHASE = "post_purchase"

    # Express
    CHOOSE_FLOW = "choose_flow"
    EXPRESS_NAME = "express_name"
    EXPRESS_PHONE = "express_phone"
    EXPRESS_ADDRESS = "express_address"
    EXPRESS_CITY = "express_city"
    EXPRESS_QUANTITY = "express_quantity"
    EXPRESS_PAYMENT = "express_payment"
    EXPRESS_SUMMARY = "express_summary"
    EXPRESS_MODIFY = "express_modify"
    EXPRESS_ERROR = "express_error"


@dataclass(frozen=True)
class StepDefinition:
    """Static description of one step."""
    step: Step
    successor: Step
    prompt: str
    choices: Tuple[str, ...] = ()
    branches: FrozenSet[Step] = field(default_factory=frozenset)


# =============================================================================
# Choice labels
# =============================================================================
# Button labels are also the canonical free-text answers; the vocabulary module
# matches typed equivalents by keyword.

BUY_NOW = "Je veux l'acheter maintenant"
LEARN_MORE = "Je veux en savoir plus"
SEE_TESTIMONIALS = "Je veux voir les témoignages"
HOW_TO_PLAY = "Comment y jouer ?"

PAYMENT_CHOICES = ("Wave", "Orange Money", "Carte bancaire", "Payer à la livraison")
RATING_CHOICES = ("⭐⭐⭐⭐⭐", "⭐⭐⭐⭐", "⭐⭐⭐", "⭐⭐", "⭐")
EXPRESS_FLOW_CHOICES = (
    "✅ Commander rapidement (moins d'1 minute)",
    "🤖 Être guidé pas à pas avec mes conseils",
)

# Top-level menu entries; typing one of these is never free conversation
PREDEFINED_CHOICES: Tuple[str, ...] = (BUY_NOW, LEARN_MORE, SEE_TESTIMONIALS, HOW_TO_PLAY)


def _def(step, successor, prompt, choices=(), branches=()):
    return StepDefinition(
        step=step,
        successor=successor,
        prompt=prompt,
        choices=tuple(choices),
        branches=frozenset(branches),
    )


# =============================================================================
# Registry
# =============================================================================

STEP_REGISTRY: Dict[Step, StepDefinition] = {
    d.step: d
    for d in (
        # ---- Exploration ----
        _def(
            Step.INITIAL, Step.COLLECT_QUANTITY,
            "Bonjour ! Je suis là pour vous aider. Que souhaitez-vous faire ?",
            (BUY_NOW, LEARN_MORE, SEE_TESTIMONIALS),
            (Step.COLLECT_PHONE, Step.CHOOSE_FLOW, Step.DESCRIPTION, Step.TESTIMONIALS),
        ),
        _def(
            Step.DESCRIPTION, Step.COLLECT_QUANTITY,
            "Voici ce qu'il faut savoir sur ce produit.",
            (BUY_NOW, SEE_TESTIMONIALS, HOW_TO_PLAY),
            (Step.TESTIMONIALS, Step.GAME_RULES, Step.COLLECT_PHONE, Step.CHOOSE_FLOW),
        ),
        _def(
            Step.TESTIMONIALS, Step.COLLECT_QUANTITY,
            "Voici ce qu'en disent nos clients.",
            (BUY_NOW, LEARN_MORE, HOW_TO_PLAY),
            (Step.DESCRIPTION, Step.GAME_RULES, Step.COLLECT_PHONE, Step.CHOOSE_FLOW),
        ),
        _def(
            Step.GAME_RULES, Step.COLLECT_QUANTITY,
            "Voici comment y jouer.",
            (BUY_NOW, LEARN_MORE, SEE_TESTIMONIALS),
            (Step.DESCRIPTION, Step.TESTIMONIALS, Step.COLLECT_PHONE, Step.CHOOSE_FLOW),
        ),

        # ---- Collection ----
        _def(
            Step.COLLECT_QUANTITY, Step.COLLECT_NAME,
            "Combien d'exemplaires souhaitez-vous commander ?",
            ("1", "2", "3", "4"),
        ),
        _def(
            Step.COLLECT_NAME, Step.COLLECT_PHONE,
            "Quel est votre nom complet (prénom et nom) ?",
        ),
        _def(
            Step.COLLECT_PHONE, Step.CHECK_EXISTING,
            "Quel est votre numéro de téléphone ?",
            (),
            (Step.COLLECT_NAME,),
        ),
        _def(
            Step.CHECK_EXISTING, Step.COLLECT_CITY,
            "Ravie de vous revoir ! Souhaitez-vous être livré(e) à la même adresse ?",
            ("Oui, même adresse", "Non, nouvelle adresse"),
            (Step.RECOMMEND_PRODUCTS,),
        ),
        _def(
            Step.COLLECT_CITY, Step.COLLECT_ADDRESS,
            "Dans quelle ville souhaitez-vous être livré(e) ?",
        ),
        _def(
            Step.COLLECT_ADDRESS, Step.COLLECT_EMAIL_OPT,
            "Quelle est votre adresse de livraison exacte (quartier, rue, villa) ?",
        ),
        _def(
            Step.COLLECT_EMAIL_OPT, Step.COLLECT_EMAIL,
            "Souhaitez-vous recevoir la confirmation de commande par e-mail ?",
            ("Oui", "Non, merci"),
            (Step.RECOMMEND_PRODUCTS,),
        ),
        _def(
            Step.COLLECT_EMAIL, Step.RECOMMEND_PRODUCTS,
            "Quelle est votre adresse e-mail ?",
            ("Non, merci",),
        ),

        # ---- Products ----
        _def(
            Step.RECOMMEND_PRODUCTS, Step.ORDER_SUMMARY,
            "Souhaitez-vous découvrir d'autres jeux qui pourraient vous plaire ?",
            ("Oui, montrez-moi", "Non, juste celui-ci"),
            (Step.SELECT_PRODUCT,),
        ),
        _def(
            Step.SELECT_PRODUCT, Step.ADDITIONAL_QUANTITY,
            "Quel jeu souhaitez-vous ajouter ?",
            (),
            (Step.ORDER_SUMMARY,),
        ),
        _def(
            Step.ADDITIONAL_QUANTITY, Step.ADD_PRODUCT_CHOICE,
            "Combien d'exemplaires de ce jeu souhaitez-vous ?",
            ("1", "2", "3"),
        ),
        _def(
            Step.ADD_PRODUCT_CHOICE, Step.ADD_NOTES,
            "Souhaitez-vous valider la commande ou ajouter un autre jeu ?",
            ("Valider la commande", "Ajouter un autre jeu"),
            (Step.SELECT_PRODUCT,),
        ),

        # ---- Summary ----
        _def(
            Step.ADD_NOTES, Step.ORDER_SUMMARY,
            "Souhaitez-vous ajouter une note à votre commande ?",
            ("Oui, ajouter une note", "Non, continuer"),
            (Step.SAVE_NOTE,),
        ),
        _def(
            Step.SAVE_NOTE, Step.ORDER_SUMMARY,
            "Écrivez votre note pour la commande.",
        ),
        _def(
            Step.ORDER_SUMMARY, Step.PAYMENT_METHOD,
            "Voici le récapitulatif de votre commande.",
            ("C'est correct", "Je veux modifier"),
            (Step.MODIFY_ORDER,),
        ),
        _def(
            Step.MODIFY_ORDER, Step.PROCESS_QUANTITY,
            "Que souhaitez-vous modifier ?",
            ("Modifier la quantité", "Modifier l'adresse", "Modifier mes informations"),
            (Step.UPDATE_ADDRESS, Step.CONTACT_INFO),
        ),
        _def(
            Step.PROCESS_QUANTITY, Step.ORDER_SUMMARY,
            "Quelle nouvelle quantité souhaitez-vous ?",
            ("1", "2", "3", "4"),
        ),
        _def(
            Step.UPDATE_ADDRESS, Step.ORDER_SUMMARY,
            "Quelle est votre nouvelle adresse de livraison ?",
        ),
        _def(
            Step.CONTACT_INFO, Step.ORDER_SUMMARY,
            "Quel numéro de téléphone devons-nous utiliser pour la livraison ?",
        ),

        # ---- Payment ----
        _def(
            Step.PAYMENT_METHOD, Step.PAYMENT_PROCESSING,
            "Comment souhaitez-vous effectuer le paiement ?",
            PAYMENT_CHOICES,
            (Step.PAYMENT_COMPLETE, Step.PAYMENT_ERROR, Step.MODIFY_ORDER),
        ),
        _def(
            Step.PAYMENT_PROCESSING, Step.PAYMENT_COMPLETE,
            "Le paiement est en cours de traitement. Avez-vous effectué le paiement ?",
            ("J'ai payé", "Je rencontre un problème", "Changer de méthode"),
            (Step.PAYMENT_ERROR, Step.PAYMENT_METHOD),
        ),
        _def(
            Step.PAYMENT_COMPLETE, Step.POST_PURCHASE,
            "Votre commande est confirmée. Puis-je vous aider avec autre chose ?",
            ("Voir ma commande", "Quand sera-t-elle livrée ?", "Merci, au revoir"),
            (Step.CREATE_ACCOUNT,),
        ),
        _def(
            Step.PAYMENT_ERROR, Step.PAYMENT_METHOD,
            "Je suis désolée, le paiement n'a pas abouti. Que souhaitez-vous faire ?",
            ("Réessayer", "Changer de méthode", "Contacter le support"),
            (Step.PAYMENT_PROCESSING,),
        ),

        # ---- Post-purchase ----
        _def(
            Step.CREATE_ACCOUNT, Step.POST_PURCHASE,
            "Souhaitez-vous créer un compte pour suivre vos commandes ?",
            ("Oui, créer un compte", "Pas maintenant, merci"),
            (Step.CREATE_ACCOUNT_EMAIL, Step.CREATE_ACCOUNT_PASSWORD),
        ),
        _def(
            Step.CREATE_ACCOUNT_EMAIL, Step.CREATE_ACCOUNT_PASSWORD,
            "Quelle adresse e-mail souhaitez-vous utiliser pour votre compte ?",
        ),
        _def(
            Step.CREATE_ACCOUNT_PASSWORD, Step.POST_PURCHASE,
            "Choisissez un mot de passe (au moins 8 caractères).",
        ),
        _def(
            Step.POST_PURCHASE, Step.INITIAL,
            "Comment évaluez-vous votre expérience d'achat ?",
            RATING_CHOICES,
        ),

        # ---- Express ----
        _def(
            Step.CHOOSE_FLOW, Step.EXPRESS_NAME,
            "Comment souhaitez-vous passer votre commande ?",
            EXPRESS_FLOW_CHOICES,
            (Step.COLLECT_QUANTITY,),
        ),
        _def(
            Step.EXPRESS_NAME, Step.EXPRESS_PHONE,
            "Parfait ! Quel est votre nom complet ?",
        ),
        _def(
            Step.EXPRESS_PHONE, Step.EXPRESS_ADDRESS,
            "Quel est votre numéro de téléphone ?",
            (),
            (Step.EXPRESS_PAYMENT,),
        ),
        _def(
            Step.EXPRESS_ADDRESS, Step.EXPRESS_CITY,
            "Quelle est votre adresse de livraison ?",
            (),
            (Step.EXPRESS_SUMMARY,),
        ),
        _def(
            Step.EXPRESS_CITY, Step.EXPRESS_PAYMENT,
            "Dans quelle ville ?",
        ),
        _def(
            Step.EXPRESS_QUANTITY, Step.EXPRESS_SUMMARY,
            "Combien d'exemplaires souhaitez-vous ?",
            ("1", "2", "3", "4"),
        ),
        _def(
            Step.EXPRESS_PAYMENT, Step.EXPRESS_SUMMARY,
            "Comment souhaitez-vous payer ?",
            PAYMENT_CHOICES,
        ),
        _def(
            Step.EXPRESS_SUMMARY, Step.PAYMENT_PROCESSING,
            "Voici le récapitulatif de votre commande express.",
            ("Valider la commande", "Modifier ma commande"),
            (Step.EXPRESS_MODIFY, Step.PAYMENT_COMPLETE, Step.EXPRESS_ERROR),
        ),
        _def(
            Step.EXPRESS_MODIFY, Step.EXPRESS_SUMMARY,
            "Que souhaitez-vous modifier ?",
            ("Quantité", "Adresse", "Mode de paiement"),
            (Step.EXPRESS_QUANTITY, Step.EXPRESS_ADDRESS, Step.EXPRESS_PAYMENT),
        ),
        _def(
            Step.EXPRESS_ERROR, Step.EXPRESS_SUMMARY,
            "Une erreur est survenue pendant votre commande express.",
            ("Réessayer", "Contacter le support"),
            (Step.INITIAL,),
        ),
    )
}


# =============================================================================
# Step families
# =============================================================================

EXPRESS_STEPS: FrozenSet[Step] = frozenset({
    Step.CHOOSE_FLOW,
    Step.EXPRESS_NAME,
    Step.EXPRESS_PHONE,
    Step.EXPRESS_ADDRESS,
    Step.EXPRESS_CITY,
    Step.EXPRESS_QUANTITY,
    Step.EXPRESS_PAYMENT,
    Step.EXPRESS_SUMMARY,
    Step.EXPRESS_MODIFY,
    Step.EXPRESS_ERROR,
})

EXPLORATION_STEPS: FrozenSet[Step] = frozenset({
    Step.INITIAL,
    Step.DESCRIPTION,
    Step.TESTIMONIALS,
    Step.GAME_RULES,
})

PAYMENT_STEPS: FrozenSet[Step] = frozenset({
    Step.PAYMENT_METHOD,
    Step.PAYMENT_PROCESSING,
    Step.PAYMENT_COMPLETE,
    Step.PAYMENT_ERROR,
})

POST_PURCHASE_STEPS: FrozenSet[Step] = frozenset({
    Step.CREATE_ACCOUNT,
    Step.CREATE_ACCOUNT_EMAIL,
    Step.CREATE_ACCOUNT_PASSWORD,
    Step.POST_PURCHASE,
})

# Steps where the free-text responder must never answer
STRUCTURED_STEPS: FrozenSet[Step] = frozenset(
    step for step in Step if step not in EXPLORATION_STEPS
)

# Steps that deliberately loop back to an earlier point of the flow
LOOP_BACK_STEPS: FrozenSet[Step] = frozenset({
    Step.MODIFY_ORDER,
    Step.EXPRESS_MODIFY,
    Step.PAYMENT_ERROR,
    Step.EXPRESS_ERROR,
})

# Steps whose answer is (re)opened from a modify menu
MODIFY_TARGETS: Dict[Step, Tuple[Step, ...]] = {
    Step.PROCESS_QUANTITY: (Step.COLLECT_QUANTITY, Step.PROCESS_QUANTITY),
    Step.UPDATE_ADDRESS: (Step.COLLECT_ADDRESS, Step.UPDATE_ADDRESS),
    Step.CONTACT_INFO: (Step.COLLECT_PHONE, Step.CONTACT_INFO),
    Step.EXPRESS_QUANTITY: (Step.EXPRESS_QUANTITY,),
    Step.EXPRESS_ADDRESS: (Step.EXPRESS_ADDRESS,),
    Step.EXPRESS_PAYMENT: (Step.EXPRESS_PAYMENT,),
}

# Guided-flow step that takes over an express step when the express flow fails
EXPRESS_FALLBACK: Dict[Step, Step] = {
    Step.CHOOSE_FLOW: Step.COLLECT_QUANTITY,
    Step.EXPRESS_NAME: Step.COLLECT_NAME,
    Step.EXPRESS_PHONE: Step.COLLECT_PHONE,
    Step.EXPRESS_ADDRESS: Step.COLLECT_ADDRESS,
    Step.EXPRESS_CITY: Step.COLLECT_CITY,
    Step.EXPRESS_QUANTITY: Step.COLLECT_QUANTITY,
    Step.EXPRESS_PAYMENT: Step.PAYMENT_METHOD,
    Step.EXPRESS_SUMMARY: Step.ORDER_SUMMARY,
    Step.EXPRESS_MODIFY: Step.MODIFY_ORDER,
    Step.EXPRESS_ERROR: Step.ORDER_SUMMARY,
}


# =============================================================================
# Public functions
# =============================================================================

def coerce_step(value) -> Step:
    """Convert a step name (or Step) into a Step, defaulting to INITIAL."""
    if isinstance(value, Step):
        return value
    try:
        return Step(value)
    except ValueError:
        return Step.INITIAL


def get_definition(step: Step) -> StepDefinition:
    """Return the registry entry for a step."""
    return STEP_REGISTRY[coerce_step(step)]


def next_step(step: Step) -> Step:
    """Default successor of a step. Total over the closed step set."""
    return get_definition(step).successor


def default_choices(step: Step) -> List[str]:
    """Button choices shown when the flow lands on ``step``."""
    return list(get_definition(step).choices)


def step_prompt(step: Step) -> str:
    """Prompt used when the flow lands on ``step``."""
    return get_definition(step).prompt


def allowed_transitions(step: Step) -> FrozenSet[Step]:
    """All transitions a handler may take from ``step`` (successor + branches)."""
    definition = get_definition(step)
    return frozenset({definition.successor, step}) | definition.branches


def is_express_step(step: Step) -> bool:
    return coerce_step(step) in EXPRESS_STEPS


def is_structured_step(step: Step) -> bool:
    return coerce_step(step) in STRUCTURED_STEPS
