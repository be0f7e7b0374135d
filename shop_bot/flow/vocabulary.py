"""
Keyword Vocabularies.

The chat widget mixes button clicks with typed answers, so binary choices and
payment-method selection are resolved by keyword matching on a normalized copy
of the input rather than by exact equality. Every step validator goes through
``classify`` instead of re-implementing its own matching.

Normalization lower-cases, trims, strips accents and folds apostrophes, so
"Problème", "probleme" and "PROBLÈME " all match the keyword "probleme".
Keywords match at the start of a word, which lets "livr" match "livrée".
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Optional, Tuple


# Returned by classify() when no choice matches
UNMATCHED = None


def normalize(text: str) -> str:
    """Lower-case, trim, strip accents and collapse whitespace."""
    if not text:
        return ""
    text = text.replace("’", "'").replace("`", "'")
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", stripped.lower()).strip()


@dataclass(frozen=True)
class Vocabulary:
    """
    An ordered set of choices, each with the keywords that select it.

    Order matters: the first choice with a matching keyword wins, so
    negative answers ("non, nouvelle adresse") are listed before the
    positive ones they could be confused with.
    """
    name: str
    entries: Tuple[Tuple[str, Tuple[str, ...]], ...]

    @property
    def choices(self) -> Tuple[str, ...]:
        return tuple(choice for choice, _ in self.entries)


def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(r"(?<!\w)" + re.escape(normalize(keyword)))


def classify(user_input: str, vocabulary: Vocabulary) -> Optional[str]:
    """
    Resolve free text or a button label to one of the vocabulary's choices.

    Returns:
        The matched choice key, or UNMATCHED (None).
    """
    text = normalize(user_input)
    if not text:
        return UNMATCHED

    for choice, keywords in vocabulary.entries:
        for keyword in keywords:
            if _keyword_pattern(keyword).search(text):
                return choice
    return UNMATCHED


def matches_exactly(user_input: str, labels) -> bool:
    """True when the input equals one of ``labels`` after normalization."""
    text = normalize(user_input)
    return any(text == normalize(label) for label in labels)


# =============================================================================
# Vocabularies
# =============================================================================

YES_NO = Vocabulary("yes_no", (
    ("no", ("non", "pas maintenant", "juste celui", "continuer", "pas besoin", "plus tard")),
    ("yes", ("oui", "yes", "ok", "d'accord", "bien sur", "volontiers", "montrez",
             "ajouter une note", "creer un compte", "ouais", "avec plaisir")),
))

SAME_ADDRESS = Vocabulary("same_address", (
    ("new", ("nouvelle", "non", "autre", "changer", "differente")),
    ("same", ("meme", "oui", "identique", "toujours")),
))

CONFIRM_ORDER = Vocabulary("confirm_order", (
    ("modify", ("modifier", "changer", "corriger", "non", "pas correct")),
    ("confirm", ("correct", "confirmer", "confirme", "valider", "oui", "c'est bon", "parfait")),
))

PAYMENT_METHODS = Vocabulary("payment_methods", (
    ("CASH_ON_DELIVERY", ("livraison", "cash", "especes", "a la reception")),
    ("ORANGE_MONEY", ("orange",)),
    ("WAVE", ("wave",)),
    ("CARD", ("carte", "card", "visa", "mastercard", "bancaire")),
))

CHOOSE_FLOW = Vocabulary("choose_flow", (
    ("express", ("rapidement", "rapide", "moins", "express", "vite")),
    ("guided", ("guide", "pas a pas", "conseil", "accompagne")),
))

PAYMENT_PROCESSING = Vocabulary("payment_processing", (
    ("problem", ("probleme", "erreur", "echec", "echoue", "marche pas", "bloque")),
    ("switch", ("changer", "autre methode", "autre moyen")),
    ("not_yet", ("pas encore", "non")),
    ("paid", ("paye", "j'ai paye", "c'est fait", "termine", "verifier", "oui")),
))

PAYMENT_ERROR = Vocabulary("payment_error", (
    ("support", ("support", "service client", "contacter", "conseiller")),
    ("switch", ("changer", "autre methode", "autre moyen", "essayer une autre")),
    ("retry", ("reessayer", "verifier", "encore", "plus tard")),
))

POST_PAYMENT = Vocabulary("post_payment", (
    ("delivery", ("livr", "quand", "delai")),
    ("view_order", ("voir ma commande", "ma commande", "recapitulatif", "suivi")),
    ("goodbye", ("merci", "au revoir", "non", "c'est tout")),
))

ADD_PRODUCT_CHOICE = Vocabulary("add_product_choice", (
    ("validate", ("valider", "terminer", "c'est tout", "non")),
    ("add_more", ("ajouter", "autre", "encore", "oui")),
))

MODIFY_ORDER = Vocabulary("modify_order", (
    ("quantity", ("quantite", "nombre", "exemplaire")),
    ("address", ("adresse", "ville", "livraison")),
    ("info", ("information", "nom", "coordonnee", "telephone")),
))

EXPRESS_SUMMARY = Vocabulary("express_summary", (
    ("modify", ("modifier", "changer", "non")),
    ("validate", ("valider", "confirmer", "correct", "oui", "c'est bon")),
))

EXPRESS_MODIFY = Vocabulary("express_modify", (
    ("quantity", ("quantite", "nombre", "exemplaire")),
    ("address", ("adresse", "ville")),
    ("payment", ("paiement", "payer", "methode", "moyen")),
))

EXPRESS_ERROR = Vocabulary("express_error", (
    ("support", ("support", "contacter", "service client")),
    ("retry", ("reessayer", "encore", "oui")),
))

MAIN_MENU = Vocabulary("main_menu", (
    ("buy", ("acheter", "commander", "achat")),
    ("testimonials", ("temoignage", "avis")),
    ("rules", ("jouer", "regle", "comment y")),
    ("learn", ("en savoir plus", "savoir", "description", "detail")),
))


def parse_rating(user_input: str) -> Optional[int]:
    """Parse a 1-5 satisfaction rating from stars or a digit."""
    if not user_input:
        return None
    stars = user_input.count("⭐") or user_input.count("★")
    if 1 <= stars <= 5:
        return stars
    match = re.search(r"\b([1-5])\b", user_input)
    if match:
        return int(match.group(1))
    return None
