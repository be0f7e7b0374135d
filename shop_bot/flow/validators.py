"""
Input Validation Functions.

This module contains validation functions for shopper-provided data:
phone numbers (West African mobile plans), email addresses, names,
quantities, cities and delivery addresses.

Every validator returns a ``(value, error_message)`` tuple:
    - valid:   (normalized_value, None)
    - invalid: (None, user-friendly French error message)
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import phonenumbers
from phonenumbers.phonenumberutil import NumberParseException
from email_validator import validate_email, EmailNotValidError

from ..config import (
    DEFAULT_COUNTRY_CODE,
    MAX_QUANTITY,
    MIN_ADDRESS_LENGTH,
    MIN_CITY_LENGTH,
    MIN_QUANTITY,
)
from ..logging_config import mask_phone

logger = logging.getLogger(__name__)


# =============================================================================
# Phone numbers
# =============================================================================

@dataclass(frozen=True)
class CountryPhoneRule:
    """National numbering rule for one supported country."""
    country: str
    dial_code: str
    pattern: str
    example: str


PHONE_RULES: Dict[str, CountryPhoneRule] = {
    "SN": CountryPhoneRule("SN", "+221", r"^(?:7[0-8])\d{7}$", "77 123 45 67"),
    "CI": CountryPhoneRule("CI", "+225", r"^(?:0[1-8]|[457])\d{7}$", "07 123 45 67"),
    "BF": CountryPhoneRule("BF", "+226", r"^[567]\d{7}$", "70 12 34 56"),
    "ML": CountryPhoneRule("ML", "+223", r"^[67]\d{7}$", "76 12 34 56"),
    "GN": CountryPhoneRule("GN", "+224", r"^6\d{8}$", "621 23 45 67"),
}

_RULES_BY_DIAL_CODE = {rule.dial_code: rule for rule in PHONE_RULES.values()}


@dataclass(frozen=True)
class FormattedPhone:
    international: str
    local: str


class PhoneValidator:
    """
    Validate and normalize mobile numbers for the supported countries.

    Numbers typed without an international prefix are read in the requested
    (or default) country. The national part is checked against the country's
    mobile pattern; phonenumbers is used to parse and to format the result.
    """

    def __init__(self, default_country: str = DEFAULT_COUNTRY_CODE):
        if not self.is_supported_country(default_country):
            raise ValueError(f"Unsupported country: {default_country}")
        self.default_country = default_country

    @staticmethod
    def is_supported_country(country: str) -> bool:
        return (country or "").upper() in PHONE_RULES

    def help_text(self, country: str = None) -> str:
        rule = PHONE_RULES[(country or self.default_country).upper()]
        return f"Format attendu: {rule.example} (ou {rule.dial_code} {rule.example})"

    def _split(self, phone: str, country: str) -> Tuple[Optional[CountryPhoneRule], str]:
        """Return (country rule, national digits) for a raw input."""
        cleaned = re.sub(r"[\s.\-()]", "", phone)
        if cleaned.startswith("00"):
            cleaned = "+" + cleaned[2:]

        if cleaned.startswith("+"):
            for dial_code, rule in _RULES_BY_DIAL_CODE.items():
                if cleaned.startswith(dial_code):
                    return rule, cleaned[len(dial_code):]
            return None, cleaned

        rule = PHONE_RULES[country]
        bare_code = rule.dial_code[1:]
        # "221771234567" typed without the plus
        if cleaned.startswith(bare_code) and len(cleaned) > len(bare_code) + 7:
            return rule, cleaned[len(bare_code):]
        return rule, cleaned

    def validate(self, phone: str, country: str = None) -> Tuple[Optional[str], Optional[str]]:
        """
        Validate a phone number.

        Returns:
            (E.164 phone, None) if valid, (None, error message) otherwise.
        """
        if not phone or not phone.strip():
            return (None, "Je n'ai pas reçu de numéro de téléphone. Pouvez-vous le saisir ?")

        country = (country or self.default_country).upper()
        if country not in PHONE_RULES:
            return (None, "Ce pays n'est pas encore pris en charge pour la livraison.")

        rule, national = self._split(phone.strip(), country)
        if rule is None:
            return (None, "Ce pays n'est pas encore pris en charge pour la livraison.")

        if not national.isdigit() or not re.match(rule.pattern, national):
            return (None, f"Format invalide pour {rule.country}. Format attendu: {rule.example}")

        try:
            parsed = phonenumbers.parse(rule.dial_code + national, None)
        except NumberParseException as e:
            logger.warning("Phone parsing failed: %s - %s", mask_phone(phone), str(e))
            return (None, f"Format invalide pour {rule.country}. Format attendu: {rule.example}")

        formatted = phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
        logger.debug("Phone validation succeeded: %s", mask_phone(formatted))
        return (formatted, None)

    def format(self, phone: str, country: str = None) -> FormattedPhone:
        """International and local renderings, e.g. "+221 77 123 45 67" / "77 123 45 67"."""
        e164, error = self.validate(phone, country)
        if error:
            return FormattedPhone(international=phone, local=phone)
        parsed = phonenumbers.parse(e164, None)
        return FormattedPhone(
            international=phonenumbers.format_number(
                parsed, phonenumbers.PhoneNumberFormat.INTERNATIONAL
            ),
            local=phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.NATIONAL),
        )



# =============================================================================
# Email
# =============================================================================

def validate_email_address(email: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Validate an email address using the email-validator library.

    Only syntax is checked (check_deliverability=False); bounces are
    handled later by the mailing side.
    """
    if not email or not email.strip():
        return (None, "Je n'ai pas reçu d'adresse e-mail. Pouvez-vous la saisir ?")

    try:
        result = validate_email(email.strip(), check_deliverability=False)
        return (result.normalized, None)
    except EmailNotValidError as e:
        error_str = str(e).lower()
        if "at sign" in error_str or "@" not in email:
            return (None, "Il manque le @ dans cette adresse e-mail. Pouvez-vous la vérifier ?")
        logger.info("Email validation failed: %s", str(e))
        return (None, "Cette adresse e-mail ne semble pas valide. Exemple : nom@exemple.com")


# =============================================================================
# Names, quantities, locations
# =============================================================================

_NAME_RE = re.compile(r"^[^\W\d_]+(?:[\s'\-][^\W\d_]+)*$", re.UNICODE)


def validate_full_name(name: str, min_length: int = 2) -> Tuple[Optional[str], Optional[str]]:
    """
    Validate a "first last" name.

    At least two words made of letters are required; the result is
    whitespace-normalized with each word capitalized.
    """
    cleaned = re.sub(r"\s+", " ", (name or "")).strip()
    words = cleaned.split(" ") if cleaned else []
    if len(cleaned) < min_length or len(words) < 2:
        return (None, "Merci d'indiquer votre prénom et votre nom (ex : Awa Diop).")
    if not _NAME_RE.match(cleaned):
        return (None, "Le nom ne doit contenir que des lettres. Pouvez-vous le saisir à nouveau ?")
    return (" ".join(w[:1].upper() + w[1:] for w in words), None)


def parse_quantity(value: str) -> Tuple[Optional[int], Optional[str]]:
    """
    Parse a quantity between MIN_QUANTITY and MAX_QUANTITY.

    The answer must hold exactly one whole number ("2", "J'en veux 2");
    "3.5", "x2" or "2 ou 3" are asked again.
    """
    tokens = [token.strip(".,;:!?()") for token in re.findall(r"\S*\d\S*", value or "")]
    if len(tokens) != 1 or not re.fullmatch(r"-?\d+", tokens[0]):
        return (None, "Merci d'indiquer un nombre (par exemple 1, 2 ou 3).")
    quantity = int(tokens[0])
    if quantity < MIN_QUANTITY or quantity > MAX_QUANTITY:
        return (None, f"La quantité doit être comprise entre {MIN_QUANTITY} et {MAX_QUANTITY}.")
    return (quantity, None)


def validate_city(city: str) -> Tuple[Optional[str], Optional[str]]:
    cleaned = re.sub(r"\s+", " ", (city or "")).strip()
    if len(cleaned) < MIN_CITY_LENGTH:
        return (None, "Merci d'indiquer votre ville de livraison.")
    return (cleaned[:1].upper() + cleaned[1:], None)


def validate_address(address: str) -> Tuple[Optional[str], Optional[str]]:
    cleaned = re.sub(r"\s+", " ", (address or "")).strip()
    if len(cleaned) < MIN_ADDRESS_LENGTH:
        return (None, "Merci de préciser votre adresse (quartier, rue, villa...).")
    return (cleaned, None)
