"""
Tests for input validators and keyword vocabularies.
"""
import pytest

from shop_bot.flow import vocabulary as vocab
from shop_bot.flow.validators import (
    PhoneValidator,
    parse_quantity,
    validate_address,
    validate_city,
    validate_email_address,
    validate_full_name,
)


# =============================================================================
# Phone numbers
# =============================================================================


class TestPhoneValidator:
    """Senegalese mobile numbers in the shapes shoppers actually type."""

    @pytest.mark.parametrize("raw", [
        "771234567",
        "77 123 45 67",
        "77-123-45-67",
        "+221 77 123 45 67",
        "00221771234567",
        "221771234567",
    ])
    def test_accepted_formats_normalize_to_e164(self, raw):
        phone, error = PhoneValidator().validate(raw)
        assert error is None
        assert phone == "+221771234567"

    def test_unknown_operator_prefix_rejected(self):
        phone, error = PhoneValidator().validate("79 123 45 67")
        assert phone is None
        assert error == "Format invalide pour SN. Format attendu: 77 123 45 67"

    def test_too_short_rejected(self):
        phone, error = PhoneValidator().validate("12345")
        assert phone is None
        assert "Format invalide" in error

    def test_unsupported_country_prefix(self):
        phone, error = PhoneValidator().validate("+33 6 12 34 56 78")
        assert phone is None
        assert "pas encore pris en charge" in error

    def test_empty_input(self):
        phone, error = PhoneValidator().validate("   ")
        assert phone is None
        assert error is not None

    def test_unsupported_default_country_raises(self):
        with pytest.raises(ValueError):
            PhoneValidator(default_country="FR")

    def test_format_renders_international_and_local(self):
        formatted = PhoneValidator().format("771234567")
        assert formatted.international.startswith("+221")
        assert formatted.international.replace(" ", "") == "+221771234567"


# =============================================================================
# Email, names, quantities, locations
# =============================================================================


def test_email_is_normalized():
    email, error = validate_email_address("  awa.diop@Gmail.com ")
    assert error is None
    assert email.endswith("@gmail.com")


def test_email_without_at_sign():
    email, error = validate_email_address("awa.diop.gmail.com")
    assert email is None
    assert "@" in error


def test_email_empty():
    assert validate_email_address("")[0] is None


def test_full_name_is_capitalized():
    assert validate_full_name("  awa   diop ") == ("Awa Diop", None)
    assert validate_full_name("jean-paul sarr")[0] == "Jean-paul Sarr"


def test_full_name_requires_two_words():
    name, error = validate_full_name("Awa")
    assert name is None
    assert "prénom" in error


def test_full_name_rejects_digits():
    assert validate_full_name("Awa D1op")[0] is None


def test_quantity_parsing():
    assert parse_quantity("3") == (3, None)
    assert parse_quantity("J'en veux 2") == (2, None)
    assert parse_quantity("0")[0] is None
    assert parse_quantity("11")[0] is None
    assert parse_quantity("beaucoup")[0] is None
    assert parse_quantity("2 exemplaires !") == (2, None)


@pytest.mark.parametrize("raw", ["3.5", "3,5", "abc12", "x2", "2 ou 11"])
def test_quantity_rejects_ambiguous_numbers(raw):
    quantity, error = parse_quantity(raw)
    assert quantity is None
    assert error.startswith("Merci d'indiquer un nombre")


def test_city_and_address_minimum_lengths():
    assert validate_city("dakar") == ("Dakar", None)
    assert validate_city("d")[0] is None
    assert validate_address("Rue 10, Médina") == ("Rue 10, Médina", None)
    assert validate_address("rue")[0] is None


# =============================================================================
# Vocabularies
# =============================================================================


def test_normalize_strips_accents_and_case():
    assert vocab.normalize("  PROBLÈME  de   Paiement ") == "probleme de paiement"
    assert vocab.normalize("J’ai payé") == "j'ai paye"


def test_negative_answers_win_over_positive_keywords():
    assert vocab.classify("Non, nouvelle adresse", vocab.SAME_ADDRESS) == "new"
    assert vocab.classify("Non, pas encore", vocab.PAYMENT_PROCESSING) == "not_yet"
    assert vocab.classify("Non, juste celui-ci", vocab.YES_NO) == "no"


def test_keywords_match_word_prefixes():
    assert vocab.classify("Quand sera-t-elle livrée ?", vocab.POST_PAYMENT) == "delivery"
    assert vocab.classify("Voir ma commande", vocab.POST_PAYMENT) == "view_order"


def test_payment_method_keywords():
    assert vocab.classify("Payer à la livraison", vocab.PAYMENT_METHODS) == "CASH_ON_DELIVERY"
    assert vocab.classify("wave", vocab.PAYMENT_METHODS) == "WAVE"
    assert vocab.classify("Carte bancaire", vocab.PAYMENT_METHODS) == "CARD"
    assert vocab.classify("paypal", vocab.PAYMENT_METHODS) is vocab.UNMATCHED


def test_classify_empty_input():
    assert vocab.classify("", vocab.YES_NO) is vocab.UNMATCHED


def test_matches_exactly_ignores_case_and_accents():
    assert vocab.matches_exactly("je veux voir les temoignages", ["Je veux voir les témoignages"])
    assert not vocab.matches_exactly("les témoignages", ["Je veux voir les témoignages"])


@pytest.mark.parametrize("raw, expected", [
    ("⭐⭐⭐⭐⭐", 5),
    ("⭐", 1),
    ("Je mets 4", 4),
    ("7", None),
    ("super", None),
    ("", None),
])
def test_parse_rating(raw, expected):
    assert vocab.parse_rating(raw) == expected
