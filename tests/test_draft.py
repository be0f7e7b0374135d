"""
Tests for the order draft: amounts, wire format and metadata merging.
"""
from shop_bot.flow.draft import (
    DraftMetadata,
    LineItem,
    Mode,
    OrderDraft,
    delivery_cost_for_city,
    merge_metadata,
)
from shop_bot.flow.steps import Step


def make_draft():
    draft = OrderDraft(items=[LineItem(product_id="jeu-awale", name="Awalé Deluxe", price=15000, quantity=1)])
    draft.metadata.extra["productId"] = "jeu-awale"
    draft.recalculate()
    return draft


class TestAmounts:
    """total_amount == sum(price * quantity) + delivery_cost after every mutation."""

    def test_add_item_merges_existing_line(self):
        draft = make_draft()
        draft.add_item("jeu-cartes", "Cartes du Sénégal", 5000, 2)
        draft.add_item("jeu-cartes", "Cartes du Sénégal", 5000, 1)

        assert len(draft.items) == 2
        assert draft.items[1].quantity == 3
        assert draft.subtotal == 30000
        assert draft.is_consistent()

    def test_delivery_cost_is_part_of_total(self):
        draft = make_draft()
        draft.set_delivery_cost(delivery_cost_for_city("Dakar"))
        assert draft.total_amount == 16000
        assert draft.is_consistent()

    def test_primary_quantity(self):
        draft = make_draft()
        draft.set_primary_quantity(3)
        assert draft.items[0].quantity == 3
        assert draft.total_amount == 45000

    def test_stale_amounts_are_detected(self):
        draft = make_draft()
        draft.total_amount = 1
        assert not draft.is_consistent()
        draft.recalculate()
        assert draft.is_consistent()


def test_delivery_cost_by_city():
    assert delivery_cost_for_city(" DAKAR ") == 1000
    assert delivery_cost_for_city("Thiès") == 2500
    assert delivery_cost_for_city(None) == 2500


def test_missing_payment_fields():
    assert OrderDraft().missing_payment_fields() == [
        "first_name", "phone", "city", "address", "items", "total_amount",
    ]

    draft = make_draft()
    draft.first_name = "Awa"
    draft.phone = "+221771234567"
    draft.city = "Dakar"
    draft.address = "   "
    assert draft.missing_payment_fields() == ["address"]


def test_set_full_name_splits_first_and_last():
    draft = OrderDraft()
    draft.set_full_name("Awa Fatou Diop")
    assert draft.first_name == "Awa"
    assert draft.last_name == "Fatou Diop"
    assert draft.full_name == "Awa Fatou Diop"


# =============================================================================
# Wire format
# =============================================================================


def test_flags_render_markers_and_modes():
    meta = DraftMetadata(
        mode=Mode.AWAITING_PAYMENT,
        was_express=True,
        saved_steps={Step.EXPRESS_NAME},
        processed_steps={Step.EXPRESS_SUMMARY},
    )
    flags = meta.to_flags()

    assert flags["express_name_saved"] is True
    assert flags["express_summary_processed"] is True
    assert flags["inPurchaseFlow"] is True
    assert flags["expressMode"] is True
    assert flags["awaitingPayment"] is True
    assert "preventRecursion" not in flags


def test_from_flags_ignores_unknown_names():
    meta = DraftMetadata.from_flags({
        "collect_phone_saved": True,
        "mystery_step_saved": True,
        "collect_city_processed": False,
        "inPurchaseFlow": True,
    })
    assert meta.saved_steps == {Step.COLLECT_PHONE}
    assert meta.processed_steps == set()
    assert meta.mode == Mode.STANDARD_FLOW


def test_wire_copy_keeps_customer_fields_and_markers():
    draft = make_draft()
    draft.first_name = "Awa"
    draft.phone = "+221771234567"
    draft.metadata.mode = Mode.STANDARD_FLOW
    draft.metadata.saved_steps.add(Step.COLLECT_PHONE)

    wire = draft.to_wire()
    assert wire["items"][0]["total"] == 15000
    assert wire["metadata"]["productId"] == "jeu-awale"
    assert wire["metadata"]["flags"]["collect_phone_saved"] is True

    restored = OrderDraft.from_wire(wire)
    assert restored.first_name == "Awa"
    assert restored.product_id == "jeu-awale"
    assert restored.metadata.mode == Mode.STANDARD_FLOW
    assert Step.COLLECT_PHONE in restored.metadata.saved_steps


def test_from_wire_recomputes_amounts():
    wire = make_draft().to_wire()
    wire["total_amount"] = 1
    assert OrderDraft.from_wire(wire).total_amount == 15000


# =============================================================================
# Metadata merge
# =============================================================================


class TestMergeMetadata:
    def test_scalar_fields_from_patch_win(self):
        base = DraftMetadata(mode=Mode.FREE_CONVERSATION)
        merged = merge_metadata(base, {"mode": "express_flow", "was_express": True})
        assert merged.mode == Mode.EXPRESS_FLOW
        assert merged.was_express is True

    def test_markers_are_unioned(self):
        base = DraftMetadata(saved_steps={Step.COLLECT_NAME})
        merged = merge_metadata(base, {"saved_steps": ["collect_phone"]})
        assert merged.saved_steps == {Step.COLLECT_NAME, Step.COLLECT_PHONE}

    def test_extra_is_merged_recursively(self):
        base = DraftMetadata(extra={"knownAddress": {"city": "Dakar"}, "productId": "jeu-awale"})
        merged = merge_metadata(base, {"extra": {"knownAddress": {"address": "Médina"}}})
        assert merged.extra == {
            "knownAddress": {"city": "Dakar", "address": "Médina"},
            "productId": "jeu-awale",
        }

    def test_wire_flags_are_parsed(self):
        merged = merge_metadata(DraftMetadata(), {"flags": {"collect_city_processed": True, "expressMode": True}})
        assert Step.COLLECT_CITY in merged.processed_steps
        assert merged.mode == Mode.EXPRESS_FLOW

    def test_explicit_mode_beats_flag_mode(self):
        merged = merge_metadata(DraftMetadata(), {"flags": {"expressMode": True}, "mode": "standard_flow"})
        assert merged.mode == Mode.STANDARD_FLOW

    def test_base_is_not_mutated(self):
        base = DraftMetadata(saved_steps={Step.COLLECT_NAME})
        merge_metadata(base, {"saved_steps": ["collect_phone"], "mode": "standard_flow"})
        assert base.saved_steps == {Step.COLLECT_NAME}
        assert base.mode == Mode.FREE_CONVERSATION

    def test_empty_patch_returns_copy(self):
        base = DraftMetadata(extra={"a": 1})
        merged = merge_metadata(base, None)
        assert merged == base
        assert merged is not base
