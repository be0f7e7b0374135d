"""
Order Draft Models.

The OrderDraft is the accumulating purchase intent of one session. Handlers
mutate it one field-group per step; the session store persists it inside the
abandoned-cart snapshot; the order materializer copies it into an Order.

Amount invariant:
    total_amount == sum(item.price * item.quantity) + delivery_cost

Every mutator that touches items or delivery cost ends with ``recalculate()``
so the invariant holds at every persisted snapshot.

Control metadata is typed (``DraftMetadata``) instead of a loose string-keyed
flag map. ``to_flags`` / ``from_flags`` translate to and from the wire flag map
(``collect_name_saved``, ``expressMode``, ``inPurchaseFlow``...) so clients keep
the same contract.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from ..config import DELIVERY_COST_DAKAR, DELIVERY_COST_DEFAULT, LOCAL_DELIVERY_CITIES
from .steps import Step


class Mode(str, Enum):
    """Routing mode of a session."""
    FREE_CONVERSATION = "free_conversation"
    STANDARD_FLOW = "standard_flow"
    EXPRESS_FLOW = "express_flow"
    AWAITING_PAYMENT = "awaiting_payment"


PURCHASE_MODES = frozenset({Mode.STANDARD_FLOW, Mode.EXPRESS_FLOW, Mode.AWAITING_PAYMENT})


class DraftMetadata(BaseModel):
    """
    Control metadata carried inside the draft.

    Attributes:
        mode: Current routing mode.
        was_express: The session entered payment from the express flow.
        saved_steps: Steps whose snapshot has been committed ({step}_saved).
        processed_steps: Steps whose inbound message has been handled ({step}_processed).
        prevent_recursion: One-shot guard; the next message gets a generic reply.
        extra: Non-control data (product/store ids, payment reference, order id...).
    """
    mode: Mode = Mode.FREE_CONVERSATION
    was_express: bool = False
    saved_steps: Set[Step] = Field(default_factory=set)
    processed_steps: Set[Step] = Field(default_factory=set)
    prevent_recursion: bool = False
    extra: Dict[str, Any] = Field(default_factory=dict)

    @property
    def in_purchase_flow(self) -> bool:
        return self.mode in PURCHASE_MODES

    @property
    def express_mode(self) -> bool:
        return self.mode == Mode.EXPRESS_FLOW or (
            self.mode == Mode.AWAITING_PAYMENT and self.was_express
        )

    def to_flags(self) -> Dict[str, Any]:
        """Render the wire-compatible flag map."""
        flags: Dict[str, Any] = {}
        for step in sorted(self.saved_steps, key=lambda s: s.value):
            flags[f"{step.value}_saved"] = True
        for step in sorted(self.processed_steps, key=lambda s: s.value):
            flags[f"{step.value}_processed"] = True
        if self.in_purchase_flow:
            flags["inPurchaseFlow"] = True
            flags["preventAIIntervention"] = True
        if self.express_mode:
            flags["expressMode"] = True
        if self.mode == Mode.AWAITING_PAYMENT:
            flags["awaitingPayment"] = True
        if self.prevent_recursion:
            flags["preventRecursion"] = True
        return flags

    @classmethod
    def from_flags(cls, flags: Optional[Dict[str, Any]], **kwargs) -> "DraftMetadata":
        """Parse a wire flag map; unknown flag names are ignored."""
        flags = flags or {}
        saved: Set[Step] = set()
        processed: Set[Step] = set()
        for name, value in flags.items():
            if not value:
                continue
            for suffix, bucket in (("_saved", saved), ("_processed", processed)):
                if name.endswith(suffix):
                    try:
                        bucket.add(Step(name[: -len(suffix)]))
                    except ValueError:
                        pass

        if flags.get("awaitingPayment"):
            mode = Mode.AWAITING_PAYMENT
        elif flags.get("expressMode"):
            mode = Mode.EXPRESS_FLOW
        elif flags.get("inPurchaseFlow") or flags.get("preventAIIntervention"):
            mode = Mode.STANDARD_FLOW
        else:
            mode = Mode.FREE_CONVERSATION

        return cls(
            mode=mode,
            was_express=bool(flags.get("expressMode")),
            saved_steps=saved,
            processed_steps=processed,
            prevent_recursion=bool(flags.get("preventRecursion")),
            **kwargs,
        )


def merge_metadata(base: DraftMetadata, patch: Optional[Dict[str, Any]]) -> DraftMetadata:
    """
    Merge a metadata patch into ``base`` and return a new DraftMetadata.

    Precedence:
        1. Scalar fields present in ``patch`` win (mode, was_express, prevent_recursion).
        2. Step sets are unioned; markers are never dropped by a merge.
        3. ``extra`` is merged key by key, new keys win; nested dicts are merged
           recursively the same way.
        4. A ``flags`` key in the patch is parsed with ``from_flags`` and merged
           under the same rules (so wire flag maps can be merged directly).

    ``base`` is not mutated.
    """
    merged = base.model_copy(deep=True)
    if not patch:
        return merged

    if patch.get("flags"):
        from_wire = DraftMetadata.from_flags(patch["flags"])
        merged.saved_steps |= from_wire.saved_steps
        merged.processed_steps |= from_wire.processed_steps
        if from_wire.mode != Mode.FREE_CONVERSATION and "mode" not in patch:
            merged.mode = from_wire.mode
        if from_wire.prevent_recursion:
            merged.prevent_recursion = True

    if "mode" in patch and patch["mode"] is not None:
        merged.mode = Mode(patch["mode"])
    if "was_express" in patch:
        merged.was_express = bool(patch["was_express"])
    if "prevent_recursion" in patch:
        merged.prevent_recursion = bool(patch["prevent_recursion"])

    for key in ("saved_steps", "processed_steps"):
        if patch.get(key):
            getattr(merged, key).update(Step(s) for s in patch[key])

    if patch.get("extra"):
        merged.extra = _merge_dicts(merged.extra, patch["extra"])

    return merged


def _merge_dicts(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge_dicts(result[key], value)
        else:
            result[key] = value
    return result


class LineItem(BaseModel):
    """One product line in the draft."""
    product_id: str
    name: str
    price: int
    quantity: int = 1

    @property
    def line_total(self) -> int:
        return self.price * self.quantity


class OrderDraft(BaseModel):
    """In-progress representation of a prospective order."""
    items: List[LineItem] = Field(default_factory=list)
    subtotal: int = 0
    delivery_cost: int = 0
    total_amount: int = 0

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    city: Optional[str] = None
    address: Optional[str] = None

    payment_method: Optional[str] = None
    notes: Optional[str] = None

    metadata: DraftMetadata = Field(default_factory=DraftMetadata)

    # ---- Construction ----

    @classmethod
    def for_product(cls, product, product_id: str = None, store_id: str = None) -> "OrderDraft":
        """Minimal draft: one unit of the product being discussed."""
        draft = cls()
        if product is not None:
            draft.items.append(LineItem(
                product_id=product.id,
                name=product.name,
                price=product.price,
                quantity=1,
            ))
            product_id = product_id or product.id
        if product_id:
            draft.metadata.extra["productId"] = product_id
        if store_id:
            draft.metadata.extra["storeId"] = store_id
        draft.recalculate()
        return draft

    @classmethod
    def from_wire(cls, data: Optional[Dict[str, Any]]) -> "OrderDraft":
        """
        Build a draft from the client-side ``orderData`` shape.

        The wire metadata carries a flag map (``metadata.flags``) rather than
        the typed fields; both forms are accepted.
        """
        data = dict(data or {})
        raw_meta = data.pop("metadata", None) or {}
        draft = cls.model_validate(data)
        if "flags" in raw_meta and not any(
            k in raw_meta for k in ("saved_steps", "processed_steps", "mode")
        ):
            extra = {k: v for k, v in raw_meta.items() if k != "flags"}
            draft.metadata = DraftMetadata.from_flags(raw_meta["flags"], extra=extra)
        elif raw_meta:
            draft.metadata = DraftMetadata.model_validate(raw_meta)
        draft.recalculate()
        return draft

    def to_wire(self) -> Dict[str, Any]:
        """Serialize into the client-side ``orderData`` shape."""
        data = self.model_dump(mode="json", exclude={"metadata"})
        for item, raw in zip(self.items, data["items"]):
            raw["total"] = item.line_total
        data["metadata"] = {**self.metadata.extra, "flags": self.metadata.to_flags()}
        return data

    # ---- Derived values ----

    @property
    def product_id(self) -> Optional[str]:
        return self.metadata.extra.get("productId")

    @property
    def store_id(self) -> Optional[str]:
        return self.metadata.extra.get("storeId")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def computed_subtotal(self) -> int:
        return sum(item.line_total for item in self.items)

    def is_consistent(self) -> bool:
        """True when stored amounts satisfy the amount invariant."""
        subtotal = self.computed_subtotal()
        return self.subtotal == subtotal and self.total_amount == subtotal + self.delivery_cost

    def missing_payment_fields(self) -> List[str]:
        """Fields required before a payment can be attempted."""
        missing = [
            name for name in ("first_name", "phone", "city", "address")
            if not (getattr(self, name) or "").strip()
        ]
        if not self.items:
            missing.append("items")
        if self.total_amount <= 0:
            missing.append("total_amount")
        return missing

    # ---- Mutators ----

    def recalculate(self) -> None:
        """Recompute subtotal and total from items and delivery cost."""
        self.subtotal = self.computed_subtotal()
        self.total_amount = self.subtotal + self.delivery_cost

    def set_primary_quantity(self, quantity: int) -> None:
        """Set the quantity of the main (first) line item."""
        if self.items:
            self.items[0].quantity = quantity
        self.recalculate()

    def add_item(self, product_id: str, name: str, price: int, quantity: int) -> LineItem:
        """Add a product, merging quantity into an existing line for it."""
        for item in self.items:
            if item.product_id == product_id:
                item.quantity += quantity
                self.recalculate()
                return item
        item = LineItem(product_id=product_id, name=name, price=price, quantity=quantity)
        self.items.append(item)
        self.recalculate()
        return item

    def set_delivery_cost(self, cost: int) -> None:
        self.delivery_cost = cost
        self.recalculate()

    def set_full_name(self, full_name: str) -> None:
        parts = full_name.split()
        self.first_name = parts[0] if parts else None
        self.last_name = " ".join(parts[1:]) or None


def delivery_cost_for_city(city: Optional[str]) -> int:
    """Flat delivery cost: local rate for Dakar, default rate elsewhere."""
    if city and city.strip().lower() in LOCAL_DELIVERY_CITIES:
        return DELIVERY_COST_DAKAR
    return DELIVERY_COST_DEFAULT
