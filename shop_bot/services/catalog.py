"""
Catalog Service.

Read access to the storefront products the assistant can sell, plus the
stock check and stock decrement used around order materialization.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from ..exceptions import OutOfStockError
from ..flow.vocabulary import normalize
from ..models import Product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductInfo:
    """Catalog view of a product."""
    id: str
    name: str
    price: int
    stock: int
    store_id: Optional[str] = None
    description: Optional[str] = None
    express_enabled: bool = False

    @classmethod
    def from_model(cls, product: Product) -> "ProductInfo":
        return cls(
            id=product.id,
            name=product.name,
            price=product.price,
            stock=product.stock,
            store_id=product.store_id,
            description=product.description,
            express_enabled=bool(product.express_enabled),
        )

    def as_context(self) -> dict:
        """Product context passed to the message analyzer."""
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "description": self.description or "",
            "in_stock": self.stock > 0,
        }


class CatalogService:
    """Product lookups for the order flow."""

    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: Optional[str]) -> Optional[ProductInfo]:
        if not product_id:
            return None
        product = (
            self.db.query(Product)
            .filter(Product.id == product_id, Product.is_active.is_(True))
            .one_or_none()
        )
        return ProductInfo.from_model(product) if product else None

    def get_recommendations(self, product_id: str, limit: int = 3) -> List[ProductInfo]:
        """
        Other in-stock products of the same store.

        Products listed in ``related_product_ids`` come first, in their
        listed order; the rest follow by name.
        """
        anchor = self.db.query(Product).filter(Product.id == product_id).one_or_none()
        query = self.db.query(Product).filter(
            Product.id != product_id,
            Product.is_active.is_(True),
            Product.stock > 0,
        )
        if anchor is not None and anchor.store_id:
            query = query.filter(Product.store_id == anchor.store_id)
        candidates = query.order_by(Product.name).all()

        related = list(anchor.related_product_ids or []) if anchor is not None else []
        rank = {pid: i for i, pid in enumerate(related)}
        candidates.sort(key=lambda p: rank.get(p.id, len(rank)))
        return [ProductInfo.from_model(p) for p in candidates[:limit]]

    def find_by_label(self, label: str, candidates: List[ProductInfo]) -> Optional[ProductInfo]:
        """
        Resolve a typed or clicked product label against ``candidates``.

        Matches on exact name first, then on the name appearing in the label
        (buttons render as "Name - 12 000 FCFA").
        """
        text = normalize(label)
        if not text:
            return None
        for product in candidates:
            if normalize(product.name) == text:
                return product
        for product in candidates:
            if normalize(product.name) in text:
                return product
        return None

    def check_stock(self, product_id: str, quantity: int) -> None:
        """Raise OutOfStockError when fewer than ``quantity`` units remain."""
        product = self.db.query(Product).filter(Product.id == product_id).one_or_none()
        if product is None:
            return
        if product.stock < quantity:
            raise OutOfStockError(product.name, quantity, product.stock)

    def decrement_stock(self, items) -> None:
        """
        Decrement stock for materialized line items.

        Unknown products are treated as untracked. The caller commits.
        """
        for item in items:
            product = self.db.query(Product).filter(Product.id == item.product_id).one_or_none()
            if product is None:
                continue
            product.stock = max(0, product.stock - item.quantity)
