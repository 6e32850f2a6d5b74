import logging
from typing import List

from sqlalchemy.orm import Session

from app.models.product import Product
from app.schemas.conversation import ProductSnapshot, money

logger = logging.getLogger(__name__)


def _snapshot(product: Product) -> ProductSnapshot:
    return ProductSnapshot(
        id=product.id,
        name=product.name,
        description=product.description or "",
        unit_price=money(product.price),
        category=product.category,
    )


class CatalogService:
    """Acceso de solo lectura a los productos disponibles."""

    def __init__(self, db: Session):
        self.db = db

    def list_available(self) -> List[ProductSnapshot]:
        products = (self.db.query(Product)
                    .filter(Product.is_available.is_(True))
                    .order_by(Product.category.asc(), Product.name.asc())
                    .all())
        return [_snapshot(p) for p in products]
