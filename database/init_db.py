import logging
import os
import sys
from decimal import Decimal

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))) #Agregar ruta del proyecto

from database.connection import Base, SessionLocal, engine
import app.models  # noqa: F401  registra todas las tablas en Base.metadata
from app.models.product import Product

logger = logging.getLogger(__name__)

SAMPLE_PRODUCTS = [
    {"name": "T-Shirt", "description": "Cotton T-Shirt - Various Colors", "price": Decimal("25.00"), "category": "Clothing"},
    {"name": "Jeans", "description": "Denim Jeans - Blue", "price": Decimal("65.00"), "category": "Clothing"},
    {"name": "Sneakers", "description": "Sports Sneakers - White/Black", "price": Decimal("85.00"), "category": "Footwear"},
    {"name": "Backpack", "description": "Travel Backpack - 30L Capacity", "price": Decimal("45.00"), "category": "Accessories"},
    {"name": "Smartphone Case", "description": "Protective Phone Case", "price": Decimal("15.00"), "category": "Electronics"},
    {"name": "Water Bottle", "description": "Insulated Steel Bottle - 750ml", "price": Decimal("12.50"), "category": "Accessories"},
    {"name": "Sunglasses", "description": "Polarized Sunglasses - UV400", "price": Decimal("30.00"), "category": "Accessories"},
]


def init_database(bind=None):
    """Crear todas las tablas en la base de datos"""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("✅ Base de datos inicializada correctamente")


def seed_products(db=None) -> int:
    """Poblar el catálogo de ejemplo una sola vez; devuelve cuántos productos se agregaron"""
    own_session = db is None
    db = db or SessionLocal()
    try:
        if db.query(Product).count() > 0:
            logger.warning("⚠️  Ya hay productos en la base de datos")
            return 0

        db.add_all(Product(**data) for data in SAMPLE_PRODUCTS)
        db.commit()
        logger.info("✅ %s productos de ejemplo agregados", len(SAMPLE_PRODUCTS))
        return len(SAMPLE_PRODUCTS)
    except Exception:
        db.rollback()
        raise
    finally:
        if own_session:
            db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_database()
    seed_products()
