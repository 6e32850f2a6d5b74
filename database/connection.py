"""
🗄️ CONEXIÓN A BASE DE DATOS - CONFIGURACIÓN SQLALCHEMY
======================================================

Configura el engine SQLAlchemy, la fábrica de sesiones y la base declarativa
para los modelos del bot de pedidos.

🏗️ CONFIGURACIÓN DEL POOL (PostgreSQL):
- Pool permanente: 10 conexiones activas
- Overflow: 20 conexiones adicionales bajo demanda
- Pre-ping: Verificación automática de conexiones
- Recycle: Renovación cada hora (3600s)

🔧 SQLite:
- Soportado para desarrollo y tests (sin pool de tamaño fijo)
- check_same_thread=False porque los webhooks procesan en tareas de fondo

📊 GESTIÓN DE SESIONES:
- SessionLocal: Factory de sesiones por request / por evento entrante
- autocommit=False: Control manual de transacciones (ver app/utils/decorators.py)
- autoflush=False

📝 USO CON FASTAPI:
    from database.connection import get_db

    @router.get("/api/orders")
    def list_orders(db: Session = Depends(get_db)):
        ...
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool
from config.settings import settings
import logging

logger = logging.getLogger(__name__)


def _build_engine(url: str):
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=10,                    # Número de conexiones permanentes en el pool
        max_overflow=20,                 # Conexiones adicionales cuando el pool está lleno
        pool_pre_ping=True,              # Verificar conexiones antes de usar
        pool_recycle=3600,               # Reciclar conexiones cada hora
        echo=False,                      # No mostrar SQL queries (cambiar a True para debug)
        connect_args={"connect_timeout": 10},
    )


engine = _build_engine(settings.DATABASE_URL)

# Crear sesión local
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base para modelos
Base = declarative_base()

# Dependencia para obtener sesión de BD
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
