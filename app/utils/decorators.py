"""
🔧 DECORADORES DE TRANSACCIONES
===============================

Decoradores para manejar commit/rollback de forma consistente en los servicios
que reciben una sesión SQLAlchemy en `self.db`.

- @transactional(): commit al terminar; rollback y RE-LANZA la excepción.
  Para unidades atómicas cuyo llamador decide qué hacer con el fallo
  (p.ej. reintentar un pedido ante colisión de número).
- @db_transaction: commit solo si el dict devuelto no trae success=False;
  convierte excepciones en una respuesta de error estándar.
- @read_only: sin commit; rollback + respuesta de error si algo falla.

ANTES (código repetitivo):
    def mi_metodo(self, ...):
        try:
            ...
            self.db.commit()
            return resultado
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error: {e}")
            return {"success": False, "error": str(e)}

DESPUÉS:
    @db_transaction
    def mi_metodo(self, ...):
        ...
        return resultado  # commit automático
"""

import logging
import re
from functools import wraps
from typing import Callable, Any, Dict

logger = logging.getLogger(__name__)

_PHONE_PATTERNS = [
    r'\b(\+?[0-9]{1,4}[-.\s]?[0-9]{6,14})\b',   # Internacional general
    r"'phone_number':\s*'([^']+)'",              # En kwargs como string
    r'"phone_number":\s*"([^"]+)"',              # En kwargs como JSON
]


def mask_phone(num: str) -> str:
    """Enmascara todos los dígitos menos los últimos 4."""
    num = num or ""
    return ("•" * max(len(num) - 4, 0)) + num[-4:]


def _mask_sensitive_data(data: Any) -> str:
    """
    🔒 Enmascara teléfonos y secretos antes de mandarlos al log
    """
    data_str = str(data)

    for pattern in _PHONE_PATTERNS:
        data_str = re.sub(pattern, lambda m: m.group(0).replace(m.group(1), "***MASKED***"), data_str)

    for field in ("password", "token", "api_key", "secret"):
        pattern = rf"('{field}'):\s*'([^']+)'"
        data_str = re.sub(pattern, r"\1: '***MASKED***'", data_str, flags=re.IGNORECASE)

    return data_str


def transactional(auto_commit: bool = True):
    """
    Decorador para unidades atómicas que deben propagar el error

    Args:
        auto_commit: Si True, hace commit al terminar. Si False, solo rollback en error.

    Usage:
        @transactional()
        def _insert_order(self, ...):
            ...  # customer + order + lines, todo o nada
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> Any:
            try:
                result = func(self, *args, **kwargs)
                if auto_commit:
                    self.db.commit()
                return result
            except Exception as e:
                self.db.rollback()
                logger.error(f"❌ Rollback en {func.__name__}: {e}")
                logger.debug(f"   Args: {_mask_sensitive_data(args)}")
                raise
        return wrapper
    return decorator


def db_transaction(func: Callable) -> Callable:
    """
    🎯 Commit solo si el resultado indica éxito

    🔄 FLUJO:
        1. Ejecuta función original
        2. Si hay error → rollback automático + respuesta de error
        3. Si NO hay error y success=False → rollback (validación falló)
        4. En otro caso → commit
    """
    @wraps(func)
    def wrapper(self, *args, **kwargs) -> Dict[str, Any]:
        try:
            result = func(self, *args, **kwargs)

            if isinstance(result, dict) and result.get("success") is False:
                self.db.rollback()
                logger.debug(f"🔄 Rollback por validación fallida en {func.__name__}: {result.get('error', 'Sin detalle')}")
                return result

            self.db.commit()
            logger.debug(f"✅ Transacción exitosa en {func.__name__}")
            return result

        except Exception as e:
            self.db.rollback()
            error_msg = str(e)

            logger.error(f"❌ Error en {func.__name__}: {error_msg}")
            logger.debug(f"   Args: {_mask_sensitive_data(args)}")
            logger.debug(f"   Kwargs: {_mask_sensitive_data(kwargs)}")

            return {
                "success": False,
                "error": error_msg,
                "method": func.__name__,
                "details": "Error durante operación de base de datos"
            }

    return wrapper


def read_only(func: Callable) -> Callable:
    """
    📖 Decorador para consultas: sin commit, rollback si algo falla
    """
    @wraps(func)
    def wrapper(self, *args, **kwargs) -> Dict[str, Any]:
        try:
            result = func(self, *args, **kwargs)
            logger.debug(f"📖 Consulta exitosa en {func.__name__}")
            return result

        except Exception as e:
            self.db.rollback()
            error_msg = str(e)

            logger.error(f"❌ Error en consulta {func.__name__}: {error_msg}")
            logger.debug(f"   Args: {_mask_sensitive_data(args)}")

            return {
                "success": False,
                "error": error_msg,
                "method": func.__name__,
                "details": "Error durante consulta de base de datos"
            }

    return wrapper
