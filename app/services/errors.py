"""Errores de los servicios del bot que cruzan capas."""


class SessionStoreError(Exception):
    """No se pudo leer, guardar o borrar la sesión de conversación."""


class OrderCommitError(Exception):
    """El pedido no se pudo confirmar (se hizo rollback de todas las filas)."""


class NotificationError(Exception):
    """Falló el envío de un mensaje saliente por WhatsApp."""
