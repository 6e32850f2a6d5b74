"""
📦 ORDER SERVICE - GESTOR TRANSACCIONAL DE PEDIDOS
==================================================

Convierte el borrador terminado de una conversación en filas durables de
cliente, pedido y líneas de pedido, y expone las consultas del panel de
administración.

🎯 PROPÓSITO PRINCIPAL:
- Crear pedidos de forma atómica (todo o nada)
- Generar números de pedido únicos y legibles
- Consultar pedidos por número, por estado o por cliente
- Avanzar el estado de un pedido (solo hacia adelante)

🔄 CREACIÓN DE PEDIDO (create_order):
1. Validar nombre, items, cantidades y método de pago (sin tocar la BD)
2. En UNA transacción (@transactional):
   - Upsert del cliente (el nombre solo se actualiza si viene no vacío)
   - Número ORD-YYYYMMDD-XXXXXXXX verificado contra la BD
   - Cabecera del pedido + una línea por item
3. Si la BD rechaza algo (IntegrityError, p.ej. colisión del número entre
   procesos) → rollback completo y reintento con un sufijo nuevo
4. Cualquier otro error → rollback completo y respuesta de error

💰 CÁLCULOS MONETARIOS:
- Decimal redondeado a 2 decimales
- total_amount = suma de los line_total persistidos, calculado aquí una vez
- Nunca se confía en totales que vengan del cliente

📊 FUNCIONES:

🔍 CONSULTAS (@read_only):
- get_order_by_number(), list_orders(), get_recent_orders()

✏️ MODIFICACIONES (@db_transaction):
- update_order_status(), confirm_order()
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.utils.decorators import db_transaction, read_only, transactional, mask_phone

from app.models.customer import Customer
from app.models.order import Order, OrderItem, OrderStatus, PaymentMethod
from app.schemas.conversation import DraftItem, line_total, money
from app.services.errors import OrderCommitError
from config.settings import settings

logger = logging.getLogger(__name__)

MAX_ITEMS_PER_ORDER = 50

# Orden de avance; CANCELLED queda fuera porque se alcanza desde cualquier estado no terminal
STATUS_SEQUENCE = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.DELIVERED,
]
TERMINAL_STATUSES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD-<fecha de confirmación>-<8 hex aleatorios>"""
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    if current == new or current in TERMINAL_STATUSES:
        return False
    if new == OrderStatus.CANCELLED:
        return True
    return STATUS_SEQUENCE.index(new) > STATUS_SEQUENCE.index(current)


class OrderService:
    """Servicio transaccional de pedidos"""

    def __init__(self, db: Session):
        self.db = db

    # ==========================================
    # CREACIÓN ATÓMICA
    # ==========================================

    def create_order(self, phone_number: str, customer_name: Optional[str],
                     items: Sequence[Union[DraftItem, Dict]], payment_method: Optional[str]) -> Dict[str, Any]:
        """
        Crea un pedido completo a partir del borrador de la conversación

        Args:
            phone_number: Número de WhatsApp del cliente (clave natural)
            customer_name: Nombre completo (requerido)
            items: Items del borrador [{"product_id", "name", "quantity", "unit_price"}]
            payment_method: "instant" o "30_days"

        Returns:
            {"success": True, "data": {...pedido...}} o {"success": False, "error": "..."}
        """
        name = (customer_name or "").strip()
        if not name:
            return {"success": False, "error": "Customer name is required"}

        if not items:
            return {"success": False, "error": "An order needs at least one item"}

        if len(items) > MAX_ITEMS_PER_ORDER:
            return {"success": False, "error": "Too many items"}

        try:
            draft_items = [
                item if isinstance(item, DraftItem) else DraftItem.model_validate(item)
                for item in items
            ]
        except ValidationError as e:
            return {"success": False, "error": f"Invalid items: {e.error_count()} errors"}

        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            return {"success": False, "error": f"Invalid payment method: {payment_method}"}

        attempts = max(settings.ORDER_NUMBER_ATTEMPTS, 1)
        for attempt in range(1, attempts + 1):
            try:
                order = self._insert_order(phone_number, name, draft_items, method)
            except IntegrityError as e:
                # La transacción completa ya hizo rollback; reintentar con número nuevo
                logger.warning("⚠️ Restricción violada creando pedido (intento %s/%s) | from=%s | %s",
                               attempt, attempts, mask_phone(phone_number), e.orig)
                continue
            except Exception as e:
                logger.exception("❌ Error creando pedido | from=%s", mask_phone(phone_number))
                return {"success": False, "error": str(e)}

            logger.info("✅ Pedido %s creado | from=%s | total=%s",
                        order.order_number, mask_phone(phone_number), order.total_amount)
            return {"success": True, "data": self._serialize_order(order)}

        return {"success": False, "error": "Could not allocate a unique order number"}

    @transactional()
    def _insert_order(self, phone_number: str, name: str, items: List[DraftItem],
                      method: PaymentMethod) -> Order:
        customer = self._upsert_customer(phone_number, name)
        order_number = self._allocate_order_number()

        lines = []
        total = Decimal("0")
        for item in items:
            subtotal = line_total(item.unit_price, item.quantity)
            lines.append(OrderItem(
                product_id=item.product_id,
                product_name=item.name,
                quantity=item.quantity,
                unit_price=money(item.unit_price),
                line_total=subtotal,
            ))
            total += subtotal

        order = Order(
            order_number=order_number,
            customer_id=customer.id,
            customer_phone=phone_number,
            customer_name=name,
            total_amount=money(total),
            payment_method=method,
            status=OrderStatus.PENDING,
            items=lines,
        )
        self.db.add(order)
        customer.last_order_at = datetime.now(timezone.utc)
        self.db.flush()
        return order

    def _upsert_customer(self, phone_number: str, name: Optional[str]) -> Customer:
        customer = self.db.query(Customer).filter(Customer.phone_number == phone_number).first()
        if customer is None:
            customer = Customer(phone_number=phone_number, name=name or None)
            self.db.add(customer)
        elif name:
            customer.name = name
        self.db.flush()  # Para obtener el ID
        return customer

    def _allocate_order_number(self) -> str:
        for _ in range(max(settings.ORDER_NUMBER_ATTEMPTS, 1)):
            candidate = generate_order_number()
            taken = self.db.query(Order.id).filter(Order.order_number == candidate).first()
            if not taken:
                return candidate
            logger.warning("⚠️ Número de pedido %s ya existe; generando otro", candidate)
        raise OrderCommitError("could not allocate a unique order number")

    # ==========================================
    # CONSULTAS
    # ==========================================

    @read_only
    def get_order_by_number(self, order_number: str) -> Dict[str, Any]:
        order = self.db.query(Order).filter(Order.order_number == order_number).first()
        if not order:
            return {"success": False, "error": "Order not found"}
        return {"success": True, "order": self._serialize_order(order)}

    @read_only
    def list_orders(self, status: Optional[str] = None) -> Dict[str, Any]:
        """Pedidos más recientes primero, opcionalmente filtrados por estado"""
        query = self.db.query(Order)
        if status:
            try:
                query = query.filter(Order.status == OrderStatus(status))
            except ValueError:
                return {"success": False, "error": f"Invalid status: {status}"}

        orders = query.order_by(Order.created_at.desc(), Order.id.desc()).all()
        return {
            "success": True,
            "orders": [self._serialize_order(o, include_items=False) for o in orders],
            "total_orders": len(orders)
        }

    @read_only
    def get_recent_orders(self, phone_number: str, limit: int = 5) -> Dict[str, Any]:
        orders = (self.db.query(Order)
                  .filter(Order.customer_phone == phone_number)
                  .order_by(Order.created_at.desc(), Order.id.desc())
                  .limit(limit)
                  .all())
        return {
            "success": True,
            "orders": [self._serialize_order(o, include_items=False) for o in orders],
            "total_orders": len(orders)
        }

    # ==========================================
    # CAMBIOS DE ESTADO
    # ==========================================

    @db_transaction
    def update_order_status(self, order_number: str, status: str) -> Dict[str, Any]:
        """
        Avanza el estado de un pedido. Los estados nunca retroceden y
        delivered/cancelled son terminales.
        """
        try:
            new_status = OrderStatus(status)
        except ValueError:
            return {"success": False, "error": f"Invalid status: {status}"}

        order = self.db.query(Order).filter(Order.order_number == order_number).first()
        if not order:
            return {"success": False, "error": "Order not found"}

        if not can_transition(order.status, new_status):
            return {
                "success": False,
                "error": f"Cannot move order from {order.status.value} to {new_status.value}"
            }

        order.status = new_status
        return {
            "success": True,
            "order": {"order_number": order.order_number, "status": new_status.value}
        }

    def confirm_order(self, order_number: str) -> Dict[str, Any]:
        return self.update_order_status(order_number, OrderStatus.CONFIRMED.value)

    # ==========================================
    # SERIALIZACIÓN
    # ==========================================

    def _serialize_order(self, order: Order, include_items: bool = True) -> Dict[str, Any]:
        data = {
            "id": order.id,
            "order_number": order.order_number,
            "customer_phone": order.customer_phone,
            "customer_name": order.customer_name,
            "total_amount": str(money(order.total_amount)),
            "payment_method": order.payment_method.value,
            "status": order.status.value,
            "created_at": order.created_at.isoformat() if order.created_at else None,
        }
        if include_items:
            data["items"] = [
                {
                    "product_id": line.product_id,
                    "product_name": line.product_name,
                    "quantity": line.quantity,
                    "unit_price": str(money(line.unit_price)),
                    "line_total": str(money(line.line_total)),
                }
                for line in order.items
            ]
        return data
