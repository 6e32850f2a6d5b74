"""
📦 MODELO DE PEDIDOS - ESTRUCTURA DE ÓRDENES
============================================

Define la estructura durable de pedidos creados desde WhatsApp: cabecera,
líneas, estados y métodos de pago.

📊 ESTRUCTURA PRINCIPAL:

🛒 TABLA ORDERS:
- Número de pedido único y legible (ORD-YYYYMMDD-XXXXXXXX)
- Referencia a cliente + snapshot de teléfono y nombre
- Estado actual (pending → delivered / cancelled)
- Método de pago elegido (inmediato o a 30 días)
- Total calculado UNA vez en el servidor, con precisión decimal

🔍 TABLA ORDER_ITEMS:
- Snapshot del producto al momento de la compra (nombre, precio unitario)
- Cantidad y total de línea (cantidad × precio unitario)

🏷️ ENUMS DEFINIDOS:

💳 MÉTODOS DE PAGO:
- INSTANT: Pago inmediato
- DEFERRED_30_DAYS: Pago a 30 días

📋 ESTADOS DE PEDIDO (solo avanzan, nunca regresan a pending):
- PENDING → CONFIRMED → PROCESSING → DELIVERED
- CANCELLED: alcanzable desde cualquier estado no terminal

🛡️ VALIDACIONES:
- Total y precios no negativos
- Cantidades positivas
- order_number único (la BD rechaza colisiones)
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import CheckConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database.connection import Base
from enum import Enum


class PaymentMethod(Enum):
    INSTANT = "instant"
    DEFERRED_30_DAYS = "30_days"


class OrderStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


def _enum_values(enum_cls):
    # Guardar el .value ("pending", "30_days") y no el nombre del miembro
    return [member.value for member in enum_cls]


# Modelo de pedido
class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(32), unique=True, nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    customer_phone = Column(String(20), nullable=False)
    customer_name = Column(String(100), nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(
        SQLEnum(PaymentMethod, name="payment_method", values_callable=_enum_values),
        nullable=False,
    )
    status = Column(
        SQLEnum(OrderStatus, name="order_status", values_callable=_enum_values),
        default=OrderStatus.PENDING,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relación con cliente
    customer = relationship("Customer", lazy="joined")

    # Relación con líneas del pedido
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id",
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_order_total_nonneg"),
        Index("ix_orders_status_created", "status", "created_at"),
        Index("ix_orders_customer_created", "customer_id", "created_at"),
    )

    def __repr__(self):
        return f"<Order(order_number='{self.order_number}', total_amount={self.total_amount})>"


# Modelo de línea de pedido
class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=True)

    product_name = Column(String(100), nullable=False)   # Snapshot del nombre
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)  # Precio al momento de la compra
    line_total = Column(Numeric(10, 2), nullable=False)  # quantity × unit_price

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
        CheckConstraint("unit_price >= 0 AND line_total >= 0", name="ck_order_item_prices_nonneg"),
    )

    def __repr__(self):
        return f"<OrderItem(order_id={self.order_id}, product_id={self.product_id}, quantity={self.quantity})>"
