from sqlalchemy import Column, String, DateTime, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from database.connection import Base
from enum import Enum


class ConversationStep(Enum):
    START              = "start"
    MAIN_MENU          = "main_menu"
    SELECT_PRODUCT     = "select_product"
    SPECIFY_QUANTITY   = "specify_quantity"
    ADD_MORE_PRODUCTS  = "add_more_products"
    CUSTOMER_INFO      = "customer_info"
    PAYMENT_METHOD     = "payment_method"
    ORDER_CONFIRMATION = "order_confirmation"


class ConversationSession(Base):
    __tablename__ = "conversation_sessions"

    # Ancla por teléfono (1 sesión por número)
    phone_number = Column(String(20), primary_key=True)

    # Guardado como texto: un valor desconocido se trata como sesión ausente al leer
    step = Column(String(32), nullable=False)
    draft_json = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_conversation_sessions_updated", "updated_at"),
    )

    def __repr__(self):
        return f"<ConversationSession(phone={self.phone_number}, step='{self.step}')>"
