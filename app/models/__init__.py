from .customer import Customer
from .product import Product
from .order import Order, OrderItem, OrderStatus, PaymentMethod
from .inbound_message import InboundMessage
from .conversation_session import ConversationSession, ConversationStep

__all__ = [
    "Customer",
    "Product",
    "Order", "OrderItem", "OrderStatus", "PaymentMethod",
    "InboundMessage",
    "ConversationSession", "ConversationStep"
]
