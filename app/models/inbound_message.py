from sqlalchemy import Column, Text, DateTime, func
from database.connection import Base


# Registro de MessageSid ya procesados (deduplicación de reentregas del webhook)
class InboundMessage(Base):
    __tablename__ = "inbound_messages"
    message_sid = Column(Text, primary_key=True)
    from_number = Column(Text, nullable=False)
    body = Column(Text, nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
