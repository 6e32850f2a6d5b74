"""
🧩 ESQUEMAS DE CONVERSACIÓN
===========================

Modelos pydantic que viajan entre el transporte, el motor de conversación y
el almacén de sesiones:

- InboundEvent: un mensaje entrante ya normalizado (texto o respuesta estructurada)
- OutboundPrompt: lo que el bot quiere enviar (texto, opciones o documento)
- DraftOrder: borrador versionado del pedido en curso
- SessionState: paso actual + borrador de un número de WhatsApp

💰 DINERO:
- Siempre Decimal redondeado a 2 decimales (ROUND_HALF_UP)
- En JSON los precios se serializan como string ("25.00"), nunca float
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.conversation_session import ConversationStep

# Subir este número cuando cambie la forma del borrador: los borradores
# guardados con otra versión se descartan al leerlos.
DRAFT_VERSION = 1

MAX_CHOICE_OPTIONS = 3


def money(amount: Decimal) -> Decimal:
    """Redondea cantidades monetarias a 2 decimales."""
    return Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return money(Decimal(unit_price) * quantity)


# ---------------------------
# Mensajes entrantes / salientes
# ---------------------------

class InboundEvent(BaseModel):
    sender_id: str = Field(..., min_length=1)
    text: str = ""
    kind: Literal["text", "structured_reply"] = "text"
    reply_id: Optional[str] = None
    message_id: Optional[str] = None

    @field_validator("text", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or ""


class ChoiceOption(BaseModel):
    id: str
    label: str


class OutboundPrompt(BaseModel):
    kind: Literal["text", "choice_prompt", "document"]
    body: str
    options: List[ChoiceOption] = Field(default_factory=list)
    caption: Optional[str] = None

    @field_validator("options")
    @classmethod
    def _max_options(cls, v: List[ChoiceOption]) -> List[ChoiceOption]:
        if len(v) > MAX_CHOICE_OPTIONS:
            raise ValueError(f"a choice prompt supports at most {MAX_CHOICE_OPTIONS} options")
        return v

    @classmethod
    def text(cls, body: str) -> "OutboundPrompt":
        return cls(kind="text", body=body)

    @classmethod
    def choices(cls, body: str, options: List[tuple]) -> "OutboundPrompt":
        return cls(
            kind="choice_prompt",
            body=body,
            options=[ChoiceOption(id=option_id, label=label) for option_id, label in options],
        )

    @classmethod
    def document(cls, url: str, caption: str) -> "OutboundPrompt":
        return cls(kind="document", body=url, caption=caption)


# ---------------------------
# Borrador del pedido
# ---------------------------

class ProductSnapshot(BaseModel):
    id: int
    name: str
    description: str = ""
    unit_price: Decimal
    category: Optional[str] = None

    @field_validator("description", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or ""


class DraftItem(BaseModel):
    product_id: int
    name: str
    quantity: int = Field(..., gt=0)
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return line_total(self.unit_price, self.quantity)


class DraftOrder(BaseModel):
    version: int = DRAFT_VERSION
    items: List[DraftItem] = Field(default_factory=list)
    available_products: List[ProductSnapshot] = Field(default_factory=list)
    selected_product: Optional[ProductSnapshot] = None
    customer_name: Optional[str] = None
    payment_method: Optional[str] = None

    def total(self) -> Decimal:
        return money(sum((item.line_total for item in self.items), Decimal("0")))


class SessionState(BaseModel):
    phone_number: str
    step: ConversationStep
    draft: DraftOrder = Field(default_factory=DraftOrder)
    updated_at: Optional[datetime] = None

    def advance(self, step: ConversationStep, draft: Optional[DraftOrder] = None) -> "SessionState":
        """Copia con el nuevo paso; el estado cargado nunca se muta."""
        return SessionState(
            phone_number=self.phone_number,
            step=step,
            draft=(draft if draft is not None else self.draft).model_copy(deep=True),
        )
