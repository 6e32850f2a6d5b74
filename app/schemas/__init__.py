from .conversation import (
    InboundEvent,
    OutboundPrompt,
    ChoiceOption,
    ProductSnapshot,
    DraftItem,
    DraftOrder,
    SessionState,
)

__all__ = [
    "InboundEvent", "OutboundPrompt", "ChoiceOption",
    "ProductSnapshot", "DraftItem", "DraftOrder", "SessionState"
]
