from .whatsapp_service import WhatsAppService
from .order_service import OrderService
from .catalog_service import CatalogService
from .session_store import SessionStore
from .conversation_engine import ConversationEngine, SessionAction, StepOutcome
from .conversation_service import ConversationService
from .identity_lock import IdentityLock, identity_locks
from .receipt_service import ReceiptService
from .cache_service import CacheService, cache_service
from .throttle_service import check_rate_limit, claim_message_idempotent

__all__ = [
    "WhatsAppService",
    "OrderService",
    "CatalogService",
    "SessionStore",
    "ConversationEngine", "SessionAction", "StepOutcome",
    "ConversationService",
    "IdentityLock", "identity_locks",
    "ReceiptService",
    "CacheService", "cache_service",
    "check_rate_limit",
    "claim_message_idempotent"
]
