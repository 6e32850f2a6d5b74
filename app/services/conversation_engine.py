"""
🤖 CONVERSATION ENGINE - MÁQUINA DE ESTADOS DEL PEDIDO
======================================================

Decide qué responder y a qué paso avanzar a partir de UN evento entrante y la
sesión guardada (o su ausencia). No escribe en la BD ni envía mensajes: devuelve
un StepOutcome y el orquestador (conversation_service) aplica los efectos.

🔄 PASOS:
START → MAIN_MENU → SELECT_PRODUCT → SPECIFY_QUANTITY → ADD_MORE_PRODUCTS
      → (add_more: vuelve a SELECT_PRODUCT | proceed_checkout)
      → CUSTOMER_INFO → PAYMENT_METHOD → ORDER_CONFIRMATION → fin (sesión borrada)

🚨 REINICIO GLOBAL:
- Antes de despachar, si el texto contiene alguna frase de reinicio
  ("restart", "menu", ...) la sesión se borra SIEMPRE, sin importar el paso.

🛡️ VALIDACIÓN:
- Una entrada inválida repite la pregunta en el MISMO paso (SessionAction.KEEP):
  el borrador guardado no se toca.
- Cada transición válida produce un SessionState NUEVO (REPLACE): el estado
  cargado nunca se muta.

📝 EJEMPLO:
    engine = ConversationEngine(CatalogService(db), OrderService(db))
    outcome = engine.decide(event, store.get(event.sender_id))
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from app.models.conversation_session import ConversationStep
from app.models.order import PaymentMethod
from app.schemas.conversation import (
    DraftItem,
    DraftOrder,
    InboundEvent,
    OutboundPrompt,
    SessionState,
)
from app.utils.decorators import mask_phone
from app.utils.text_normalizer import normalize_reply, resolve_alias
from config.settings import settings

logger = logging.getLogger(__name__)

RESTART_PHRASES = ("restart", "start over", "reset", "begin again", "new order", "menu")

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100

# Tope de las columnas Numeric(10, 2) de orders/order_items
MAX_ORDER_AMOUNT = Decimal("99999999.99")

# ---------------------------
# Opciones por paso (id, etiqueta)
# ---------------------------

WELCOME_OPTIONS = [
    ("browse_products", "🛍️ Browse"),
    ("check_order", "📋 Orders"),
    ("contact_support", "📞 Support"),
]
ADD_MORE_OPTIONS = [
    ("add_more", "➕ Add More"),
    ("proceed_checkout", "🛒 Checkout"),
]
PAYMENT_OPTIONS = [
    (PaymentMethod.INSTANT.value, "💳 Pay Now"),
    (PaymentMethod.DEFERRED_30_DAYS.value, "📅 Pay Later"),
]
CONFIRM_OPTIONS = [
    ("confirm_order", "✅ Confirm"),
    ("cancel_order", "❌ Cancel"),
]

# Mapeo tolerante de texto libre → id de opción
MAIN_MENU_ALIASES = {
    "browse": "browse_products",
    "browse products": "browse_products",
    "shop": "browse_products",
    "products": "browse_products",
    "orders": "check_order",
    "my orders": "check_order",
    "check order": "check_order",
    "order status": "check_order",
    "support": "contact_support",
    "contact support": "contact_support",
    "help": "contact_support",
}
ADD_MORE_ALIASES = {
    "add more": "add_more",
    "add": "add_more",
    "more": "add_more",
    "checkout": "proceed_checkout",
    "check out": "proceed_checkout",
    "proceed": "proceed_checkout",
}
PAYMENT_ALIASES = {
    "pay now": "instant",
    "now": "instant",
    "immediate": "instant",
    "pay later": "30_days",
    "later": "30_days",
    "30 days": "30_days",
}
CONFIRM_ALIASES = {
    "confirm": "confirm_order",
    "yes": "confirm_order",
    "cancel": "cancel_order",
    "no": "cancel_order",
}

PAYMENT_LABELS = {
    PaymentMethod.INSTANT.value: "Immediate Payment",
    PaymentMethod.DEFERRED_30_DAYS.value: "Payment in 30 days",
}
PAYMENT_TERMS = {
    PaymentMethod.INSTANT.value: "💳 Please proceed with immediate payment.",
    PaymentMethod.DEFERRED_30_DAYS.value: "📅 Payment is due within 30 days of delivery.",
}

RESTART_NOTICE = (
    "🔄 *Conversation Restarted!*\n\n"
    "All your previous selections have been cleared. Let's start fresh!"
)


class SessionAction(Enum):
    KEEP = "keep"         # entrada inválida: no se escribe nada
    REPLACE = "replace"   # transición: se reemplaza la sesión completa
    CLEAR = "clear"       # fin o reinicio: se borra la sesión


@dataclass
class CheckoutRequest:
    phone_number: str
    customer_name: str
    items: List[DraftItem]
    payment_method: str


@dataclass
class StepOutcome:
    prompts: List[OutboundPrompt]
    action: SessionAction
    session: Optional[SessionState] = None
    checkout: Optional[CheckoutRequest] = None


def format_money(amount: Decimal) -> str:
    return f"${amount:.2f}"


def parse_positive_int(raw: Optional[str]) -> Optional[int]:
    """'3' → 3; '0', '-1', '2.5', 'two' → None"""
    text = (raw or "").strip()
    if not re.fullmatch(r"\+?\d{1,9}", text):
        return None
    value = int(text)
    return value if value > 0 else None


def is_restart(text: Optional[str]) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in RESTART_PHRASES)


def _item_lines(items: Sequence[DraftItem]) -> str:
    return "".join(
        f"• {item.name} × {item.quantity} = {format_money(item.line_total)}\n"
        for item in items
    )


class ConversationEngine:
    """
    Lógica pura de transiciones. Colaboradores de solo lectura:
    - catalog.list_available() → productos para la ronda de selección
    - orders.get_recent_orders(phone) → consulta de estado desde el menú
    """

    def __init__(self, catalog, orders, page_size: Optional[int] = None):
        self.catalog = catalog
        self.orders = orders
        self.page_size = page_size or settings.CATALOG_PAGE_SIZE

        self._transitions: Dict[ConversationStep, Callable[[InboundEvent, SessionState], StepOutcome]] = {
            ConversationStep.START: self._on_start,
            ConversationStep.MAIN_MENU: self._on_main_menu,
            ConversationStep.SELECT_PRODUCT: self._on_select_product,
            ConversationStep.SPECIFY_QUANTITY: self._on_specify_quantity,
            ConversationStep.ADD_MORE_PRODUCTS: self._on_add_more_products,
            ConversationStep.CUSTOMER_INFO: self._on_customer_info,
            ConversationStep.PAYMENT_METHOD: self._on_payment_method,
            ConversationStep.ORDER_CONFIRMATION: self._on_order_confirmation,
        }
        missing = set(ConversationStep) - set(self._transitions)
        if missing:
            raise RuntimeError(f"steps without handler: {sorted(s.value for s in missing)}")

    # ==========================================
    # ENTRADA PRINCIPAL
    # ==========================================

    def decide(self, event: InboundEvent, session: Optional[SessionState]) -> StepOutcome:
        phone = event.sender_id

        if is_restart(event.text):
            # La sesión queda ausente aunque se muestre el menú: el siguiente
            # mensaje entra por START y vuelve a recibir la bienvenida
            logger.info("🔄 Reinicio solicitado | from=%s | step=%s",
                        mask_phone(phone), session.step.value if session else "none")
            return StepOutcome(
                prompts=[OutboundPrompt.text(RESTART_NOTICE), self._welcome_prompt()],
                action=SessionAction.CLEAR,
            )

        if session is None:
            session = SessionState(phone_number=phone, step=ConversationStep.START)

        handler = self._transitions[session.step]
        outcome = handler(event, session)
        logger.debug("➡️ %s | %s → %s (%s)", mask_phone(phone), session.step.value,
                     outcome.session.step.value if outcome.session else "-", outcome.action.value)
        return outcome

    def complete_checkout(self, checkout: CheckoutRequest, result: Dict) -> StepOutcome:
        """Respuesta final tras intentar el commit; la sesión se borra en ambos casos."""
        if result.get("success"):
            order = result["data"]
            body = (
                "🎉 *Order Confirmed!*\n\n"
                f"📋 Order Number: *{order['order_number']}*\n\n"
                "Thank you for your order! We'll process it shortly and keep you updated.\n\n"
                f"{PAYMENT_TERMS.get(checkout.payment_method, '')}\n\n"
                "You will receive a receipt shortly."
            )
            return StepOutcome(prompts=[OutboundPrompt.text(body)], action=SessionAction.CLEAR)

        logger.warning("❌ Commit fallido | from=%s | %s", mask_phone(checkout.phone_number), result.get("error"))
        return StepOutcome(
            prompts=[OutboundPrompt.text(
                "Sorry, there was an error processing your order. "
                "Please try again or contact support."
            )],
            action=SessionAction.CLEAR,
        )

    # ==========================================
    # HANDLERS POR PASO
    # ==========================================

    def _on_start(self, event: InboundEvent, session: SessionState) -> StepOutcome:
        return self._welcome(session.phone_number)

    def _on_main_menu(self, event: InboundEvent, session: SessionState) -> StepOutcome:
        choice = self._choice(event, WELCOME_OPTIONS, MAIN_MENU_ALIASES)
        phone = session.phone_number

        if choice == "browse_products":
            return self._show_catalog(session, items=[])

        if choice == "check_order":
            return self._welcome(phone, preface=[self._order_status_prompt(phone)])

        if choice == "contact_support":
            support = OutboundPrompt.text(
                "📞 *Contact Support*\n\n"
                f"📧 Email: {settings.BUSINESS_EMAIL}\n"
                f"📱 Phone: {settings.BUSINESS_PHONE}\n\n"
                "Our support team is available Monday-Friday, 9 AM - 6 PM."
            )
            return self._welcome(phone, preface=[support])

        return self._welcome(phone, preface=[OutboundPrompt.text(
            "I didn't understand that. Please use the buttons to select an option."
        )])

    def _on_select_product(self, event: InboundEvent, session: SessionState) -> StepOutcome:
        products = session.draft.available_products
        index = parse_positive_int(self._raw_input(event))

        if index is None:
            return self._reprompt(
                f"Please enter a valid product number (1-{len(products)}) "
                "or type 'restart' to go back to the main menu."
            )

        if index > len(products):
            return self._reprompt(
                f"Product not found. Please enter a valid product number (1-{len(products)}) "
                "or type 'restart' to go back to the main menu."
            )

        product = products[index - 1]
        draft = session.draft.model_copy(deep=True)
        draft.selected_product = product

        body = (
            f"✅ You selected: *{product.name}*\n"
            f"💰 Price: {format_money(product.unit_price)}\n"
            + (f"📝 {product.description}\n" if product.description else "")
            + "\nHow many would you like to order?"
        )
        return self._advance(session, ConversationStep.SPECIFY_QUANTITY, draft, [OutboundPrompt.text(body)])

    def _on_specify_quantity(self, event: InboundEvent, session: SessionState) -> StepOutcome:
        product = session.draft.selected_product
        if product is None:
            # Borrador sin producto seleccionado: volver a mostrar el catálogo
            logger.warning("⚠️ SPECIFY_QUANTITY sin producto | from=%s", mask_phone(session.phone_number))
            return self._show_catalog(session, items=session.draft.items)

        quantity = parse_positive_int(self._raw_input(event))
        if quantity is None:
            return self._reprompt(
                "Please enter a valid quantity (positive number) "
                "or type 'restart' to go back to the main menu."
            )

        item = DraftItem(
            product_id=product.id,
            name=product.name,
            quantity=quantity,
            unit_price=product.unit_price,
        )
        if session.draft.total() + item.line_total > MAX_ORDER_AMOUNT:
            return self._reprompt(
                f"That quantity exceeds the maximum order amount of {format_money(MAX_ORDER_AMOUNT)}. "
                "Please enter a smaller quantity."
            )

        draft = session.draft.model_copy(deep=True)
        draft.items.append(item)
        draft.selected_product = None

        prompt = OutboundPrompt.choices(
            f"✅ Added to your order:\n*{item.name}* × {quantity} = {format_money(item.line_total)}\n\n"
            "Would you like to add more products?",
            ADD_MORE_OPTIONS,
        )
        return self._advance(session, ConversationStep.ADD_MORE_PRODUCTS, draft, [prompt])

    def _on_add_more_products(self, event: InboundEvent, session: SessionState) -> StepOutcome:
        choice = self._choice(event, ADD_MORE_OPTIONS, ADD_MORE_ALIASES)

        if choice == "add_more":
            return self._show_catalog(session, items=session.draft.items)

        if choice == "proceed_checkout":
            if not session.draft.items:
                return self._show_catalog(session, items=[])
            summary = (
                "📋 *Order Summary*\n\n"
                + _item_lines(session.draft.items)
                + f"\n💰 *Total: {format_money(session.draft.total())}*\n\n"
                "To complete your order, please provide your full name:"
            )
            return self._advance(session, ConversationStep.CUSTOMER_INFO, session.draft, [OutboundPrompt.text(summary)])

        return self._reprompt_choices("Please use the buttons to continue.", ADD_MORE_OPTIONS)

    def _on_customer_info(self, event: InboundEvent, session: SessionState) -> StepOutcome:
        name = (event.text or "").strip()

        if len(name) < MIN_NAME_LENGTH:
            return self._reprompt(
                "Please provide a valid full name (at least 2 characters) "
                "or type 'restart' to go back to the main menu."
            )
        if len(name) > MAX_NAME_LENGTH:
            return self._reprompt(f"That name is too long. Please use at most {MAX_NAME_LENGTH} characters.")

        draft = session.draft.model_copy(deep=True)
        draft.customer_name = name

        prompt = OutboundPrompt.choices(
            "💳 *Payment Options*\n\nPlease choose your preferred payment method:",
            PAYMENT_OPTIONS,
        )
        return self._advance(session, ConversationStep.PAYMENT_METHOD, draft, [prompt])

    def _on_payment_method(self, event: InboundEvent, session: SessionState) -> StepOutcome:
        choice = self._choice(event, PAYMENT_OPTIONS, PAYMENT_ALIASES)

        if choice not in PAYMENT_LABELS:
            return self._reprompt_choices("Please select a valid payment option using the buttons.", PAYMENT_OPTIONS)

        draft = session.draft.model_copy(deep=True)
        draft.payment_method = choice

        recap = (
            "🔍 *Please confirm your order:*\n\n"
            f"👤 Name: {draft.customer_name}\n"
            f"📱 Phone: {session.phone_number}\n\n"
            "🛍️ *Items:*\n"
            + _item_lines(draft.items)
            + f"\n💰 *Total: {format_money(draft.total())}*\n"
            f"💳 Payment: {PAYMENT_LABELS[choice]}\n\n"
            "Is this correct?"
        )
        prompt = OutboundPrompt.choices(recap, CONFIRM_OPTIONS)
        return self._advance(session, ConversationStep.ORDER_CONFIRMATION, draft, [prompt])

    def _on_order_confirmation(self, event: InboundEvent, session: SessionState) -> StepOutcome:
        choice = self._choice(event, CONFIRM_OPTIONS, CONFIRM_ALIASES)
        draft = session.draft

        if choice == "confirm_order":
            if not draft.items or not draft.customer_name or draft.payment_method not in PAYMENT_LABELS:
                logger.warning("⚠️ Borrador incompleto al confirmar | from=%s", mask_phone(session.phone_number))
                return StepOutcome(
                    prompts=[OutboundPrompt.text(
                        "Sorry, your order details were incomplete. Type 'hi' to start a new order."
                    )],
                    action=SessionAction.CLEAR,
                )
            checkout = CheckoutRequest(
                phone_number=session.phone_number,
                customer_name=draft.customer_name,
                items=[item.model_copy() for item in draft.items],
                payment_method=draft.payment_method,
            )
            # Los mensajes finales dependen del commit: ver complete_checkout()
            return StepOutcome(prompts=[], action=SessionAction.CLEAR, checkout=checkout)

        if choice == "cancel_order":
            return StepOutcome(
                prompts=[OutboundPrompt.text(
                    "❌ Order cancelled. Thank you for visiting! Type 'hi' anytime to start a new order."
                )],
                action=SessionAction.CLEAR,
            )

        return self._reprompt_choices("Please use the buttons to confirm or cancel your order.", CONFIRM_OPTIONS)

    # ==========================================
    # AUXILIARES
    # ==========================================

    def _welcome_prompt(self) -> OutboundPrompt:
        return OutboundPrompt.choices(
            f"🛍️ Welcome to *{settings.BUSINESS_NAME}*!\n\n"
            "I'm here to help you place your order easily through WhatsApp.\n\n"
            "What would you like to do today?",
            WELCOME_OPTIONS,
        )

    def _welcome(self, phone: str, preface: Sequence[OutboundPrompt] = ()) -> StepOutcome:
        session = SessionState(phone_number=phone, step=ConversationStep.MAIN_MENU, draft=DraftOrder())
        return StepOutcome(
            prompts=[*preface, self._welcome_prompt()],
            action=SessionAction.REPLACE,
            session=session,
        )

    def _show_catalog(self, session: SessionState, items: Sequence[DraftItem]) -> StepOutcome:
        all_products = self.catalog.list_available()

        if not all_products:
            return self._welcome(session.phone_number, preface=[OutboundPrompt.text(
                "Sorry, no products are currently available. Please check back later."
            )])

        page = all_products[:self.page_size]
        header = OutboundPrompt.text(
            "🛍️ *Our Featured Products*\n\n"
            "To select a product, reply with the product number (e.g., '1' for the first product).\n\n"
            "Type 'restart' or 'menu' to go back to the main menu."
        )
        listing = "".join(
            f"{i}. {p.name} - {format_money(p.unit_price)}\n"
            + (f"   {p.description}\n" if p.description else "")
            + "\n"
            for i, p in enumerate(page, start=1)
        )
        if len(all_products) > self.page_size:
            listing += (
                f"📝 *Note: Showing {len(page)} of {len(all_products)} available products. "
                "Contact support for the complete catalog.*"
            )

        draft = DraftOrder(
            items=[item.model_copy() for item in items],
            available_products=page,
        )
        return self._advance(session, ConversationStep.SELECT_PRODUCT, draft,
                             [header, OutboundPrompt.text(listing.rstrip())])

    def _order_status_prompt(self, phone: str) -> OutboundPrompt:
        result = self.orders.get_recent_orders(phone)
        if not result.get("success"):
            return OutboundPrompt.text("We couldn't look up your orders right now. Please try again later.")

        orders = result.get("orders", [])
        if not orders:
            return OutboundPrompt.text("📋 You don't have any orders yet.")

        lines = "".join(
            f"• *{o['order_number']}* - {o['status']} - {format_money(Decimal(o['total_amount']))}\n"
            for o in orders
        )
        return OutboundPrompt.text(f"📋 *Your recent orders*\n\n{lines}".rstrip())

    def _advance(self, session: SessionState, step: ConversationStep, draft: DraftOrder,
                 prompts: List[OutboundPrompt]) -> StepOutcome:
        return StepOutcome(prompts=prompts, action=SessionAction.REPLACE, session=session.advance(step, draft))

    @staticmethod
    def _reprompt(body: str) -> StepOutcome:
        return StepOutcome(prompts=[OutboundPrompt.text(body)], action=SessionAction.KEEP)

    @staticmethod
    def _reprompt_choices(body: str, options: List[Tuple[str, str]]) -> StepOutcome:
        return StepOutcome(prompts=[OutboundPrompt.choices(body, options)], action=SessionAction.KEEP)

    @staticmethod
    def _raw_input(event: InboundEvent) -> str:
        if event.kind == "structured_reply" and event.reply_id and not event.text:
            return event.reply_id
        return event.text

    @staticmethod
    def _choice(event: InboundEvent, options: List[Tuple[str, str]], aliases: Dict[str, str]) -> str:
        """
        Id de la opción elegida: primero el reply_id estructurado, luego el
        número de la opción ("2"), luego alias/etiquetas del texto libre.
        """
        if event.kind == "structured_reply" and event.reply_id:
            return event.reply_id

        position = parse_positive_int(event.text)
        if position is not None and position <= len(options):
            return options[position - 1][0]

        labels = {normalize_reply(label): option_id for option_id, label in options}
        return resolve_alias(event.text, {**labels, **aliases})
