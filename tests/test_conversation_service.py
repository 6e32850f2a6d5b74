# tests/test_conversation_service.py
import asyncio
import logging
import os
from decimal import Decimal

import pytest

from app.models.conversation_session import ConversationSession, ConversationStep
from app.models.order import Order, OrderStatus, PaymentMethod
from app.services.conversation_service import (
    BUSY_NOTICE,
    GENERIC_APOLOGY,
    RECEIPT_APOLOGY,
    ConversationService,
)
from app.services.errors import SessionStoreError
from app.services.identity_lock import IdentityLock
from app.services.order_service import OrderService
from app.services.receipt_service import ReceiptService
from app.services.session_store import SessionStore
from conftest import FakeNotifier, reply_event, text_event

PHONE = "+1000"


@pytest.fixture
def receipts(tmp_path):
    return ReceiptService(directory=str(tmp_path), base_url="https://bot.example.com")


@pytest.fixture
def service(seeded_db, notifier, receipts):
    return ConversationService(seeded_db, notifier=notifier, locks=IdentityLock(), receipts=receipts)


def run(service, event):
    return asyncio.run(service.handle_event(event))


def step_of(db, phone=PHONE):
    session = SessionStore(db).get(phone)
    return session.step if session else None


def walk_to_confirmation(service, db):
    run(service, text_event(PHONE, "hi"))
    run(service, reply_event(PHONE, "browse_products"))
    run(service, text_event(PHONE, "2"))
    run(service, text_event(PHONE, "3"))
    run(service, text_event(PHONE, "proceed_checkout"))
    run(service, text_event(PHONE, "Jane Doe"))
    run(service, text_event(PHONE, "instant"))
    assert step_of(db) == ConversationStep.ORDER_CONFIRMATION


def test_full_order_scenario(service, seeded_db, notifier, receipts):
    prompts = run(service, text_event(PHONE, "hi"))
    assert prompts[-1].kind == "choice_prompt"
    assert step_of(seeded_db) == ConversationStep.MAIN_MENU

    prompts = run(service, reply_event(PHONE, "browse_products"))
    listing = prompts[-1].body
    assert all(f"{n}. " in listing for n in range(1, 6))
    assert step_of(seeded_db) == ConversationStep.SELECT_PRODUCT

    prompts = run(service, text_event(PHONE, "2"))
    assert "Sunglasses" in prompts[0].body
    assert step_of(seeded_db) == ConversationStep.SPECIFY_QUANTITY

    run(service, text_event(PHONE, "3"))
    draft = SessionStore(seeded_db).get(PHONE).draft
    assert draft.items[0].quantity == 3
    assert draft.items[0].line_total == Decimal("30.00") * 3
    assert step_of(seeded_db) == ConversationStep.ADD_MORE_PRODUCTS

    run(service, text_event(PHONE, "proceed_checkout"))
    assert step_of(seeded_db) == ConversationStep.CUSTOMER_INFO

    run(service, text_event(PHONE, "Jane Doe"))
    assert step_of(seeded_db) == ConversationStep.PAYMENT_METHOD

    run(service, text_event(PHONE, "instant"))
    assert step_of(seeded_db) == ConversationStep.ORDER_CONFIRMATION

    notifier.clear()
    prompts = run(service, text_event(PHONE, "confirm_order"))

    order = seeded_db.query(Order).one()
    assert len(order.items) == 1
    assert order.total_amount == order.items[0].line_total == Decimal("90.00")
    assert order.payment_method == PaymentMethod.INSTANT
    assert order.status == OrderStatus.PENDING
    assert order.customer_name == "Jane Doe"
    assert step_of(seeded_db) is None

    assert order.order_number in prompts[0].body
    assert [p.kind for p in prompts] == ["text", "document", "text"]
    assert prompts[1].body == receipts.receipt_url(order.order_number)
    assert os.path.exists(os.path.join(receipts.directory, ReceiptService.filename(order.order_number)))
    assert len(notifier.sent) == 3


def test_restart_at_quantity_discards_draft(service, seeded_db):
    run(service, text_event(PHONE, "hi"))
    run(service, reply_event(PHONE, "browse_products"))
    run(service, text_event(PHONE, "1"))
    run(service, text_event(PHONE, "2"))
    run(service, reply_event(PHONE, "add_more"))
    run(service, text_event(PHONE, "4"))
    assert step_of(seeded_db) == ConversationStep.SPECIFY_QUANTITY

    prompts = run(service, text_event(PHONE, "restart"))

    assert step_of(seeded_db) is None
    assert "Conversation Restarted" in prompts[0].body
    assert prompts[1].kind == "choice_prompt"

    # El siguiente mensaje arranca de cero, sin items residuales
    run(service, text_event(PHONE, "hello again"))
    session = SessionStore(seeded_db).get(PHONE)
    assert session.step == ConversationStep.MAIN_MENU
    assert session.draft.items == []


def test_invalid_input_keeps_step_and_draft(service, seeded_db):
    run(service, text_event(PHONE, "hi"))
    run(service, reply_event(PHONE, "browse_products"))
    before = SessionStore(seeded_db).get(PHONE)

    prompts = run(service, text_event(PHONE, "42"))

    after = SessionStore(seeded_db).get(PHONE)
    assert "Product not found" in prompts[0].body
    assert after.step == before.step
    assert after.draft == before.draft


def test_commit_failure_apologizes_and_clears(service, seeded_db, monkeypatch):
    walk_to_confirmation(service, seeded_db)
    monkeypatch.setattr(OrderService, "create_order",
                        lambda self, *args, **kwargs: {"success": False, "error": "db unavailable"})

    prompts = run(service, reply_event(PHONE, "confirm_order"))

    assert "error processing your order" in prompts[0].body
    assert len(prompts) == 1
    assert seeded_db.query(Order).count() == 0
    assert step_of(seeded_db) is None


def test_session_write_failure_sends_generic_apology(service, seeded_db, notifier, monkeypatch):
    run(service, text_event(PHONE, "hi"))

    def _broken_put(self, state):
        raise SessionStoreError("could not save session")

    monkeypatch.setattr(SessionStore, "put", _broken_put)
    notifier.clear()

    prompts = run(service, reply_event(PHONE, "browse_products"))

    assert [p.body for p in prompts] == [GENERIC_APOLOGY]
    assert notifier.bodies() == [GENERIC_APOLOGY]
    assert step_of(seeded_db) is None


def test_receipt_failure_keeps_order(service, seeded_db, receipts, monkeypatch):
    walk_to_confirmation(service, seeded_db)

    def _broken_save(order):
        raise OSError("read-only file system")

    monkeypatch.setattr(receipts, "save_receipt", _broken_save)

    prompts = run(service, reply_event(PHONE, "confirm_order"))

    assert seeded_db.query(Order).count() == 1
    assert prompts[-1].body == RECEIPT_APOLOGY
    assert step_of(seeded_db) is None


def test_document_send_failure_sends_apology(seeded_db, receipts, no_retry_delay):
    notifier = FakeNotifier(fail_kinds={"document"})
    service = ConversationService(seeded_db, notifier=notifier, locks=IdentityLock(), receipts=receipts)
    walk_to_confirmation(service, seeded_db)

    run(service, reply_event(PHONE, "confirm_order"))

    assert seeded_db.query(Order).count() == 1
    assert notifier.bodies()[-1] == RECEIPT_APOLOGY


def test_identities_do_not_share_sessions(service, seeded_db):
    run(service, text_event(PHONE, "hi"))
    run(service, text_event("+2000", "hi"))
    run(service, reply_event(PHONE, "browse_products"))

    assert step_of(seeded_db, PHONE) == ConversationStep.SELECT_PRODUCT
    assert step_of(seeded_db, "+2000") == ConversationStep.MAIN_MENU


def _broken_get(self, phone_number):
    raise SessionStoreError("could not read session")


def _broken_delete(self, phone_number):
    raise SessionStoreError("could not delete session")


def test_session_read_failure_apologizes_and_clears(service, seeded_db, notifier, monkeypatch):
    run(service, text_event(PHONE, "hi"))
    deleted = []
    original_delete = SessionStore.delete

    def _recording_delete(self, phone_number):
        deleted.append(phone_number)
        return original_delete(self, phone_number)

    monkeypatch.setattr(SessionStore, "get", _broken_get)
    monkeypatch.setattr(SessionStore, "delete", _recording_delete)
    notifier.clear()

    prompts = run(service, reply_event(PHONE, "browse_products"))

    assert [p.body for p in prompts] == [GENERIC_APOLOGY]
    assert notifier.bodies() == [GENERIC_APOLOGY]
    assert deleted == [PHONE]
    assert seeded_db.query(ConversationSession).count() == 0


def test_failed_clear_is_logged_for_operators(service, seeded_db, notifier, monkeypatch, caplog):
    run(service, text_event(PHONE, "hi"))
    monkeypatch.setattr(SessionStore, "get", _broken_get)
    monkeypatch.setattr(SessionStore, "delete", _broken_delete)
    notifier.clear()

    with caplog.at_level(logging.WARNING, logger="app.services.conversation_service"):
        prompts = run(service, reply_event(PHONE, "browse_products"))

    assert [p.body for p in prompts] == [GENERIC_APOLOGY]
    assert notifier.bodies() == [GENERIC_APOLOGY]
    assert any("No se pudo limpiar la sesión" in r.getMessage() for r in caplog.records)


def test_order_confirmed_when_session_clear_fails(service, seeded_db, notifier, monkeypatch, caplog):
    walk_to_confirmation(service, seeded_db)
    monkeypatch.setattr(SessionStore, "delete", _broken_delete)
    notifier.clear()

    with caplog.at_level(logging.WARNING, logger="app.services.conversation_service"):
        prompts = run(service, reply_event(PHONE, "confirm_order"))

    order = seeded_db.query(Order).one()
    assert order.order_number in prompts[0].body
    assert "Order Confirmed" in notifier.bodies()[0]
    assert [p.kind for p in prompts] == ["text", "document", "text"]
    assert any(
        order.order_number in r.getMessage() and "la sesión no se limpió" in r.getMessage()
        for r in caplog.records
    )


class HeldElsewhere:
    """Lock de Redis que otro worker nunca suelta."""

    async def acquire(self):
        return False

    async def release(self):
        return None


class BusyCache:
    def lock(self, key, timeout):
        return HeldElsewhere()


def test_busy_identity_gets_retry_notice(seeded_db, notifier, receipts):
    service = ConversationService(seeded_db, notifier=notifier,
                                  locks=IdentityLock(BusyCache(), timeout=1), receipts=receipts)

    prompts = run(service, text_event(PHONE, "hi"))

    assert [p.body for p in prompts] == [BUSY_NOTICE]
    assert notifier.bodies() == [BUSY_NOTICE]
    assert seeded_db.query(ConversationSession).count() == 0
