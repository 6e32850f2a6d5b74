# tests/test_session_store.py
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.models.conversation_session import ConversationSession, ConversationStep
from app.schemas.conversation import DraftItem, DraftOrder, SessionState
from app.services.errors import SessionStoreError
from app.services.session_store import SessionStore

PHONE = "+15550002000"


def test_missing_session_is_none(db):
    assert SessionStore(db).get(PHONE) is None


def test_put_then_get_preserves_draft(db):
    store = SessionStore(db)
    draft = DraftOrder(
        items=[DraftItem(product_id=1, name="Jeans", quantity=2, unit_price=Decimal("65.00"))],
        customer_name="Jane Doe",
    )
    store.put(SessionState(phone_number=PHONE, step=ConversationStep.CUSTOMER_INFO, draft=draft))

    loaded = store.get(PHONE)

    assert loaded.step == ConversationStep.CUSTOMER_INFO
    assert loaded.draft.items[0].unit_price == Decimal("65.00")
    assert loaded.draft.total() == Decimal("130.00")
    assert loaded.draft.customer_name == "Jane Doe"


def test_put_replaces_whole_session(db):
    store = SessionStore(db)
    store.put(SessionState(phone_number=PHONE, step=ConversationStep.CUSTOMER_INFO,
                           draft=DraftOrder(customer_name="Old")))
    store.put(SessionState(phone_number=PHONE, step=ConversationStep.MAIN_MENU))

    loaded = store.get(PHONE)
    assert loaded.step == ConversationStep.MAIN_MENU
    assert loaded.draft.customer_name is None
    assert db.query(ConversationSession).count() == 1


def test_delete(db):
    store = SessionStore(db)
    store.put(SessionState(phone_number=PHONE, step=ConversationStep.MAIN_MENU))

    assert store.delete(PHONE) is True
    assert store.delete(PHONE) is False
    assert store.get(PHONE) is None


@pytest.mark.parametrize("step,draft", [
    ("waiting_for_payment", {"version": 1}),
    ("main_menu", {"version": 99}),
    ("main_menu", {"items": []}),
    ("main_menu", {"version": 1, "items": [{"product_id": 1, "name": "Jeans", "quantity": 0, "unit_price": "65.00"}]}),
    ("main_menu", ["not", "a", "dict"]),
])
def test_corrupt_sessions_are_treated_as_absent(db, step, draft):
    db.add(ConversationSession(phone_number=PHONE, step=step, draft_json=draft))
    db.commit()

    assert SessionStore(db).get(PHONE) is None


def test_store_failures_raise_session_store_error(db, monkeypatch):
    store = SessionStore(db)

    def _broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "get", _broken)

    with pytest.raises(SessionStoreError):
        store.get(PHONE)
    with pytest.raises(SessionStoreError):
        store.put(SessionState(phone_number=PHONE, step=ConversationStep.MAIN_MENU))
    with pytest.raises(SessionStoreError):
        store.delete(PHONE)
