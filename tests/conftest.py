# tests/conftest.py
import os
import tempfile

# La configuración se lee al importar config.settings: fijar el entorno antes
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test_auth_token_123")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACtest")
os.environ.setdefault("TWILIO_WHATSAPP_NUMBER", "+14155238886")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_ENABLED"] = "False"
os.environ["DISABLE_WEBHOOK_VALIDATION"] = "False"
os.environ["RECEIPTS_DIR"] = tempfile.mkdtemp(prefix="receipts_")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.schemas.conversation import InboundEvent
from app.services.errors import NotificationError
from database.connection import Base
from database.init_db import seed_products


@pytest.fixture(scope="session")
def twilio_token_env():
    """Fixture para obtener el token de Twilio del entorno."""
    return os.environ["TWILIO_AUTH_TOKEN"]


@pytest.fixture
def engine():
    """SQLite en memoria compartida por todas las conexiones del test."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded_db(db):
    seed_products(db)
    return db


class FakeNotifier:
    """Registra los prompts en vez de llamar a Twilio."""

    def __init__(self, fail_kinds=()):
        self.sent = []
        self.fail_kinds = set(fail_kinds)

    async def send_prompt(self, to_number, prompt):
        if prompt.kind in self.fail_kinds:
            raise NotificationError(f"{prompt.kind} delivery failed")
        self.sent.append((to_number, prompt))
        return f"SM{len(self.sent):032d}"

    def bodies(self):
        return [prompt.body for _, prompt in self.sent]

    def clear(self):
        self.sent.clear()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def no_retry_delay(monkeypatch):
    """Evita las esperas del backoff cuando un envío falla a propósito."""
    import app.utils.retry as retry_module

    async def _no_sleep(_seconds):
        return None

    monkeypatch.setattr(retry_module.asyncio, "sleep", _no_sleep)


def text_event(phone, text, sid=None):
    return InboundEvent(sender_id=phone, text=text, kind="text", message_id=sid)


def reply_event(phone, reply_id, sid=None):
    return InboundEvent(sender_id=phone, text="", kind="structured_reply", reply_id=reply_id, message_id=sid)
