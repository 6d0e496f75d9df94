import pytest

from app import auth
from app.auth import User, hash_password
from app.libs import checkout, dashboard, editor_session, quiz
from app.libs.document_store import SERVER_TIMESTAMP, InMemoryDocumentStore, set_document_store
from app.libs.settings import get_settings


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    """Run every test against an in-memory store with fixed settings."""
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    monkeypatch.delenv("DEPLOY_WEBHOOK_URL", raising=False)
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("RAZORPAY_KEY_ID", "rzp_test_key")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store():
    store = InMemoryDocumentStore()
    set_document_store(store)
    yield store
    editor_session._sessions.clear()
    auth._sessions.clear()
    quiz._wizards.clear()
    checkout._sessions.clear()
    dashboard.reset_admin_dashboard()
    set_document_store(None)


@pytest.fixture
def register(store):
    """Store a user document and return the matching ``User``."""
    async def _register(email: str, password: str = "secret123", display_name: str = None,
                        is_admin: bool = False) -> User:
        display_name = display_name or email.split("@")[0]
        user_id = await store.add("users", {
            "email": email,
            "displayName": display_name,
            "passwordHash": hash_password(password),
            "isAdmin": is_admin,
            "createdAt": SERVER_TIMESTAMP,
        })
        return User(sub=user_id, email=email, display_name=display_name, is_admin=is_admin)

    return _register
