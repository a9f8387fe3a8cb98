import os
from contextlib import contextmanager

from cryptography.fernet import Fernet

os.environ["ENV"] = "test"
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode())

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import app.models  # noqa: E402,F401
from app.adapters.instagram import InstagramAdapter  # noqa: E402
from app.adapters.messenger import MessengerAdapter  # noqa: E402
from app.config import Settings  # noqa: E402
from app.core.registry import AdapterRegistry  # noqa: E402
from app.db import Base, build_engine, get_db  # noqa: E402
from app.main import create_app  # noqa: E402
from tests.fixtures.graph_fixtures import APP_SECRET, VERIFY_TOKEN  # noqa: E402

pytest_plugins = [
    "tests.fixtures.channel_fixtures",
    "tests.fixtures.graph_fixtures",
    "tests.fixtures.session_fixtures",
]


@pytest.fixture(scope="session")
def engine():
    engine = build_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db):
    """Session factory handing out the test session, for commands that open their own."""

    @contextmanager
    def factory():
        try:
            yield db
        except Exception:
            db.rollback()
            raise

    return factory


@pytest.fixture(scope="function")
def test_settings():
    return Settings(
        facebook_enabled=True,
        instagram_enabled=True,
        facebook_app_secret=APP_SECRET,
        facebook_verify_token=VERIFY_TOKEN,
    )


@pytest.fixture(scope="function")
def registry(test_settings, graph_api, fake_whatsapp):
    """Messenger and Instagram on the stubbed Graph API, WhatsApp on in-memory sessions."""
    registry = AdapterRegistry()
    registry.register(MessengerAdapter(test_settings, http=graph_api.client()))
    registry.register(InstagramAdapter(test_settings, http=graph_api.client()))
    registry.register(fake_whatsapp)
    return registry


@pytest.fixture(scope="function")
def app(db, test_settings, session_factory, registry, fake_whatsapp):
    app = create_app(
        testing=True,
        settings=test_settings,
        session_factory=session_factory,
        registry=registry,
    )
    fake_whatsapp.sessions = app.state.inbox.sessions

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client(app):
    with TestClient(app) as c:
        yield c
