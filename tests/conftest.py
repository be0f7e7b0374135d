import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import shop_bot.config as config_mod
import shop_bot.db as db
from shop_bot.app_factory import create_app
from shop_bot.flow.orchestrator import FlowOrchestrator
from shop_bot.models import Base, Product
from shop_bot.routes import chat as chat_routes
from shop_bot.routes import limiter
from shop_bot.services.message_analysis import MessageAnalysis, MessageAnalyzer
from shop_bot.services.payment_coordinator import PaymentFlowCoordinator
from shop_bot.services.payment_providers import SandboxPaymentProvider
from shop_bot.services.session_store import SESSION_CACHE

# Test admin credentials
TEST_ADMIN_USERNAME = "testadmin"
TEST_ADMIN_PASSWORD = "testpassword123"


class FakeAnalyzer(MessageAnalyzer):
    """Deterministic free-text responder; records every call."""

    def __init__(self):
        self.calls = []
        self.error = None
        self.analysis = MessageAnalysis(
            content="Ce jeu se joue à partir de 6 ans, en famille ou entre amis.",
            choices=["Je veux en savoir plus"],
        )

    def analyze(self, user_message, product_context, history):
        self.calls.append({"message": user_message, "product": product_context, "history": history})
        if self.error is not None:
            raise self.error
        return self.analysis


def seed_catalog(session):
    session.add_all([
        Product(
            id="jeu-awale",
            store_id="store-1",
            name="Awalé Deluxe",
            description="Le jeu de semailles traditionnel, plateau en bois de teck.",
            price=15000,
            stock=20,
            related_product_ids=["jeu-cartes"],
        ),
        Product(
            id="jeu-express",
            store_id="store-1",
            name="Ludo Express",
            description="Le ludo revisité, parties de 15 minutes.",
            price=12000,
            stock=3,
            express_enabled=True,
            related_product_ids=[],
        ),
        Product(
            id="jeu-cartes",
            store_id="store-1",
            name="Cartes du Sénégal",
            description="Jeu de cartes illustré.",
            price=5000,
            stock=30,
            related_product_ids=[],
        ),
        Product(
            id="jeu-retire",
            store_id="store-1",
            name="Dames Classiques",
            price=8000,
            stock=5,
            is_active=False,
            related_product_ids=[],
        ),
        Product(
            id="jeu-solo",
            store_id="store-2",
            name="Solitaire Bois",
            price=7000,
            stock=4,
            related_product_ids=[],
        ),
    ])
    session.commit()


def build_orchestrator(session, analyzer):
    """Orchestrator over the sandbox gateway, with polling that never sleeps."""
    payments = PaymentFlowCoordinator(
        session,
        provider=SandboxPaymentProvider(),
        sleep=lambda seconds: None,
    )
    return FlowOrchestrator(session, analyzer=analyzer, payments=payments)


@pytest.fixture(autouse=True)
def clear_session_cache():
    SESSION_CACHE.clear()
    yield
    SESSION_CACHE.clear()


@pytest.fixture
def session_factory():
    """In-memory SQLite shared by every connection (StaticPool), seeded with products."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    seed_catalog(session)
    session.close()
    return TestingSessionLocal


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_analyzer():
    return FakeAnalyzer()


@pytest.fixture
def orchestrator(db_session, fake_analyzer):
    return build_orchestrator(db_session, fake_analyzer)


@pytest.fixture
def client(session_factory, fake_analyzer, monkeypatch):
    """Shared FastAPI TestClient using an in-memory SQLite DB.

    Rate limiting is off and admin credentials are set for the back-office
    endpoints.
    """
    monkeypatch.setattr(config_mod, "ADMIN_USERNAME", TEST_ADMIN_USERNAME)
    monkeypatch.setattr(config_mod, "ADMIN_PASSWORD", TEST_ADMIN_PASSWORD)
    monkeypatch.setattr(db, "SessionLocal", session_factory)

    app = create_app()

    def override_get_db():
        db_sess = session_factory()
        try:
            yield db_sess
        finally:
            db_sess.close()

    def override_get_orchestrator(db_sess: Session = Depends(db.get_db)):
        return build_orchestrator(db_sess, fake_analyzer)

    app.dependency_overrides[db.get_db] = override_get_db
    app.dependency_overrides[chat_routes.get_orchestrator] = override_get_orchestrator

    limiter.enabled = False
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    limiter.enabled = config_mod.RATE_LIMIT_ENABLED


@pytest.fixture
def admin_auth():
    """Returns HTTP Basic Auth tuple for admin endpoints."""
    return (TEST_ADMIN_USERNAME, TEST_ADMIN_PASSWORD)


@pytest.fixture
def send(client):
    """Post one chat message and return the decoded response."""
    def _send(session_id, content, **extra):
        resp = client.post("/chat/message", json={"session_id": session_id, "content": content, **extra})
        assert resp.status_code == 200, resp.text
        return resp.json()
    return _send
