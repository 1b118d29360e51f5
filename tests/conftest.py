"""Pytest fixtures for testing"""

import uuid
from typing import Generator, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from billing_gateway.api.main import create_app
from billing_gateway.infrastructure.database.models import Base, CustomerRecord, UserRecord
from billing_gateway.infrastructure.database.session import build_engine, build_session_factory, unit_of_work
from billing_gateway.services.billing import BillingService


class RecordingMailer:
    """Mailer fake: remembers every message, optionally failing each call"""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls = 0
        self.sent: List[Tuple[str, str, str]] = []

    async def send_email(self, to: str, subject: str, body: str) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        self.sent.append((to, subject, body))


def seed_user(session_factory: sessionmaker, email: str, first_name: str) -> uuid.UUID:
    user_id = uuid.uuid4()
    with unit_of_work(session_factory) as db:
        db.add(UserRecord(id=user_id, email=email, first_name=first_name))
    return user_id


def seed_customer(session_factory: sessionmaker, user_id: uuid.UUID, name: str = "Acme Corp") -> uuid.UUID:
    customer_id = uuid.uuid4()
    with unit_of_work(session_factory) as db:
        db.add(CustomerRecord(id=customer_id, user_id=user_id, company_name=name))
    return customer_id


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'billing.db'}"


@pytest.fixture
def engine(database_url: str) -> Generator[Engine, None, None]:
    """Create test database schema on a throwaway SQLite file"""
    engine = build_engine(database_url)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return build_session_factory(engine)


@pytest.fixture
def billing(session_factory: sessionmaker) -> BillingService:
    return BillingService(session_factory)


@pytest.fixture
def user_id(session_factory: sessionmaker) -> uuid.UUID:
    return seed_user(session_factory, "jane.doe@acme-billing.com", "Jane")


@pytest.fixture
def customer_id(session_factory: sessionmaker, user_id: uuid.UUID) -> uuid.UUID:
    return seed_customer(session_factory, user_id)


@pytest.fixture
def other_user_id(session_factory: sessionmaker) -> uuid.UUID:
    return seed_user(session_factory, "mallory@other-tenant.com", "Mallory")


@pytest.fixture
def other_customer_id(session_factory: sessionmaker, other_user_id: uuid.UUID) -> uuid.UUID:
    return seed_customer(session_factory, other_user_id, "Other Tenant Ltd")


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def client(database_url: str, engine: Engine, mailer: RecordingMailer) -> Generator[TestClient, None, None]:
    """FastAPI test client running the full lifespan against the test database"""
    app = create_app(database_url=database_url, mailer=mailer)
    with TestClient(app) as client:
        yield client
