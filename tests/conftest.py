import os
import tempfile
from datetime import datetime

_TMP = tempfile.mkdtemp(prefix="promo-engine-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/app.db"
os.environ["ADMIN_EMAILS"] = "admin@example.com"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ.pop("STRIPE_SECRET_KEY", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from promo_engine.database import make_engine, init_db, get_db, get_read_db, read_only
from promo_engine.dependencies import get_verified_email, get_promo_engine
from promo_engine.models.promo_code import DiscountType
from promo_engine.money import Money
from promo_engine.services import admin as admin_service
from promo_engine.services.engine import PromoEngine
from promo_engine.services.redemption import CommitPolicy
from promo_engine.services.validator import PurchaseContext

LONG_AGO = datetime(2020, 1, 1)
NOW = datetime(2026, 6, 1, 12, 0, 0)

FAST_POLICY = CommitPolicy(
    max_attempts=10,
    backoff_base=0.005,
    backoff_max=0.05,
    lock_timeout_ms=30000,
    commit_timeout=60.0,
)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path}/promo.db"


@pytest.fixture
def engine(db_url):
    engine = make_engine(db_url, connect_args={"timeout": 30})
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def read_session_factory(engine):
    return sessionmaker(bind=read_only(engine), autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def promo_engine(session_factory, read_session_factory):
    return PromoEngine(session_factory, policy=FAST_POLICY, read_session_factory=read_session_factory)


@pytest.fixture
def make_promo(session_factory):
    """Create a promo code through the admin service, committed in its own session."""

    def _make(code="SAVE20", discount_type=DiscountType.PERCENTAGE, discount_amount=2000, **kwargs):
        kwargs.setdefault("valid_from", LONG_AGO)
        session = session_factory()
        try:
            return admin_service.create_promo_code(
                session,
                code=code,
                discount_type=discount_type,
                discount_amount=discount_amount,
                **kwargs,
            )
        finally:
            session.close()

    return _make


@pytest.fixture
def context():
    def _context(user_id="user@example.com", amount=5000, template_id=None, creator_id=None, at=NOW):
        return PurchaseContext(
            user_id=user_id,
            purchase_amount=Money.from_cents(amount),
            template_id=template_id,
            creator_id=creator_id,
            requested_at=at,
        )

    return _context


@pytest.fixture
def current_user():
    return {"email": "user@example.com"}


@pytest.fixture
def client(session_factory, promo_engine, current_user):
    from promo_engine.main import create_app

    app = create_app(create_tables=False)

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_read_db] = _get_db
    app.dependency_overrides[get_verified_email] = lambda: current_user["email"]
    app.dependency_overrides[get_promo_engine] = lambda: promo_engine

    with TestClient(app) as c:
        yield c
