# curlara/conftest.py
import sys
from pathlib import Path

import pytest
from sqlalchemy import insert

# Add repo root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from curlara.core.config import ReconcilerConfig
from curlara.core.database import build_engine, create_all_tables, get_db_session, set_engine, user_profiles, users
from curlara.features.entitlements.store import EntitlementStore
from curlara.tests.mocks import ADMIN_KEY, JWT_SECRET, WEBHOOK_SECRET, FakeStripeProcessor


@pytest.fixture
def engine():
    """
    Fresh in-memory SQLite database with every table.

    Installed as the process engine so code paths that call get_engine()
    see the same database.
    """
    eng = build_engine("sqlite://")
    create_all_tables(eng)
    set_engine(eng)
    yield eng
    set_engine(None)
    eng.dispose()


@pytest.fixture
def store(engine):
    return EntitlementStore(engine)


@pytest.fixture
def reconciler_config():
    return ReconcilerConfig(
        stripe_secret_key="sk_test_fake",
        webhook_secret=WEBHOOK_SECRET,
        session_jwt_secret=JWT_SECRET,
        admin_key=ADMIN_KEY,
        environment="test",
    )


@pytest.fixture
def processor():
    return FakeStripeProcessor()


@pytest.fixture
def seed_user(engine):
    """Insert a registered user into both projections."""
    def _seed(user_id: str, email: str, profile: bool = True, access: bool = True):
        with get_db_session(engine) as session:
            if profile:
                session.execute(insert(user_profiles).values(id=user_id, email=email, name=email.split("@")[0]))
            if access:
                session.execute(insert(users).values(id=user_id, email=email))
    return _seed


@pytest.fixture
def app(reconciler_config, processor, store):
    from curlara.main import create_app
    return create_app(config=reconciler_config, processor=processor, store=store)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient
    return TestClient(app)
