"""
Pytest configuration and fixtures
"""
import sys
from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from tierstake.core.config import GovernanceConfig, Settings
from tierstake.core.database import Base, build_engine, get_db
from tierstake.services.account_store import AccountStore
from tierstake.services.governance_gate import GovernanceGate
from tierstake.services.parameter_store import ParameterStore

OWNER_A = "0xowner_a"
OWNER_B = "0xowner_b"
OWNER_C = "0xowner_c"
OWNERS = (OWNER_A, OWNER_B, OWNER_C)
OUTSIDER = "0xoutsider"


@pytest.fixture(scope="function")
def db_engine():
    """In-memory SQLite shared by every session of one test"""
    import tierstake.models  # noqa: F401

    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory) -> Session:
    """Create a database session for testing"""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return Settings(
        governance_owners=",".join(OWNERS),
        governance_threshold=2,
        enable_daily_jobs=False,
    )


@pytest.fixture
def governance_config():
    return GovernanceConfig(owners=frozenset(OWNERS), threshold=2)


@pytest.fixture
def parameter_store(db):
    """ParameterStore over a database seeded with the default parameters"""
    store = ParameterStore(db)
    store.seed_defaults()
    return store


@pytest.fixture
def account_store(db):
    return AccountStore(db)


@pytest.fixture
def gate(db, parameter_store, governance_config):
    return GovernanceGate(db, governance_config)


@pytest.fixture
def app(session_factory, settings, governance_config):
    from tierstake.main import create_app

    app = create_app(settings=settings, governance_config=governance_config, manage_database=False)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app, parameter_store):
    """TestClient over a seeded database"""
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client
