import os
import tempfile

# CRITICAL: Set environment variables BEFORE any coinswap imports
# These must be set before coinswap.config.settings is loaded
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "test_coinswap.db")
os.environ["SECRET_KEY"] = "test-secret-key-1234567890"
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{_TEST_DB_PATH}"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_V1_STR"] = "/api"

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from coinswap import models  # noqa: E402
from coinswap.api import deps  # noqa: E402
from coinswap.database import Base, get_db, engine as app_engine  # noqa: E402
from coinswap.main import app  # noqa: E402

TEST_ENGINE = app_engine

TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=TEST_ENGINE, future=True
)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function", autouse=True)
def setup_test_database():
    """Fresh schema per test; per-test dependency overrides are discarded afterwards."""
    original_overrides = dict(app.dependency_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)

    yield

    app.dependency_overrides.clear()
    app.dependency_overrides.update(original_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def _stub_user(user_id: str, role: models.UserRole = models.UserRole.user):
    class StubUser:
        def __init__(self):
            self.id = user_id
            self.role = role

    return StubUser()


def seed_world(db) -> SimpleNamespace:
    """Users A, B, C plus a moderator and an admin; coins X (B, open), Y (A), Z (B, closed), W (C)."""

    users = {
        "a": models.User(id="00000000-0000-4000-8000-00000000000a", username="alice", display_name="Alice"),
        "b": models.User(id="00000000-0000-4000-8000-00000000000b", username="bob", display_name="Bob"),
        "c": models.User(id="00000000-0000-4000-8000-00000000000c", username="carol"),
        "mod": models.User(
            id="00000000-0000-4000-8000-0000000000d0",
            username="mod",
            role=models.UserRole.moderator,
        ),
        "admin": models.User(
            id="00000000-0000-4000-8000-0000000000e0",
            username="root",
            role=models.UserRole.admin,
        ),
    }
    db.add_all(users.values())
    db.flush()

    coins = {
        "x": models.Coin(
            id="10000000-0000-4000-8000-000000000001",
            owner_id=users["b"].id,
            title="1921 Morgan Dollar",
            trade_status=models.CoinTradeStatus.open_to_trade,
        ),
        "y": models.Coin(
            id="10000000-0000-4000-8000-000000000002",
            owner_id=users["a"].id,
            title="Challenge coin 82nd Airborne",
            trade_status=models.CoinTradeStatus.open_to_trade,
        ),
        "z": models.Coin(
            id="10000000-0000-4000-8000-000000000003",
            owner_id=users["b"].id,
            title="Private collection piece",
            trade_status=models.CoinTradeStatus.not_for_trade,
        ),
        "w": models.Coin(
            id="10000000-0000-4000-8000-000000000004",
            owner_id=users["c"].id,
            title="Navy anniversary coin",
            trade_status=models.CoinTradeStatus.open_to_trade,
        ),
    }
    db.add_all(coins.values())
    db.commit()

    return SimpleNamespace(
        a=users["a"].id,
        b=users["b"].id,
        c=users["c"].id,
        mod=users["mod"].id,
        admin=users["admin"].id,
        coin_x=coins["x"].id,
        coin_y=coins["y"].id,
        coin_z=coins["z"].id,
        coin_w=coins["w"].id,
    )


@pytest.fixture
def world(db_session):
    return seed_world(db_session)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def as_user():
    """Switch the authenticated caller for subsequent requests."""

    def _set(user_id: str, role: models.UserRole = models.UserRole.user):
        app.dependency_overrides[deps.get_current_user] = lambda: _stub_user(user_id, role)

    return _set


@pytest.fixture
def caller():
    return _stub_user
