"""
Shared pytest fixtures.

Provides:
    - engine / session: fresh in-memory SQLite database per test
    - roles: the seeded permission catalog and system roles
    - make_user / admin / supervisor / worker / outsider: users and principals
    - client: FastAPI TestClient bound to the test session
    - product / record: convenience catalog data
"""
import os
import tempfile

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["RATE_LIMIT_REQUESTS"] = "0"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FILE"] = os.path.join(tempfile.gettempdir(), "lotcontrol-tests.log")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from lotcontrol.db.core import get_session, init_db
from lotcontrol.db.schema import Product, Record, User
from lotcontrol.main import app
from lotcontrol.services.authorization import Principal
from lotcontrol.services.password import get_password_hash
from lotcontrol.services.user import UserService
from seed import seed_permissions, seed_roles

PASSWORD = "Sup3rSecret!"


# ── Database ─────────────────────────────────────────────────────────────


@pytest.fixture()
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(test_engine)
    yield test_engine
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture()
def session(engine):
    with Session(engine) as db_session:
        yield db_session


@pytest.fixture()
def roles(session):
    """Seeds permissions and the administrador/supervisor/trabajador roles."""
    perm_map = seed_permissions(session)
    role_map = seed_roles(session, perm_map)
    session.commit()
    return role_map


# ── Users & principals ───────────────────────────────────────────────────


@pytest.fixture()
def make_user(session, roles):
    def _make_user(email: str, role_names=(), two_factor: bool = False) -> User:
        user = User(
            email=email,
            full_name=email.split("@")[0].title(),
            hashed_password=get_password_hash(PASSWORD),
            is_active=True,
            two_factor_enabled=two_factor,
            two_factor_secret="JBSWY3DPEHPK3PXP" if two_factor else None,
            roles=[roles[name] for name in role_names],
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def admin_user(make_user):
    return make_user("admin@lotcontrol.io", ["administrador"])


@pytest.fixture()
def supervisor_user(make_user):
    return make_user("supervisor@lotcontrol.io", ["supervisor"])


@pytest.fixture()
def worker_user(make_user):
    return make_user("operario@lotcontrol.io", ["trabajador"])


@pytest.fixture()
def admin(admin_user) -> Principal:
    return Principal.from_user(admin_user)


@pytest.fixture()
def supervisor(supervisor_user) -> Principal:
    return Principal.from_user(supervisor_user)


@pytest.fixture()
def worker(worker_user) -> Principal:
    return Principal.from_user(worker_user)


@pytest.fixture()
def outsider(make_user) -> Principal:
    return Principal.from_user(make_user("visita@lotcontrol.io"))


# ── HTTP ─────────────────────────────────────────────────────────────────


@pytest.fixture()
def client(session):
    def _get_session_override():
        yield session

    app.dependency_overrides[get_session] = _get_session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers(session):
    def _auth_headers(user: User) -> dict:
        token = UserService(session).generate_access_token(user)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


# ── Catalog data ─────────────────────────────────────────────────────────


@pytest.fixture()
def product(session):
    item = Product(name="Botella PET x 1 L", code="BOT-PET-1L")
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


@pytest.fixture()
def record(session, product, worker_user):
    item = Record(
        product_id=product.id,
        internal_lot="TPT45-2024-001",
        supplier_lot="PROV-778",
        quantity=1200,
        user_id=worker_user.id,
        observations="Recibido sin novedad",
    )
    session.add(item)
    session.commit()
    session.refresh(item)
    return item
