import pytest
from fastapi.testclient import TestClient
from pydantic import BaseModel
from sqlmodel import Session, create_engine
from sqlmodel.pool import StaticPool

from restgen.auth import hash_password
from restgen.config import Settings
from restgen.main import create_app
from restgen.models.user import User
from restgen.schema import RoleRequirements, describe, relation, sensitive

TEST_SECRET = "test-secret"


class Post(BaseModel):
    id: int | None = None
    title: str
    content: str
    views: int = 0
    created_at: str | None = None
    updated_at: str | None = None


class Comment(BaseModel):
    id: int | None = None
    body: str
    post_id: int = relation("post.id")
    created_at: str | None = None
    updated_at: str | None = None


class Vault(BaseModel):
    id: int | None = None
    label: str
    pin_hash: str = sensitive()


USER_ONLY = RoleRequirements(read="user", update="user", delete="user")

MODELS = [
    describe(Post, roles=USER_ONLY),
    describe(Comment, roles=USER_ONLY),
    describe(
        Vault,
        roles=RoleRequirements(read="user", update="editor", delete="admin"),
    ),
]


@pytest.fixture(name="engine")
def engine_fixture():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    return Settings(database_url="sqlite://", jwt_secret=TEST_SECRET)


@pytest.fixture(name="app")
def app_fixture(engine, settings):
    return create_app(settings, models=MODELS, engine=engine)


@pytest.fixture(name="session")
def session_fixture(app, engine):
    with Session(engine) as session:
        # Seed admin user
        admin = User(
            email="admin@example.com",
            password_hash=hash_password("admin"),
            roles="admin",
        )
        session.add(admin)
        session.commit()
        yield session


@pytest.fixture(name="client")
def client_fixture(app, session: Session):
    return TestClient(app)


def _login(client: TestClient, email: str, password: str) -> str:
    response = client.post(
        "/api/auth/login",
        json={"email": email, "password": password},
    )
    return response.json()["token"]


def _add_user(session: Session, email: str, password: str, roles: str) -> None:
    user = User(email=email, password_hash=hash_password(password), roles=roles)
    session.add(user)
    session.commit()


@pytest.fixture
def admin_token(client: TestClient) -> str:
    return _login(client, "admin@example.com", "admin")


@pytest.fixture
def user_token(client: TestClient, session: Session) -> str:
    _add_user(session, "user@example.com", "testpass", "user")
    return _login(client, "user@example.com", "testpass")


@pytest.fixture
def editor_token(client: TestClient, session: Session) -> str:
    _add_user(session, "editor@example.com", "testpass", "user,editor")
    return _login(client, "editor@example.com", "testpass")


@pytest.fixture
def guest_token(client: TestClient, session: Session) -> str:
    _add_user(session, "guest@example.com", "testpass", "guest")
    return _login(client, "guest@example.com", "testpass")
