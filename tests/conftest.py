import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings, get_settings
from database import USERS, create_document, ensure_indexes, get_db
from main import create_app
from schemas import User
from security import hash_password, issue_token

PASSWORD = "secret123"
PASSWORD_HASH, PASSWORD_ALGO = hash_password(PASSWORD)


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", jwt_expire_min=60)


@pytest.fixture
def db():
    database = mongomock.MongoClient()["blog_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def app(settings, db):
    application = create_app(settings=settings, db=db)
    application.dependency_overrides[get_db] = lambda: db
    application.dependency_overrides[get_settings] = lambda: settings
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(db, settings):
    """Insert a user directly and return ``(doc, auth_headers)``."""
    def _make(username="alice", role="user", is_active=True, **profile):
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=PASSWORD_HASH,
            algo=PASSWORD_ALGO,
            role=role,
            is_active=is_active,
            **profile,
        )
        doc = create_document(db, USERS, user.model_dump())
        return doc, {"Authorization": f"Bearer {issue_token(doc, settings)}"}
    return _make


@pytest.fixture
def author(make_user):
    return make_user("alice")


@pytest.fixture
def other(make_user):
    return make_user("bob")


@pytest.fixture
def admin(make_user):
    return make_user("root", role="admin")


@pytest.fixture
def create_post(client):
    def _create(headers, title="Hello World!", **fields):
        body = {"title": title, "content": "Body text", "category": "Technology", **fields}
        response = client.post("/posts", json=body, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()["post"]
    return _create
