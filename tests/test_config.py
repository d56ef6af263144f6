from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from config import Settings
from main import create_app


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("DATABASE_NAME", "blog_prod")
    monkeypatch.setenv("MONGO_TRANSACTIONS", "true")
    monkeypatch.setenv("SLUG_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.example, http://b.example")
    settings = Settings()
    assert settings.database_name == "blog_prod"
    assert settings.mongo_transactions is True
    assert settings.slug_max_attempts == 5
    assert settings.cors_origin_list == ["http://a.example", "http://b.example"]


def test_settings_defaults(monkeypatch):
    for name in ("DATABASE_NAME", "MONGO_TRANSACTIONS", "SLUG_MAX_ATTEMPTS", "CORS_ORIGINS"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings(_env_file=None)
    assert settings.mongo_transactions is False
    assert settings.cors_origin_list == ["*"]


def test_health_without_database(settings):
    client = TestClient(create_app(settings=settings))
    response = client.get("/test")
    assert response.status_code == 200
    assert response.json()["database"] == "not available"


def test_shutdown_leaves_injected_database_open(settings):
    db = MagicMock()
    with TestClient(create_app(settings=settings, db=db)) as client:
        assert client.get("/").status_code == 200
    db.client.close.assert_not_called()
