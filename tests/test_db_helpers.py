from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import inspect

from adaptive_chat import db_helpers


@pytest.fixture
def postgres_env(monkeypatch):
    monkeypatch.setattr(db_helpers, "DATABASE_URL", "")
    monkeypatch.setattr(db_helpers, "IS_LOCAL_DB", False)
    monkeypatch.setattr(db_helpers, "DB_HOST", "db.internal")
    monkeypatch.setattr(db_helpers, "DB_PORT", 5432)
    monkeypatch.setattr(db_helpers, "DB_NAME", "adaptive_chat")
    monkeypatch.setattr(db_helpers, "DB_USER", "chat")
    monkeypatch.setattr(db_helpers, "DB_PASSWORD", "pw")
    monkeypatch.setattr(db_helpers, "DB_SECRET_ID", None)
    monkeypatch.setattr(db_helpers, "PROJECT_ID", "proj")


def test_explicit_url_and_database_url_win(monkeypatch):
    monkeypatch.setattr(db_helpers, "DATABASE_URL", "postgresql+pg8000://u:p@remote/app")
    monkeypatch.setattr(db_helpers, "IS_LOCAL_DB", True)

    assert db_helpers.resolve_database_url() == "postgresql+pg8000://u:p@remote/app"
    assert db_helpers.resolve_database_url("sqlite://") == "sqlite://"


def test_localhost_means_sqlite_file(monkeypatch, tmp_path):
    db_file = tmp_path / "chat.db"
    monkeypatch.setattr(db_helpers, "DATABASE_URL", "")
    monkeypatch.setattr(db_helpers, "IS_LOCAL_DB", True)
    monkeypatch.setattr(db_helpers, "SQLITE_PATH", str(db_file))

    engine = db_helpers.get_db_engine()

    assert engine.dialect.name == "sqlite"
    assert engine.url.database == str(db_file)


def test_remote_host_builds_pg8000_url(postgres_env):
    assert db_helpers.resolve_database_url() == "postgresql+pg8000://chat:pw@db.internal:5432/adaptive_chat"


def test_postgres_engine_gets_connect_timeout(postgres_env):
    with patch("adaptive_chat.db_helpers.create_engine") as create_engine:
        db_helpers.get_db_engine()

    url = create_engine.call_args.args[0]
    kwargs = create_engine.call_args.kwargs
    assert url.startswith("postgresql+pg8000://chat:pw@db.internal")
    assert kwargs == {"connect_args": {"timeout": 10}, "pool_pre_ping": True}


def test_password_from_secret_manager(postgres_env, monkeypatch):
    monkeypatch.setattr(db_helpers, "DB_PASSWORD", None)
    monkeypatch.setattr(db_helpers, "DB_SECRET_ID", "db-pass")
    creds = object()
    client = MagicMock()
    client.secret_version_path.return_value = "projects/proj/secrets/db-pass/versions/latest"
    client.access_secret_version.return_value.payload.data = b"s3cret"

    with patch("adaptive_chat.db_helpers._build_creds", return_value=creds), \
            patch("adaptive_chat.db_helpers.secretmanager.SecretManagerServiceClient", return_value=client) as client_cls:
        assert db_helpers.get_db_password() == "s3cret"
        assert db_helpers.get_db_password() == "s3cret"

    client_cls.assert_called_once_with(credentials=creds)
    client.secret_version_path.assert_called_once_with("proj", "db-pass", "latest")
    client.access_secret_version.assert_called_once_with(
        request={"name": "projects/proj/secrets/db-pass/versions/latest"}
    )


def test_no_password_source_is_an_error(postgres_env, monkeypatch):
    monkeypatch.setattr(db_helpers, "DB_PASSWORD", None)

    with pytest.raises(RuntimeError):
        db_helpers.resolve_database_url()


def test_service_account_file_is_preferred(monkeypatch, tmp_path):
    key_file = tmp_path / "sa.json"
    key_file.write_text("{}", encoding="utf-8")
    monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", str(key_file))

    with patch("adaptive_chat.db_helpers.service_account.Credentials.from_service_account_file") as from_file, \
            patch("adaptive_chat.db_helpers.google_auth_default") as adc:
        db_helpers._build_creds()

    from_file.assert_called_once()
    assert from_file.call_args.args[0] == str(key_file)
    adc.assert_not_called()


def test_application_default_credentials_otherwise(monkeypatch):
    monkeypatch.delenv("GOOGLE_APPLICATION_CREDENTIALS", raising=False)
    creds = object()

    with patch("adaptive_chat.db_helpers.google_auth_default", return_value=(creds, "proj")):
        assert db_helpers._build_creds() is creds


def test_session_factory_creates_tables(monkeypatch, tmp_path):
    monkeypatch.setattr(db_helpers, "DATABASE_URL", "")
    monkeypatch.setattr(db_helpers, "IS_LOCAL_DB", True)
    monkeypatch.setattr(db_helpers, "SQLITE_PATH", str(tmp_path / "chat.db"))

    factory = db_helpers.create_session_factory()

    tables = set(inspect(factory.kw["bind"]).get_table_names())
    assert {"conversations", "messages", "feedback", "learning_context", "suggestions"} <= tables
