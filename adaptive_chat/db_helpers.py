import logging
import os
from google.cloud import secretmanager
from google.oauth2 import service_account
from google.auth import default as google_auth_default
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from adaptive_chat.entities import Base
from adaptive_chat.settings import get_settings

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger("adaptive_chat")

# --- Configuration ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")

DATABASE_URL        = os.environ.get("DATABASE_URL", "")
DB_HOST             = os.environ.get("DB_HOST", "localhost")
DB_PORT             = int(os.environ.get("DB_PORT", "5432"))
DB_NAME             = os.environ.get("DB_NAME", "adaptive_chat")
DB_USER             = os.environ.get("DB_USER", "postgres")
DB_PASSWORD         = os.environ.get("DB_PASSWORD")
DB_SECRET_ID        = os.environ.get("DB_SECRET_ID")
SQLITE_PATH         = os.environ.get("SQLITE_PATH", "adaptive_chat.db")

IS_LOCAL_DB = (not DATABASE_URL and DB_HOST == "localhost")


def _build_creds():
    key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    scopes = ["https://www.googleapis.com/auth/cloud-platform"]
    if key_path and os.path.exists(key_path):
        return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
    creds, _ = google_auth_default(scopes=scopes)
    return creds


def get_db_password() -> str:
    global DB_PASSWORD

    if DB_PASSWORD:
        return DB_PASSWORD

    if DB_SECRET_ID:
        creds = _build_creds()
        client = secretmanager.SecretManagerServiceClient(credentials=creds)
        name = client.secret_version_path(PROJECT_ID, DB_SECRET_ID, "latest")
        resp = client.access_secret_version(request={"name": name})
        DB_PASSWORD = resp.payload.data.decode("utf-8")
        return DB_PASSWORD

    raise RuntimeError("No DB_PASSWORD and no Secret Manager configured")


def resolve_database_url(url: str | None = None) -> str:
    """
    Explicit url, then DATABASE_URL, then a local SQLite file when DB_HOST is
    localhost, otherwise Postgres over pg8000 (password possibly from Secret Manager).
    """
    if url or DATABASE_URL:
        return url or DATABASE_URL

    if IS_LOCAL_DB:
        return f"sqlite:///{SQLITE_PATH}"

    password = get_db_password()
    return f"postgresql+pg8000://{DB_USER}:{password}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


def _engine_kwargs(url: str) -> dict:
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        # FastAPI runs sync endpoints on a threadpool
        return {"connect_args": {"check_same_thread": False}}
    if parsed.get_driver_name() == "pg8000":
        # fail in 10s instead of hanging forever
        return {"connect_args": {"timeout": 10}, "pool_pre_ping": True}
    return {"pool_pre_ping": True}


def get_db_engine(url: str | None = None):
    url = resolve_database_url(url)
    logger.info(f"[DB] Connecting to {make_url(url).render_as_string(hide_password=True)}")
    return create_engine(url, **_engine_kwargs(url))


def create_session_factory(engine=None) -> sessionmaker:
    engine = engine if engine is not None else get_db_engine()
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
