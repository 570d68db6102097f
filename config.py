import os
import logging

import google.auth
from google.auth.exceptions import GoogleAuthError
from google.api_core.exceptions import GoogleAPICallError
from google.cloud import secretmanager

logger = logging.getLogger(__name__)


class Config:
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-secret")

    # LOCAL mode uses SQLite
    LOCAL_DB = os.getenv("LOCAL_DB", "1") == "1"

    if LOCAL_DB:
        SQLALCHEMY_DATABASE_URI = "sqlite:///local.db"
    else:
        DB_USER = os.getenv("DB_USER", "")
        DB_PASS = os.getenv("DB_PASS", "")
        DB_NAME = os.getenv("DB_NAME", "")
        CLOUD_SQL_CONNECTION_NAME = os.getenv("CLOUD_SQL_CONNECTION_NAME", "")
        SQLALCHEMY_DATABASE_URI = (
            f"postgresql+psycopg2://{DB_USER}:{DB_PASS}@/"
            f"{DB_NAME}?host=/cloudsql/{CLOUD_SQL_CONNECTION_NAME}"
        )

    # explicit URL wins over both modes
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", SQLALCHEMY_DATABASE_URI)
    SQLALCHEMY_ECHO = os.getenv("SQLALCHEMY_ECHO", "0") == "1"

    # order event audit log (Firestore Native)
    FIRESTORE_ENABLED = os.getenv("FIRESTORE_ENABLED", "0") == "1"
    FIRESTORE_DB_ID = os.getenv("FIRESTORE_DB_ID", "default")

    # look secrets up in Google Secret Manager when they are not in the env
    USE_SECRET_MANAGER = os.getenv("USE_SECRET_MANAGER", "0") == "1"

    DEFAULT_ETA_MINUTES = int(os.getenv("DEFAULT_ETA_MINUTES", "30"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    FIRESTORE_ENABLED = False
    USE_SECRET_MANAGER = False


def get_secret(name: str, use_secret_manager: bool = True) -> str | None:
    """
    Read a secret from Google Secret Manager.
    Falls back to environment variable for local development.
    """
    env_val = os.environ.get(name)
    if env_val:
        return env_val

    if not use_secret_manager:
        return None

    try:
        creds, project_id = google.auth.default()
        if not project_id:
            project_id = os.environ.get("GOOGLE_CLOUD_PROJECT")

        if not project_id:
            return None

        client = secretmanager.SecretManagerServiceClient(credentials=creds)
        secret_path = f"projects/{project_id}/secrets/{name}/versions/latest"
        resp = client.access_secret_version(request={"name": secret_path})
        return resp.payload.data.decode("utf-8").strip()

    except (GoogleAuthError, GoogleAPICallError) as e:
        logger.warning("Secret Manager read failed for %s: %s", name, e)
        return None
