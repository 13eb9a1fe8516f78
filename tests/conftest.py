import os
import sys
import tempfile

# Settings are read at import time, so the environment is prepared first.
_TMP_DIR = tempfile.mkdtemp(prefix="zee-index-tests-")

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test_zee_index.db')}"
os.environ["USE_MOCK_DRIVE"] = "true"
os.environ["MOCK_DRIVE_DB"] = os.path.join(_TMP_DIR, "mock_drive_db.json")
os.environ["ROOT_FOLDER_ID"] = "root"
os.environ["PRIVATE_FOLDER_IDS"] = "private-folder"
os.environ["ADMIN_EMAILS"] = "admin@example.com"
os.environ["SESSION_SECRET"] = "test-session-secret-0123456789abcdef"
os.environ["SHARE_SECRET_KEY"] = "test-share-secret-0123456789abcdefgh"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["APP_BASE_URL"] = "http://localhost:3000"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RATE_LIMIT_STORAGE_URL"] = "memory://"
os.environ.pop("WEBHOOK_URL", None)
os.environ.pop("SMTP_HOST", None)

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import fakeredis
import pytest
from fastapi.testclient import TestClient

import models
from auth.session import UserContext, create_session_token
from config import config
from database import Base, SessionLocal, engine
from kv import kv_store
from services import access_service, rate_limit_service
from services.google_drive_mock import GoogleDriveService

kv_store.client = fakeredis.FakeRedis(decode_responses=True)

ADMIN_EMAIL = "admin@example.com"
EDITOR_EMAIL = "editor@example.com"
USER_EMAIL = "user@example.com"


@pytest.fixture(autouse=True)
def clean_state():
    kv_store.client.flushall()
    rate_limit_service.storage.reset()
    access_service.clear_restricted_cache()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    if os.path.exists(config.MOCK_DRIVE_DB):
        os.remove(config.MOCK_DRIVE_DB)
    yield
    access_service.clear_restricted_cache()


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def drive():
    return GoogleDriveService()


def session_cookie(email: str, role: str, two_factor_required: bool = False) -> str:
    return create_session_token(UserContext(email=email, role=role, two_factor_required=two_factor_required))


def make_client(email=None, role="USER", two_factor_required=False) -> TestClient:
    from main import app

    client = TestClient(app)
    if email:
        client.cookies.set(config.SESSION_COOKIE_NAME, session_cookie(email, role, two_factor_required))
    return client


@pytest.fixture
def anon_client():
    return make_client()


@pytest.fixture
def user_client():
    return make_client(USER_EMAIL, "USER")


@pytest.fixture
def editor_client():
    return make_client(EDITOR_EMAIL, "EDITOR")


@pytest.fixture
def admin_client():
    return make_client(ADMIN_EMAIL, "ADMIN")


def protect_folder(folder_id: str, password: str = "secret", access_id: str = "admin") -> None:
    db = SessionLocal()
    try:
        db.add(models.ProtectedFolder(
            folder_id=folder_id,
            access_id=access_id,
            password_hash=access_service.hash_password(password),
        ))
        db.commit()
    finally:
        db.close()
    access_service.clear_restricted_cache()


@pytest.fixture
def seeded_drive(drive):
    """
    root
    ├── Documents/         (folder, id docs-folder)
    │   └── report.pdf
    ├── Vault/             (protected, id vault-folder)
    │   └── secret.txt
    ├── Private/           (private, id private-folder)
    ├── notes.txt
    └── big.bin            (2 MB)
    """
    folder = "application/vnd.google-apps.folder"
    drive.add_item({"id": "docs-folder", "name": "Documents", "mimeType": folder})
    drive.add_item({"id": "vault-folder", "name": "Vault", "mimeType": folder})
    drive.add_item({"id": "private-folder", "name": "Private", "mimeType": folder})
    drive.add_item({"id": "report-pdf", "name": "report.pdf", "mimeType": "application/pdf",
                    "parents": ["docs-folder"]}, content=b"%PDF-1.4 quarterly report")
    drive.add_item({"id": "secret-txt", "name": "secret.txt", "mimeType": "text/plain",
                    "parents": ["vault-folder"]}, content=b"top secret")
    drive.add_item({"id": "notes-txt", "name": "notes.txt", "mimeType": "text/plain"},
                   content=b"hello zee index")
    drive.add_item({"id": "big-bin", "name": "big.bin", "mimeType": "application/octet-stream"},
                   content=b"\0" * (2 * 1024 * 1024))
    protect_folder("vault-folder")
    return drive
