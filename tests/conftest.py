import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Point the app at a throwaway database BEFORE importing it.
_DB_DIR = tempfile.mkdtemp(prefix="zblogs-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["BREVO_API_KEY"] = ""
os.environ["BREVO_FROM_EMAIL"] = ""

from fastapi.testclient import TestClient

from app.database import Base, engine, init_db, session_scope
from app.main import app
from app.models.otp import OtpEntry
from app.models.user import UserEntry
from app.schemas.email import EmailSendError
from app.services import otp as otp_module
from app.services.otp_workflow import otp_workflow
from app.services.passwords import hash_password
from app.services.users import user_store


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def dispatch(self, message, *, critical):
        if self.fail:
            if critical:
                raise EmailSendError("simulated outage")
            return False
        self.sent.append(message)
        return True


class FakeClock:
    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def database():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def notifier(monkeypatch):
    recorder = RecordingNotifier()
    monkeypatch.setattr(otp_workflow, "notifier", recorder)
    return recorder


@pytest.fixture(autouse=True)
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(otp_module, "_utcnow", fake)
    return fake


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_account():
    def _make(
        username="alice",
        email="alice@example.com",
        password="secret1",
        is_admin=False,
    ):
        account = user_store.create_user(username, email, hash_password(password))
        if is_admin:
            with session_scope() as session:
                session.get(UserEntry, account.id).is_admin = True
        return user_store.get_user(account.id)

    return _make


@pytest.fixture
def signed_in(client, make_account):
    def _sign_in(**kwargs):
        account = make_account(**kwargs)
        response = client.post(
            "/api/auth/signin",
            json={"email": account.email, "password": kwargs.get("password", "secret1")},
        )
        assert response.status_code == 200
        return account

    return _sign_in


def otp_rows(email=None, purpose=None):
    with session_scope() as session:
        query = session.query(OtpEntry)
        if email is not None:
            query = query.filter(OtpEntry.email == email)
        if purpose is not None:
            query = query.filter(OtpEntry.purpose == purpose)
        return query.all()


def latest_code(email, purpose):
    record = otp_module.otp_store.find_latest(email, purpose)
    assert record is not None
    return record.code
