import os

# The module-level app in marketplace.main must not touch a real database.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("RABBITMQ_URL", None)
os.environ.pop("SMTP_HOST", None)

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from marketplace.auth import create_access_token, get_password_hash  # noqa: E402
from marketplace.config import Settings  # noqa: E402
from marketplace.crud import accounts as account_crud  # noqa: E402
from marketplace.crud import products as product_crud  # noqa: E402
from marketplace.main import create_app  # noqa: E402
from marketplace.notifications import NotificationDispatcher  # noqa: E402

PASSWORD = "secret123"


class RecordingEmailer:
    """Stands in for SmtpEmailer; keeps every mail it is asked to send."""

    configured = True

    def __init__(self):
        self.sent = []
        self.attempts = 0
        self.fail = False

    def send(self, *, to_email, subject, body):
        self.attempts += 1
        if self.fail:
            raise ConnectionError("SMTP server unreachable")
        self.sent.append({"to": to_email, "subject": subject, "body": body})
        return True

    def subjects(self):
        return [mail["subject"] for mail in self.sent]


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        app_env="test",
        database_url=f"sqlite:///{tmp_path / 'marketplace.db'}",
        jwt_access_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        upload_dir=str(tmp_path / "uploads"),
        base_url="http://testserver",
        frontend_url="http://frontend.local",
    )


@pytest.fixture()
def emailer():
    return RecordingEmailer()


@pytest.fixture()
def dispatcher(emailer):
    dispatcher = NotificationDispatcher(emailer, max_workers=2, max_pending=50)
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture()
def app(settings, emailer, dispatcher):
    return create_app(settings, emailer=emailer, dispatcher=dispatcher)


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def db(app):
    session = app.state.session_factory()
    yield session
    session.close()


@pytest.fixture()
def make_account(db):
    counter = {"n": 0}

    def _make(role="buyer", *, email=None, name=None, password=PASSWORD, is_banned=False):
        counter["n"] += 1
        account = account_crud.create_account(
            db,
            name=name or f"{role.title()} {counter['n']}",
            email=email or f"{role}{counter['n']}@example.com",
            hashed_password=get_password_hash(password),
            role=role,
        )
        if is_banned:
            account_crud.set_banned(db, account, True)
        return account

    return _make


@pytest.fixture()
def make_product(db):
    def _make(seller, **overrides):
        data = {
            "title": "Sample product",
            "description": "A product used in tests",
            "category": "General",
            "price": Decimal("100.00"),
            "stock": 5,
            "images": ["http://testserver/uploads/sample.png"],
        }
        data.update(overrides)
        return product_crud.create_product(db, seller.id, data)

    return _make


@pytest.fixture()
def auth_headers(settings):
    def _headers(account):
        return {"Authorization": f"Bearer {create_access_token(settings, account)}"}

    return _headers


@pytest.fixture()
def buyer(make_account):
    return make_account("buyer")


@pytest.fixture()
def seller(make_account):
    return make_account("seller")


@pytest.fixture()
def admin(make_account):
    return make_account("admin")
