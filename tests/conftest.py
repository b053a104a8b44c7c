"""
Shared pytest fixtures.

Every test gets a fresh app on an in-memory SQLite database and its own
upload folder. Service tests run inside ``db_ctx`` (an application
context); route tests drive ``client`` and seed data inside their own
``with app.app_context()`` blocks so request state never leaks between
requests.
"""

import pytest

from biblioteca import bcrypt, create_app, db
from biblioteca.config import Config
from biblioteca.identity import SessionContext
from biblioteca.models import Account, Category, Document, Folder, User

PASSWORD = "secret123"


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    LAST_ACTIVITY_INTERVAL = 3600
    AI_SEARCH_RETRIES = 1


@pytest.fixture
def app(tmp_path):
    config = type(
        "PerTestConfig", (TestingConfig,), {"UPLOAD_FOLDER": str(tmp_path / "uploads")}
    )
    app = create_app(config)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_ctx(app):
    with app.app_context():
        yield db


# ── Builders (call inside an application context) ─────────────────────────


def make_account(email, role=None, uid=None, name=None, with_profile=False):
    kwargs = {}
    if uid:
        kwargs["id"] = uid
    account = Account(
        email=email,
        display_name=name,
        password_hash=bcrypt.generate_password_hash(PASSWORD).decode("utf-8"),
        claims={"role": role} if role else {},
        **kwargs,
    )
    db.session.add(account)
    db.session.flush()
    if with_profile:
        db.session.add(
            User(id=account.id, name=name or email, email=email, role=role or "User")
        )
    db.session.commit()
    return account


def make_ctx(uid="u-user", role="User", name=None, email=None):
    return SessionContext(
        uid=uid,
        email=email or f"{uid}@example.org",
        name=name or uid,
        role=role,
    )


def make_category(name="Medicina", description="Documentos de medicina clínica"):
    category = Category(name=name, description=description)
    db.session.add(category)
    db.session.commit()
    return category


def make_folder(category, name="Cardiología", parent=None, created_by="u-user"):
    folder = Folder(
        name=name,
        category_id=category.id,
        parent_folder_id=parent.id if parent else None,
        created_by=created_by,
    )
    db.session.add(folder)
    db.session.commit()
    return folder


def make_document(category, folder=None, created_by="u-user", title="Guía de práctica clínica"):
    document = Document(
        title=title,
        author="Ana Pérez",
        year=2021,
        description="Una guía completa para la práctica clínica.",
        file_url="https://example.org/guia.pdf",
        category_id=category.id,
        folder_id=folder.id if folder else None,
        created_by=created_by,
    )
    db.session.add(document)
    db.session.commit()
    return document


def login(client, email, password=PASSWORD):
    return client.post(
        "/login", data={"email": email, "password": password}, follow_redirects=False
    )
