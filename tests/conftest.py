import os
import tempfile
from pathlib import Path

_tmpdir = Path(tempfile.mkdtemp(prefix="croissant_test_"))
_db_path = _tmpdir / "test.db"

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_db_path.as_posix()}")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_DIR", str(_tmpdir / "logs"))
os.environ.setdefault("DASHBOARD_TOKEN", "")

import pytest
from fastapi.testclient import TestClient

from croissant_tour.core.rate_limit import limiter
from croissant_tour.db.base import Base
from croissant_tour.db.session import engine, SessionLocal
from croissant_tour.main import create_app


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def clean_db():
    limiter.reset()

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db(clean_db):
    session = SessionLocal()
    try:
        yield session
        session.commit()
    finally:
        session.close()


@pytest.fixture()
def app(clean_db):
    return create_app()


@pytest.fixture()
def make_client(app):
    """Each client has its own cookie jar, i.e. its own anonymous user."""
    clients = []

    def _make() -> TestClient:
        c = TestClient(app)
        c.__enter__()
        clients.append(c)
        return c

    yield _make
    for c in clients:
        c.__exit__(None, None, None)


@pytest.fixture()
def client(make_client):
    return make_client()
