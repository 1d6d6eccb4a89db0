import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DB_INIT_MODE"] = "create_all"
os.environ["RUN_EMBEDDED_WORKER"] = "false"
os.environ["SMTP_HOST"] = ""
os.environ["LOG_FILE"] = os.path.join(tempfile.gettempdir(), "growi-api-tests.log")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from growi_api.core import security
from growi_api.core.database import Base
from growi_api.services.rate_limiter import rate_limiter

from fakes import FakeRedis


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr(security, "BCRYPT_WORK_FACTOR", 4)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(rate_limiter, "_client", client)
    return client


@pytest.fixture
def client(db, fake_redis):
    from fastapi.testclient import TestClient

    from growi_api.core.database import get_db
    from growi_api.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
