import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from shiptrack.deps import settings
from shiptrack.main import app
from shiptrack.store import ShipmentStore


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture()
def store(session):
    return ShipmentStore(session)


@pytest.fixture()
def client(engine, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "BASE_URL", "https://ship.example.com")
    app.state.engine = engine
    return TestClient(app, follow_redirects=False)


@pytest.fixture()
def fetch(engine):
    """Run a query on a fresh session so request-side commits are visible."""

    def _fetch(statement):
        with Session(engine) as s:
            return list(s.exec(statement).all())

    return _fetch
