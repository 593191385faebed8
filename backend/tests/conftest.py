import os
import sys

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PORT_PROBE_ENABLED", "false")
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
import pytest_asyncio

import app.models  # noqa: F401
from app.database import Base, SessionLocal, engine
from app.services.supervisor import BuildSupervisor

from tests._helpers import make_supervisor


@pytest.fixture(autouse=True)
def db_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest_asyncio.fixture
async def supervisor_factory(tmp_path):
    """Build supervisors wired to fake processes; every one is shut down after the test."""
    created: list[BuildSupervisor] = []

    def _factory(spawner, **overrides) -> BuildSupervisor:
        supervisor = make_supervisor(tmp_path, spawner, **overrides)
        created.append(supervisor)
        return supervisor

    yield _factory

    for supervisor in created:
        await supervisor.shutdown()
