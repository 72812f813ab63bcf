"""Pytest fixtures: in-memory SQLite, fake model tiers, dispatchers."""

import os

# Must be set before the application modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BROKER_URL"] = ""
os.environ["MODEL_QUEUE_COOLDOWN"] = "0"
os.environ["LOG_FORMAT"] = "console"

import pytest  # noqa: E402

from api.config.database import Base, SessionLocal, engine  # noqa: E402
from api import models  # noqa: E402,F401
from processor.dispatcher import JobDispatcher  # noqa: E402
from processor.integrations.inference import ModelUnavailableError  # noqa: E402
from processor.services.model_client import TieredModelClient  # noqa: E402
from processor.worker import SingleFlightQueue  # noqa: E402


class FakeModel:
    """Stands in for a remote tier.

    Outcomes are consumed in order; the last one repeats. An exception
    outcome is raised instead of returned.
    """

    def __init__(self, name, *outcomes):
        self.name = name
        self.outcomes = list(outcomes)
        self.prompts = []

    @property
    def calls(self):
        return len(self.prompts)

    async def generate(self, prompt):
        self.prompts.append(prompt)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def database():
    """Fresh tables for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def add_content(db):
    """Insert a content row and return its id."""

    def _add(model_cls, **fields):
        row = model_cls(**fields)
        db.add(row)
        db.commit()
        return row.id

    return _add


@pytest.fixture
def make_model():
    return FakeModel


@pytest.fixture
def unavailable():
    """Both remote tiers down."""
    return (
        FakeModel("primary", ModelUnavailableError("HTTP 503")),
        FakeModel("secondary", ModelUnavailableError("connection refused")),
    )


@pytest.fixture
def make_dispatcher(session_factory):
    def _make(primary, secondary, broker=None, cooldown=0.0):
        client = TieredModelClient(primary=primary, secondary=secondary)
        queue = SingleFlightQueue(client.handle, cooldown=cooldown)
        return JobDispatcher(session_factory, queue, broker=broker)

    return _make
