import os
import tempfile
from pathlib import Path

import pytest

# Settings are read at import time; point storage and the database at a scratch dir first.
_STORAGE = Path(tempfile.mkdtemp(prefix="deck-automation-tests-"))
os.environ.setdefault("STORAGE_ROOT", str(_STORAGE))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{(_STORAGE / 'app.db').as_posix()}")
os.environ.setdefault("GAMMA_API_KEY", "test-gamma-key")
os.environ.setdefault("PERSIST_RUN_EVENTS", "true")

from deck_automation.db import Base, engine  # noqa: E402
from fakes import FakeClock, FakeDrive, FakeSheets  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _create_tables():
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sheets():
    return FakeSheets()


@pytest.fixture
def drive():
    return FakeDrive()
