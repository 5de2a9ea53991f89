import os
import tempfile
from pathlib import Path

import pytest

# Must be set before backend.app.db.session builds its engine.
_DB_DIR = Path(tempfile.mkdtemp(prefix="curated-tests-"))
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", f"sqlite:///{_DB_DIR / 'curated.db'}")
os.environ.setdefault("LOG_FORMAT", "text")

from backend.app.db import models  # noqa: E402
from backend.app.db.session import ENGINE, session_scope  # noqa: E402

models.Base.metadata.create_all(ENGINE)


def _clear_tables() -> None:
    with session_scope() as session:
        session.query(models.SearchLog).delete()
        session.query(models.CuratedListing).delete()


@pytest.fixture
def clean_db():
    _clear_tables()
    yield
    _clear_tables()
