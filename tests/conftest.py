import os
from contextlib import redirect_stderr, redirect_stdout
from io import StringIO
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config

# Ensure tests run against SQLite and fake credentials when not defined
os.environ.setdefault("DATABASE_URL", "sqlite:////tmp/skinscan_test.db")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("OPENAI_API_KEY", "test")
os.environ.setdefault("S3_BUCKET", "testbucket")
os.environ.setdefault("S3_ACCESS_KEY", "testing")
os.environ.setdefault("S3_SECRET_KEY", "testing")

from fastapi.testclient import TestClient  # noqa: E402
from skinscan.main import app  # noqa: E402
from skinscan.config import Settings  # noqa: E402
from skinscan.db import SessionLocal, init_db  # noqa: E402
from skinscan.models import Detection  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply Alembic migrations before running tests."""
    cfg_path = Path(__file__).resolve().parent.parent / "alembic.ini"
    config = Config(str(cfg_path))
    stdout_buf, stderr_buf = StringIO(), StringIO()
    try:
        with redirect_stdout(stdout_buf), redirect_stderr(stderr_buf):
            command.upgrade(config, "head")
    except Exception as exc:
        print("Alembic upgrade failed:", exc)
        print("stdout:\n", stdout_buf.getvalue())
        print("stderr:\n", stderr_buf.getvalue())
        raise
    init_db(Settings())


@pytest.fixture(scope="session", autouse=True)
def remove_test_db():
    """Remove temporary SQLite database after tests finish."""
    yield
    db_url = os.environ.get("DATABASE_URL")
    if db_url and db_url.startswith("sqlite:///"):
        db_path = Path(db_url.replace("sqlite:///", ""))
        if db_path.exists():
            db_path.unlink()


@pytest.fixture(autouse=True)
def clean_detections(apply_migrations):
    with SessionLocal() as session:
        session.query(Detection).delete()
        session.commit()
    yield


@pytest.fixture(scope="module")
def client(apply_migrations):
    """Yields a TestClient with lifespan events."""
    with TestClient(app) as client:
        yield client
    # app shutdown disposes the engine
    init_db(Settings())
