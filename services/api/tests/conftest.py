from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ADMIN_TOKEN = "test-admin-token"


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    db_path = tmp_path / "manacity_test.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("MANACITY_DB_AUTO_CREATE", "true")
    monkeypatch.setenv("MANACITY_ADMIN_TOKEN", ADMIN_TOKEN)

    from scripts.seed_data import seed
    from services.api.app.db.database import db_session
    from services.api.app.main import app

    with TestClient(app) as c:
        db = db_session()
        try:
            seed(db)
        finally:
            db.close()
        yield c
