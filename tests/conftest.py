# tests/conftest.py
# The database and upload storage must point at a scratch directory before
# iptaxcalc.config is imported, so the env is set at module import time.

from __future__ import annotations

import os
import tempfile
import uuid

import pytest

_TMP = tempfile.mkdtemp(prefix="iptaxcalc-tests-")
os.environ["IPTAXCALC_DB_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["IPTAXCALC_STORAGE_DIR"] = os.path.join(_TMP, "storage_raw")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient  # noqa: E402

from iptaxcalc.app import app  # noqa: E402


@pytest.fixture(scope="session")
def client():
    # context manager runs the startup hook (table creation)
    with TestClient(app) as c:
        yield c


def _register(client: TestClient) -> dict:
    username = f"ip-{uuid.uuid4().hex[:12]}"
    r = client.post("/api/register", json={"username": username, "password": "secret123"})
    assert r.status_code == 201, r.text
    body = r.json()
    return {"username": username, "token": body["token"], "id": body["user"]["id"]}


@pytest.fixture
def user(client):
    return _register(client)


@pytest.fixture
def auth(user):
    return {"Authorization": f"Bearer {user['token']}"}


@pytest.fixture
def other_auth(client):
    return {"Authorization": f"Bearer {_register(client)['token']}"}
