# conftest.py
import os

# Settings are read at import time, so configure before importing hms
os.environ["APP_ENV"] = "dev"
os.environ.setdefault("APP_SECRET", "test-secret")
os.environ["DB_URL"] = "sqlite://"
os.environ["LOW_STOCK_CHECK_ENABLED"] = "false"
os.environ.pop("NOTIFY_WEBHOOK_URL", None)

import json
import random
import string

import pytest
from fastapi.testclient import TestClient

from hms.db import Base, SessionLocal, engine
from hms.main import app


def jprint(label, r):
    try:
        body = r.json()
    except Exception:
        body = r.text
    print(f"\n=== {label} [{r.status_code}] ===")
    print(json.dumps(body, indent=2) if not isinstance(body, str) else body)


@pytest.fixture(scope="session")
def base_url():
    return "http://testserver"


@pytest.fixture(scope="session")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture(scope="session")
def auth_headers(client, base_url):
    r = client.get(f"{base_url}/healthz")
    assert r.status_code == 200, f"/healthz failed: {r.text}"

    r = client.post(f"{base_url}/admin/dev-bootstrap")
    assert r.status_code == 200, f"/admin/dev-bootstrap failed: {r.text}"

    r = client.post(f"{base_url}/auth/login", params={"mobile": "9999999999", "password": "admin"})
    assert r.status_code == 200, f"/auth/login failed: {r.text}"
    tok = r.json()["access_token"]
    return {"Authorization": f"Bearer {tok}"}


@pytest.fixture
def rng_suffix():
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=6))


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    s = SessionLocal()
    try:
        yield s
    finally:
        s.rollback()
        s.close()
