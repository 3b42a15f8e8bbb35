import json
import os

# Every service gets its own in-memory database; must be set before the apps import
os.environ["ORDER_DATABASE_URL"] = "sqlite://"
os.environ["TABLE_DATABASE_URL"] = "sqlite://"
os.environ["USER_DATABASE_URL"] = "sqlite://"
os.environ["KAFKA_ENABLED"] = "0"
os.environ["TABLE_SYNC_BACKOFF"] = "0"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx
import pytest
from fastapi.testclient import TestClient

from order_service import database as order_db
from order_service import main as order_main
from order_service.events import publisher
from order_service.tables import TableClient
from pos_common.security import create_access_token
from table_service import database as table_db
from table_service import main as table_main
from user_service import database as user_db
from user_service import main as user_main

BRANCH = 1
OTHER_BRANCH = 2


def make_headers(role="branch-admin", branch_id=BRANCH, terminal=1, actor_id=1):
    token = create_access_token({
        "sub": f"{role}@test.local",
        "id": actor_id,
        "role": role,
        "branch_id": branch_id,
        "terminal": terminal,
    })
    return {"Authorization": f"Bearer {token}"}


def failing_transport(status_code=503, reads=None):
    """Fails every call, or only the writes when ``reads`` serves GETs."""
    async def handler(request):
        if reads is not None and request.method == "GET":
            return await reads.handle_async_request(request)
        return httpx.Response(status_code, json={"ok": False, "result": None,
                                                 "error": {"code": "down", "message": "down", "retryable": True}})
    return httpx.MockTransport(handler)


@pytest.fixture(autouse=True)
def reset_databases():
    for db in (order_db, table_db, user_db):
        db.Base.metadata.drop_all(bind=db.engine)
        db.Base.metadata.create_all(bind=db.engine)
    yield


class RecordingProducer:
    """Stands in for the Kafka producer and keeps the decoded messages."""

    def __init__(self):
        self.messages = []

    async def send_and_wait(self, topic, value):
        self.messages.append(json.loads(value))

    async def stop(self):
        pass


@pytest.fixture(autouse=True)
def published(monkeypatch):
    producer = RecordingProducer()
    monkeypatch.setattr(publisher, "producer", producer)
    return producer.messages


@pytest.fixture(autouse=True)
def table_backend(monkeypatch):
    """Order service talks to the real table service app in-process."""
    client = TableClient(base_url="http://table_service", transport=httpx.ASGITransport(app=table_main.app))
    monkeypatch.setattr(order_main, "table_client", client)
    return client


@pytest.fixture
def break_tables(monkeypatch):
    def _break(status_code=503, reads_ok=False):
        reads = httpx.ASGITransport(app=table_main.app) if reads_ok else None
        client = TableClient(base_url="http://table_service", transport=failing_transport(status_code, reads))
        monkeypatch.setattr(order_main, "table_client", client)
    return _break


@pytest.fixture
def headers():
    return make_headers


@pytest.fixture
def admin():
    return make_headers("branch-admin")


@pytest.fixture
def order_api():
    return TestClient(order_main.app)


@pytest.fixture
def table_api():
    return TestClient(table_main.app)


@pytest.fixture
def user_api():
    return TestClient(user_main.app)


@pytest.fixture
def dine_in_table(table_api, admin):
    hall = table_api.post("/halls", json={"name": "Main Hall", "capacity": 20}, headers=admin).json()["result"]
    table = table_api.post("/tables", json={"hall_id": hall["id"], "table_number": "T1"},
                           headers=admin).json()["result"]
    return table


@pytest.fixture
def second_table(table_api, admin, dine_in_table):
    return table_api.post("/tables", json={"hall_id": dine_in_table["hall_id"], "table_number": "T2"},
                          headers=admin).json()["result"]


@pytest.fixture
def sample_items():
    return [
        {"dish_id": 1, "dish_name": "Chicken Karahi", "unit_price": 500, "quantity": 2},
        {"dish_id": 2, "dish_name": "Mint Lemonade", "unit_price": 300, "quantity": 1},
    ]


@pytest.fixture
def running_order(order_api, admin, dine_in_table, sample_items):
    res = order_api.post("/orders", headers=admin, json={
        "order_type": "Dine In",
        "hall_id": dine_in_table["hall_id"],
        "table_id": dine_in_table["id"],
        "status": "Running",
        "items": sample_items,
    })
    assert res.status_code == 200, res.text
    return res.json()["result"]


@pytest.fixture
def customer(order_api, admin):
    res = order_api.post("/customers", headers=admin, json={"name": "Acme Corp", "phone": "0901000001"})
    return res.json()["result"]


def table_status(table_api, table_id):
    return table_api.get(f"/tables/{table_id}", headers=make_headers()).json()["result"]["status"]
