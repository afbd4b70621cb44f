import pytest
from fastapi.testclient import TestClient

from appop.api import create_app
from appop.store import MemoryStore, StoreError

SPEC = {
    "replica_count": 2,
    "memory_limit": "500M",
    "cpu_request": "250M",
    "image_repository": "repo",
    "image_tag": "tag",
    "ui_color": "#321903",
    "ui_message": "hello world",
    "redis_enabled": False,
}


@pytest.fixture
def client(memory_store):
    with TestClient(create_app(store=memory_store, start_controller=False)) as c:
        yield c


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


def test_put_and_get_application(client):
    r = client.put("/applications/default/test-app", json=SPEC)
    assert r.status_code == 200
    body = r.json()
    assert body["uid"]
    assert body["generation"] == 1
    assert body["status"] is None

    r = client.get("/applications/default/test-app")
    assert r.status_code == 200
    assert r.json()["replica_count"] == 2
    assert [a["name"] for a in client.get("/applications").json()] == ["test-app"]


@pytest.mark.parametrize(
    "path,payload",
    [
        ("/applications/default/Bad_Name", SPEC),
        ("/applications/default/test-app", {**SPEC, "replica_count": 0}),
        ("/applications/default/test-app", {**SPEC, "memory_limit": "lots"}),
        ("/applications/default/test-app", {**SPEC, "ui_color": "red"}),
    ],
)
def test_invalid_applications_are_rejected(client, path, payload):
    assert client.put(path, json=payload).status_code == 422


def test_reconcile_and_toggle_redis(client):
    uid = client.put("/applications/default/test-app", json=SPEC).json()["uid"]

    r = client.post("/applications/default/test-app/reconcile")
    assert r.status_code == 200
    assert r.json()["created"] == ["Service/default/test-app-podinfo", "Deployment/default/test-app-podinfo"]

    objs = client.get("/objects", params={"owner_uid": uid}).json()
    assert len(objs) == 2
    assert all(o["ownerLinks"][0]["uid"] == uid for o in objs)

    client.put("/applications/default/test-app", json={**SPEC, "redis_enabled": True})
    r = client.post("/applications/default/test-app/reconcile")
    assert r.json()["created"] == ["Service/default/test-app-redis", "Deployment/default/test-app-redis"]
    assert len(client.get("/objects").json()) == 4

    client.put("/applications/default/test-app", json=SPEC)
    r = client.post("/applications/default/test-app/reconcile")
    assert r.json()["deleted"] == ["Service/default/test-app-redis", "Deployment/default/test-app-redis"]
    assert [o["kind"] for o in client.get("/objects", params={"kind": "Deployment"}).json()] == ["Deployment"]

    status = client.get("/applications/default/test-app").json()["status"]
    assert status["failures"] == 0
    assert status["last_outcome"]["unchanged"] == [
        "Service/default/test-app-podinfo",
        "Deployment/default/test-app-podinfo",
    ]


def test_delete_application_removes_dependents(client):
    client.put("/applications/default/test-app", json=SPEC)
    client.post("/applications/default/test-app/reconcile")

    r = client.delete("/applications/default/test-app")
    assert r.status_code == 200
    assert client.get("/objects").json() == []
    assert client.get("/applications/default/test-app").status_code == 404
    assert client.delete("/applications/default/test-app").status_code == 404


def test_reconcile_unknown_application(client):
    assert client.post("/applications/default/nope/reconcile").status_code == 404


class _Unavailable(MemoryStore):
    def create(self, obj):
        raise StoreError("store unavailable")


def test_store_errors_map_to_503():
    store = _Unavailable()
    with TestClient(create_app(store=store, start_controller=False)) as c:
        c.put("/applications/default/test-app", json=SPEC)
        r = c.post("/applications/default/test-app/reconcile")
        assert r.status_code == 503
        assert "store unavailable" in r.json()["detail"]
        status = c.get("/applications/default/test-app").json()["status"]
        assert status["failures"] == 1


class _ReadOnly(MemoryStore):
    def put_application(self, app):
        raise StoreError("database is locked")


def test_put_maps_store_errors_to_503():
    with TestClient(create_app(store=_ReadOnly(), start_controller=False)) as c:
        r = c.put("/applications/default/test-app", json=SPEC)
        assert r.status_code == 503
        assert "database is locked" in r.json()["detail"]


def test_events_are_recorded(client):
    client.put("/applications/default/events-app", json=SPEC)
    client.post("/applications/default/events-app/reconcile")

    events = client.get("/events", params={"application": "default/events-app"}).json()
    messages = [e["message"] for e in events]
    assert any(m.startswith("Created Deployment/default/events-app-podinfo") for m in messages)
    assert any(m.startswith("Applied generation 1") for m in messages)
    assert client.get("/events", params={"limit": 0}).status_code == 422
