def test_root_reports_service_metadata(client):
    resp = client.get("/")
    assert resp.status_code == 200
    body = resp.json()
    assert body["service"] == "webchat"
    assert body["health"] == "/health"


def test_health_ok(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "webchat"}


def test_lifespan_creates_tables(app):
    from fastapi.testclient import TestClient

    from webchat.storage import push_store

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert push_store.list_subscriptions() == []
