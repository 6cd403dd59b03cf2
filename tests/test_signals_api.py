from conftest import OTHER_USER_ID, assert_error_envelope, auth_headers


def _signal(signal_type: str = "hint-shown", created_at: str = "2025-01-01T00:00:00Z", **payload):
    return {"signal_type": signal_type, "payload": payload, "created_at": created_at}


def test_post_signals_inserts_each_valid_row(client):
    resp = client.post(
        "/signals",
        json={
            "signals": [
                _signal(hint="topic:render"),
                {"payload": {"missing": "type"}},
                _signal("copy", session_key_hash="abc"),
            ]
        },
        headers=auth_headers(),
    )
    assert resp.status_code == 200
    assert resp.json() == {"inserted": 2, "failed": 1}


def test_post_signals_caps_batch_size(client):
    resp = client.post("/signals", json={"signals": [_signal() for _ in range(60)]}, headers=auth_headers())
    assert resp.json() == {"inserted": 50, "failed": 0}


def test_post_signals_requires_array(client):
    resp = client.post("/signals", json={"signals": []}, headers=auth_headers())
    assert resp.status_code == 400
    assert_error_envelope(resp.json(), "MALFORMED_REQUEST")
    assert resp.json()["error"]["message"] == "signals array required"

    resp = client.post("/signals", json={"signals": []})
    assert resp.status_code == 401


def test_get_signals_filters_and_orders_newest_first(client):
    client.post(
        "/signals",
        json={
            "signals": [
                _signal("hint-shown", "2025-01-01T00:00:00Z", n=1),
                _signal("copy", "2025-01-02T00:00:00Z", n=2),
                _signal("hint-shown", "2025-01-03T00:00:00Z", n=3),
            ]
        },
        headers=auth_headers(),
    )

    resp = client.get("/signals", headers=auth_headers())
    body = resp.json()
    assert body["count"] == 3
    assert [row["payload"]["n"] for row in body["signals"]] == [3, 2, 1]

    resp = client.get("/signals", params={"type": "hint-shown"}, headers=auth_headers())
    assert [row["payload"]["n"] for row in resp.json()["signals"]] == [3, 1]

    resp = client.get("/signals", params={"limit": "1", "offset": "1"}, headers=auth_headers())
    assert [row["payload"]["n"] for row in resp.json()["signals"]] == [2]


def test_get_signals_clamps_limit_and_scopes_to_user(client):
    client.post("/signals", json={"signals": [_signal(n=1), _signal(n=2)]}, headers=auth_headers())

    resp = client.get("/signals", params={"limit": "0"}, headers=auth_headers())
    assert resp.json()["count"] == 1

    resp = client.get("/signals", params={"limit": "abc", "offset": "-5"}, headers=auth_headers())
    assert resp.json()["count"] == 2

    resp = client.get("/signals", headers=auth_headers(OTHER_USER_ID))
    assert resp.json() == {"signals": [], "count": 0}
