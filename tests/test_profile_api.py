from typing import Any, Dict, List

from conftest import USER_ID, assert_error_envelope, auth_headers

from webchat.learning import MAX_LEARNED_CONTEXT, merge_learned_context, validate_insights, validate_learn_body
from webchat.normalize import PINNED_SESSIONS_PREF_KEY
from webchat.storage import profile_store, signal_store

LEARN_HEADERS = {"Authorization": "Bearer learn-key"}


def _insight(text: str, confidence: float = 0.8, dimension: str = "skill-level", **extra: Any) -> Dict[str, Any]:
    return {"dimension": dimension, "insight": text, "confidence": confidence, **extra}


def _learn(client, insights: List[Dict[str, Any]], user_id: str = USER_ID, headers=None):
    return client.post(
        "/profile/learn",
        json={"userId": user_id, "insights": insights},
        headers=headers or LEARN_HEADERS,
    )


### GET/PUT /profile ##########################################################


def test_get_profile_is_null_before_first_save(client):
    resp = client.get("/profile", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json() == {"profile": None}


def test_put_profile_normalizes_fields(client):
    resp = client.put(
        "/profile",
        json={
            "name": "Ada",
            "role": "Editor",
            "software": ["Premiere", 3],
            "preferences": {"language": "ja", "responseStyle": "shouty", "timezone": "Asia/Tokyo"},
            "frequentTopics": ["render"],
        },
        headers=auth_headers(),
    )
    assert resp.status_code == 200
    profile = resp.json()["profile"]
    assert profile["name"] == "Ada"
    assert profile["software"] == ["Premiere"]
    assert profile["preferences"] == {
        "language": "ja",
        "responseStyle": "concise",
        "timezone": "Asia/Tokyo",
        "workContext": "",
    }
    assert profile["frequentTopics"] == ["render"]
    assert profile["learnedContext"] == []

    resp = client.get("/profile", headers=auth_headers())
    assert resp.json()["profile"]["name"] == "Ada"


def test_put_profile_keeps_namespaced_preferences(client):
    profile_store.save_preferences(USER_ID, {PINNED_SESSIONS_PREF_KEY: {"keys": ["a"], "updatedAtMs": 1}})
    client.put("/profile", json={"name": "Ada"}, headers=auth_headers())
    prefs = profile_store.get_preferences(USER_ID)
    assert prefs[PINNED_SESSIONS_PREF_KEY] == {"keys": ["a"], "updatedAtMs": 1}
    assert prefs["language"] == "en"


def test_put_profile_requires_auth_and_object(client):
    resp = client.put("/profile", json={"name": "Ada"})
    assert resp.status_code == 401
    resp = client.put("/profile", json=[1, 2], headers=auth_headers())
    assert resp.status_code == 400
    assert_error_envelope(resp.json(), "MALFORMED_REQUEST")


### POST /profile/learn #######################################################


def test_learn_requires_service_key(client):
    resp = _learn(client, [_insight("Knows expressions")], headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
    assert_error_envelope(resp.json(), "UNAUTHORIZED")


def test_learn_rejects_non_uuid_user(client):
    resp = _learn(client, [_insight("x")], user_id="user-123")
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Invalid userId (expected UUID)"


def test_learn_rejects_missing_insights(client):
    resp = client.post("/profile/learn", json={"userId": USER_ID, "insights": []}, headers=LEARN_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "userId and insights[] required"


def test_learn_reports_first_invalid_insight(client):
    resp = _learn(client, [_insight("ok"), _insight("bad", dimension="mood")])
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["message"] == "Invalid dimension: mood"
    assert body["error"]["details"]
    assert signal_store.list_learning_events(USER_ID) == []


def test_learn_creates_profile_with_confident_insights(client):
    resp = _learn(
        client,
        [
            _insight("Prefers keyboard shortcuts", 0.9),
            _insight("Maybe a beginner", 0.3),
            _insight("Works in After Effects daily", 0.5, dimension="topic-interests", evidence=["msg-1"]),
        ],
    )
    assert resp.status_code == 200
    assert resp.json() == {"inserted": 3, "appendedToProfile": 2, "profileCreated": True}

    events = signal_store.list_learning_events(USER_ID)
    assert [event["insight"] for event in events] == [
        "Prefers keyboard shortcuts",
        "Maybe a beginner",
        "Works in After Effects daily",
    ]
    assert events[2]["evidence"] == ["msg-1"]
    assert events[0]["source"] == "heartbeat"

    row = profile_store.get_profile_row(USER_ID)
    assert row["learned_context"] == ["Prefers keyboard shortcuts", "Works in After Effects daily"]


def test_learn_appends_to_existing_profile_without_duplicates(client):
    client.put("/profile", json={"name": "Ada", "learnedContext": ["Knows wiggle"]}, headers=auth_headers())
    resp = _learn(client, [_insight("Knows wiggle"), _insight("Renders at night")])
    assert resp.json() == {"inserted": 2, "appendedToProfile": 1, "profileCreated": False}
    row = profile_store.get_profile_row(USER_ID)
    assert row["learned_context"] == ["Knows wiggle", "Renders at night"]
    assert row["name"] == "Ada"


def test_learn_with_only_low_confidence_leaves_profile_alone(client):
    resp = _learn(client, [_insight("Unsure", 0.2)])
    assert resp.json() == {"inserted": 1, "appendedToProfile": 0, "profileCreated": False}
    assert profile_store.get_profile_row(USER_ID) is None


def test_learn_is_rate_limited_per_caller(client):
    for _ in range(10):
        assert _learn(client, [_insight("x", 0.1)]).status_code == 200
    resp = _learn(client, [_insight("x", 0.1)])
    assert resp.status_code == 429
    assert_error_envelope(resp.json(), "RATE_LIMITED")

    other_ip = {**LEARN_HEADERS, "X-Forwarded-For": "10.0.0.9, 10.0.0.1"}
    assert _learn(client, [_insight("x", 0.1)], headers=other_ip).status_code == 200


### Learning rules ############################################################


def test_validate_learn_body_messages():
    assert validate_learn_body(None) == "userId and insights[] required"
    assert validate_learn_body({"userId": USER_ID}) == "userId and insights[] required"
    assert validate_learn_body({"userId": "abc", "insights": [{}]}) == "Invalid userId (expected UUID)"
    assert validate_learn_body({"userId": USER_ID, "insights": [{}]}) is None


def test_validate_insights_messages():
    assert validate_insights([_insight("ok")]) == (None, [])
    assert validate_insights([_insight("  ")])[0] == "insight text required"
    assert validate_insights([_insight("ok", evidence="msg")])[0] == "evidence must be an array"
    assert validate_insights([_insight("ok", confidence=1.5)])[0] == "confidence must be 0-1"
    assert validate_insights([_insight("ok", confidence=True)])[0] == "confidence must be 0-1"


def test_merge_learned_context_caps_by_confidence():
    existing = [f"old-{i}" for i in range(MAX_LEARNED_CONTEXT)]
    merged, appended = merge_learned_context(existing, [_insight("strong", 0.95), _insight("weak", 0.6)])
    assert len(merged) == MAX_LEARNED_CONTEXT
    assert merged[0] == "strong"
    assert "weak" in merged
    assert appended == 2
    assert "old-49" not in merged and "old-48" not in merged


def test_merge_learned_context_ignores_non_list_existing():
    merged, appended = merge_learned_context("garbage", [_insight(" trimmed ", 0.7)])
    assert merged == ["trimmed"]
    assert appended == 1


def test_learn_rejects_non_finite_confidence(client):
    body = (
        '{"userId": "%s", "insights": [{"dimension": "skill-level", "insight": "x", "confidence": NaN}]}' % USER_ID
    ).encode()
    resp = client.post("/profile/learn", content=body, headers={**LEARN_HEADERS, "Content-Type": "application/json"})
    assert resp.status_code == 400
    assert_error_envelope(resp.json(), "MALFORMED_REQUEST")
    assert signal_store.list_learning_events(USER_ID) == []


def test_validate_insights_rejects_non_finite_confidence():
    message, details = validate_insights([_insight("ok", confidence=float("nan"))])
    assert message == "confidence must be 0-1"
    assert details[0]["path"] == ["confidence"]


def test_learn_accepts_null_evidence(client):
    resp = _learn(client, [_insight("Uses proxies", 0.7, evidence=None)])
    assert resp.status_code == 200
    assert resp.json()["inserted"] == 1
    assert signal_store.list_learning_events(USER_ID)[0]["evidence"] == []
