"""
Integration tests for the REST surface.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from jose import jwt
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from chatrelay.core.security import hash_password, verify_password
from chatrelay.services import store

TEST_SECRET = "test-secret-key-12345"


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_liveness_always_returns_ok(self, client):
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_readiness_returns_ok_when_configured(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        data = response.json()
        assert data["checks"] == {"database": "ok", "jwt_secret": "ok"}

    def test_status_reports_presence_counts(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["users"] == 0
        assert data["connections"] == 0


class TestAuth:
    """Tests for register, login and /auth/me."""

    def test_register_returns_token_and_user(self, client):
        response = client.post(
            "/auth/register",
            json={"username": "Alice", "password": "secret123", "displayName": "Alice A"},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["token"]
        assert body["data"]["user"]["username"] == "alice"
        assert body["data"]["user"]["displayName"] == "Alice A"

    def test_duplicate_username_conflicts(self, client, make_user):
        make_user("alice")
        response = client.post(
            "/auth/register",
            json={"username": "ALICE", "password": "secret123", "displayName": "Other"},
        )
        assert response.status_code == 409
        assert response.json() == {"success": False, "message": "Username already taken"}

    def test_register_validates_lengths(self, client):
        response = client.post(
            "/auth/register",
            json={"username": "al", "password": "secret123", "displayName": "Al"},
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

        response = client.post(
            "/auth/register",
            json={"username": "alice", "password": "123", "displayName": "Alice"},
        )
        assert response.status_code == 400

    def test_login_round_trip(self, client, make_user):
        alice = make_user("alice", password="hunter22")

        response = client.post("/auth/login", json={"username": "Alice", "password": "hunter22"})
        assert response.status_code == 200
        token = response.json()["data"]["token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["data"]["user"]["id"] == alice.id

    def test_login_with_wrong_password(self, client, make_user):
        make_user("alice")
        response = client.post("/auth/login", json={"username": "alice", "password": "wrong-one"})
        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_me_requires_token(self, client):
        response = client.get("/auth/me")
        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "No token provided"}

    def test_expired_token_is_rejected(self, client, make_user):
        alice = make_user("alice")
        expired = jwt.encode(
            {"userId": alice.id, "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
            TEST_SECRET,
            algorithm="HS256",
        )
        response = client.get("/auth/me", headers={"Authorization": f"Bearer {expired}"})
        assert response.status_code == 401

    def test_token_signed_with_other_secret_is_rejected(self, client, make_user):
        alice = make_user("alice")
        forged = jwt.encode({"userId": alice.id}, "another-secret", algorithm="HS256")
        response = client.get("/auth/me", headers={"Authorization": f"Bearer {forged}"})
        assert response.status_code == 401


class TestPasswordHashing:
    """Tests for password hash helpers."""

    def test_hash_verifies(self):
        encoded = hash_password("secret123", iterations=1000)
        assert encoded.startswith("pbkdf2_sha256$1000$")
        assert verify_password("secret123", encoded)
        assert not verify_password("secret124", encoded)

    def test_hashes_are_salted(self):
        assert hash_password("secret123", iterations=1000) != hash_password("secret123", iterations=1000)

    def test_garbage_hash_does_not_verify(self):
        assert not verify_password("secret123", "not-a-hash")


class TestUsers:
    """Tests for GET /users and /users/search."""

    def test_list_excludes_caller(self, client, make_user):
        alice = make_user("alice")
        make_user("bob")
        make_user("carol")

        response = client.get("/users", headers=alice.headers)
        usernames = sorted(u["username"] for u in response.json()["data"]["users"])
        assert usernames == ["bob", "carol"]

    def test_search_needs_two_characters(self, client, make_user):
        alice = make_user("alice")
        make_user("bob")

        short = client.get("/users/search?q=b", headers=alice.headers)
        assert short.json()["data"]["users"] == []

        found = client.get("/users/search?q=bo", headers=alice.headers)
        assert [u["username"] for u in found.json()["data"]["users"]] == ["bob"]
        assert found.json()["data"]["users"][0]["online"] is False

    def test_wildcards_in_query_match_literally(self, client, make_user):
        alice = make_user("alice")
        make_user("bob")
        make_user("carol")

        for q in ("__", "%%"):
            response = client.get("/users/search", params={"q": q}, headers=alice.headers)
            assert response.json()["data"]["users"] == []


class TestConversations:
    """Tests for conversation endpoints."""

    def test_get_or_create_is_idempotent_in_both_directions(self, client, make_user):
        alice = make_user("alice")
        bob = make_user("bob")

        first = client.post("/conversations", json={"participantId": bob.id}, headers=alice.headers)
        second = client.post("/conversations", json={"participantId": alice.id}, headers=bob.headers)

        assert first.status_code == 200
        conversation = first.json()["data"]["conversation"]
        assert conversation["participantId"] == bob.id
        assert conversation["participantName"] == "Bob"
        assert conversation["unreadCount"] == 0
        assert second.json()["data"]["conversation"]["id"] == conversation["id"]

    def test_near_simultaneous_creates_return_same_id(self, client, make_user):
        alice = make_user("alice")
        bob = make_user("bob")

        def create(_):
            response = client.post("/conversations", json={"participantId": bob.id}, headers=alice.headers)
            return response.json()["data"]["conversation"]["id"]

        with ThreadPoolExecutor(max_workers=2) as pool:
            ids = list(pool.map(create, range(2)))

        assert ids[0] == ids[1]
        listed = client.get("/conversations", headers=alice.headers).json()["data"]["conversations"]
        assert len(listed) == 1

    def test_unknown_participant(self, client, make_user):
        alice = make_user("alice")
        response = client.post("/conversations", json={"participantId": "nope"}, headers=alice.headers)
        assert response.status_code == 404

    def test_missing_participant_is_malformed(self, client, make_user):
        alice = make_user("alice")
        response = client.post("/conversations", json={}, headers=alice.headers)
        assert response.status_code == 400
        assert response.json()["success"] is False


class TestMessages:
    """Tests for send, history and mark-read."""

    def _conversation(self, client, user, partner):
        response = client.post("/conversations", json={"participantId": partner.id}, headers=user.headers)
        return response.json()["data"]["conversation"]["id"]

    def _send(self, client, user, conversation_id, content, **extra):
        return client.post(
            "/messages",
            json={"conversationId": conversation_id, "content": content, **extra},
            headers=user.headers,
        )

    def test_send_returns_stored_message(self, client, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        conversation_id = self._conversation(client, alice, bob)

        response = self._send(client, alice, conversation_id, "hi")

        assert response.status_code == 201
        message = response.json()["data"]["message"]
        assert message["content"] == "hi"
        assert message["senderId"] == alice.id
        assert message["senderName"] == "Alice"
        assert message["type"] == "TEXT"
        assert message["status"] == "SENT"

    def test_send_accepts_lowercase_type_tags(self, client, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        conversation_id = self._conversation(client, alice, bob)

        response = self._send(client, alice, conversation_id, "missed call", type="call-log")
        assert response.json()["data"]["message"]["type"] == "CALL_LOG"

        bad = self._send(client, alice, conversation_id, "x", type="sticker")
        assert bad.status_code == 400

    def test_outsider_cannot_send_or_read(self, client, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        mallory = make_user("mallory")
        conversation_id = self._conversation(client, alice, bob)

        assert self._send(client, mallory, conversation_id, "hey").status_code == 403
        assert client.get(f"/messages/{conversation_id}", headers=mallory.headers).status_code == 403
        assert client.put(f"/messages/{conversation_id}/read", headers=mallory.headers).status_code == 403

    def test_history_is_newest_first_with_pages(self, client, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        conversation_id = self._conversation(client, alice, bob)
        for i in range(5):
            self._send(client, alice if i % 2 else bob, conversation_id, f"m{i}")

        first = client.get(f"/messages/{conversation_id}?page=1&limit=2", headers=alice.headers).json()["data"]
        second = client.get(f"/messages/{conversation_id}?page=2&limit=2", headers=alice.headers).json()["data"]
        third = client.get(f"/messages/{conversation_id}?page=3&limit=2", headers=alice.headers).json()["data"]

        contents = [m["content"] for page in (first, second, third) for m in page["messages"]]
        assert contents == ["m4", "m3", "m2", "m1", "m0"]
        assert [first["hasMore"], second["hasMore"], third["hasMore"]] == [True, True, False]
        assert third["page"] == 3

        timestamps = [m["timestamp"] for page in (first, second, third) for m in page["messages"]]
        assert timestamps == sorted(timestamps, reverse=True)

    def test_unread_count_and_mark_read(self, client, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        conversation_id = self._conversation(client, alice, bob)
        self._send(client, bob, conversation_id, "one")
        self._send(client, bob, conversation_id, "two")
        self._send(client, alice, conversation_id, "three")

        listed = client.get("/conversations", headers=alice.headers).json()["data"]["conversations"]
        assert listed[0]["unreadCount"] == 2
        assert listed[0]["lastMessage"] == "three"

        response = client.put(f"/messages/{conversation_id}/read", headers=alice.headers)
        assert response.status_code == 200
        assert response.json()["data"] == {"success": True}

        listed = client.get("/conversations", headers=alice.headers).json()["data"]["conversations"]
        assert listed[0]["unreadCount"] == 0

        messages = client.get(f"/messages/{conversation_id}", headers=bob.headers).json()["data"]["messages"]
        statuses = {m["content"]: m["status"] for m in messages}
        assert statuses == {"one": "READ", "two": "READ", "three": "SENT"}

    def test_send_survives_broadcast_failure(self, client, make_user, monkeypatch):
        alice = make_user("alice")
        bob = make_user("bob")
        conversation_id = self._conversation(client, alice, bob)

        def broken_deliver(*args, **kwargs):
            raise RuntimeError("push failed")

        monkeypatch.setattr(client.app.state.relay, "deliver", broken_deliver)

        response = self._send(client, alice, conversation_id, "still stored")

        assert response.status_code == 201
        assert response.json()["data"]["message"]["content"] == "still stored"
        messages = client.get(f"/messages/{conversation_id}", headers=bob.headers).json()["data"]["messages"]
        assert [m["content"] for m in messages] == ["still stored"]

    def test_limit_is_bounded(self, client, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        conversation_id = self._conversation(client, alice, bob)

        response = client.get(f"/messages/{conversation_id}?limit=500", headers=alice.headers)
        assert response.status_code == 400


class TestStoreFailures:
    """Tests for database errors surfacing as the 500 envelope."""

    def test_failed_commit_is_store_unavailable(self, client, make_user, monkeypatch):
        alice = make_user("alice")
        bob = make_user("bob")

        def locked_commit(self):
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(Session, "commit", locked_commit)

        response = client.post("/conversations", json={"participantId": bob.id}, headers=alice.headers)

        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "Store unavailable"}

    def test_failed_query_is_store_unavailable(self, client, make_user, monkeypatch):
        alice = make_user("alice")

        def locked_query(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(store, "list_users", locked_query)

        response = client.get("/users", headers=alice.headers)

        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "Store unavailable"}


class TestMetricsEndpoint:
    """Tests for GET /metrics."""

    def test_metrics_returns_prometheus_format(self, client):
        client.get("/health/live")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        assert "http_requests_total" in response.text
        assert "realtime_connections 0" in response.text

    def test_unrouted_paths_share_one_label(self, client):
        assert client.get("/no-such-page-1").status_code == 404
        assert client.get("/no-such-page-2").status_code == 404

        text = client.get("/metrics").text

        assert 'path="unmatched",status="404"' in text
        assert "/no-such-page" not in text

    def test_templated_routes_hide_ids(self, client, make_user):
        alice = make_user("alice")
        client.get("/messages/some-conversation-id", headers=alice.headers)

        text = client.get("/metrics").text

        assert 'path="/messages/{conversation_id}"' in text
        assert "some-conversation-id" not in text
