"""
Tests for the /messages routes.

Tests cover:
- Creating messages and replies
- Caller identity and authorization
- Reading single messages and threads
- Pagination and sort order
- Updates, deletes and likes
- Error status mapping
"""

import pytest
from fastapi.testclient import TestClient

from message_board.main import app
from message_board.storage import Base, engine
from message_board.store import MessageStore


ALICE = {"X-Principal": "alice"}
BOB = {"X-Principal": "bob"}


class StepClock:
    """Clock that advances one second on every reading."""

    def __init__(self):
        self.now = 1_700_000_000 * 1_000_000_000

    def __call__(self) -> int:
        self.now += 1_000_000_000
        return self.now


def create_message(client, content: str, headers=ALICE, parent_id: int = None) -> dict:
    """Helper to create a message and return its JSON body."""
    body = {"content": content}
    if parent_id is not None:
        body["parent_id"] = parent_id
    response = client.post("/messages", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture(scope="function")
def client():
    """Create test client with a fresh store and snapshot database for each test."""
    Base.metadata.create_all(bind=engine)
    app.state.message_store = MessageStore(clock=StepClock())

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def seeded_client(client):
    """Client with five top-level messages m1..m5, oldest first."""
    for i in range(1, 6):
        create_message(client, f"m{i}", headers=ALICE if i % 2 else BOB)
    return client


class TestCreateMessage:
    """Test POST /messages."""

    def test_create(self, client):
        response = client.post("/messages", json={"content": "hello"}, headers=ALICE)

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == 1
        assert data["author"] == "alice"
        assert data["content"] == "hello"
        assert data["likes"] == 0
        assert data["replies"] == []
        assert data["parent_id"] is None
        assert data["updated_at"] is None

    def test_blank_content_rejected(self, client):
        response = client.post("/messages", json={"content": "   "}, headers=ALICE)

        assert response.status_code == 422
        assert response.json()["detail"] == "Message content cannot be empty"

    def test_missing_content_rejected(self, client):
        response = client.post("/messages", json={}, headers=ALICE)
        assert response.status_code == 422

    def test_missing_caller_rejected(self, client):
        response = client.post("/messages", json={"content": "hello"})
        assert response.status_code == 401

    @pytest.mark.parametrize("parent_id", [9, 0, -1])
    def test_unknown_parent(self, client, parent_id):
        response = client.post(
            "/messages", json={"content": "reply", "parent_id": parent_id}, headers=ALICE
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Parent message not found"

    def test_reply_linkage(self, client):
        parent = create_message(client, "parent")
        child = create_message(client, "child", headers=BOB, parent_id=parent["id"])

        assert child["parent_id"] == parent["id"]
        assert client.get(f"/messages/{parent['id']}").json()["replies"] == [child["id"]]

    def test_response_includes_request_id_header(self, client):
        response = client.post("/messages", json={"content": "hello"}, headers=ALICE)
        assert "x-request-id" in response.headers


class TestGetMessage:
    """Test GET /messages/{id} and /messages/{id}/thread."""

    def test_get(self, client):
        created = create_message(client, "hello")

        response = client.get(f"/messages/{created['id']}")

        assert response.status_code == 200
        assert response.json() == created

    def test_get_missing(self, client):
        response = client.get("/messages/42")

        assert response.status_code == 404
        assert response.json()["detail"] == "Message not found"

    def test_thread(self, client):
        parent = create_message(client, "parent")
        first = create_message(client, "first", headers=BOB, parent_id=parent["id"])
        second = create_message(client, "second", parent_id=parent["id"])
        create_message(client, "nested", parent_id=first["id"])

        response = client.get(f"/messages/{parent['id']}/thread")

        assert response.status_code == 200
        assert [m["id"] for m in response.json()] == [parent["id"], first["id"], second["id"]]

    def test_thread_missing(self, client):
        assert client.get("/messages/3/thread").status_code == 404


class TestListMessages:
    """Test GET /messages pagination and sorting."""

    def test_empty(self, client):
        response = client.get("/messages")

        assert response.status_code == 200
        data = response.json()
        assert data["messages"] == []
        assert data["total"] == 0
        assert data["page"] == 1
        assert data["total_pages"] == 0
        assert data["has_next"] is False
        assert data["has_previous"] is False

    def test_first_page_newest_first(self, seeded_client):
        response = seeded_client.get("/messages", params={"page": 1, "limit": 2})

        assert response.status_code == 200
        data = response.json()
        assert [m["content"] for m in data["messages"]] == ["m5", "m4"]
        assert data["total"] == 5
        assert data["total_pages"] == 3
        assert data["has_previous"] is False
        assert data["has_next"] is True

    def test_last_page(self, seeded_client):
        data = seeded_client.get("/messages", params={"page": 3, "limit": 2}).json()

        assert [m["content"] for m in data["messages"]] == ["m1"]
        assert data["has_next"] is False
        assert data["has_previous"] is True

    def test_page_beyond_end(self, seeded_client):
        data = seeded_client.get("/messages", params={"page": 9, "limit": 2}).json()

        assert data["messages"] == []
        assert data["total"] == 5

    def test_default_limit(self, seeded_client):
        data = seeded_client.get("/messages").json()
        assert len(data["messages"]) == 5
        assert data["total_pages"] == 1

    def test_sort_oldest(self, seeded_client):
        data = seeded_client.get("/messages", params={"sort_by": "oldest"}).json()
        assert [m["content"] for m in data["messages"]] == ["m1", "m2", "m3", "m4", "m5"]

    def test_sort_popular(self, seeded_client):
        seeded_client.post("/messages/2/like")
        seeded_client.post("/messages/2/like")
        seeded_client.post("/messages/4/like")

        data = seeded_client.get("/messages", params={"sort_by": "popular"}).json()

        assert [m["id"] for m in data["messages"]] == [2, 4, 1, 3, 5]

    def test_unknown_sort_falls_back_to_newest(self, seeded_client):
        data = seeded_client.get("/messages", params={"sort_by": "random"}).json()
        assert data["messages"][0]["content"] == "m5"

    def test_replies_not_listed(self, client):
        parent = create_message(client, "parent")
        create_message(client, "reply", parent_id=parent["id"])

        data = client.get("/messages").json()

        assert data["total"] == 1
        assert [m["id"] for m in data["messages"]] == [parent["id"]]

    def test_large_limit_accepted(self, seeded_client):
        response = seeded_client.get("/messages", params={"limit": 500})

        assert response.status_code == 200
        data = response.json()
        assert len(data["messages"]) == 5
        assert data["total_pages"] == 1

    def test_large_limit_past_end_is_empty(self, seeded_client):
        response = seeded_client.get("/messages", params={"page": 2, "limit": 500})

        assert response.status_code == 200
        assert response.json()["messages"] == []

    @pytest.mark.parametrize("params", [{"limit": 0}, {"page": 0}, {"limit": -1}])
    def test_invalid_paging_rejected(self, client, params):
        assert client.get("/messages", params=params).status_code == 422


class TestUpdateMessage:
    """Test PUT /messages/{id}."""

    def test_author_can_update(self, client):
        created = create_message(client, "hello")

        response = client.put(f"/messages/{created['id']}", json={"content": "edited"}, headers=ALICE)

        assert response.status_code == 200
        data = response.json()
        assert data["content"] == "edited"
        assert data["updated_at"] is not None
        assert data["created_at"] == created["created_at"]

    def test_other_caller_forbidden(self, client):
        created = create_message(client, "hello")

        response = client.put(f"/messages/{created['id']}", json={"content": "mine"}, headers=BOB)

        assert response.status_code == 403
        assert response.json()["detail"] == "Only the author can update this message"
        assert client.get(f"/messages/{created['id']}").json()["content"] == "hello"

    def test_blank_content_rejected(self, client):
        created = create_message(client, "hello")
        response = client.put(f"/messages/{created['id']}", json={"content": " "}, headers=ALICE)
        assert response.status_code == 422

    def test_missing(self, client):
        response = client.put("/messages/5", json={"content": "edited"}, headers=ALICE)
        assert response.status_code == 404

    def test_missing_caller(self, client):
        created = create_message(client, "hello")
        response = client.put(f"/messages/{created['id']}", json={"content": "edited"})
        assert response.status_code == 401


class TestDeleteMessage:
    """Test DELETE /messages/{id}."""

    def test_author_can_delete(self, client):
        created = create_message(client, "hello")

        response = client.delete(f"/messages/{created['id']}", headers=ALICE)

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert client.get(f"/messages/{created['id']}").status_code == 404

    def test_other_caller_forbidden(self, client):
        created = create_message(client, "hello")

        response = client.delete(f"/messages/{created['id']}", headers=BOB)

        assert response.status_code == 403
        assert client.get(f"/messages/{created['id']}").status_code == 200

    def test_delete_reply_unlinks(self, client):
        parent = create_message(client, "parent")
        child = create_message(client, "child", headers=BOB, parent_id=parent["id"])

        client.delete(f"/messages/{child['id']}", headers=BOB)

        assert client.get(f"/messages/{parent['id']}").json()["replies"] == []

    def test_ids_not_reused(self, client):
        first = create_message(client, "first")
        client.delete(f"/messages/{first['id']}", headers=ALICE)

        assert create_message(client, "second")["id"] == first["id"] + 1

    def test_missing(self, client):
        assert client.delete("/messages/1", headers=ALICE).status_code == 404


class TestLikeMessage:
    """Test POST /messages/{id}/like."""

    def test_like_twice(self, client):
        created = create_message(client, "hello")

        assert client.post(f"/messages/{created['id']}/like").status_code == 200
        assert client.post(f"/messages/{created['id']}/like", headers=ALICE).status_code == 200

        assert client.get(f"/messages/{created['id']}").json()["likes"] == 2

    def test_like_missing(self, client):
        assert client.post("/messages/8/like").status_code == 404


class TestSnapshotAcrossRestart:
    """Test that the store survives an app restart through the snapshot."""

    @pytest.fixture
    def database(self):
        Base.metadata.create_all(bind=engine)
        yield
        Base.metadata.drop_all(bind=engine)

    def test_restore_on_startup(self, database):
        app.state.message_store = MessageStore(clock=StepClock())
        with TestClient(app) as first_run:
            parent = create_message(first_run, "parent")
            create_message(first_run, "child", headers=BOB, parent_id=parent["id"])
            doomed = create_message(first_run, "doomed")
            first_run.delete(f"/messages/{doomed['id']}", headers=ALICE)
            first_run.post(f"/messages/{parent['id']}/like")

        # shutdown of the first run saved the snapshot
        app.state.message_store = MessageStore(clock=StepClock())
        with TestClient(app) as second_run:
            restored = second_run.get(f"/messages/{parent['id']}").json()
            assert restored["likes"] == 1
            assert restored["replies"] == [2]
            assert second_run.get("/authors/alice/message-count").json()["count"] == 1
            assert create_message(second_run, "after restart")["id"] == 4

            # restored authors still pass the ownership check
            edit = second_run.put(f"/messages/{parent['id']}", json={"content": "edited"}, headers=ALICE)
            assert edit.status_code == 200
            assert second_run.delete(f"/messages/{parent['id']}", headers=BOB).status_code == 403

    def test_fresh_database_starts_empty(self, database):
        app.state.message_store = MessageStore(clock=StepClock())
        with TestClient(app) as client:
            assert client.get("/messages").json()["total"] == 0


class TestRequestLogging:
    """Test the per-request JSON log line."""

    def test_request_log_carries_operation_fields(self, client, caplog):
        create_message(client, "hello")

        records = [r for r in caplog.records if r.name == "message_board.requests"]
        record = records[-1]
        assert record.caller == "alice"
        assert record.operation == "create_message"
        assert record.result == "ok"
        assert record.message_id == 1
        assert record.status == 201

    def test_failed_operation_logged_as_warning(self, client, caplog):
        client.get("/messages/77")

        record = [r for r in caplog.records if r.name == "message_board.requests"][-1]
        assert record.levelname == "WARNING"
        assert record.route == "/messages/{id}"
        assert record.result == "not_found"
        assert record.message_id == 77
