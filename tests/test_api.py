import asyncio
import json
import time
from typing import Callable

import pytest
from fastapi.testclient import TestClient

from offline_sync.errors import StorageError
from offline_sync.main import _sse_data_event, app, notifications_stream
from offline_sync.notifications import InMemoryNotificationSink
from offline_sync.storage.memory import MemoryOfflineStore


def _wait_for(predicate: Callable[[], bool], timeout_s: float = 3.0) -> bool:
    deadline = time.time() + timeout_s
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def _pending_count(client: TestClient) -> int:
    r = client.get("/messages/pending")
    assert r.status_code == 200
    return r.json()["count"]


def test_health_and_request_id_echo():
    with TestClient(app) as client:
        r = client.get("/health", headers={"X-Request-Id": "rid-1"})
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}
        assert r.headers.get("X-Request-Id") == "rid-1"

        r2 = client.get("/health")
        assert r2.headers.get("X-Request-Id")


def test_queue_then_sign_in_syncs_and_notifies_once():
    with TestClient(app) as client:
        r = client.post("/messages/queue", json={"chatId": "c1", "content": "hello", "role": "user"})
        assert r.status_code == 200, r.text
        message_id = r.json()["id"]

        pending = client.get("/messages/pending").json()
        assert pending["count"] == 1
        assert pending["messages"][0]["id"] == message_id
        assert pending["messages"][0]["pending"] is True

        # Signed out: manual sync is skipped
        skipped = client.post("/sync").json()
        assert skipped["skipped"] is True and skipped["reason"] == "unauthenticated"

        r = client.post("/auth/session", json={"userId": "u1", "accessToken": "jwt"})
        assert r.status_code == 200
        assert r.json()["sync"]["synced"] == 1

        assert _pending_count(client) == 0
        notes = client.get("/notifications").json()["notifications"]
        assert [n["description"] for n in notes] == ["1 offline message synced successfully"]
        assert app.state.remote.rows[message_id]["user_id"] == "u1"


def test_reconnect_drains_queue():
    with TestClient(app) as client:
        client.post("/auth/session", json={"userId": "u1"})
        r = client.post("/connectivity", json={"online": False})
        assert r.json() == {"online": False, "changed": True}

        client.post("/messages/queue", json={"chatId": "c1", "content": "one", "role": "user"})
        client.post("/messages/queue", json={"chatId": "c1", "content": "two", "role": "assistant", "mode": "study"})

        offline = client.post("/sync").json()
        assert offline["skipped"] is True and offline["reason"] == "offline"
        assert _pending_count(client) == 2

        r = client.post("/connectivity", json={"online": True})
        assert r.json()["changed"] is True
        assert _wait_for(lambda: _pending_count(client) == 0)
        assert client.get("/connectivity").json() == {"online": True}


def test_failed_entries_stay_queued_until_next_trigger():
    with TestClient(app) as client:
        client.post("/auth/session", json={"userId": "u1"})
        ok_id = client.post("/messages/queue", json={"chatId": "c1", "content": "ok", "role": "user"}).json()["id"]
        bad_id = client.post("/messages/queue", json={"chatId": "c1", "content": "bad", "role": "user"}).json()["id"]
        app.state.remote.fail_ids.add(bad_id)

        result = client.post("/sync").json()
        assert result["synced"] == 1 and result["failed"] == 1
        ids = [m["id"] for m in client.get("/messages/pending").json()["messages"]]
        assert ids == [bad_id]
        assert ok_id in app.state.remote.rows

        app.state.remote.fail_ids.clear()
        assert client.post("/sync").json()["synced"] == 1
        assert _pending_count(client) == 0


def test_background_sync_and_host_message_trigger_drain():
    with TestClient(app) as client:
        client.post("/auth/session", json={"userId": "u1"})

        client.post("/messages/queue", json={"chatId": "c1", "content": "bg", "role": "user"})
        r = client.post("/sync/background", json={"tag": "sync-messages"})
        assert r.json() == {"tag": "sync-messages", "clientsNotified": 1}
        assert _wait_for(lambda: _pending_count(client) == 0)

        assert client.post("/sync/background", json={"tag": "other"}).json()["clientsNotified"] == 0

        client.post("/messages/queue", json={"chatId": "c1", "content": "msg", "role": "user"})
        assert client.post("/sync/host-message", json={"type": "SYNC_MESSAGES"}).json() == {"accepted": True}
        assert _wait_for(lambda: _pending_count(client) == 0)

        assert client.post("/sync/host-message", json={"type": "PUSH"}).json() == {"accepted": False}


def test_manual_clear_and_validation_errors():
    with TestClient(app) as client:
        mid = client.post("/messages/queue", json={"chatId": "c1", "content": "x", "role": "user"}).json()["id"]
        assert client.delete(f"/messages/pending/{mid}").json() == {"removed": mid}
        assert client.delete(f"/messages/pending/{mid}").status_code == 200
        assert _pending_count(client) == 0

        bad_role = client.post("/messages/queue", json={"chatId": "c1", "content": "x", "role": "system"})
        assert bad_role.status_code == 400
        missing = client.post("/messages/queue", json={"content": "x", "role": "user"})
        assert missing.status_code == 400
        not_json = client.post("/messages/queue", content=b"{oops", headers={"Content-Type": "application/json"})
        assert not_json.status_code == 400
        assert client.post("/connectivity", json={"online": "yes"}).status_code == 400
        assert client.post("/auth/session", json={}).status_code == 400


def test_chat_cache_endpoints():
    with TestClient(app) as client:
        r = client.post("/chats/sync", json={"chats": [
            {"id": "a", "name": "A", "mode": "chat", "updatedAt": "2024-01-01T00:00:00.000Z"},
            {"id": "b", "name": "B", "mode": "chat", "updatedAt": "2024-02-01T00:00:00.000Z"},
        ]})
        assert r.json() == {"count": 2}
        client.post("/chats", json={"id": "c", "name": "C", "mode": "study", "updatedAt": "2024-03-01T00:00:00.000Z"})
        assert [c["id"] for c in client.get("/chats").json()["chats"]] == ["c", "b", "a"]

        r = client.post("/chats/a/messages/sync", json={"messages": [
            {"id": "m2", "content": "later", "role": "assistant", "createdAt": "2024-01-01T00:00:02.000Z"},
            {"id": "m1", "content": "first", "role": "user", "createdAt": "2024-01-01T00:00:01.000Z"},
        ]})
        assert r.json() == {"count": 2}
        saved = client.post("/chats/a/messages", json={"id": "m3", "content": "third", "role": "user",
                                                        "createdAt": "2024-01-01T00:00:03.000Z"})
        assert saved.json()["chatId"] == "a"
        msgs = client.get("/chats/a/messages").json()["messages"]
        assert [m["id"] for m in msgs] == ["m1", "m2", "m3"]

        client.delete("/chats/a")
        assert [c["id"] for c in client.get("/chats").json()["chats"]] == ["c", "b"]
        assert client.get("/chats/a/messages").json()["messages"] == []
        # Cache never feeds the pending queue
        assert _pending_count(client) == 0

        assert client.post("/chats/sync", json={"chats": "nope"}).status_code == 400
        assert client.post("/chats/a/messages", json={"id": "m4", "content": "x", "role": "bot"}).status_code == 400


def test_metrics_exposes_sync_counters():
    with TestClient(app) as client:
        client.post("/auth/session", json={"userId": "u1"})
        client.post("/sync")
        r = client.get("/metrics")
        assert r.status_code == 200
        assert "wiser_sync_drains_total" in r.text
        assert "wiser_http_requests_total" in r.text


def test_sse_data_event_framing():
    assert _sse_data_event('{"a": 1}') == 'data: {"a": 1}\n\n'
    assert _sse_data_event("one\ntwo") == "data: one\ndata: two\n\n"
    assert _sse_data_event("") == "data: \n\n"


def test_queue_rejects_non_string_mode_on_sqlite(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SYNC_STORE_BACKEND", "sqlite")
    monkeypatch.setenv("SYNC_DB_PATH", str(tmp_path / "bridge.db"))
    with TestClient(app) as client:
        r = client.post("/messages/queue", json={"chatId": "c1", "content": "x", "role": "user", "mode": {"a": 1}})
        assert r.status_code == 400
        assert r.json()["detail"] == "mode must be a string"

        r = client.post("/chats/c1/messages", json={"id": "m1", "content": "x", "role": "user", "mode": 7})
        assert r.status_code == 400
        r = client.post("/chats/c1/messages/sync", json={"messages": [
            {"id": "m1", "content": "x", "role": "user", "mode": ["chat"]},
        ]})
        assert r.status_code == 400
        r = client.post("/chats", json={"id": "c1", "name": "C", "mode": {"kind": "chat"}})
        assert r.status_code == 400

        ok = client.post("/messages/queue", json={"chatId": "c1", "content": "x", "role": "user", "mode": "study"})
        assert ok.status_code == 200
        assert _pending_count(client) == 1


def test_storage_failure_maps_to_503():
    class BrokenStore(MemoryOfflineStore):
        async def list_all(self):
            raise StorageError("list_all", "disk I/O error")

        async def remove(self, message_id):
            raise StorageError("remove", "readonly database")

    with TestClient(app) as client:
        app.state.store = BrokenStore()

        r = client.get("/messages/pending")
        assert r.status_code == 503
        body = r.json()
        assert body["operation"] == "list_all"
        assert "disk I/O error" in body["detail"]

        r = client.delete("/messages/pending/m1")
        assert r.status_code == 503
        assert r.json()["operation"] == "remove"


class _ConnectedRequest:
    async def is_disconnected(self) -> bool:
        return False


@pytest.mark.asyncio
async def test_notification_stream_emits_drain_notification(monkeypatch: pytest.MonkeyPatch):
    from offline_sync.auth import AuthState
    from offline_sync.connectivity import ConnectivityObserver
    from offline_sync.models import OfflineMessage
    from offline_sync.remote.mock import MockMessageWriter
    from offline_sync.worker import ReconciliationWorker

    sink = InMemoryNotificationSink()
    store = MemoryOfflineStore()
    worker = ReconciliationWorker(
        store, MockMessageWriter(), ConnectivityObserver(online=True),
        AuthState(user_id="u1"), sink, online_delay_seconds=0,
    )
    monkeypatch.setattr(app.state, "notifications", sink, raising=False)

    response = await notifications_stream(_ConnectedRequest())
    assert response.media_type == "text/event-stream"
    events = response.body_iterator
    first = asyncio.ensure_future(events.__anext__())
    await asyncio.sleep(0.01)
    assert len(sink._listeners) == 1

    await store.enqueue(OfflineMessage.create("c1", "hello", "user"))
    result = await worker.sync_pending_messages()
    assert result.synced == 1

    chunk = await asyncio.wait_for(first, timeout=1.0)
    assert chunk.startswith("data: ") and chunk.endswith("\n\n")
    item = json.loads(chunk[len("data: "):].strip())
    assert item["title"] == "Messages Synced"
    assert item["description"] == "1 offline message synced successfully"

    await events.aclose()
    assert len(sink._listeners) == 0
