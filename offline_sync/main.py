"""Local host bridge for the offline sync core.

The app shell (browser wrapper, service worker, desktop webview) reports
connectivity and auth changes here, queues messages it could not send, relays
background-sync wake-ups, and reads back pending state and notifications.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import StreamingResponse

from offline_sync.auth import AuthState
from offline_sync.config import SyncSettings
from offline_sync.connectivity import ConnectivityObserver
from offline_sync.errors import StorageError
from offline_sync.log import get_logger, log_event
from offline_sync.metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL
from offline_sync.middleware.request_id import RequestIdMiddleware
from offline_sync.models import MESSAGE_ROLES, OfflineChat, OfflineMessage
from offline_sync.notifications import InMemoryNotificationSink
from offline_sync.remote.factory import get_remote_writer
from offline_sync.storage.factory import get_offline_store
from offline_sync.wake import BackgroundSyncRegistry, BackgroundWakeSignal
from offline_sync.worker import ReconciliationWorker

logger = get_logger("wiser.offline.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    settings = SyncSettings.from_env()
    app.state.settings = settings  # type: ignore[attr-defined]
    app.state.store = get_offline_store(settings)  # type: ignore[attr-defined]
    app.state.remote = get_remote_writer(settings)  # type: ignore[attr-defined]
    app.state.connectivity = ConnectivityObserver(online=settings.assume_online)  # type: ignore[attr-defined]
    app.state.auth = AuthState()  # type: ignore[attr-defined]
    app.state.notifications = InMemoryNotificationSink(keep=settings.notifications_keep)  # type: ignore[attr-defined]
    app.state.background_sync = BackgroundSyncRegistry()  # type: ignore[attr-defined]
    app.state.wake = BackgroundWakeSignal(app.state.background_sync)  # type: ignore[attr-defined]
    app.state.worker = ReconciliationWorker(  # type: ignore[attr-defined]
        app.state.store,
        app.state.remote,
        app.state.connectivity,
        app.state.auth,
        app.state.notifications,
        wake=app.state.wake,
        online_delay_seconds=settings.online_delay_seconds,
        remote_timeout_seconds=settings.remote_timeout_seconds,
    )
    log_event(
        logger, logging.INFO, "offline_sync_config",
        store=app.state.store.backend_name,
        remote=app.state.remote.provider_name,
        onlineDelaySeconds=settings.online_delay_seconds,
        remoteTimeoutSeconds=settings.remote_timeout_seconds,
    )
    await app.state.worker.start()

    try:
        yield
    finally:
        # Shutdown
        await app.state.worker.stop()
        app.state.store.close()


app = FastAPI(
    title="Wiser Offline Sync",
    description="Offline message queue and reconnect reconciliation for the Wiser AI chat app.",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(RequestIdMiddleware)


# HTTP metrics middleware
@app.middleware("http")
async def _http_metrics_middleware(request: Request, call_next):
    t0 = time.perf_counter()
    method = request.method
    path = request.url.path
    status_code = 500
    try:
        response = await call_next(request)
        status_code = getattr(response, "status_code", 500)
        return response
    finally:
        status_class = f"{status_code // 100}xx"
        HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status_class=status_class).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(time.perf_counter() - t0)


def _sse_data_event(text: str) -> str:
    """
    Encode text as a well-formed SSE data event.
    Splits on newlines and prefixes each with 'data: ', ending with a blank line.
    """
    lines = str(text).splitlines()
    if not lines:
        return "data: \n\n"
    return "".join(f"data: {line}\n" for line in lines) + "\n"


async def _json_object(request: Request) -> Optional[Dict[str, Any]]:
    try:
        payload = await request.json()
    except Exception:
        return None
    return payload if isinstance(payload, dict) else None


def _bad_request(detail: str) -> JSONResponse:
    return JSONResponse({"detail": detail}, status_code=400)


def _storage_unavailable(e: StorageError) -> JSONResponse:
    log_event(logger, logging.ERROR, "storage_error", operation=e.operation, error=str(e))
    return JSONResponse({"detail": str(e), "operation": e.operation}, status_code=503)


@app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
async def health():
    return {"status": "ok"}


@app.get("/metrics", tags=["meta"], include_in_schema=False)
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# -----------------------------
# Host signals: connectivity and auth
# -----------------------------

@app.get("/connectivity", tags=["host"], description="Current online status as last reported by the host.")
async def connectivity_get():
    return {"online": app.state.connectivity.is_online()}


@app.post("/connectivity", tags=["host"], description="Host online/offline event.")
async def connectivity_post(request: Request):
    payload = await _json_object(request)
    if payload is None:
        return _bad_request("Invalid JSON body")
    online = payload.get("online")
    if not isinstance(online, bool):
        return _bad_request("online must be a boolean")
    changed = app.state.connectivity.set_online(online)
    return {"online": online, "changed": changed}


@app.post("/auth/session", tags=["host"], description="Report the signed-in user.")
async def auth_sign_in(request: Request):
    payload = await _json_object(request)
    if payload is None:
        return _bad_request("Invalid JSON body")
    user_id = payload.get("userId")
    if not user_id or not isinstance(user_id, str):
        return _bad_request("userId is required")
    app.state.auth.sign_in(user_id, payload.get("accessToken"))
    result = await app.state.worker.handle_auth_change()
    return {"authenticated": True, "sync": result.to_dict() if result else None}


@app.delete("/auth/session", tags=["host"], description="Report sign-out.")
async def auth_sign_out():
    app.state.auth.sign_out()
    return {"authenticated": False}


# -----------------------------
# Pending queue
# -----------------------------

@app.post("/messages/queue", tags=["queue"], description="Queue a message that could not be written remotely.")
async def messages_queue(request: Request):
    payload = await _json_object(request)
    if payload is None:
        return _bad_request("Invalid JSON body")
    chat_id = payload.get("chatId")
    role = payload.get("role")
    content = payload.get("content")
    if not chat_id or not isinstance(content, str):
        return _bad_request("chatId and content are required")
    if role not in MESSAGE_ROLES:
        return _bad_request(f"role must be one of {', '.join(MESSAGE_ROLES)}")
    mode = payload.get("mode")
    if mode is not None and not isinstance(mode, str):
        return _bad_request("mode must be a string")
    try:
        message_id = await app.state.worker.queue_offline_message(chat_id, content, role, mode)
    except ValueError as e:
        return _bad_request(str(e))
    except StorageError as e:
        return _storage_unavailable(e)
    return {"id": message_id}


@app.get("/messages/pending", tags=["queue"], description="Every message still waiting to be synced.")
async def messages_pending():
    try:
        pending = await app.state.store.list_all()
    except StorageError as e:
        return _storage_unavailable(e)
    return {"messages": [m.to_dict() for m in pending], "count": len(pending)}


@app.delete("/messages/pending/{message_id}", tags=["queue"], description="Manually clear a queued message.")
async def messages_pending_delete(message_id: str):
    try:
        await app.state.store.remove(message_id)
    except StorageError as e:
        return _storage_unavailable(e)
    return {"removed": message_id}


# -----------------------------
# Sync triggers
# -----------------------------

@app.post("/sync", tags=["sync"], description="Run a drain now; dropped if one is already running.")
async def sync_now():
    result = await app.state.worker.sync_pending_messages()
    return result.to_dict()


@app.post("/sync/host-message", tags=["sync"], description="Message posted by the host's background context.")
async def sync_host_message(request: Request):
    payload = await _json_object(request)
    if payload is None:
        return _bad_request("Invalid JSON body")
    accepted = app.state.wake.handle_host_message(payload)
    return {"accepted": accepted}


@app.post("/sync/background", tags=["sync"], description="Host background sync event for a registered tag.")
async def sync_background(request: Request):
    payload = await _json_object(request)
    if payload is None:
        return _bad_request("Invalid JSON body")
    tag = payload.get("tag")
    if not tag or not isinstance(tag, str):
        return _bad_request("tag is required")
    notified = app.state.background_sync.dispatch(tag)
    return {"tag": tag, "clientsNotified": notified}


# -----------------------------
# Notifications
# -----------------------------

@app.get("/notifications", tags=["notifications"], description="Recent user-facing notifications.")
async def notifications_recent():
    return {"notifications": app.state.notifications.recent()}


@app.get("/notifications/stream", tags=["notifications"], description="Notifications as server-sent events.")
async def notifications_stream(request: Request):
    sink: InMemoryNotificationSink = app.state.notifications

    async def _gen():
        q = sink.listen()
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    item = await asyncio.wait_for(q.get(), timeout=15.0)
                except asyncio.TimeoutError:
                    # SSE comment as keepalive
                    yield ": keepalive\n\n"
                    continue
                yield _sse_data_event(json.dumps(item))
        finally:
            sink.unlisten(q)

    return StreamingResponse(_gen(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})


# -----------------------------
# Local chat cache
# -----------------------------

def _parse_chats(items: Any) -> Optional[List[OfflineChat]]:
    if not isinstance(items, list):
        return None
    try:
        return [OfflineChat.from_dict(c) for c in items if isinstance(c, dict)]
    except ValueError:
        return None


def _parse_messages(items: Any, chat_id: str) -> Optional[List[OfflineMessage]]:
    if not isinstance(items, list):
        return None
    try:
        return [OfflineMessage.from_dict({**m, "chatId": chat_id}) for m in items if isinstance(m, dict)]
    except ValueError:
        return None


@app.get("/chats", tags=["cache"], description="Cached chats, most recently updated first.")
async def chats_list():
    try:
        chats = await app.state.store.get_chats()
    except StorageError as e:
        return _storage_unavailable(e)
    return {"chats": [c.to_dict() for c in chats]}


@app.post("/chats", tags=["cache"], description="Cache one chat.")
async def chats_save(request: Request):
    payload = await _json_object(request)
    if payload is None:
        return _bad_request("Invalid JSON body")
    try:
        chat = OfflineChat.from_dict(payload)
    except ValueError as e:
        return _bad_request(str(e))
    try:
        await app.state.store.save_chat(chat)
    except StorageError as e:
        return _storage_unavailable(e)
    return chat.to_dict()


@app.post("/chats/sync", tags=["cache"], description="Bulk cache chats fetched from the server.")
async def chats_sync(request: Request):
    payload = await _json_object(request)
    if payload is None:
        return _bad_request("Invalid JSON body")
    chats = _parse_chats(payload.get("chats"))
    if chats is None:
        return _bad_request("chats must be a list of chat objects")
    try:
        await app.state.store.sync_chats_from_server(chats)
    except StorageError as e:
        return _storage_unavailable(e)
    return {"count": len(chats)}


@app.delete("/chats/{chat_id}", tags=["cache"], description="Drop a cached chat and its cached messages.")
async def chats_delete(chat_id: str):
    try:
        await app.state.store.delete_chat(chat_id)
    except StorageError as e:
        return _storage_unavailable(e)
    return {"deleted": chat_id}


@app.get("/chats/{chat_id}/messages", tags=["cache"], description="Cached messages of a chat, oldest first.")
async def chat_messages_list(chat_id: str):
    try:
        msgs = await app.state.store.get_messages(chat_id)
    except StorageError as e:
        return _storage_unavailable(e)
    return {"messages": [m.to_dict() for m in msgs]}


@app.post("/chats/{chat_id}/messages", tags=["cache"], description="Cache one message.")
async def chat_messages_save(chat_id: str, request: Request):
    payload = await _json_object(request)
    if payload is None:
        return _bad_request("Invalid JSON body")
    try:
        msg = OfflineMessage.from_dict({**payload, "chatId": chat_id})
    except ValueError as e:
        return _bad_request(str(e))
    try:
        await app.state.store.save_message(msg)
    except StorageError as e:
        return _storage_unavailable(e)
    return msg.with_pending(False).to_dict()


@app.post("/chats/{chat_id}/messages/sync", tags=["cache"], description="Bulk cache messages fetched from the server.")
async def chat_messages_sync(chat_id: str, request: Request):
    payload = await _json_object(request)
    if payload is None:
        return _bad_request("Invalid JSON body")
    msgs = _parse_messages(payload.get("messages"), chat_id)
    if msgs is None:
        return _bad_request("messages must be a list of message objects")
    try:
        await app.state.store.sync_messages_from_server(chat_id, msgs)
    except StorageError as e:
        return _storage_unavailable(e)
    return {"count": len(msgs)}


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema["tags"] = [
        {"name": "meta", "description": "Service metadata and liveness"},
        {"name": "host", "description": "Connectivity and auth signals from the app shell"},
        {"name": "queue", "description": "Pending offline messages"},
        {"name": "sync", "description": "Reconciliation triggers and background wake"},
        {"name": "notifications", "description": "User-facing sync notifications"},
        {"name": "cache", "description": "Local chat and message cache"},
    ]
    openapi_schema["servers"] = [
        {"url": "http://localhost:8000", "description": "Local dev"}
    ]
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi  # type: ignore[assignment]
