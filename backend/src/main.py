import json
import uuid
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from models import (
    ChatError,
    Connection,
    DeliveryError,
    DuplicateConnectionError,
    InvalidArgumentError,
    Message,
    NotFoundError,
    PersistenceError,
    WebSocketChannel,
)
from schemas import CountResponse, CreateMessageRequest, WSIncoming
from services import BroadcastHub, ConnectionRegistry, QueryService
from store import MessageStore, SqlMessageStore
from utilities import (
    ANONYMOUS_IDENTITY,
    DATABASE_URL,
    DEFAULT_TOPIC,
    HOST,
    PORT,
    make_ack,
    make_error,
    make_info,
    make_pong,
    setup_logging,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (NotFoundError, 404),
    (InvalidArgumentError, 400),
    (DuplicateConnectionError, 409),
    (PersistenceError, 503),
]

WS_TYPES = ("publish", "subscribe", "unsubscribe", "ping")


def status_for(exc: ChatError) -> int:
    for kind, status in STATUS_BY_ERROR:
        if isinstance(exc, kind):
            return status
    return 500


def create_app(
    store: Optional[MessageStore] = None,
    registry: Optional[ConnectionRegistry] = None,
    database_url: str = DATABASE_URL,
    default_topic: str = DEFAULT_TOPIC,
) -> FastAPI:
    setup_logging()

    # explicit ownership: one store and one registry per application
    owns_store = store is None
    store = store or SqlMessageStore(database_url)
    registry = registry or ConnectionRegistry(default_topic)
    hub = BroadcastHub(store, registry, default_topic=default_topic)
    query = QueryService(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.create_schema()
        logger.info("chat hub started, default topic %r", default_topic)
        yield
        await hub.close()
        if owns_store:
            store.dispose()
        logger.info("chat hub stopped")

    app = FastAPI(title="Chat broadcast hub", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.store = store
    app.state.registry = registry
    app.state.hub = hub
    app.state.query = query
    start_ts = datetime.now(timezone.utc)

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        return JSONResponse(
            status_code=status_for(exc),
            content={"error": {"code": exc.code, "message": exc.message}},
        )

    # -------------- WebSocket handling --------------
    async def handle_frame(connection: Connection, data: str) -> dict:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            return make_error(None, "BAD_REQUEST", "invalid json")
        if not isinstance(payload, dict):
            return make_error(None, "BAD_REQUEST", "frame must be a JSON object")

        typ = payload.get("type")
        request_id = payload.get("request_id")
        if not isinstance(request_id, str):
            request_id = None
        if typ not in WS_TYPES:
            return make_error(request_id, "BAD_REQUEST", f"unknown type: {typ}")
        try:
            frame = WSIncoming.model_validate(payload)
        except ValidationError as exc:
            return make_error(request_id, "BAD_REQUEST", exc.errors()[0]["msg"])

        if frame.type == "ping":
            return make_pong(request_id)

        topic = frame.topic or default_topic
        try:
            if frame.type == "publish":
                message = await hub.publish(frame.content or "", frame.sender or connection.identity, topic)
                return make_ack(request_id, topic, message=message.model_dump())
            if not frame.topic:
                raise InvalidArgumentError("topic required")
            if frame.type == "subscribe":
                await registry.subscribe(connection.connection_id, frame.topic)
            else:
                await registry.unsubscribe(connection.connection_id, frame.topic)
            return make_ack(request_id, frame.topic)
        except ChatError as exc:
            return make_error(request_id, exc.code, exc.message, topic)

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket, client_id: Optional[str] = None, sender: Optional[str] = None):
        await ws.accept()
        connection_id = client_id or uuid.uuid4().hex
        try:
            connection = await hub.connect(WebSocketChannel(ws), connection_id, identity=sender or ANONYMOUS_IDENTITY)
        except DuplicateConnectionError as exc:
            await ws.send_text(json.dumps(make_error(None, exc.code, exc.message)))
            await ws.close(code=1008)
            return

        try:
            hello = make_info(default_topic, "connected")
            hello["connection_id"] = connection_id
            await connection.reply(hello)
            while True:
                data = await ws.receive_text()
                await connection.reply(await handle_frame(connection, data))
        except WebSocketDisconnect:
            pass
        except DeliveryError:
            # outbound side broke; the hub is already evicting this connection
            pass
        except Exception:
            logger.exception("connection %s failed", connection_id)
            await connection.channel.close(code=1011)
        finally:
            await hub.release(connection)

    # -------------- REST endpoints --------------
    @app.get("/api/messages", response_model=List[Message])
    async def rest_messages(sender: Optional[str] = None, limit: Optional[int] = None):
        if sender is not None:
            messages = await query.by_sender(sender)
            if limit is not None:
                if limit <= 0:
                    raise InvalidArgumentError(f"limit must be positive, got {limit}")
                messages = messages[-limit:]
            return messages
        if limit is not None:
            return await query.recent(limit)
        return await query.list_all().to_list()

    @app.get("/api/messages/list", response_model=List[Message])
    async def rest_list_messages():
        return await query.list_all().to_list()

    @app.get("/api/messages/stream")
    async def rest_stream_messages():
        async def lines():
            async for message in query.list_all():
                yield message.model_dump_json() + "\n"
        return StreamingResponse(lines(), media_type="application/x-ndjson")

    @app.post("/api/messages/send", status_code=201, response_model=Message)
    async def rest_send_message(req: CreateMessageRequest):
        return await hub.publish(req.content, req.sender, req.topic)

    @app.get("/api/messages/count", response_model=CountResponse)
    async def rest_count_messages():
        return {"count": await query.count()}

    @app.get("/api/messages/sender/{sender}", response_model=List[Message])
    async def rest_messages_by_sender(sender: str):
        return await query.by_sender(sender)

    @app.get("/api/messages/recent", response_model=List[Message])
    async def rest_recent_messages(limit: int = 20):
        return await query.recent(limit)

    @app.get("/api/messages/{message_id}", response_model=Message)
    async def rest_message_by_id(message_id: int):
        return await query.by_id(message_id)

    @app.get("/health")
    async def rest_health():
        now = datetime.now(timezone.utc)
        uptime_sec = int((now - start_ts).total_seconds())
        connections = await registry.connections()
        topics = await registry.topic_counts()
        return {"uptime_sec": uptime_sec, "topics": len(topics), "connections": len(connections)}

    @app.get("/stats")
    async def rest_stats():
        return {"topics": await hub.stats()}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host=HOST, port=PORT)
