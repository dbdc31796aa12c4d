"""Main FastAPI application - WebSocket support relay with a single event consumer"""
import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from support_relay.api import router as api_router
from support_relay.config import Settings, settings
from support_relay.database.chat_database import ChatDatabase
from support_relay.events.consumer import EventConsumer
from support_relay.events.conversation_index import ConversationIndex
from support_relay.events.lifecycle import SessionLifecycle
from support_relay.events.publisher import EventPublisher
from support_relay.events.router import MessageRouter
from support_relay.events.typing_broadcaster import TypingBroadcaster
from support_relay.websocket.connection_registry import ConnectionRegistry
from support_relay.websocket.handler import handle_websocket_connection

logger = logging.getLogger(__name__)


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build the app; every component shares one registry and one conversation index"""
    cfg = app_settings or settings

    db = ChatDatabase(cfg.DATABASE_PATH, history_limit=cfg.HISTORY_LIMIT)
    event_queue: asyncio.Queue = asyncio.Queue()
    publisher = EventPublisher(event_queue)
    registry = ConnectionRegistry()
    index = ConversationIndex()
    lifecycle = SessionLifecycle(registry, db, index, pin_roles=cfg.PIN_ROLES)
    message_router = MessageRouter(registry, db, index)
    typing = TypingBroadcaster(registry)
    consumer = EventConsumer(event_queue, lifecycle, message_router, typing)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the store, rebuild the conversation index, run the consumer"""
        await db.init()
        index.rebuild(await db.list_admin_messages())

        consumer_task = asyncio.create_task(consumer.consume())
        logger.info("Event consumer started")

        yield

        consumer_task.cancel()
        await db.close()
        logger.info("Application shutdown complete")

    app = FastAPI(title="Support Relay", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db = db
    app.state.registry = registry
    app.state.index = index
    app.state.lifecycle = lifecycle

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug("Rejected request to %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"error": "Invalid request data"})

    app.include_router(api_router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """WebSocket endpoint that delegates to handler"""
        await handle_websocket_connection(websocket, publisher, cfg.SEND_QUEUE_SIZE)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
