"""Chatbox Backend Application.

This is the main entry point for the Chatbox backend service: account
endpoints, room and history endpoints, and the WebSocket endpoint that carries
live messages, room broadcasts and typing indicators.

Modules:
    - auth: Signup, login, bearer tokens
    - chat: WebSocket sessions, presence, typing state and message fanout
    - rooms: Dashboard, room creation and room history
    - store: DuckDB persistence for users, rooms and messages
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatbox.auth.dependencies import get_token_service
from chatbox.auth.router import router as auth_router
from chatbox.chat.manager import ChatManager, get_chat_manager, set_chat_manager
from chatbox.chat.router import router as chat_router
from chatbox.config import get_config
from chatbox.errors import ChatError
from chatbox.rooms.router import router as rooms_router
from chatbox.store import ChatStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn logs every WebSocket handshake at INFO
for _noisy in ("websockets", "websockets.server"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in chatbox.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    store = ChatStore.get_instance(config.database.path)
    manager = ChatManager(store=store, tokens=get_token_service(), config=config)
    set_chat_manager(manager)
    await manager.start()
    logger.info(
        "Chatbox ready on http://%s:%s (db=%s)",
        config.server.host, config.server.port, config.database.path,
    )

    yield  # Application runs here

    # Shutdown
    await manager.shutdown()
    set_chat_manager(None)
    ChatStore.reset_instance()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Chatbox API",
    description="Real-time chat backend: accounts, rooms, direct messages and presence",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"message": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:]) or "body"
    return JSONResponse(
        {"message": f"Invalid {field}: {first.get('msg', 'invalid value')}"},
        status_code=422,
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"message": "Internal Server Error"}, status_code=500)


# Register all routers
app.include_router(auth_router)
app.include_router(rooms_router)
app.include_router(chat_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object plus the number of users currently online.
    """
    return {"status": "ok", "online": len(get_chat_manager().presence)}


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    config = get_config()
    uvicorn.run(
        "chatbox.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    run()
