import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from syncstream import __version__
from syncstream.config import settings
from syncstream.error_handlers import register_exception_handlers
from syncstream.routers import rooms_router, websocket_router
from syncstream.routers.websocket import ConnectionManager
from syncstream.services.chat_relay import ChatRelay
from syncstream.services.dispatcher import ConnectionDispatcher
from syncstream.services.membership import MembershipManager
from syncstream.services.playback_sync import PlaybackSyncEngine
from syncstream.services.room_lifecycle import RoomLifecycle
from syncstream.services.room_store import close_room_store, get_room_store
from syncstream.utils.logging_config import fastapi_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    # Setup logging first
    setup_logging()
    fastapi_logger.info(f"Starting {settings.APP_NAME}")

    store = get_room_store()
    health = await store.health_check()
    if health["redis_connected"]:
        fastapi_logger.info("Room store connected to Redis")
    else:
        fastapi_logger.warning("Redis not available, using in-memory room store")

    manager = ConnectionManager()
    lifecycle = RoomLifecycle(store)
    chat = ChatRelay(store, lifecycle, manager)
    membership = MembershipManager(store, lifecycle, chat, manager)
    playback = PlaybackSyncEngine(store, lifecycle, membership, chat, manager)

    app.state.room_store = store
    app.state.connection_manager = manager
    app.state.lifecycle = lifecycle
    app.state.dispatcher = ConnectionDispatcher(lifecycle, membership, playback, chat, manager)

    # Start idle room sweep
    cleanup_task = asyncio.create_task(lifecycle.run_cleanup_loop())
    fastapi_logger.info("Idle room cleanup task started")
    yield
    # Shutdown
    fastapi_logger.info("Shutting down application")
    cleanup_task.cancel()
    with suppress(asyncio.CancelledError):
        await cleanup_task
    await close_room_store()
    fastapi_logger.info("Room store closed")


app = FastAPI(
    title=settings.APP_NAME,
    description="Shared watch rooms: playback sync, participants and chat",
    version=__version__,
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global Exception Handlers
register_exception_handlers(app)

# API Routers
app.include_router(rooms_router)
app.include_router(websocket_router)


# Health Check
@app.get("/health")
async def health_check(request: Request):
    store_health = await request.app.state.room_store.health_check()
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "store": store_health,
        "connections": len(request.app.state.connection_manager.connections),
    }


@app.get("/ready")
async def readiness_check(request: Request):
    store_health = await request.app.state.room_store.health_check()
    return {
        "status": "ready",
        "redis_connected": store_health["redis_connected"],
        "using_fallback": store_health["using_fallback"],
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("syncstream.main:app", host="0.0.0.0", port=8005, reload=settings.DEBUG)
