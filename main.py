from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1 import conversations, notifications, realtime_websocket
from app.core.config import settings
from app.core.database import SessionLocal
from app.core.logging import configure_logging
from app.core.redis import close_redis_client, get_redis_client
from app.middleware.logging import LoggingMiddleware
from app.realtime import ChannelHub, ChatStore, RealtimeContext, RedisRelay


def create_app(session_factory=None, use_redis: bool = True) -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        hub = ChannelHub()
        store = ChatStore(session_factory or SessionLocal, hub)
        relay = None
        if use_redis:
            redis_client = await get_redis_client()
            if redis_client is not None:
                relay = RedisRelay(hub, redis_client, settings.REALTIME_RELAY_CHANNEL)
                await relay.start()

        app.state.realtime = RealtimeContext(hub=hub, store=store, relay=relay)
        try:
            yield
        finally:
            if relay is not None:
                await relay.stop()
            await hub.close()
            if use_redis:
                await close_redis_client()

    app = FastAPI(
        title="Betting Social Realtime",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware - must be added before other middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Middleware
    app.add_middleware(LoggingMiddleware)

    # API routes
    prefix = settings.API_V1_PREFIX
    app.include_router(conversations.router, prefix=prefix)
    app.include_router(notifications.router, prefix=prefix)
    app.include_router(realtime_websocket.router, prefix=prefix)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        realtime = getattr(app.state, "realtime", None)
        return {
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "channels": len(realtime.hub.channel_names()) if realtime else 0,
            "relay": realtime is not None and realtime.relay is not None,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import os
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
