"""FastAPI application entry point for the AETHER AI service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from config.settings import settings
from aether.agents.orchestrator import orchestrator
from aether.api.websocket import ws_manager
from aether.api.routes.ai import router as ai_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
# Quiet noisy loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("aiosqlite").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    logger.info(f"Starting {settings.app_name} (controller at {settings.aether_core_url})")

    try:
        await orchestrator.start()
    except Exception as e:
        logger.warning(f"Orchestrator start error (non-fatal): {e}")

    logger.info(f"{settings.app_name} is ready")
    yield

    logger.info("Shutting down...")
    try:
        await orchestrator.stop()
    except Exception as e:
        logger.warning(f"Orchestrator shutdown error: {e}")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    lifespan=lifespan,
)

# CORS for the console frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ai_router, prefix="/api")


@app.get("/api/v1/health")
async def health_check():
    """Health check endpoint."""
    config = orchestrator.get_config()
    return {
        "status": "healthy",
        "ai_mode": config["mode"],
        "reachability": config["reachability"],
        "websocket_connections": ws_manager.connection_count,
        "orchestrator": orchestrator.info,
        "backend_probe": orchestrator.arbiter.info,
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Real-time feed of executed actions and agent status."""
    await ws_manager.connect(websocket)
    try:
        await ws_manager.send_to(websocket, "initial_state", {
            "orchestrator": orchestrator.info,
            "config": orchestrator.get_config(),
            "recent_actions": orchestrator.get_audit_log(20),
        })

        while True:
            data = await websocket.receive_text()
            logger.debug(f"WS received: {data}")
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        await ws_manager.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "aether.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
