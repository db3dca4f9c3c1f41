import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi_mcp import FastApiMCP

from config import CORS_ORIGINS, ENABLE_MCP, LOG_LEVEL
from mongo import db, ensure_indexes
from routers import (
    appointment_routes,
    auth_routes,
    conversation_routes,
    dashboard_routes,
    live_routes,
    navigation_routes,
    profile_routes,
    record_routes,
)

logger = logging.getLogger(__name__)

# Operations an assistant may call as tools
MCP_OPERATIONS = [
    "list_doctors",
    "available_slots",
    "book_appointment",
    "list_appointments",
    "cancel_appointment",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(db)
    except Exception as e:
        logging.error(f"Could not ensure MongoDB indexes: {str(e)}")
    yield


def create_app(enable_mcp: Optional[bool] = None) -> FastAPI:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="MediConnect", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", operation_id="health")
    def health():
        return {"status": "ok"}

    app.include_router(auth_routes.router)
    app.include_router(navigation_routes.router)
    app.include_router(profile_routes.router)
    app.include_router(dashboard_routes.router)
    app.include_router(appointment_routes.router)
    app.include_router(conversation_routes.router)
    app.include_router(record_routes.router)
    app.include_router(live_routes.router)

    if enable_mcp is None:
        enable_mcp = ENABLE_MCP
    if enable_mcp:
        mcp = FastApiMCP(app, include_operations=MCP_OPERATIONS)
        mcp.mount_http()
        logger.info(f"MCP tools mounted: {', '.join(MCP_OPERATIONS)}")

    return app


app = create_app()
