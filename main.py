"""
FastAPI server for pointstream.

Streams viewport-bounded samples of a large point dataset to viewers over a
websocket, and persists rectangle selections made in the viewer as named
subsets of the full dataset.

Endpoints:
- WS  /ws                      streaming channel (metadata, query, save_selection, ping)
- GET /                        server info
- GET /api/health              health check
- GET /api/ws/stats            active sessions
- GET /api/selections[/{name}] persisted selections
"""

import asyncio
import os
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse

from backend.app_config import ServerConfig, load_server_config
from backend.query_backend import DuckDBBackend, QueryError
from backend.selections import SelectionStore
from backend.selections import router as selections_router
from backend.system import router as system_router
from channel.manager import WebSocketManager
from shared.logger import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(
    config: Optional[ServerConfig] = None,
    backend: Optional[DuckDBBackend] = None,
    store: Optional[SelectionStore] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Server settings; resolved from file/environment when omitted.
        backend: Preloaded query backend. When omitted, ``config.dataset`` is
            loaded on startup.
        store: Selection store; a fresh one is created when omitted.
    """
    config = config or load_server_config()
    setup_logging(config.log_level)

    app = FastAPI(
        title="pointstream API",
        description="Viewport-adaptive point streaming over DuckDB",
        version="0.1.0",
        default_response_class=ORJSONResponse,
    )

    manager = WebSocketManager(
        backend=backend,
        store=store,
        max_limit=config.max_limit,
        max_exclude_ids=config.max_exclude_ids,
    )
    app.state.config = config
    app.state.ws_manager = manager
    app.state.selection_store = manager.store

    # ============= Exception Handlers for Error Logging =============

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Log HTTP exceptions and return JSON response."""
        if exc.status_code >= 500:
            logger.error("%s failed (%d): %s", request.url.path, exc.status_code, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Log unexpected exceptions and return JSON response."""
        logger.exception("Unhandled exception on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,  # Must be False when using allow_origins=["*"]
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(system_router, prefix="/api", tags=["system"])
    app.include_router(selections_router, prefix="/api", tags=["selections"])

    # ============= Startup / Shutdown =============

    @app.on_event("startup")
    async def startup_event():
        """Load the configured dataset unless a backend was supplied."""
        logger.info("pointstream server starting...")
        if manager.backend is None and config.dataset:
            try:
                manager.backend = await asyncio.to_thread(
                    DuckDBBackend.from_file,
                    config.dataset,
                    config.x_col,
                    config.y_col,
                    config.color_col,
                    config.id_col,
                )
                app.state.owns_backend = True
            except (OSError, ValueError, QueryError) as e:
                logger.error("Failed to load dataset %s: %s", config.dataset, e)
        if manager.backend is None:
            logger.warning("No dataset loaded; queries will return errors")
        else:
            bounds = await asyncio.to_thread(manager.backend.bounds)
            logger.info("Serving %d points", bounds.total_rows)

    @app.on_event("shutdown")
    async def shutdown_event():
        if getattr(app.state, "owns_backend", False) and manager.backend is not None:
            manager.backend.close()
            manager.backend = None
            logger.info("DuckDB connection closed")

    # ============= WebSocket Endpoints =============

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, client_id: Optional[str] = None):
        """
        Streaming channel. One session per connection.

        Message format (JSON):
        {
            "type": "metadata" | "query" | "save_selection" | "ping",
            "request_id": 1,
            ...
        }
        """
        await manager.connect(websocket, client_id)

        try:
            while True:
                message_text = await websocket.receive_text()
                response = await manager.handle_message(websocket, message_text)
                if response:
                    await manager.send_to_connection(websocket, response)

        except WebSocketDisconnect:
            await manager.disconnect(websocket)
        except Exception as e:
            logger.error("WebSocket error: %s", e)
            await manager.disconnect(websocket)

    @app.get("/api/ws/stats")
    async def get_websocket_stats():
        """Get WebSocket connection statistics."""
        return {
            "total_connections": manager.get_connection_count(),
        }

    @app.get("/")
    async def server_info():
        """Describe the running server."""
        total_rows = None
        if manager.backend is not None:
            bounds = await asyncio.to_thread(manager.backend.bounds)
            total_rows = bounds.total_rows
        return {
            "message": "pointstream WebSocket server is running",
            "endpoint": f"ws://{config.host}:{config.port}/ws",
            "total_rows": total_rows,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="pointstream streaming server")
    parser.add_argument("--dataset", type=str, default=None, help="CSV or Parquet file to serve")
    parser.add_argument("--x-col", type=str, default=None, help="Column for the x axis")
    parser.add_argument("--y-col", type=str, default=None, help="Column for the y axis")
    parser.add_argument("--color-col", type=str, default=None, help="Column mapped to the point category")
    parser.add_argument("--id-col", type=str, default=None, help="Identity column (created when absent)")
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to run the server on (default: 8000 or POINTSTREAM_PORT env var)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Enable auto-reload",
    )
    args = parser.parse_args()

    # uvicorn re-imports main:app, so CLI values travel through the environment
    cli_values = {
        "dataset": args.dataset,
        "x_col": args.x_col,
        "y_col": args.y_col,
        "color_col": args.color_col,
        "id_col": args.id_col,
        "host": args.host,
        "port": args.port,
    }
    for key, value in cli_values.items():
        if value is not None:
            os.environ[f"POINTSTREAM_{key.upper()}"] = str(value)

    server_config = load_server_config()
    uvicorn.run(
        "main:app",
        host=server_config.host,
        port=server_config.port,
        reload=args.reload,
        log_level=server_config.log_level.lower(),
    )
