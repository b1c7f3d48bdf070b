"""Footprint MCP Server - Entry point.

Runs the MCP server with HTTP transport for Cloud Run deployment.
Uses Starlette with the MCP HTTP app mounted at root, plus a websocket
channel for real-time notifications and a task endpoint for the weekly
analysis job.
"""

import asyncio
import logging
import os
import secrets

import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, Mount, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from .core.errors import InvalidInputError
from .shell.mcp_server import (
    mcp,
    current_user_id,
    get_auth_client,
    get_notification_hub,
    get_tracker,
)
from .shell.auth import api_key_from_header, validate_api_key_format, hash_api_key


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_ORIGINS = "http://localhost:5173"


# ==================== Route Handlers ====================


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint for Cloud Run."""
    return JSONResponse({"status": "healthy", "service": "footprint-mcp"})


async def register_user(request: Request) -> JSONResponse:
    """Register a new user and return their API key."""
    try:
        body = await request.json()
        email = body.get("email")
        username = (body.get("username") or "").strip()

        if not email or "@" not in email:
            return JSONResponse({"error": "Valid email is required"}, status_code=400)
        if not username:
            return JSONResponse({"error": "Username is required"}, status_code=400)

        api_key, user_id = get_auth_client().register_user(email, username)

        return JSONResponse({
            "api_key": api_key,
            "message": "Registration successful! Save your API key - it won't be shown again.",
        })

    except InvalidInputError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except Exception as e:
        logger.error("Registration failed: %s", str(e))
        return JSONResponse({"error": "Registration failed."}, status_code=500)


async def validate_key(request: Request) -> JSONResponse:
    """Validate an API key."""
    try:
        body = await request.json()
        api_key = body.get("api_key")

        if not api_key:
            return JSONResponse({"valid": False, "error": "API key required"})

        user_id = get_auth_client().validate_api_key(api_key)
        return JSONResponse({"valid": user_id is not None})

    except Exception as e:
        logger.error("Validation failed: %s", str(e))
        return JSONResponse({"valid": False, "error": "Validation failed"})


async def run_weekly_insights(request: Request) -> JSONResponse:
    """Trigger the weekly tip/goal batch (called by a scheduler)."""
    expected = os.environ.get("TASKS_TOKEN")
    if not expected:
        return JSONResponse({"error": "Task endpoint is not configured"}, status_code=503)

    provided = request.headers.get("X-Task-Token", "")
    if not secrets.compare_digest(provided, expected):
        return JSONResponse({"error": "Invalid task token"}, status_code=401)

    try:
        report = await run_in_threadpool(get_tracker().run_weekly_batch)
    except Exception as e:
        logger.error("Weekly analysis error: %s", str(e))
        return JSONResponse({"error": "Server error running weekly analysis"}, status_code=500)

    return JSONResponse({
        "processed": report.processed,
        "skipped": report.skipped,
        "failed": len(report.failed),
    })


# ==================== Notifications ====================


async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        await websocket.send_json(await queue.get())


async def _stop_sender(sender: asyncio.Task, user_id: str) -> None:
    """Cancel the forwarding task and collect how it ended."""
    sender.cancel()
    try:
        await sender
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.warning("Notification delivery to %s failed: %s", user_id[:8], str(e))


async def notifications_socket(websocket: WebSocket) -> None:
    """Stream a user's events; authenticate by header or first message."""
    await websocket.accept()

    api_key = api_key_from_header(websocket.headers.get("authorization"))
    if api_key is None:
        try:
            api_key = (await websocket.receive_json()).get("api_key")
        except (WebSocketDisconnect, ValueError, AttributeError):
            api_key = None

    user_id = get_auth_client().validate_api_key(api_key)
    if user_id is None:
        await websocket.close(code=1008)
        return

    hub = get_notification_hub()
    queue = hub.subscribe(user_id)
    await websocket.send_json({"event": "joined", "data": {"user_id": user_id}})
    sender = asyncio.create_task(_forward(websocket, queue))
    logger.info(
        "User %s joined notifications (%d open)", user_id[:8], hub.subscriber_count(user_id)
    )

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await _stop_sender(sender, user_id)
        hub.unsubscribe(user_id, queue)
        logger.info("User %s left notifications", user_id[:8])


# ==================== Auth Middleware ====================


class AuthMiddleware(BaseHTTPMiddleware):
    """Authenticate MCP requests using API key in Authorization header."""

    async def dispatch(self, request: Request, call_next):
        # Skip auth for non-MCP routes
        if not request.url.path.startswith("/mcp"):
            return await call_next(request)

        api_key = api_key_from_header(request.headers.get("Authorization"))

        if api_key and validate_api_key_format(api_key):
            user_id = hash_api_key(api_key)

            if get_auth_client().user_exists(user_id):
                # Set user context for this request
                current_user_id.set(user_id)
                logger.debug("Authenticated user: %s", user_id[:8])

        return await call_next(request)


# ==================== Create ASGI App ====================


def create_app() -> Starlette:
    """Create the Starlette application with MCP at root.

    The MCP streamable_http_app() handles /mcp/ internally when mounted at root.
    We use its lifespan context to ensure proper initialization.
    """
    mcp_app = mcp.streamable_http_app()

    allowed_origins = [
        origin.strip()
        for origin in os.environ.get("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS).split(",")
        if origin.strip()
    ]

    # Custom routes first, then MCP app at root
    routes = [
        Route("/health", health_check, methods=["GET"]),
        Route("/auth/register", register_user, methods=["POST"]),
        Route("/auth/validate", validate_key, methods=["POST"]),
        Route("/tasks/weekly-insights", run_weekly_insights, methods=["POST"]),
        WebSocketRoute("/ws", notifications_socket),
        Mount("/", app=mcp_app),
    ]

    return Starlette(
        routes=routes,
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=allowed_origins,
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["*"],
            ),
            Middleware(AuthMiddleware),
        ],
        lifespan=mcp_app.router.lifespan_context,
    )


# Create app at module level for Cloud Run
app = create_app()


def main() -> None:
    """Run the server."""
    port = int(os.environ.get("PORT", 8080))
    host = os.environ.get("HOST", "0.0.0.0")

    logger.info("Starting Footprint MCP server on %s:%d", host, port)

    uvicorn.run(app, host=host, port=port)


def weekly_batch() -> None:
    """Run the weekly analysis once, for cron-style schedulers."""
    report = get_tracker().run_weekly_batch()
    logger.info(
        "Weekly batch finished: %d processed, %d skipped, %d failed",
        report.processed, report.skipped, len(report.failed),
    )
    if report.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
