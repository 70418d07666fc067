"""
HTTP invocation endpoint for the Dealsuite sync pipeline.

Exposes ``POST /dealsuite/scrape-wanted`` with the invocation request as
JSON body. Status codes:

    - 200 for every pipeline outcome, failures included (the body carries
      the error code)
    - 400 for a body that is not JSON or lacks session_cookie
    - 500 for missing configuration and unexpected errors

Operator authentication is left to the deployment (reverse proxy).

Usage:
    python -m dealsuite_sync.api --host 0.0.0.0 --port 8080

Author: Leonardo Pacciani-Mori
License: MIT
"""

import argparse
import json
from typing import Optional

import aiohttp
from aiohttp import web

from dealsuite_sync.config.settings import (
    API_CORS_HEADERS,
    API_ENABLE_CORS,
    API_HOST,
    API_PORT,
    API_ROUTE,
    API_RUN_DEADLINE_SECONDS,
)
from dealsuite_sync.config.logging_config import get_logger, setup_logging
from dealsuite_sync.core.cancellation import CancellationToken
from dealsuite_sync.core.connections import open_deals_connection
from dealsuite_sync.core.exceptions import ConfigurationError, DealsuiteSyncError
from dealsuite_sync.pipeline.coordinator import PipelineCoordinator, build_coordinator
from dealsuite_sync.pipeline.responses import (
    InvalidRequest,
    InvocationRequest,
    error_response,
    handle_invocation,
)
from dealsuite_sync.storage.reconciliation import ReconciliationStore
from dealsuite_sync.storage.schema import DATABASE_ERRORS

logger = get_logger(__name__)

COORDINATOR_KEY = web.AppKey("coordinator", PipelineCoordinator)
STARTUP_ERROR_KEY = web.AppKey("startup_error", str)
DEADLINE_KEY = web.AppKey("run_deadline_seconds", float)


@web.middleware
async def cors_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Add the CORS headers to every response, errors included."""
    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers.update(API_CORS_HEADERS)
        raise
    response.headers.update(API_CORS_HEADERS)
    return response


async def handle_preflight(request: web.Request) -> web.Response:
    return web.Response(status=200)


async def handle_scrape(request: web.Request) -> web.Response:
    """Run the pipeline for one invocation request."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return web.json_response(error_response("Invalid JSON body"), status=400)

    try:
        invocation = InvocationRequest.from_payload(payload)
    except InvalidRequest as e:
        return web.json_response(error_response(str(e)), status=400)

    startup_error = request.app.get(STARTUP_ERROR_KEY)
    coordinator = request.app.get(COORDINATOR_KEY)
    if startup_error or coordinator is None:
        return web.json_response(
            error_response(startup_error or "Pipeline is not configured"), status=500
        )

    deadline = request.app.get(DEADLINE_KEY) or None
    try:
        _, response = await handle_invocation(
            coordinator, invocation, cancel_token=CancellationToken(deadline)
        )
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return web.json_response(error_response(str(e)), status=500)
    except DealsuiteSyncError as e:
        logger.exception(f"Pipeline error: {e}")
        return web.json_response(error_response(str(e)), status=500)
    except Exception as e:
        # Any other failure is reported as a JSON 500.
        logger.exception(f"Unexpected error: {type(e).__name__}")
        return web.json_response(error_response("Unknown error"), status=500)

    return web.json_response(response)


async def _pipeline_context(app: web.Application):
    """
    Build the coordinator on startup and release its resources on cleanup.

    All requests share one database connection. Reconciliation batches run
    on worker threads and the store serialises them.
    """
    session = aiohttp.ClientSession(connector=aiohttp.TCPConnector(force_close=True, limit=4))
    conn = None
    try:
        conn, dialect = open_deals_connection()
        store = ReconciliationStore(conn, dialect)
        store.ensure_schema()
        app[COORDINATOR_KEY] = build_coordinator(store=store, session=session)
    except (DealsuiteSyncError, *DATABASE_ERRORS) as e:
        logger.error(f"Pipeline not available: {e}")
        app[STARTUP_ERROR_KEY] = str(e)

    yield

    await session.close()
    if conn is not None:
        conn.close()


def create_app(
    coordinator: Optional[PipelineCoordinator] = None,
    run_deadline_seconds: float = API_RUN_DEADLINE_SECONDS,
    enable_cors: bool = API_ENABLE_CORS,
) -> web.Application:
    """
    Create the aiohttp application.

    Args:
        coordinator: Pipeline to serve. When omitted, one is assembled from
            configuration at startup.
        run_deadline_seconds: Deadline of each run (0 disables it).
        enable_cors: Add CORS headers and accept preflight requests.

    Returns:
        web.Application: The application.
    """
    app = web.Application(middlewares=[cors_middleware] if enable_cors else [])
    app[DEADLINE_KEY] = float(run_deadline_seconds or 0)

    if coordinator is not None:
        app[COORDINATOR_KEY] = coordinator
    else:
        app.cleanup_ctx.append(_pipeline_context)

    app.router.add_post(API_ROUTE, handle_scrape)
    if enable_cors:
        app.router.add_route("OPTIONS", API_ROUTE, handle_preflight)
    return app


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve the Dealsuite sync endpoint")
    parser.add_argument("--host", default=API_HOST, help="Host to bind the server to")
    parser.add_argument("--port", type=int, default=API_PORT, help="Port to listen on")
    args = parser.parse_args()

    setup_logging()
    logger.info(f"Serving {API_ROUTE} on http://{args.host}:{args.port}")
    web.run_app(create_app(), host=args.host, port=args.port, print=None)


if __name__ == "__main__":
    main()
