"""
Solana RPC Cache - Main FastAPI Application
JSON-RPC gateway answering from a durable cache, falling through to upstream

Run with:
    uvicorn rpc_cache.main:app --port 8000
"""
import asyncio
import json
import logging
import secrets
import threading
import time
from contextlib import asynccontextmanager, suppress
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from config.settings import settings
from rpc_cache.context import GatewayContext, build_context
from rpc_cache.errors import ParseError, RateLimitExceededError
from rpc_cache.schemas import error_response, parse_request

load_dotenv()
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger("gateway.api")

# Version tracking
APP_VERSION = "1.0.0"
APP_NAME = "Solana RPC Cache"

router = APIRouter()
_context_lock = threading.Lock()


def _context(app: FastAPI) -> GatewayContext:
    """Return the app's gateway context, building it on first use."""
    if app.state.context is None:
        with _context_lock:
            if app.state.context is None:
                app.state.context = build_context(settings)
                app.state.owns_context = True
    return app.state.context


def get_context(request: Request) -> GatewayContext:
    return _context(request.app)


def client_id(request: Request) -> str:
    """Client identity for rate limiting: proxy headers first, then the socket peer."""
    cf_ip = request.headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip.strip()
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):]
    return None


def _token_matches(request: Request, expected: str) -> bool:
    token = _bearer_token(request)
    return token is not None and secrets.compare_digest(token, expected)


def require_api_key(request: Request, ctx: GatewayContext = Depends(get_context)) -> None:
    """Bearer API key check. Open when no key is configured."""
    expected = ctx.settings.api_key
    if expected and not _token_matches(request, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_admin(request: Request, ctx: GatewayContext = Depends(get_context)) -> None:
    """Admin routes need the shared secret; they are closed when none is set."""
    expected = ctx.settings.shared_secret
    if not expected or not _token_matches(request, expected):
        raise HTTPException(
            status_code=401,
            detail={"error": "Unauthorized", "message": "Invalid or missing authentication"},
        )


# =============================================================================
# JSON-RPC
# =============================================================================

@router.post("/", dependencies=[Depends(require_api_key)])
async def rpc_endpoint(request: Request, ctx: GatewayContext = Depends(get_context)):
    """
    JSON-RPC endpoint.

    Accepts a single request object or a batch (array). Batch responses
    come back in request order.
    """
    client = client_id(request)
    if ctx.rate_limiter.is_limited(client):
        error = RateLimitExceededError(retry_after=ctx.rate_limiter.retry_after(client))
        logger.warning(f"Rate limit exceeded for {client}")
        return JSONResponse(
            status_code=429,
            content={"jsonrpc": "2.0", "id": None, "error": error.to_dict()},
            headers={"Retry-After": str(error.retry_after)},
        )

    raw = await request.body()
    try:
        body = json.loads(raw)
    except ValueError:
        return JSONResponse(
            status_code=400,
            content={"jsonrpc": "2.0", "id": None, "error": ParseError().to_dict()},
        )

    if isinstance(body, list):
        responses = await run_in_threadpool(ctx.batch.dispatch, body)
        return [r.to_dict() for r in responses]

    try:
        rpc_request = parse_request(body)
    except ParseError as e:
        request_id = body.get("id") if isinstance(body, dict) else None
        if not isinstance(request_id, (int, str)):
            request_id = None
        return JSONResponse(status_code=400, content=error_response(request_id, e).to_dict())

    response = await run_in_threadpool(ctx.orchestrator.process, rpc_request)
    return response.to_dict()


@router.get("/api/test", dependencies=[Depends(require_api_key)])
def api_test():
    """Check that the caller's API key is accepted."""
    return {"success": True, "message": "API authentication successful"}


@router.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": APP_VERSION}


@router.get("/status")
def status(ctx: GatewayContext = Depends(get_context)):
    """Service status with cache hit/miss counts."""
    return {
        "status": "ok",
        "version": APP_VERSION,
        "timestamp": int(time.time() * 1000),
        "cacheMetrics": ctx.metrics.summary(),
    }


# =============================================================================
# ADMIN
# =============================================================================

@router.api_route("/admin/cleanup", methods=["GET", "POST"], dependencies=[Depends(require_admin)])
def admin_cleanup(ctx: GatewayContext = Depends(get_context)):
    """Sweep expired cache entries and stale rate-limit windows."""
    cleaned = ctx.orchestrator.clear_expired()
    windows = ctx.rate_limiter.cleanup()
    logger.info(f"Admin cleanup removed {cleaned} entries and {windows} rate windows")
    return {
        "success": True,
        "cleaned": cleaned,
        "message": f"Cleaned {cleaned} expired cache entries",
    }


@router.get("/admin/metrics", dependencies=[Depends(require_admin)])
def admin_metrics(ctx: GatewayContext = Depends(get_context)):
    """Full per-method metrics snapshot."""
    return ctx.metrics.snapshot()


@router.get("/admin/stats", dependencies=[Depends(require_admin)])
def admin_stats(ctx: GatewayContext = Depends(get_context)):
    return {
        "cache": ctx.orchestrator.get_stats(),
        "subscriptions": ctx.subscriptions.get_stats(),
    }


@router.get("/admin/lookup", dependencies=[Depends(require_admin)])
def admin_lookup(
    prefix: str = Query("", description="Index key prefix, e.g. 'acct:'"),
    ctx: GatewayContext = Depends(get_context),
):
    """List secondary index keys."""
    entries = ctx.index.list_keys(prefix)
    return {"success": True, "entries": entries, "count": len(entries)}


@router.get("/admin/get", dependencies=[Depends(require_admin)])
def admin_get(
    key: Optional[str] = Query(None, description="Primary store key"),
    ctx: GatewayContext = Depends(get_context),
):
    """Fetch one stored body by key."""
    if not key:
        return JSONResponse(
            status_code=400,
            content={"error": "Missing parameter", "message": "Key parameter is required"},
        )
    data = ctx.store.read_raw(key)
    if data is None:
        return JSONResponse(
            status_code=404,
            content={"success": False, "key": key, "message": "No data found for this key"},
        )
    return {"success": True, "key": key, "data": data}


@router.get("/admin/list-data", dependencies=[Depends(require_admin)])
def admin_list_data(
    prefix: str = Query("", description="Primary key prefix, e.g. 'rpc:getBalance'"),
    ctx: GatewayContext = Depends(get_context),
):
    """List primary store keys."""
    keys = ctx.store.list_keys(prefix)
    return {"success": True, "keys": keys, "count": len(keys)}


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

class QueueConnection:
    """
    Subscription connection backed by an asyncio queue.

    ``send`` may be called from any thread; messages are handed to the event
    loop in call order and written to the socket by a single writer task.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: "asyncio.Queue[Dict[str, Any]]"):
        self._loop = loop
        self._queue = queue

    def send(self, message: Dict[str, Any]) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, message)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Subscribe/unsubscribe over a persistent connection."""
    ctx = _context(websocket.app)
    await websocket.accept()

    queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
    connection = QueueConnection(asyncio.get_running_loop(), queue)
    ctx.subscriptions.connect(connection)

    async def writer():
        while True:
            message = await queue.get()
            await websocket.send_json(message)

    writer_task = asyncio.create_task(writer())
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                logger.info("WebSocket client disconnected")
                break
            raw = frame.get("text")
            if raw is None:
                raw = frame.get("bytes")
            if raw is None:
                continue
            await run_in_threadpool(ctx.subscriptions.handle_message, connection, raw)
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
        with suppress(Exception):
            await websocket.close(code=1011)
    finally:
        ctx.subscriptions.disconnect(connection)
        writer_task.cancel()
        with suppress(asyncio.CancelledError, Exception):
            await writer_task


# =============================================================================
# APP
# =============================================================================

def create_app(context: Optional[GatewayContext] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Without a context, one is built from settings on first use.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = _context(app)
        ctx.poller.start()
        yield
        ctx.poller.stop()
        if app.state.owns_context:
            ctx.close()

    app = FastAPI(
        title=APP_NAME,
        description="Caching JSON-RPC gateway for Solana",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.context = context
    app.state.owns_context = False
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
