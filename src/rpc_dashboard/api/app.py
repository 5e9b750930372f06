"""FastAPI application factory."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse

from .. import __version__, web_app
from ..api_keys import ApiKeyManager
from ..backend import BackendClient
from ..billing import BillingService
from ..config import Settings, get_settings
from ..errors import AuthenticationError, DashboardError
from ..http_client import build_http_client
from ..load_balancer import LoadBalancer
from ..logging_config import configure_logging, get_logger
from ..privy import PrivyClient
from ..rate_limiter import RateLimiter, UsageTracker
from ..rpc_proxy import RpcProxy
from ..store import AsyncStore
from .routes import auth, billing, health, keys, rpc, user, webhooks

logger = get_logger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

AUTH_PAGES = {"/auth", "/login", "/signup"}
TOKEN_COOKIE = "privy-token"


async def _init_services(app: FastAPI, settings: Settings, transport: httpx.AsyncBaseTransport | None) -> None:
    state = app.state
    state.store = AsyncStore(settings.db_path)
    await state.store.connect()
    await state.store.init_db()

    state.http = build_http_client(transport=transport)
    state.backend = BackendClient(settings.rpc_backend_url, settings.rpc_admin_key, state.http)

    async def record_alert(url: str, healthy: bool) -> None:
        if healthy:
            await state.store.add_endpoint_alert("info", "Endpoint recovered from degraded state", url)
        else:
            await state.store.add_endpoint_alert("warning", "Endpoint failed health check", url)

    state.balancer = LoadBalancer(
        backend_url=settings.rpc_backend_url,
        fallback_urls=settings.fallback_rpc_urls,
        client=state.http,
        cache_ttl=settings.health_cache_ttl_seconds,
        probe_timeout=settings.health_probe_timeout,
        listener=record_alert,
    )

    state.privy = None
    if settings.privy_configured:
        state.privy = PrivyClient(
            settings.privy_app_id,
            settings.privy_app_secret,
            state.http,
            api_url=settings.privy_api_url,
            verification_key=settings.privy_verification_key,
        )
    else:
        logger.warning("privy_not_configured", detail="dashboard authentication runs in development mode")

    state.keys = ApiKeyManager(state.store)
    state.rate_limiter = RateLimiter()
    state.usage = UsageTracker(state.store)
    state.billing = BillingService(settings, state.store)
    state.proxy = RpcProxy(
        balancer=state.balancer,
        client=state.http,
        keys=state.keys,
        usage=state.usage,
        store=state.store,
        privy=state.privy,
        request_timeout=settings.rpc_request_timeout,
    )


async def _close_services(app: FastAPI) -> None:
    await app.state.balancer.close()
    await app.state.http.aclose()
    await app.state.store.close()


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the dashboard application.

    Args:
        settings: Settings to use (loaded from the environment if omitted)
        transport: Optional httpx transport for all outbound calls

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await _init_services(app, settings, transport)
        logger.info("app_started", environment=settings.environment, backend=settings.rpc_backend_url)
        try:
            yield
        finally:
            await _close_services(app)
            logger.info("app_stopped")

    app = FastAPI(title="Multi-RPC Dashboard", version=__version__, lifespan=lifespan)
    app.state.settings = settings

    @app.exception_handler(DashboardError)
    async def dashboard_error_handler(request: Request, exc: DashboardError) -> JSONResponse:
        content = {"error": exc.message}
        if exc.details:
            content["details"] = exc.details
        return JSONResponse(content, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            {"error": "Invalid input", "details": jsonable_encoder(exc.errors())},
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
        try:
            response = await _page_redirect(request)
            if response is None:
                response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers.update(SECURITY_HEADERS)
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(keys.router)
    app.include_router(billing.router)
    app.include_router(webhooks.router)
    app.include_router(user.router)
    app.include_router(rpc.router)
    app.include_router(web_app.router)
    return app


async def _page_redirect(request: Request) -> RedirectResponse | None:
    """Redirect between the sign-in page and the dashboard based on the token cookie."""
    path = request.url.path
    is_dashboard = path == "/dashboard" or path.startswith("/dashboard/")
    if not is_dashboard and path not in AUTH_PAGES:
        return None

    privy: PrivyClient | None = request.app.state.privy
    if privy is None:
        # Development mode: no verification possible, pages stay open
        return None

    token = request.cookies.get(TOKEN_COOKIE)
    valid = False
    if token:
        try:
            await privy.verify_auth_token(token)
            valid = True
        except AuthenticationError:
            valid = False

    if is_dashboard and not valid:
        return RedirectResponse("/auth", status_code=307)
    if path in AUTH_PAGES and valid:
        return RedirectResponse("/dashboard", status_code=307)
    return None
