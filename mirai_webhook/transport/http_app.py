# mirai_webhook/transport/http_app.py
"""
HTTP surface of the notification bridge.

Routes:
    GET  /              service description
    GET  /health        liveness + gateway session state
    GET  /metrics       in-process counters and histograms
    GET  /{topic_id}    notify, fields in the query string
    POST /{topic_id}    notify, fields in a JSON body
    OPTIONS /{topic_id} allowed methods, no body

Every error is rendered as ``{"error": <kind>, "message": ..., "cause": ...}``
with the status code mapped from the kind (see ``core/errors.py``).
"""
from __future__ import annotations

import hmac
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from mirai_webhook.config import (
    AppConfig,
    Settings,
    build_topics,
    load_config,
    settings as default_settings,
    validate_or_warn,
)
from mirai_webhook.core.auth import check_topic_secrets
from mirai_webhook.core.dispatch import Dispatcher, TopicRegistry
from mirai_webhook.core.errors import (
    ApiError,
    BadOperation,
    MethodNotAllowed,
    NotFound,
    SuccessResponse,
)
from mirai_webhook.infra.gateway_client import GatewayClient
from mirai_webhook.infra.http_client import close_all_sessions
from mirai_webhook.infra.logging_config import get_logger
from mirai_webhook.infra.metrics import get_metrics_collector
from mirai_webhook.transport.middleware import (
    CORSHeadersMiddleware,
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)
from mirai_webhook.transport.schemas import DispatchResult, NotifyIn, ServiceInfo

logger = get_logger(__name__)

VERSION = "1.0.0"
SERVICE_DESCRIPTION = (
    "mirai-webhook: a webhook API on top of mirai-api-http, "
    "cross-platform push notifications delivered over QQ"
)

NOTIFY_METHODS = ("GET", "POST")
ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# ============================================================================
# RESPONSES
# ============================================================================

def render_success(result: SuccessResponse) -> Response:
    if not result.has_body:
        return Response(status_code=204)
    return JSONResponse(status_code=result.status_code, content=result.data)


def render_error(error: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_dict(),
        headers=error.headers,
    )


def allowed_methods_response(methods: tuple[str, ...]) -> Response:
    """Answer to OPTIONS: 200, no body, the defined methods in the headers."""
    allowed = ",".join(methods)
    return Response(status_code=200, headers={
        "Allow": allowed,
        "Access-Control-Allow-Methods": allowed,
        "Access-Control-Allow-Headers": "content-type,authorization",
    })


_STATUS_KINDS = {404: "NotFound", 405: "MethodNotAllowed", 413: "ContentTooLarge", 415: "UnsupportedMediaType"}


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_dispatcher(request: Request) -> Dispatcher:
    """Get dispatcher from app state"""
    return request.app.state.dispatcher


metrics_bearer_scheme = HTTPBearer(auto_error=False)


def require_metrics_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
) -> None:
    """
    Dependency for GET /metrics.

    With METRICS_TOKEN unset the endpoint is open (the default listen
    address is loopback). With it set, a matching Bearer token is required.
    """
    token = request.app.state.settings.metrics_token
    if not token:
        return

    if credentials is None:
        logger.warning("Metrics endpoint accessed without token")
        raise ApiError("authentication required", kind="Unauthorized", headers={"WWW-Authenticate": "Bearer"})

    if not hmac.compare_digest(credentials.credentials.encode(), token.encode()):
        logger.warning("Invalid metrics token attempt")
        raise ApiError("invalid credentials", kind="Unauthorized", headers={"WWW-Authenticate": "Bearer"})


def _validation_message(context: str, exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = "/" + "/".join(str(part) for part in first.get("loc", ()))
    return f"validation failed for {context}: {location} {first.get('msg', 'invalid')}."


async def _read_notify_input(request: Request) -> NotifyIn:
    if request.method == "GET":
        context = "querystring"
        raw: Any = dict(request.query_params)
    else:
        context = "body"
        try:
            raw = await request.json()
        except ValueError:
            raise BadOperation("validation failed for body: request body must be a JSON object.")

    try:
        return NotifyIn.model_validate(raw)
    except ValidationError as exc:
        raise BadOperation(_validation_message(context, exc))


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(
    config: AppConfig | None = None,
    *,
    app_settings: Settings | None = None,
    gateway: Any = None,
) -> FastAPI:
    """
    Build the application.

    ``gateway`` may be injected (tests use a fake); otherwise a
    ``GatewayClient`` is built from ``config.ws_config``. Incomplete gateway
    settings raise here, before anything starts listening.
    """
    app_settings = app_settings or default_settings
    if config is None:
        config = load_config(app_settings.config_file)
        validate_or_warn(app_settings, config)

    topics = TopicRegistry(build_topics(config.topics))
    if gateway is None:
        gateway = GatewayClient(
            config.ws_config,
            reconnect_delay=app_settings.reconnect_delay_seconds,
            send_timeout=app_settings.send_timeout_seconds,
        )

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        logger.info(f"Starting mirai-webhook: env={app_settings.app_env}, topics={len(topics)}")
        check_topic_secrets(topics)

        await gateway.start()
        logger.info("Application startup complete")

        yield

        # SIGINT/SIGTERM land here via uvicorn: close the socket before exiting.
        logger.info("Shutting down application")
        await gateway.stop()
        await close_all_sessions()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="mirai-webhook",
        description=SERVICE_DESCRIPTION,
        version=VERSION,
        lifespan=lifespan,
        docs_url=None if app_settings.is_production else "/docs",
        redoc_url=None,
        openapi_url=None if app_settings.is_production else "/openapi.json",
    )
    app.state.settings = app_settings
    app.state.gateway = gateway
    app.state.topics = topics
    app.state.dispatcher = Dispatcher(topics=topics, gateway=gateway)

    # Last added runs first: RequestID -> logging -> CORS -> error handling
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(CORSHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=app_settings.enable_request_logging)
    app.add_middleware(RequestIDMiddleware)

    _register_exception_handlers(app)
    _register_routes(app)
    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.kind}: {exc.message}")
        return render_error(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = "/" + "/".join(str(part) for part in first.get("loc", ()))
        return render_error(BadOperation(f"validation failed: {location} {first.get('msg', 'invalid')}."))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        kind = _STATUS_KINDS.get(exc.status_code, "BadOperation" if exc.status_code < 500 else "InternalError")
        if exc.status_code == 404:
            message = f"path not found: {request.url.path}"
        elif exc.status_code == 405:
            message = f"method not allowed: {request.method}"
        else:
            message = str(exc.detail)
        return render_error(ApiError(message, kind=kind, headers=exc.headers))


def _register_routes(app: FastAPI) -> None:
    @app.get("/")
    async def root():
        info = ServiceInfo(message=SERVICE_DESCRIPTION, version=VERSION)
        return render_success(SuccessResponse(info.model_dump()))

    @app.get("/health")
    async def health(request: Request):
        """Liveness plus the gateway session state. Always 200: a reconnecting gateway is not fatal."""
        gateway = request.app.state.gateway
        state = getattr(gateway, "state", None)
        return {"status": "healthy", "gateway": getattr(state, "value", state)}

    @app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
    async def metrics():
        """Dispatch, auth and gateway counters plus dispatch-duration histograms."""
        return get_metrics_collector().get_metrics()

    @app.api_route("/{topic_id}", methods=ALL_METHODS)
    async def notify(topic_id: str, request: Request, dispatcher: Dispatcher = Depends(get_dispatcher)):
        """
        Webhook entry point.

        Order of checks: topic exists -> method allowed -> fields valid ->
        token/signature. Nothing is sent unless all of them pass.
        """
        dispatcher.get_topic(topic_id)

        if request.method == "OPTIONS":
            return allowed_methods_response(NOTIFY_METHODS)

        if request.method not in NOTIFY_METHODS:
            raise MethodNotAllowed(
                f"method not allowed: {request.method}",
                headers={"Allow": ", ".join(NOTIFY_METHODS)},
            )

        payload = await _read_notify_input(request)
        outcome = await dispatcher.dispatch(
            topic_id,
            payload.title,
            payload.content,
            token=payload.token,
            sig=payload.sig,
        )
        return render_success(SuccessResponse(DispatchResult.from_outcome(outcome).to_envelope()))

    @app.api_route("/{path:path}", methods=ALL_METHODS)
    async def catch_all(path: str, request: Request):
        """Catch-all route for undefined endpoints (and non-GET calls to ``/``)."""
        if not path:
            if request.method == "OPTIONS":
                return allowed_methods_response(("GET",))
            raise MethodNotAllowed(f"method not allowed: {request.method}", headers={"Allow": "GET"})

        logger.warning(f"404 - Unknown route accessed: /{path}")
        raise NotFound(f"path not found: /{path}")
