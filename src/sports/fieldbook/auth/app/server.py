import asyncio
import contextlib
import json
import logging
from time import time
from typing import Optional

from aiohttp import web
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from sports.fieldbook.auth.app.config import (
    AuthorizationGateAppKey,
    DatabaseAppKey,
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    PasswordHasherAppKey,
    RefreshTokenPurgeTaskAppKey,
    SessionManagerAppKey,
    Settings,
    SettingsAppKey,
    TickHealthTaskAppKey,
)
from sports.fieldbook.auth.app.cors import get_cors_headers
from sports.fieldbook.auth.app.handlers.auth import (
    PrincipalKey,
    handle_google_callback,
    handle_login,
    handle_me,
    handle_refresh_token,
    handle_signup,
    handle_test_jwt,
    handle_test_role,
)
from sports.fieldbook.auth.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_ready,
)
from sports.fieldbook.auth.app.metrics import MetricsClient, create_metrics_client
from sports.fieldbook.auth.app.policies import OPERATION_POLICIES
from sports.fieldbook.auth.app.tasks import refresh_token_purge_task, tick_health_task
from sports.fieldbook.auth.directory import UserDirectory
from sports.fieldbook.auth.errors import ApplicationError
from sports.fieldbook.auth.model.health import HealthGauge
from sports.fieldbook.auth.security.federated import FederatedIdentityLinker
from sports.fieldbook.auth.security.gate import AuthorizationGate
from sports.fieldbook.auth.security.passwords import PasswordHasher
from sports.fieldbook.auth.security.refresh_tokens import RefreshTokenStore
from sports.fieldbook.auth.security.sessions import SessionManager
from sports.fieldbook.auth.security.tokens import TokenCodec

logger = logging.getLogger(__name__)


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    owns_engine = DatabaseAppKey not in app
    if owns_engine:
        app[DatabaseAppKey] = create_async_engine(str(settings.pg_dsn))
    engine: AsyncEngine = app[DatabaseAppKey]

    database_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    app[DatabaseSessionMakerAppKey] = database_session_maker

    metrics_client = app[MetricsClientAppKey]
    await metrics_client.connect()

    hasher = app[PasswordHasherAppKey]
    directory = UserDirectory(database_session_maker, hasher)
    refresh_tokens = RefreshTokenStore(
        database_session_maker,
        hasher,
        short_expiration_hours=settings.refresh_token_short_expiration_in_hours,
        expiration_days=settings.refresh_token_expiration_in_days,
    )
    app[SessionManagerAppKey] = SessionManager(
        hasher,
        app[AuthorizationGateAppKey].codec,
        refresh_tokens,
        directory,
        linker=FederatedIdentityLinker(directory),
        metrics_client=metrics_client,
    )

    logger.info("Startup complete")

    app[TickHealthTaskAppKey] = asyncio.create_task(tick_health_task(app))
    app[RefreshTokenPurgeTaskAppKey] = asyncio.create_task(
        refresh_token_purge_task(app)
    )

    yield

    logger.info("Shutting down background tasks")

    app[TickHealthTaskAppKey].cancel()
    app[RefreshTokenPurgeTaskAppKey].cancel()

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[TickHealthTaskAppKey]

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[RefreshTokenPurgeTaskAppKey]

    if owns_engine:
        await engine.dispose()
    await metrics_client.close()


@web.middleware
async def cors_middleware(request: web.Request, handler):
    settings = request.app[SettingsAppKey]
    cors_headers = get_cors_headers(
        request.headers.get("Origin"), settings.allowed_origins, settings.debug
    )

    if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
        return web.Response(status=204, headers=cors_headers)

    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers.update(cors_headers)
        raise e
    response.headers.update(cors_headers)
    return response


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise e
    except Exception as e:
        metrics_client.increment(
            "fieldbook.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "fieldbook.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "fieldbook.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


@web.middleware
async def error_middleware(request: web.Request, handler):
    """
    Render application errors as JSON and report anything unexpected.

    Typed application errors are part of normal flow control and map straight to their
    status code. Any other exception is logged, sent to Sentry, counted against the
    health gauge and returned as a 500.
    """
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ApplicationError as e:
        return web.json_response(status=e.status, data=e.to_dict())
    except Exception as e:
        logger.exception(
            "Unexpected error handling %s %s", request.method, request.path
        )
        sentry_sdk.capture_exception(e)
        await request.app[HealthGaugeAppKey].womp()

        settings = request.app[SettingsAppKey]
        response_body = {"error": "Internal Server Error", "kind": "internal_fault"}
        if settings.debug:
            response_body["error_type"] = type(e).__name__
            response_body["error_message"] = str(e)
        return web.Response(
            status=500,
            body=json.dumps(response_body),
            content_type="application/json",
        )


@web.middleware
async def authorization_middleware(request: web.Request, handler):
    match_info = request.match_info
    if match_info.http_exception is not None:
        # Unknown path or method, let the router answer with 404 or 405.
        return await handler(request)

    gate = request.app[AuthorizationGateAppKey]
    request[PrincipalKey] = gate.authorize(
        match_info.route.name, request.headers.get("Authorization")
    )
    return await handler(request)


async def start_web_server(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
    metrics_client: Optional[MetricsClient] = None,
):

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=False,
            integrations=[AioHttpIntegration()],
        )
    app = web.Application(
        middlewares=[
            cors_middleware,
            statsd_middleware,
            error_middleware,
            authorization_middleware,
        ]
    )

    app[SettingsAppKey] = settings
    app[HealthGaugeAppKey] = HealthGauge()

    if engine is not None:
        app[DatabaseAppKey] = engine

    if metrics_client is None:
        metrics_client = create_metrics_client(
            settings.metrics_backend,
            host=settings.statsd_host,
            port=settings.statsd_port,
            prefix=settings.statsd_prefix,
            debug=settings.debug,
        )
    app[MetricsClientAppKey] = metrics_client

    app[PasswordHasherAppKey] = PasswordHasher(settings.bcrypt_salt_or_rounds)
    codec = TokenCodec(
        settings.jwt_access_secret,
        expiry=settings.access_token_expiry,
        leeway=settings.access_token_leeway,
    )
    app[AuthorizationGateAppKey] = AuthorizationGate(codec, OPERATION_POLICIES)

    app.add_routes(
        [
            web.post("/auth/signup", handle_signup, name="auth.signup"),
            web.post("/auth/login", handle_login, name="auth.login"),
            web.post(
                "/auth/google/callback",
                handle_google_callback,
                name="auth.google.callback",
            ),
            web.post(
                "/auth/refresh-token", handle_refresh_token, name="auth.refresh_token"
            ),
            web.get("/auth/me", handle_me, name="auth.me"),
            web.get("/auth/test/jwt", handle_test_jwt, name="auth.test.jwt"),
            web.get("/auth/test/admin", handle_test_role, name="auth.test.admin"),
            web.get("/auth/test/user", handle_test_role, name="auth.test.user"),
            web.get("/auth/test/teacher", handle_test_role, name="auth.test.teacher"),
        ]
    )

    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive, name="internal.alive"),
            web.get("/internal/ready", handle_internal_ready, name="internal.ready"),
        ]
    )

    app.cleanup_ctx.append(background_tasks)

    return app
