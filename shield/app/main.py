from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shield.app.api.admin import router as admin_router
from shield.app.api.auth import router as auth_router
from shield.app.api.contact import router as contact_router
from shield.app.api.newsletter import router as newsletter_router
from shield.app.core.config import Settings, settings as default_settings
from shield.app.core.counter_store import create_counter_store
from shield.app.core.http_client import init_http_client
from shield.app.core.logging import get_log_context, get_logger, setup_logging
from shield.app.db.async_session import (
    build_async_engine,
    build_session_maker,
    init_models,
    verify_connection,
)
from shield.app.exceptions import (
    AccessDenied,
    CaptchaVerificationFailed,
    RateLimited,
    ShieldException,
)
from shield.app.middleware.guard import RequestGuard
from shield.app.middleware.request_id import RequestIdMiddleware
from shield.app.services.abuse import AbuseHeuristics
from shield.app.services.captcha import RecaptchaVerifier
from shield.app.services.cleanup import SecurityCleanup
from shield.app.services.identity import PasswordAuthenticator
from shield.app.services.mailer import ResendMailer
from shield.app.services.outreach import ContactInbox, NewsletterRegistry
from shield.app.services.rate_limiter import PolicySet, RateLimiter


def create_app(config: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Settings to build the application from. Defaults to the
            module-level settings loaded from the environment.

    Returns:
        Configured FastAPI application instance
    """
    config = config or default_settings
    setup_logging(config)
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Builds the counter store, the ledger engine and every service on
        startup, and releases them on shutdown.
        """
        async with init_http_client(config) as http_client:
            engine = build_async_engine(config)
            session_maker = build_session_maker(engine)

            # The ledgers fail open, so an unreachable database degrades
            # protection instead of blocking startup.
            if await verify_connection(engine):
                await init_models(engine)
            else:
                logger.error(
                    "Ledger database unreachable at startup; abuse heuristics will fail open",
                    extra=get_log_context(security_event=True),
                )

            store = create_counter_store(config)
            policies = PolicySet.from_settings(config)
            limiter = RateLimiter(store)
            heuristics = AbuseHeuristics(
                session_maker,
                RecaptchaVerifier(
                    http_client,
                    config.recaptcha_secret_key,
                    config.recaptcha_verify_url,
                ),
                timeout=config.store_timeout_seconds,
                blacklist_threshold=config.blacklist_failure_threshold,
                blacklist_duration_hours=config.blacklist_duration_hours,
            )
            cleanup = SecurityCleanup(
                session_maker,
                limiter,
                policies,
                interval_seconds=config.cleanup_interval_seconds,
                retention_hours=config.failed_attempt_retention_hours,
            )

            app.state.settings = config
            app.state.engine = engine
            app.state.store = store
            app.state.policies = policies
            app.state.limiter = limiter
            app.state.heuristics = heuristics
            app.state.guard = RequestGuard(
                limiter, heuristics, trust_forwarded_for=config.trust_forwarded_for
            )
            app.state.authenticator = PasswordAuthenticator(
                http_client,
                config.identity_provider_url,
                config.identity_provider_api_key,
            )
            app.state.cleanup = cleanup

            mailer = ResendMailer(
                http_client,
                config.resend_api_key,
                config.mail_from,
                config.resend_api_url,
            )
            if not mailer.configured:
                logger.warning("Resend API key not set; contact and newsletter mail is disabled")
            app.state.inbox = ContactInbox(session_maker, mailer, config.contact_notify_email)
            app.state.subscriptions = NewsletterRegistry(
                session_maker,
                mailer,
                site_url=config.site_url,
                notify_address=config.contact_notify_email,
            )

            if config.cleanup_enabled:
                await cleanup.start()

            logger.info(
                "Application startup complete",
                extra={
                    "store": type(store).__name__,
                    "cleanup_enabled": config.cleanup_enabled,
                    "debug_mode": config.debug,
                },
            )

            try:
                yield
            finally:
                await cleanup.stop()
                await store.close()
                await engine.dispose()
                logger.info("Application shutdown complete")

    app = FastAPI(
        title="Portfolio Shield",
        description="Rate limiting and abuse mitigation for the portfolio site's public endpoints",
        version="1.0.0",
        lifespan=lifespan,
    )
    # Admin auth reads settings from app state; set it before startup too
    app.state.settings = config

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=600,
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(contact_router)
    app.include_router(newsletter_router)
    app.include_router(auth_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Health check with ledger database and counter store status."""
        health_status: dict[str, Any] = {"status": "ok", "components": {}}

        if await verify_connection(request.app.state.engine):
            health_status["components"]["database"] = {"status": "ok"}
        else:
            health_status["status"] = "degraded"
            health_status["components"]["database"] = {"status": "error"}

        store = request.app.state.store
        try:
            ok = await store.ping()
            health_status["components"]["counter_store"] = {
                "status": "ok" if ok else "error",
                "type": type(store).__name__,
            }
            if not ok:
                health_status["status"] = "degraded"
        except ShieldException as e:
            health_status["status"] = "degraded"
            health_status["components"]["counter_store"] = {
                "status": "error",
                "error": e.message[:100],
            }

        return health_status

    @app.exception_handler(AccessDenied)
    async def access_denied_handler(request: Request, exc: AccessDenied) -> JSONResponse:
        """Handle AccessDenied and return HTTP 403 response."""
        return JSONResponse(
            status_code=403,
            content={"error": "access_denied", "message": exc.message},
        )

    @app.exception_handler(RateLimited)
    async def rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
        """Handle RateLimited and return HTTP 429 response."""
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limit_exceeded",
                "message": exc.message,
                "retry_after": exc.retry_after,
            },
            headers={
                "Retry-After": str(exc.retry_after),
                "X-RateLimit-Limit": str(exc.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(exc.reset_at),
            },
        )

    @app.exception_handler(CaptchaVerificationFailed)
    async def captcha_failed_handler(
        request: Request, exc: CaptchaVerificationFailed
    ) -> JSONResponse:
        """Handle CaptchaVerificationFailed and return HTTP 400 response."""
        return JSONResponse(
            status_code=400,
            content={
                "error": "captcha_required",
                "message": exc.message,
                "requires_captcha": True,
            },
        )

    @app.exception_handler(ShieldException)
    async def shield_exception_handler(request: Request, exc: ShieldException) -> JSONResponse:
        """Handle remaining ShieldException subclasses by their status code."""
        logger.error(
            f"{type(exc).__name__}: {exc.message}",
            extra=get_log_context(
                request_id=getattr(request.state, "request_id", None),
                path=request.url.path,
                status_code=exc.status_code,
            ),
        )
        error = "service_unavailable" if exc.status_code == 503 else "error"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": error, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        The traceback is logged server-side and never returned; debug mode
        adds the exception message to the response.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        content = {
            "error": "internal_error",
            "message": "Internal server error",
            "request_id": request_id,
        }
        if config.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
