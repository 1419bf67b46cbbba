"""
chatrelay application.

FastAPI application with structured logging, error handling, and the relay
services wired onto ``app.state``.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay import __version__
from chatrelay.api import api_router, health
from chatrelay.auth import TokenAuthenticator
from chatrelay.config import Settings, get_settings, load_relay_config
from chatrelay.core import MetricsRegistry, get_logger, setup_logging
from chatrelay.core.middleware import (
    RequestContextMiddleware,
    RequestSizeLimitMiddleware,
    setup_exception_handlers,
)
from chatrelay.providers import ProviderRegistry
from chatrelay.services import (
    ChatOrchestrator,
    ConversationStore,
    ExpirySweeper,
    RateLimiter,
    StreamRelay,
)

logger = get_logger(__name__)


def build_orchestrator(
    state, settings: Settings, metrics: MetricsRegistry
) -> tuple[ChatOrchestrator, bool]:
    """Construct the orchestrator and its collaborators unless already on ``state``.

    Returns the orchestrator and whether a registry was created here.
    """
    if getattr(state, "orchestrator", None) is not None:
        return state.orchestrator, False

    relay_config = getattr(state, "relay_config", None)
    if relay_config is None:
        # Fail fast: a malformed or missing provider file aborts startup.
        relay_config = load_relay_config(settings.providers_config_path)
        state.relay_config = relay_config

    registry_created = False
    if getattr(state, "provider_registry", None) is None:
        state.provider_registry = ProviderRegistry(
            relay_config,
            timeout_seconds=settings.provider_timeout_seconds,
            max_retries=settings.provider_max_retries,
        )
        registry_created = True

    limits = relay_config.rate_limits
    orchestrator = ChatOrchestrator(
        store=ConversationStore(),
        limiter=RateLimiter(limits.requests_per_window, limits.window_seconds),
        registry=state.provider_registry,
        limits=limits,
        session=relay_config.session,
        metrics=metrics,
        queue_size=settings.stream_queue_size,
        complete_on_disconnect=settings.stream_complete_on_disconnect,
    )
    return orchestrator, registry_created


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    state = _app.state
    settings: Settings = state.settings

    # Startup
    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )
    logger.info(
        "Starting chatrelay",
        data={
            "host": settings.host,
            "port": settings.port,
            "debug": settings.debug,
            "providers_config": settings.providers_config_path,
        },
    )

    state.start_time = datetime.now(UTC)
    metrics = getattr(state, "metrics", None) or MetricsRegistry()
    state.metrics = metrics

    orchestrator, registry_created = build_orchestrator(state, settings, metrics)
    state.orchestrator = orchestrator

    if getattr(state, "stream_relay", None) is None:
        state.stream_relay = StreamRelay(
            metrics=orchestrator.metrics,
            ping_interval=settings.sse_ping_interval_seconds,
        )
    if getattr(state, "authenticator", None) is None:
        state.authenticator = TokenAuthenticator(
            settings.secret_key, ttl_seconds=settings.token_ttl_seconds
        )

    sweeper = ExpirySweeper(orchestrator, settings.sweep_interval_seconds)
    sweeper.start()

    logger.info(
        "Relay ready",
        data={"models": sorted(orchestrator.list_supported_models())},
    )

    yield

    # Shutdown
    logger.info("Shutting down chatrelay")
    await sweeper.stop()
    await orchestrator.aclose()
    if registry_created:
        await orchestrator.registry.aclose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="chatrelay",
        description="Authenticated chat relay for OpenAI-compatible and Ollama providers",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings

    # Setup exception handlers (must be before middleware)
    setup_exception_handlers(app)

    # Add middleware (order matters - last added = first executed)
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_bytes)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    app.include_router(health.router)
    app.include_router(api_router)

    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "chatrelay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


# Create application instance
app = create_app()
