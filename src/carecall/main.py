"""
FastAPI application entry point.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from carecall.analysis.analyzer import MemberStatusAnalyzer, PostCallAnalyzer
from carecall.calls.dispatcher import CallDispatcher
from carecall.calls.router import router as calls_router
from carecall.config import Settings, get_settings
from carecall.dialogue.completion import CompletionService
from carecall.dialogue.config import ConversationConfig, get_conversation_config
from carecall.dialogue.llm.factory import create_llm_gateway_from_settings
from carecall.dialogue.llm.gateway import LLMGateway
from carecall.dialogue.orchestrator import CallOrchestrator
from carecall.dialogue.session_store import SessionStore
from carecall.schedules.evaluator import ScheduleEvaluator
from carecall.shared.database import DatabaseManager, get_database_manager
from carecall.shared.exceptions import NotFoundError
from carecall.shared.logging import get_logger, setup_logging
from carecall.telephony.config import VOICE_RESPOND_PATH, TelephonyConfig, get_telephony_config
from carecall.telephony.factory import create_telephony_provider
from carecall.telephony.interface import TelephonyProvider
from carecall.telephony.webhooks.router import router as telephony_webhooks_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the schedule evaluator; drain background work on shutdown."""
    setup_logging()
    settings: Settings = app.state.settings
    logger.info("Application starting", extra={"env": settings.app_env})

    if settings.app_env == "dev":
        await app.state.database.create_all()

    evaluator: ScheduleEvaluator = app.state.evaluator
    if settings.scheduler_enabled:
        await evaluator.start()

    yield

    logger.info("Shutting down application")
    await evaluator.stop()
    await app.state.orchestrator.wait_for_background()

    provider = app.state.telephony_provider
    close = getattr(provider, "close", None)
    if callable(close):
        close()
    await app.state.database.close()
    logger.info("Application shutdown complete")


def create_app(
    settings: Settings | None = None,
    database: DatabaseManager | None = None,
    telephony_config: TelephonyConfig | None = None,
    telephony_provider: TelephonyProvider | None = None,
    llm_gateway: LLMGateway | None = None,
    conversation_config: ConversationConfig | None = None,
    analyzer: PostCallAnalyzer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Every collaborator can be injected; anything omitted is built from the
    environment.
    """
    settings = settings or get_settings()
    database = database or get_database_manager()
    telephony_config = telephony_config or get_telephony_config()
    telephony_provider = telephony_provider or create_telephony_provider(telephony_config)
    llm_gateway = llm_gateway or create_llm_gateway_from_settings(settings)
    conversation_config = conversation_config or get_conversation_config()
    if analyzer is None:
        analyzer = MemberStatusAnalyzer(database, llm_gateway, settings.analysis_window_days)

    dispatcher = CallDispatcher(
        database,
        telephony_provider,
        telephony_config,
        country_prefix=settings.default_country_prefix,
    )
    orchestrator = CallOrchestrator(
        store=SessionStore(),
        completer=CompletionService(llm_gateway),
        provider=telephony_provider,
        database=database,
        respond_url=telephony_config.get_webhook_url(VOICE_RESPOND_PATH),
        config=conversation_config,
        analyzer=analyzer,
    )
    evaluator = ScheduleEvaluator(
        database,
        dispatcher,
        tz=settings.scheduler_tz,
        interval_seconds=settings.scheduler_interval_seconds,
        max_concurrent_dispatches=settings.scheduler_max_concurrent_dispatches,
    )

    app = FastAPI(
        title="CareCall API",
        description="Scheduled wellness-check phone calls",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.telephony_config = telephony_config
    app.state.telephony_provider = telephony_provider
    app.state.dispatcher = dispatcher
    app.state.orchestrator = orchestrator
    app.state.evaluator = evaluator

    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    app.include_router(telephony_webhooks_router)
    app.include_router(calls_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
