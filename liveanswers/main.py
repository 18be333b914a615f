"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager
import logging
import os
import signal
from typing import Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from prometheus_fastapi_instrumentator import Instrumentator

from liveanswers.api.answers import router as answers_router
from liveanswers.api.auth import router as auth_router
from liveanswers.api.sessions import router as sessions_router
from liveanswers.core.config import Settings, get_settings
from liveanswers.core.database import Database
from liveanswers.core.errors import LiveAnswersError
from liveanswers.services.answer_store import AnswerStore
from liveanswers.services.change_feed import build_change_feed
from liveanswers.services.fanout import FanoutPublisher
from liveanswers.services.queue_transport import Connector, QueueTransport
from liveanswers.services.session_join import SessionJoinService

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def terminate_process(exc: BaseException) -> None:
    """Queue setup failed: stop the server instead of running without a broker."""
    logger.critical("Shutting down: queue transport could not be set up (%s)", exc)
    os.kill(os.getpid(), signal.SIGTERM)


def warn_on_split_change_feed(settings: Settings) -> bool:
    """Several workers sharing the in-process feed each see only their own writes."""
    workers = 1 if settings.RELOAD else settings.WORKERS
    if workers > 1 and settings.CHANGE_FEED_BACKEND == "memory":
        logger.warning(
            "WORKERS=%d with the in-process change feed: answer streams only see answers written "
            "by their own worker. Set CHANGE_FEED_BACKEND=redis to share the feed.", workers)
        return True
    return False


def error_body(message: str, error_type: str, status_code: int) -> dict:
    return {"error": {"message": message, "type": error_type, "status_code": status_code}}


def create_app(settings: Optional[Settings] = None, connector: Optional[Connector] = None,
               on_fatal: Optional[Callable[[BaseException], None]] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    if settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
            ],
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s...", settings.APP_NAME)

        database = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
        if settings.CREATE_TABLES_ON_STARTUP:
            await database.init_db()

        change_feed = build_change_feed(settings)
        transport = QueueTransport(
            settings.rabbitmq_url(),
            ready_timeout=settings.QUEUE_READY_TIMEOUT,
            connector=connector,
            on_fatal=on_fatal or terminate_process,
        )
        transport.start()

        app.state.database = database
        app.state.change_feed = change_feed
        app.state.transport = transport
        app.state.answer_store = AnswerStore(database.sessionmaker, change_feed)
        app.state.publisher = FanoutPublisher(transport, settings.RABBITMQ_QUEUE_NAME)
        app.state.session_service = SessionJoinService(database.sessionmaker, settings)
        logger.info("Services initialized")

        yield

        logger.info("Shutting down %s...", settings.APP_NAME)
        await change_feed.close()
        await transport.close()
        await database.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.APP_NAME,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.PROMETHEUS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")

    @app.exception_handler(LiveAnswersError)
    async def domain_exception_handler(request: Request, exc: LiveAnswersError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc.__cause__ or exc)
            message = LiveAnswersError.public_message
        else:
            message = exc.message
        return JSONResponse(status_code=exc.status_code, content=error_body(message, exc.error_type, exc.status_code))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.detail, "http_error", exc.status_code),
                            headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"error": {"message": "Validation error", "type": "validation_error", "details": exc.errors()}},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("Internal Server Error", "internal_error", 500),
        )

    @app.get("/health", tags=["Health"])
    async def health(request: Request):
        transport = getattr(request.app.state, "transport", None)
        return {
            "status": "ok",
            "version": settings.APP_VERSION,
            "queue": transport.state.value if transport else None,
        }

    app.include_router(auth_router, prefix="/auth", tags=["auth"])
    app.include_router(answers_router, tags=["answers"])
    app.include_router(sessions_router, tags=["sessions"])
    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    warn_on_split_change_feed(settings)
    uvicorn.run(
        "liveanswers.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        workers=settings.WORKERS if not settings.RELOAD else 1,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
