from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from mediaqueue.config.logging import get_logger, setup_logging
from mediaqueue.config.settings import (
    MediaStoreBackend,
    Settings,
    get_settings,
    settings as default_settings,
)
from mediaqueue.infra.database import Database
from mediaqueue.v1.core.exceptions import (
    MediaQueueException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    media_queue_exception_handler,
)
from mediaqueue.v1.healthz import router as health_router
from mediaqueue.v1.jobs.routes import router as jobs_router
from mediaqueue.v1.jobs.routes import webhook_router
from mediaqueue.v1.jobs.service import JobPipeline
from mediaqueue.v1.media.gateway import AnalysisGateway, HttpAnalysisGateway
from mediaqueue.v1.media.store import InMemoryMediaStore, MediaStore, SqlMediaStore
from mediaqueue.v1.notifications.routes import router as notifications_router

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    media_store: MediaStore | None = None,
    gateway: AnalysisGateway | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The app is the composition root: the lifespan builds the single
    ``JobPipeline`` from the injected (or configured) collaborators and owns
    it on ``app.state.pipeline``.
    """
    settings = settings or default_settings

    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = None
        store = media_store
        if store is None:
            if settings.media_store_backend is MediaStoreBackend.SQL:
                database = Database(settings)
                store = SqlMediaStore(database, settings.change_feed_poll_s)
            else:
                store = InMemoryMediaStore()

        owned_gateway = None
        analysis_gateway = gateway
        if analysis_gateway is None:
            analysis_gateway = owned_gateway = HttpAnalysisGateway.from_settings(
                settings
            )

        pipeline = JobPipeline(settings, store, analysis_gateway)
        app.state.pipeline = pipeline
        app.state.media_store = store
        app.state.database = database

        await pipeline.start()
        logger.info(
            "Media queue started",
            environment=settings.environment,
            media_store=type(store).__name__,
        )
        try:
            yield
        finally:
            await pipeline.stop()
            if owned_gateway is not None:
                await owned_gateway.close()
            if database is not None:
                await database.close()
            logger.info("Media queue stopped")

    app = FastAPI(
        title=settings.app_name,
        description="Asynchronous media analysis job pipeline",
        version=settings.version,
        debug=settings.debug,
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(RequestContextMiddleware)

    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(MediaQueueException, media_queue_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(webhook_router, prefix="/v1")
    app.include_router(notifications_router, prefix="/v1")

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mediaqueue.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        # The pipeline is an in-process queue; more than one worker splits it
        workers=1,
    )
