"""FastAPI app entry: config, logging, service wiring, health, and graceful shutdown."""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from indexsync.config.logging import configure_logging, get_logger
from indexsync.config.settings import get_settings
from indexsync.container import Services, build_services
from indexsync.controllers.routes.indices import router as indices_router
from indexsync.controllers.routes.sources import router as sources_router
from indexsync.controllers.routes.tasks import router as tasks_router
from indexsync.domain.errors import RepositoryError

logger = get_logger(__name__)


async def _prepare_mongo_backend() -> None:
    from indexsync.resources.mongo.client import get_registry_collection
    from indexsync.resources.mongo.indexes import create_indexes

    try:
        await create_indexes(get_registry_collection())
    except RepositoryError as e:
        logger.error("Failed to create MongoDB indexes on startup", extra={"error": e.message})


async def _close_mongo_backend() -> None:
    from indexsync.resources.mongo.client import close_mongo_client
    from indexsync.resources.opensearch.client import close_opensearch_client

    close_mongo_client()
    await close_opensearch_client()


def create_app(services: Services | None = None) -> FastAPI:
    """
    Build the application. When services are given (tests, embedding) they are used as-is;
    otherwise they are built from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup: logging, services, registry load. Shutdown: cancel rebuilds, close clients."""
        settings = get_settings()
        configure_logging()
        logger.info(
            "Application starting",
            extra={"app_name": settings.app_name, "environment": settings.environment, "backend": settings.backend},
        )
        app.state.services = services or build_services(settings)
        if app.state.services.backend == "mongo":
            await _prepare_mongo_backend()
        await app.state.services.registry.load()
        yield
        logger.info("Application shutting down")
        await app.state.services.tracker.shutdown()
        if app.state.services.backend == "mongo":
            await _close_mongo_backend()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Index Sync Service",
        description="Keep search indices in sync with MongoDB collections and query them by substring",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(indices_router)
    app.include_router(tasks_router)
    app.include_router(sources_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Liveness: service is up. Does not check dependencies."""
        return {"status": "ok"}

    @app.get("/ready")
    async def ready(request: Request):
        """Readiness: verifies MongoDB and OpenSearch connectivity on the mongo backend."""
        if request.app.state.services.backend != "mongo":
            return {"status": "ok", "backend": request.app.state.services.backend}

        from indexsync.resources.mongo.session import ping_mongo
        from indexsync.resources.opensearch.health import ping_opensearch

        mongo = await ping_mongo()
        opensearch = await ping_opensearch()
        ok = mongo.get("ok", False) and opensearch.get("ok", False)
        body = {
            "status": "ok" if ok else "degraded",
            "backend": "mongo",
            "mongo": {"ok": mongo.get("ok", False), "error": mongo.get("error")},
            "opensearch": {"ok": opensearch.get("ok", False), "error": opensearch.get("error")},
        }
        return JSONResponse(content=body, status_code=200 if ok else 503)

    @app.exception_handler(RepositoryError)
    async def repository_exception_handler(_request: Request, exc: RepositoryError):
        """Adapter failures that escaped a route: clear, non-leaking 503."""
        logger.warning("Repository error", extra={"error": exc.message})
        return JSONResponse(
            content={"detail": "A dependency is temporarily unavailable. Please retry later."},
            status_code=503,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(_request: Request, exc: Exception):
        """Do not leak stack traces or internal details to the client."""
        logger.exception("Unhandled error", extra={"error": type(exc).__name__})
        return JSONResponse(content={"detail": "An internal error occurred."}, status_code=500)

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("indexsync.main:app", host=settings.host, port=settings.port, log_config=None)
