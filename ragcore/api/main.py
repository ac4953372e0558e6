import logging
from contextlib import asynccontextmanager
from dataclasses import fields
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ragcore.config.settings import settings
from ragcore.models.document import HealthReport
from ragcore.services import Services, build_services

# Configure logging
logging.basicConfig(level=settings.logging.level, format=settings.logging.format)
logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Builds the API. Components are created at startup unless provided (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # --- Startup: Initialize singletons ---
        logger.info("Initializing RAG storage, queue and embedding provider...")
        active = services or build_services(settings)

        # Store in app.state for dependency injection
        app.state.services = active
        for f in fields(active):
            setattr(app.state, f.name, getattr(active, f.name))

        logger.info("Initialization complete. All systems ready.")

        yield

        # --- Shutdown ---
        logger.info("Shutting down RAG API...")
        if services is None:
            active.close()

    app = FastAPI(
        title="ragcore API",
        description="Document ingestion and vector retrieval for retrieval-augmented generation",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthReport, tags=["System"])
    def health_check(request: Request):
        return request.app.state.worker.health()

    from ragcore.api.routes import documents, ingest, jobs, query

    app.include_router(ingest.router, prefix="/api", tags=["Ingestion"])
    app.include_router(documents.router, prefix="/api", tags=["Documents"])
    app.include_router(query.router, prefix="/api", tags=["Retrieval"])
    app.include_router(jobs.router, prefix="/api", tags=["Jobs"])

    @app.get("/", tags=["System"])
    def root():
        return {"message": "ragcore API is running."}

    return app


app = create_app()
