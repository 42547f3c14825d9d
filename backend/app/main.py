"""
Main application module for the STL preview backend.

This file sets up the FastAPI application, configures CORS so browser
clients on other origins can call the API, mounts the rendered preview
directory as static files and exposes a simple health check endpoint.

Routers for the synchronous preview and job APIs are included under
the `/api` namespace.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .api.routes_jobs import router as jobs_router
from .api.routes_previews import router as previews_router

# The init_db function creates tables in the SQLite database if they do
# not already exist; it runs once when the application starts.
from .services.jobs_store import init_db  # type: ignore
from .services.storage import PREVIEWS_URL_PREFIX, STORAGE_PREVIEWS_DIR


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


def create_app() -> FastAPI:
    """Factory to create and configure the FastAPI application.

    Returns:
        FastAPI: The configured FastAPI application instance.
    """
    app = FastAPI(title="STL Preview", lifespan=lifespan)

    # Allow all origins by default.  In production you should restrict
    # this to the domains that are allowed to access your API.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check endpoint for monitoring and deployment checks.
    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(previews_router, prefix="/api", tags=["previews"])
    app.include_router(jobs_router, prefix="/api", tags=["jobs"])

    # Stored job images are addressable under /previews/{jobId}/...
    app.mount(
        PREVIEWS_URL_PREFIX,
        StaticFiles(directory=str(STORAGE_PREVIEWS_DIR)),
        name="previews",
    )

    return app


# Create the application instance.  Uvicorn will import this when
# running `uvicorn backend.app.main:app` from the repository root.
app = create_app()
