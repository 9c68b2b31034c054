"""FastAPI application factory for the central sync endpoint."""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from shopsync.api.routes import sync as sync_routes
from shopsync.db.engine import get_engine, init_db


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    engine = get_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Tables, migrations and capture listener (idempotent)
        init_db(engine)
        yield

    app = FastAPI(
        title="Shop Sync API",
        description="Store/central change-log synchronization",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(sync_routes.router, prefix="/api/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
