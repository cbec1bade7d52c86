"""FastAPI application entry point."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.backend.api.routes import router
from src.backend.sessions import SessionRegistry
from src.catalog.category_cache import build_loaders
from src.catalog.client import CatalogClient
from src.shared.config import settings
from src.shared.logging import get_logger, setup_logging, shutdown_tracing

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging()
    client = CatalogClient()
    loaders = build_loaders(client)
    app.state.catalog_client = client
    app.state.sessions = SessionRegistry(client, loaders)
    logger.info("Catalog service at %s (listings via %s)", client.base_url, client.graphql_url)
    yield
    await client.aclose()
    shutdown_tracing()


app = FastAPI(
    title="Catalog Search",
    description="Catalog search, incremental pagination and facet filtering for the storefront",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")


def run() -> None:
    import uvicorn

    uvicorn.run("src.backend.main:app", host=settings.backend_host, port=settings.backend_port)


if __name__ == "__main__":
    run()
