"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    env: str = "local"
    backend_host: str = "0.0.0.0"
    backend_port: int = 8000
    catalog_api_url: str = "http://localhost:8090"
    catalog_graphql_url: str = "http://localhost:8090/query"
    request_timeout: float = 30.0
    # Deep search pagination and category browse grids page independently
    search_page_size: int = 100
    browse_page_size: int = 16
    max_sessions: int = 256
    log_level: str = "DEBUG"
    log_format: str = "console"
    otel_exporter_endpoint: str = ""
    trace_to_console: bool = False

    model_config = {"env_file": "config/.env.local", "extra": "ignore"}


settings = Settings()
