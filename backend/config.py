"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the agent
playground backend. All settings can be overridden via environment variables
or a .env file.
"""

import json
import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        erp_api_base_url: Base URL of the ERP REST API (inventory, orders, customers).
        erp_api_key: Bearer token sent to the ERP API.
        erp_timeout_seconds: Timeout for a single ERP HTTP call.
        router_model: Model used to classify free-text ERP requests.
        agent_model: Model used by the capability agents for tool calling.
        use_mock_llm: If True, classify requests with the keyword classifier
            instead of an LLM.
        llm_max_retries: Retries for transient LLM failures.
        llm_request_timeout_seconds: Timeout for a single LLM API call.
        simulation_step_delay_seconds: Simulated processing time per step.
        simulation_timeout_seconds: Upper bound for one simulation run.
        simulation_history_size: Finished runs kept in memory once they are
            saved to the database; older ones are read back from disk.
        database_path: SQLite file used for agent/run snapshots.
        persistence_enabled: If False, everything stays in memory.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # ERP Configuration
    erp_api_base_url: str = "http://localhost:4000/api"
    erp_api_key: str = ""
    erp_timeout_seconds: float = 15.0

    # LLM Configuration
    # Model names must include provider prefix for LiteLLM (e.g., openai/, gemini/)
    router_model: str = "openai/gpt-3.5-turbo"
    agent_model: str = "openai/gpt-4"
    use_mock_llm: bool = False
    llm_max_retries: int = 3
    llm_request_timeout_seconds: int = 120

    # Simulation
    simulation_step_delay_seconds: float = 0.5
    simulation_timeout_seconds: float = 300.0
    simulation_history_size: int = 100

    # Database Configuration
    database_path: str = "./data/playground.db"
    persistence_enabled: bool = True

    # Server Configuration
    backend_port: int = 3001
    cors_origins: str | list[str] = ["http://localhost:5173"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:5173"]'
        - Comma-separated: 'http://localhost:5173,http://localhost:8080'
        - Single value: 'http://localhost:5173'
        - Already a list: ["http://localhost:5173"]
        """
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return ["http://localhost:5173"]

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)
