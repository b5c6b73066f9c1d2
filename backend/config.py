"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the generator backend.
All settings can be overridden via environment variables or a .env file.
"""

import json
import logging
import os
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        deepseek_api_key: API key for DeepSeek models (exported for LiteLLM).
        default_model: LiteLLM model name, including the provider prefix.
        requirements_temperature: Sampling temperature for requirements parsing.
        code_temperature: Sampling temperature for component code generation.
        scaffold_temperature: Sampling temperature for the scaffold UI preview.
        llm_request_timeout_seconds: Timeout for a single LLM API call.
        use_mock_llm: If True, answer LLM calls offline with canned responses.
        default_assistant_id: Pipeline used when a run names no assistant.
        graph_recursion_limit: Maximum number of steps a single run may execute.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # LLM Configuration
    deepseek_api_key: str = ""
    # Model names must include provider prefix for LiteLLM (e.g., deepseek/)
    default_model: str = "deepseek/deepseek-chat"
    requirements_temperature: float = 0.3
    code_temperature: float = 0.7
    scaffold_temperature: float = 0.4
    llm_request_timeout_seconds: int = 120
    use_mock_llm: bool = False

    # Flow Configuration
    default_assistant_id: str = "v0-generator-subgraphs"
    graph_recursion_limit: int = 50

    # Server Configuration
    backend_port: int = 8000
    cors_origins: str | list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:3000"]'
        - Comma-separated: 'http://localhost:3000,http://localhost:8080'
        - Already a list: ["http://localhost:3000"]
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
        return ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def model_post_init(self, __context: Any) -> None:
        """Export the DeepSeek key to os.environ for LiteLLM discovery."""
        if self.deepseek_api_key:
            os.environ.setdefault("DEEPSEEK_API_KEY", self.deepseek_api_key)


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

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

logger = structlog.get_logger(__name__)
