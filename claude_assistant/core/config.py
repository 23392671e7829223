"""
Configuration management for the Claude assistant client.

This module provides process-level settings using Pydantic Settings for
environment-based configuration loading and validation: logging, transport
timeouts, the bridge host, and the Claude defaults used to seed the
configuration holder (including the API key environment fallback).
"""

import logging
import sys
from typing import Any, Dict, Optional

from loguru import logger
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..models.anthropic import DEFAULT_BASE_URL, DEFAULT_MODEL, ClaudeConfiguration
from ..models.catalog import CLAUDE_MODELS


class Settings(BaseSettings):
    """
    Process settings loaded from environment variables and .env files.

    This class handles:
    - Bridge server configuration (host, port, debug mode)
    - Claude API defaults (key, base URL, model, token budget, temperature)
    - Transport configuration (timeouts, streaming capability)
    - Logging configuration
    """

    # Bridge server configuration
    host: str = Field(
        default="127.0.0.1",
        description="Host address the bridge server binds to"
    )
    port: int = Field(
        default=8765,
        ge=1,
        le=65535,
        description="Port the bridge server binds to"
    )
    debug: bool = Field(
        default=False,
        description="Include details of unexpected errors in bridge responses"
    )
    bridge_url: Optional[str] = Field(
        default=None,
        description="URL of a bridge server to relay calls through (None = call the API directly)"
    )

    # Claude API defaults
    claude_api_key: str = Field(
        default="",
        repr=False,
        validation_alias=AliasChoices("claude_api_key", "CLAUDE_API_KEY", "ANTHROPIC_API_KEY"),
        description="API key; falls back to CLAUDE_API_KEY or ANTHROPIC_API_KEY"
    )
    claude_base_url: str = Field(
        default=DEFAULT_BASE_URL,
        description="Base URL of the Claude API"
    )
    claude_model: str = Field(
        default=DEFAULT_MODEL,
        description="Default Claude model"
    )
    claude_max_tokens: int = Field(
        default=4096,
        ge=1,
        le=8192,
        description="Maximum number of tokens to generate in responses"
    )
    claude_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Sampling temperature (0 = focused, 1 = creative)"
    )

    # Transport configuration
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for non-streaming requests"
    )
    stream_read_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Read timeout in seconds between chunks of a streamed response"
    )
    streaming_enabled: bool = Field(
        default=True,
        description="Whether this process may perform true streaming HTTP"
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="text",
        description="Log format (json, text)"
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Path to log file (if None, logs to stderr only)"
    )

    # API metadata
    api_title: str = Field(
        default="Claude Assistant Bridge",
        description="Title of the bridge API"
    )
    api_description: str = Field(
        default="Relays Claude API calls for processes that cannot reach the network",
        description="Description of the bridge API"
    )
    api_version: str = Field(
        default="1.0.0",
        description="API version"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = ["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate that log_format is either 'json' or 'text'."""
        valid_formats = ["json", "text"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"log_format must be one of {valid_formats}")
        return v_lower

    @field_validator("claude_model")
    @classmethod
    def validate_claude_model(cls, v: str) -> str:
        """Validate that the default model is in the catalog."""
        if v not in CLAUDE_MODELS:
            raise ValueError(f"claude_model must be one of {list(CLAUDE_MODELS)}")
        return v

    def setup_loguru(self) -> None:
        """
        Replace loguru's sinks with the configured ones.

        Text output shows the component, the bridge request id and any
        duration, status code or model bound to the record. JSON output is
        loguru's serialized form, one object per line.
        """
        logger.remove()
        logger.configure(extra={"component": "claude_assistant"})

        if self.log_format == "json":
            logger.add(sys.stderr, level=self.log_level, serialize=True)
        else:
            logger.add(sys.stderr, level=self.log_level, format=_text_format, colorize=True)

        if self.log_file:
            logger.add(
                self.log_file,
                level=self.log_level,
                format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} | {message}",
                rotation="10 MB",
                retention="7 days",
                compression="gz",
                serialize=self.log_format == "json",
            )

    def get_claude_configuration(self) -> ClaudeConfiguration:
        """
        Build the initial client configuration from these settings.

        Returns:
            ClaudeConfiguration seeded with the configured defaults
        """
        return ClaudeConfiguration(
            api_key=self.claude_api_key,
            base_url=self.claude_base_url,
            model=self.claude_model,
            max_tokens=self.claude_max_tokens,
            temperature=self.claude_temperature,
        )

    def get_transport_config(self) -> Dict[str, Any]:
        """
        Get transport configuration dictionary.

        Returns:
            Dict containing timeouts and the streaming capability flag
        """
        return {
            "timeout": self.request_timeout,
            "stream_read_timeout": self.stream_read_timeout,
            "supports_streaming": self.streaming_enabled,
        }


_LEVEL_MARKUP = {
    "TRACE": "<dim>TRACE</dim>",
    "DEBUG": "<dim>DEBUG</dim>",
    "INFO": "<cyan>INFO</cyan>",
    "WARNING": "<yellow>WARN</yellow>",
    "ERROR": "<red>ERROR</red>",
    "CRITICAL": "<magenta>CRIT</magenta>",
}


def _status_markup(status: int) -> str:
    color = "green" if status < 400 else "yellow" if status < 500 else "red"
    return f"<{color}>{status}</{color}>"


def _text_format(record: Dict[str, Any]) -> str:
    extra = record["extra"]
    level = _LEVEL_MARKUP.get(record["level"].name, record["level"].name)

    prefix = extra.get("component", "-")
    if extra.get("request_id"):
        prefix += f" {extra['request_id'][:8]}"

    details = []
    if extra.get("status_code") is not None:
        details.append(_status_markup(extra["status_code"]))
    if extra.get("duration_seconds") is not None:
        details.append(f"{extra['duration_seconds']:.2f}s")
    if extra.get("model"):
        details.append(str(extra["model"]))
    suffix = f" <dim>[{', '.join(details)}]</dim>" if details else ""

    # The message is substituted by loguru, so braces in it stay literal
    return f"<green>{{time:HH:mm:ss}}</green> {level} <dim>{prefix}</dim> {{message}}{suffix}\n{{exception}}"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the process settings instance.

    Settings are loaded once and reused; services receive them explicitly.

    Returns:
        Settings: The process settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """
    Reload settings from environment variables and .env files.

    Returns:
        Settings: The newly loaded settings instance
    """
    global _settings
    _settings = Settings()
    return _settings


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure loguru and quiet third-party loggers.

    Args:
        settings: Settings instance to use for configuration.
                 If None, uses the process settings instance.
    """
    if settings is None:
        settings = get_settings()

    settings.setup_loguru()

    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "httpx", "httpcore"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
