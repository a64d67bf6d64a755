"""
config.py

PURPOSE: Configuration loading and settings management.
DEPENDENCIES: pydantic, pydantic-settings

ARCHITECTURE NOTES:
Configuration comes from multiple sources (in priority order):
1. CLI flags (highest priority, applied by the command handlers)
2. Environment variables
3. A .env file in the working directory
4. Defaults (lowest priority)

The server address is read from LLAMACPP_BASE_URL. It has no default: an
empty value is reported by the auth layer as a configuration problem.
"""

from pydantic import Field
from pydantic_settings import BaseSettings

from llama_cli.auth import AuthType

ENV_FILE = ".env"


class ServerSettings(BaseSettings):
    """Settings for the llama.cpp server connection."""

    base_url: str = Field(
        default="",
        description="Server base URL, e.g. http://localhost:8080",
    )
    discovery_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout in seconds for the model listing call",
    )
    request_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Timeout in seconds for completion calls",
    )
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )
    max_tokens: int | None = Field(
        default=None,
        gt=0,
        description="Maximum tokens in a response (server default if unset)",
    )

    model_config = {"env_prefix": "LLAMACPP_", "env_file": ENV_FILE, "extra": "ignore"}


class OpenTelemetrySettings(BaseSettings):
    """Settings for OpenTelemetry export."""

    enabled: bool = Field(
        default=False,
        description="Enable tracing and metrics",
    )
    service_name: str = Field(
        default="llama-cli",
        description="Service name reported to the collector",
    )
    endpoint: str = Field(
        default="",
        description="OTLP gRPC endpoint (console export if empty)",
    )

    model_config = {"env_prefix": "LLAMA_CLI_OTEL_", "env_file": ENV_FILE, "extra": "ignore"}


class Settings(BaseSettings):
    """Main application settings."""

    auth_type: AuthType = Field(
        default=AuthType.USE_LLAMACPP_SERVER,
        description="Backend authentication method",
    )
    log_level: str = Field(
        default="WARNING",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug output",
    )
    system_prompt: str = Field(
        default="You are a helpful assistant running in a terminal.",
        description="System prompt sent at the start of each conversation",
    )
    server: ServerSettings = Field(
        default_factory=ServerSettings,
        description="llama.cpp server settings",
    )
    otel: OpenTelemetrySettings = Field(
        default_factory=OpenTelemetrySettings,
        description="OpenTelemetry settings",
    )

    model_config = {"env_prefix": "LLAMA_CLI_", "env_file": ENV_FILE, "extra": "ignore"}


def get_settings() -> Settings:
    """Get application settings, loading from the environment and .env."""
    return Settings(server=ServerSettings(), otel=OpenTelemetrySettings())
