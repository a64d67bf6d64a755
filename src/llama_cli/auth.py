"""
auth.py

PURPOSE: Backend authentication method selection and validation.
DEPENDENCIES: None (pure Python + enum)

ARCHITECTURE NOTES:
AuthType is a closed set. Only the llama.cpp server is supported; the other
members remain so that stale configuration naming them is rejected with a
specific message instead of silently falling back to something else.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from llama_cli.errors import ConfigurationError

if TYPE_CHECKING:
    from llama_cli.config import ServerSettings, Settings

_USE_LLAMACPP = "Please use llama.cpp server with LLAMACPP_BASE_URL environment variable."


class AuthType(str, Enum):
    """Authentication methods, of which only USE_LLAMACPP_SERVER is live."""

    LOGIN_WITH_GOOGLE_PERSONAL = "oauth-personal"
    LOGIN_WITH_GOOGLE_ENTERPRISE = "oauth-enterprise"
    USE_GEMINI = "gemini-api-key"
    USE_VERTEX_AI = "vertex-ai"
    USE_LLAMACPP_SERVER = "llamacpp-server"


_RETIRED_METHODS = {
    AuthType.LOGIN_WITH_GOOGLE_PERSONAL: "Google OAuth authentication",
    AuthType.LOGIN_WITH_GOOGLE_ENTERPRISE: "Google Workspace authentication",
    AuthType.USE_GEMINI: "Gemini API key authentication",
    AuthType.USE_VERTEX_AI: "Vertex AI authentication",
}


def validate_auth_method(method: str | AuthType, settings: Settings) -> str | None:
    """
    Check whether an authentication method can be used.

    Args:
        method: AuthType or its string value.
        settings: Application settings (for the server URL).

    Returns:
        None if usable, otherwise a message describing what is wrong.
    """
    try:
        auth_type = AuthType(method)
    except ValueError:
        return f"Invalid auth method selected. {_USE_LLAMACPP}"

    if auth_type == AuthType.USE_LLAMACPP_SERVER:
        if not settings.server.base_url.strip():
            return (
                "LLAMACPP_BASE_URL environment variable not found. Add that to your "
                ".env (e.g., LLAMACPP_BASE_URL=http://localhost:8080) and try again."
            )
        return None

    return f"{_RETIRED_METHODS[auth_type]} is no longer supported. {_USE_LLAMACPP}"


def resolve_server_settings(settings: Settings) -> ServerSettings:
    """
    Return the server settings for the configured auth method.

    Raises:
        ConfigurationError: If the method is retired or the base URL is missing.
    """
    error = validate_auth_method(settings.auth_type, settings)
    if error is not None:
        raise ConfigurationError(error)
    return settings.server
