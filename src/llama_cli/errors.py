"""
errors.py

PURPOSE: Exception types raised by llama-cli and its llama.cpp adapter.
DEPENDENCIES: None (pure Python)

ARCHITECTURE NOTES:
Every failure the adapter surfaces derives from LlamaCliError so the CLI can
catch the whole family at one seam. Malformed streaming chunks are NOT in this
list: they are logged as warnings and skipped, never raised.
"""


class LlamaCliError(Exception):
    """Base class for adapter errors."""


class ConfigurationError(LlamaCliError):
    """The configured backend or server address is unusable."""


class DiscoveryError(LlamaCliError):
    """The model listing endpoint was unreachable, failed, or listed no models."""


class UpstreamError(LlamaCliError):
    """The server answered a completion call with a non-success status."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"llama.cpp server error: {status_code} {message}")


class MalformedResponseError(LlamaCliError):
    """A success response did not have the expected structure."""


class RequestTimeoutError(LlamaCliError, TimeoutError):
    """A network call exceeded its configured timeout."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


class UnsupportedOperationError(LlamaCliError):
    """The backend does not provide the requested capability."""


class ServerUnavailableError(LlamaCliError):
    """The connection to the server failed during a completion call."""
