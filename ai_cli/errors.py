"""
Exception hierarchy for the ai-cli pipeline.

Every error carries the process exit code the CLI reports it with.
"""

from typing import Optional


class AiCliError(Exception):
    """Base class for all errors raised by ai-cli."""

    exit_code = 1


class ConfigError(AiCliError):
    """Raised when a configuration file is malformed or holds invalid values."""

    exit_code = 2

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class BackendError(AiCliError):
    """Raised when a generation backend fails."""

    exit_code = 3


class ModelUnavailable(BackendError):
    """Local model weights or tokenizer could not be located or loaded."""


class AuthError(BackendError):
    """Missing or rejected cloud credentials."""


class NetworkError(BackendError):
    """The remote backend could not be reached."""


class GenerationTimeout(BackendError):
    """Generation did not finish before the configured deadline."""


class ExtractError(AiCliError):
    """Raised when no command can be derived from a model response."""

    exit_code = 4


class NoCommandFound(ExtractError):
    pass


class ExecutionError(AiCliError):
    """Raised when a command cannot be delivered or exits non-zero."""

    exit_code = 5

    def __init__(self, message: str, returncode: Optional[int] = None):
        self.returncode = returncode
        super().__init__(message)
