"""
Generation backends.

Every backend exposes the same two calls:
- generate(request) -> BackendResponse
- stream(request) -> iterator of text chunks
"""

from typing import Optional

from ..config import Settings
from ..schemas import Backend
from ..tracing import Tracer
from .bedrock import BedrockBackend


def create_backend(kind: Backend, settings: Settings, tracer: Optional[Tracer] = None):
    """
    Build the backend for kind.

    The local backend pulls in torch and transformers, so it is only
    imported when selected.
    """
    if kind is Backend.BEDROCK:
        return BedrockBackend(settings.aws_settings, tracer=tracer)
    if kind is Backend.LOCAL:
        from .local import LocalBackend

        return LocalBackend(settings.local_model, tracer=tracer)
    raise ValueError(f"Unknown AI backend: {kind}")


__all__ = ["BedrockBackend", "create_backend"]
