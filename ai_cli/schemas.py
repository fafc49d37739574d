"""
Data records passed between pipeline stages.

Each stage produces exactly one of these and never mutates what it receives.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Backend(str, Enum):
    """Available generation backends."""

    LOCAL = "local"
    BEDROCK = "bedrock"


class ModelParams(BaseModel):
    """Sampling parameters shared by every backend."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    temperature: float = Field(0.8, description="Sampling temperature", ge=0.0, le=2.0)
    top_p: float = Field(0.9, description="Nucleus sampling probability", gt=0.0, le=1.0)
    repeat_penalty: float = Field(1.1, description="Repetition penalty", gt=0.0)
    max_tokens: int = Field(100, description="Maximum tokens to generate", gt=0)
    seed: Optional[int] = Field(None, description="Sampling seed (random when unset)")
    verbose_prompt: bool = Field(False, description="Log the prompt tokens before generating")


class GenerationRequest(BaseModel):
    """A fully resolved request for one backend call."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    prompt: str
    backend: Backend
    model_params: ModelParams
    system_instructions: str = ""


class BackendResponse(BaseModel):
    """Raw text returned by a backend."""

    model_config = ConfigDict(frozen=True)

    raw_text: str
    backend_used: Backend
    elapsed_seconds: float = 0.0


class CommandSource(str, Enum):
    """Where in a response a command was found."""

    FENCED = "fenced"
    INLINE = "inline"
    LINE = "line"


class ExtractedCommand(BaseModel):
    """A single shell command derived from a backend response."""

    model_config = ConfigDict(frozen=True)

    command_text: str
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    source: CommandSource = CommandSource.LINE


class Mode(str, Enum):
    """What to do with an extracted command."""

    DRY_RUN = "dry-run"
    COPY = "copy"
    EXECUTE = "execute"


class Action(str, Enum):
    PRINTED = "printed"
    COPIED = "copied"
    EXECUTED = "executed"
    DECLINED = "declined"


class Outcome(BaseModel):
    """Result of presenting a command to the user."""

    model_config = ConfigDict(frozen=True)

    action: Action
    command_text: str
    exit_code: Optional[int] = None
