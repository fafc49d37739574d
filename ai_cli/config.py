"""
Configuration loading for ai-cli.

Settings are resolved once at startup from, lowest precedence first:
- Built-in defaults
- The user-global TOML file (~/.config/ai-cli/config.toml)
- The project-local TOML file (./ai-cli.toml)
- AI_CLI_* environment variables (a .env file is loaded first)

The resulting Settings object is immutable and passed explicitly to every
component that needs it.
"""

import logging
import os
import tomllib
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Set, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .schemas import Backend, Mode, ModelParams

logger = logging.getLogger(__name__)

APP_NAME = "ai-cli"
PROJECT_CONFIG_NAME = "ai-cli.toml"
ENV_PREFIX = "AI_CLI_"

VERBOSITY_LEVELS = ["error", "warn", "info", "debug", "trace"]

DEFAULT_CONFIG_TOML = """\
# ai-cli configuration
# A project-local ./ai-cli.toml overrides values in this file.

verbosity = "error"      # error, warn, info, debug, trace
ai_backend = "local"     # local or bedrock

[model_config]
temperature = 0.8
top_p = 0.9
repeat_penalty = 1.1
max_tokens = 100
verbose_prompt = false
# seed = 299792458

[local_model]
model = "2"              # "2" (phi-2) or "3" (Phi-3 mini)
cpu = false
quantized = false
revision = "main"
dtype = "auto"           # auto, float16, bfloat16, float32
timeout_seconds = 300
# model_id = "microsoft/phi-2"
# weight_file = "/path/to/model.gguf"
# tokenizer = "/path/to/tokenizer"

[aws_settings]
region = "us-east-1"
model_id = "anthropic.claude-3-haiku-20240307-v1:0"
connect_timeout = 10
read_timeout = 60
timeout_seconds = 120
# profile = "default"

[execution]
default_mode = "dry-run" # dry-run, copy, execute
# shell = "/bin/bash"
"""


class WhichModel(str, Enum):
    """Local model variants."""

    V2 = "2"
    V3 = "3"


class LocalModelSettings(BaseModel):
    """Settings for the in-process Hugging Face backend."""

    model_config = ConfigDict(frozen=True, extra="forbid", protected_namespaces=())

    model: WhichModel = WhichModel.V2
    cpu: bool = False
    quantized: bool = False
    model_id: Optional[str] = None
    revision: str = "main"
    weight_file: Optional[str] = None
    tokenizer: Optional[str] = None
    dtype: str = "auto"
    timeout_seconds: int = Field(300, gt=0)

    @field_validator("model", mode="before")
    @classmethod
    def _coerce_model(cls, value):
        # TOML users write `model = 2`
        if isinstance(value, int):
            return str(value)
        return value


class AwsSettings(BaseModel):
    """Settings for the AWS Bedrock backend."""

    model_config = ConfigDict(frozen=True, extra="forbid", protected_namespaces=())

    region: str = "us-east-1"
    profile: Optional[str] = None
    model_id: str = "anthropic.claude-3-haiku-20240307-v1:0"
    connect_timeout: int = Field(10, gt=0)
    read_timeout: int = Field(60, gt=0)
    timeout_seconds: int = Field(120, gt=0)


class ExecutionSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    default_mode: Mode = Mode.DRY_RUN
    shell: Optional[str] = None


class Settings(BaseModel):
    """Complete, read-only application settings."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    verbosity: str = "error"
    ai_backend: Backend = Backend.LOCAL
    sampling: ModelParams = Field(default_factory=ModelParams, alias="model_config")
    local_model: LocalModelSettings = Field(default_factory=LocalModelSettings)
    aws_settings: AwsSettings = Field(default_factory=AwsSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)

    @field_validator("verbosity")
    @classmethod
    def _check_verbosity(cls, value: str) -> str:
        value = value.lower()
        if value == "warning":
            value = "warn"
        if value not in VERBOSITY_LEVELS:
            raise ValueError(f"must be one of {', '.join(VERBOSITY_LEVELS)}")
        return value

    def summary(self) -> dict:
        """
        Get a summary of current configuration.

        Returns:
            Dictionary with all config values, keyed as in the TOML file
        """
        return self.model_dump(mode="json", by_alias=True)


def user_config_path() -> Path:
    """Path of the user-global config file, honouring XDG_CONFIG_HOME."""
    base = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_NAME / "config.toml"


def project_config_path(cwd: Optional[Path] = None) -> Path:
    """Path of the project-local config file."""
    return (cwd or Path.cwd()) / PROJECT_CONFIG_NAME


def write_default_config(path: Path, force: bool = False) -> bool:
    """
    Write the default configuration file.

    Args:
        path: Destination file
        force: Overwrite an existing file

    Returns:
        True if the file was written, False if it already existed
    """
    if path.exists() and not force:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TOML, encoding="utf-8")
    logger.info(f"Wrote default configuration to {path}")
    return True


def _read_toml(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML: {e}", path=str(path)) from e
    except OSError as e:
        raise ConfigError(f"cannot read file: {e.strerror}", path=str(path)) from e


def _merge(base: dict, override: Mapping) -> dict:
    """Recursively merge override into a copy of base."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def env_overrides(environ: Mapping[str, str]) -> dict:
    """
    Collect AI_CLI_* variables into a nested dict.

    AI_CLI_AI_BACKEND=bedrock sets a top-level key and
    AI_CLI_MODEL_CONFIG__TEMPERATURE=0.2 sets a key inside a section.
    Variables that name no setting are logged and skipped.
    """
    scalars, sections = _setting_keys()
    overrides: Dict[str, object] = {}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        parts = name[len(ENV_PREFIX):].lower().split("__")
        if len(parts) == 1 and parts[0] in scalars:
            overrides[parts[0]] = value
        elif len(parts) == 2 and parts[1] in sections.get(parts[0], ()):
            overrides.setdefault(parts[0], {})[parts[1]] = value
        else:
            logger.warning(f"Ignoring {name}: no such setting")
    return overrides


def _setting_keys() -> Tuple[Set[str], Dict[str, Set[str]]]:
    """Top-level scalar keys and per-section keys, as spelled in the TOML file."""
    scalars: Set[str] = set()
    sections: Dict[str, Set[str]] = {}
    for field_name, field in Settings.model_fields.items():
        key = field.alias or field_name
        annotation = field.annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            sections[key] = set(annotation.model_fields)
        else:
            scalars.add(key)
    return scalars, sections


def _validate(data: dict, source: str) -> Settings:
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(problems, path=source) from e


def load_settings(
    project_path: Optional[Path] = None,
    user_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    write_default: bool = True,
) -> Settings:
    """
    Resolve settings from defaults, config files and the environment.

    Args:
        project_path: Project-local file (default: ./ai-cli.toml)
        user_path: User-global file (default: ~/.config/ai-cli/config.toml)
        environ: Environment mapping (default: os.environ after loading .env)
        write_default: Write the default user-global file when no file exists

    Returns:
        Validated, immutable Settings

    Raises:
        ConfigError: If a file is malformed or a value is invalid
    """
    project_path = project_path or project_config_path()
    user_path = user_path or user_config_path()
    if environ is None:
        load_dotenv()
        environ = os.environ

    data: dict = {}
    sources: List[str] = []

    if not user_path.exists() and not project_path.exists() and write_default:
        try:
            write_default_config(user_path)
        except OSError as e:
            logger.warning(f"Could not write default config to {user_path}: {e}")

    for path in (user_path, project_path):
        if path.exists():
            data = _merge(data, _read_toml(path))
            _validate(data, str(path))
            sources.append(str(path))

    overrides = env_overrides(environ)
    if overrides:
        data = _merge(data, overrides)
        sources.append("environment")

    settings = _validate(data, "environment" if overrides else "defaults")
    logger.debug(f"Configuration sources: {sources or ['defaults']}")
    return settings


def apply_overrides(settings: Settings, overrides: Mapping) -> Settings:
    """
    Return a copy of settings with command-line overrides applied.

    Args:
        settings: Loaded settings
        overrides: Nested dict in config-file layout; None values are ignored
    """
    cleaned = _drop_none(overrides)
    if not cleaned:
        return settings
    data = _merge(settings.model_dump(by_alias=True), cleaned)
    return _validate(data, "command line")


def _drop_none(values: Mapping) -> dict:
    result = {}
    for key, value in values.items():
        if isinstance(value, Mapping):
            nested = _drop_none(value)
            if nested:
                result[key] = nested
        elif value is not None:
            result[key] = value
    return result


def log_level_for(verbosity: str, extra: int = 0) -> int:
    """
    Map a verbosity name plus a number of -v flags to a logging level.

    Args:
        verbosity: One of VERBOSITY_LEVELS
        extra: Steps to raise verbosity by
    """
    index = VERBOSITY_LEVELS.index(verbosity) + extra
    index = max(0, min(index, len(VERBOSITY_LEVELS) - 1))
    return {
        "error": logging.ERROR,
        "warn": logging.WARNING,
        "info": logging.INFO,
        "debug": logging.DEBUG,
        "trace": logging.DEBUG,
    }[VERBOSITY_LEVELS[index]]
