#!/usr/bin/env python3
"""
Tests for configuration loading.

Covers defaults, first-run file creation, file precedence, environment
overrides and error reporting.
"""

import logging
import os
import sys
import tempfile
from pathlib import Path
from unittest import mock

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from ai_cli.config import (
    DEFAULT_CONFIG_TOML,
    Settings,
    WhichModel,
    apply_overrides,
    env_overrides,
    load_settings,
    log_level_for,
)
from ai_cli.errors import ConfigError
from ai_cli.schemas import Backend, Mode

# Setup logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _paths(tmp: str):
    root = Path(tmp)
    return root / "project" / "ai-cli.toml", root / "home" / "ai-cli" / "config.toml"


def test_defaults_and_first_run():
    """A missing config file is created and built-in defaults are used."""
    logger.info("Testing first run...")

    with tempfile.TemporaryDirectory() as tmp:
        project_path, user_path = _paths(tmp)
        settings = load_settings(project_path=project_path, user_path=user_path, environ={})

        assert user_path.exists(), "Default config file should be written on first run"
        assert user_path.read_text() == DEFAULT_CONFIG_TOML
        assert not project_path.exists(), "Project file must not be created"

        assert settings == Settings(), "First run should give built-in defaults"
        assert settings.ai_backend is Backend.LOCAL
        assert settings.sampling.temperature == 0.8
        assert settings.sampling.repeat_penalty == 1.1
        assert settings.sampling.max_tokens == 100
        assert settings.aws_settings.region == "us-east-1"
        assert settings.execution.default_mode is Mode.DRY_RUN

        # The written default file parses to the same settings
        again = load_settings(project_path=project_path, user_path=user_path, environ={})
        assert again == settings

    logger.info("✓ First run tests passed")
    return True


def test_no_default_written_when_disabled():
    with tempfile.TemporaryDirectory() as tmp:
        project_path, user_path = _paths(tmp)
        load_settings(
            project_path=project_path, user_path=user_path, environ={}, write_default=False
        )
        assert not user_path.exists()
    return True


def test_project_overrides_user():
    """Project-local values win over user-global ones, section by section."""
    logger.info("Testing file precedence...")

    with tempfile.TemporaryDirectory() as tmp:
        project_path, user_path = _paths(tmp)
        user_path.parent.mkdir(parents=True)
        project_path.parent.mkdir(parents=True)

        user_path.write_text(
            'ai_backend = "bedrock"\n'
            "[model_config]\ntemperature = 0.3\nmax_tokens = 200\n"
            '[aws_settings]\nregion = "eu-west-1"\n'
        )
        project_path.write_text("[model_config]\ntemperature = 0.1\n[local_model]\nmodel = 3\n")

        settings = load_settings(project_path=project_path, user_path=user_path, environ={})

        assert settings.ai_backend is Backend.BEDROCK
        assert settings.sampling.temperature == 0.1, "Project file should override user file"
        assert settings.sampling.max_tokens == 200, "Unset project keys keep user values"
        assert settings.aws_settings.region == "eu-west-1"
        assert settings.local_model.model is WhichModel.V3, "Integer model should be accepted"

    logger.info("✓ File precedence tests passed")
    return True


def test_environment_overrides():
    with tempfile.TemporaryDirectory() as tmp:
        project_path, user_path = _paths(tmp)
        environ = {
            "AI_CLI_AI_BACKEND": "bedrock",
            "AI_CLI_MODEL_CONFIG__TEMPERATURE": "0.25",
            "AI_CLI_LOCAL_MODEL__CPU": "true",
            "HOME": "/somewhere",
        }
        settings = load_settings(project_path=project_path, user_path=user_path, environ=environ)

        assert settings.ai_backend is Backend.BEDROCK
        assert settings.sampling.temperature == 0.25
        assert settings.local_model.cpu is True

    assert env_overrides({"AI_CLI_AWS_SETTINGS__REGION": "us-west-2", "PATH": "/bin"}) == {
        "aws_settings": {"region": "us-west-2"}
    }
    assert env_overrides({"AI_CLI___BROKEN": "x"}) == {}
    return True


def test_unknown_environment_variables_are_skipped():
    """AI_CLI_* names that match no setting are logged, not fatal."""
    with tempfile.TemporaryDirectory() as tmp:
        project_path, user_path = _paths(tmp)
        environ = {
            "AI_CLI_TOKEN": "secret",
            "AI_CLI_MODEL_CONFIG__NOPE": "1",
            "AI_CLI_EXECUTION__SHELL__EXTRA": "x",
            "AI_CLI_MODEL_CONFIG__MAX_TOKENS": "42",
        }
        with mock.patch("ai_cli.config.logger") as log:
            settings = load_settings(
                project_path=project_path, user_path=user_path, environ=environ
            )

        assert settings.sampling.max_tokens == 42
        warnings = " ".join(str(call.args[0]) for call in log.warning.call_args_list)
        assert "AI_CLI_TOKEN" in warnings
        assert "AI_CLI_MODEL_CONFIG__NOPE" in warnings
        assert "AI_CLI_EXECUTION__SHELL__EXTRA" in warnings

    assert env_overrides({"AI_CLI_TOKEN": "secret", "AI_CLI_MODEL_CONFIG": "x"}) == {}
    assert env_overrides({"AI_CLI_MODEL_CONFIG__VERBOSE_PROMPT": "true"}) == {
        "model_config": {"verbose_prompt": "true"}
    }
    return True


def test_config_errors_name_the_file():
    """Malformed TOML and invalid values raise ConfigError with the file path."""
    logger.info("Testing config errors...")

    with tempfile.TemporaryDirectory() as tmp:
        project_path, user_path = _paths(tmp)
        project_path.parent.mkdir(parents=True)

        project_path.write_text("ai_backend = \n")
        try:
            load_settings(project_path=project_path, user_path=user_path, environ={})
            assert False, "Malformed TOML should raise ConfigError"
        except ConfigError as e:
            assert e.path == str(project_path)
            assert str(project_path) in str(e)
            assert e.exit_code == 2

        project_path.write_text('ai_backend = "openai"\n')
        try:
            load_settings(project_path=project_path, user_path=user_path, environ={})
            assert False, "Unknown backend should raise ConfigError"
        except ConfigError as e:
            assert "ai_backend" in str(e)

        project_path.write_text("[model_config]\ntemperature = 9.0\n")
        try:
            load_settings(project_path=project_path, user_path=user_path, environ={})
            assert False, "Out-of-range temperature should raise ConfigError"
        except ConfigError as e:
            assert "temperature" in str(e)

        project_path.write_text('verbosity = "loud"\n')
        try:
            load_settings(project_path=project_path, user_path=user_path, environ={})
            assert False, "Unknown verbosity should raise ConfigError"
        except ConfigError as e:
            assert "verbosity" in str(e)

    logger.info("✓ Config error tests passed")
    return True


def test_settings_are_immutable():
    settings = Settings()
    try:
        settings.ai_backend = Backend.BEDROCK
        assert False, "Settings should be frozen"
    except Exception as e:
        assert "frozen" in str(e).lower()
    return True


def test_apply_overrides():
    settings = Settings()
    updated = apply_overrides(
        settings,
        {
            "ai_backend": "bedrock",
            "model_config": {"temperature": 0.0, "max_tokens": None, "seed": 7},
            "local_model": {"model": "3", "cpu": None},
        },
    )

    assert updated.ai_backend is Backend.BEDROCK
    assert updated.sampling.temperature == 0.0
    assert updated.sampling.max_tokens == 100, "None overrides are ignored"
    assert updated.sampling.seed == 7
    assert updated.local_model.model is WhichModel.V3
    assert settings.ai_backend is Backend.LOCAL, "Original settings are untouched"

    assert apply_overrides(settings, {"model_config": {"seed": None}}) is settings

    try:
        apply_overrides(settings, {"model_config": {"max_tokens": 0}})
        assert False, "Invalid override should raise ConfigError"
    except ConfigError as e:
        assert e.path == "command line"
    return True


def test_log_levels():
    assert log_level_for("error") == logging.ERROR
    assert log_level_for("error", 1) == logging.WARNING
    assert log_level_for("error", 2) == logging.INFO
    assert log_level_for("warn", 2) == logging.DEBUG
    assert log_level_for("info", 10) == logging.DEBUG
    return True


def test_summary_uses_file_keys():
    summary = Settings().summary()
    assert "model_config" in summary
    assert summary["ai_backend"] == "local"
    assert summary["local_model"]["model"] == "2"
    return True


def run_all_tests():
    """Run all configuration tests."""
    tests = [
        ("First run", test_defaults_and_first_run),
        ("Default writing disabled", test_no_default_written_when_disabled),
        ("File precedence", test_project_overrides_user),
        ("Environment overrides", test_environment_overrides),
        ("Unknown environment variables", test_unknown_environment_variables_are_skipped),
        ("Config errors", test_config_errors_name_the_file),
        ("Immutability", test_settings_are_immutable),
        ("Command-line overrides", test_apply_overrides),
        ("Log levels", test_log_levels),
        ("Summary", test_summary_uses_file_keys),
    ]

    passed = 0
    failed = 0

    for test_name, test_func in tests:
        try:
            logger.info(f"\n{test_name}...")
            if test_func():
                passed += 1
        except Exception as e:
            logger.error(f"✗ {test_name} failed: {e}", exc_info=True)
            failed += 1

    logger.info(f"Test Results: {passed} passed, {failed} failed")
    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
