#!/usr/bin/env python3
"""
End-to-end tests for the ai-cli command line.

Each test runs in a fresh working directory with its own XDG config home,
and the backend is replaced by a canned one unless the test is about
backend failures.
"""

import io
import json
import logging
import os
import sys
import tempfile
from contextlib import contextmanager
from pathlib import Path
from unittest import mock

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from ai_cli.cli import route_subcommand, run
from ai_cli.schemas import Backend, BackendResponse

# Setup logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class CannedBackend:
    """Backend stand-in returning fixed text."""

    def __init__(self, text="```bash\nls -la\n```", chunks=None, error=None):
        self.text = text
        self.chunks = chunks or []
        self.error = error
        self.requests = []

    def generate(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return BackendResponse(raw_text=self.text, backend_used=request.backend)

    def stream(self, request):
        self.requests.append(request)
        yield from self.chunks


@contextmanager
def isolated_env():
    """Temporary working directory and config home, with no AI_CLI_* variables."""
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        previous = os.getcwd()
        os.chdir(root)
        try:
            with mock.patch.dict(os.environ, {"XDG_CONFIG_HOME": str(root / "xdg")}):
                for name in [n for n in os.environ if n.startswith("AI_CLI_")]:
                    del os.environ[name]
                yield root
        finally:
            os.chdir(previous)


@contextmanager
def canned(backend):
    with mock.patch("ai_cli.cli.create_backend", return_value=backend) as factory:
        yield factory


def test_route_subcommand():
    assert route_subcommand(["list", "files"]) == ["run", "list", "files"]
    assert route_subcommand(["-v", "list", "files"]) == ["run", "-v", "list", "files"]
    assert route_subcommand(["--backend", "bedrock", "generate", "hi"]) == [
        "generate", "--backend", "bedrock", "hi",
    ]
    assert route_subcommand(["config", "--path"]) == ["config", "--path"]
    assert route_subcommand(["run", "generate", "a", "password"]) == [
        "run", "generate", "a", "password",
    ]
    assert route_subcommand(["--", "config"]) == ["run", "--", "config"]
    assert route_subcommand(["--version"]) == ["--version"]
    assert route_subcommand([]) == ["run"]
    return True


def test_dry_run_prints_command():
    """Default mode prints the extracted command to stdout and exits 0."""
    logger.info("Testing dry run...")

    with isolated_env() as root:
        backend = CannedBackend("Sure! Here you go:\n```\nls -la\n```\n")
        stdout = io.StringIO()

        with canned(backend) as factory, mock.patch("ai_cli.executor.subprocess.run") as sub:
            code = run(["list", "all", "files"], stdout=stdout)
            sub.assert_not_called()

        assert code == 0
        assert stdout.getvalue() == "ls -la\n"
        assert factory.call_args.args[0] is Backend.LOCAL
        assert backend.requests[0].prompt == "list all files"
        assert (root / "xdg" / "ai-cli" / "config.toml").exists(), "First run writes config"

    logger.info("✓ Dry run tests passed")
    return True


def test_prompt_from_stdin():
    with isolated_env():
        backend = CannedBackend("df -h")
        stdout = io.StringIO()
        with canned(backend):
            code = run(["--dry-run"], stdin=io.StringIO("show disk usage\n"), stdout=stdout)
        assert code == 0
        assert backend.requests[0].prompt == "show disk usage"
        assert stdout.getvalue() == "df -h\n"
    return True


def test_empty_prompt():
    with isolated_env():
        with canned(CannedBackend()) as factory:
            code = run([], stdin=io.StringIO(""))
        assert code == 2
        factory.assert_not_called()
    return True


def test_flags_reach_request():
    with isolated_env():
        backend = CannedBackend()
        with canned(backend) as factory:
            code = run(
                [
                    "--backend", "bedrock", "--temperature", "0.2", "--max-tokens", "50",
                    "--seed", "7", "--verbose-prompt", "ls",
                ],
                stdout=io.StringIO(),
            )
        assert code == 0
        request = backend.requests[0]
        assert request.backend is Backend.BEDROCK
        assert request.model_params.temperature == 0.2
        assert request.model_params.max_tokens == 50
        assert request.model_params.seed == 7
        assert request.model_params.verbose_prompt is True
        settings = factory.call_args.args[1]
        assert settings.ai_backend is Backend.BEDROCK
    return True


def test_bedrock_without_credentials():
    """Missing AWS credentials exit 3 without running anything."""
    logger.info("Testing Bedrock auth failure...")

    with isolated_env():
        session = mock.Mock()
        session.get_credentials.return_value = None

        with mock.patch("boto3.Session", return_value=session), mock.patch(
            "ai_cli.executor.subprocess.run"
        ) as sub:
            code = run(["--backend", "bedrock", "-x", "list files"], stdin=io.StringIO("y\n"))
            sub.assert_not_called()

        assert code == 3
        session.client.assert_not_called()

    logger.info("✓ Bedrock auth failure tests passed")
    return True


def test_no_command_found():
    with isolated_env():
        with canned(CannedBackend("I'm sorry, I can't help with that.")):
            code = run(["make me a sandwich"], stdout=io.StringIO())
        assert code == 4
    return True


def test_execute_declined_and_failed():
    with isolated_env():
        with canned(CannedBackend("false")), mock.patch("ai_cli.executor.subprocess.run") as sub:
            code = run(["-x", "fail please"], stdin=io.StringIO("n\n"))
            sub.assert_not_called()
        assert code == 0, "Declining is not an error"

        with canned(CannedBackend("false")), mock.patch("ai_cli.executor.subprocess.run") as sub:
            sub.return_value = mock.Mock(returncode=1)
            code = run(["-x", "fail please"], stdin=io.StringIO("y\n"))
            sub.assert_called_once()
        assert code == 5
    return True


def test_config_error_exit_code():
    with isolated_env() as root:
        (root / "ai-cli.toml").write_text('ai_backend = "openai"\n')
        with canned(CannedBackend()) as factory:
            code = run(["list files"], stdout=io.StringIO())
        assert code == 2
        factory.assert_not_called()
    return True


def test_interrupt():
    with isolated_env():
        with canned(CannedBackend(error=KeyboardInterrupt())):
            code = run(["list files"], stdout=io.StringIO())
        assert code == 130
    return True


def test_tracing_writes_file():
    """--tracing leaves a Chrome trace in the working directory."""
    logger.info("Testing tracing...")

    with isolated_env() as root:
        with canned(CannedBackend()):
            code = run(["--tracing", "list files"], stdout=io.StringIO())
        assert code == 0

        traces = list(root.glob("trace-*.json"))
        assert len(traces) == 1, f"Expected one trace file, found {traces}"
        payload = json.loads(traces[0].read_text())
        names = [event["name"] for event in payload["traceEvents"]]
        for name in ["load_config", "compile", "generate", "extract", "present"]:
            assert name in names, f"Missing span {name}"
        assert all(event["ph"] == "X" for event in payload["traceEvents"])

    with isolated_env() as root:
        with canned(CannedBackend()):
            run(["list files"], stdout=io.StringIO())
        assert list(root.glob("trace-*.json")) == [], "No trace without --tracing"

    logger.info("✓ Tracing tests passed")
    return True


def test_generate_streams_raw_text():
    with isolated_env():
        backend = CannedBackend(chunks=["Once", " upon", " a time"])
        stdout = io.StringIO()
        with canned(backend):
            code = run(["generate", "Once upon"], stdout=stdout)
        assert code == 0
        assert stdout.getvalue() == "Once upon a time\n"
        assert backend.requests[0].system_instructions == ""
    return True


def test_config_subcommand():
    with isolated_env() as root:
        user_file = root / "xdg" / "ai-cli" / "config.toml"

        stdout = io.StringIO()
        assert run(["config", "--path"], stdout=stdout) == 0
        output = stdout.getvalue()
        assert f"user: {user_file} (missing)" in output
        assert "ai-cli.toml (missing)" in output
        assert not user_file.exists(), "--path must not create files"

        assert run(["config", "--init"]) == 0
        assert user_file.exists()
        assert run(["config", "--init"]) == 1, "Existing file is kept without --force"
        assert run(["config", "--init", "--force"]) == 0

        (root / "ai-cli.toml").write_text("[model_config]\ntemperature = 0.4\n")
        stdout = io.StringIO()
        assert run(["config"], stdout=stdout) == 0
        summary = json.loads(stdout.getvalue())
        assert summary["model_config"]["temperature"] == 0.4
        assert summary["ai_backend"] == "local"
    return True


def run_all_tests():
    """Run all CLI tests."""
    tests = [
        ("Subcommand routing", test_route_subcommand),
        ("Dry run", test_dry_run_prints_command),
        ("Prompt from stdin", test_prompt_from_stdin),
        ("Empty prompt", test_empty_prompt),
        ("Flags reach request", test_flags_reach_request),
        ("Bedrock without credentials", test_bedrock_without_credentials),
        ("No command found", test_no_command_found),
        ("Execute declined and failed", test_execute_declined_and_failed),
        ("Config error exit code", test_config_error_exit_code),
        ("Interrupt", test_interrupt),
        ("Tracing", test_tracing_writes_file),
        ("Generate", test_generate_streams_raw_text),
        ("Config subcommand", test_config_subcommand),
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
