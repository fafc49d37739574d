"""
Command-line entry point.

Wires the pipeline together for one invocation:
load settings -> compile prompt -> backend -> extract command -> execution gate

Usage:
    ai-cli "find all pdf files modified today"
    ai-cli --backend bedrock -x "show disk usage of the current directory"
    ai-cli generate --model 3 "Write a haiku about compilers"
    ai-cli config --path
    echo "count lines in all python files" | ai-cli -c
"""

import argparse
import io
import logging
import sys
from contextlib import ExitStack
from typing import List, Optional, TextIO, Tuple

from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .backends import create_backend
from .config import (
    Settings,
    apply_overrides,
    load_settings,
    log_level_for,
    project_config_path,
    user_config_path,
    write_default_config,
)
from .errors import AiCliError
from .executor import present
from .extractor import extract
from .prompts import compile_request
from .schemas import Mode
from .tracing import Tracer

logger = logging.getLogger(__name__)

SUBCOMMANDS = ("run", "generate", "config")
VALUE_OPTIONS = {"--backend", "--ai-backend", "--model", "--temperature", "--max-tokens", "--seed"}
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "transformers", "huggingface_hub", "filelock")

EXIT_INTERRUPTED = 130
EXIT_USAGE = 2


def route_subcommand(argv: List[str]) -> List[str]:
    """
    Put the subcommand first, defaulting to "run".

    Lets `ai-cli -v list files` mean `ai-cli run -v list files`. A prompt
    that starts with a subcommand name needs an explicit `run`.
    """
    if any(arg in ("-h", "--help", "--version") for arg in argv[:1]):
        return argv

    i = 0
    while i < len(argv):
        token = argv[i]
        if token == "--":
            break
        if token.startswith("-"):
            i += 2 if token in VALUE_OPTIONS else 1
            continue
        if token in SUBCOMMANDS:
            return [token] + argv[:i] + argv[i + 1:]
        break
    return ["run"] + argv


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with run, generate and config subcommands."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--backend",
        "--ai-backend",
        dest="backend",
        choices=["local", "bedrock"],
        default=None,
        help="Generation backend (default: from config)",
    )
    common.add_argument(
        "--model", choices=["2", "3"], default=None, help="Local model variant: phi-2 or Phi-3 mini"
    )
    common.add_argument("--cpu", action="store_true", help="Run on CPU rather than on GPU")
    common.add_argument("--quantized", action="store_true", help="Use quantized (GGUF) weights")
    common.add_argument(
        "--tracing", action="store_true", help="Write a trace-<timestamp>.json file"
    )
    common.add_argument("--temperature", type=float, default=None, help="Sampling temperature")
    common.add_argument(
        "--max-tokens", type=int, default=None, help="Maximum tokens to generate"
    )
    common.add_argument("--seed", type=int, default=None, help="Sampling seed")
    common.add_argument(
        "--verbose-prompt",
        action="store_true",
        help="Log the prompt tokens before generating (local backend, shown with -vv)",
    )
    common.add_argument(
        "-v", "--verbose", action="count", default=0, help="More logging (repeatable)"
    )

    parser = argparse.ArgumentParser(
        prog="ai-cli",
        description="Turn natural language into shell one-liners with a local or Bedrock model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ai-cli "find all pdf files modified today"
  ai-cli -x --backend bedrock "show the 10 largest files here"
  ai-cli run generate a random password      # explicit run for prompts starting with a subcommand
  ai-cli generate --model 3 "Explain what a shell pipe is"
  ai-cli config --init
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", parents=[common], help="Generate a shell one-liner (default)"
    )
    run_parser.add_argument("prompt", nargs="*", help="What the command should do")
    mode = run_parser.add_mutually_exclusive_group()
    mode.add_argument(
        "-x", "--execute", dest="mode", action="store_const", const=Mode.EXECUTE,
        help="Run the command after confirmation",
    )
    mode.add_argument(
        "-c", "--copy", dest="mode", action="store_const", const=Mode.COPY,
        help="Copy the command to the clipboard",
    )
    mode.add_argument(
        "--dry-run", dest="mode", action="store_const", const=Mode.DRY_RUN,
        help="Only print the command",
    )

    generate_parser = subparsers.add_parser(
        "generate", parents=[common], help="Stream raw text generation for a prompt"
    )
    generate_parser.add_argument("prompt", nargs="*", help="Prompt text")

    config_parser = subparsers.add_parser("config", help="Show or initialise configuration")
    config_parser.add_argument("--path", action="store_true", help="Show config file locations")
    config_parser.add_argument(
        "--init", action="store_true", help="Write the default user config file"
    )
    config_parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing file with --init"
    )
    config_parser.add_argument("-v", "--verbose", action="count", default=0)

    return parser


def configure_logging(level: int) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                rich_tracebacks=True,
                show_time=False,
                show_path=False,
            )
        ],
        force=True,
    )
    # Third-party chatter only at the most verbose setting
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def settings_overrides(args: argparse.Namespace) -> dict:
    """Command-line flags in config-file layout; unset flags are None."""
    return {
        "ai_backend": args.backend,
        "model_config": {
            "temperature": args.temperature,
            "max_tokens": args.max_tokens,
            "seed": args.seed,
            "verbose_prompt": True if args.verbose_prompt else None,
        },
        "local_model": {
            "model": args.model,
            "cpu": True if args.cpu else None,
            "quantized": True if args.quantized else None,
        },
    }


def read_prompt(words: List[str], stdin: Optional[TextIO]) -> Tuple[str, bool]:
    """
    Get the prompt from positional words or piped stdin.

    Returns:
        (prompt, read_from_stdin)
    """
    if words:
        return " ".join(words).strip(), False
    stream = stdin or sys.stdin
    if stream.isatty():
        return "", False
    return stream.read().strip(), True


def _confirmation_stream(prompt_from_stdin: bool, stdin: Optional[TextIO], stack: ExitStack):
    """Where to read a yes/no answer; stdin is used up when the prompt came through it."""
    if not prompt_from_stdin:
        return stdin
    try:
        return stack.enter_context(open("/dev/tty"))
    except OSError:
        logger.warning("No terminal available for confirmation; the command will not run")
        return io.StringIO()


def run_oneliner(
    args: argparse.Namespace,
    settings: Settings,
    tracer: Tracer,
    console: Console,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> int:
    """Compile, generate, extract and present one command."""
    prompt, from_stdin = read_prompt(args.prompt, stdin)
    if not prompt:
        console.print("[red]✗ No prompt provided. Pass it as arguments or pipe it via stdin.[/red]")
        return EXIT_USAGE

    mode = args.mode or settings.execution.default_mode
    logger.info(f"Prompt is {prompt}")
    logger.info(
        f"temp: {settings.sampling.temperature:.2f} "
        f"repeat-penalty: {settings.sampling.repeat_penalty:.2f} "
        f"max-tokens: {settings.sampling.max_tokens}"
    )

    with tracer.span("compile"):
        request = compile_request(prompt, settings)

    backend = create_backend(request.backend, settings, tracer)
    logger.info(f"Using {request.backend.value} AI backend")

    with console.status(
        f"[cyan]Generating with the {request.backend.value} backend...", spinner="dots"
    ):
        with tracer.span("generate", backend=request.backend.value):
            response = backend.generate(request)
    logger.debug(f"Raw response: {response.raw_text!r}")

    with tracer.span("extract"):
        command = extract(response)

    with ExitStack() as stack:
        input_stream = None
        if mode is Mode.EXECUTE:
            input_stream = _confirmation_stream(from_stdin, stdin, stack)
        with tracer.span("present", mode=mode.value):
            outcome = present(
                command,
                mode,
                console=console,
                input_stream=input_stream,
                shell=settings.execution.shell,
                output=stdout,
            )

    logger.info(f"Outcome: {outcome.action.value}")
    return 0


def run_generate(
    args: argparse.Namespace,
    settings: Settings,
    tracer: Tracer,
    console: Console,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> int:
    """Stream a raw completion with no command-oriented system prompt."""
    prompt, _ = read_prompt(args.prompt, stdin)
    if not prompt:
        console.print("[red]✗ No prompt provided. Pass it as arguments or pipe it via stdin.[/red]")
        return EXIT_USAGE

    out = stdout or sys.stdout
    request = compile_request(prompt, settings, system_instructions="")
    backend = create_backend(request.backend, settings, tracer)

    with tracer.span("generate.stream", backend=request.backend.value):
        for chunk in backend.stream(request):
            out.write(chunk)
            out.flush()
    out.write("\n")
    return 0


def run_config(
    args: argparse.Namespace,
    console: Console,
    stdout: Optional[TextIO] = None,
    settings: Optional[Settings] = None,
) -> int:
    """Show config locations, write the default file, or print resolved settings."""
    out = Console(file=stdout) if stdout else Console()
    user_path = user_config_path()
    project_path = project_config_path()

    if args.init:
        if write_default_config(user_path, force=args.force):
            console.print(f"[green]✓ Wrote default configuration to {user_path}[/green]")
            return 0
        console.print(f"[yellow]{user_path} already exists (use --force to overwrite)[/yellow]")
        return 1

    if args.path:
        for label, path in (("user", user_path), ("project", project_path)):
            state = "found" if path.exists() else "missing"
            out.print(f"{label}: {path} ({state})", highlight=False, soft_wrap=True)
        return 0

    settings = settings or load_settings()
    out.print_json(data=settings.summary())
    return 0


def run(
    argv: Optional[List[str]] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> int:
    """
    Run one invocation of the CLI.

    Args:
        argv: Arguments without the program name (default: sys.argv[1:])
        stdin: Prompt and confirmation input (default: sys.stdin / terminal)
        stdout: Where commands and generated text are written

    Returns:
        Process exit code
    """
    argv = route_subcommand(list(sys.argv[1:] if argv is None else argv))
    args = build_parser().parse_args(argv)
    console = Console(stderr=True)
    tracer = Tracer(enabled=getattr(args, "tracing", False))

    try:
        if args.command == "config" and (args.init or args.path):
            configure_logging(log_level_for("error", args.verbose))
            return run_config(args, console, stdout=stdout)

        with tracer.span("load_config"):
            settings = load_settings()
        configure_logging(log_level_for(settings.verbosity, args.verbose))

        if args.command == "config":
            return run_config(args, console, stdout=stdout, settings=settings)

        settings = apply_overrides(settings, settings_overrides(args))

        if args.command == "generate":
            return run_generate(args, settings, tracer, console, stdin=stdin, stdout=stdout)
        return run_oneliner(args, settings, tracer, console, stdin=stdin, stdout=stdout)

    except AiCliError as e:
        logger.debug("Run failed", exc_info=True)
        console.print(f"[red]✗ {type(e).__name__}: {e}[/red]")
        return e.exit_code

    except KeyboardInterrupt:
        console.print("\n[yellow]⚠ Interrupted by user[/yellow]")
        return EXIT_INTERRUPTED

    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        console.print(f"\n[red]✗ Error: {e}[/red]")
        return 1

    finally:
        tracer.close()


def main():
    """Console-script entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
