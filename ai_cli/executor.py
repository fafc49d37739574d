"""
Execution gate: print, copy or run an extracted command.

Running a command always requires an explicit "yes" from the user.
"""

import logging
import os
import re
import subprocess
import sys
from typing import List, Optional, TextIO

import pyperclip
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.text import Text

from .errors import ExecutionError
from .schemas import Action, ExtractedCommand, Mode, Outcome

logger = logging.getLogger(__name__)

RISK_PATTERNS = [
    (r"\brm\s+(-\w*[rf]\w*\s+)+", "recursive or forced delete"),
    (r"\bsudo\b", "runs with elevated privileges"),
    (r"\bdd\b\s+.*\bof=", "writes raw data to a device or file"),
    (r"\bmkfs(\.\w+)?\b", "formats a filesystem"),
    (r"\b(shutdown|reboot|halt|poweroff)\b", "stops or restarts the machine"),
    (r"\bchmod\s+(-R\s+)?[0-7]*777\b", "makes files world-writable"),
    (r"(curl|wget)\b[^|]*\|\s*(sudo\s+)?(ba|z)?sh\b", "pipes a download into a shell"),
    (r"(^|[^>])>\s*/dev/(sd|nvme|disk)", "overwrites a block device"),
    (r":\(\)\s*\{\s*:\|:&\s*\};:", "fork bomb"),
    (r"\bgit\s+push\b.*(--force|-f)\b", "force-pushes git history"),
]


def assess_risk(command: str) -> List[str]:
    """
    List the reasons a command deserves extra care.

    Args:
        command: Shell command text

    Returns:
        Human-readable risk descriptions, empty when nothing matched
    """
    return [reason for pattern, reason in RISK_PATTERNS if re.search(pattern, command)]


def default_shell() -> str:
    return os.environ.get("SHELL") or "/bin/sh"


def present(
    command: ExtractedCommand,
    mode: Mode,
    console: Optional[Console] = None,
    input_stream: Optional[TextIO] = None,
    shell: Optional[str] = None,
    output: Optional[TextIO] = None,
) -> Outcome:
    """
    Deliver a command according to mode.

    Args:
        command: The extracted command
        mode: DRY_RUN prints it, COPY puts it on the clipboard, EXECUTE runs it
            after confirmation
        console: Console for panels and prompts (default: stderr)
        input_stream: Where the confirmation answer is read from (default: terminal)
        shell: Shell executable for EXECUTE (default: $SHELL or /bin/sh)
        output: Stream the DRY_RUN command is written to (default: stdout)

    Returns:
        What happened to the command

    Raises:
        ExecutionError: If copying fails or the command exits non-zero
    """
    console = console or Console(stderr=True)
    text = command.command_text

    if mode is Mode.DRY_RUN:
        print(text, file=output or sys.stdout)
        return Outcome(action=Action.PRINTED, command_text=text)

    if mode is Mode.COPY:
        try:
            pyperclip.copy(text)
        except pyperclip.PyperclipException as e:
            raise ExecutionError(f"Could not copy to clipboard: {e}") from e
        console.print(f"[green]✓ Copied to clipboard:[/green] {text}")
        return Outcome(action=Action.COPIED, command_text=text)

    return _confirm_and_run(text, console, input_stream, shell or default_shell())


def _confirm_and_run(text: str, console: Console, input_stream, shell: str) -> Outcome:
    body = Text(text, style="bold")
    risks = assess_risk(text)
    for reason in risks:
        body.append(f"\n⚠ {reason}", style="yellow")

    console.print(
        Panel(
            body,
            title="[bold cyan]Command[/bold cyan]",
            border_style="red" if risks else "cyan",
            padding=(1, 2),
        )
    )

    try:
        confirmed = Confirm.ask(
            "Run this command?", default=False, console=console, stream=input_stream
        )
    except EOFError:
        confirmed = False

    if not confirmed:
        console.print("[yellow]Command not executed.[/yellow]")
        logger.info("User declined execution")
        return Outcome(action=Action.DECLINED, command_text=text)

    logger.info(f"Executing with {shell}: {text}")
    completed = subprocess.run(text, shell=True, executable=shell, check=False)

    if completed.returncode != 0:
        raise ExecutionError(
            f"Command exited with status {completed.returncode}",
            returncode=completed.returncode,
        )
    return Outcome(action=Action.EXECUTED, command_text=text, exit_code=completed.returncode)
