"""
Pull a single shell command out of free-form model output.

Models wrap commands in prose, markdown fences and trailing explanations.
Candidates are searched in this order and the first acceptable one wins:
1. Lines inside fenced code blocks, multi-line or ```on one line```; the
   sole line of a block is taken as written, without the prose checks
2. Bare lines outside fences (lines containing backticks are skipped here)
3. Inline `backtick` spans
"""

import logging
import re
import shlex
from typing import Iterator, List, Optional, Tuple

from .errors import NoCommandFound
from .schemas import BackendResponse, CommandSource, ExtractedCommand

logger = logging.getLogger(__name__)

FENCE_RE = re.compile(r"```[ \t]*[\w+-]*[ \t]*\n(.*?)(?:```|\Z)", re.DOTALL)
# ```ls -la``` or ```bash ls -la``` on a single line
ONE_LINE_FENCE_RE = re.compile(
    r"```(?:(?:bash|sh|shell|zsh|console|terminal)[ \t]+)?([^`\n]+?)[ \t]*```"
)
INLINE_RE = re.compile(r"(?<!`)`([^`\n]+)`(?!`)")
PROMPT_MARKER_RE = re.compile(r"^(?:\$|>|%)\s+")
ROLE_LABEL_RE = re.compile(r"^(?:assistant|answer|command|bash|output)\s*:\s*", re.IGNORECASE)
FIRST_TOKEN_RE = re.compile(r"^(?:[\w.~/][\w.~/+-]*|[A-Za-z_]\w*=\S*|[({!\[])")
SHELL_CHARS_RE = re.compile(r"[|&;<>$`=/\\*]|(?:^|\s)-{1,2}\w")

PROSE_OPENERS = {
    "sure", "here", "here's", "this", "that", "these", "the", "you", "your",
    "i", "i'm", "it", "it's", "to", "note", "explanation", "certainly",
    "of", "okay", "ok", "alternatively", "please", "a", "an", "in", "if",
    "human", "user", "we", "let's", "first", "then", "finally", "for", "will",
    "run", "use", "try", "execute", "using", "with", "when",
}

SOLE_FENCED_CONFIDENCE = 1.0
CONFIDENCE = {
    CommandSource.FENCED: 0.8,
    CommandSource.LINE: 0.6,
    CommandSource.INLINE: 0.4,
}


def clean_candidate(line: str) -> str:
    """Trim a candidate and drop leading prompt markers or role labels."""
    line = line.strip()
    line = ROLE_LABEL_RE.sub("", line)
    line = PROMPT_MARKER_RE.sub("", line)
    return line.strip()


def is_runnable_line(line: str) -> bool:
    """Non-empty, not a comment, and tokenizable by the shell lexer."""
    if not line or line.startswith("#"):
        return False
    try:
        return bool(shlex.split(line, comments=True))
    except ValueError:
        return False


def is_plausible_command(line: str) -> bool:
    """
    Decide whether a line looks like a shell command rather than prose.

    Args:
        line: A cleaned candidate line

    Returns:
        True if the line could be run as a one-liner
    """
    if not line or line.startswith("#"):
        return False

    if not FIRST_TOKEN_RE.match(line):
        return False

    try:
        tokens = shlex.split(line, comments=True)
    except ValueError:
        # unbalanced quotes
        return False
    if not tokens:
        return False

    head = tokens[0]
    word = head.lower().rstrip(",!")
    capitalised = head[:1].isupper()
    has_shell_syntax = bool(SHELL_CHARS_RE.search(line))

    # "Note:", "Output:" and the like label prose
    if head.endswith(":"):
        return False
    # "for"/"if" open shell loops too, but never capitalised
    if word in PROSE_OPENERS and (capitalised or not has_shell_syntax):
        return False
    if line.endswith(":"):
        return False
    if line[-1] in ".!?" and not has_shell_syntax and len(tokens) > 2:
        return False
    if capitalised and len(tokens) > 1 and not has_shell_syntax:
        return False
    return True


def _candidates(text: str) -> Iterator[Tuple[str, CommandSource, bool]]:
    """Yield (line, source, is_sole_line_of_its_block) in search order."""
    blocks: List[Tuple[int, List[str]]] = []

    for match in ONE_LINE_FENCE_RE.finditer(text):
        blocks.append((match.start(), [match.group(1)]))
    # blank them out, keeping offsets, so FENCE_RE never opens on their closing ticks
    text = ONE_LINE_FENCE_RE.sub(lambda m: " " * len(m.group(0)), text)

    fenced_spans = []
    for match in FENCE_RE.finditer(text):
        fenced_spans.append(match.span())
        lines = [line for line in match.group(1).splitlines() if line.strip()]
        blocks.append((match.start(), lines))

    for _, lines in sorted(blocks, key=lambda block: block[0]):
        for line in lines:
            yield line, CommandSource.FENCED, len(lines) == 1

    outside = text
    for start, end in reversed(fenced_spans):
        outside = outside[:start] + "\n" + outside[end:]

    for line in outside.splitlines():
        if "`" in line:
            continue
        yield line, CommandSource.LINE, False

    for match in INLINE_RE.finditer(outside):
        yield match.group(1), CommandSource.INLINE, False


def find_command(text: str) -> Optional[ExtractedCommand]:
    """Return the first plausible command in text, or None."""
    for raw, source, sole in _candidates(text):
        candidate = clean_candidate(raw)
        # the sole line of a fenced block is taken as written
        accepted = is_runnable_line(candidate) if sole else is_plausible_command(candidate)
        if accepted:
            confidence = SOLE_FENCED_CONFIDENCE if sole else CONFIDENCE[source]
            return ExtractedCommand(
                command_text=candidate, confidence=confidence, source=source
            )
    return None


def extract(response: BackendResponse) -> ExtractedCommand:
    """
    Extract one command from a backend response.

    Args:
        response: Raw backend output

    Returns:
        The first plausible command (fenced, then bare lines, then inline spans)

    Raises:
        NoCommandFound: If nothing in the response resembles a shell command
    """
    command = find_command(response.raw_text)
    if command is None:
        logger.debug(f"No command in response: {response.raw_text!r}")
        raise NoCommandFound("No shell command could be derived from the model response")

    logger.info(f"Extracted command ({command.source.value}): {command.command_text}")
    return command
