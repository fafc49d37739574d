"""
Prompt templates and request compilation.

Turns a natural-language instruction into a GenerationRequest for the
selected backend.
"""

from typing import Optional

from .config import Settings
from .schemas import Backend, GenerationRequest


# One-liner system prompt
SYSTEM_PROMPT = """You are a command-line expert who writes bash one-liners. Turn the user's task into a single, concise, safe bash command.

Rules:
1. Reply with ONLY the bash command on one line, with no explanation, no markdown and no prompt prefix
2. Quote and escape paths, variables and special characters correctly
3. Prefer portable POSIX tools (find, grep, sed, awk, xargs, sort) when they do the job
4. Chain steps with pipes (|) and use command substitution $() where it helps
5. Never produce destructive operations (rm -rf, dd, mkfs, overwriting redirections) unless the task explicitly asks for them
6. If a note is essential, append it as a trailing # comment on the same line

Example:
Human: Find all PDF files modified in the last 24 hours
Assistant: find . -type f -name "*.pdf" -mtime -1"""


def format_instruct_prompt(prompt: str, system_instructions: str = "") -> str:
    """
    Build a plain-text prompt for models without a chat template.

    Args:
        prompt: The user instruction
        system_instructions: Optional system text placed before the exchange

    Returns:
        Prompt ending with an open "Assistant:" turn, or the bare prompt when
        there are no system instructions
    """
    if not system_instructions:
        return prompt
    return f"{system_instructions}\n\nHuman: {prompt}\nAssistant:"


def compile_request(
    natural_language: str,
    settings: Settings,
    backend: Optional[Backend] = None,
    system_instructions: str = SYSTEM_PROMPT,
) -> GenerationRequest:
    """
    Compile a natural-language instruction into a generation request.

    Deterministic: identical input and settings give an identical request.

    Args:
        natural_language: What the user wants done
        settings: Loaded settings; sampling parameters come from here
        backend: Backend to target (default: settings.ai_backend)
        system_instructions: System text; pass "" for raw text generation

    Returns:
        An immutable GenerationRequest
    """
    return GenerationRequest(
        prompt=natural_language.strip(),
        backend=backend or settings.ai_backend,
        model_params=settings.sampling,
        system_instructions=system_instructions,
    )
