"""
Text generation wrapper module.

This module provides a clean interface for text generation with:
- Sampling parameters taken from ModelParams
- Chat template support, with a plain instruct frame for base models
- Streaming capability
- A generation deadline
"""

import logging
import queue
import signal
import threading
import time
from contextlib import contextmanager
from typing import Iterator, List, Optional

import torch
from transformers import TextIteratorStreamer, set_seed

from .errors import BackendError, GenerationTimeout
from .prompts import format_instruct_prompt
from .schemas import ModelParams

logger = logging.getLogger(__name__)


class TextGenerator:
    """Wrapper around model.generate() with sane defaults."""

    def __init__(self, model, tokenizer, device: str = "cpu", generation_timeout: int = 300):
        """
        Initialize the text generator.

        Args:
            model: The loaded language model
            tokenizer: The loaded tokenizer
            device: Device the inputs are moved to
            generation_timeout: Maximum time in seconds for generation (default: 300s/5min)
        """
        self.model = model
        self.tokenizer = tokenizer
        self.device = device
        self.generation_timeout = generation_timeout

    @contextmanager
    def _generation_timeout(self, timeout: Optional[int] = None):
        """Context manager raising GenerationTimeout when the deadline passes."""
        timeout = timeout or self.generation_timeout

        def timeout_handler(signum, frame):
            raise GenerationTimeout(f"Generation timed out after {timeout} seconds")

        # SIGALRM only works on Unix-like systems and in the main thread
        if threading.current_thread() is not threading.main_thread() or not hasattr(
            signal, "SIGALRM"
        ):
            logger.debug("Skipping timeout (no SIGALRM or not in main thread)")
            yield
            return

        old_handler = signal.signal(signal.SIGALRM, timeout_handler)
        signal.alarm(timeout)
        try:
            yield
        finally:
            signal.alarm(0)
            signal.signal(signal.SIGALRM, old_handler)

    def build_prompt(self, prompt: str, system_prompt: str = "") -> str:
        """
        Format the prompt for the loaded model.

        Uses the tokenizer's chat template when it has one, otherwise a
        Human/Assistant frame around the system instructions.
        """
        if not getattr(self.tokenizer, "chat_template", None):
            return format_instruct_prompt(prompt, system_prompt)

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            return self.tokenizer.apply_chat_template(
                messages, tokenize=False, add_generation_prompt=True
            )
        except Exception as e:
            logger.warning(f"Chat template failed, using instruct frame: {e}")
            return format_instruct_prompt(prompt, system_prompt)

    def _log_prompt_tokens(self, inputs, params: ModelParams) -> None:
        if not params.verbose_prompt:
            return
        ids = inputs.input_ids[0].tolist()
        logger.info(f"Prompt has {len(ids)} tokens")
        for token_id, token in zip(ids, self.tokenizer.convert_ids_to_tokens(ids)):
            logger.info(f"{token_id:7} -> '{token}'")

    def _generation_kwargs(self, params: ModelParams) -> dict:
        if params.seed is not None:
            set_seed(params.seed)

        kwargs = {
            "max_new_tokens": params.max_tokens,
            "repetition_penalty": params.repeat_penalty,
            "pad_token_id": self.tokenizer.eos_token_id,
        }
        if params.temperature > 0:
            kwargs.update(do_sample=True, temperature=params.temperature, top_p=params.top_p)
        else:
            kwargs["do_sample"] = False
        return kwargs

    def generate_text(self, prompt: str, params: ModelParams, system_prompt: str = "") -> str:
        """
        Generate a completion for a prompt.

        Args:
            prompt: The user prompt
            params: Sampling parameters
            system_prompt: Optional system instruction

        Returns:
            Only the newly generated text

        Raises:
            GenerationTimeout: If generation exceeds the deadline
        """
        text = self.build_prompt(prompt, system_prompt)
        inputs = self.tokenizer(text, return_tensors="pt").to(self.device)
        input_length = inputs.input_ids.shape[1]
        self._log_prompt_tokens(inputs, params)

        logger.debug(f"Input length: {input_length} tokens")
        logger.debug(f"Generating up to {params.max_tokens} new tokens")

        start = time.perf_counter()
        with self._generation_timeout():
            with torch.no_grad():
                outputs = self.model.generate(**inputs, **self._generation_kwargs(params))

        new_tokens = outputs[0][input_length:]
        elapsed = time.perf_counter() - start
        logger.info(
            f"{len(new_tokens)} tokens generated ({len(new_tokens) / max(elapsed, 1e-6):.2f} token/s)"
        )
        return self.tokenizer.decode(new_tokens, skip_special_tokens=True)

    def stream_text(
        self, prompt: str, params: ModelParams, system_prompt: str = ""
    ) -> Iterator[str]:
        """
        Generate a completion, yielding text chunks as they are produced.

        Example:
            >>> for chunk in generator.stream_text("Once upon a time", params):
            ...     print(chunk, end='', flush=True)
        """
        text = self.build_prompt(prompt, system_prompt)
        inputs = self.tokenizer(text, return_tensors="pt").to(self.device)
        self._log_prompt_tokens(inputs, params)

        streamer = TextIteratorStreamer(
            self.tokenizer,
            skip_prompt=True,
            skip_special_tokens=True,
            timeout=self.generation_timeout,
        )
        generation_kwargs = dict(**inputs, streamer=streamer, **self._generation_kwargs(params))
        errors: List[Exception] = []

        def _run():
            try:
                with torch.no_grad():
                    self.model.generate(**generation_kwargs)
            except Exception as e:
                errors.append(e)
                streamer.end()

        # Daemon so an abandoned generation never blocks interpreter exit
        thread = threading.Thread(target=_run, daemon=True)
        thread.start()

        deadline = time.monotonic() + self.generation_timeout
        try:
            for new_text in streamer:
                yield new_text
                if time.monotonic() > deadline:
                    raise GenerationTimeout(
                        f"Generation timed out after {self.generation_timeout} seconds"
                    )
        except queue.Empty as e:
            raise GenerationTimeout(
                f"No output within {self.generation_timeout} seconds"
            ) from e

        thread.join()
        if errors:
            raise BackendError(f"Generation failed: {errors[0]}") from errors[0]
