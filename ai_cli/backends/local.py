"""In-process generation with a Hugging Face model."""

import logging
import time
from typing import Callable, Iterator, Optional

from ..config import LocalModelSettings
from ..generator import TextGenerator
from ..model_loader import get_model_info, load_tokenizer_and_model
from ..schemas import Backend, BackendResponse, GenerationRequest
from ..tracing import Tracer

logger = logging.getLogger(__name__)


class LocalBackend:
    """Runs phi-2 / Phi-3 (or a configured model) on this machine."""

    kind = Backend.LOCAL

    def __init__(
        self,
        settings: LocalModelSettings,
        tracer: Optional[Tracer] = None,
        loader: Callable = load_tokenizer_and_model,
    ):
        self.settings = settings
        self.tracer = tracer or Tracer()
        self._loader = loader
        self._generator: Optional[TextGenerator] = None

    def _get_generator(self) -> TextGenerator:
        """Load the model on first use."""
        if self._generator is None:
            start = time.perf_counter()
            with self.tracer.span("load_model", model=self.settings.model.value):
                tokenizer, model, device = self._loader(self.settings)
            logger.info(f"Loaded the model in {time.perf_counter() - start:.2f}s")

            info = get_model_info(model)
            if info:
                logger.info(f"Model: {info.get('num_parameters_millions', '?')}M parameters")

            self._generator = TextGenerator(
                model, tokenizer, device=device, generation_timeout=self.settings.timeout_seconds
            )
        return self._generator

    def generate(self, request: GenerationRequest) -> BackendResponse:
        """
        Generate a full completion.

        Raises:
            ModelUnavailable: If the model cannot be loaded
            GenerationTimeout: If generation exceeds the deadline
        """
        generator = self._get_generator()
        start = time.perf_counter()
        with self.tracer.span("local.generate", max_tokens=request.model_params.max_tokens):
            text = generator.generate_text(
                request.prompt,
                request.model_params,
                system_prompt=request.system_instructions,
            )
        elapsed = time.perf_counter() - start
        logger.info(f"Generated the output in {elapsed:.2f}s")
        return BackendResponse(raw_text=text, backend_used=self.kind, elapsed_seconds=elapsed)

    def stream(self, request: GenerationRequest) -> Iterator[str]:
        """Yield the completion chunk by chunk."""
        generator = self._get_generator()
        with self.tracer.span("local.stream", max_tokens=request.model_params.max_tokens):
            yield from generator.stream_text(
                request.prompt,
                request.model_params,
                system_prompt=request.system_instructions,
            )
