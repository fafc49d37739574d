"""
Model and tokenizer loading utilities.

This module handles:
- Resolving the Hugging Face repo and weight file for a model variant
- Loading tokenizer and model with appropriate device and dtype
- Quantized (GGUF) weights
"""

import logging
from pathlib import Path
from typing import NamedTuple, Optional, Tuple

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer

from .config import LocalModelSettings, WhichModel
from .errors import ModelUnavailable

logger = logging.getLogger(__name__)

DEFAULT_MODEL_IDS = {
    WhichModel.V2: "microsoft/phi-2",
    WhichModel.V3: "microsoft/Phi-3-mini-4k-instruct",
}

# (repo, file) for 4-bit GGUF weights
DEFAULT_QUANTIZED = {
    WhichModel.V2: ("TheBloke/phi-2-GGUF", "phi-2.Q4_K_M.gguf"),
    WhichModel.V3: (
        "microsoft/Phi-3-mini-4k-instruct-gguf",
        "Phi-3-mini-4k-instruct-q4.gguf",
    ),
}


class ModelSource(NamedTuple):
    """Where to load a model from."""

    model_id: str
    revision: str
    gguf_file: Optional[str]
    tokenizer_id: str


def resolve_model_source(settings: LocalModelSettings) -> ModelSource:
    """
    Work out repo, revision and weight file from the local model settings.

    An explicit weight_file wins over model_id, which wins over the
    defaults for the selected variant.
    """
    gguf_file = None

    if settings.weight_file:
        path = Path(settings.weight_file).expanduser()
        if path.suffix == ".gguf":
            model_id, gguf_file = str(path.parent), path.name
        else:
            model_id = str(path)
    elif settings.model_id:
        model_id = settings.model_id
    elif settings.quantized:
        model_id, gguf_file = DEFAULT_QUANTIZED[settings.model]
    else:
        model_id = DEFAULT_MODEL_IDS[settings.model]

    tokenizer_id = settings.tokenizer or model_id
    return ModelSource(model_id, settings.revision, gguf_file, tokenizer_id)


def get_device(cpu: bool = False) -> str:
    """
    Get the appropriate device string for PyTorch.

    Returns:
        "cuda" if a GPU is available and not disabled, otherwise "cpu"
    """
    if not cpu and torch.cuda.is_available():
        return "cuda"
    return "cpu"


def get_torch_dtype(dtype_str: str = "auto"):
    """
    Convert dtype string to torch dtype.

    Args:
        dtype_str: String representation of dtype ("auto", "float16", "bfloat16", "float32")

    Returns:
        torch.dtype or "auto"
    """
    if dtype_str == "auto":
        return "auto"

    dtype_map = {
        "float16": torch.float16,
        "fp16": torch.float16,
        "f16": torch.float16,
        "bfloat16": torch.bfloat16,
        "bf16": torch.bfloat16,
        "float32": torch.float32,
        "fp32": torch.float32,
        "f32": torch.float32,
    }

    return dtype_map.get(dtype_str.lower(), torch.float32)


def load_tokenizer_and_model(settings: LocalModelSettings) -> Tuple[object, object, str]:
    """
    Load tokenizer and model from Hugging Face or local files.

    Args:
        settings: Local model settings (variant, device, weights overrides)

    Returns:
        Tuple of (tokenizer, model, device)

    Raises:
        ModelUnavailable: If weights or tokenizer cannot be located or loaded
    """
    source = resolve_model_source(settings)
    device = get_device(settings.cpu)

    logger.info(f"Loading model: {source.model_id} (revision {source.revision})")
    if source.gguf_file:
        logger.info(f"Quantized weights: {source.gguf_file}")
    logger.info(f"Device: {device}")
    logger.info(f"Torch dtype: {settings.dtype}")

    if device == "cuda":
        logger.info(f"GPU detected: {torch.cuda.get_device_name(0)}")
    elif not settings.cpu:
        logger.warning("No GPU detected, using CPU")

    gguf_kwargs = {"gguf_file": source.gguf_file} if source.gguf_file else {}

    try:
        logger.info("Loading tokenizer...")
        tokenizer_kwargs = gguf_kwargs if source.tokenizer_id == source.model_id else {}
        tokenizer = AutoTokenizer.from_pretrained(
            source.tokenizer_id, revision=source.revision, **tokenizer_kwargs
        )

        logger.info("Loading model...")
        model = AutoModelForCausalLM.from_pretrained(
            source.model_id,
            revision=source.revision,
            device_map="cpu" if device == "cpu" else "auto",
            dtype=get_torch_dtype(settings.dtype),
            **gguf_kwargs,
        )
        model.eval()

    except Exception as e:
        logger.error(f"Failed to load model: {e}")
        raise ModelUnavailable(f"Could not load model {source.model_id}: {e}") from e

    logger.info("Model loaded successfully!")
    logger.info(f"Model device: {model.device}")
    logger.info(f"Model dtype: {model.dtype}")

    return tokenizer, model, device


def get_model_info(model) -> dict:
    """
    Get information about the loaded model.

    Args:
        model: The loaded model

    Returns:
        Dictionary with model information
    """
    try:
        num_params = sum(p.numel() for p in model.parameters())

        return {
            "device": str(model.device),
            "dtype": str(model.dtype),
            "num_parameters": num_params,
            "num_parameters_millions": round(num_params / 1_000_000, 2),
        }
    except Exception as e:
        logger.warning(f"Could not get model info: {e}")
        return {}
