"""
Model adapters — one per supported language-model backend.

The set of backends is closed: SupportedModel enumerates the logical names a
client may request, and ADAPTERS maps each to its adapter class.
"""
from enum import Enum
from typing import Dict, Type

from app.services.adapters.anthropic_adapter import AnthropicAdapter
from app.services.adapters.base import (
    AdapterError,
    AdapterResult,
    MissingCredentialsError,
    ModelAdapter,
    TransientBackendError,
)
from app.services.adapters.gemini_adapter import GeminiAdapter
from app.services.adapters.openai_adapter import OpenAIAdapter


class SupportedModel(str, Enum):
    GPT4 = "gpt4"
    CLAUDE = "claude"
    GEMINI = "gemini"


ADAPTERS: Dict[SupportedModel, Type[ModelAdapter]] = {
    SupportedModel.GPT4: OpenAIAdapter,
    SupportedModel.CLAUDE: AnthropicAdapter,
    SupportedModel.GEMINI: GeminiAdapter,
}

SUPPORTED_MODEL_NAMES = tuple(model.value for model in SupportedModel)


class UnsupportedModelError(ValueError):
    """Raised for a model name outside SupportedModel."""


def resolve_model(name: str) -> SupportedModel:
    try:
        return SupportedModel(name)
    except ValueError:
        raise UnsupportedModelError(
            f"Invalid model selected. Supported models: {', '.join(SUPPORTED_MODEL_NAMES)}"
        ) from None


def get_adapter(name: str) -> ModelAdapter:
    """
    Build the adapter for a logical model name.

    Raises UnsupportedModelError for unknown names and MissingCredentialsError
    when the backend's key is absent; neither touches the network.
    """
    return ADAPTERS[resolve_model(name)]()


__all__ = [
    "ADAPTERS",
    "AdapterError",
    "AdapterResult",
    "MissingCredentialsError",
    "ModelAdapter",
    "SUPPORTED_MODEL_NAMES",
    "SupportedModel",
    "TransientBackendError",
    "UnsupportedModelError",
    "get_adapter",
    "resolve_model",
]
