"""
Text Generation Abstract Base Class

Defines the prompt-in, text-out interface used by the conversation
engine, the client proxy and restaurant discovery. Generators may return
prose even when JSON was asked for, so structured output always goes
through ``parse_json_object`` and a pydantic model.
"""

import json
from abc import ABC, abstractmethod
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from concierge.core.exceptions import GenerationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class BaseTextGenerator(ABC):
    """Abstract base class for text generators."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """
        Generate a completion for ``prompt``.

        Raises:
            GenerationError: On provider failure or empty output
        """
        pass

    async def aclose(self) -> None:
        """Release network resources, if any."""
        return None


def find_json_object(text: str) -> Optional[str]:
    """Return the substring from the first ``{`` to the last ``}``, if any."""
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def parse_json_object(text: str, model: Type[ModelT], provider: str = "unknown") -> ModelT:
    """
    Locate a JSON object inside generated text and validate it.

    Raises:
        GenerationError: If no object is found or it fails validation
    """
    raw = find_json_object(text)
    if raw is None:
        raise GenerationError("No JSON object in generated text", provider=provider)
    try:
        return model.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise GenerationError(f"Generated JSON rejected: {e}", provider=provider)
