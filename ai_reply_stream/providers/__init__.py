"""Generation provider adapters."""

from .base import ProviderAdapter, VariantEvent, VariantHandle
from .openai_adapter import OpenAIAdapter
from .scripted import ScriptedAdapter, VariantScript


def get_adapter(
    name: str,
    *,
    model: str = "gpt-4",
    max_tokens: int = 500,
    base_temperature: float = 0.7,
) -> ProviderAdapter:
    if name == "openai":
        return OpenAIAdapter(
            model=model,
            max_tokens=max_tokens,
            base_temperature=base_temperature,
        )
    if name == "scripted":
        return ScriptedAdapter(model=model)
    raise ValueError(f"Unknown provider: {name}")


__all__ = [
    "ProviderAdapter",
    "VariantEvent",
    "VariantHandle",
    "OpenAIAdapter",
    "ScriptedAdapter",
    "VariantScript",
    "get_adapter",
]
