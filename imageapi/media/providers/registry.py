"""Read-only capability registry keyed by provider."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Tuple

from imageapi.core.errors import ValidationError
from imageapi.media.providers.base import ImageProvider, ModelCapability


def parse_model_name(full_model_name: str) -> Tuple[str, str]:
    """Split `provider/model` at the first slash. The model part may contain slashes."""

    provider, separator, model = (full_model_name or "").strip().partition("/")
    if not separator or not provider or not model:
        raise ValidationError(
            "invalid_model_format",
            f"invalid_model_format expected=provider/model_name got={full_model_name!r}",
        )
    return provider, model


class ProviderRegistry:
    """Built once at startup and never mutated afterwards."""

    def __init__(self, providers: Iterable[ImageProvider]) -> None:
        ordered = {}
        for provider in providers:
            key = provider.provider_key.lower()
            if key in ordered:
                raise ValueError(f"duplicate provider key: {key}")
            ordered[key] = provider
        self._providers: Mapping[str, ImageProvider] = MappingProxyType(ordered)

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, provider_key: object) -> bool:
        return isinstance(provider_key, str) and provider_key.lower() in self._providers

    def provider_keys(self) -> List[str]:
        return list(self._providers)

    def get_provider(self, provider_key: str) -> Optional[ImageProvider]:
        return self._providers.get(provider_key.lower())

    def list_models(self) -> List[Tuple[str, Tuple[ModelCapability, ...]]]:
        return [(key, tuple(provider.get_models())) for key, provider in self._providers.items()]

    def resolve(self, full_model_name: str) -> Tuple[ImageProvider, ModelCapability]:
        provider_key, model_name = parse_model_name(full_model_name)
        provider = self.get_provider(provider_key)
        if provider is None:
            raise ValidationError("unknown_provider", f"unknown_provider provider={provider_key}")
        for capability in provider.get_models():
            if capability.name == model_name:
                return provider, capability
        raise ValidationError(
            "unknown_model",
            f"unknown_model provider={provider_key} model={model_name}",
        )
