# chatgate/providers/resolver.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from chatgate.core.errors import ChatError
from chatgate.core.metrics import ADAPTER_SELECTED
from chatgate.core.settings import AppSettings, get_settings
from chatgate.providers.base import Backend
from chatgate.providers.openai_compat import OpenAICompatibleChat, OpenAICompatibleImage
from chatgate.providers.registry import CORE_PROVIDERS, ModelEntry, ModelRegistry, shared_adapter_exists

log = logging.getLogger("app.resolver")

IMAGE_PROVIDERS = ("openai", "google")


@dataclass
class ResolvedModel:
    backend: Backend
    model_id: str
    model_name: str
    charged: bool
    modality: str
    provider_id: str
    adapter: str
    abilities: List[str] = field(default_factory=list)


def adapter_priority(adapter: str) -> int:
    provider = adapter.split(":", 1)[0]
    if provider in CORE_PROVIDERS:
        return 1
    if provider == "openrouter":
        return 2
    if provider.startswith("i3-"):
        return 3
    return 4


def _split(model: ModelEntry, adapter: str) -> Tuple[str, str]:
    provider_id, _, remote_id = adapter.partition(":")
    if model.custom_provider_id:
        return model.custom_provider_id, model.id
    return provider_id, remote_id


def _make_backend(
    modality: str, provider_id: str, base_url: str, key: Optional[str], remote_id: str, timeout: float
) -> Backend:
    cls = OpenAICompatibleImage if modality == "image" else OpenAICompatibleChat
    return cls(provider_id=provider_id, base_url=base_url, api_key=key, model_id=remote_id, timeout=timeout)


class AdapterStrategy:
    """Turns one adapter into a backend or declines with ``None``."""

    charged = True

    def __init__(self, settings: AppSettings) -> None:
        self.settings = settings

    def matches(self, provider_id: str) -> bool:
        raise NotImplementedError

    def resolve(self, registry: ModelRegistry, model: ModelEntry, adapter: str) -> Optional[Backend]:
        raise NotImplementedError


class CoreProviderStrategy(AdapterStrategy):
    charged = False

    def matches(self, provider_id: str) -> bool:
        return provider_id in CORE_PROVIDERS

    def resolve(self, registry: ModelRegistry, model: ModelEntry, adapter: str) -> Optional[Backend]:
        provider_id, remote_id = _split(model, adapter)
        cfg = registry.providers.get(provider_id)
        if cfg is None or not cfg.key:
            return None
        if model.mode == "image" and provider_id not in IMAGE_PROVIDERS:
            log.info({"event": "resolver.skip", "adapter": adapter, "reason": "no_image_support"})
            return None
        base_url = self.settings.provider_base_url(provider_id)
        return _make_backend(model.mode, provider_id, base_url, cfg.key, remote_id, self.settings.provider_timeout_sec)


class OpenRouterStrategy(AdapterStrategy):
    def matches(self, provider_id: str) -> bool:
        return provider_id == "openrouter"

    def resolve(self, registry: ModelRegistry, model: ModelEntry, adapter: str) -> Optional[Backend]:
        provider_id, remote_id = _split(model, adapter)
        if model.mode == "image":
            return None
        cfg = registry.providers.get(provider_id)
        key = (cfg.key if cfg else None) or self.settings.openrouter_api_key
        if not key:
            return None
        base_url = self.settings.provider_base_url("openrouter")
        return _make_backend("text", "openrouter", base_url, key, remote_id, self.settings.provider_timeout_sec)


class InternalStrategy(AdapterStrategy):
    def matches(self, provider_id: str) -> bool:
        return provider_id.startswith("i3-")

    def resolve(self, registry: ModelRegistry, model: ModelEntry, adapter: str) -> Optional[Backend]:
        provider_id, remote_id = _split(model, adapter)
        family = provider_id[3:]
        if not shared_adapter_exists(f"{provider_id}:{remote_id}"):
            log.warning({"event": "resolver.skip", "adapter": adapter, "reason": "not_in_shared_catalog"})
            return None
        key = self.settings.internal_key(family)
        if not key:
            return None
        if model.mode == "image" and family != "openai":
            return None
        base_url = self.settings.provider_base_url(family)
        return _make_backend(model.mode, provider_id, base_url, key, remote_id, self.settings.provider_timeout_sec)


class CustomProviderStrategy(AdapterStrategy):
    charged = False

    def matches(self, provider_id: str) -> bool:
        return True

    def resolve(self, registry: ModelRegistry, model: ModelEntry, adapter: str) -> Optional[Backend]:
        provider_id, remote_id = _split(model, adapter)
        cfg = registry.providers.get(provider_id)
        if cfg is None or not cfg.endpoint:
            log.warning({"event": "resolver.skip", "adapter": adapter, "reason": "no_endpoint"})
            return None
        return _make_backend(model.mode, provider_id, cfg.endpoint, cfg.key, remote_id, self.settings.provider_timeout_sec)


def default_strategies(settings: AppSettings) -> List[AdapterStrategy]:
    # order matters: the custom strategy accepts any provider id
    return [
        CoreProviderStrategy(settings),
        OpenRouterStrategy(settings),
        InternalStrategy(settings),
        CustomProviderStrategy(settings),
    ]


def resolve_model(
    registry: ModelRegistry,
    model_id: str,
    *,
    settings: Optional[AppSettings] = None,
    strategies: Optional[List[AdapterStrategy]] = None,
) -> Union[ResolvedModel, ChatError]:
    """Pick the first usable adapter for ``model_id``. Errors are returned, not raised."""
    model = registry.models.get(model_id)
    if model is None:
        return ChatError("bad_model:api")
    if not model.adapters:
        return ChatError("bad_model:api", "No adapters found for model")

    strategies = strategies or default_strategies(settings or get_settings())
    for adapter in sorted(model.adapters, key=adapter_priority):
        provider_id, _ = _split(model, adapter)
        strategy = next(s for s in strategies if s.matches(provider_id))
        backend = strategy.resolve(registry, model, adapter)
        if backend is None:
            continue
        charged = strategy.charged
        ADAPTER_SELECTED.labels(provider=provider_id, charged=str(charged).lower()).inc()
        log.info({"event": "resolver.selected", "model": model_id, "adapter": adapter, "charged": charged})
        return ResolvedModel(
            backend=backend,
            model_id=model.id,
            model_name=model.name or model.id,
            charged=charged,
            modality=model.mode,
            provider_id=provider_id,
            adapter=adapter,
            abilities=list(model.abilities),
        )
    return ChatError("bad_model:api")
