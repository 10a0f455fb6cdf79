# chatgate/providers/registry.py
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

CORE_PROVIDERS = ("openai", "anthropic", "google", "groq")

# Abilities a model may declare
FUNCTION_CALLING = "function_calling"
VISION = "vision"
PDF = "pdf"
REASONING = "reasoning"
EFFORT_CONTROL = "effort_control"


@dataclass
class ProviderConfig:
    id: str
    name: str
    key: Optional[str] = None
    endpoint: Optional[str] = None


@dataclass
class ModelEntry:
    id: str
    name: str
    adapters: List[str]
    abilities: List[str] = field(default_factory=list)
    mode: str = "text"  # text|image
    custom_provider_id: Optional[str] = None


@dataclass
class ModelRegistry:
    providers: Dict[str, ProviderConfig]
    models: Dict[str, ModelEntry]


# First-party catalog: every internal (i3-*) adapter must be listed here to be served
MODELS_SHARED: List[ModelEntry] = [
    ModelEntry(
        id="gpt-4o-mini",
        name="GPT-4o mini",
        adapters=["i3-openai:gpt-4o-mini", "openai:gpt-4o-mini", "openrouter:openai/gpt-4o-mini"],
        abilities=[FUNCTION_CALLING, VISION],
    ),
    ModelEntry(
        id="gpt-4.1",
        name="GPT-4.1",
        adapters=["i3-openai:gpt-4.1", "openai:gpt-4.1", "openrouter:openai/gpt-4.1"],
        abilities=[FUNCTION_CALLING, VISION, PDF],
    ),
    ModelEntry(
        id="o4-mini",
        name="o4 mini",
        adapters=["i3-openai:o4-mini", "openai:o4-mini", "openrouter:openai/o4-mini"],
        abilities=[FUNCTION_CALLING, VISION, REASONING, EFFORT_CONTROL],
    ),
    ModelEntry(
        id="claude-sonnet-4",
        name="Claude Sonnet 4",
        adapters=["i3-anthropic:claude-sonnet-4-20250514", "anthropic:claude-sonnet-4-20250514",
                  "openrouter:anthropic/claude-sonnet-4"],
        abilities=[FUNCTION_CALLING, VISION, PDF, REASONING, EFFORT_CONTROL],
    ),
    ModelEntry(
        id="gemini-2.5-flash",
        name="Gemini 2.5 Flash",
        adapters=["i3-google:gemini-2.5-flash", "google:gemini-2.5-flash", "openrouter:google/gemini-2.5-flash"],
        abilities=[FUNCTION_CALLING, VISION, PDF, REASONING, EFFORT_CONTROL],
    ),
    ModelEntry(
        id="gemini-2.0-flash-image-generation",
        name="Gemini 2.0 Flash Image",
        adapters=["i3-google:gemini-2.0-flash-image-generation", "google:gemini-2.0-flash-image-generation"],
        abilities=[VISION],
    ),
    ModelEntry(
        id="llama-3.3-70b",
        name="Llama 3.3 70B",
        adapters=["i3-groq:llama-3.3-70b-versatile", "groq:llama-3.3-70b-versatile",
                  "openrouter:meta-llama/llama-3.3-70b-instruct"],
        abilities=[FUNCTION_CALLING],
    ),
    ModelEntry(
        id="gpt-image-1",
        name="GPT Image 1",
        adapters=["i3-openai:gpt-image-1", "openai:gpt-image-1"],
        mode="image",
    ),
]


def shared_adapter_exists(adapter: str) -> bool:
    return any(adapter in m.adapters for m in MODELS_SHARED)


def _enabled(cfg: Any) -> bool:
    return isinstance(cfg, dict) and cfg.get("enabled", True) is not False


def build_registry(
    *,
    core_providers: Optional[Dict[str, Any]] = None,
    custom_providers: Optional[Dict[str, Any]] = None,
    custom_models: Optional[Dict[str, Any]] = None,
) -> ModelRegistry:
    providers: Dict[str, ProviderConfig] = {}
    for pid, cfg in (core_providers or {}).items():
        if not _enabled(cfg):
            continue
        providers[pid] = ProviderConfig(id=pid, name=pid, key=(cfg.get("key") or None))
    for pid, cfg in (custom_providers or {}).items():
        if not _enabled(cfg):
            continue
        providers[pid] = ProviderConfig(
            id=pid,
            name=cfg.get("name") or pid,
            key=cfg.get("key") or None,
            endpoint=cfg.get("endpoint") or None,
        )

    models: Dict[str, ModelEntry] = {m.id: copy.deepcopy(m) for m in MODELS_SHARED}
    for mid, cfg in (custom_models or {}).items():
        if not _enabled(cfg):
            continue
        provider_id = cfg.get("providerId") or ""
        remote_id = cfg.get("modelId") or mid
        models[mid] = ModelEntry(
            id=remote_id,
            name=cfg.get("name") or remote_id,
            adapters=[f"{provider_id}:{remote_id}"] if provider_id else [],
            abilities=list(cfg.get("abilities") or []),
            mode=cfg.get("mode") or "text",
            custom_provider_id=provider_id or None,
        )
    return ModelRegistry(providers=providers, models=models)

