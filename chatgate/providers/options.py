# chatgate/providers/options.py
from __future__ import annotations

from typing import Any, Dict, Optional

EFFORTS = ("low", "medium", "high")
ANTHROPIC_THINKING_BUDGETS = {"low": 1000, "medium": 6000, "high": 12000}

IMAGE_OUTPUT_MODELS = ("gemini-2.0-flash-image-generation", "gemini-2.0-flash-exp-image-generation")


def _openai_reasoning(model_id: str) -> bool:
    m = model_id.split("/")[-1]
    return m.startswith(("o1", "o3", "o4", "gpt-5"))


def _google_reasoning(model_id: str) -> bool:
    m = model_id.split("/")[-1]
    return "2.5-flash" in m or "2.5-pro" in m


def _anthropic_thinking(model_id: str) -> bool:
    m = model_id.split("/")[-1]
    return any(k in m for k in ("sonnet-4", "4-sonnet", "opus-4", "4-opus", "3-7-sonnet", "3.7-sonnet"))


def outputs_images(model_id: str) -> bool:
    return model_id.split("/")[-1] in IMAGE_OUTPUT_MODELS


def provider_options(provider_id: str, model_id: str, reasoning_effort: Optional[str]) -> Dict[str, Any]:
    """Extra request fields for model families that understand them.

    Unknown providers, unsupported models and ``off``/missing effort all give ``{}``.
    """
    opts: Dict[str, Any] = {}
    family = provider_id[3:] if provider_id.startswith("i3-") else provider_id
    if outputs_images(model_id):
        opts["modalities"] = ["text", "image"]
    effort = (reasoning_effort or "").lower()
    if effort not in EFFORTS:
        return opts

    if family == "openai" and _openai_reasoning(model_id):
        opts["reasoning_effort"] = effort
    elif family == "google" and _google_reasoning(model_id):
        opts["reasoning_effort"] = effort
    elif family == "anthropic" and _anthropic_thinking(model_id):
        opts["thinking"] = {"type": "enabled", "budget_tokens": ANTHROPIC_THINKING_BUDGETS[effort]}
    elif family == "openrouter" and (_openai_reasoning(model_id) or _google_reasoning(model_id) or _anthropic_thinking(model_id)):
        opts["reasoning"] = {"effort": effort}
    return opts


def supports_system_prompt(model_id: str) -> bool:
    return not outputs_images(model_id)
