# chatgate/core/plans.py
from __future__ import annotations

from typing import Dict

from chatgate.core.settings import AppSettings

FREE_PLAN = "free"
PRO_PLAN = "pro"


def normalize_plan(value: object) -> str:
    if not isinstance(value, str):
        return FREE_PLAN
    return PRO_PLAN if value.strip().lower() == PRO_PLAN else FREE_PLAN


def plan_limits(plan: str, settings: AppSettings) -> Dict[str, int]:
    limits: Dict[str, Dict[str, int]] = {
        FREE_PLAN: {"requests_1d": settings.free_requests_1d},
        PRO_PLAN: {"requests_1d": settings.pro_requests_1d},
    }
    return limits[normalize_plan(plan)]
