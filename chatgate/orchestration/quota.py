# chatgate/orchestration/quota.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from chatgate.core.errors import RATE_LIMIT_ERROR
from chatgate.core.metrics import CHAT_RATE_LIMITED
from chatgate.core.plans import normalize_plan, plan_limits
from chatgate.core.settings import AppSettings, get_settings
from chatgate.storage import repo

log = logging.getLogger("app.quota")

QUOTA_WINDOW_DAYS = 1


@dataclass
class QuotaDecision:
    allowed: bool
    used: int
    limit: int
    plan: str
    error: Optional[str] = None
    message: Optional[str] = None


def check_quota(user_id: str, plan: str, settings: Optional[AppSettings] = None) -> QuotaDecision:
    """Read-then-act check; concurrent requests near the limit may both pass."""
    settings = settings or get_settings()
    plan = normalize_plan(plan)
    limit = plan_limits(plan, settings)["requests_1d"]
    used = repo.count_requests(user_id, QUOTA_WINDOW_DAYS, charged_only=True)
    if used >= limit:
        CHAT_RATE_LIMITED.labels(plan=plan).inc()
        log.info({"event": "quota.rejected", "user_id": user_id, "plan": plan, "used": used, "limit": limit})
        return QuotaDecision(
            allowed=False,
            used=used,
            limit=limit,
            plan=plan,
            error=RATE_LIMIT_ERROR,
            message="You have exceeded your maximum number of requests for the day. Please try again tomorrow.",
        )
    return QuotaDecision(allowed=True, used=used, limit=limit, plan=plan)
