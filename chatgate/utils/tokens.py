# chatgate/utils/tokens.py
from __future__ import annotations

import math
from typing import Any, Dict, Optional


def approx_tokens(text: str) -> int:
    """Rough token estimate: 1 token ~= 4 chars."""
    return int(math.ceil(len(text or "") / 4))


def usage_int(usage: Optional[Dict[str, Any]], key: str) -> int:
    if not usage:
        return 0
    try:
        return int(usage.get(key) or 0)
    except (TypeError, ValueError):
        return 0
