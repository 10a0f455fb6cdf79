# chatgate/core/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

RATE_LIMIT_ERROR = "RATE_LIMIT"

_STATUS_BY_TYPE: Dict[str, int] = {
    "bad_request": 400,
    "bad_model": 400,
    "unauthorized": 401,
    "forbidden": 403,
    "not_found": 404,
    "rate_limit": 429,
    "offline": 503,
}

_DEFAULT_MESSAGES: Dict[str, str] = {
    "bad_request": "The request couldn't be processed. Please check your input and try again.",
    "bad_model": "The requested model is not available. Check your model settings and API keys.",
    "unauthorized": "You need to sign in before continuing.",
    "forbidden": "You don't have access to this conversation.",
    "not_found": "The requested conversation was not found.",
    "rate_limit": "You have exceeded your maximum number of requests for the day.",
    "offline": "We're having trouble sending your request. Please check your connection.",
}


class ChatError(Exception):
    """Typed gateway error; code is ``"<type>:<surface>"`` e.g. ``bad_model:api``."""

    def __init__(self, code: str, cause: Optional[str] = None) -> None:
        self.code = code
        self.type, _, self.surface = code.partition(":")
        self.cause = cause
        self.status_code = _STATUS_BY_TYPE.get(self.type, 500)
        super().__init__(cause or _DEFAULT_MESSAGES.get(self.type, "Something went wrong."))

    @property
    def message(self) -> str:
        return str(self)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.cause:
            payload["cause"] = self.cause
        return payload

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_payload())


def rate_limit_response(message: str) -> JSONResponse:
    return JSONResponse(status_code=429, content={"error": RATE_LIMIT_ERROR, "message": message})
