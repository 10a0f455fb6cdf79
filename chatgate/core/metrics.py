# chatgate/core/metrics.py
from __future__ import annotations

from prometheus_client import Counter

CHAT_REQUESTS = Counter("chatgate_chat_requests_total", "Chat requests by outcome", ["outcome"])
CHAT_RATE_LIMITED = Counter("chatgate_rate_limited_total", "Requests rejected by the quota guard", ["plan"])
CHAT_TOKENS = Counter("chatgate_tokens_total", "Tokens streamed by kind", ["kind"])
ADAPTER_SELECTED = Counter("chatgate_adapter_selected_total", "Winning adapters by provider", ["provider", "charged"])
STREAM_FATAL = Counter("chatgate_stream_fatal_total", "Streams that ended on an uncaught exception")
TOOL_CALLS = Counter("chatgate_tool_calls_total", "Tool executions by status", ["tool", "status"])
UPLOAD_FAILURES = Counter("chatgate_upload_failures_total", "Background attachment uploads that failed")
