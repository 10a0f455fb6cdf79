# chatgate/orchestration/resumable.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional

from chatgate.orchestration.stream_handlers import sse_format

log = logging.getLogger("app.resumable")


class ResumableStream:
    """Buffered wire output of one in-flight response.

    The producer pushes encoded chunks; any number of subscribers replay the buffer
    from an offset and then follow live output.
    """

    def __init__(
        self,
        stream_id: str,
        thread_id: str,
        *,
        heartbeat_sec: float = 10.0,
        grace_sec: float = 30.0,
        on_idle: Optional["StreamRegistry"] = None,
    ) -> None:
        self.stream_id = stream_id
        self.thread_id = thread_id
        self.heartbeat_sec = heartbeat_sec
        self.grace_sec = grace_sec
        self.chunks: List[bytes] = []
        self.done = False
        self.abort = asyncio.Event()
        self.subscribers = 0
        self.task: Optional[asyncio.Task] = None
        self._cond = asyncio.Condition()
        self._grace: Optional[asyncio.Task] = None
        self._registry = on_idle

    async def push(self, chunk: bytes) -> None:
        async with self._cond:
            self.chunks.append(chunk)
            self._cond.notify_all()

    async def emit(self, event: str, data: Dict) -> None:
        await self.push(sse_format(event, data))

    async def close(self) -> None:
        async with self._cond:
            self.done = True
            self._cond.notify_all()
        if self._grace is not None:
            self._grace.cancel()
        if self._registry is not None and self.subscribers == 0:
            self._registry.discard(self)

    def subscribe(self, skip: int = 0) -> AsyncIterator[bytes]:
        """Chunks from ``skip`` onward. The subscriber counts as attached from this call."""
        self.subscribers += 1
        if self._grace is not None:
            self._grace.cancel()
            self._grace = None
        return self._follow(max(skip, 0))

    async def _follow(self, idx: int) -> AsyncIterator[bytes]:
        try:
            while True:
                async with self._cond:
                    if idx >= len(self.chunks) and not self.done:
                        try:
                            await asyncio.wait_for(self._cond.wait(), timeout=self.heartbeat_sec)
                        except asyncio.TimeoutError:
                            pass
                    pending = self.chunks[idx:]
                    finished = self.done
                if pending:
                    idx += len(pending)
                    for chunk in pending:
                        yield chunk
                elif finished:
                    break
                else:
                    yield sse_format("ping", {"ts": datetime.now(timezone.utc).isoformat()})
        finally:
            self._detach()

    def _detach(self) -> None:
        self.subscribers -= 1
        if self.subscribers > 0:
            return
        if self.done:
            if self._registry is not None:
                self._registry.discard(self)
        elif self._grace is None:
            self._grace = asyncio.ensure_future(self._abort_after_grace())

    async def _abort_after_grace(self) -> None:
        try:
            await asyncio.sleep(self.grace_sec)
        except asyncio.CancelledError:
            return
        if self.subscribers == 0 and not self.done:
            log.info({"event": "stream.abandoned", "stream_id": self.stream_id, "thread_id": self.thread_id})
            self.abort.set()


class StreamRegistry:
    def __init__(self) -> None:
        self.streams: Dict[str, ResumableStream] = {}
        self.latest_by_thread: Dict[str, str] = {}

    def create(self, stream_id: str, thread_id: str, *, heartbeat_sec: float, grace_sec: float) -> ResumableStream:
        previous = self.for_thread(thread_id)
        if previous is not None and previous.done:
            self.discard(previous)
        stream = ResumableStream(stream_id, thread_id, heartbeat_sec=heartbeat_sec, grace_sec=grace_sec, on_idle=self)
        self.streams[stream_id] = stream
        self.latest_by_thread[thread_id] = stream_id
        return stream

    def get(self, stream_id: str) -> Optional[ResumableStream]:
        return self.streams.get(stream_id)

    def for_thread(self, thread_id: str) -> Optional[ResumableStream]:
        sid = self.latest_by_thread.get(thread_id)
        return self.streams.get(sid) if sid else None

    def discard(self, stream: ResumableStream) -> None:
        self.streams.pop(stream.stream_id, None)
        if self.latest_by_thread.get(stream.thread_id) == stream.stream_id:
            self.latest_by_thread.pop(stream.thread_id, None)

    def cancel(self, stream_id: str) -> bool:
        stream = self.streams.get(stream_id)
        if stream is None or stream.done:
            return False
        stream.abort.set()
        return True


STREAMS = StreamRegistry()
