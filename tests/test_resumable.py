# tests/test_resumable.py
from __future__ import annotations

import asyncio

from chatgate.orchestration.resumable import ResumableStream, StreamRegistry


async def _drain(it) -> list:
    return [chunk async for chunk in it]


async def test_late_subscriber_replays_from_offset() -> None:
    s = ResumableStream("s1", "t1")
    for i in range(3):
        await s.emit("text-delta", {"text": str(i)})
    await s.close()

    chunks = await _drain(s.subscribe(1))
    assert [c.decode() for c in chunks] == [
        'event: text-delta\ndata: {"text": "1"}\n\n',
        'event: text-delta\ndata: {"text": "2"}\n\n',
    ]


async def test_live_subscriber_follows_producer() -> None:
    s = ResumableStream("s1", "t1")
    reader = asyncio.ensure_future(_drain(s.subscribe(0)))

    await s.emit("text-delta", {"text": "a"})
    await asyncio.sleep(0)
    await s.emit("text-delta", {"text": "b"})
    await s.close()

    chunks = await asyncio.wait_for(reader, timeout=1)
    assert len(chunks) == 2


async def test_idle_subscriber_gets_pings() -> None:
    s = ResumableStream("s1", "t1", heartbeat_sec=0.01)
    it = s.subscribe(0)
    first = await asyncio.wait_for(it.__anext__(), timeout=1)
    assert first.startswith(b"event: ping\n")
    await it.aclose()
    await s.close()


async def test_abandoned_stream_aborts_after_grace() -> None:
    s = ResumableStream("s1", "t1", grace_sec=0.01)
    await s.emit("text-delta", {"text": "a"})
    it = s.subscribe(0)
    await it.__anext__()
    await it.aclose()

    assert s.subscribers == 0
    await asyncio.sleep(0.05)
    assert s.abort.is_set()
    await s.close()


async def test_reattach_within_grace_keeps_stream_alive() -> None:
    s = ResumableStream("s1", "t1", grace_sec=0.05)
    await s.emit("text-delta", {"text": "a"})
    it = s.subscribe(0)
    await it.__anext__()
    await it.aclose()

    again = s.subscribe(0)
    await asyncio.sleep(0.1)
    assert not s.abort.is_set()
    await s.close()
    assert len(await _drain(again)) == 1


async def test_registry_tracks_latest_stream_per_thread() -> None:
    reg = StreamRegistry()
    first = reg.create("s1", "t1", heartbeat_sec=1, grace_sec=1)
    await first.close()
    assert reg.get("s1") is None

    second = reg.create("s2", "t1", heartbeat_sec=1, grace_sec=1)
    assert reg.for_thread("t1") is second
    assert reg.cancel("s2") is True
    assert second.abort.is_set()
    assert reg.cancel("missing") is False
