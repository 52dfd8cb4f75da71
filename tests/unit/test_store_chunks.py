import asyncio
import random

import pytest

from ipfs_uploader.errors import InvalidChunkParameters, NoPayload, PayloadTooLarge
from ipfs_uploader.store.chunks import ChunkStatus, ChunkTracker, Reaper
from ipfs_uploader.store.staging import StagingArea


def test_out_of_order_chunks_assemble_by_index(tracker: ChunkTracker, staging: StagingArea) -> None:
    async def scenario():
        r1 = await tracker.begin_or_continue("up-1", 1, 3, b"B", name="abc.txt")
        r0 = await tracker.begin_or_continue("up-1", 0, 3, b"A")
        r2 = await tracker.begin_or_continue("up-1", 2, 3, b"C")
        return r1, r0, r2

    r1, r0, r2 = asyncio.run(scenario())
    assert (r1.status, r1.received_count, r1.total_chunks) == (ChunkStatus.IN_PROGRESS, 1, 3)
    assert (r0.status, r0.received_count) == (ChunkStatus.IN_PROGRESS, 2)
    assert r2.status is ChunkStatus.COMPLETE
    assert r2.assembled is not None
    assert r2.assembled.path.read_bytes() == b"ABC"
    assert r2.assembled.size == 3
    assert r2.assembled.name == "abc.txt"
    assert tracker.live_count() == 0
    # only the assembled object is left; the session directory is gone
    assert staging.entries() == [r2.assembled.path]


def test_single_chunk_upload_completes_immediately(tracker: ChunkTracker) -> None:
    result = asyncio.run(tracker.begin_or_continue("solo", 0, 1, b"only"))
    assert result.status is ChunkStatus.COMPLETE
    assert result.assembled is not None
    assert result.assembled.path.read_bytes() == b"only"


def test_duplicate_chunk_is_ignored(tracker: ChunkTracker) -> None:
    async def scenario():
        await tracker.begin_or_continue("dup", 0, 2, b"first")
        dup = await tracker.begin_or_continue("dup", 0, 2, b"SECOND")
        session = tracker.get_session("dup")
        assert session is not None
        assert session.received == {0}
        assert session.size == len(b"first")
        done = await tracker.begin_or_continue("dup", 1, 2, b"-tail")
        return dup, done

    dup, done = asyncio.run(scenario())
    assert dup.status is ChunkStatus.DUPLICATE
    assert dup.received_count == 1
    assert done.status is ChunkStatus.COMPLETE
    assert done.assembled.path.read_bytes() == b"first-tail"


def test_late_chunk_after_completion_is_duplicate(tracker: ChunkTracker) -> None:
    async def scenario():
        await tracker.begin_or_continue("late", 0, 2, b"a")
        await tracker.begin_or_continue("late", 1, 2, b"b")
        return await tracker.begin_or_continue("late", 1, 2, b"b")

    late = asyncio.run(scenario())
    assert late.status is ChunkStatus.DUPLICATE
    assert late.assembled is None
    assert tracker.live_count() == 0
    assert tracker.is_completed("late")


def test_forgotten_upload_id_starts_a_new_session(tracker: ChunkTracker) -> None:
    async def scenario():
        await tracker.begin_or_continue("again", 0, 1, b"a")
        tracker.forget("again")
        return await tracker.begin_or_continue("again", 0, 1, b"a")

    result = asyncio.run(scenario())
    assert result.status is ChunkStatus.COMPLETE
    assert result.assembled is not None
    result.assembled.path.unlink()


def test_empty_chunk_is_accepted(tracker: ChunkTracker) -> None:
    async def scenario():
        await tracker.begin_or_continue("empty", 0, 2, b"")
        return await tracker.begin_or_continue("empty", 1, 2, b"x")

    result = asyncio.run(scenario())
    assert result.status is ChunkStatus.COMPLETE
    assert result.assembled.path.read_bytes() == b"x"


@pytest.mark.parametrize(
    ("upload_id", "chunk_index", "total_chunks"),
    [
        ("u", 3, 3),
        ("u", -1, 3),
        ("u", 0, 0),
        ("", 0, 1),
        ("x" * 200, 0, 1),
    ],
)
def test_invalid_chunk_parameters(tracker: ChunkTracker, upload_id: str, chunk_index: int, total_chunks: int) -> None:
    with pytest.raises(InvalidChunkParameters):
        asyncio.run(tracker.begin_or_continue(upload_id, chunk_index, total_chunks, b"x"))
    assert tracker.live_count() == 0


def test_total_chunks_is_fixed_by_first_chunk(tracker: ChunkTracker) -> None:
    async def scenario():
        await tracker.begin_or_continue("fixed", 0, 3, b"a")
        with pytest.raises(InvalidChunkParameters):
            await tracker.begin_or_continue("fixed", 1, 4, b"b")

    asyncio.run(scenario())
    session = tracker.get_session("fixed")
    assert session is not None
    assert session.total_chunks == 3
    assert session.received == {0}


def test_missing_payload(tracker: ChunkTracker) -> None:
    with pytest.raises(NoPayload):
        asyncio.run(tracker.begin_or_continue("none", 0, 1, None))
    assert tracker.live_count() == 0


def test_oversized_session_is_dropped(tracker: ChunkTracker, staging: StagingArea) -> None:
    async def scenario():
        await tracker.begin_or_continue("big", 0, 3, b"x" * 1000)
        with pytest.raises(PayloadTooLarge):
            await tracker.begin_or_continue("big", 1, 3, b"y" * 100)

    asyncio.run(scenario())
    assert tracker.live_count() == 0
    assert staging.entries() == []


def test_reap_expired_removes_abandoned_sessions(tracker: ChunkTracker, staging: StagingArea, clock) -> None:
    async def scenario():
        await tracker.begin_or_continue("old", 0, 2, b"a")
        clock.advance(30)
        await tracker.begin_or_continue("fresh", 0, 2, b"b")
        clock.advance(40)
        return await tracker.reap_expired(60)

    reaped = asyncio.run(scenario())
    assert reaped == ["old"]
    assert tracker.get_session("old") is None
    fresh = tracker.get_session("fresh")
    assert fresh is not None
    assert staging.entries() == [fresh.directory]


def test_activity_keeps_session_alive(tracker: ChunkTracker, clock) -> None:
    async def scenario():
        await tracker.begin_or_continue("slow", 0, 3, b"a")
        clock.advance(50)
        await tracker.begin_or_continue("slow", 1, 3, b"b")
        clock.advance(50)
        return await tracker.reap_expired(60)

    assert asyncio.run(scenario()) == []
    assert tracker.live_count() == 1


def test_reaped_upload_id_starts_a_new_session(tracker: ChunkTracker, clock) -> None:
    async def scenario():
        await tracker.begin_or_continue("again", 0, 2, b"stale")
        clock.advance(120)
        await tracker.reap_expired(60)
        await tracker.begin_or_continue("again", 0, 2, b"a")
        return await tracker.begin_or_continue("again", 1, 2, b"b")

    result = asyncio.run(scenario())
    assert result.status is ChunkStatus.COMPLETE
    assert result.assembled.path.read_bytes() == b"ab"


def test_completed_markers_expire(tracker: ChunkTracker, clock) -> None:
    async def scenario():
        await tracker.begin_or_continue("done", 0, 1, b"a")
        clock.advance(120)
        await tracker.reap_expired(60)

    asyncio.run(scenario())
    assert not tracker.is_completed("done")


def test_concurrent_chunks_for_one_upload(tracker: ChunkTracker) -> None:
    payloads = [bytes([65 + i]) * 10 for i in range(20)]
    order = list(range(20))
    random.Random(7).shuffle(order)

    async def scenario():
        return await asyncio.gather(*(tracker.begin_or_continue("race", i, 20, payloads[i]) for i in order))

    results = asyncio.run(scenario())
    complete = [r for r in results if r.status is ChunkStatus.COMPLETE]
    assert len(complete) == 1
    assert complete[0].assembled.path.read_bytes() == b"".join(payloads)
    assert tracker.live_count() == 0


def test_concurrent_uploads_do_not_mix(tracker: ChunkTracker) -> None:
    async def upload(upload_id: str, parts: list[bytes]):
        result = None
        for i in reversed(range(len(parts))):
            result = await tracker.begin_or_continue(upload_id, i, len(parts), parts[i])
        return result

    async def scenario():
        return await asyncio.gather(upload("u1", [b"a1", b"a2"]), upload("u2", [b"b1", b"b2", b"b3"]))

    r1, r2 = asyncio.run(scenario())
    assert r1.assembled.path.read_bytes() == b"a1a2"
    assert r2.assembled.path.read_bytes() == b"b1b2b3"


def test_reaper_sweep_and_stop(tracker: ChunkTracker, clock) -> None:
    reaper = Reaper(tracker, max_age=60, interval=3600)

    async def scenario():
        await tracker.begin_or_continue("idle", 0, 2, b"a")
        task = reaper.start()
        assert reaper.running
        assert reaper.start() is task
        clock.advance(61)
        reaped = await reaper.sweep()
        await reaper.stop()
        return task, reaped

    task, reaped = asyncio.run(scenario())
    assert reaped == ["idle"]
    assert task.cancelled()
    assert not reaper.running


def test_reaper_loop_runs_sweeps(tracker: ChunkTracker, clock) -> None:
    reaper = Reaper(tracker, max_age=60, interval=0.01)

    async def scenario():
        await tracker.begin_or_continue("idle", 0, 2, b"a")
        clock.advance(61)
        reaper.start()
        for _ in range(100):
            if not tracker.live_count():
                break
            await asyncio.sleep(0.01)
        await reaper.stop()

    asyncio.run(scenario())
    assert tracker.live_count() == 0
