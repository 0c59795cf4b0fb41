import asyncio

import pytest

from permissions_operator.services.work_queue import WorkQueue


@pytest.mark.asyncio
async def test_add_deduplicates_pending_keys():
    queue = WorkQueue()
    queue.add("ns/a")
    queue.add("ns/a")
    queue.add("ns/b")

    assert len(queue) == 2
    assert await queue.get() == "ns/a"
    assert await queue.get() == "ns/b"
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_key_added_while_processing_is_queued_again_after_done():
    queue = WorkQueue()
    queue.add("ns/a")
    key = await queue.get()

    queue.add("ns/a")
    assert queue._queue.empty()

    queue.done(key)
    assert await asyncio.wait_for(queue.get(), timeout=1) == "ns/a"


@pytest.mark.asyncio
async def test_done_without_new_add_does_not_requeue():
    queue = WorkQueue()
    queue.add("ns/a")
    queue.done(await queue.get())
    assert queue._queue.empty()


def test_backoff_grows_exponentially_and_is_capped():
    queue = WorkQueue(backoff_base=0.5, backoff_max=2.0)
    assert queue.backoff("ns/a") == 0.5
    queue._failures["ns/a"] = 1
    assert queue.backoff("ns/a") == 1.0
    queue._failures["ns/a"] = 10
    assert queue.backoff("ns/a") == 2.0


@pytest.mark.asyncio
async def test_add_rate_limited_counts_failures_until_forget():
    queue = WorkQueue(backoff_base=0.5, backoff_max=2.0)

    delays = [queue.add_rate_limited("ns/a") for _ in range(4)]

    assert delays == [0.5, 1.0, 2.0, 2.0]
    assert queue.num_requeues("ns/a") == 4
    queue.forget("ns/a")
    assert queue.num_requeues("ns/a") == 0
    queue.shutdown()


@pytest.mark.asyncio
async def test_add_after_delivers_key_later():
    queue = WorkQueue()
    queue.add_after("ns/a", 0.01)
    assert len(queue) == 0

    assert await asyncio.wait_for(queue.get(), timeout=1) == "ns/a"


@pytest.mark.asyncio
async def test_add_after_keeps_earliest_deadline():
    queue = WorkQueue()
    queue.add_after("ns/a", 60)
    queue.add_after("ns/a", 0.01)
    queue.add_after("ns/a", 30)

    assert await asyncio.wait_for(queue.get(), timeout=1) == "ns/a"
    assert queue._timers == {}


@pytest.mark.asyncio
async def test_shutdown_releases_waiters_and_drops_new_keys():
    queue = WorkQueue()
    waiters = [asyncio.create_task(queue.get()) for _ in range(2)]
    await asyncio.sleep(0)

    queue.shutdown(waiters=2)
    queue.add("ns/a")

    assert await asyncio.gather(*waiters) == [None, None]
    assert len(queue) == 0


def test_backoff_base_must_be_positive():
    with pytest.raises(ValueError):
        WorkQueue(backoff_base=0)
