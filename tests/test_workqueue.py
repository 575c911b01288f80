"""Tests for the work queue."""

import asyncio

import pytest

from autoheal.core.workqueue import WorkQueue


class TestWorkQueue:
    """Tests for adding, taking and retrying items."""

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        queue = WorkQueue("test")
        queue.add("a")
        queue.add("b")

        assert await queue.get() == ("a", False)
        assert await queue.get() == ("b", False)
        assert queue.processing == 2

        queue.done("a")
        assert queue.processing == 1

    @pytest.mark.asyncio
    async def test_get_waits_for_items(self):
        queue = WorkQueue("test")
        task = asyncio.create_task(queue.get())
        await asyncio.sleep(0)
        assert not task.done()

        queue.add("a")
        assert await asyncio.wait_for(task, timeout=1) == ("a", False)

    @pytest.mark.asyncio
    async def test_rate_limited_backoff(self):
        queue = WorkQueue("test", base_delay=0.001, max_delay=0.004)
        item = object()

        assert queue.add_rate_limited(item) == 0.001
        assert queue.add_rate_limited(item) == 0.002
        assert queue.add_rate_limited(item) == 0.004
        assert queue.add_rate_limited(item) == 0.004
        assert queue.num_requeues(item) == 4

        queue.forget(item)
        assert queue.num_requeues(item) == 0

    @pytest.mark.asyncio
    async def test_rate_limited_item_comes_back(self):
        queue = WorkQueue("test", base_delay=0.01)
        queue.add_rate_limited("a")
        assert len(queue) == 0

        item, shutdown = await asyncio.wait_for(queue.get(), timeout=1)
        assert item == "a"
        assert shutdown is False

    @pytest.mark.asyncio
    async def test_shut_down_wakes_waiters(self):
        queue = WorkQueue("test")
        task = asyncio.create_task(queue.get())
        await asyncio.sleep(0)

        queue.shut_down()

        assert await asyncio.wait_for(task, timeout=1) == (None, True)

    @pytest.mark.asyncio
    async def test_shut_down_drains_items(self):
        queue = WorkQueue("test")
        queue.add("a")
        queue.shut_down()
        queue.add("b")

        assert await queue.get() == ("a", False)
        assert await queue.get() == (None, True)

    @pytest.mark.asyncio
    async def test_shut_down_forgets_pending_retries(self):
        queue = WorkQueue("test", base_delay=10)
        item = object()
        queue.add_rate_limited(item)
        assert queue.num_requeues(item) == 1

        queue.shut_down()
        queue.add_rate_limited(item)

        assert queue.num_requeues(item) == 0
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_retries_are_counted_per_item(self):
        queue = WorkQueue("test", base_delay=10)
        first = {"name": "a"}
        second = {"name": "a"}

        queue.add_rate_limited(first)
        queue.add_rate_limited(first)
        queue.add_rate_limited(second)

        assert queue.num_requeues(first) == 2
        assert queue.num_requeues(second) == 1
        queue.shut_down()
