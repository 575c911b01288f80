"""Tests for the healer workers and lifecycle."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from autoheal.core.healer import Healer
from autoheal.core.workqueue import WorkQueue
from autoheal.models import AlertmanagerMessage, AutohealConfig, JobAction, JobStatus

from conftest import make_alert, make_rule


async def wait_for(condition, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)


class TestHealer:
    """Tests for the processing of alerts and rule changes."""

    @pytest.mark.asyncio
    async def test_alert_is_dispatched(self, runner):
        rule = make_rule(name="start-node", labels={"alertname": "NodeDown"}, awx_job=JobAction(template="t"))
        healer = Healer({JobAction: runner}, rules=[rule])
        stop_event = asyncio.Event()
        task = asyncio.create_task(healer.run(stop_event))

        await wait_for(lambda: "start-node" in healer.rules)
        healer.handle_message(AlertmanagerMessage(alerts=[make_alert(labels={"alertname": "NodeDown"})]))
        await wait_for(lambda: runner.run_action.await_count == 1)

        stop_event.set()
        await asyncio.wait_for(task, timeout=2)
        assert not healer.is_running

    @pytest.mark.asyncio
    async def test_reload_rules(self, runner):
        healer = Healer({JobAction: runner})
        healer.rules.upsert(make_rule(name="a"))
        healer.rules.upsert(make_rule(name="b"))

        healer.reload_rules([make_rule(name="b"), make_rule(name="c")])
        while len(healer.rules_queue):
            change, _ = await healer.rules_queue.get()
            await healer.process_rule_change(change)

        assert healer.rules.names() == {"b", "c"}

    @pytest.mark.asyncio
    async def test_rule_removed_by_consecutive_reloads(self, runner):
        healer = Healer({JobAction: runner})
        stop_event = asyncio.Event()
        task = asyncio.create_task(healer.run(stop_event))
        await asyncio.sleep(0)

        healer.reload_rules([make_rule(name="x"), make_rule(name="y")])
        healer.reload_rules([make_rule(name="y")])
        await wait_for(lambda: len(healer.rules_queue) == 0 and healer.rules_queue.processing == 0)

        assert healer.rules.names() == {"y"}
        assert healer.status()["running"]

        stop_event.set()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_failed_item_is_retried(self):
        healer = Healer({}, max_requeues=3)
        healer.alerts_queue = WorkQueue("alerts", base_delay=0.001)
        calls = []

        async def flaky(alert):
            calls.append(alert)
            if len(calls) < 3:
                raise RuntimeError("boom")

        healer.process_alert = flaky
        stop_event = asyncio.Event()
        task = asyncio.create_task(healer.run(stop_event))

        healer.alerts_queue.add(make_alert())
        await wait_for(lambda: len(calls) == 3)

        stop_event.set()
        await asyncio.wait_for(task, timeout=2)
        assert healer.alerts_queue.num_requeues(calls[0]) == 0

    @pytest.mark.asyncio
    async def test_item_dropped_after_max_requeues(self):
        healer = Healer({}, max_requeues=2)
        healer.alerts_queue = WorkQueue("alerts", base_delay=0.001)
        calls = []

        async def broken(alert):
            calls.append(alert)
            raise RuntimeError("boom")

        healer.process_alert = broken
        stop_event = asyncio.Event()
        task = asyncio.create_task(healer.run(stop_event))

        healer.alerts_queue.add(make_alert())
        await wait_for(lambda: len(calls) == 3)
        await asyncio.sleep(0.05)

        stop_event.set()
        await asyncio.wait_for(task, timeout=2)
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_poller_runs_with_querier(self, runner):
        querier = MagicMock()
        querier.job_status = AsyncMock(return_value=JobStatus.SUCCESSFUL)
        healer = Healer({JobAction: runner}, querier=querier, job_status_interval=0.01)
        healer.active_jobs.track(5, make_rule(awx_job=JobAction(template="t")))
        stop_event = asyncio.Event()
        task = asyncio.create_task(healer.run(stop_event))

        await wait_for(lambda: len(healer.active_jobs) == 0)

        stop_event.set()
        await asyncio.wait_for(task, timeout=2)

    def test_from_config(self, runner):
        config = AutohealConfig.model_validate({
            "throttling": {"interval": "10m"},
            "awx": {"jobStatusCheckInterval": "1m"},
            "rules": [{"name": "a"}],
        })
        querier = MagicMock()

        healer = Healer.from_config(config, {JobAction: runner}, querier=querier)

        assert healer.memory.duration == 600
        assert healer.poller.interval == 60
        assert healer.status()["rules"] == 0
