"""Tests for prismgen.core.tasks - background task tracking."""

from __future__ import annotations

import asyncio
import logging

import pytest

from prismgen.core.tasks import TaskManager

pytestmark = pytest.mark.unit


@pytest.mark.anyio
async def test_task_tracked_until_done():
    tasks = TaskManager()
    gate = asyncio.Event()

    async def work():
        await gate.wait()
        return "done"

    task = tasks.create_task(work(), name="work")
    assert tasks.pending == 1

    gate.set()
    assert await task == "done"
    await asyncio.sleep(0)
    assert tasks.pending == 0
    assert not tasks.background_tasks


@pytest.mark.anyio
async def test_unawaited_failure_logged(caplog):
    tasks = TaskManager()

    async def explode():
        raise RuntimeError("lost")

    with caplog.at_level(logging.ERROR, logger="prismgen.core.tasks"):
        tasks.create_task(explode(), name="explode")
        await tasks.drain()

    assert "Background task explode failed: lost" in caplog.text


@pytest.mark.anyio
async def test_drain_waits_for_tasks_scheduled_while_draining():
    tasks = TaskManager()
    finished = []

    async def child():
        await asyncio.sleep(0.01)
        finished.append("child")

    async def parent():
        await asyncio.sleep(0.01)
        tasks.create_task(child(), name="child")
        finished.append("parent")

    tasks.create_task(parent(), name="parent")
    await tasks.drain()
    assert finished == ["parent", "child"]


@pytest.mark.anyio
async def test_drain_timeout_leaves_tasks_running():
    tasks = TaskManager()
    gate = asyncio.Event()
    task = tasks.create_task(gate.wait(), name="slow")

    await tasks.drain(timeout=0.01)
    assert not task.done()

    gate.set()
    await task


@pytest.mark.anyio
async def test_cancel_all():
    tasks = TaskManager()
    task = tasks.create_task(asyncio.sleep(10), name="sleeper")

    await tasks.cancel_all()
    assert task.cancelled()
    assert tasks.pending == 0
