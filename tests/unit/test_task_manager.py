# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for TaskManager background task tracking."""

import asyncio
import logging

import pytest

from auditflow.core.task_manager import TaskManager


class TestTaskManager:
    @pytest.mark.asyncio
    async def test_tracks_until_done(self):
        manager = TaskManager()
        release = asyncio.Event()

        async def work():
            await release.wait()
            return "ok"

        task = manager.create_tracked_task(work(), name="work")
        assert manager.active_task_count == 1
        release.set()
        assert await task == "ok"
        await asyncio.sleep(0)
        assert manager.active_task_count == 0

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, caplog):
        manager = TaskManager()

        async def fail():
            raise RuntimeError("background boom")

        with caplog.at_level(logging.ERROR, logger="auditflow.core.task_manager"):
            manager.create_tracked_task(fail(), name="failing")
            await manager.wait_for_tasks()
            await asyncio.sleep(0)

        assert "Background task failed: failing" in caplog.text
        assert manager.active_task_count == 0

    @pytest.mark.asyncio
    async def test_cleanup_cancels_running_tasks(self):
        manager = TaskManager()
        task = manager.create_tracked_task(asyncio.sleep(60), name="sleeper")
        await manager.cleanup_tasks(timeout=1.0)
        assert task.cancelled()
        assert manager.active_task_count == 0

    @pytest.mark.asyncio
    async def test_cleanup_without_tasks_is_noop(self):
        manager = TaskManager()
        await manager.cleanup_tasks()
        assert manager.active_task_count == 0
