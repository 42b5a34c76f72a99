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

"""Mixin for fire-and-forget asyncio tasks that still get cleaned up.

Used by the context distiller, whose summaries are produced in the background
after a task completes.

Usage:
    class Distiller(TaskManager):
        def schedule(self):
            self.create_tracked_task(self._run(), name="distill")

        async def aclose(self):
            await self.cleanup_tasks()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class TaskManager:
    """Tracks background tasks so they can be cancelled and awaited on shutdown."""

    def __init__(self) -> None:
        self._background_tasks: Set[asyncio.Task] = set()

    def create_tracked_task(
        self,
        coro: Coroutine[Any, Any, Any],
        name: Optional[str] = None,
    ) -> asyncio.Task:
        """Create a task and track it until it finishes.

        Exceptions raised by the task are logged from the done callback so
        they are never lost silently.

        Raises:
            RuntimeError: If no event loop is running.
        """
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._task_done_callback)
        logger.debug(f"Created tracked task: {name or task.get_name()}")
        return task

    def _task_done_callback(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(f"Background task failed: {task.get_name()}", exc_info=exc)

    async def cleanup_tasks(self, timeout: Optional[float] = 5.0) -> None:
        """Cancel all background tasks and wait for them to finish.

        Args:
            timeout: Maximum seconds to wait. None waits indefinitely.
        """
        if not self._background_tasks:
            return

        logger.info(f"Cleaning up {len(self._background_tasks)} background task(s)...")
        for task in self._background_tasks:
            if not task.done():
                task.cancel()

        pending = list(self._background_tasks)
        if timeout is not None:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*pending, return_exceptions=True),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                still_running = len([t for t in pending if not t.done()])
                logger.warning(
                    f"Task cleanup timed out after {timeout}s, {still_running} task(s) still running"
                )
        else:
            await asyncio.gather(*pending, return_exceptions=True)

        self._background_tasks.clear()

    async def wait_for_tasks(self) -> None:
        """Wait for every tracked task to finish without cancelling it."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    @property
    def active_task_count(self) -> int:
        return len(self._background_tasks)
