"""Bounded background task queue for detached pipeline work."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from voice_actions.config import get_background_max_concurrency, get_background_max_pending

logger = logging.getLogger("voice_actions.background")


@dataclass
class TaskRecord:
    task_id: int
    name: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.monotonic)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    error: Optional[str] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at) * 1000)


@dataclass
class QueueStats:
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    dropped: int = 0
    running: int = 0
    pending: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "submitted": self.submitted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "dropped": self.dropped,
            "running": self.running,
            "pending": self.pending,
        }


class BackgroundTaskQueue:
    """Run fire-and-forget jobs with bounded concurrency and error capture.

    ``submit`` never blocks the caller: the job is scheduled on the running
    event loop and waits on a semaphore for a free slot. Jobs beyond
    ``max_pending`` outstanding are rejected and counted as dropped. Sync
    callables run in a worker thread. Exceptions are logged and recorded on
    the task record, never re-raised.
    """

    def __init__(
        self,
        *,
        max_concurrency: Optional[int] = None,
        max_pending: Optional[int] = None,
        failure_history: int = 50,
    ) -> None:
        self.max_concurrency = max(1, max_concurrency or get_background_max_concurrency())
        self.max_pending = max(1, max_pending or get_background_max_pending())
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()
        self._stats = QueueStats()
        self._failures: Deque[TaskRecord] = deque(maxlen=failure_history)
        self._next_id = 0

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **metadata: Any) -> bool:
        """Schedule ``fn(*args)``; returns False when the job was dropped."""
        if len(self._tasks) >= self.max_pending:
            self._stats.dropped += 1
            logger.warning(
                "[background.drop] name=%s pending=%s max_pending=%s meta=%s",
                name,
                len(self._tasks),
                self.max_pending,
                metadata,
            )
            return False
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
            self._loop = loop
        self._next_id += 1
        record = TaskRecord(task_id=self._next_id, name=name, metadata=dict(metadata))
        task = loop.create_task(self._run(record, fn, args), name=f"{name}-{record.task_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._stats.submitted += 1
        logger.debug("[background.submit] id=%s name=%s meta=%s", record.task_id, name, metadata)
        return True

    async def _run(self, record: TaskRecord, fn: Callable[..., Any], args: tuple) -> None:
        assert self._semaphore is not None
        async with self._semaphore:
            self._stats.running += 1
            record.started_at = time.monotonic()
            try:
                if inspect.iscoroutinefunction(fn):
                    await fn(*args)
                else:
                    result = await asyncio.to_thread(fn, *args)
                    if inspect.isawaitable(result):
                        await result
                self._stats.succeeded += 1
            except Exception as exc:
                record.error = f"{type(exc).__name__}: {exc}"
                self._stats.failed += 1
                self._failures.append(record)
                logger.exception(
                    "[background.error] id=%s name=%s meta=%s", record.task_id, record.name, record.metadata
                )
            finally:
                record.finished_at = time.monotonic()
                self._stats.running -= 1
                logger.debug(
                    "[background.done] id=%s name=%s latency_ms=%s error=%s",
                    record.task_id,
                    record.name,
                    record.duration_ms,
                    record.error,
                )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for every job scheduled so far, including jobs they schedule."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._tasks:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            done, _ = await asyncio.wait(set(self._tasks), timeout=remaining)
            if deadline is not None and time.monotonic() >= deadline and self._tasks:
                logger.warning("[background.drain] timed out with %s jobs outstanding", len(self._tasks))
                return
            if not done:
                return

    def stats(self) -> Dict[str, int]:
        self._stats.pending = len(self._tasks)
        return self._stats.to_dict()

    def recent_failures(self) -> List[TaskRecord]:
        return list(self._failures)


__all__ = ["BackgroundTaskQueue", "QueueStats", "TaskRecord"]
