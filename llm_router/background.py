"""
Background Task Manager
=======================

Runs expert calls detached from the caller, bounded by per-model and
per-provider concurrency limits. Calls that cannot start immediately wait
in a FIFO queue that is drained whenever a running call finishes.

State survives restarts:
- .llm-router-data/background-tasks.json  task table, saved every few seconds when dirty
- .llm-router-data/pending-queue.json     queue, saved on every change

Usage:
    manager = BackgroundTaskManager(data_dir, router, registry, concurrency)
    await manager.start()
    task = manager.start_task("researcher", "Summarize the RFC")
    ...
    manager.get_task_result(task.id)
    await manager.shutdown()
"""

import asyncio
import atexit
import json
import logging
import os
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from llm_router.config import ConcurrencyConfig
from llm_router.experts import ExpertRegistry, provider_for_model
from llm_router.hooks.manager import HookManager
from llm_router.hooks.types import (
    BackgroundLoopEndEvent,
    BackgroundLoopIterationEvent,
    BackgroundLoopStartEvent,
)
from llm_router.router import FallbackRouter

logger = logging.getLogger(__name__)

TASKS_FILENAME = "background-tasks.json"
QUEUE_FILENAME = "pending-queue.json"


class TaskStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class BackgroundTask:
    """A detached expert call."""
    id: str
    expert: str
    status: TaskStatus
    started_at: datetime
    result: Optional[str] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "expert": self.expert,
            "status": self.status.value,
            "startedAt": self.started_at.isoformat(),
        }
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "BackgroundTask":
        return cls(
            id=data["id"],
            expert=data["expert"],
            status=TaskStatus(data["status"]),
            started_at=_parse_time(data["startedAt"]),
            result=data.get("result"),
            error=data.get("error"),
            completed_at=_parse_time(data.get("completedAt")),
        )


@dataclass
class PersistedQueueItem:
    """Everything needed to start a queued task after a restart."""
    task_id: str
    expert_id: str
    model: str
    prompt: str
    context: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "taskId": self.task_id,
            "expertId": self.expert_id,
            "model": self.model,
            "prompt": self.prompt,
        }
        if self.context is not None:
            data["context"] = self.context
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PersistedQueueItem":
        return cls(
            task_id=data["taskId"],
            expert_id=data["expertId"],
            model=data["model"],
            prompt=data["prompt"],
            context=data.get("context"),
        )


@dataclass
class TaskResult:
    """Caller-facing view of a task; status is `not_found` for unknown ids."""
    status: str
    result: Optional[str] = None
    error: Optional[str] = None


class BackgroundTaskManager:
    """Admission-controlled background expert calls with crash recovery."""

    AUTO_SAVE_INTERVAL_SECONDS = 5.0
    MAX_RECOVERABLE_AGE_SECONDS = 60 * 60

    def __init__(
        self,
        data_dir: Path,
        router: FallbackRouter,
        registry: ExpertRegistry,
        concurrency: Optional[ConcurrencyConfig] = None,
        hooks: Optional[HookManager] = None,
        auto_save_interval: Optional[float] = None,
    ):
        self.data_dir = Path(data_dir)
        self.store = TaskStore(self.data_dir)
        self.router = router
        self.registry = registry
        self.concurrency = concurrency or ConcurrencyConfig()
        self.hooks = hooks
        self.auto_save_interval = auto_save_interval or self.AUTO_SAVE_INTERVAL_SECONDS

        self._tasks: Dict[str, BackgroundTask] = {}
        self._queue: List[PersistedQueueItem] = []
        self._running_by_model: Dict[str, int] = {}
        self._running_by_provider: Dict[str, int] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._dirty = False
        self._started = False
        self._closed = False
        self._started_at = time.monotonic()
        self._autosave_task: Optional[asyncio.Task] = None

        atexit.register(self._on_exit)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Restore persisted state, start autosave, and drain the restored queue."""
        if self._started:
            return
        self._started = True
        self._closed = False
        self._started_at = time.monotonic()

        restored = self._load_tasks()
        self._queue = self.store.load_queue()
        self._fail_orphaned_pending()

        self._autosave_task = asyncio.get_running_loop().create_task(self._autosave_loop())
        logger.info("Background manager started (%d restored, %d queued)", restored, len(self._queue))

        if self.hooks is not None:
            await self.hooks.dispatch(BackgroundLoopStartEvent(
                restored_tasks=restored,
                queued_tasks=len(self._queue),
            ))

        self._process_queue()

    async def shutdown(self) -> None:
        """Stop autosave, stop in-flight calls and force a final save."""
        if self._closed:
            return
        self._closed = True

        if self._autosave_task is not None:
            self._autosave_task.cancel()
            try:
                await self._autosave_task
            except asyncio.CancelledError:
                pass
            self._autosave_task = None

        inflight = list(self._inflight.values())
        for task in inflight:
            task.cancel()
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)

        self.save_now()
        atexit.unregister(self._on_exit)

        if self.hooks is not None:
            counts = self._status_counts()
            await self.hooks.dispatch(BackgroundLoopEndEvent(
                total_tasks=len(self._tasks),
                completed=counts[TaskStatus.COMPLETED],
                failed=counts[TaskStatus.FAILED],
                cancelled=counts[TaskStatus.CANCELLED],
                uptime_ms=int((time.monotonic() - self._started_at) * 1000),
            ))
        self._started = False
        logger.info("Background manager persistence shutdown complete")

    def _on_exit(self) -> None:
        if self._dirty or self._queue:
            self.save_now()

    async def _autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self.auto_save_interval)
            if self._dirty:
                self._save_tasks()

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def start_task(
        self,
        expert_id: str,
        prompt: str,
        context: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> BackgroundTask:
        """
        Register a task and start it if capacity allows, otherwise queue it.

        Must be called from a running event loop. The returned task is
        `pending` until the call actually starts.

        Raises:
            RuntimeError: no running event loop; nothing is registered
        """
        asyncio.get_running_loop()
        task = BackgroundTask(
            id=task_id or str(uuid.uuid4()),
            expert=expert_id,
            status=TaskStatus.PENDING,
            started_at=datetime.now(timezone.utc),
        )
        self._tasks[task.id] = task
        self._mark_dirty()

        item = PersistedQueueItem(
            task_id=task.id,
            expert_id=expert_id,
            model=self.registry.model_for(expert_id),
            prompt=prompt,
            context=context,
        )
        if self._can_start(item.model):
            self._launch(task, item)
        else:
            self._queue.append(item)
            self._save_queue()
            logger.debug("Task %s queued, waiting for capacity", task.id)
        return task

    def get_task(self, task_id: str) -> Optional[BackgroundTask]:
        return self._tasks.get(task_id)

    def get_task_result(self, task_id: str) -> TaskResult:
        task = self._tasks.get(task_id)
        if task is None:
            return TaskResult(status="not_found")
        return TaskResult(status=task.status.value, result=task.result, error=task.error)

    def cancel_task(self, task_id: str) -> bool:
        """
        Cancel a pending or running task.

        Pending tasks leave the queue. Running calls are left to finish and
        their result is discarded.
        """
        task = self._tasks.get(task_id)
        if task is None or task.status not in (TaskStatus.PENDING, TaskStatus.RUNNING):
            return False

        task.status = TaskStatus.CANCELLED
        task.completed_at = datetime.now(timezone.utc)
        self._mark_dirty()

        remaining = [item for item in self._queue if item.task_id != task_id]
        if len(remaining) != len(self._queue):
            self._queue = remaining
            self._save_queue()

        logger.info("Task %s cancelled", task_id)
        return True

    def list_tasks(self, status: Optional[TaskStatus] = None) -> List[BackgroundTask]:
        if status is None:
            return list(self._tasks.values())
        return [t for t in self._tasks.values() if t.status == status]

    def cleanup_old_tasks(self, max_age_seconds: float = 3600.0) -> int:
        """Drop finished tasks started more than `max_age_seconds` ago."""
        now = datetime.now(timezone.utc)
        stale = [
            task_id for task_id, task in self._tasks.items()
            if task.status in TERMINAL_STATUSES and task.age_seconds(now) > max_age_seconds
        ]
        for task_id in stale:
            del self._tasks[task_id]

        if stale:
            self._mark_dirty()
            logger.info("Cleaned up %d old background tasks", len(stale))
        return len(stale)

    def get_stats(self) -> Dict[str, Any]:
        counts = self._status_counts()
        return {
            "total": len(self._tasks),
            "pending": counts[TaskStatus.PENDING],
            "running": counts[TaskStatus.RUNNING],
            "completed": counts[TaskStatus.COMPLETED],
            "failed": counts[TaskStatus.FAILED],
            "cancelled": counts[TaskStatus.CANCELLED],
            "queue_length": len(self._queue),
            "concurrency": {
                "by_provider": dict(self._running_by_provider),
                "by_model": dict(self._running_by_model),
            },
            "persistence": {
                "data_dir": str(self.data_dir),
                "auto_save_interval": self.auto_save_interval,
                "dirty": self._dirty,
            },
        }

    def save_now(self) -> None:
        self._save_tasks()
        self._save_queue()

    def _status_counts(self) -> Dict[TaskStatus, int]:
        counts = {status: 0 for status in TaskStatus}
        for task in self._tasks.values():
            counts[task.status] += 1
        return counts

    # -------------------------------------------------------------------------
    # Admission and execution
    # -------------------------------------------------------------------------

    def _provider(self, model: str) -> str:
        return provider_for_model(model)

    def _can_start(self, model: str) -> bool:
        model_limit = self.concurrency.limit_for_model(model)
        if model_limit is not None and self._running_by_model.get(model, 0) >= model_limit:
            return False
        provider = self._provider(model)
        provider_limit = self.concurrency.limit_for_provider(provider)
        return self._running_by_provider.get(provider, 0) < provider_limit

    def _increment(self, model: str) -> None:
        provider = self._provider(model)
        self._running_by_model[model] = self._running_by_model.get(model, 0) + 1
        self._running_by_provider[provider] = self._running_by_provider.get(provider, 0) + 1

    def _decrement(self, model: str) -> None:
        provider = self._provider(model)
        self._running_by_model[model] = max(0, self._running_by_model.get(model, 1) - 1)
        self._running_by_provider[provider] = max(0, self._running_by_provider.get(provider, 1) - 1)

    def _launch(self, task: BackgroundTask, item: PersistedQueueItem) -> None:
        loop = asyncio.get_running_loop()
        # Counted before the coroutine is scheduled so back-to-back starts see it
        self._increment(item.model)
        task.status = TaskStatus.RUNNING
        self._mark_dirty()
        logger.info("Background task %s started (%s)", task.id, item.expert_id)
        self._inflight[task.id] = loop.create_task(self._run_task(task, item))

    async def _run_task(self, task: BackgroundTask, item: PersistedQueueItem) -> None:
        try:
            try:
                response = await self.router.call_with_fallback(item.expert_id, item.prompt, item.context)
            except Exception as e:
                self._finish(task, error=str(e))
                logger.error("Background task %s failed: %s", task.id, e)
            else:
                self._finish(task, result=response.response)
                logger.info("Background task %s completed in %dms", task.id, response.latency_ms)
        finally:
            self._decrement(item.model)
            self._inflight.pop(task.id, None)
            self._process_queue()

        if self.hooks is not None:
            await self.hooks.dispatch(BackgroundLoopIterationEvent(
                task_id=task.id,
                expert=task.expert,
                status=task.status.value,
                running_tasks=len(self._inflight),
                queued_tasks=len(self._queue),
            ))

    def _finish(self, task: BackgroundTask, result: Optional[str] = None, error: Optional[str] = None) -> None:
        if task.status == TaskStatus.CANCELLED:
            logger.debug("Discarding late result for cancelled task %s", task.id)
            return
        task.status = TaskStatus.FAILED if error is not None else TaskStatus.COMPLETED
        task.result = result
        task.error = error
        task.completed_at = datetime.now(timezone.utc)
        self._mark_dirty()

    def _process_queue(self) -> None:
        """Start queued tasks in FIFO order until the head cannot start."""
        if self._closed:
            return

        changed = False
        while self._queue:
            head = self._queue[0]
            task = self._tasks.get(head.task_id)
            if task is None or task.status != TaskStatus.PENDING:
                self._queue.pop(0)
                changed = True
                continue
            if not self._can_start(head.model):
                break
            self._queue.pop(0)
            changed = True
            self._launch(task, head)

        if changed:
            self._save_queue()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _mark_dirty(self) -> None:
        self._dirty = True

    def _save_tasks(self) -> None:
        if self.store.save_tasks(self._tasks):
            self._dirty = False

    def _save_queue(self) -> None:
        self.store.save_queue(self._queue)

    def _load_tasks(self) -> int:
        """Restore recent tasks; running tasks come back as pending."""
        tasks = self.store.load_tasks(max_age_seconds=self.MAX_RECOVERABLE_AGE_SECONDS)
        for task in tasks.values():
            if task.status == TaskStatus.RUNNING:
                task.status = TaskStatus.PENDING
        self._tasks.update(tasks)
        return len(tasks)

    def _fail_orphaned_pending(self) -> None:
        """Pending tasks with no queued prompt cannot be re-run."""
        queued = {item.task_id for item in self._queue}
        for task in self._tasks.values():
            if task.status == TaskStatus.PENDING and task.id not in queued:
                task.status = TaskStatus.FAILED
                task.error = "Interrupted by restart before completion"
                task.completed_at = datetime.now(timezone.utc)
                self._mark_dirty()
                logger.warning("Background task %s was interrupted and cannot be resumed", task.id)


class TaskStore:
    """
    The two background persistence files.

    Failures are logged and reported as False/empty; callers keep running
    on their in-memory state.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.tasks_file = self.data_dir / TASKS_FILENAME
        self.queue_file = self.data_dir / QUEUE_FILENAME

    def _write_json(self, path: Path, data: Any) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, path)

    def save_tasks(self, tasks: Dict[str, BackgroundTask]) -> bool:
        state = {
            "tasks": {task_id: task.to_dict() for task_id, task in tasks.items()},
            "saved_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._write_json(self.tasks_file, state)
        except OSError as e:
            logger.error("Failed to save background tasks: %s", e)
            return False
        logger.debug("Saved %d background tasks", len(tasks))
        return True

    def save_queue(self, queue: List[PersistedQueueItem]) -> bool:
        try:
            self._write_json(self.queue_file, [item.to_dict() for item in queue])
        except OSError as e:
            logger.error("Failed to save pending queue: %s", e)
            return False
        logger.debug("Saved pending queue (%d items)", len(queue))
        return True

    def load_tasks(self, max_age_seconds: Optional[float] = None) -> Dict[str, BackgroundTask]:
        """Persisted tasks, skipping invalid entries and those older than `max_age_seconds`."""
        if not self.tasks_file.exists():
            return {}
        try:
            with open(self.tasks_file, "r", encoding="utf-8") as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load background tasks: %s", e)
            return {}

        now = datetime.now(timezone.utc)
        tasks: Dict[str, BackgroundTask] = {}
        skipped = 0
        for task_id, data in (state.get("tasks") or {}).items():
            try:
                task = BackgroundTask.from_dict(data)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping invalid persisted task %s: %s", task_id, e)
                skipped += 1
                continue
            if max_age_seconds is not None and task.age_seconds(now) > max_age_seconds:
                skipped += 1
                continue
            tasks[task_id] = task

        logger.info("Restored %d background tasks (%d skipped)", len(tasks), skipped)
        return tasks

    def load_queue(self) -> List[PersistedQueueItem]:
        if not self.queue_file.exists():
            return []
        try:
            with open(self.queue_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            queue = [PersistedQueueItem.from_dict(item) for item in data]
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error("Failed to load pending queue: %s", e)
            return []
        logger.info("Restored pending queue (%d items)", len(queue))
        return queue
