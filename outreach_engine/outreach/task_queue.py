"""Priority task queue with sqlite persistence for crash recovery."""

import heapq
import itertools
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from outreach_engine.core.db import delete_task, load_open_tasks, save_task
from outreach_engine.core.models import Task, TaskStatus, TaskType

log = structlog.get_logger()


class TaskQueue:
    """Tasks live in a dict keyed by id; the heap only orders ids.

    Heap entries are (-priority, sequence, task_id), so equal priorities come out
    in insertion order. Entries whose task is gone or no longer pending are skipped.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path
        self._tasks: dict[str, Task] = {}
        self._heap: list[tuple[int, int, str]] = []
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._tasks)

    def _push(self, task: Task) -> None:
        heapq.heappush(self._heap, (-task.priority, next(self._seq), task.id))

    def _persist(self, task: Task) -> None:
        # The in-memory queue stays authoritative when the store is unavailable
        if self.db_path is None:
            return
        try:
            save_task(self.db_path, task)
        except sqlite3.Error as e:
            log.error("task_persist_failed", task_id=task.id, op="save", error=str(e))

    def _delete(self, task_id: str) -> None:
        if self.db_path is None:
            return
        try:
            delete_task(self.db_path, task_id)
        except sqlite3.Error as e:
            log.error("task_persist_failed", task_id=task_id, op="delete", error=str(e))

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def enqueue(self, task: Task) -> Task:
        if task.id in self._tasks:
            return self._tasks[task.id]
        self._tasks[task.id] = task
        self._push(task)
        self._persist(task)
        log.debug("task_enqueued", task_id=task.id, type=task.type.value,
                  prospect_id=task.prospect_id, priority=task.priority)
        return task

    def dequeue_top_n(self, n: int, now: datetime) -> list[Task]:
        """Take up to `n` due pending tasks, highest priority first, and mark them in progress."""
        taken: list[Task] = []
        not_due: list[tuple[int, int, str]] = []

        while self._heap and len(taken) < n:
            entry = heapq.heappop(self._heap)
            task = self._tasks.get(entry[2])
            if task is None or task.status != TaskStatus.PENDING:
                continue
            if task.scheduled_for > now:
                not_due.append(entry)
                continue
            task.status = TaskStatus.IN_PROGRESS
            self._persist(task)
            taken.append(task)

        for entry in not_due:
            heapq.heappush(self._heap, entry)
        return taken

    def mark_status(self, task_id: str, status: TaskStatus, error: Optional[str] = None) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return

        task.status = status
        task.error = error

        if status == TaskStatus.COMPLETED:
            del self._tasks[task_id]
            self._delete(task_id)
        elif status == TaskStatus.FAILED:
            # Kept in the table for audit and manual reprocessing
            del self._tasks[task_id]
            self._persist(task)
        elif status == TaskStatus.PENDING:
            self._push(task)
            self._persist(task)
        else:
            self._persist(task)

    def defer(self, task_id: str, until: datetime) -> None:
        """Put a task back as pending, due at `until`."""
        task = self._tasks.get(task_id)
        if task is None:
            return
        task.scheduled_for = until
        if task.status == TaskStatus.PENDING:
            # Already in the heap; the old entry is still valid
            self._persist(task)
            return
        self.mark_status(task_id, TaskStatus.PENDING)

    def pending_for(self, prospect_id: int, task_type: Optional[TaskType] = None) -> list[Task]:
        return [
            t for t in self._tasks.values()
            if t.prospect_id == prospect_id
            and t.status == TaskStatus.PENDING
            and (task_type is None or t.type == task_type)
        ]

    def has_open_tasks(self, prospect_id: int) -> bool:
        return any(t.prospect_id == prospect_id for t in self._tasks.values())

    def load(self) -> int:
        """Restore open tasks from the store. Tasks caught in progress go back to pending."""
        if self.db_path is None:
            return 0
        restored = 0
        for task in load_open_tasks(self.db_path):
            if task.id in self._tasks:
                continue
            if task.status == TaskStatus.IN_PROGRESS:
                task.status = TaskStatus.PENDING
                self._persist(task)
            self._tasks[task.id] = task
            self._push(task)
            restored += 1
        if restored:
            log.info("tasks_restored", count=restored)
        return restored
