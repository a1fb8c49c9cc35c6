"""Tests for the persistent priority task queue."""

import sqlite3
from datetime import datetime, timedelta
from unittest.mock import patch

from outreach_engine.core.db import get_tasks_by_status, insert_prospect
from outreach_engine.core.models import (
    DiscoverContext,
    FollowUpContext,
    Task,
    TaskStatus,
    TaskType,
)
from outreach_engine.outreach.task_queue import TaskQueue

NOW = datetime(2026, 3, 2, 9, 0)


def _discover(prospect_id, priority, scheduled_for=NOW):
    return Task(
        type=TaskType.DISCOVER,
        prospect_id=prospect_id,
        priority=priority,
        scheduled_for=scheduled_for,
        context=DiscoverContext(intent_score=priority),
    )


def test_dequeue_orders_by_priority_then_insertion():
    queue = TaskQueue()
    low = queue.enqueue(_discover(1, 40))
    high = queue.enqueue(_discover(2, 90))
    tie_first = queue.enqueue(_discover(3, 60))
    tie_second = queue.enqueue(_discover(4, 60))

    taken = queue.dequeue_top_n(10, NOW)

    assert [t.id for t in taken] == [high.id, tie_first.id, tie_second.id, low.id]
    assert all(t.status == TaskStatus.IN_PROGRESS for t in taken)


def test_dequeue_skips_tasks_not_yet_due():
    queue = TaskQueue()
    later = queue.enqueue(_discover(1, 99, NOW + timedelta(days=1)))
    now_task = queue.enqueue(_discover(2, 10))

    assert [t.id for t in queue.dequeue_top_n(5, NOW)] == [now_task.id]
    assert [t.id for t in queue.dequeue_top_n(5, NOW + timedelta(days=1))] == [later.id]


def test_dequeue_respects_n():
    queue = TaskQueue()
    for pid in range(5):
        queue.enqueue(_discover(pid, 50))

    assert len(queue.dequeue_top_n(2, NOW)) == 2
    assert len(queue.dequeue_top_n(10, NOW)) == 3
    assert queue.dequeue_top_n(10, NOW) == []


def test_enqueue_is_idempotent_by_id():
    queue = TaskQueue()
    task = _discover(1, 50)
    queue.enqueue(task)
    queue.enqueue(task)

    assert len(queue) == 1
    assert len(queue.dequeue_top_n(10, NOW)) == 1


def test_completed_tasks_leave_the_queue(db_path):
    pid = insert_prospect(db_path, "q@example.com", "Q")
    queue = TaskQueue(db_path)
    task = queue.enqueue(_discover(pid, 50))
    queue.dequeue_top_n(1, NOW)

    queue.mark_status(task.id, TaskStatus.COMPLETED)

    assert len(queue) == 0
    assert get_tasks_by_status(db_path, "completed") == []
    assert get_tasks_by_status(db_path, "in_progress") == []


def test_failed_tasks_are_kept_for_audit(db_path):
    pid = insert_prospect(db_path, "f@example.com", "F")
    queue = TaskQueue(db_path)
    task = queue.enqueue(_discover(pid, 50))
    queue.dequeue_top_n(1, NOW)

    queue.mark_status(task.id, TaskStatus.FAILED, error="boom")

    assert len(queue) == 0
    rows = get_tasks_by_status(db_path, "failed")
    assert rows[0]["id"] == task.id
    assert rows[0]["error"] == "boom"


def test_defer_requeues_in_progress_task():
    queue = TaskQueue()
    task = queue.enqueue(_discover(1, 50))
    queue.dequeue_top_n(1, NOW)

    queue.defer(task.id, NOW + timedelta(hours=1))

    assert queue.dequeue_top_n(1, NOW) == []
    assert [t.id for t in queue.dequeue_top_n(1, NOW + timedelta(hours=1))] == [task.id]


def test_defer_pending_task_moves_due_time():
    queue = TaskQueue()
    task = queue.enqueue(_discover(1, 50))

    queue.defer(task.id, NOW + timedelta(days=2))

    assert queue.dequeue_top_n(1, NOW + timedelta(days=1)) == []
    assert len(queue.dequeue_top_n(1, NOW + timedelta(days=2))) == 1


def test_pending_for_filters_by_prospect_and_type():
    queue = TaskQueue()
    queue.enqueue(_discover(1, 50))
    follow_up = queue.enqueue(Task(
        type=TaskType.FOLLOW_UP, prospect_id=1, scheduled_for=NOW,
        context=FollowUpContext(touch_number=2),
    ))
    queue.enqueue(_discover(2, 50))

    assert len(queue.pending_for(1)) == 2
    assert queue.pending_for(1, TaskType.FOLLOW_UP) == [follow_up]
    assert queue.has_open_tasks(2)
    assert not queue.has_open_tasks(3)


def test_load_restores_open_tasks_after_restart(db_path):
    pid = insert_prospect(db_path, "r@example.com", "R")
    first = TaskQueue(db_path)
    pending = first.enqueue(_discover(pid, 30))
    running = first.enqueue(_discover(pid, 80))
    first.dequeue_top_n(1, NOW)

    second = TaskQueue(db_path)
    restored = second.load()

    assert restored == 2
    taken = second.dequeue_top_n(10, NOW)
    assert [t.id for t in taken] == [running.id, pending.id]


def test_store_errors_leave_memory_state_intact(db_path):
    queue = TaskQueue(db_path)

    with patch(
        "outreach_engine.outreach.task_queue.save_task",
        side_effect=sqlite3.OperationalError("database is locked"),
    ):
        task = queue.enqueue(_discover(1, 50))
        taken = queue.dequeue_top_n(5, NOW)

    assert [t.id for t in taken] == [task.id]
    assert get_tasks_by_status(db_path, "pending") == []

    queue.mark_status(task.id, TaskStatus.COMPLETED)
    assert len(queue) == 0
