"""SQLite database operations."""

import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from outreach_engine.core.models import Classification, Decision, RoutingDecision, Task, utcnow

DEFAULT_DB_PATH = Path("data/outreach.db")


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Format a timestamp the way sqlite's CURRENT_TIMESTAMP does."""
    if value is None:
        return None
    return value.isoformat(sep=" ", timespec="seconds")


def get_connection(db_path: Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Get a database connection with row factory."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize database with schema."""
    conn = get_connection(db_path)

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS prospects (
            id INTEGER PRIMARY KEY,
            email TEXT UNIQUE NOT NULL,
            first_name TEXT NOT NULL,
            last_name TEXT,
            company TEXT,
            title TEXT,
            linkedin_url TEXT,

            -- Firmographics / signals
            employee_count INTEGER,
            funding_amount REAL,
            intent_score INTEGER DEFAULT 0,

            -- Lifecycle state
            status TEXT DEFAULT 'new',
            relationship_stage TEXT DEFAULT 'cold',
            qualification_score INTEGER,
            contact_count INTEGER DEFAULT 0,

            -- Gmail threading
            thread_id TEXT,
            last_message_id TEXT,

            -- Timing
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            last_contacted_at TIMESTAMP,
            last_activity_at TIMESTAMP,
            last_evaluated_at TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS sent_messages (
            id INTEGER PRIMARY KEY,
            prospect_id INTEGER REFERENCES prospects(id),
            touch_number INTEGER NOT NULL,
            channel TEXT NOT NULL DEFAULT 'email',
            subject TEXT,
            body TEXT,
            external_message_id TEXT,
            sent_at TIMESTAMP NOT NULL
        );

        CREATE TABLE IF NOT EXISTS replies (
            id INTEGER PRIMARY KEY,
            prospect_id INTEGER REFERENCES prospects(id),
            external_id TEXT UNIQUE,
            subject TEXT,
            body TEXT NOT NULL,
            received_at TIMESTAMP NOT NULL,
            status TEXT DEFAULT 'new',
            processed_at TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL,
            prospect_id INTEGER REFERENCES prospects(id),
            priority INTEGER NOT NULL,
            scheduled_for TIMESTAMP NOT NULL,
            context TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            error TEXT,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS decisions (
            id INTEGER PRIMARY KEY,
            decision_type TEXT NOT NULL,
            prospect_id INTEGER,
            task_id TEXT,
            context TEXT,
            action TEXT NOT NULL,
            reasoning TEXT,
            confidence REAL,
            alternatives TEXT,
            metadata TEXT,
            is_fallback INTEGER DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS classifications (
            id INTEGER PRIMARY KEY,
            reply_id INTEGER REFERENCES replies(id),
            prospect_id INTEGER REFERENCES prospects(id),
            category TEXT NOT NULL,
            confidence REAL,
            sentiment_score REAL,
            sentiment_label TEXT,
            requires_human_review INTEGER,
            source TEXT,
            payload TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS routing_decisions (
            id INTEGER PRIMARY KEY,
            prospect_id INTEGER REFERENCES prospects(id),
            reply_id INTEGER,
            category TEXT NOT NULL,
            routed_to TEXT NOT NULL,
            reasoning TEXT,
            confidence REAL,
            action_taken TEXT,
            response_generated TEXT,
            response_sent INTEGER DEFAULT 0,
            requires_human_review INTEGER DEFAULT 0,
            meeting_scheduled INTEGER DEFAULT 0,
            objection_handled INTEGER DEFAULT 0,
            escalated_to_human INTEGER DEFAULT 0,
            processed_at TIMESTAMP NOT NULL
        );

        CREATE TABLE IF NOT EXISTS handoffs (
            id INTEGER PRIMARY KEY,
            prospect_id INTEGER REFERENCES prospects(id),
            reason TEXT NOT NULL,
            summary TEXT,
            reply_excerpt TEXT,
            priority INTEGER DEFAULT 50,
            status TEXT DEFAULT 'open',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS approval_queue (
            id INTEGER PRIMARY KEY,
            prospect_id INTEGER REFERENCES prospects(id),
            approval_type TEXT NOT NULL,
            channel TEXT DEFAULT 'email',
            subject TEXT,
            draft TEXT NOT NULL,
            reasoning TEXT,
            confidence REAL,
            status TEXT DEFAULT 'pending',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS context_memory (
            id INTEGER PRIMARY KEY,
            prospect_id INTEGER REFERENCES prospects(id),
            kind TEXT NOT NULL,
            content TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_prospects_status ON prospects(status);
        CREATE INDEX IF NOT EXISTS idx_prospects_intent ON prospects(intent_score);
        CREATE INDEX IF NOT EXISTS idx_sent_messages_sent_at ON sent_messages(sent_at);
        CREATE INDEX IF NOT EXISTS idx_replies_status ON replies(status);
        CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
    """)

    conn.commit()
    conn.close()


# --- Prospects -----------------------------------------------------------


def insert_prospect(
    db_path: Path,
    email: str,
    first_name: str,
    last_name: Optional[str] = None,
    company: Optional[str] = None,
    title: Optional[str] = None,
    linkedin_url: Optional[str] = None,
    employee_count: Optional[int] = None,
    funding_amount: Optional[float] = None,
    intent_score: int = 0,
    last_activity_at: Optional[datetime] = None,
) -> Optional[int]:
    """Insert a prospect. Returns prospect_id or None if duplicate."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            """
            INSERT INTO prospects (email, first_name, last_name, company, title, linkedin_url,
                                   employee_count, funding_amount, intent_score, last_activity_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (email, first_name, last_name, company, title, linkedin_url,
             employee_count, funding_amount, intent_score, _ts(last_activity_at))
        )
        conn.commit()
        return cursor.lastrowid
    except sqlite3.IntegrityError:
        return None
    finally:
        conn.close()


def get_prospect(db_path: Path, prospect_id: int) -> Optional[sqlite3.Row]:
    """Get a prospect by ID."""
    conn = get_connection(db_path)
    cursor = conn.execute("SELECT * FROM prospects WHERE id = ?", (prospect_id,))
    row = cursor.fetchone()
    conn.close()
    return row


def get_prospect_by_email(db_path: Path, email: str) -> Optional[sqlite3.Row]:
    """Get a prospect by email."""
    conn = get_connection(db_path)
    cursor = conn.execute("SELECT * FROM prospects WHERE email = ?", (email,))
    row = cursor.fetchone()
    conn.close()
    return row


def find_engagement_candidates(
    db_path: Path,
    min_intent_score: int,
    recontact_before: datetime,
    limit: int = 50,
) -> list[sqlite3.Row]:
    """New prospects with enough intent that were not touched or evaluated recently."""
    cutoff = _ts(recontact_before)
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        SELECT * FROM prospects
        WHERE status = 'new'
        AND intent_score >= ?
        AND (last_contacted_at IS NULL OR last_contacted_at < ?)
        AND (last_evaluated_at IS NULL OR last_evaluated_at < ?)
        ORDER BY intent_score DESC, id ASC
        LIMIT ?
        """,
        (min_intent_score, cutoff, cutoff, limit)
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


def update_prospect_status(db_path: Path, prospect_id: int, status: str) -> None:
    """Update a prospect's status."""
    conn = get_connection(db_path)
    conn.execute("UPDATE prospects SET status = ? WHERE id = ?", (status, prospect_id))
    conn.commit()
    conn.close()


def mark_prospect_evaluated(
    db_path: Path,
    prospect_id: int,
    evaluated_at: Optional[datetime] = None,
) -> None:
    """Return a prospect to the discovery pool, remembering when it was last evaluated."""
    conn = get_connection(db_path)
    conn.execute(
        "UPDATE prospects SET status = 'new', last_evaluated_at = ? WHERE id = ?",
        (_ts(evaluated_at or utcnow()), prospect_id)
    )
    conn.commit()
    conn.close()


def update_prospect_contact(
    db_path: Path,
    prospect_id: int,
    touch_number: int,
    channel: str,
    subject: Optional[str],
    body: str,
    thread_id: Optional[str] = None,
    message_id: Optional[str] = None,
    sent_at: Optional[datetime] = None,
) -> None:
    """Record an outbound touch: bump the contact counters and log the message."""
    sent_at = sent_at or utcnow()
    conn = get_connection(db_path)

    conn.execute(
        """
        UPDATE prospects
        SET status = 'active', contact_count = contact_count + 1, last_contacted_at = ?,
            thread_id = COALESCE(?, thread_id), last_message_id = COALESCE(?, last_message_id)
        WHERE id = ?
        """,
        (_ts(sent_at), thread_id, message_id, prospect_id)
    )
    conn.execute(
        """
        INSERT INTO sent_messages (prospect_id, touch_number, channel, subject, body,
                                   external_message_id, sent_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (prospect_id, touch_number, channel, subject, body, message_id, _ts(sent_at))
    )

    conn.commit()
    conn.close()


def record_response_sent(
    db_path: Path,
    prospect_id: int,
    channel: str,
    subject: Optional[str],
    body: str,
    message_id: Optional[str] = None,
    sent_at: Optional[datetime] = None,
) -> None:
    """Log a reply sent in an ongoing conversation. Counts toward the daily limit only."""
    conn = get_connection(db_path)
    conn.execute(
        """
        INSERT INTO sent_messages (prospect_id, touch_number, channel, subject, body,
                                   external_message_id, sent_at)
        VALUES (?, 0, ?, ?, ?, ?, ?)
        """,
        (prospect_id, channel, subject, body, message_id, _ts(sent_at or utcnow()))
    )
    conn.commit()
    conn.close()


def update_qualification_score(db_path: Path, prospect_id: int, score: int) -> None:
    conn = get_connection(db_path)
    conn.execute(
        "UPDATE prospects SET qualification_score = ? WHERE id = ?", (score, prospect_id)
    )
    conn.commit()
    conn.close()


def update_relationship_stage(db_path: Path, prospect_id: int, stage: str) -> None:
    conn = get_connection(db_path)
    conn.execute(
        "UPDATE prospects SET relationship_stage = ? WHERE id = ?", (stage, prospect_id)
    )
    conn.commit()
    conn.close()


def count_sent_today(db_path: Path, now: Optional[datetime] = None) -> int:
    """Count messages sent today."""
    today = (now or utcnow()).date().isoformat()
    conn = get_connection(db_path)
    cursor = conn.execute(
        "SELECT COUNT(*) FROM sent_messages WHERE date(sent_at) = ?",
        (today,)
    )
    count = cursor.fetchone()[0]
    conn.close()
    return count


def get_sent_messages(db_path: Path, prospect_id: int) -> list[sqlite3.Row]:
    conn = get_connection(db_path)
    cursor = conn.execute(
        "SELECT * FROM sent_messages WHERE prospect_id = ? ORDER BY sent_at, id",
        (prospect_id,)
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


def get_active_threads(db_path: Path) -> list[sqlite3.Row]:
    """Prospects with an email thread that may receive replies."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        SELECT * FROM prospects
        WHERE thread_id IS NOT NULL
        AND status IN ('active', 'qualified', 'awaiting_approval')
        """
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


# --- Replies -------------------------------------------------------------


def insert_reply(
    db_path: Path,
    prospect_id: int,
    body: str,
    subject: Optional[str] = None,
    external_id: Optional[str] = None,
    received_at: Optional[datetime] = None,
) -> Optional[int]:
    """Insert an inbound reply. Returns reply_id or None if already stored."""
    received_at = received_at or utcnow()
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            """
            INSERT INTO replies (prospect_id, external_id, subject, body, received_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (prospect_id, external_id, subject, body, _ts(received_at))
        )
        conn.execute(
            "UPDATE prospects SET last_activity_at = ? WHERE id = ?",
            (_ts(received_at), prospect_id)
        )
        conn.commit()
        return cursor.lastrowid
    except sqlite3.IntegrityError:
        return None
    finally:
        conn.close()


def get_reply(db_path: Path, reply_id: int) -> Optional[sqlite3.Row]:
    conn = get_connection(db_path)
    cursor = conn.execute("SELECT * FROM replies WHERE id = ?", (reply_id,))
    row = cursor.fetchone()
    conn.close()
    return row


def get_new_replies(db_path: Path) -> list[sqlite3.Row]:
    """Replies that have not been picked up for processing yet."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        "SELECT * FROM replies WHERE status = 'new' ORDER BY received_at, id"
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


def update_reply_status(
    db_path: Path,
    reply_id: int,
    status: str,
    processed_at: Optional[datetime] = None,
) -> None:
    conn = get_connection(db_path)
    conn.execute(
        "UPDATE replies SET status = ?, processed_at = ? WHERE id = ?",
        (status, _ts(processed_at) if status == "processed" else None, reply_id)
    )
    conn.commit()
    conn.close()


def has_reply_since(db_path: Path, prospect_id: int, since: Optional[datetime]) -> bool:
    """Whether the prospect replied after `since` (any time if `since` is None)."""
    conn = get_connection(db_path)
    if since is None:
        cursor = conn.execute(
            "SELECT 1 FROM replies WHERE prospect_id = ? LIMIT 1", (prospect_id,)
        )
    else:
        cursor = conn.execute(
            "SELECT 1 FROM replies WHERE prospect_id = ? AND received_at > ? LIMIT 1",
            (prospect_id, _ts(since))
        )
    exists = cursor.fetchone() is not None
    conn.close()
    return exists


def get_conversation_history(
    db_path: Path,
    prospect_id: int,
    exclude_reply_id: Optional[int] = None,
) -> list[str]:
    """Chronological transcript lines for a prospect, oldest first."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        SELECT 'us' AS speaker, body, sent_at AS at, id FROM sent_messages WHERE prospect_id = ?
        UNION ALL
        SELECT 'them' AS speaker, body, received_at AS at, id FROM replies
        WHERE prospect_id = ? AND id != ?
        ORDER BY at
        """,
        (prospect_id, prospect_id, exclude_reply_id or -1)
    )
    history = [f"{row['speaker']}: {row['body']}" for row in cursor.fetchall()]
    conn.close()
    return history


# --- Tasks ---------------------------------------------------------------


def save_task(db_path: Path, task: Task) -> None:
    """Insert or update a task row."""
    conn = get_connection(db_path)
    conn.execute(
        """
        INSERT INTO tasks (id, type, prospect_id, priority, scheduled_for, context,
                           status, error, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(id) DO UPDATE SET
            priority = excluded.priority,
            scheduled_for = excluded.scheduled_for,
            context = excluded.context,
            status = excluded.status,
            error = excluded.error,
            updated_at = CURRENT_TIMESTAMP
        """,
        (task.id, task.type.value, task.prospect_id, task.priority, _ts(task.scheduled_for),
         task.context.model_dump_json(), task.status.value, task.error, _ts(task.created_at))
    )
    conn.commit()
    conn.close()


def delete_task(db_path: Path, task_id: str) -> None:
    conn = get_connection(db_path)
    conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
    conn.commit()
    conn.close()


def load_open_tasks(db_path: Path) -> list[Task]:
    """Tasks that were pending or in progress when the process last stopped."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        "SELECT * FROM tasks WHERE status IN ('pending', 'in_progress') ORDER BY created_at"
    )
    rows = cursor.fetchall()
    conn.close()

    return [
        Task.model_validate({
            "id": row["id"],
            "type": row["type"],
            "prospect_id": row["prospect_id"],
            "priority": row["priority"],
            "scheduled_for": row["scheduled_for"],
            "context": json.loads(row["context"]),
            "status": row["status"],
            "error": row["error"],
            "created_at": row["created_at"],
        })
        for row in rows
    ]


def get_tasks_by_status(db_path: Path, status: str) -> list[sqlite3.Row]:
    conn = get_connection(db_path)
    cursor = conn.execute("SELECT * FROM tasks WHERE status = ?", (status,))
    rows = cursor.fetchall()
    conn.close()
    return rows


# --- Audit trail ---------------------------------------------------------


def log_decision(
    db_path: Path,
    decision_type: str,
    context: dict,
    decision: Decision,
    prospect_id: Optional[int] = None,
    task_id: Optional[str] = None,
) -> int:
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        INSERT INTO decisions (decision_type, prospect_id, task_id, context, action, reasoning,
                               confidence, alternatives, metadata, is_fallback)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (decision_type, prospect_id, task_id, json.dumps(context, default=str),
         decision.action, decision.reasoning, decision.confidence,
         json.dumps([a.model_dump() for a in decision.alternatives]),
         json.dumps(decision.metadata, default=str),
         1 if decision.metadata.get("fallback") else 0)
    )
    conn.commit()
    decision_id = cursor.lastrowid
    conn.close()
    return decision_id


def insert_classification(
    db_path: Path,
    prospect_id: int,
    classification: Classification,
    reply_id: Optional[int] = None,
) -> int:
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        INSERT INTO classifications (reply_id, prospect_id, category, confidence, sentiment_score,
                                     sentiment_label, requires_human_review, source, payload)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (reply_id, prospect_id, classification.category.value, classification.confidence,
         classification.sentiment.score, classification.sentiment.label,
         1 if classification.requires_human_review else 0, classification.source,
         classification.model_dump_json())
    )
    conn.commit()
    classification_id = cursor.lastrowid
    conn.close()
    return classification_id


def insert_routing_decision(db_path: Path, decision: RoutingDecision) -> int:
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        INSERT INTO routing_decisions (prospect_id, reply_id, category, routed_to, reasoning,
                                       confidence, action_taken, response_generated, response_sent,
                                       requires_human_review, meeting_scheduled, objection_handled,
                                       escalated_to_human, processed_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (decision.prospect_id, decision.reply_id, decision.category.value,
         decision.routed_to.value, decision.reasoning, decision.confidence,
         decision.action_taken, decision.response_generated, int(decision.response_sent),
         int(decision.requires_human_review), int(decision.meeting_scheduled),
         int(decision.objection_handled), int(decision.escalated_to_human),
         _ts(decision.processed_at))
    )
    conn.commit()
    routing_id = cursor.lastrowid
    conn.close()
    return routing_id


def get_routing_decisions(db_path: Path, prospect_id: int) -> list[sqlite3.Row]:
    conn = get_connection(db_path)
    cursor = conn.execute(
        "SELECT * FROM routing_decisions WHERE prospect_id = ? ORDER BY id", (prospect_id,)
    )
    rows = cursor.fetchall()
    conn.close()
    return rows


def insert_handoff(
    db_path: Path,
    prospect_id: int,
    reason: str,
    summary: str,
    reply_excerpt: Optional[str] = None,
    priority: int = 50,
) -> int:
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        INSERT INTO handoffs (prospect_id, reason, summary, reply_excerpt, priority)
        VALUES (?, ?, ?, ?, ?)
        """,
        (prospect_id, reason, summary, reply_excerpt, priority)
    )
    conn.commit()
    handoff_id = cursor.lastrowid
    conn.close()
    return handoff_id


def get_handoffs(db_path: Path, prospect_id: Optional[int] = None) -> list[sqlite3.Row]:
    conn = get_connection(db_path)
    if prospect_id is None:
        cursor = conn.execute("SELECT * FROM handoffs ORDER BY priority DESC, id")
    else:
        cursor = conn.execute(
            "SELECT * FROM handoffs WHERE prospect_id = ? ORDER BY id", (prospect_id,)
        )
    rows = cursor.fetchall()
    conn.close()
    return rows


def enqueue_approval(
    db_path: Path,
    prospect_id: int,
    draft: str,
    reasoning: str,
    confidence: float,
    approval_type: str = "email_response",
    subject: Optional[str] = None,
    channel: str = "email",
) -> int:
    """Queue a drafted message for human sign-off."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        INSERT INTO approval_queue (prospect_id, approval_type, channel, subject, draft,
                                    reasoning, confidence)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (prospect_id, approval_type, channel, subject, draft, reasoning, confidence)
    )
    conn.commit()
    approval_id = cursor.lastrowid
    conn.close()
    return approval_id


def get_pending_approvals(db_path: Path, prospect_id: Optional[int] = None) -> list[sqlite3.Row]:
    conn = get_connection(db_path)
    if prospect_id is None:
        cursor = conn.execute("SELECT * FROM approval_queue WHERE status = 'pending' ORDER BY id")
    else:
        cursor = conn.execute(
            "SELECT * FROM approval_queue WHERE status = 'pending' AND prospect_id = ? ORDER BY id",
            (prospect_id,)
        )
    rows = cursor.fetchall()
    conn.close()
    return rows


def save_context_memory(db_path: Path, prospect_id: int, kind: str, content: str) -> None:
    conn = get_connection(db_path)
    conn.execute(
        "INSERT INTO context_memory (prospect_id, kind, content) VALUES (?, ?, ?)",
        (prospect_id, kind, content)
    )
    conn.commit()
    conn.close()


def get_context_memory(db_path: Path, prospect_id: int, kind: str) -> Optional[str]:
    """Most recent memory entry of a kind for a prospect."""
    conn = get_connection(db_path)
    cursor = conn.execute(
        """
        SELECT content FROM context_memory
        WHERE prospect_id = ? AND kind = ?
        ORDER BY id DESC LIMIT 1
        """,
        (prospect_id, kind)
    )
    row = cursor.fetchone()
    conn.close()
    return row["content"] if row else None


# --- Stats ---------------------------------------------------------------


def get_pipeline_stats(db_path: Path, now: Optional[datetime] = None) -> dict:
    """Get pipeline statistics."""
    conn = get_connection(db_path)

    stats = {}

    cursor = conn.execute(
        "SELECT status, COUNT(*) as count FROM prospects GROUP BY status"
    )
    for row in cursor.fetchall():
        stats[row["status"]] = row["count"]

    cursor = conn.execute("SELECT COUNT(*) FROM tasks WHERE status = 'pending'")
    stats["pending_tasks"] = cursor.fetchone()[0]

    cursor = conn.execute("SELECT COUNT(*) FROM tasks WHERE status = 'failed'")
    stats["failed_tasks"] = cursor.fetchone()[0]

    cursor = conn.execute("SELECT COUNT(*) FROM approval_queue WHERE status = 'pending'")
    stats["pending_approvals"] = cursor.fetchone()[0]

    cursor = conn.execute("SELECT COUNT(*) FROM handoffs WHERE status = 'open'")
    stats["open_handoffs"] = cursor.fetchone()[0]

    conn.close()

    stats["sent_today"] = count_sent_today(db_path, now)
    return stats


def get_routing_stats(db_path: Path, days: int = 30, now: Optional[datetime] = None) -> dict:
    """Aggregate routing outcomes over the last `days` days."""
    since = _ts((now or utcnow()) - timedelta(days=days))
    conn = get_connection(db_path)
    cursor = conn.execute(
        "SELECT * FROM routing_decisions WHERE processed_at >= ?", (since,)
    )
    rows = cursor.fetchall()
    conn.close()

    total = len(rows)
    by_category: dict[str, int] = {}
    by_route: dict[str, int] = {}
    for row in rows:
        by_category[row["category"]] = by_category.get(row["category"], 0) + 1
        by_route[row["routed_to"]] = by_route.get(row["routed_to"], 0) + 1

    if not total:
        return {
            "total": 0,
            "by_category": {},
            "by_route": {},
            "avg_confidence": 0.0,
            "auto_handled_pct": 0.0,
            "escalated_pct": 0.0,
            "response_rate_pct": 0.0,
        }

    escalated = sum(1 for row in rows if row["escalated_to_human"])
    sent = sum(1 for row in rows if row["response_sent"])
    return {
        "total": total,
        "by_category": by_category,
        "by_route": by_route,
        "avg_confidence": round(sum(row["confidence"] or 0 for row in rows) / total, 3),
        "auto_handled_pct": round(100 * (total - escalated) / total, 1),
        "escalated_pct": round(100 * escalated / total, 1),
        "response_rate_pct": round(100 * sent / total, 1),
    }
