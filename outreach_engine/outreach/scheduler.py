"""The outreach agent loop: discovery, task processing and reply polling."""

import asyncio
import random
import sqlite3
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Callable, Optional

import structlog

from outreach_engine.clients.ai import AIBackend
from outreach_engine.clients.messaging import MessagingGateway, SendError
from outreach_engine.core.config import DEFAULT_CONFIG_PATH, Settings
from outreach_engine.core.db import (
    DEFAULT_DB_PATH,
    count_sent_today,
    enqueue_approval,
    find_engagement_candidates,
    get_active_threads,
    get_conversation_history,
    get_new_replies,
    get_prospect,
    get_reply,
    get_sent_messages,
    has_reply_since,
    insert_classification,
    insert_handoff,
    mark_prospect_evaluated,
    record_response_sent,
    save_context_memory,
    update_prospect_contact,
    update_prospect_status,
    update_qualification_score,
    update_reply_status,
)
from outreach_engine.core.models import (
    DiscoverContext,
    EngageContext,
    FollowUpContext,
    HandoffContext,
    InboundReply,
    Prospect,
    ProspectStatus,
    QualifyContext,
    ReplyCategory,
    ResearchContext,
    RespondContext,
    RouteTarget,
    ScheduleContext,
    Task,
    TaskStatus,
    TaskType,
    clamp_priority,
    utcnow,
)
from outreach_engine.decisions.engine import DecisionEngine
from outreach_engine.outreach.composer import MessageComposer, prospect_summary
from outreach_engine.outreach.qualification import HANDOFF, QUALIFIED, qualification_outcome, score_prospect
from outreach_engine.outreach.task_queue import TaskQueue
from outreach_engine.replies.classifier import ReplyClassifier
from outreach_engine.replies.router import EXCERPT_LENGTH, ResponseRouter
from outreach_engine.services.slack_notifier import SlackNotifier

log = structlog.get_logger()

DONE = "completed"
FAILED = "failed"
LIMIT_REACHED = "limit_reached"

QUALIFY_PRIORITY = 70
QUALIFYING_CATEGORIES = frozenset({ReplyCategory.POSITIVE_INTEREST, ReplyCategory.QUESTION})

RESEARCH_SYSTEM_PROMPT = """You prepare short research briefs for sales outreach.
Given what we know about a prospect, write 3-5 bullet points: what the company likely cares about,
what this person's role owns, and one concrete angle for a first message. Plain text, no preamble."""


def default_meeting_slots(now: datetime, count: int = 3) -> list[str]:
    """Next business-day slots, alternating morning and afternoon."""
    slots = []
    day = now
    while len(slots) < count:
        day = day + timedelta(days=1)
        if day.weekday() >= 5:
            continue
        hour = 10 if len(slots) % 2 == 0 else 14
        slots.append(f"{day.strftime('%A %b')} {day.day}, {hour}:00 UTC")
    return slots


def next_day_start(now: datetime) -> datetime:
    """Midnight at the start of the following day, when the daily send count resets."""
    return datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=now.tzinfo)


def prospect_context(prospect: Prospect) -> dict:
    return {
        "name": prospect.full_name,
        "company": prospect.company,
        "title": prospect.title,
        "intent_score": prospect.intent_score,
        "employee_count": prospect.employee_count,
        "funding_amount": prospect.funding_amount,
        "status": prospect.status,
        "relationship_stage": prospect.relationship_stage,
        "contact_count": prospect.contact_count,
        "last_contacted_at": prospect.last_contacted_at,
        "has_linkedin": bool(prospect.linkedin_url),
    }


class OutreachAgent:
    """Runs outreach cycles until stopped."""

    def __init__(
        self,
        settings: Settings,
        db_path: Path = DEFAULT_DB_PATH,
        config_path: Path = DEFAULT_CONFIG_PATH,
        backend: Optional[AIBackend] = None,
        gateway: Optional[MessagingGateway] = None,
        notifier: Optional[SlackNotifier] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable = asyncio.sleep,
    ):
        self.settings = settings
        self.db_path = db_path
        self.backend = backend
        self.clock = clock
        self._sleep = sleep

        self.queue = TaskQueue(db_path)
        self.decisions = DecisionEngine(backend, db_path)
        self.classifier = ReplyClassifier(backend, settings.classifier)
        self.composer = MessageComposer(backend, config_path, settings.gmail.from_name)
        self.gateway = gateway or MessagingGateway(settings, db_path)
        self.notifier = notifier
        self.router = ResponseRouter(settings, self.composer, self.gateway, db_path, notifier, clock)

        self._handlers = {
            TaskType.DISCOVER: self._handle_discover,
            TaskType.RESEARCH: self._handle_research,
            TaskType.ENGAGE: self._handle_engage,
            TaskType.FOLLOW_UP: self._handle_follow_up,
            TaskType.RESPOND: self._handle_respond,
            TaskType.SCHEDULE: self._handle_schedule,
            TaskType.QUALIFY: self._handle_qualify,
            TaskType.HANDOFF: self._handle_handoff,
        }

        self._running = False
        self._wake: Optional[asyncio.Event] = None
        self._loaded = False
        self._cycles = 0

    # --- loop --------------------------------------------------------------

    async def run(self) -> None:
        """Run cycles until `stop()` is called. A failing cycle is logged and the loop carries on."""
        self._running = True
        self._wake = asyncio.Event()
        log.info("agent_started", interval=self.settings.agent.cycle_interval_seconds)

        while self._running:
            try:
                await self.run_cycle()
            except Exception as e:
                log.error("agent_cycle_failed", cycle=self._cycles, error=str(e))

            if not self._running:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.settings.agent.cycle_interval_seconds)
            except asyncio.TimeoutError:
                pass

        log.info("agent_stopped", cycles=self._cycles)

    def stop(self) -> None:
        """Ask the loop to exit after the current step. In-flight calls finish normally."""
        self._running = False
        if self._wake is not None:
            self._wake.set()

    async def run_cycle(self) -> dict:
        """One pass: discover, work the top tasks, pick up replies.

        Returns summary dict.
        """
        if not self._loaded:
            self.queue.load()
            self._loaded = True

        self._cycles += 1
        now = self.clock()

        results = {
            "cycle": self._cycles,
            "discovered": self.discover(now),
            DONE: 0,
            FAILED: 0,
            LIMIT_REACHED: 0,
        }

        for task in self.queue.dequeue_top_n(self.settings.agent.tasks_per_cycle, now):
            outcome = await self.process_task(task)
            results[outcome] += 1

        results["replies_queued"] = await self.poll_replies()
        results["queue_size"] = len(self.queue)
        results["sent_today"] = count_sent_today(self.db_path, self.clock())
        results["daily_limit_reached"] = results["sent_today"] >= self.settings.sending.daily_limit

        log.info("agent_health", **results)
        return results

    def discover(self, now: datetime) -> int:
        """Queue a discover task for each fresh, high-intent prospect."""
        cutoff = now - timedelta(days=self.settings.agent.recontact_after_days)
        candidates = find_engagement_candidates(
            self.db_path,
            self.settings.agent.min_intent_score,
            cutoff,
            self.settings.agent.discovery_batch_size,
        )

        queued = 0
        for row in candidates:
            if self.queue.has_open_tasks(row["id"]):
                continue
            self.queue.enqueue(Task(
                type=TaskType.DISCOVER,
                prospect_id=row["id"],
                priority=clamp_priority(row["intent_score"]),
                scheduled_for=now,
                context=DiscoverContext(intent_score=row["intent_score"]),
            ))
            update_prospect_status(self.db_path, row["id"], ProspectStatus.QUEUED.value)
            queued += 1

        if queued:
            log.info("prospects_discovered", count=queued)
        return queued

    async def poll_replies(self) -> int:
        """Queue a respond task for every reply not yet picked up."""
        if self.settings.inbox.sync_gmail_threads:
            for row in get_active_threads(self.db_path):
                try:
                    await self.gateway.sync_thread_replies(Prospect.from_row(row))
                except SendError as e:
                    log.error("reply_sync_failed", prospect_id=row["id"], error=str(e))

        queued = 0
        for row in get_new_replies(self.db_path):
            self.queue.enqueue(Task(
                type=TaskType.RESPOND,
                prospect_id=row["prospect_id"],
                priority=self.settings.cadence.respond_priority,
                scheduled_for=self.clock(),
                context=RespondContext(reply_id=row["id"]),
            ))
            update_reply_status(self.db_path, row["id"], "queued")
            queued += 1
        return queued

    async def process_task(self, task: Task) -> str:
        """Run one task's handler and settle its status. Never raises."""
        log.info("task_started", task_id=task.id, type=task.type.value, prospect_id=task.prospect_id)
        try:
            outcome = await self._handlers[task.type](task)
        except Exception as e:
            log.error("task_failed", task_id=task.id, type=task.type.value,
                      prospect_id=task.prospect_id, error=str(e))
            self.queue.mark_status(task.id, TaskStatus.FAILED, error=str(e))
            return FAILED

        if outcome == LIMIT_REACHED:
            log.info("daily_limit_reached", task_id=task.id, limit=self.settings.sending.daily_limit)
            # Not due again until the daily count resets
            self.queue.defer(task.id, next_day_start(self.clock()))
            return LIMIT_REACHED

        self.queue.mark_status(task.id, TaskStatus.COMPLETED)
        return DONE

    # --- helpers -----------------------------------------------------------

    def _prospect(self, prospect_id: int) -> Prospect:
        row = get_prospect(self.db_path, prospect_id)
        if row is None:
            raise LookupError(f"prospect {prospect_id} not found")
        return Prospect.from_row(row)

    def _limit_reached(self) -> bool:
        return count_sent_today(self.db_path, self.clock()) >= self.settings.sending.daily_limit

    def _original_subject(self, prospect_id: int) -> Optional[str]:
        for row in get_sent_messages(self.db_path, prospect_id):
            if row["subject"]:
                return row["subject"]
        return None

    async def _pause_between_sends(self) -> None:
        delay = random.randint(
            self.settings.sending.min_delay_seconds,
            self.settings.sending.max_delay_seconds
        )
        await self._sleep(delay)

    async def _send_touch(self, prospect: Prospect, touch_number: int, channel: str,
                          subject: str, body: str) -> None:
        ack = await self.gateway.send(channel, prospect, subject, body)
        update_prospect_contact(
            self.db_path, prospect.id,
            touch_number=touch_number,
            channel=channel,
            subject=subject,
            body=body,
            thread_id=ack.get("thread_id"),
            message_id=ack.get("message_id"),
            sent_at=self.clock(),
        )
        log.info("touch_sent", prospect_id=prospect.id, touch=touch_number, channel=channel)
        await self._pause_between_sends()

    def schedule_follow_up(
        self,
        prospect_id: int,
        touch_number: int,
        channel: str,
        priority: int,
        due_at: datetime,
        acknowledged_at: Optional[datetime] = None,
    ) -> Optional[Task]:
        """Queue the next touch. Returns the already-pending follow-up if there is one."""
        if touch_number > self.settings.cadence.max_touches:
            return None
        existing = self.queue.pending_for(prospect_id, TaskType.FOLLOW_UP)
        if existing:
            log.info("follow_up_already_scheduled", prospect_id=prospect_id, task_id=existing[0].id)
            return existing[0]

        return self.queue.enqueue(Task(
            type=TaskType.FOLLOW_UP,
            prospect_id=prospect_id,
            priority=clamp_priority(priority),
            scheduled_for=due_at,
            context=FollowUpContext(
                touch_number=touch_number,
                channel=channel,
                replies_acknowledged_at=acknowledged_at,
            ),
        ))

    def postpone_follow_up(self, prospect: Prospect, until: datetime, acknowledged_at: datetime) -> Optional[Task]:
        """Push the pending follow-up out (e.g. while the prospect is away)."""
        existing = self.queue.pending_for(prospect.id, TaskType.FOLLOW_UP)
        if existing:
            task = existing[0]
            task.context = task.context.model_copy(update={"replies_acknowledged_at": acknowledged_at})
            self.queue.defer(task.id, until)
            return task

        next_touch = prospect.contact_count + 1
        if prospect.contact_count == 0 or prospect.is_halted:
            return None
        return self.schedule_follow_up(
            prospect.id, next_touch, self.settings.channels.default_channel,
            priority=50, due_at=until, acknowledged_at=acknowledged_at,
        )

    # --- handlers ----------------------------------------------------------

    async def _handle_discover(self, task: Task) -> str:
        prospect = self._prospect(task.prospect_id)
        decision = await self.decisions.decide(
            "should_engage", prospect_context(prospect), prospect.id, task.id
        )

        if decision.action == "engage":
            update_prospect_status(self.db_path, prospect.id, ProspectStatus.RESEARCHING.value)
            self.queue.enqueue(Task(
                type=TaskType.RESEARCH,
                prospect_id=prospect.id,
                priority=task.priority,
                scheduled_for=self.clock(),
                context=ResearchContext(engage_reasoning=decision.reasoning),
            ))
        else:
            log.info("prospect_not_engaged", prospect_id=prospect.id, action=decision.action)
            mark_prospect_evaluated(self.db_path, prospect.id, self.clock())
        return DONE

    async def _handle_research(self, task: Task) -> str:
        prospect = self._prospect(task.prospect_id)

        research = None
        if self.backend is not None:
            # Transport errors propagate: a failed research task is left for manual reprocessing
            response = await self.backend.invoke(
                f"{prospect_summary(prospect)}\nIntent score: {prospect.intent_score}\n"
                f"Why we are reaching out: {task.context.engage_reasoning or 'high intent'}",
                RESEARCH_SYSTEM_PROMPT,
                {"task": "research", "temperature": 0.3, "max_tokens": 600},
            )
            research = response.text
            save_context_memory(self.db_path, prospect.id, "research", research)

        update_prospect_status(self.db_path, prospect.id, ProspectStatus.ENGAGING.value)
        self.queue.enqueue(Task(
            type=TaskType.ENGAGE,
            prospect_id=prospect.id,
            priority=task.priority,
            scheduled_for=self.clock(),
            context=EngageContext(research_summary=research),
        ))
        return DONE

    async def _select_channel(self, prospect: Prospect, task: Task) -> str:
        default = self.settings.channels.default_channel
        decision = await self.decisions.decide(
            "channel_selection",
            {**prospect_context(prospect), "linkedin_enabled": self.settings.channels.linkedin_enabled},
            prospect.id, task.id,
        )
        if decision.action == "linkedin" and self.settings.channels.linkedin_enabled and prospect.linkedin_url:
            return "linkedin"
        if decision.action == "email":
            return "email"
        return default

    async def _handle_engage(self, task: Task) -> str:
        if self._limit_reached():
            return LIMIT_REACHED

        prospect = self._prospect(task.prospect_id)
        if prospect.is_halted or prospect.contact_count > 0:
            log.info("engage_skipped", prospect_id=prospect.id, status=prospect.status)
            return DONE

        channel = await self._select_channel(prospect, task)
        subject, body = await self.composer.compose_opener(prospect, task.context.research_summary)

        if not self.settings.approval.auto_approve_messages:
            enqueue_approval(
                self.db_path, prospect.id, body,
                reasoning="First touch awaiting approval",
                confidence=1.0,
                approval_type="first_touch",
                subject=subject,
                channel=channel,
            )
            update_prospect_status(self.db_path, prospect.id, ProspectStatus.AWAITING_APPROVAL.value)
            return DONE

        await self._send_touch(prospect, 1, channel, subject, body)
        self.schedule_follow_up(
            prospect.id,
            touch_number=2,
            channel=channel,
            priority=task.priority - self.settings.cadence.engage_priority_drop,
            due_at=self.clock() + timedelta(days=self.settings.cadence.gap_after(1)),
        )
        return DONE

    async def _handle_follow_up(self, task: Task) -> str:
        ctx: FollowUpContext = task.context
        prospect = self._prospect(task.prospect_id)

        if prospect.is_halted:
            log.info("follow_up_skipped", prospect_id=prospect.id, reason="halted", status=prospect.status)
            return DONE
        if prospect.contact_count >= ctx.touch_number:
            log.info("follow_up_skipped", prospect_id=prospect.id, reason="already_sent", touch=ctx.touch_number)
            return DONE

        since = max(
            (t for t in (prospect.last_contacted_at, ctx.replies_acknowledged_at) if t is not None),
            default=None,
        )
        if has_reply_since(self.db_path, prospect.id, since):
            log.info("follow_up_skipped", prospect_id=prospect.id, reason="replied", touch=ctx.touch_number)
            return DONE

        if self._limit_reached():
            return LIMIT_REACHED

        subject, body = self.composer.compose_follow_up(
            prospect, ctx.touch_number, self._original_subject(prospect.id)
        )
        await self._send_touch(prospect, ctx.touch_number, ctx.channel, subject, body)

        if ctx.touch_number >= self.settings.cadence.max_touches:
            update_prospect_status(self.db_path, prospect.id, ProspectStatus.UNRESPONSIVE.value)
            log.info("sequence_complete", prospect_id=prospect.id, touches=ctx.touch_number)
            return DONE

        self.schedule_follow_up(
            prospect.id,
            touch_number=ctx.touch_number + 1,
            channel=ctx.channel,
            priority=task.priority - self.settings.cadence.follow_up_priority_drop,
            due_at=self.clock() + timedelta(days=self.settings.cadence.gap_after(ctx.touch_number)),
            acknowledged_at=ctx.replies_acknowledged_at,
        )
        return DONE

    async def _handle_respond(self, task: Task) -> str:
        reply_id = task.context.reply_id
        try:
            return await self._respond(task, reply_id)
        except Exception:
            update_reply_status(self.db_path, reply_id, "failed")
            raise

    async def _respond(self, task: Task, reply_id: int) -> str:
        row = get_reply(self.db_path, reply_id)
        if row is None:
            raise LookupError(f"reply {reply_id} not found")

        prospect = self._prospect(row["prospect_id"])
        history = get_conversation_history(self.db_path, prospect.id, exclude_reply_id=reply_id)
        reply = InboundReply.from_row(row, history)

        classification = await self.classifier.classify(reply.body, reply.subject, history)
        try:
            insert_classification(self.db_path, prospect.id, classification, reply.id)
        except sqlite3.Error as e:
            log.error("classification_log_failed", reply_id=reply.id, error=str(e))

        routing = await self.router.route(prospect, reply, classification)
        update_reply_status(self.db_path, reply.id, "processed", self.clock())

        if routing.routed_to == RouteTarget.MEETING_SCHEDULER:
            self.queue.enqueue(Task(
                type=TaskType.SCHEDULE,
                prospect_id=prospect.id,
                priority=task.priority,
                scheduled_for=self.clock(),
                context=ScheduleContext(reply_id=reply.id, requested_time=classification.entities.timeline),
            ))
        elif classification.category in QUALIFYING_CATEGORIES and not routing.escalated_to_human:
            self._enqueue_qualify(prospect.id, trigger=classification.category.value)
        elif classification.category == ReplyCategory.OUT_OF_OFFICE:
            self.postpone_follow_up(
                prospect,
                until=self.clock() + timedelta(days=self.settings.cadence.out_of_office_delay_days),
                acknowledged_at=reply.received_at,
            )
        return DONE

    def _enqueue_qualify(self, prospect_id: int, trigger: str) -> None:
        if self.queue.pending_for(prospect_id, TaskType.QUALIFY):
            return
        self.queue.enqueue(Task(
            type=TaskType.QUALIFY,
            prospect_id=prospect_id,
            priority=QUALIFY_PRIORITY,
            scheduled_for=self.clock(),
            context=QualifyContext(trigger=trigger),
        ))

    async def _handle_schedule(self, task: Task) -> str:
        ctx: ScheduleContext = task.context
        prospect = self._prospect(task.prospect_id)
        auto_send = self.settings.approval.auto_approve_messages

        if auto_send and self._limit_reached():
            return LIMIT_REACHED

        decision = await self.decisions.decide(
            "timing",
            {**prospect_context(prospect), "purpose": "meeting_proposal", "requested_time": ctx.requested_time},
            prospect.id, task.id,
        )
        suggested = decision.metadata.get("suggested_times")
        if not isinstance(suggested, list) or not suggested:
            suggested = default_meeting_slots(self.clock())

        subject, body = self.composer.compose_meeting_proposal(
            prospect, [str(s) for s in suggested], self._original_subject(prospect.id)
        )

        if auto_send:
            ack = await self.gateway.send("email", prospect, subject, body)
            record_response_sent(
                self.db_path, prospect.id, ack.get("channel", "email"), subject, body,
                message_id=ack.get("message_id"), sent_at=self.clock(),
            )
            log.info("meeting_proposal_sent", prospect_id=prospect.id)
        else:
            enqueue_approval(
                self.db_path, prospect.id, body,
                reasoning=decision.reasoning or "Meeting proposal",
                confidence=decision.confidence,
                approval_type="meeting_invite",
                subject=subject,
            )
            log.info("meeting_proposal_queued", prospect_id=prospect.id)

        self._enqueue_qualify(prospect.id, trigger="meeting")
        return DONE

    async def _handle_qualify(self, task: Task) -> str:
        prospect = self._prospect(task.prospect_id)
        config = self.settings.qualification

        score = score_prospect(prospect, config, self.clock())
        update_qualification_score(self.db_path, prospect.id, score)
        outcome = qualification_outcome(score, config)
        log.info("prospect_qualified", prospect_id=prospect.id, score=score, outcome=outcome)

        if outcome == HANDOFF:
            self.queue.enqueue(Task(
                type=TaskType.HANDOFF,
                prospect_id=prospect.id,
                priority=config.handoff_priority,
                scheduled_for=self.clock(),
                context=HandoffContext(reason="qualified", score=score),
            ))
        elif outcome == QUALIFIED:
            update_prospect_status(self.db_path, prospect.id, ProspectStatus.QUALIFIED.value)
            decision = await self.decisions.decide(
                "next_action",
                {**prospect_context(prospect), "qualification_score": score,
                 "trigger": task.context.trigger,
                 "conversation": get_conversation_history(self.db_path, prospect.id)[-6:]},
                prospect.id, task.id,
            )
            if decision.action == "handoff":
                self.queue.enqueue(Task(
                    type=TaskType.HANDOFF,
                    prospect_id=prospect.id,
                    priority=config.handoff_priority,
                    scheduled_for=self.clock(),
                    context=HandoffContext(reason="next_action", score=score),
                ))
        else:
            update_prospect_status(self.db_path, prospect.id, ProspectStatus.NURTURE.value)
        return DONE

    async def _handle_handoff(self, task: Task) -> str:
        ctx: HandoffContext = task.context
        prospect = self._prospect(task.prospect_id)
        history = get_conversation_history(self.db_path, prospect.id)

        decision = await self.decisions.decide(
            "handoff",
            {**prospect_context(prospect), "reason": ctx.reason, "score": ctx.score,
             "conversation": history[-6:]},
            prospect.id, task.id,
        )
        if decision.metadata.get("fallback") or not decision.reasoning:
            summary = (
                f"{prospect.full_name} ({prospect.title or 'unknown title'} at "
                f"{prospect.company or 'unknown company'}) scored {ctx.score}. Reason: {ctx.reason}."
            )
        else:
            summary = decision.reasoning

        last_reply = next((line for line in reversed(history) if line.startswith("them: ")), None)
        excerpt = last_reply[len("them: "):][:EXCERPT_LENGTH] if last_reply else None

        insert_handoff(self.db_path, prospect.id, ctx.reason, summary, excerpt, task.priority)
        update_prospect_status(self.db_path, prospect.id, ProspectStatus.HANDED_OFF.value)
        log.info("prospect_handed_off", prospect_id=prospect.id, reason=ctx.reason, score=ctx.score)

        if self.notifier:
            await self.notifier.send_handoff(prospect, ctx.reason, summary, excerpt, task.priority)
        return DONE
