"""Response routing: turns a reply classification into a concrete action."""

import sqlite3
from pathlib import Path
from typing import Callable, Optional

import structlog

from outreach_engine.clients.messaging import MessagingGateway, SendError
from outreach_engine.core.config import Settings
from outreach_engine.core.db import (
    DEFAULT_DB_PATH,
    count_sent_today,
    enqueue_approval,
    get_sent_messages,
    insert_handoff,
    insert_routing_decision,
    record_response_sent,
    update_prospect_status,
    update_relationship_stage,
)
from outreach_engine.core.models import (
    Classification,
    InboundReply,
    Prospect,
    ProspectStatus,
    ReplyCategory,
    RouteTarget,
    RoutingDecision,
    utcnow,
)
from outreach_engine.outreach.composer import MessageComposer
from outreach_engine.services.slack_notifier import SlackNotifier

log = structlog.get_logger()

# Actions for which the router drafts a reply
RESPONSE_ACTIONS = frozenset({"send_info", "send_pricing", "handle_objection"})

HUMAN_CATEGORIES = frozenset({
    ReplyCategory.UNCLEAR,
    ReplyCategory.WRONG_PERSON,
    ReplyCategory.REFERRAL,
})

EXCERPT_LENGTH = 500

HANDOFF_PRIORITY = {"urgent": 90, "high": 75, "medium": 60, "low": 40}


def relationship_stage_for(category: ReplyCategory) -> Optional[str]:
    if category in (ReplyCategory.POSITIVE_INTEREST, ReplyCategory.MEETING_REQUEST):
        return "interested"
    if category in (ReplyCategory.NOT_INTERESTED, ReplyCategory.UNSUBSCRIBE):
        return "disqualified"
    if category == ReplyCategory.OUT_OF_OFFICE:
        # An auto-reply says nothing about the relationship
        return None
    return "engaged"


class ResponseRouter:
    """Executes or queues the action a classification calls for."""

    def __init__(
        self,
        settings: Settings,
        composer: MessageComposer,
        gateway: MessagingGateway,
        db_path: Path = DEFAULT_DB_PATH,
        notifier: Optional[SlackNotifier] = None,
        clock: Callable = utcnow,
    ):
        self.settings = settings
        self.composer = composer
        self.gateway = gateway
        self.db_path = db_path
        self.notifier = notifier
        self.clock = clock

    def choose_route(self, classification: Classification) -> tuple[RouteTarget, str]:
        """Returns (route, action_taken). Review-flagged replies always go to a human."""
        category = classification.category
        action = classification.suggested_action.action

        if classification.requires_human_review:
            return RouteTarget.HUMAN, "escalate_to_human"
        if category == ReplyCategory.UNSUBSCRIBE:
            return RouteTarget.SUPPRESSION, "remove_from_sequence"
        if category == ReplyCategory.NOT_INTERESTED:
            return RouteTarget.AUTO_RESPONDER, "remove_from_sequence"
        if category == ReplyCategory.OBJECTION:
            return RouteTarget.OBJECTION_HANDLER, "handle_objection"
        if category == ReplyCategory.MEETING_REQUEST or action == "schedule_meeting":
            return RouteTarget.MEETING_SCHEDULER, "schedule_meeting"
        if category in HUMAN_CATEGORIES:
            return RouteTarget.HUMAN, "escalate_to_human"
        if category == ReplyCategory.QUESTION:
            if classification.confidence > self.settings.classifier.question_auto_threshold:
                return RouteTarget.AUTO_RESPONDER, "send_info"
            return RouteTarget.HUMAN, "escalate_to_human"
        if action == "escalate_to_human":
            return RouteTarget.HUMAN, action
        return RouteTarget.AUTO_RESPONDER, action

    async def route(
        self,
        prospect: Prospect,
        reply: InboundReply,
        classification: Classification,
    ) -> RoutingDecision:
        now = self.clock()
        routed_to, action = self.choose_route(classification)

        subject = body = None
        if action in RESPONSE_ACTIONS:
            subject, body = await self.composer.compose_reply(
                prospect,
                action,
                reply.body,
                classification.suggested_action.suggested_response,
                original_subject=self._original_subject(prospect.id),
            )

        response_sent = False
        if (
            body
            and not classification.requires_human_review
            and routed_to not in (RouteTarget.HUMAN, RouteTarget.MEETING_SCHEDULER)
        ):
            response_sent = await self._send_or_queue(prospect, subject, body, classification)

        escalated = False
        if routed_to == RouteTarget.HUMAN:
            await self._escalate(prospect, reply, classification)
            escalated = True

        if action == "remove_from_sequence":
            status = (
                ProspectStatus.UNSUBSCRIBED
                if classification.category == ReplyCategory.UNSUBSCRIBE
                else ProspectStatus.DISQUALIFIED
            )
            update_prospect_status(self.db_path, prospect.id, status.value)

        stage = relationship_stage_for(classification.category)
        if stage:
            update_relationship_stage(self.db_path, prospect.id, stage)

        decision = RoutingDecision(
            prospect_id=prospect.id,
            reply_id=reply.id,
            category=classification.category,
            routed_to=routed_to,
            reasoning=classification.suggested_action.reasoning,
            confidence=classification.confidence,
            action_taken=action,
            response_generated=body,
            response_sent=response_sent,
            requires_human_review=classification.requires_human_review,
            meeting_scheduled=routed_to == RouteTarget.MEETING_SCHEDULER,
            objection_handled=routed_to == RouteTarget.OBJECTION_HANDLER and body is not None,
            escalated_to_human=escalated,
            processed_at=now,
        )

        log.info(
            "reply_routed",
            prospect_id=prospect.id,
            reply_id=reply.id,
            category=classification.category.value,
            routed_to=routed_to.value,
            action=action,
            response_sent=response_sent,
        )
        try:
            insert_routing_decision(self.db_path, decision)
        except sqlite3.Error as e:
            log.error("routing_log_failed", prospect_id=prospect.id, error=str(e))

        return decision

    def _original_subject(self, prospect_id: int) -> Optional[str]:
        for row in get_sent_messages(self.db_path, prospect_id):
            if row["subject"]:
                return row["subject"]
        return None

    async def _send_or_queue(
        self,
        prospect: Prospect,
        subject: str,
        body: str,
        classification: Classification,
    ) -> bool:
        """Send when auto-approval is on and the daily limit allows; otherwise queue for approval."""
        if self.settings.approval.auto_approve_messages:
            sent_today = count_sent_today(self.db_path, self.clock())
            if sent_today < self.settings.sending.daily_limit:
                try:
                    ack = await self.gateway.send("email", prospect, subject, body)
                except SendError as e:
                    log.error("reply_send_failed", prospect_id=prospect.id, error=str(e))
                else:
                    record_response_sent(
                        self.db_path, prospect.id, ack.get("channel", "email"), subject, body,
                        message_id=ack.get("message_id"), sent_at=self.clock(),
                    )
                    return True
            else:
                log.info("daily_limit_reached", sent=sent_today, limit=self.settings.sending.daily_limit)

        enqueue_approval(
            self.db_path,
            prospect.id,
            body,
            reasoning=classification.suggested_action.reasoning,
            confidence=classification.confidence,
            approval_type="email_response",
            subject=subject,
        )
        return False

    async def _escalate(self, prospect: Prospect, reply: InboundReply, classification: Classification) -> None:
        summary = (
            f"{classification.category.value.replace('_', ' ')} reply "
            f"(confidence {classification.confidence:.2f}): {classification.suggested_action.reasoning}"
        )
        priority = HANDOFF_PRIORITY[classification.suggested_action.priority]
        excerpt = reply.body[:EXCERPT_LENGTH]

        insert_handoff(
            self.db_path,
            prospect.id,
            reason="reply_needs_human",
            summary=summary,
            reply_excerpt=excerpt,
            priority=priority,
        )
        if self.notifier:
            await self.notifier.send_handoff(prospect, "reply_needs_human", summary, excerpt, priority)
