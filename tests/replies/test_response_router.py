"""Tests for the response router."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from outreach_engine.clients.messaging import SendError
from outreach_engine.core.db import (
    get_handoffs,
    get_pending_approvals,
    get_prospect,
    get_reply,
    get_routing_decisions,
    get_sent_messages,
    insert_prospect,
    insert_reply,
    update_prospect_contact,
)
from outreach_engine.core.models import (
    Classification,
    InboundReply,
    Prospect,
    ReplyCategory,
    RouteTarget,
    SuggestedAction,
)
from outreach_engine.outreach.composer import MessageComposer
from outreach_engine.replies.classifier import ReplyClassifier, suggest_action
from outreach_engine.replies.router import ResponseRouter

NOW = datetime(2026, 3, 4, 15, 0)


def _setup(db_path, body):
    pid = insert_prospect(db_path, "jane@acme.com", "Jane", "Doe", "Acme", "VP Sales")
    update_prospect_contact(db_path, pid, 1, "email", "quick question for Acme", "opener",
                            thread_id="t1", message_id="m1", sent_at=datetime(2026, 3, 2, 9, 0))
    reply_id = insert_reply(db_path, pid, body, external_id="r1", received_at=NOW)
    prospect = Prospect.from_row(get_prospect(db_path, pid))
    reply = InboundReply.from_row(get_reply(db_path, reply_id))
    return prospect, reply


def _router(db_path, config_path, settings, gateway, notifier=None):
    composer = MessageComposer(None, config_path, "Chris")
    return ResponseRouter(settings, composer, gateway, db_path, notifier, clock=lambda: NOW)


def _classification(category, confidence=0.9, review=False, action=None):
    suggested = suggest_action(category, [])
    if action:
        suggested = SuggestedAction(action=action, priority="high")
    return Classification(
        category=category,
        suggested_action=suggested,
        requires_human_review=review,
        confidence=confidence,
    )


@pytest.mark.asyncio
async def test_not_interested_removes_from_sequence(db_path, config_path, settings, gateway):
    prospect, reply = _setup(db_path, "Not interested, please remove me")
    notifier = MagicMock()
    notifier.send_handoff = AsyncMock(return_value=True)
    router = _router(db_path, config_path, settings, gateway, notifier)

    classification = await ReplyClassifier().classify(reply.body)
    decision = await router.route(prospect, reply, classification)

    assert decision.routed_to == RouteTarget.AUTO_RESPONDER
    assert decision.action_taken == "remove_from_sequence"
    assert decision.escalated_to_human is False
    assert decision.response_sent is False
    assert gateway.sent == []
    notifier.send_handoff.assert_not_called()

    row = get_prospect(db_path, prospect.id)
    assert row["status"] == "disqualified"
    assert row["relationship_stage"] == "disqualified"
    assert len(get_routing_decisions(db_path, prospect.id)) == 1


@pytest.mark.asyncio
async def test_meeting_request_goes_to_human(db_path, config_path, settings, gateway):
    prospect, reply = _setup(db_path, "Sure, can we hop on a call Tuesday at 2pm?")
    notifier = MagicMock()
    notifier.send_handoff = AsyncMock(return_value=True)
    router = _router(db_path, config_path, settings, gateway, notifier)

    classification = await ReplyClassifier().classify(reply.body)
    decision = await router.route(prospect, reply, classification)

    assert decision.routed_to == RouteTarget.HUMAN
    assert decision.escalated_to_human is True
    assert decision.response_sent is False
    assert gateway.sent == []

    handoffs = get_handoffs(db_path, prospect.id)
    assert len(handoffs) == 1
    assert handoffs[0]["priority"] == 90
    assert handoffs[0]["reply_excerpt"] == reply.body
    notifier.send_handoff.assert_awaited_once()
    assert get_prospect(db_path, prospect.id)["relationship_stage"] == "interested"


@pytest.mark.parametrize("category", list(ReplyCategory))
def test_review_always_routes_to_human(category, db_path, config_path, settings, gateway):
    router = _router(db_path, config_path, settings, gateway)

    route, action = router.choose_route(_classification(category, review=True))

    assert route == RouteTarget.HUMAN
    assert action == "escalate_to_human"


@pytest.mark.parametrize("category,route", [
    (ReplyCategory.UNSUBSCRIBE, RouteTarget.SUPPRESSION),
    (ReplyCategory.OBJECTION, RouteTarget.OBJECTION_HANDLER),
    (ReplyCategory.MEETING_REQUEST, RouteTarget.MEETING_SCHEDULER),
    (ReplyCategory.WRONG_PERSON, RouteTarget.HUMAN),
    (ReplyCategory.REFERRAL, RouteTarget.HUMAN),
    (ReplyCategory.UNCLEAR, RouteTarget.HUMAN),
    (ReplyCategory.OUT_OF_OFFICE, RouteTarget.AUTO_RESPONDER),
    (ReplyCategory.NEUTRAL, RouteTarget.AUTO_RESPONDER),
])
def test_choose_route_by_category(category, route, db_path, config_path, settings, gateway):
    router = _router(db_path, config_path, settings, gateway)

    assert router.choose_route(_classification(category))[0] == route


def test_low_confidence_question_goes_to_human(db_path, config_path, settings, gateway):
    router = _router(db_path, config_path, settings, gateway)

    assert router.choose_route(_classification(ReplyCategory.QUESTION, confidence=0.7))[0] == RouteTarget.HUMAN
    assert router.choose_route(_classification(ReplyCategory.QUESTION, confidence=0.75)) == (
        RouteTarget.AUTO_RESPONDER, "send_info"
    )


@pytest.mark.asyncio
async def test_question_auto_reply_is_sent(db_path, config_path, settings, gateway):
    prospect, reply = _setup(db_path, "Does it integrate with our CRM?")
    router = _router(db_path, config_path, settings, gateway)

    decision = await router.route(prospect, reply, _classification(ReplyCategory.QUESTION, confidence=0.9))

    assert decision.response_sent is True
    assert decision.response_generated.startswith("Hey Jane")
    assert gateway.sent[0]["subject"] == "re: quick question for Acme"
    sent = get_sent_messages(db_path, prospect.id)
    assert [row["touch_number"] for row in sent] == [1, 0]
    # Replies do not count as sequence touches
    assert get_prospect(db_path, prospect.id)["contact_count"] == 1


@pytest.mark.asyncio
async def test_reply_queued_for_approval_when_auto_send_off(db_path, config_path, settings, gateway):
    settings.approval.auto_approve_messages = False
    prospect, reply = _setup(db_path, "We already use HubSpot")
    router = _router(db_path, config_path, settings, gateway)

    decision = await router.route(prospect, reply, _classification(ReplyCategory.OBJECTION))

    assert decision.routed_to == RouteTarget.OBJECTION_HANDLER
    assert decision.objection_handled is True
    assert decision.response_sent is False
    assert gateway.sent == []
    approvals = get_pending_approvals(db_path, prospect.id)
    assert approvals[0]["approval_type"] == "email_response"


@pytest.mark.asyncio
async def test_reply_queued_when_daily_limit_reached(db_path, config_path, settings, gateway):
    settings.sending.daily_limit = 0
    prospect, reply = _setup(db_path, "Tell me more")
    router = _router(db_path, config_path, settings, gateway)

    decision = await router.route(prospect, reply, _classification(ReplyCategory.POSITIVE_INTEREST))

    assert decision.response_sent is False
    assert gateway.sent == []
    assert len(get_pending_approvals(db_path, prospect.id)) == 1


@pytest.mark.asyncio
async def test_failed_send_falls_back_to_approval(db_path, config_path, settings, gateway):
    prospect, reply = _setup(db_path, "Does it integrate with our CRM?")
    gateway.send = AsyncMock(side_effect=SendError("gmail rejected the message"))
    router = _router(db_path, config_path, settings, gateway)

    decision = await router.route(prospect, reply, _classification(ReplyCategory.QUESTION, confidence=0.9))

    assert decision.response_sent is False
    assert get_pending_approvals(db_path, prospect.id)[0]["approval_type"] == "email_response"
    assert get_prospect(db_path, prospect.id)["relationship_stage"] == "engaged"
    assert len(get_routing_decisions(db_path, prospect.id)) == 1


@pytest.mark.asyncio
async def test_unsubscribe_suppresses_prospect(db_path, config_path, settings, gateway):
    prospect, reply = _setup(db_path, "Unsubscribe")
    router = _router(db_path, config_path, settings, gateway)

    decision = await router.route(prospect, reply, _classification(ReplyCategory.UNSUBSCRIBE))

    assert decision.routed_to == RouteTarget.SUPPRESSION
    assert get_prospect(db_path, prospect.id)["status"] == "unsubscribed"
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_meeting_route_drafts_nothing(db_path, config_path, settings, gateway):
    prospect, reply = _setup(db_path, "Yes let's meet")
    router = _router(db_path, config_path, settings, gateway)

    decision = await router.route(prospect, reply, _classification(ReplyCategory.MEETING_REQUEST))

    assert decision.routed_to == RouteTarget.MEETING_SCHEDULER
    assert decision.meeting_scheduled is True
    assert decision.response_generated is None
    assert gateway.sent == []
