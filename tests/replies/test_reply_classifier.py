"""Tests for the two-tier reply classifier."""

import pytest

from outreach_engine.clients.ai import TransportError
from outreach_engine.core.models import Intent, ReplyCategory
from outreach_engine.replies.classifier import (
    FastMatch,
    NeedsEscalation,
    ReplyClassifier,
    suggest_action,
)
from outreach_engine.replies.patterns import clean_email_body, extract_entities


@pytest.mark.asyncio
async def test_not_interested_is_handled_without_review():
    classifier = ReplyClassifier()

    result = await classifier.classify("Not interested, please remove me")

    assert result.category == ReplyCategory.NOT_INTERESTED
    assert result.confidence >= 0.85
    assert result.suggested_action.action == "remove_from_sequence"
    assert result.requires_human_review is False
    assert result.source == "pattern"


@pytest.mark.asyncio
async def test_meeting_request_always_needs_review():
    classifier = ReplyClassifier()

    result = await classifier.classify("Sure, can we hop on a call Tuesday at 2pm?")

    assert result.category == ReplyCategory.MEETING_REQUEST
    assert result.confidence == pytest.approx(0.8)
    assert result.suggested_action.action == "schedule_meeting"
    assert result.suggested_action.priority == "urgent"
    assert result.requires_human_review is True


def test_fast_path_threshold_is_strict():
    classifier = ReplyClassifier()

    assert isinstance(classifier.fast_path("I'm out of the office until Monday"), FastMatch)
    # A 0.85-confidence rule is not above the threshold
    assert isinstance(classifier.fast_path("Wrong person, not my area"), NeedsEscalation)


@pytest.mark.asyncio
async def test_escalates_uncertain_reply_to_ai(scripted_backend):
    backend = scripted_backend({"classification": {
        "category": "positive_interest",
        "confidence": 0.9,
        "sentiment": {"score": 0.6, "label": "very_positive", "confidence": 0.8},
        "intents": [{"type": "pricing_inquiry", "confidence": 0.8, "evidence": "how much"}],
        "suggested_action": {"action": "send_pricing", "priority": "high", "reasoning": "asked price"},
        "requires_human_review": False,
    }})
    classifier = ReplyClassifier(backend)

    result = await classifier.classify("How much does it cost for a team of 20?", history=["us: hi"])

    assert result.source == "ai"
    assert result.category == ReplyCategory.POSITIVE_INTEREST
    assert result.suggested_action.action == "send_pricing"
    assert "us: hi" in backend.provider.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_ai_output_is_clamped_and_gated(scripted_backend):
    backend = scripted_backend({"classification": {
        "category": "meeting_request",
        "confidence": 1.4,
        "sentiment": {"score": 2.5, "label": "very_positive", "confidence": -1},
        "requires_human_review": False,
    }})
    classifier = ReplyClassifier(backend)

    result = await classifier.classify("Let's find some time next week")

    assert result.confidence == 1.0
    assert result.sentiment.score == 1.0
    assert result.sentiment.confidence == 0.0
    # The local review rule still applies to meeting requests
    assert result.requires_human_review is True


@pytest.mark.asyncio
async def test_ai_failure_returns_rule_guess(scripted_backend):
    backend = scripted_backend({"classification": [TransportError("5xx")]}, max_retries=0)
    classifier = ReplyClassifier(backend)

    result = await classifier.classify("What integrations do you support?")

    assert result.source == "pattern"
    assert result.category == ReplyCategory.QUESTION


@pytest.mark.asyncio
async def test_ai_unknown_category_returns_rule_guess(scripted_backend):
    backend = scripted_backend({"classification": {"category": "enthusiastic", "confidence": 0.9}})
    classifier = ReplyClassifier(backend)

    result = await classifier.classify("What integrations do you support?")

    assert result.source == "pattern"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    "Not interested. Stop emailing me, this is a waste of time, never contact me again!",
    "Unsubscribe. I never signed up and I'm annoyed.",
])
async def test_opt_outs_skip_review_even_when_hostile(body):
    result = await ReplyClassifier().classify(body)

    assert result.category in (ReplyCategory.NOT_INTERESTED, ReplyCategory.UNSUBSCRIBE)
    assert result.requires_human_review is False


@pytest.mark.asyncio
async def test_hostile_non_opt_out_needs_review():
    result = await ReplyClassifier().classify("This is frustrating and disappointing, can't believe you'd send that")

    assert result.sentiment.label == "very_negative"
    assert result.requires_human_review is True


@pytest.mark.asyncio
async def test_low_confidence_needs_review():
    result = await ReplyClassifier().classify("hmm")

    assert result.category == ReplyCategory.UNCLEAR
    assert result.requires_human_review is True
    assert result.suggested_action.action == "escalate_to_human"


def test_positive_interest_with_demo_intent_schedules_meeting():
    action = suggest_action(ReplyCategory.POSITIVE_INTEREST, [Intent(type="demo_request")])

    assert action.action == "schedule_meeting"
    assert action.priority == "urgent"


def test_clean_email_body_strips_quotes_and_signature():
    body = (
        "Sounds good, tell me more.\n\n"
        "--\nJane Doe\nVP Sales\n\n"
        "On Mon, Mar 2, 2026 at 9:00 AM Chris <chris@ours.com> wrote:\n"
        "> quick question for Acme"
    )

    assert clean_email_body(body) == "Sounds good, tell me more."


def test_extract_entities():
    entities = extract_entities(
        "We use HubSpot today, maybe next quarter. Budget is $50k and Jane Smith signs off, it's urgent.",
        ["hubspot", "salesforce"],
    )

    assert entities.competitors == ["HubSpot"]
    assert entities.timeline == "next quarter"
    assert entities.budget == "$50k"
    assert "Jane Smith" in entities.people
    assert entities.urgency == "high"


@pytest.mark.asyncio
async def test_confidence_always_in_range():
    classifier = ReplyClassifier()
    for body in ["", "?", "yes", "out of office", "price price price??", "Stop. Not interested!!!"]:
        result = await classifier.classify(body)
        assert 0.0 <= result.confidence <= 1.0
        assert -1.0 <= result.sentiment.score <= 1.0
