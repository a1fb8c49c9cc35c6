"""Reply classification: fast rule tier with confidence-gated escalation to the AI backend."""

import json
import time
from dataclasses import dataclass
from typing import Optional, Union

import structlog
from pydantic import ValidationError

from outreach_engine.clients.ai import AIBackend, ParseError, TransportError
from outreach_engine.core.config import ClassifierConfig
from outreach_engine.core.models import (
    Classification,
    Entities,
    Intent,
    Objection,
    ReplyCategory,
    Sentiment,
    SuggestedAction,
)
from outreach_engine.replies.patterns import (
    analyze_sentiment,
    clean_email_body,
    detect_objection,
    extract_entities,
    extract_intents,
    match_category,
)

log = structlog.get_logger()

# Explicit opt-outs are negative by nature; they are handled automatically
OPT_OUT_CATEGORIES = frozenset({ReplyCategory.NOT_INTERESTED, ReplyCategory.UNSUBSCRIBE})

SUGGESTED_RESPONSES = {
    "schedule_meeting": "Absolutely! I have availability [Day] at [Time] or [Day] at [Time]. Which works better for you?",
    "send_pricing": "Happy to share pricing! Can I schedule a quick call to understand your needs and recommend the best fit?",
    "send_info": "Great question! [Answer]. Would you like to schedule a brief call to discuss this in more detail?",
    "handle_objection": "I understand your concern. Many of our customers initially had similar thoughts. Can I share how they approached this?",
    "find_contact": "Thanks for letting me know! Who would be the best person to discuss this with?",
}

SYSTEM_PROMPT = """You classify email replies from sales prospects.
Answer with ONE JSON object:
{"category": one of [positive_interest, objection, question, meeting_request, out_of_office,
  not_interested, wrong_person, referral, unsubscribe, neutral, unclear],
 "confidence": 0.0-1.0,
 "sentiment": {"score": -1.0..1.0, "label": very_positive|positive|neutral|negative|very_negative, "confidence": 0.0-1.0},
 "intents": [{"type": "...", "confidence": 0.0-1.0, "evidence": "quote"}],
 "objection": null or {"type": price|timing|competition|no_need|decision_maker|other, "severity": soft|medium|hard, "specific_concern": "..."},
 "entities": {"competitors": [], "timeline": null, "budget": null, "people": [], "urgency": low|medium|high},
 "suggested_action": {"action": "...", "reasoning": "...", "priority": low|medium|high|urgent, "suggested_response": "..."},
 "requires_human_review": true|false}
Return only the JSON object."""


@dataclass(frozen=True)
class FastMatch:
    """The rule tier is confident enough; no AI call needed."""
    classification: Classification


@dataclass(frozen=True)
class NeedsEscalation:
    """The rule tier's best guess, to be refined by the AI tier."""
    provisional: Classification
    cleaned_body: str


FastPathResult = Union[FastMatch, NeedsEscalation]


def suggest_action(category: ReplyCategory, intents: list[Intent]) -> SuggestedAction:
    """Deterministic next step for a category."""
    intent_types = {i.type for i in intents}

    if category == ReplyCategory.POSITIVE_INTEREST:
        if intent_types & {"meeting_request", "demo_request"}:
            return SuggestedAction(
                action="schedule_meeting",
                reasoning="Prospect expressed interest and wants to meet or see a demo",
                priority="urgent",
                suggested_response=SUGGESTED_RESPONSES["schedule_meeting"],
            )
        if "pricing_inquiry" in intent_types:
            return SuggestedAction(
                action="send_pricing",
                reasoning="Prospect is interested and asking about pricing",
                priority="high",
                suggested_response=SUGGESTED_RESPONSES["send_pricing"],
            )
        return SuggestedAction(
            action="send_info",
            reasoning="Prospect showed positive interest, send more information",
            priority="medium",
            suggested_response=SUGGESTED_RESPONSES["send_info"],
        )

    if category == ReplyCategory.MEETING_REQUEST:
        return SuggestedAction(
            action="schedule_meeting",
            reasoning="Prospect explicitly requested a meeting",
            priority="urgent",
            suggested_response=SUGGESTED_RESPONSES["schedule_meeting"],
        )
    if category == ReplyCategory.OBJECTION:
        return SuggestedAction(
            action="handle_objection",
            reasoning="Prospect raised an objection that needs addressing",
            priority="high",
            suggested_response=SUGGESTED_RESPONSES["handle_objection"],
        )
    if category == ReplyCategory.QUESTION:
        return SuggestedAction(
            action="send_info",
            reasoning="Prospect has questions that need answering",
            priority="medium",
            suggested_response=SUGGESTED_RESPONSES["send_info"],
        )
    if category == ReplyCategory.OUT_OF_OFFICE:
        return SuggestedAction(
            action="nurture",
            reasoning="Prospect is out of office, follow up when they return",
            priority="low",
        )
    if category in OPT_OUT_CATEGORIES:
        return SuggestedAction(
            action="remove_from_sequence",
            reasoning="Prospect asked not to be contacted",
            priority="low",
        )
    if category in (ReplyCategory.WRONG_PERSON, ReplyCategory.REFERRAL):
        return SuggestedAction(
            action="escalate_to_human",
            reasoning="Need to find or reach the right contact person",
            priority="medium",
            suggested_response=SUGGESTED_RESPONSES["find_contact"],
        )
    if category == ReplyCategory.NEUTRAL:
        return SuggestedAction(
            action="nurture",
            reasoning="No clear signal, keep the relationship warm",
            priority="low",
        )
    return SuggestedAction(
        action="escalate_to_human",
        reasoning="Unclear intent, human review recommended",
        priority="medium",
    )


class ReplyClassifier:
    """Maps an inbound reply to a Classification."""

    def __init__(self, backend: Optional[AIBackend] = None, config: Optional[ClassifierConfig] = None):
        self.backend = backend
        self.config = config or ClassifierConfig()

    def requires_review(self, category: ReplyCategory, sentiment: Sentiment, confidence: float) -> bool:
        if sentiment.label == "very_negative" and category not in OPT_OUT_CATEGORIES:
            return True
        if confidence < self.config.min_confidence:
            return True
        if category == ReplyCategory.MEETING_REQUEST:
            return True
        if category == ReplyCategory.OBJECTION and confidence < self.config.objection_review_threshold:
            return True
        return False

    def fast_path(self, body: str, subject: Optional[str] = None) -> FastPathResult:
        started = time.monotonic()
        cleaned = clean_email_body(body)
        original = f"{subject or ''} {cleaned}".strip()
        text = original.lower()

        category, confidence = match_category(text)
        sentiment = analyze_sentiment(text)
        intents = extract_intents(text)

        classification = Classification(
            category=category,
            sentiment=sentiment,
            intents=intents,
            objection=detect_objection(text) if category == ReplyCategory.OBJECTION else None,
            entities=extract_entities(original, self.config.competitors),
            suggested_action=suggest_action(category, intents),
            requires_human_review=self.requires_review(category, sentiment, confidence),
            confidence=confidence,
            source="pattern",
            processing_ms=int((time.monotonic() - started) * 1000),
        )

        if confidence > self.config.fast_path_threshold:
            return FastMatch(classification)
        return NeedsEscalation(classification, cleaned)

    async def classify(
        self,
        body: str,
        subject: Optional[str] = None,
        history: Optional[list[str]] = None,
    ) -> Classification:
        result = self.fast_path(body, subject)

        if isinstance(result, FastMatch):
            log.info(
                "reply_classified",
                category=result.classification.category.value,
                confidence=result.classification.confidence,
                source="pattern",
            )
            return result.classification

        if self.backend is None:
            return result.provisional

        started = time.monotonic()
        try:
            classification = await self._escalate(result, subject, history or [])
        except (TransportError, ParseError) as e:
            log.warning(
                "ai_classification_failed",
                error=str(e),
                fallback_category=result.provisional.category.value,
            )
            return result.provisional

        classification = classification.model_copy(update={
            "processing_ms": result.provisional.processing_ms + int((time.monotonic() - started) * 1000),
        })
        log.info(
            "reply_classified",
            category=classification.category.value,
            confidence=classification.confidence,
            source="ai",
        )
        return classification

    async def _escalate(
        self,
        escalation: NeedsEscalation,
        subject: Optional[str],
        history: list[str],
    ) -> Classification:
        prompt_parts = []
        if history:
            prompt_parts.append("Conversation so far (oldest first):")
            prompt_parts.extend(history[-10:])
            prompt_parts.append("")
        if subject:
            prompt_parts.append(f"Subject: {subject}")
        prompt_parts.append(f"Reply:\n{escalation.cleaned_body}")
        prompt_parts.append("")
        prompt_parts.append(
            "Rule-based guess: "
            + json.dumps({
                "category": escalation.provisional.category.value,
                "confidence": escalation.provisional.confidence,
            })
        )

        data, _ = await self.backend.invoke_json(
            "\n".join(prompt_parts),
            SYSTEM_PROMPT,
            {"task": "classification", "temperature": 0.1, "max_tokens": 800},
        )
        return self._from_ai_payload(data, escalation.provisional)

    def _from_ai_payload(self, data: dict, provisional: Classification) -> Classification:
        try:
            category = ReplyCategory(data.get("category"))
            confidence = float(data.get("confidence", provisional.confidence))
            sentiment = (
                Sentiment.model_validate(data["sentiment"])
                if isinstance(data.get("sentiment"), dict)
                else provisional.sentiment
            )
            intents = [Intent.model_validate(i) for i in data.get("intents") or [] if isinstance(i, dict)]
            objection = None
            if category == ReplyCategory.OBJECTION:
                objection = (
                    Objection.model_validate(data["objection"])
                    if isinstance(data.get("objection"), dict)
                    else provisional.objection or Objection()
                )
            entities = (
                Entities.model_validate(data["entities"])
                if isinstance(data.get("entities"), dict)
                else provisional.entities
            )
            suggested = (
                SuggestedAction.model_validate(data["suggested_action"])
                if isinstance(data.get("suggested_action"), dict)
                else suggest_action(category, intents)
            )
            classification = Classification(
                category=category,
                sentiment=sentiment,
                intents=intents,
                objection=objection,
                entities=entities,
                suggested_action=suggested,
                requires_human_review=bool(data.get("requires_human_review", False)),
                confidence=confidence,
                source="ai",
            )
        except (ValidationError, ValueError, TypeError, KeyError) as e:
            raise ParseError(f"invalid classification payload: {e}") from e

        # The local gate always applies on top of the model's own flag
        review = classification.requires_human_review or self.requires_review(
            classification.category, classification.sentiment, classification.confidence
        )
        return classification.model_copy(update={"requires_human_review": review})
