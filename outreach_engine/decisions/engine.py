"""Decision engine: turns a decision request into a structured Decision via the AI backend."""

import json
import sqlite3
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from outreach_engine.clients.ai import AIBackend, ParseError, TransportError, extract_json
from outreach_engine.core.db import DEFAULT_DB_PATH, log_decision
from outreach_engine.core.models import Alternative, Decision

log = structlog.get_logger()

FALLBACK_ACTION = "defer"
FALLBACK_CONFIDENCE = 0.3

# Valid actions per decision type, with a one-line brief for the prompt
DECISION_TYPES: dict[str, dict[str, Any]] = {
    "should_engage": {
        "actions": ["engage", "skip", "defer"],
        "brief": "Decide whether to start outreach to this prospect now.",
    },
    "next_action": {
        "actions": ["send_follow_up", "wait", "qualify", "handoff", "nurture"],
        "brief": "Decide the next step in an ongoing engagement.",
    },
    "channel_selection": {
        "actions": ["email", "linkedin"],
        "brief": "Pick the outreach channel most likely to get a response.",
    },
    "timing": {
        "actions": ["send_now", "wait"],
        "brief": (
            "Decide when to send. If proposing a meeting, include 2-3 concrete "
            "slots as \"suggested_times\" in metadata."
        ),
    },
    "handoff": {
        "actions": ["handoff", "continue"],
        "brief": (
            "Decide whether a human should take over. The reasoning is shown to "
            "the sales rep, so write it as a short account summary."
        ),
    },
}

SYSTEM_PROMPT = """You are the decision layer of an autonomous sales development agent.
You receive a decision type and a JSON context and answer with ONE JSON object:
{"action": "<one of the allowed actions>", "reasoning": "<1-3 sentences>",
 "confidence": <0.0-1.0>, "alternatives": [{"action": "...", "score": <0.0-1.0>}],
 "metadata": {}}
Return only the JSON object."""


def build_prompt(decision_type: str, context: dict) -> str:
    entry = DECISION_TYPES.get(decision_type)
    lines = [f"Decision type: {decision_type}"]
    if entry:
        lines.append(entry["brief"])
        lines.append(f"Allowed actions: {', '.join(entry['actions'])}")
    else:
        lines.append("Choose the most appropriate action for this situation.")
    lines.append("")
    lines.append("Context:")
    lines.append(json.dumps(context, indent=2, default=str))
    return "\n".join(lines)


def parse_decision(decision_type: str, data: dict) -> Decision:
    """Validate a raw JSON payload into a Decision. Raises ParseError."""
    action = data.get("action")
    if not isinstance(action, str) or not action:
        raise ParseError("decision has no action")

    entry = DECISION_TYPES.get(decision_type)
    if entry and action not in entry["actions"]:
        raise ParseError(f"action '{action}' not allowed for {decision_type}")

    metadata = dict(data.get("metadata") or {})
    # Unknown top-level keys are kept rather than dropped
    for key, value in data.items():
        if key not in ("action", "reasoning", "confidence", "alternatives", "metadata"):
            metadata.setdefault(key, value)

    try:
        return Decision(
            action=action,
            reasoning=str(data.get("reasoning", "")),
            confidence=data.get("confidence", 0.5),
            alternatives=[Alternative(**a) for a in data.get("alternatives") or [] if isinstance(a, dict)],
            metadata=metadata,
        )
    except (ValidationError, TypeError, ValueError) as e:
        raise ParseError(f"invalid decision payload: {e}") from e


class DecisionEngine:
    """Makes and records decisions. `decide` never raises."""

    def __init__(self, backend: Optional[AIBackend], db_path: Path = DEFAULT_DB_PATH):
        self.backend = backend
        self.db_path = db_path

    async def decide(
        self,
        decision_type: str,
        context: dict,
        prospect_id: Optional[int] = None,
        task_id: Optional[str] = None,
    ) -> Decision:
        try:
            decision = await self._ask(decision_type, context)
        except TransportError as e:
            decision = self._fallback("transport", str(e), kind=e.kind)
        except ParseError as e:
            decision = self._fallback("parse", str(e), raw_response=getattr(e, "raw_response", None))
        except Exception as e:
            decision = self._fallback("unexpected", str(e))

        self._record(decision_type, context, decision, prospect_id, task_id)
        return decision

    async def _ask(self, decision_type: str, context: dict) -> Decision:
        if self.backend is None:
            raise TransportError("unavailable", "no AI backend configured")

        response = await self.backend.invoke(
            build_prompt(decision_type, context),
            SYSTEM_PROMPT,
            {"task": f"decision:{decision_type}", "temperature": 0.2, "max_tokens": 600},
        )
        try:
            decision = parse_decision(decision_type, extract_json(response.text))
        except ParseError as e:
            e.raw_response = response.text[:500]
            raise
        return decision.model_copy(update={
            "metadata": {
                **decision.metadata,
                "latency": round(response.latency, 3),
                "cost_estimate": response.cost_estimate,
            }
        })

    @staticmethod
    def _fallback(failure: str, error: str, **extra) -> Decision:
        return Decision(
            action=FALLBACK_ACTION,
            reasoning=f"Falling back after {failure} failure",
            confidence=FALLBACK_CONFIDENCE,
            metadata={"fallback": True, "failure": failure, "error": error, **extra},
        )

    def _record(
        self,
        decision_type: str,
        context: dict,
        decision: Decision,
        prospect_id: Optional[int],
        task_id: Optional[str],
    ) -> None:
        log.info(
            "decision_made",
            decision_type=decision_type,
            prospect_id=prospect_id,
            action=decision.action,
            confidence=decision.confidence,
            fallback=bool(decision.metadata.get("fallback")),
        )
        try:
            log_decision(self.db_path, decision_type, context, decision, prospect_id, task_id)
        except sqlite3.Error as e:
            log.error("decision_log_failed", decision_type=decision_type, error=str(e))
