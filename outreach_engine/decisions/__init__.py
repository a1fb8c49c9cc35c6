"""AI-backed decision making with safe fallbacks."""

from outreach_engine.decisions.engine import DecisionEngine, DECISION_TYPES
