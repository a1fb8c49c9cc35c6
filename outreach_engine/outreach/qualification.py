"""Qualification scoring for engaged prospects."""

import re
from datetime import datetime, timedelta
from typing import Optional

from outreach_engine.core.config import QualificationConfig
from outreach_engine.core.models import Prospect

C_LEVEL = re.compile(
    r"\b(ceo|cto|cfo|coo|cmo|cro|chief|founder|co-founder|cofounder|owner|(?<!vice )president)\b",
    re.IGNORECASE,
)
VP_LEVEL = re.compile(r"\b(vp|svp|evp|vice president|director|head of)\b", re.IGNORECASE)
MANAGER_LEVEL = re.compile(r"\b(manager|lead)\b", re.IGNORECASE)

HANDOFF = "handoff"
QUALIFIED = "qualified"
NURTURE = "nurture"


def seniority_points(title: Optional[str], config: QualificationConfig) -> int:
    if not title:
        return 0
    if C_LEVEL.search(title):
        return config.c_level_points
    if VP_LEVEL.search(title):
        return config.vp_points
    if MANAGER_LEVEL.search(title):
        return config.manager_points
    return 0


def score_prospect(prospect: Prospect, config: QualificationConfig, now: datetime) -> int:
    """Weighted fit score in [0, 100]."""
    score = 0

    if (prospect.employee_count or 0) > config.large_company_employees:
        score += config.large_company_points
    if (prospect.funding_amount or 0) > config.funding_threshold:
        score += config.funding_points

    score += seniority_points(prospect.title, config)
    score += round(max(prospect.intent_score, 0) * config.intent_weight)

    if prospect.last_activity_at and now - prospect.last_activity_at < timedelta(days=config.recent_activity_days):
        score += config.recent_activity_points

    return max(0, min(100, score))


def qualification_outcome(score: int, config: QualificationConfig) -> str:
    if score >= config.handoff_threshold:
        return HANDOFF
    if score >= config.qualified_threshold:
        return QUALIFIED
    return NURTURE
