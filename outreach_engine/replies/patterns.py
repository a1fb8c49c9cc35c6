"""Rule tables and text heuristics used by the reply classifier."""

import re

from outreach_engine.core.models import Entities, Intent, Objection, ReplyCategory, Sentiment


def _compile(*patterns: str) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# Evaluated top to bottom; the first category with a matching pattern wins.
# Opt-outs come first so they are never mistaken for interest.
CATEGORY_RULES: list[tuple[ReplyCategory, float, list[re.Pattern]]] = [
    (ReplyCategory.OUT_OF_OFFICE, 0.95, _compile(
        r"\b(out of (the )?office|away from|on vacation|on leave|ooo|auto.*reply)\b",
        r"\b(returning on|back on|will respond|limited access)\b",
    )),
    (ReplyCategory.UNSUBSCRIBE, 0.9, _compile(
        r"\b(unsubscribe|opt me out|opt out|take me off|remove me from (your|this|the) (list|mailing list|emails))\b",
    )),
    (ReplyCategory.NOT_INTERESTED, 0.9, _compile(
        r"\b(not interested|no thanks|no thank you|don't contact|stop|remove me)\b",
    )),
    (ReplyCategory.REFERRAL, 0.85, _compile(
        r"\b(reach out to|speak with|talk to|contact|get in touch with|email)\s+"
        r"(my colleague|my boss|my manager|our (head|vp|director|cto|ceo|cmo|coo|cfo)\b)",
        r"\b(looping in|i've cc'?d|cc'?ing|copying in)\b",
        r"\b(better|right) person (is|would be|to talk to is)\b",
    )),
    (ReplyCategory.WRONG_PERSON, 0.85, _compile(
        r"\b(wrong person|not the right|not my area|not responsible|not my department)\b",
    )),
    (ReplyCategory.MEETING_REQUEST, 0.8, _compile(
        r"\b(schedule|set up|book|arrange|meet|call|chat|discuss|connect)\b",
        r"\b(available|free|calendar|what time|next week)\b",
        r"\b(demo|presentation|walkthrough|overview)\b",
    )),
    (ReplyCategory.OBJECTION, 0.75, _compile(
        r"\b(too expensive|too costly|can't afford|budget|price|cost concerns)\b",
        r"\b(not now|bad timing|maybe later|revisit|not ready|too busy)\b",
        r"\b(already using|current solution|happy with|competitor|alternative)\b",
        r"\b(not a priority|don't need|no need)\b",
    )),
    (ReplyCategory.POSITIVE_INTEREST, 0.8, _compile(
        r"\b(interested|tell me more|sounds good|looks interesting|curious|intrigued)\b",
        r"\b(would like to|want to|keen to|happy to|open to|willing to)\b",
        r"\b(learn more|find out more|hear more|see more)\b",
        r"\b(yes|sure|okay|ok|absolutely|definitely)\b",
    )),
    (ReplyCategory.QUESTION, 0.7, _compile(
        r"\?",
        r"\b(what|how|when|where|why|who|which|can you|could you|would you)\b",
        r"\b(explain|clarify|details|information|specifics)\b",
    )),
]

UNCLEAR_CONFIDENCE = 0.3

POSITIVE_INDICATORS = _compile(
    r"\b(great|excellent|perfect|wonderful|fantastic|awesome|love|excited|impressed)\b",
    r"\b(thanks|thank you|appreciate|helpful|glad)\b",
    r"👍|😊|🙂|😀|👏|✨",
)

NEGATIVE_INDICATORS = _compile(
    r"\b(not|don't|can't|won't|never|no|none|neither)\b",
    r"\b(disappointed|frustrated|annoyed|upset|angry|waste)\b",
    r"😠|😡|👎|❌",
)

INTENT_PATTERNS: dict[str, list[re.Pattern]] = {
    "demo_request": _compile(r"\b(demo|demonstration|show me|see it|walkthrough|trial)\b"),
    "pricing_inquiry": _compile(r"\b(price|pricing|cost|how much|rates|fee|package|plan)\b"),
    "meeting_request": _compile(r"\b(meet|call|chat|discuss|talk|connect|schedule|calendar)\b"),
    "technical_question": _compile(
        r"\b(integrate|api|technical|feature|capability|support|work with)\b",
        r"\b(does it|can it|will it|is it able)\b",
    ),
    "competitor_mention": _compile(r"\b(vs|versus|compared to|alternative|competitor|instead of)\b"),
    "timeline_discussion": _compile(r"\b(when|timeline|date|quarter|month|year|soon|later)\b"),
    "budget_discussion": _compile(r"\b(budget|afford|spend|investment|cost)\b"),
}

OBJECTION_PATTERNS: dict[str, list[re.Pattern]] = {
    "price": _compile(r"\b(price|cost|expensive|budget|affordable|pricing|fee|rate)\b"),
    "timing": _compile(
        r"\b(timing|time|now|later|busy|bandwidth|quarter|year|month)\b",
        r"\b(revisit|circle back|touch base|check in|follow up)\b",
    ),
    "competition": _compile(
        r"\b(already|current|existing|using|have|competitor|alternative)\b",
        r"\b(salesforce|hubspot|pipedrive|zoho|monday|asana)\b",
    ),
    "no_need": _compile(r"\b(don't need|no need|not a priority|not necessary|not relevant)\b"),
    "decision_maker": _compile(
        r"\b(not my decision|need to check|have to ask|boss|manager|team)\b",
        r"\b(not authorized|need approval|committee)\b",
    ),
}

HARD_OBJECTION_WORDS = ("never", "absolutely not", "definitely not", "impossible")
SOFT_OBJECTION_WORDS = ("maybe", "might", "possibly", "consider")

TIMELINE_PATTERN = re.compile(r"\b(next|this|in \d+)\s+(week|month|quarter|year|q[1-4])\b", re.IGNORECASE)
BUDGET_PATTERN = re.compile(r"\$[\d,]+k?|\d+k budget|limited budget|tight budget", re.IGNORECASE)
PERSON_PATTERN = re.compile(r"\b[A-Z][a-z]+\s+[A-Z][a-z]+\b")

URGENCY_KEYWORDS = {
    "high": ("urgent", "asap", "immediately", "right now", "today"),
    "low": ("eventually", "someday", "future", "maybe", "later"),
}


def clean_email_body(body: str) -> str:
    """Strip quoted history, signatures and mobile footers from a reply."""
    body = body.replace("\r\n", "\n").replace("’", "'")
    body = re.sub(r"^>.*$", "", body, flags=re.MULTILINE)
    # Everything after "On <date>, <name> wrote:" is quoted history
    body = re.split(r"^On .{0,120}wrote:\s*$", body, maxsplit=1, flags=re.MULTILINE)[0]
    # Signature delimiter
    body = re.split(r"^--\s*$", body, maxsplit=1, flags=re.MULTILINE)[0]
    body = re.sub(r"^Sent from my (iPhone|iPad|Android).*$", "", body, flags=re.MULTILINE | re.IGNORECASE)
    body = re.sub(r"^Get Outlook for (iOS|Android).*$", "", body, flags=re.MULTILINE | re.IGNORECASE)
    body = re.sub(r"\n{3,}", "\n\n", body)
    return body.strip()


def match_category(text: str) -> tuple[ReplyCategory, float]:
    for category, confidence, patterns in CATEGORY_RULES:
        if any(p.search(text) for p in patterns):
            return category, confidence
    return ReplyCategory.UNCLEAR, UNCLEAR_CONFIDENCE


def analyze_sentiment(text: str) -> Sentiment:
    positive = sum(len(p.findall(text)) for p in POSITIVE_INDICATORS)
    negative = sum(len(p.findall(text)) for p in NEGATIVE_INDICATORS)
    total = positive + negative

    score = (positive - negative) / total if total else 0.0

    if score >= 0.5:
        label = "very_positive"
    elif score >= 0.2:
        label = "positive"
    elif score >= -0.2:
        label = "neutral"
    elif score >= -0.5:
        label = "negative"
    else:
        label = "very_negative"

    return Sentiment(
        score=score,
        label=label,
        confidence=min(0.8, total / 10) if total else 0.5,
    )


def extract_intents(text: str) -> list[Intent]:
    intents = []
    for intent_type, patterns in INTENT_PATTERNS.items():
        for pattern in patterns:
            match = pattern.search(text)
            if match:
                intents.append(Intent(type=intent_type, confidence=0.7, evidence=match.group(0)))
                break
    return intents


def detect_objection(text: str) -> Objection:
    lowered = text.lower()
    if any(word in lowered for word in HARD_OBJECTION_WORDS):
        severity = "hard"
    elif any(word in lowered for word in SOFT_OBJECTION_WORDS):
        severity = "soft"
    else:
        severity = "medium"

    objection_type = "other"
    for candidate, patterns in OBJECTION_PATTERNS.items():
        if any(p.search(text) for p in patterns):
            objection_type = candidate
            break

    return Objection(type=objection_type, severity=severity, specific_concern=text[:200])


def extract_entities(text: str, competitors: list[str]) -> Entities:
    """Pull competitors, timeline, budget, people and urgency from the original-case text."""
    found_competitors = []
    for name in competitors:
        match = re.search(rf"\b{re.escape(name)}\b", text, re.IGNORECASE)
        if match:
            found_competitors.append(match.group(0))

    timeline = TIMELINE_PATTERN.search(text)
    budget = BUDGET_PATTERN.search(text)
    people = list(dict.fromkeys(PERSON_PATTERN.findall(text)))

    lowered = text.lower()
    urgency = "medium"
    if any(kw in lowered for kw in URGENCY_KEYWORDS["high"]):
        urgency = "high"
    elif any(kw in lowered for kw in URGENCY_KEYWORDS["low"]):
        urgency = "low"

    return Entities(
        competitors=found_competitors,
        timeline=timeline.group(0) if timeline else None,
        budget=budget.group(0) if budget else None,
        people=people,
        urgency=urgency,
    )

