"""Domain models shared by the scheduler, decision engine, classifier and router."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Naive UTC timestamp, the format stored in sqlite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, float(value)))


# --- Tasks ---------------------------------------------------------------


class TaskType(str, Enum):
    DISCOVER = "discover"
    RESEARCH = "research"
    ENGAGE = "engage"
    FOLLOW_UP = "follow_up"
    RESPOND = "respond"
    SCHEDULE = "schedule"
    QUALIFY = "qualify"
    HANDOFF = "handoff"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class DiscoverContext(BaseModel):
    type: Literal["discover"] = "discover"
    intent_score: int = 0


class ResearchContext(BaseModel):
    type: Literal["research"] = "research"
    engage_reasoning: str = ""


class EngageContext(BaseModel):
    type: Literal["engage"] = "engage"
    research_summary: Optional[str] = None


class FollowUpContext(BaseModel):
    type: Literal["follow_up"] = "follow_up"
    touch_number: int = Field(ge=2)
    channel: str = "email"
    # Replies received before this point were already handled (e.g. an out-of-office)
    replies_acknowledged_at: Optional[datetime] = None


class RespondContext(BaseModel):
    type: Literal["respond"] = "respond"
    reply_id: int


class ScheduleContext(BaseModel):
    type: Literal["schedule"] = "schedule"
    reply_id: Optional[int] = None
    requested_time: Optional[str] = None


class QualifyContext(BaseModel):
    type: Literal["qualify"] = "qualify"
    trigger: str = "reply"


class HandoffContext(BaseModel):
    type: Literal["handoff"] = "handoff"
    reason: str
    score: Optional[int] = None


TaskContext = Annotated[
    Union[
        DiscoverContext,
        ResearchContext,
        EngageContext,
        FollowUpContext,
        RespondContext,
        ScheduleContext,
        QualifyContext,
        HandoffContext,
    ],
    Field(discriminator="type"),
]


class Task(BaseModel):
    """A unit of scheduled work for one prospect."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    type: TaskType
    prospect_id: int
    priority: int = Field(default=50, ge=0, le=100)
    scheduled_for: datetime = Field(default_factory=utcnow)
    context: TaskContext
    status: TaskStatus = TaskStatus.PENDING
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _context_matches_type(self) -> "Task":
        if self.context.type != self.type.value:
            raise ValueError(
                f"context type '{self.context.type}' does not match task type '{self.type.value}'"
            )
        return self


def clamp_priority(priority: float) -> int:
    return int(_clamp(round(priority), 0, 100))


# --- Decisions -----------------------------------------------------------


class Alternative(BaseModel):
    action: str
    score: float = 0.0


class Decision(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: str
    reasoning: str = ""
    confidence: float = 0.5
    alternatives: list[Alternative] = []
    metadata: dict[str, Any] = {}

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        return _clamp(v, 0.0, 1.0)


# --- Classification ------------------------------------------------------


class ReplyCategory(str, Enum):
    POSITIVE_INTEREST = "positive_interest"
    OBJECTION = "objection"
    QUESTION = "question"
    MEETING_REQUEST = "meeting_request"
    OUT_OF_OFFICE = "out_of_office"
    NOT_INTERESTED = "not_interested"
    WRONG_PERSON = "wrong_person"
    REFERRAL = "referral"
    UNSUBSCRIBE = "unsubscribe"
    NEUTRAL = "neutral"
    UNCLEAR = "unclear"


SentimentLabel = Literal["very_positive", "positive", "neutral", "negative", "very_negative"]
ActionPriority = Literal["low", "medium", "high", "urgent"]


class Sentiment(BaseModel):
    score: float = 0.0
    label: SentimentLabel = "neutral"
    confidence: float = 0.5

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, v):
        return _clamp(v, -1.0, 1.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        return _clamp(v, 0.0, 1.0)


class Intent(BaseModel):
    type: str
    confidence: float = 0.7
    evidence: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        return _clamp(v, 0.0, 1.0)


class Objection(BaseModel):
    type: str = "other"
    severity: Literal["soft", "medium", "hard"] = "medium"
    specific_concern: str = ""


class Entities(BaseModel):
    competitors: list[str] = []
    timeline: Optional[str] = None
    budget: Optional[str] = None
    people: list[str] = []
    urgency: Literal["high", "medium", "low"] = "medium"


class SuggestedAction(BaseModel):
    action: str
    reasoning: str = ""
    priority: ActionPriority = "medium"
    suggested_response: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _known_priority(cls, v):
        v = str(v).lower() if v is not None else "medium"
        return v if v in ("low", "medium", "high", "urgent") else "medium"


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: ReplyCategory
    sentiment: Sentiment = Sentiment()
    intents: list[Intent] = []
    objection: Optional[Objection] = None
    entities: Entities = Entities()
    suggested_action: SuggestedAction
    requires_human_review: bool = False
    confidence: float = 0.5
    source: Literal["pattern", "ai"] = "pattern"
    processing_ms: int = 0

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        return _clamp(v, 0.0, 1.0)

    def has_intent(self, *types: str) -> bool:
        return any(i.type in types for i in self.intents)


# --- Routing -------------------------------------------------------------


class RouteTarget(str, Enum):
    OBJECTION_HANDLER = "objection_handler"
    MEETING_SCHEDULER = "meeting_scheduler"
    HUMAN = "human"
    AUTO_RESPONDER = "auto_responder"
    SUPPRESSION = "suppression"


class RoutingDecision(BaseModel):
    prospect_id: int
    reply_id: Optional[int] = None
    category: ReplyCategory
    routed_to: RouteTarget
    reasoning: str = ""
    confidence: float = 0.0
    action_taken: str
    response_generated: Optional[str] = None
    response_sent: bool = False
    requires_human_review: bool = False
    meeting_scheduled: bool = False
    objection_handled: bool = False
    escalated_to_human: bool = False
    processed_at: datetime = Field(default_factory=utcnow)


# --- Referenced records --------------------------------------------------


class ProspectStatus(str, Enum):
    NEW = "new"
    QUEUED = "queued"
    RESEARCHING = "researching"
    ENGAGING = "engaging"
    ACTIVE = "active"
    AWAITING_APPROVAL = "awaiting_approval"
    QUALIFIED = "qualified"
    NURTURE = "nurture"
    UNRESPONSIVE = "unresponsive"
    HANDED_OFF = "handed_off"
    DISQUALIFIED = "disqualified"
    UNSUBSCRIBED = "unsubscribed"


# Statuses in which no further automated follow-up is sent
HALTED_STATUSES = frozenset({
    ProspectStatus.NURTURE.value,
    ProspectStatus.UNRESPONSIVE.value,
    ProspectStatus.HANDED_OFF.value,
    ProspectStatus.DISQUALIFIED.value,
    ProspectStatus.UNSUBSCRIBED.value,
})


class Prospect(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: Optional[str] = None
    company: Optional[str] = None
    title: Optional[str] = None
    linkedin_url: Optional[str] = None
    employee_count: Optional[int] = None
    funding_amount: Optional[float] = None
    intent_score: int = 0
    status: str = ProspectStatus.NEW.value
    relationship_stage: str = "cold"
    qualification_score: Optional[int] = None
    contact_count: int = 0
    last_contacted_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    last_evaluated_at: Optional[datetime] = None
    thread_id: Optional[str] = None
    last_message_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_row(cls, row) -> "Prospect":
        return cls(**dict(row))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

    @property
    def is_halted(self) -> bool:
        return self.status in HALTED_STATUSES


class InboundReply(BaseModel):
    id: int
    prospect_id: int
    external_id: Optional[str] = None
    subject: Optional[str] = None
    body: str
    received_at: datetime
    status: str = "new"
    conversation_history: list[str] = []

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_row(cls, row, conversation_history: Optional[list[str]] = None) -> "InboundReply":
        return cls(**dict(row), conversation_history=conversation_history or [])
