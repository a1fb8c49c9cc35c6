"""Configuration loading and models."""

import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, model_validator


class AgentConfig(BaseModel):
    cycle_interval_seconds: int = 300
    tasks_per_cycle: int = 10
    discovery_batch_size: int = 50
    min_intent_score: int = 50
    recontact_after_days: int = 7


class SendingConfig(BaseModel):
    daily_limit: int = 50
    min_delay_seconds: int = 20
    max_delay_seconds: int = 60


class CadenceConfig(BaseModel):
    # Days between consecutive touches: 1->2, 2->3, 3->4, 4->5
    follow_up_gaps_days: list[int] = [3, 4, 4, 7]
    max_touches: int = 5
    out_of_office_delay_days: int = 7
    engage_priority_drop: int = 10
    follow_up_priority_drop: int = 5
    respond_priority: int = 80

    @model_validator(mode="after")
    def _enough_gaps(self) -> "CadenceConfig":
        if len(self.follow_up_gaps_days) < self.max_touches - 1:
            raise ValueError("follow_up_gaps_days needs one entry per follow-up touch")
        return self

    def gap_after(self, touch_number: int) -> int:
        """Days to wait after sending `touch_number` before the next touch."""
        return self.follow_up_gaps_days[touch_number - 1]


class QualificationConfig(BaseModel):
    large_company_employees: int = 100
    large_company_points: int = 25
    funding_threshold: float = 5_000_000
    funding_points: int = 10
    c_level_points: int = 30
    vp_points: int = 25
    manager_points: int = 15
    intent_weight: float = 0.25
    recent_activity_days: int = 7
    recent_activity_points: int = 10
    handoff_threshold: int = 90
    qualified_threshold: int = 70
    handoff_priority: int = 95


class ClassifierConfig(BaseModel):
    fast_path_threshold: float = 0.85
    min_confidence: float = 0.5
    objection_review_threshold: float = 0.7
    question_auto_threshold: float = 0.7
    competitors: list[str] = [
        "salesforce", "hubspot", "pipedrive", "zoho", "monday",
        "asana", "clickup", "notion", "airtable",
    ]


class RetryConfig(BaseModel):
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter: float = 0.3


class AIConfig(BaseModel):
    model: str = "claude-opus-4-5-20251101"
    max_tokens: int = 1024


class ApprovalConfig(BaseModel):
    auto_approve_messages: bool = False


class ChannelsConfig(BaseModel):
    default_channel: str = "email"
    linkedin_enabled: bool = False


class GmailConfig(BaseModel):
    from_name: str = "Chris"
    connected_account_id: str = ""  # Composio connected account ID


class InboxConfig(BaseModel):
    sync_gmail_threads: bool = False


class Settings(BaseModel):
    agent: AgentConfig = AgentConfig()
    sending: SendingConfig = SendingConfig()
    cadence: CadenceConfig = CadenceConfig()
    qualification: QualificationConfig = QualificationConfig()
    classifier: ClassifierConfig = ClassifierConfig()
    retry: RetryConfig = RetryConfig()
    ai: AIConfig = AIConfig()
    approval: ApprovalConfig = ApprovalConfig()
    channels: ChannelsConfig = ChannelsConfig()
    gmail: GmailConfig = GmailConfig()
    inbox: InboxConfig = InboxConfig()


DEFAULT_CONFIG_PATH = Path("config")


def load_settings(config_path: Path = DEFAULT_CONFIG_PATH) -> Settings:
    """Load settings from YAML file."""
    settings_file = config_path / "settings.yaml"

    if not settings_file.exists():
        settings = Settings()
    else:
        with open(settings_file) as f:
            data = yaml.safe_load(f) or {}
        settings = Settings(**data)

    # Check env var for connected_account_id if not set in YAML
    if not settings.gmail.connected_account_id:
        env_account_id = os.environ.get("COMPOSIO_CONNECTED_ACCOUNT_ID", "")
        if env_account_id:
            settings.gmail.connected_account_id = env_account_id

    return settings


def render_template(template: str, variables: dict) -> str:
    """Render a template with variable substitution."""
    result = template
    for key, value in variables.items():
        result = result.replace(f"{{{{{key}}}}}", str(value) if value else "")
    return result


class MessageTemplate(BaseModel):
    """Fallback message used when generation is unavailable."""
    name: str
    subject: str
    body: str


def load_templates(config_path: Path = DEFAULT_CONFIG_PATH) -> list[MessageTemplate]:
    """Load and parse templates.md into a list of MessageTemplate objects."""
    templates_file = config_path / "templates.md"

    if not templates_file.exists():
        return []

    content = templates_file.read_text()

    # Split on frontmatter delimiters (---)
    sections = re.split(r'^---\s*$', content, flags=re.MULTILINE)

    templates = []
    # Process pairs of (frontmatter, body)
    for i in range(1, len(sections) - 1, 2):
        frontmatter = sections[i].strip()
        if not frontmatter:
            continue

        meta = yaml.safe_load(frontmatter)
        if not isinstance(meta, dict) or "template" not in meta:
            continue

        lines = sections[i + 1].strip().split('\n')
        subject = ""
        body_start = 0
        for idx, line in enumerate(lines):
            if line.startswith('subject:'):
                subject = line.replace('subject:', '').strip()
                body_start = idx + 1
                break

        templates.append(MessageTemplate(
            name=meta["template"],
            subject=subject,
            body='\n'.join(lines[body_start:]).strip(),
        ))

    return templates


def get_template_by_name(config_path: Path, name: str) -> MessageTemplate:
    """Get a specific template by name from templates.md."""
    for t in load_templates(config_path):
        if t.name == name:
            return t
    raise ValueError(f"Template '{name}' not found in templates.md")
