"""Core infrastructure: CLI, config, database, models."""

from outreach_engine.core.config import (
    Settings,
    AgentConfig,
    CadenceConfig,
    ClassifierConfig,
    QualificationConfig,
    SendingConfig,
    load_settings,
    load_templates,
    render_template,
)
from outreach_engine.core.db import (
    init_db,
    insert_prospect,
    get_prospect,
    get_prospect_by_email,
    insert_reply,
    count_sent_today,
    get_pipeline_stats,
    get_routing_stats,
)
