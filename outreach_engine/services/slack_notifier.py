# outreach_engine/services/slack_notifier.py
"""Slack notifications for prospects handed to a human."""

import os
from typing import Optional

import httpx
import structlog

from outreach_engine.core.models import Prospect

log = structlog.get_logger()


class SlackNotifier:
    """Service for sending Slack notifications."""

    def __init__(self, webhook_url: Optional[str] = None):
        """Initialize with webhook URL."""
        self.webhook_url = webhook_url or os.getenv("SLACK_WEBHOOK_URL")

    async def send_handoff(
        self,
        prospect: Prospect,
        reason: str,
        summary: str,
        excerpt: Optional[str] = None,
        priority: int = 50,
    ) -> bool:
        """Tell the team a prospect needs a human.

        Args:
            prospect: The prospect being handed off
            reason: Short machine reason (e.g. "requires_review", "qualified")
            summary: Human-readable summary of why
            excerpt: Last reply from the prospect, if any
            priority: Handoff priority (0-100)

        Returns:
            True if sent successfully
        """
        if not self.webhook_url:
            log.warning("slack_webhook_not_configured")
            return False

        urgent = priority >= 90
        header = f"{'🔥' if urgent else '🙋'} Handoff: {prospect.full_name}"

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": header},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Company:*\n{prospect.company or 'N/A'}"},
                    {"type": "mrkdwn", "text": f"*Title:*\n{prospect.title or 'N/A'}"},
                    {"type": "mrkdwn", "text": f"*Reason:*\n{reason}"},
                    {"type": "mrkdwn", "text": f"*Priority:*\n{priority}"},
                ]
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Summary:*\n{summary}"},
            },
        ]

        if excerpt:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Last reply:*\n>{excerpt[:300]}"},
            })

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(
                    self.webhook_url,
                    json={"blocks": blocks},
                )
                response.raise_for_status()
                log.info("slack_handoff_sent", prospect_id=prospect.id, reason=reason)
                return True

        except httpx.HTTPError as e:
            log.error("slack_send_error", error=str(e))
            return False
