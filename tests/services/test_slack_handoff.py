# tests/services/test_slack_handoff.py
"""Tests for Slack handoff notifications."""

import pytest
import httpx
from unittest.mock import AsyncMock, patch, MagicMock

from outreach_engine.core.models import Prospect


def _prospect():
    return Prospect(id=3, email="cara@acme.com", first_name="Cara", last_name="Ng", company="Acme", title="CEO")


def _mock_client(post):
    mock_client = AsyncMock()
    mock_client.post = post
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    return mock_client


@pytest.mark.asyncio
async def test_send_handoff_posts_blocks():
    """send_handoff should POST header, fields, summary and excerpt blocks."""
    with patch("outreach_engine.services.slack_notifier.httpx.AsyncClient") as mock_client_class:
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.raise_for_status = MagicMock()
        mock_client = _mock_client(AsyncMock(return_value=mock_response))
        mock_client_class.return_value = mock_client

        from outreach_engine.services.slack_notifier import SlackNotifier
        notifier = SlackNotifier(webhook_url="https://hooks.slack.com/test")

        result = await notifier.send_handoff(
            _prospect(), "qualified", "CEO, funded, keen", excerpt="Sounds good", priority=95,
        )

        assert result is True
        mock_client.post.assert_called_once()

        blocks = mock_client.post.call_args[1]["json"]["blocks"]
        assert blocks[0]["type"] == "header"
        assert "Cara Ng" in blocks[0]["text"]["text"]
        assert len(blocks) == 4
        assert "Sounds good" in blocks[3]["text"]["text"]


@pytest.mark.asyncio
async def test_send_handoff_without_excerpt():
    with patch("outreach_engine.services.slack_notifier.httpx.AsyncClient") as mock_client_class:
        mock_response = MagicMock()
        mock_response.raise_for_status = MagicMock()
        mock_client = _mock_client(AsyncMock(return_value=mock_response))
        mock_client_class.return_value = mock_client

        from outreach_engine.services.slack_notifier import SlackNotifier
        notifier = SlackNotifier(webhook_url="https://hooks.slack.com/test")

        await notifier.send_handoff(_prospect(), "reply_needs_human", "unclear reply")

        blocks = mock_client.post.call_args[1]["json"]["blocks"]
        assert len(blocks) == 3


@pytest.mark.asyncio
async def test_send_handoff_returns_false_on_http_error():
    with patch("outreach_engine.services.slack_notifier.httpx.AsyncClient") as mock_client_class:
        mock_client = _mock_client(AsyncMock(side_effect=httpx.ConnectError("refused")))
        mock_client_class.return_value = mock_client

        from outreach_engine.services.slack_notifier import SlackNotifier
        notifier = SlackNotifier(webhook_url="https://hooks.slack.com/test")

        result = await notifier.send_handoff(_prospect(), "qualified", "summary")

        assert result is False


@pytest.mark.asyncio
async def test_send_handoff_without_webhook(monkeypatch):
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)

    from outreach_engine.services.slack_notifier import SlackNotifier
    notifier = SlackNotifier()

    assert await notifier.send_handoff(_prospect(), "qualified", "summary") is False
