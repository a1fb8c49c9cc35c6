"""Notification services."""

from outreach_engine.services.slack_notifier import SlackNotifier
