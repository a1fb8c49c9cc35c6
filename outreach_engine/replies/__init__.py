"""Inbound reply pipeline: classify, then route."""

from outreach_engine.replies.classifier import ReplyClassifier, suggest_action
from outreach_engine.replies.router import ResponseRouter
