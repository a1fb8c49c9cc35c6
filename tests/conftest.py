"""Shared fixtures: temp database, scripted AI provider, in-memory gateway."""

import json
import tempfile
from pathlib import Path

import pytest

from outreach_engine.clients.ai import AIBackend, AIResponse, DecisionProvider, TransportError
from outreach_engine.core.config import RetryConfig, Settings
from outreach_engine.core.db import init_db

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


async def no_sleep(_delay):
    return None


class ScriptedProvider(DecisionProvider):
    """Answers by task hint with canned text, JSON dicts or exceptions.

    A list value is consumed one entry per call; its last entry repeats.
    Tasks with no script raise a non-retryable TransportError.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    async def invoke(self, prompt, system_prompt=None, task_hints=None):
        task = (task_hints or {}).get("task")
        self.calls.append({"task": task, "prompt": prompt, "system_prompt": system_prompt})

        outcome = self.responses.get(task)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if outcome is None:
            raise TransportError("unavailable", f"nothing scripted for {task}")
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, dict):
            outcome = json.dumps(outcome)
        return AIResponse(text=outcome, latency=0.01, cost_estimate=0.0, model="scripted")

    def count(self, task):
        return sum(1 for call in self.calls if call["task"] == task)


class FakeGateway:
    """Records sends instead of calling Gmail."""

    def __init__(self):
        self.sent = []

    async def send(self, channel, prospect, subject, body):
        self.sent.append({
            "channel": channel,
            "prospect_id": prospect.id,
            "subject": subject,
            "body": body,
        })
        return {
            "channel": channel,
            "queued": False,
            "thread_id": prospect.thread_id or f"thread_{prospect.id}",
            "message_id": f"msg_{len(self.sent)}",
        }

    async def sync_thread_replies(self, prospect):
        return []


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        init_db(path)
        yield path


@pytest.fixture
def config_path():
    return CONFIG_DIR


@pytest.fixture
def settings():
    """Auto-sending settings with no pacing delay."""
    settings = Settings()
    settings.approval.auto_approve_messages = True
    settings.sending.min_delay_seconds = 0
    settings.sending.max_delay_seconds = 0
    return settings


@pytest.fixture
def scripted_backend():
    """Factory: scripted_backend({task: response}, max_retries=3) -> AIBackend."""
    def make(responses=None, max_retries=3):
        provider = ScriptedProvider(responses)
        retry = RetryConfig(max_retries=max_retries, base_delay_seconds=0.01, max_delay_seconds=0.01)
        return AIBackend(provider, retry, sleep=no_sleep)
    return make


@pytest.fixture
def gateway():
    return FakeGateway()
