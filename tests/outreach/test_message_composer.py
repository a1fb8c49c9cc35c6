import pytest

from outreach_engine.clients.ai import TransportError
from outreach_engine.core.models import Prospect
from outreach_engine.outreach.composer import MessageComposer


def _prospect():
    return Prospect(id=1, email="jane@acme.com", first_name="Jane", company="Acme", title="VP Sales")


@pytest.mark.asyncio
async def test_compose_opener_uses_model_output(config_path, scripted_backend):
    backend = scripted_backend({"compose": {"subject": "outbound at acme", "body": "Saw you're hiring SDRs."}})
    composer = MessageComposer(backend, config_path, "Chris")

    subject, body = await composer.compose_opener(_prospect(), "Hiring 4 SDRs")

    assert subject == "outbound at acme"
    assert body == "Hey Jane,\n\nSaw you're hiring SDRs."
    assert "Hiring 4 SDRs" in backend.provider.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_compose_opener_falls_back_to_template(config_path, scripted_backend):
    backend = scripted_backend({"compose": [TransportError("client_error")]})
    composer = MessageComposer(backend, config_path, "Chris")

    subject, body = await composer.compose_opener(_prospect())

    assert subject == "quick question for Acme"
    assert body.startswith("Hey Jane,")
    assert body.endswith("Chris")


@pytest.mark.asyncio
async def test_compose_opener_empty_body_falls_back(config_path, scripted_backend):
    backend = scripted_backend({"compose": {"subject": "x", "body": "   "}})
    composer = MessageComposer(backend, config_path, "Chris")

    subject, _ = await composer.compose_opener(_prospect())

    assert subject == "quick question for Acme"


def test_compose_follow_up_threads_original_subject(config_path):
    composer = MessageComposer(None, config_path, "Chris")

    subject, body = composer.compose_follow_up(_prospect(), 3, "quick question for Acme")

    assert subject == "re: quick question for Acme"
    assert "Jane" in body


@pytest.mark.asyncio
@pytest.mark.parametrize("action", ["send_info", "send_pricing", "handle_objection"])
async def test_compose_reply_templates(config_path, action):
    composer = MessageComposer(None, config_path, "Chris")

    subject, body = await composer.compose_reply(_prospect(), action, "question?", original_subject="hello")

    assert subject == "re: hello"
    assert body.startswith("Hey Jane,")


def test_compose_meeting_proposal_lists_times(config_path):
    composer = MessageComposer(None, config_path, "Chris")

    _, body = composer.compose_meeting_proposal(_prospect(), ["Tue 10:00", "Wed 14:00"], "hello")

    assert "- Tue 10:00\n- Wed 14:00" in body
