"""Outbound messaging: Gmail via Composio, LinkedIn via the manual approval queue."""

import asyncio
from pathlib import Path
from typing import Optional

import structlog
from composio.sdk import Composio

from outreach_engine.core.config import Settings
from outreach_engine.core.db import DEFAULT_DB_PATH, enqueue_approval, get_sent_messages, insert_reply
from outreach_engine.core.models import Prospect

log = structlog.get_logger()

# Cache for user_id lookups
_user_id_cache: dict[str, str] = {}


class SendError(Exception):
    """A messaging tool call came back unsuccessful."""


def _get_client() -> Composio:
    """Get Composio client (uses COMPOSIO_API_KEY env var)."""
    return Composio()


def _get_user_id_for_account(client: Composio, connected_account_id: str) -> Optional[str]:
    """Look up user_id for a connected account."""
    if connected_account_id in _user_id_cache:
        return _user_id_cache[connected_account_id]

    try:
        accounts = client.connected_accounts.list()
        for item in accounts.items:
            if item.id == connected_account_id:
                _user_id_cache[connected_account_id] = item.user_id
                return item.user_id
    except Exception as e:
        log.warning("failed_to_get_user_id", error=str(e))

    return None


async def _execute(slug: str, arguments: dict, connected_account_id: Optional[str] = None):
    """Run a Composio tool off the event loop and return its data payload."""
    client = _get_client()

    execute_kwargs = {
        "slug": slug,
        "arguments": arguments,
        "dangerously_skip_version_check": True,
    }
    if connected_account_id:
        execute_kwargs["connected_account_id"] = connected_account_id
        user_id = _get_user_id_for_account(client, connected_account_id)
        if user_id:
            execute_kwargs["user_id"] = user_id

    loop = asyncio.get_event_loop()
    result = await loop.run_in_executor(
        None,
        lambda: client.tools.execute(**execute_kwargs)
    )

    # Handle both object and dict responses
    successful = result.successful if hasattr(result, 'successful') else result.get("successful", False)
    data = result.data if hasattr(result, 'data') else result.get("data", {})
    error = result.error if hasattr(result, 'error') else result.get("error")

    if not successful:
        error_msg = error or "Unknown error"
        log.error("composio_tool_failed", slug=slug, error=error_msg)
        raise SendError(f"{slug} failed: {error_msg}")

    return data or {}


async def send_new_email(
    to: str,
    subject: str,
    body: str,
    connected_account_id: Optional[str] = None
) -> dict:
    """Send a new email (not a reply).

    Returns dict with thread_id and message_id.
    """
    log.info("sending_new_email", to=to, subject=subject)
    data = await _execute(
        "GMAIL_SEND_EMAIL",
        {"recipient_email": to, "subject": subject, "body": body},
        connected_account_id,
    )
    return {"thread_id": data.get("threadId"), "message_id": data.get("id")}


async def send_reply_email(
    to: str,
    subject: str,
    body: str,
    thread_id: str,
    message_id: str,
    from_name: str = "Chris",
    connected_account_id: Optional[str] = None
) -> dict:
    """Send a reply email (in existing thread).

    Returns dict with thread_id and message_id.
    """
    log.info("sending_reply_email", to=to, subject=subject, thread_id=thread_id)
    data = await _execute(
        "GMAIL_REPLY_TO_THREAD",
        {
            "thread_id": thread_id,
            "message_id": message_id,
            "to": to,
            "subject": subject,
            "body": body,
            "from_name": from_name,
        },
        connected_account_id,
    )
    return {"thread_id": data.get("threadId") or thread_id, "message_id": data.get("id")}


async def get_thread_messages(
    thread_id: str,
    connected_account_id: Optional[str] = None
) -> list[dict]:
    """Get all messages in a thread."""
    log.info("fetching_thread", thread_id=thread_id)
    data = await _execute(
        "GMAIL_FETCH_MESSAGE_BY_THREAD_ID",
        {"thread_id": thread_id},
        connected_account_id,
    )
    # Handle different response formats
    if isinstance(data, list):
        return data
    return data.get("messages", data.get("items", []))


class MessagingGateway:
    """Delivers a composed message on a channel and returns an ack."""

    def __init__(self, settings: Settings, db_path: Path = DEFAULT_DB_PATH):
        self.settings = settings
        self.db_path = db_path

    @property
    def _account_id(self) -> Optional[str]:
        return self.settings.gmail.connected_account_id or None

    async def send(
        self,
        channel: str,
        prospect: Prospect,
        subject: str,
        body: str,
    ) -> dict:
        """Send on `channel`. Returns {channel, thread_id, message_id, queued}."""
        if channel == "linkedin":
            # No send API for LinkedIn; a human delivers it from the queue
            approval_id = enqueue_approval(
                self.db_path, prospect.id, body,
                reasoning="LinkedIn messages are sent manually",
                confidence=1.0,
                approval_type="linkedin_message",
                subject=subject,
                channel="linkedin",
            )
            log.info("linkedin_message_queued", prospect_id=prospect.id, approval_id=approval_id)
            return {"channel": "linkedin", "thread_id": None, "message_id": None, "queued": True}

        if prospect.thread_id and prospect.last_message_id:
            result = await send_reply_email(
                to=prospect.email,
                subject=subject,
                body=body,
                thread_id=prospect.thread_id,
                message_id=prospect.last_message_id,
                from_name=self.settings.gmail.from_name,
                connected_account_id=self._account_id,
            )
        else:
            result = await send_new_email(
                to=prospect.email,
                subject=subject,
                body=body,
                connected_account_id=self._account_id,
            )
        return {"channel": "email", "queued": False, **result}

    async def sync_thread_replies(self, prospect: Prospect) -> list[int]:
        """Store prospect messages from the Gmail thread that we have not seen. Returns new reply ids."""
        if not prospect.thread_id:
            return []

        messages = await get_thread_messages(prospect.thread_id, self._account_id)
        ours = {
            row["external_message_id"]
            for row in get_sent_messages(self.db_path, prospect.id)
            if row["external_message_id"]
        }

        new_ids = []
        for msg in messages:
            external_id = msg.get("messageId") or msg.get("id")
            if not external_id or external_id in ours:
                continue
            sender = msg.get("sender") or msg.get("from") or ""
            if sender and prospect.email.lower() not in sender.lower():
                continue
            body = msg.get("messageText") or msg.get("snippet") or ""
            reply_id = insert_reply(
                self.db_path, prospect.id, body,
                subject=msg.get("subject"),
                external_id=external_id,
            )
            if reply_id:
                log.info("reply_detected", prospect_id=prospect.id, reply_id=reply_id)
                new_ids.append(reply_id)
        return new_ids
