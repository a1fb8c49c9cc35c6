"""Message composition: AI-written openers and replies with template fallbacks."""

from pathlib import Path
from typing import Optional

import structlog

from outreach_engine.clients.ai import AIBackend, ParseError, TransportError
from outreach_engine.core.config import DEFAULT_CONFIG_PATH, get_template_by_name, render_template
from outreach_engine.core.models import Prospect

log = structlog.get_logger()

OPENER_SYSTEM_PROMPT = """You write short, specific cold outreach emails.
Reference something concrete from the research notes, make one clear ask, stay under 120 words.
No em-dashes, no fake rapport, no generic flattery.
Return a JSON object with exactly two fields:
- "subject": a 3-6 word subject line, lowercase
- "body": the email body after the greeting line"""

REPLY_SYSTEM_PROMPT = """You write replies to prospects who answered a sales email.
Answer what they asked, keep it under 100 words, end with one low-friction next step.
No em-dashes. Return a JSON object with "subject" and "body" (body after the greeting line)."""

REPLY_GOALS = {
    "send_info": "Answer their question or give the extra information they want.",
    "send_pricing": "Give a short pricing overview and offer a call to size the right plan.",
    "handle_objection": "Acknowledge the objection and address it with one relevant proof point.",
}


def prospect_summary(prospect: Prospect) -> str:
    lines = [
        f"Name: {prospect.full_name}",
        f"Company: {prospect.company or 'Unknown'}",
        f"Title: {prospect.title or 'Unknown'}",
    ]
    if prospect.employee_count:
        lines.append(f"Employees: {prospect.employee_count}")
    return "\n".join(lines)


class MessageComposer:
    """Writes the messages the agent sends."""

    def __init__(
        self,
        backend: Optional[AIBackend],
        config_path: Path = DEFAULT_CONFIG_PATH,
        from_name: str = "Chris",
    ):
        self.backend = backend
        self.config_path = config_path
        self.from_name = from_name

    def _variables(self, prospect: Prospect, **extra) -> dict:
        return {
            "first_name": prospect.first_name,
            "last_name": prospect.last_name,
            "company": prospect.company or "your team",
            "title": prospect.title,
            "sender_name": self.from_name,
            **extra,
        }

    def from_template(self, name: str, variables: dict) -> tuple[str, str]:
        template = get_template_by_name(self.config_path, name)
        return render_template(template.subject, variables), render_template(template.body, variables)

    async def _generate(self, system_prompt: str, user_message: str, prospect: Prospect) -> Optional[tuple[str, str]]:
        """Ask the model for {subject, body}. Returns None when generation is unavailable."""
        if self.backend is None:
            return None
        try:
            result, _ = await self.backend.invoke_json(
                user_message, system_prompt, {"task": "compose", "temperature": 0.7, "max_tokens": 800}
            )
        except (TransportError, ParseError) as e:
            log.error("compose_failed", prospect_id=prospect.id, error=str(e))
            return None

        body = str(result.get("body", "")).strip()
        if not body:
            log.error("compose_empty_body", prospect_id=prospect.id)
            return None
        subject = str(result.get("subject") or "quick question")
        return subject, f"Hey {prospect.first_name},\n\n{body}"

    async def compose_opener(self, prospect: Prospect, research: Optional[str] = None) -> tuple[str, str]:
        """First touch. Returns (subject, body)."""
        user_message = f"""Write the first email to this prospect:

{prospect_summary(prospect)}

Research notes:
{research or 'No research available.'}

Remember: return valid JSON with "subject" and "body" fields."""

        log.info("generating_opener", prospect_id=prospect.id)
        generated = await self._generate(OPENER_SYSTEM_PROMPT, user_message, prospect)
        if generated:
            return generated
        return self.from_template("opener", self._variables(prospect))

    def compose_follow_up(self, prospect: Prospect, touch_number: int, original_subject: Optional[str]) -> tuple[str, str]:
        """Follow-up touches come from templates and stay in the original thread."""
        subject, body = self.from_template(
            f"follow_up_{touch_number}",
            self._variables(prospect, original_subject=original_subject or ""),
        )
        if not subject:
            subject = f"re: {original_subject}" if original_subject else "following up"
        return subject, body

    async def compose_reply(
        self,
        prospect: Prospect,
        action: str,
        reply_body: str,
        suggested_response: Optional[str] = None,
        original_subject: Optional[str] = None,
    ) -> tuple[str, str]:
        """Response to an inbound reply for an automated route."""
        goal = REPLY_GOALS.get(action, REPLY_GOALS["send_info"])
        user_message = f"""{prospect_summary(prospect)}

Their reply:
{reply_body}

Goal: {goal}
Suggested direction: {suggested_response or 'none'}"""

        generated = await self._generate(REPLY_SYSTEM_PROMPT, user_message, prospect)
        if generated:
            return generated
        template_name = action if action in REPLY_GOALS else "send_info"
        return self.from_template(
            template_name,
            self._variables(prospect, original_subject=original_subject or ""),
        )

    def compose_meeting_proposal(
        self,
        prospect: Prospect,
        suggested_times: list[str],
        original_subject: Optional[str] = None,
    ) -> tuple[str, str]:
        times = "\n".join(f"- {t}" for t in suggested_times) or "- whatever suits you this week"
        return self.from_template(
            "meeting_proposal",
            self._variables(prospect, suggested_times=times, original_subject=original_subject or ""),
        )
