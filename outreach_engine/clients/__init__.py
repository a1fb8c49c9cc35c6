"""External service clients: AI backend, Gmail via Composio."""

from outreach_engine.clients.ai import (
    AIBackend,
    AnthropicProvider,
    DecisionProvider,
    ParseError,
    TransportError,
    build_backend,
)
from outreach_engine.clients.messaging import MessagingGateway, SendError
