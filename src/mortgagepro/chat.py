"""AI assistant chat over an outbound webhook.

The assistant is grounded on what the user has selected: one client and
any number of lenders and documents. Requests go out as camelCase JSON:

    {"userId": ..., "userEmail": ..., "sessionId": ..., "message": ...,
     "history": [{"sender": "user", "message": ...}],
     "context": {"selectedClientId": ..., "selectedLenderIds": [...],
                 "selectedDocumentIds": [...]}}

and the webhook answers ``{"output": ...}`` or ``{"error": ...}``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from mortgagepro.errors import AuthenticationError, ChatError
from mortgagepro.types import Row, Session

if TYPE_CHECKING:
    from mortgagepro.config import Settings
    from mortgagepro.services.clients import ClientsService
    from mortgagepro.services.conversations import ConversationsService
    from mortgagepro.services.documents import DocumentsService
    from mortgagepro.services.lenders import LendersService

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatContext(_CamelModel):
    """What the user has selected to ground the assistant."""

    selected_client_id: Optional[str] = None
    selected_lender_ids: list[str] = Field(default_factory=list)
    selected_document_ids: list[str] = Field(default_factory=list)


class ChatMessage(_CamelModel):
    sender: Literal["user", "ai"]
    message: str


class ChatRequest(_CamelModel):
    user_id: str
    user_email: str
    session_id: str
    message: str
    history: list[ChatMessage] = Field(default_factory=list)
    context: ChatContext = Field(default_factory=ChatContext)


class ChatResponse(BaseModel):
    output: Optional[str] = None
    error: Optional[str] = None
    status: Optional[str] = None


@dataclass
class ResolvedContext:
    """The rows behind a ChatContext."""

    client: Row | None = None
    lenders: list[Row] = field(default_factory=list)
    documents: list[Row] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.client is None and not self.lenders and not self.documents


async def resolve_context(
    clients: ClientsService,
    lenders: LendersService,
    context: ChatContext,
    documents: DocumentsService | None = None,
) -> ResolvedContext:
    """Look up the selected client (with its people), lenders and documents."""
    resolved = ResolvedContext()
    if context.selected_client_id:
        resolved.client = next(
            (c for c in await clients.list() if c.get("id") == context.selected_client_id),
            None,
        )
    if context.selected_lender_ids:
        wanted = set(context.selected_lender_ids)
        resolved.lenders = [
            lender for lender in await lenders.list() if lender.get("id") in wanted
        ]
    if documents is not None and context.selected_document_ids:
        wanted = set(context.selected_document_ids)
        resolved.documents = [d for d in await documents.list() if d.get("id") in wanted]
    return resolved


class ChatAssistant:
    """Sends messages to the assistant webhook and stores the exchange."""

    def __init__(
        self,
        session: Session | None,
        webhook_url: str,
        *,
        session_id: str | None = None,
        timeout: float = 30.0,
        conversations: ConversationsService | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if session is None or not session.user_id:
            raise AuthenticationError()
        self.session = session
        self.webhook_url = webhook_url
        self.session_id = session_id or str(uuid.uuid4())
        self.timeout = timeout
        self.conversations = conversations
        self._client = client or httpx.AsyncClient(
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=timeout,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, session: Session | None, **kwargs: Any
    ) -> ChatAssistant:
        if not settings.chat_webhook_url:
            raise ChatError("Chat webhook URL is not configured")
        return cls(session, settings.chat_webhook_url, timeout=settings.chat_timeout, **kwargs)

    def build_request(
        self,
        message: str,
        history: Any = None,
        context: ChatContext | None = None,
    ) -> ChatRequest:
        """Validate inputs and assemble the webhook request."""
        if history is None:
            history = []
        if not self.session.user_id:
            raise ChatError("User ID is required")
        if not self.session.email:
            raise ChatError("User email is required")
        if not self.session_id:
            raise ChatError("Session ID is required")
        if not message or not message.strip():
            raise ChatError("Message cannot be empty")
        if not isinstance(history, list):
            raise ChatError("History must be a list")
        return ChatRequest(
            user_id=self.session.user_id,
            user_email=self.session.email,
            session_id=self.session_id,
            message=message,
            history=[
                m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m)
                for m in history[-HISTORY_LIMIT:]
            ],
            context=context or ChatContext(),
        )

    async def send_message(
        self,
        message: str,
        history: Any = None,
        context: ChatContext | None = None,
    ) -> str:
        """Return the assistant's reply; the exchange is saved best effort."""
        request = self.build_request(message, history, context)
        reply = await self._post(request)
        if self.conversations is not None:
            await self.conversations.save_exchange(self.session_id, message, reply)
        return reply

    async def test_connection(self) -> bool:
        """True when the webhook answers a test message."""
        ping = ChatRequest(
            user_id=self.session.user_id,
            user_email=self.session.email or "test@example.com",
            session_id="test-session",
            message="Test connection",
        )
        try:
            await self._post(ping)
        except Exception as exc:
            logger.warning("Assistant connection test failed: %s", exc)
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, request: ChatRequest) -> str:
        logger.debug(
            "Sending chat message for session %s (%d history items)",
            request.session_id,
            len(request.history),
        )
        try:
            response = await self._client.post(
                self.webhook_url,
                json=request.model_dump(by_alias=True, mode="json"),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise ChatError(f"Request timeout after {int(self.timeout * 1000)}ms") from exc

        if not response.is_success:
            raise ChatError(
                f"Webhook request failed: {response.status_code} "
                f"{response.reason_phrase}. {response.text}".rstrip()
            )
        try:
            payload = ChatResponse.model_validate(response.json())
        except ValueError as exc:
            raise ChatError("Received unexpected response format from AI.") from exc
        if payload.error:
            raise ChatError(f"Assistant workflow error: {payload.error}")
        if not payload.output:
            raise ChatError("No AI response received from assistant workflow")
        return payload.output


__all__ = [
    "ChatAssistant",
    "ChatContext",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ResolvedContext",
    "resolve_context",
]
