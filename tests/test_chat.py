"""Tests for the AI assistant chat."""

import json

import httpx
import pytest
import respx

from mortgagepro import (
    AuthenticationError,
    ChatAssistant,
    ChatContext,
    ChatError,
    Session,
    resolve_context,
)
from mortgagepro.services import ClientsService, ConversationsService, LendersService

URL = "https://hooks.example.com/chat"


@pytest.fixture
def assistant(session) -> ChatAssistant:
    return ChatAssistant(session, URL, session_id="s1", timeout=5.0)


class TestBuildRequest:
    """Tests for input validation and request shape."""

    def test_requires_user(self) -> None:
        with pytest.raises(AuthenticationError):
            ChatAssistant(None, URL)

    def test_requires_email(self) -> None:
        assistant = ChatAssistant(Session(user_id="user-1"), URL)
        with pytest.raises(ChatError, match="User email is required"):
            assistant.build_request("hello")

    def test_rejects_blank_message(self, assistant) -> None:
        with pytest.raises(ChatError, match="Message cannot be empty"):
            assistant.build_request("   ")

    def test_history_must_be_a_list(self, assistant) -> None:
        with pytest.raises(ChatError, match="History must be a list"):
            assistant.build_request("hello", history="not a list")

    def test_history_keeps_last_ten(self, assistant) -> None:
        history = [{"sender": "user", "message": str(i)} for i in range(15)]
        request = assistant.build_request("hello", history)
        assert [m.message for m in request.history] == [str(i) for i in range(5, 15)]

    def test_camel_case_payload(self, assistant) -> None:
        context = ChatContext(selected_client_id="c1", selected_lender_ids=["l1", "l2"])
        payload = assistant.build_request("Which lender fits?", [], context).model_dump(
            by_alias=True
        )
        assert payload == {
            "userId": "user-1",
            "userEmail": "broker@example.com",
            "sessionId": "s1",
            "message": "Which lender fits?",
            "history": [],
            "context": {
                "selectedClientId": "c1",
                "selectedLenderIds": ["l1", "l2"],
                "selectedDocumentIds": [],
            },
        }

    def test_generated_session_id(self, session) -> None:
        assert ChatAssistant(session, URL).session_id


class TestSendMessage:
    """Tests for the webhook exchange."""

    @respx.mock
    async def test_returns_output(self, assistant) -> None:
        route = respx.post(URL).mock(
            return_value=httpx.Response(200, json={"output": "Try Harbor Credit."})
        )

        reply = await assistant.send_message("Which lender fits?")

        assert reply == "Try Harbor Credit."
        body = json.loads(route.calls[0].request.content)
        assert body["sessionId"] == "s1"
        assert body["context"]["selectedLenderIds"] == []

    @respx.mock
    async def test_saves_exchange(self, session, make_service) -> None:
        respx.post(URL).mock(return_value=httpx.Response(200, json={"output": "Hi there"}))
        conversations = make_service(ConversationsService)
        assistant = ChatAssistant(session, URL, session_id="s1", conversations=conversations)

        await assistant.send_message("Hello")

        history = await conversations.history("s1")
        assert [(m["sender"], m["message"]) for m in history] == [
            ("user", "Hello"),
            ("ai", "Hi there"),
        ]

    @respx.mock
    async def test_http_error(self, assistant) -> None:
        respx.post(URL).mock(return_value=httpx.Response(502, text="upstream down"))
        with pytest.raises(ChatError, match="Webhook request failed: 502 Bad Gateway. upstream down"):
            await assistant.send_message("hello")

    @respx.mock
    async def test_timeout(self, assistant) -> None:
        respx.post(URL).mock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(ChatError, match="Request timeout after 5000ms"):
            await assistant.send_message("hello")

    @respx.mock
    async def test_workflow_error(self, assistant) -> None:
        respx.post(URL).mock(return_value=httpx.Response(200, json={"error": "model offline"}))
        with pytest.raises(ChatError, match="Assistant workflow error: model offline"):
            await assistant.send_message("hello")

    @respx.mock
    async def test_missing_output(self, assistant) -> None:
        respx.post(URL).mock(return_value=httpx.Response(200, json={"status": "ok"}))
        with pytest.raises(ChatError, match="No AI response received"):
            await assistant.send_message("hello")

    @respx.mock
    async def test_unexpected_format(self, assistant) -> None:
        respx.post(URL).mock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(ChatError, match="unexpected response format"):
            await assistant.send_message("hello")

    @respx.mock
    async def test_connection_check(self, assistant) -> None:
        route = respx.post(URL).mock(return_value=httpx.Response(200, json={"output": "pong"}))
        assert await assistant.test_connection() is True
        assert json.loads(route.calls[0].request.content)["message"] == "Test connection"

        route.mock(return_value=httpx.Response(500))
        assert await assistant.test_connection() is False


class TestResolveContext:
    """Tests for resolving selected entities."""

    async def test_resolves_client_and_lenders(self, make_service, backend) -> None:
        backend.seed("clients", [{"id": "c1", "user_id": "user-1"}, {"id": "c2", "user_id": "user-1"}])
        backend.seed(
            "lenders",
            [
                {"id": "l1", "user_id": "user-1", "name": "A"},
                {"id": "l2", "user_id": "user-1", "name": "B"},
                {"id": "l3", "user_id": "user-1", "name": "C"},
            ],
        )
        resolved = await resolve_context(
            make_service(ClientsService),
            make_service(LendersService),
            ChatContext(selected_client_id="c2", selected_lender_ids=["l1", "l3"]),
        )

        assert resolved.client["id"] == "c2"
        assert sorted(lender["id"] for lender in resolved.lenders) == ["l1", "l3"]
        assert resolved.documents == []

    async def test_empty_selection(self, make_service) -> None:
        resolved = await resolve_context(
            make_service(ClientsService), make_service(LendersService), ChatContext()
        )
        assert resolved.is_empty
