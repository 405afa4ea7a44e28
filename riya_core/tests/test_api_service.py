import asyncio
import tempfile

from riya_core.api import service as service_module
from riya_core.chat.guest_chat import GuestChatOrchestrator
from riya_core.domain.models import ChatResult, CompletionResponse
from riya_core.infrastructure.storage.json_store import JsonConversationStore


class FakeProvider:
    name = "gemini"

    async def chat(self, req):
        return ChatResult(provider="gemini", model=req.model, text='[{"text":"haan"}]')


class NullEndpoint:
    async def complete(self, req):
        return CompletionResponse(messages=[])


def test_handle_completion_roundtrip():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=d)
        svc = service_module.create_reply_service(store=store, provider=FakeProvider())
        payload = {"guestSessionId": "g-api", "messages": ["hello"], "isBatch": False, "isGuest": True}
        out = asyncio.run(service_module.handle_completion(payload, service=svc))
        assert out == {"messages": [{"text": "haan"}], "remainingMessages": 24}


def test_handle_completion_invalid_payload():
    out = asyncio.run(service_module.handle_completion({"messages": ["x"]}, service=object()))
    assert out == {"error": "INVALID_REQUEST"}


def test_create_guest_chat_uses_settings(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=d)
        monkeypatch.setattr(service_module, "_store", store)
        chat = service_module.create_guest_chat(endpoint=NullEndpoint())
        assert isinstance(chat, GuestChatOrchestrator)
        assert chat.session_id is None
        assert service_module.get_default_store() is store
        assert service_module.get_conversation_messages("g-none") == []


def test_handle_completion_rejects_non_object_body():
    out = asyncio.run(service_module.handle_completion(["hello"], service=object()))
    assert out == {"error": "INVALID_REQUEST"}
