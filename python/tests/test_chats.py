"""Integration tests for chat routes.

Tests cover:
- Creating a chat generates a title, resolves the model and opens a stream
- client_id uniqueness and blank prompts
- Resolution failures keep the chat and the failed turn
- Listing order (pinned first, then most recent), visibility and pinning
- Owner-only deletion
- Branching copies turns, revisions and responses up to the chosen message
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from polychat.db.models import Chat, Message, StreamLog, utcnow
from polychat.services.llm.errors import LLMError, LLMErrorClass
from polychat.services.llm.types import LLMOperation
from tests.factories import complete_turn, create_chat, create_turn, seed_registry
from tests.helpers import auth_headers


@pytest.fixture
def registry(db_session):
    return seed_registry(db_session)


class TestCreateChat:
    def test_auto_selection_classifies_and_opens_stream(
        self, auth_client, registry, fake_llm, viewer_id
    ):
        response = auth_client.post(
            "/chats", json={"client_id": "chat-1", "prompt": "How do I reverse a list?"}
        )

        assert response.status_code == 201
        data = response.json()["data"]
        chat = data["chat"]
        assert chat["client_id"] == "chat-1"
        assert chat["owner_id"] == viewer_id
        assert chat["title"] == "Sorting Lists In Python"
        assert chat["initial_prompt"] == "How do I reverse a list?"
        assert chat["collaborators"] == [viewer_id]
        assert chat["stream_id"] == data["message"]["stream_id"]
        assert data["message"]["stream_url"] == "http://localhost:8000/chat-stream"
        assert fake_llm.operations() == [LLMOperation.TITLE, LLMOperation.CLASSIFY]

        message = auth_client.get(f"/messages/{data['message']['message_id']}").json()["data"]
        assert message["model_key"] == "anthropic/claude-3.5-sonnet"
        assert message["status"] == "pending"
        assert message["turn_index"] == 0

    def test_key_selection_skips_classifier(self, auth_client, registry, fake_llm):
        response = auth_client.post(
            "/chats",
            json={
                "client_id": "chat-1",
                "prompt": "Write a haiku",
                "selection": {"type": "key", "modelKey": "openai/gpt-4o"},
            },
        )

        assert response.status_code == 201
        assert LLMOperation.CLASSIFY not in fake_llm.operations()

    def test_category_selection_uses_best_model(self, auth_client, registry, fake_llm):
        response = auth_client.post(
            "/chats",
            json={
                "client_id": "chat-1",
                "prompt": "Draft a contract clause",
                "selection": {"type": "category", "category": "Legal"},
            },
        )

        message_id = response.json()["data"]["message"]["message_id"]
        message = auth_client.get(f"/messages/{message_id}").json()["data"]
        assert message["model_key"] == "openai/gpt-4o"
        assert LLMOperation.CLASSIFY not in fake_llm.operations()

    def test_duplicate_client_id_is_409(self, auth_client, registry):
        body = {"client_id": "chat-1", "prompt": "Hello"}
        auth_client.post("/chats", json=body)

        response = auth_client.post("/chats", json=body)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "E_CHAT_EXISTS"

    def test_blank_prompt_is_400(self, auth_client, registry):
        response = auth_client.post("/chats", json={"client_id": "chat-1", "prompt": "   "})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_EMPTY_PROMPT"

    def test_title_failure_falls_back(self, auth_client, registry, fake_llm):
        fake_llm.replies[LLMOperation.TITLE] = LLMError(LLMErrorClass.TIMEOUT, "slow")

        response = auth_client.post("/chats", json={"client_id": "chat-1", "prompt": "Hello"})

        assert response.status_code == 201
        assert response.json()["data"]["chat"]["title"] == "New Chat"

    def test_classification_failure_keeps_failed_turn(
        self, auth_client, registry, fake_llm, db_session
    ):
        fake_llm.replies[LLMOperation.CLASSIFY] = '{"category": "Cooking"}'

        response = auth_client.post("/chats", json={"client_id": "chat-1", "prompt": "Pasta?"})

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "E_CLASSIFICATION_FAILED"

        db_session.expire_all()
        chat = db_session.query(Chat).filter_by(client_id="chat-1").one()
        message = db_session.query(Message).filter_by(chat_id=chat.id).one()
        assert message.status == "error"
        assert message.error_code == "E_CLASSIFICATION_FAILED"
        stream = db_session.get(StreamLog, message.stream_id)
        assert stream.status == "error"
        assert stream.error_code == "E_CLASSIFICATION_FAILED"

    def test_unknown_model_key_is_400(self, auth_client, registry):
        response = auth_client.post(
            "/chats",
            json={
                "client_id": "chat-1",
                "prompt": "Hello",
                "selection": {"type": "key", "modelKey": "acme/unknown"},
            },
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_UNKNOWN_MODEL"

    def test_unmapped_category_is_500(self, auth_client, db_session):
        response = auth_client.post(
            "/chats",
            json={
                "client_id": "chat-1",
                "prompt": "Hello",
                "selection": {"type": "category", "category": "Finance"},
            },
        )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_SERVER_ERROR"

    def test_unknown_selection_type_is_400(self, auth_client, registry):
        response = auth_client.post(
            "/chats",
            json={"client_id": "chat-1", "prompt": "Hello", "selection": {"type": "random"}},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"


class TestListAndGetChats:
    def test_pinned_first_then_most_recent(self, auth_client, db_session, viewer_id):
        older = create_chat(db_session, viewer_id, client_id="older")
        newer = create_chat(db_session, viewer_id, client_id="newer")
        pinned = create_chat(db_session, viewer_id, client_id="pinned", pinned=True)
        older.last_message_at = utcnow() - timedelta(hours=2)
        pinned.last_message_at = utcnow() - timedelta(days=3)
        newer.last_message_at = utcnow()
        db_session.commit()

        response = auth_client.get("/chats")

        assert response.status_code == 200
        assert [c["client_id"] for c in response.json()["data"]] == ["pinned", "newer", "older"]

    def test_collaborator_sees_shared_chat(
        self, auth_client, db_session, viewer_id, other_viewer_id
    ):
        create_chat(db_session, other_viewer_id, client_id="shared", collaborators=(viewer_id,))
        create_chat(db_session, other_viewer_id, client_id="private")

        response = auth_client.get("/chats")

        assert [c["client_id"] for c in response.json()["data"]] == ["shared"]

    def test_invisible_chat_is_404(self, auth_client, db_session, other_viewer_id):
        create_chat(db_session, other_viewer_id, client_id="private")

        response = auth_client.get("/chats/private")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_CHAT_NOT_FOUND"

    def test_toggle_pin(self, auth_client, db_session, viewer_id):
        create_chat(db_session, viewer_id, client_id="chat-1")

        first = auth_client.post("/chats/chat-1/pin").json()["data"]
        second = auth_client.post("/chats/chat-1/pin").json()["data"]

        assert first["pinned"] is True
        assert second["pinned"] is False

    def test_requires_authentication(self, client):
        response = client.get("/chats")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"


class TestDeleteChat:
    def test_owner_deletes_chat_and_streams(self, auth_client, db_session, viewer_id):
        chat = create_chat(db_session, viewer_id, client_id="chat-1")
        _, stream = create_turn(db_session, chat, viewer_id, chunks=("partial",))
        stream_id = stream.id

        response = auth_client.delete("/chats/chat-1")

        assert response.status_code == 204
        db_session.expire_all()
        assert db_session.query(Chat).filter_by(client_id="chat-1").first() is None
        assert db_session.scalar(select(StreamLog).where(StreamLog.id == stream_id)) is None

    def test_collaborator_cannot_delete(
        self, auth_client, db_session, viewer_id, other_viewer_id
    ):
        create_chat(db_session, other_viewer_id, client_id="shared", collaborators=(viewer_id,))

        response = auth_client.delete("/chats/shared")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_CHAT_NOT_FOUND"
        other = auth_client.get("/chats/shared", headers=auth_headers(other_viewer_id))
        assert other.status_code == 200


class TestBranchChat:
    def test_branch_copies_turns_up_to_message(self, auth_client, db_session, viewer_id):
        chat = create_chat(db_session, viewer_id, client_id="source", title="Lists")
        first = complete_turn(db_session, chat, viewer_id, content="Q1", answer="A1")
        complete_turn(db_session, chat, viewer_id, content="Q2", answer="A2")

        response = auth_client.post(
            "/chats/branch", json={"message_id": str(first.id), "client_id": "branch"}
        )

        assert response.status_code == 201
        branch = response.json()["data"]
        assert branch["is_branch"] is True
        assert branch["branch_of_id"] == str(chat.id)
        assert branch["title"] == "Lists"

        messages = auth_client.get("/chats/branch/messages").json()["data"]
        assert len(messages) == 1
        assert messages[0]["content"] == "Q1"
        assert messages[0]["status"] == "completed"
        assert messages[0]["stream_id"] is None
        assert [r["content"] for r in messages[0]["responses"]] == ["A1"]
        assert [r["content"] for r in messages[0]["revisions"]] == ["Q1"]

    def test_collaborator_branch_is_owned_by_them(
        self, auth_client, db_session, viewer_id, other_viewer_id
    ):
        chat = create_chat(db_session, other_viewer_id, collaborators=(viewer_id,))
        message = complete_turn(db_session, chat, other_viewer_id)

        branch = auth_client.post(
            "/chats/branch", json={"message_id": str(message.id), "client_id": "mine"}
        ).json()["data"]

        assert branch["owner_id"] == viewer_id
        assert branch["collaborators"] == [viewer_id]

    def test_open_message_cannot_be_branched(self, auth_client, db_session, viewer_id):
        chat = create_chat(db_session, viewer_id)
        message, _ = create_turn(db_session, chat, viewer_id)

        response = auth_client.post(
            "/chats/branch", json={"message_id": str(message.id), "client_id": "branch"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_invisible_message_is_404(self, auth_client, db_session, other_viewer_id):
        chat = create_chat(db_session, other_viewer_id)
        message = complete_turn(db_session, chat, other_viewer_id)

        response = auth_client.post(
            "/chats/branch", json={"message_id": str(message.id), "client_id": "branch"}
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_MESSAGE_NOT_FOUND"
