import json

from fastapi.testclient import TestClient

from llmchat.adapters.inbound.http.app import create_app
from llmchat.adapters.outbound.in_memory_components import (
    InMemoryMessageStore,
    ScriptedChatModelAdapter,
)
from llmchat.application.use_cases.chat_turn import ChatTurnUseCase
from llmchat.config import LlmSettings
from llmchat.domain.errors import ChatModelConfigurationError, UpstreamApiError
from llmchat.domain.services.form_extractor import encode_form_submission

_VALID_REPLY = json.dumps(
    {
        "type": "response",
        "safety": {
            "is_safe": True,
            "danger_level": None,
            "detected_concerns": [],
            "requires_intervention": False,
        },
        "content": {"text_blocks": [{"type": "text", "content": "Hello from the model"}]},
        "metadata": {"model": "test-model"},
    }
)
_LEGACY_FORM = json.dumps(
    {
        "type": "form",
        "title": "Fruit",
        "fields": [
            {
                "id": "q1",
                "type": "radio",
                "label": "Pick one",
                "options": [{"value": "a", "label": "Apple"}, {"value": "b", "label": "Banana"}],
            }
        ],
    }
)


def _build_test_client(replies: list[object] | None = None, *, danger_keywords: tuple[str, ...] = ()) -> TestClient:
    use_case = ChatTurnUseCase(
        chat_model=ScriptedChatModelAdapter(replies or []),  # type: ignore[arg-type]
        message_store=InMemoryMessageStore(),
        danger_keywords=danger_keywords,
    )
    app = create_app(settings=LlmSettings(api_key="test-key"), chat_turn_use_case=use_case)
    return TestClient(app)


def _turn_request(content: str = "Hi", conversation_id: str = "c1") -> dict[str, object]:
    return {"conversation_id": conversation_id, "messages": [{"role": "user", "content": content}]}


def test_health_endpoint_reports_provider() -> None:
    response = _build_test_client().get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "provider": "gpustack"}


def test_interpret_returns_structure_and_markdown() -> None:
    response = _build_test_client().post("/api/responses/interpret", json={"content": _VALID_REPLY})

    body = response.json()
    assert response.status_code == 200
    assert body["structured"]["content"]["text_blocks"] == [
        {"type": "paragraph", "content": "Hello from the model"}
    ]
    assert body["markdown"] == "Hello from the model"
    assert body["is_fallback"] is False
    assert body["has_form"] is False


def test_interpret_empty_content_returns_null_structure() -> None:
    body = _build_test_client().post("/api/responses/interpret", json={"content": "  "}).json()

    assert body["structured"] is None
    assert body["markdown"] is None


def test_validate_reports_errors() -> None:
    client = _build_test_client()

    valid = client.post("/api/responses/validate", json={"content": _VALID_REPLY}).json()
    invalid = client.post("/api/responses/validate", json={"content": '{"type": "reply"}'}).json()
    not_json = client.post("/api/responses/validate", json={"content": "hello"}).json()

    assert valid == {"valid": True, "errors": []}
    assert invalid["valid"] is False
    assert "Invalid type: expected 'response', got 'reply'" in invalid["errors"]
    assert not_json == {"valid": False, "errors": ["Response is not a valid JSON object"]}


def test_crisis_resources_fall_back_to_english() -> None:
    client = _build_test_client()

    german = client.get("/api/crisis-resources/de").json()
    unknown = client.get("/api/crisis-resources/zz").json()

    assert german["language"] == "de"
    assert unknown["language"] == "en"
    assert unknown["markdown"].startswith(f"**{unknown['title']}**")


def test_form_detection_and_readable_submission() -> None:
    client = _build_test_client()

    detected = client.post("/api/forms/detect", json={"content": f"Quick question:\n{_LEGACY_FORM}"}).json()
    readable = client.post(
        "/api/forms/readable",
        json={"attachments": encode_form_submission({"q1": "b"}), "form_content": _LEGACY_FORM},
    )
    unreadable = client.post("/api/forms/readable", json={"attachments": "nope"})

    assert detected["has_form"] is True
    assert detected["form"]["id"] == "form_1"
    assert detected["form"]["contentBefore"] == "Quick question:"
    assert readable.status_code == 200
    assert readable.json() == {"values": {"q1": "b"}, "readable_text": "**Fruit**\n\nPick one: Banana"}
    assert unreadable.status_code == 400


def test_chat_message_returns_interpreted_reply() -> None:
    client = _build_test_client([_VALID_REPLY])

    response = client.post("/api/chat/messages", json=_turn_request())

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "ok"
    assert body["attempts"] == 1
    assert body["markdown"] == "Hello from the model"


def test_chat_message_upstream_error_returns_502() -> None:
    client = _build_test_client([UpstreamApiError.http_error(500, "boom")])

    response = client.post("/api/chat/messages", json=_turn_request())

    assert response.status_code == 502
    assert "HTTP 500" in response.json()["detail"]


def test_chat_message_without_credentials_returns_503() -> None:
    client = _build_test_client([ChatModelConfigurationError("LLM_API_KEY が設定されていません。")])

    response = client.post("/api/chat/messages", json=_turn_request())

    assert response.status_code == 503


def test_blocked_conversation_returns_409() -> None:
    client = _build_test_client(danger_keywords=("end it all",))

    first = client.post("/api/chat/messages", json=_turn_request("I want to end it all"))
    second = client.post("/api/chat/messages", json=_turn_request("hello again"))

    assert first.status_code == 200
    assert first.json()["status"] == "blocked"
    assert first.json()["detected_keywords"] == ["end it all"]
    assert second.status_code == 409


def test_chat_request_requires_messages() -> None:
    response = _build_test_client().post("/api/chat/messages", json={"conversation_id": "c1", "messages": []})

    assert response.status_code == 422


def test_chat_stream_emits_chunks_then_done() -> None:
    client = _build_test_client([_VALID_REPLY])

    response = client.post("/api/chat/stream", json=_turn_request())

    events = [
        json.loads(line.removeprefix("data: "))
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]
    chunks = [event for event in events if event["type"] == "chunk"]
    assert response.status_code == 200
    assert "".join(chunk["content"] for chunk in chunks) == _VALID_REPLY
    assert events[-1]["type"] == "done"
    assert events[-1]["status"] == "ok"


def test_chat_stream_reports_upstream_failure_as_event() -> None:
    client = _build_test_client([UpstreamApiError.timeout(30)])

    response = client.post("/api/chat/stream", json=_turn_request())

    last = json.loads(response.text.strip().splitlines()[-1].removeprefix("data: "))
    assert last == {"type": "error", "message": "The assistant is unavailable right now. Please try again."}
