import json

from llmchat.domain.services.response_rendering import (
    create_error_response,
    load_response_payload,
    structured_response_to_markdown,
    structured_response_to_payload,
)
from llmchat.domain.services.response_interpreter import interpret_response
from llmchat.domain.value_objects.structured_response import (
    ResponseMeta,
    SafetyAssessment,
    StructuredResponse,
    TextBlock,
)


def test_blocks_are_rendered_as_markdown() -> None:
    response = StructuredResponse(
        text_blocks=(
            TextBlock(kind="heading", content="Plan", level=3),
            TextBlock(kind="paragraph", content="Start small."),
            TextBlock(kind="info", content="Breaks help."),
            TextBlock(kind="quote", content="one\ntwo"),
        ),
        meta=ResponseMeta(response_type="conversational"),
    )

    assert structured_response_to_markdown(response) == (
        "### Plan\n\nStart small.\n\nℹ️ **Info**: Breaks help.\n\n> one\n> two"
    )


def test_unsafe_response_starts_with_safety_notice() -> None:
    response = StructuredResponse(
        text_blocks=(TextBlock(kind="paragraph", content="Talk to someone."),),
        meta=ResponseMeta(response_type="conversational"),
        safety=SafetyAssessment(is_safe=False, danger_level="warning", safety_message="Take care."),
    )

    markdown = structured_response_to_markdown(response)

    assert markdown.startswith("⚠️ **Safety Notice**: Take care.\n\n")


def test_error_response_is_supportive_warning() -> None:
    response = create_error_response("Try again later.")

    assert response.text_blocks == (TextBlock(kind="warning", content="Try again later."),)
    assert response.meta.response_type == "error"
    assert response.meta.emotion == "supportive"
    assert structured_response_to_markdown(response) == "⚠️ **Warning**: Try again later."


def test_load_response_payload_accepts_objects_only() -> None:
    assert load_response_payload('```json\n{"type": "response"}\n```') == {"type": "response"}
    assert load_response_payload("[1, 2]") is None
    assert load_response_payload("plain") is None


def test_serialized_response_is_reinterpreted_unchanged() -> None:
    response = create_error_response("Try again later.")

    assert interpret_response(json.dumps(structured_response_to_payload(response))) == response
