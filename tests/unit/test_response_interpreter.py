import json

from llmchat.domain.services.response_interpreter import (
    interpret_by_field_sniffing,
    interpret_legacy,
    interpret_response,
    interpret_unified,
    prepare_interpretation_input,
)
from llmchat.domain.services.response_rendering import structured_response_to_payload
from llmchat.domain.value_objects.structured_response import SafetyAssessment, TextBlock


def _unified_document() -> dict[str, object]:
    return {
        "type": "response",
        "safety": {
            "is_safe": True,
            "danger_level": None,
            "detected_concerns": [],
            "requires_intervention": False,
            "safety_message": None,
        },
        "content": {
            "text_blocks": [
                {"type": "heading", "content": "Welcome"},
                {"type": "text", "content": 'Line one\nwith "quotes"', "style": "default"},
                {"type": "error", "content": "Careful"},
                {"type": "code", "content": "print(1)"},
            ],
            "form": {
                "title": "Quick check",
                "fields": [
                    {
                        "id": "q1",
                        "type": "radio",
                        "label": "Pick one",
                        "options": [
                            {"value": "a", "label": "Apple"},
                            {"value": "b", "label": "Banana"},
                        ],
                    }
                ],
                "submit_label": "Send",
            },
            "media": [{"type": "image", "url": "https://example.org/a.png", "alt": "A"}],
            "suggestions": [{"text": "Tell me more"}],
        },
        "progress": {"percentage": 50, "topics_covered": ["intro"], "topics_remaining": ["a", "b"]},
        "metadata": {"model": "test-model"},
    }


def _legacy_document() -> dict[str, object]:
    return {
        "meta": {
            "response_type": "educational",
            "emotion": "encouraging",
            "progress": {"percentage": 25, "covered_topics": ["x"], "remaining_topics": 3},
        },
        "content": {
            "text_blocks": [
                {"type": "heading", "content": "Title", "level": 3},
                {"type": "tip", "content": "Try this"},
                {"type": "list", "content": "- a"},
                {"type": "error", "content": "Stop"},
            ],
            "forms": [{"type": "form", "fields": [{"id": "name", "type": "text", "label": "Name"}]}],
            "media": [{"type": "video", "src": "clip.mp4"}],
            "next_step": {"suggestions": ["Yes", {"text": "No"}, 3]},
        },
    }


def test_unified_response_is_mapped_to_internal_blocks() -> None:
    response = interpret_response(json.dumps(_unified_document()))

    assert response is not None
    assert response.text_blocks == (
        TextBlock(kind="heading", content="Welcome", level=2),
        TextBlock(kind="paragraph", content='Line one\nwith "quotes"'),
        TextBlock(kind="warning", content="Careful"),
        TextBlock(kind="quote", content="print(1)"),
    )
    assert response.meta.response_type == "conversational"
    assert response.meta.emotion == "neutral"
    assert response.meta.progress is not None
    assert response.meta.progress.percentage == 50
    assert response.meta.progress.covered_topics == ("intro",)
    assert response.meta.progress.remaining_topics_count == 2
    assert response.media[0].src == "https://example.org/a.png"
    assert response.suggestions == ("Tell me more",)
    assert response.safety == SafetyAssessment()
    assert not response.is_fallback


def test_unified_form_gets_synthetic_id() -> None:
    response = interpret_response(json.dumps(_unified_document()))

    assert response is not None
    assert len(response.forms) == 1
    form = response.forms[0]
    assert form.id == "form_1"
    assert form.title == "Quick check"
    assert form.submit_label == "Send"
    assert form.fields[0].option_label("b") == "Banana"


def test_invalid_unified_form_is_dropped_but_text_survives(caplog) -> None:
    document = _unified_document()
    document["content"]["form"] = {  # type: ignore[index]
        "fields": [{"id": "q1", "type": "radio", "label": "Pick one", "options": []}]
    }

    response = interpret_response(json.dumps(document))

    assert response is not None
    assert response.forms == ()
    assert response.text_blocks[0].content == "Welcome"
    assert "Dropped invalid form" in caplog.text


def test_only_text_object_suggestions_are_kept(caplog) -> None:
    document = _unified_document()
    document["content"]["suggestions"] = [{"text": "A"}, "B", {"label": "C"}]  # type: ignore[index]

    response = interpret_response(json.dumps(document))

    assert response is not None
    assert response.suggestions == ("A",)
    assert "Dropped suggestion" in caplog.text


def test_legacy_response_is_interpreted() -> None:
    response = interpret_response(json.dumps(_legacy_document()))

    assert response is not None
    assert [block.kind for block in response.text_blocks] == ["heading", "info", "paragraph", "error"]
    assert response.text_blocks[0].level == 3
    assert response.meta.response_type == "educational"
    assert response.meta.emotion == "encouraging"
    assert response.meta.progress is not None
    assert response.meta.progress.remaining_topics_count == 3
    assert response.forms[0].id == "form_1"
    assert response.forms[0].fields[0].type == "text"
    assert response.media[0].kind == "video"
    assert response.media[0].src == "clip.mp4"
    assert response.suggestions == ("Yes", "No")


def test_fenced_json_matches_unfenced_json() -> None:
    raw = json.dumps(_unified_document())

    assert interpret_response(f"```json\n{raw}\n```") == interpret_response(raw)
    assert interpret_response(f"```\n{raw}\n```") == interpret_response(raw)


def test_empty_input_returns_none() -> None:
    assert interpret_response("") is None
    assert interpret_response("   \n") is None
    assert interpret_response(None) is None


def test_every_truncation_yields_a_non_empty_fallback() -> None:
    raw = json.dumps(_unified_document())

    for offset in range(1, len(raw)):
        response = interpret_response(raw[:offset])

        assert response is not None, offset
        assert response.is_fallback, offset
        assert len(response.text_blocks) == 1, offset


def test_truncated_stream_shows_partial_content() -> None:
    partial = (
        '{"type":"response","content":{"text_blocks":['
        '{"type":"text","content":"Line\\nbreak"},{"type":"text","content":"Sec'
    )

    response = interpret_response(partial)

    assert response is not None
    assert response.meta.response_type == "fallback"
    assert response.text_blocks == (TextBlock(kind="paragraph", content="Line\nbreak\n\nSec"),)


def test_truncated_fragment_without_text_yields_empty_paragraph() -> None:
    response = interpret_response('{"type":"resp')

    assert response is not None
    assert response.text_blocks == (TextBlock(kind="paragraph", content=""),)


def test_plain_prose_becomes_fallback_paragraph() -> None:
    response = interpret_response("Just plain words.")

    assert response is not None
    assert response.is_fallback
    assert response.text_blocks[0].content == "Just plain words."


def test_balanced_but_invalid_json_returns_none() -> None:
    assert interpret_response('{"answer": nope}') is None


def test_unknown_json_is_field_sniffed() -> None:
    assert interpret_response('{"message": "Hi there", "meta": 1}').text_blocks[0].content == "Hi there"
    assert interpret_response('{"output": {"text": "Nested"}}').text_blocks[0].content == "Nested"

    sniffed = interpret_response('{"content": {"text_blocks": [{"type": "paragraph", "content": "A"}]}}')
    assert sniffed is not None
    assert sniffed.is_fallback
    assert sniffed.text_blocks[0].content == "A"


def test_json_without_text_returns_none() -> None:
    assert interpret_response('{"foo": 1, "bar": [true]}') is None


def test_strategies_are_independent() -> None:
    unified_input = prepare_interpretation_input(json.dumps(_unified_document()))
    legacy_input = prepare_interpretation_input(json.dumps(_legacy_document()))

    assert unified_input is not None
    assert legacy_input is not None
    assert interpret_legacy(unified_input) is None
    assert interpret_unified(legacy_input) is None
    assert interpret_by_field_sniffing(unified_input) is not None
    assert interpret_response(json.dumps(_legacy_document()), strategies=()) is None


def test_reinterpreting_serialized_output_is_idempotent() -> None:
    document = _unified_document()
    document["safety"] = {  # emergency without explicit intervention flag
        "is_safe": False,
        "danger_level": "emergency",
        "detected_concerns": ["suicide"],
        "safety_message": "We are here for you.",
    }
    first = interpret_response(json.dumps(document))
    assert first is not None

    second = interpret_response(json.dumps(structured_response_to_payload(first)))

    assert second == first
    assert second.safety.requires_intervention is True
