import pytest

from llmchat.domain.services.safety_gate import (
    assess_safety,
    format_crisis_resources,
    get_crisis_resources,
    normalize_danger_level,
    parse_safety_assessment,
    requires_safety_intervention,
    should_block_conversation,
    validate_response_payload,
)
from llmchat.domain.value_objects.structured_response import SafetyAssessment


def _valid_payload() -> dict[str, object]:
    return {
        "type": "response",
        "safety": {
            "is_safe": True,
            "danger_level": None,
            "detected_concerns": [],
            "requires_intervention": False,
        },
        "content": {"text_blocks": [{"type": "text", "content": "Hello"}]},
        "metadata": {"model": "test-model"},
    }


def test_valid_payload_passes() -> None:
    result = validate_response_payload(_valid_payload())

    assert result.valid
    assert result.errors == ()


def test_all_missing_fields_are_collected() -> None:
    result = validate_response_payload({})

    assert not result.valid
    assert result.errors == (
        "Missing required field: type",
        "Missing required field: safety",
        "Missing required field: content",
        "Missing required field: metadata",
        "Missing or invalid content.text_blocks array",
        "Missing required metadata field: model",
    )


def test_invalid_values_are_reported_together() -> None:
    payload = _valid_payload()
    payload["type"] = "reply"
    payload["safety"]["danger_level"] = "severe"  # type: ignore[index]
    payload["content"] = {"text_blocks": [{"type": "text"}, {"type": "info", "content": "ok"}]}

    result = validate_response_payload(payload)

    assert result.errors == (
        "Invalid type: expected 'response', got 'reply'",
        "Invalid danger_level: severe",
        "Text block 0 missing required fields (type, content)",
    )


def test_empty_text_blocks_and_partial_safety_are_rejected() -> None:
    payload = _valid_payload()
    payload["safety"] = {"is_safe": True}
    payload["content"] = {"text_blocks": []}

    result = validate_response_payload(payload)

    assert "content.text_blocks must have at least one block" in result.errors
    assert "Missing required safety field: danger_level" in result.errors
    assert "Missing required safety field: detected_concerns" in result.errors
    assert "Missing required safety field: requires_intervention" in result.errors


def test_non_object_payload_is_invalid() -> None:
    assert not validate_response_payload(["not", "an", "object"]).valid


def test_empty_string_and_null_danger_levels_are_equivalent() -> None:
    payload = _valid_payload()
    payload["safety"]["danger_level"] = ""  # type: ignore[index]

    assert validate_response_payload(payload).valid
    assert normalize_danger_level("") is None
    assert normalize_danger_level(None) is None
    with pytest.raises(ValueError, match="Invalid danger_level"):
        normalize_danger_level("high")


def test_emergency_alone_forces_intervention() -> None:
    safety = parse_safety_assessment({"is_safe": True, "danger_level": "emergency"})

    assert safety.requires_intervention is True
    assert requires_safety_intervention(safety)
    assert should_block_conversation(safety)
    assert SafetyAssessment(danger_level="emergency").requires_intervention is True


def test_explicit_flag_requires_intervention_without_blocking() -> None:
    safety = parse_safety_assessment(
        {"is_safe": False, "danger_level": "critical", "requires_intervention": True}
    )

    assert requires_safety_intervention(safety)
    assert not should_block_conversation(safety)


def test_unsafe_without_danger_level_does_not_escalate() -> None:
    safety = parse_safety_assessment({"is_safe": False, "danger_level": None})

    assert safety.is_safe is False
    assert safety.requires_intervention is False
    assert not should_block_conversation(safety)


def test_assess_safety_defaults_to_safe() -> None:
    assert assess_safety({"type": "response"}) == SafetyAssessment()
    assert assess_safety(None) == SafetyAssessment()
    assert assess_safety({"safety": {"danger_level": "unknown"}}).danger_level is None


def test_crisis_resources_lookup() -> None:
    assert get_crisis_resources("de").language == "de"
    assert get_crisis_resources("de-CH").language == "de"
    assert get_crisis_resources("FR").language == "fr"
    assert get_crisis_resources("xx").language == "en"
    assert get_crisis_resources(None).language == "en"


def test_format_crisis_resources_renders_markdown() -> None:
    text = format_crisis_resources("fr")

    assert text.startswith("**🆘 Aide immédiate disponible**\n\n**Services d'urgence:**")
    assert "**📞 Crisis Hotlines:**\n- SOS Amitié: 09 72 39 40 50\n" in text
    assert text.endswith("💚 **Vous n'êtes pas seul. Des gens veulent vous aider.**")
