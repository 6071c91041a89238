"""応答スキーマ検証・危険度判定・危機支援リソース。"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from llmchat.domain.value_objects.structured_response import DangerLevel, SafetyAssessment

DANGER_LEVELS: tuple[DangerLevel, ...] = ("warning", "critical", "emergency")

DANGER_CATEGORIES: Mapping[str, str] = {
    "suicide": "Suicidal thoughts, plans, or ideation",
    "self_harm": "Cutting, burning, or other self-injury",
    "harm_others": "Threats or plans to harm others",
    "violence": "Violent acts or intentions",
    "sexual_abuse": "Sexual assault, abuse, or exploitation",
    "substance_abuse": "Overdose, addiction crisis",
    "eating_disorder": "Anorexia, bulimia, or extreme behaviors",
    "domestic_violence": "Partner violence or abuse",
    "child_safety": "Child abuse or endangerment",
    "terrorism": "Terrorist plans or activities",
}

_SAFETY_REQUIRED_FIELDS: tuple[str, ...] = (
    "is_safe",
    "danger_level",
    "detected_concerns",
    "requires_intervention",
)


@dataclass(frozen=True, slots=True)
class SchemaValidationResult:
    """検証結果。errors には見つかった不備をすべて並べる。"""

    valid: bool
    errors: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CrisisResources:
    """ロケール別の危機支援情報。"""

    language: str
    title: str
    emergency: str
    hotlines: tuple[str, ...]
    message: str


DEFAULT_CRISIS_LANGUAGE = "en"

CRISIS_RESOURCES: Mapping[str, CrisisResources] = {
    "en": CrisisResources(
        language="en",
        title="🆘 Immediate Help Available",
        emergency="**Emergency Services:** Call 911 (US) or 112 (Europe)",
        hotlines=(
            "National Suicide Prevention Lifeline: 988 (US)",
            "Crisis Text Line: Text HOME to 741741 (US)",
            "Samaritans: 116 123 (UK)",
            "Lifeline: 13 11 14 (Australia)",
        ),
        message="💚 **You are not alone. People want to help you.**",
    ),
    "de": CrisisResources(
        language="de",
        title="🆘 Sofortige Hilfe verfügbar",
        emergency="**Notdienste:** Notruf 112",
        hotlines=(
            "Telefonseelsorge: 0800 111 0 111",
            "Telefonseelsorge: 0800 111 0 222",
            "Kinder- und Jugendtelefon: 116 111",
        ),
        message="💚 **Du bist nicht allein. Menschen wollen dir helfen.**",
    ),
    "fr": CrisisResources(
        language="fr",
        title="🆘 Aide immédiate disponible",
        emergency="**Services d'urgence:** Appelez le 112",
        hotlines=(
            "SOS Amitié: 09 72 39 40 50",
            "Suicide Écoute: 01 45 39 40 00",
            "Fil Santé Jeunes: 0 800 235 236",
        ),
        message="💚 **Vous n'êtes pas seul. Des gens veulent vous aider.**",
    ),
}


def validate_response_payload(payload: object) -> SchemaValidationResult:
    """統一スキーマの必須項目を検証し、不備をすべて収集する。"""
    if not isinstance(payload, Mapping):
        return SchemaValidationResult(valid=False, errors=("Response must be a JSON object",))

    errors: list[str] = []
    for field_name in ("type", "safety", "content", "metadata"):
        if payload.get(field_name) is None:
            errors.append(f"Missing required field: {field_name}")

    response_type = payload.get("type")
    if response_type is not None and response_type != "response":
        errors.append(f"Invalid type: expected 'response', got '{response_type}'")

    errors.extend(_validate_safety(payload.get("safety")))
    errors.extend(_validate_text_blocks(payload.get("content")))

    metadata = payload.get("metadata")
    if not isinstance(metadata, Mapping) or metadata.get("model") is None:
        errors.append("Missing required metadata field: model")

    return SchemaValidationResult(valid=not errors, errors=tuple(errors))


def normalize_danger_level(value: object) -> DangerLevel | None:
    """空文字と null を同一視して危険度を返す。範囲外は ValueError。"""
    if value is None or value == "":
        return None
    if value in DANGER_LEVELS:
        return value  # type: ignore[return-value]
    raise ValueError(f"Invalid danger_level: {value}")


def parse_safety_assessment(raw_safety: object) -> SafetyAssessment:
    """safety 部分を SafetyAssessment に変換する。欠落時は安全扱い。"""
    if not isinstance(raw_safety, Mapping):
        return SafetyAssessment()

    try:
        danger_level = normalize_danger_level(raw_safety.get("danger_level"))
    except ValueError:
        danger_level = None

    concerns = raw_safety.get("detected_concerns")
    detected_concerns = (
        tuple(item for item in concerns if isinstance(item, str) and item)
        if isinstance(concerns, list)
        else ()
    )
    safety_message = raw_safety.get("safety_message")
    is_safe = raw_safety.get("is_safe")

    return SafetyAssessment(
        is_safe=is_safe if isinstance(is_safe, bool) else True,
        danger_level=danger_level,
        detected_concerns=detected_concerns,
        requires_intervention=(
            raw_safety.get("requires_intervention") is True or danger_level == "emergency"
        ),
        safety_message=safety_message if isinstance(safety_message, str) and safety_message else None,
    )


def assess_safety(payload: object) -> SafetyAssessment:
    """応答 payload 全体から safety を取り出して判定する。"""
    if not isinstance(payload, Mapping):
        return SafetyAssessment()
    return parse_safety_assessment(payload.get("safety"))


def requires_safety_intervention(safety: SafetyAssessment) -> bool:
    """介入が必要かを返す。"""
    return safety.requires_intervention or safety.danger_level == "emergency"


def should_block_conversation(safety: SafetyAssessment) -> bool:
    """会話をブロックすべき危険度かを返す。"""
    return safety.danger_level == "emergency"


def get_crisis_resources(language: str | None = None) -> CrisisResources:
    """言語コードに対応する危機支援情報を返す。未対応は既定ロケール。"""
    code = (language or "").strip().lower()[:2]
    return CRISIS_RESOURCES.get(code, CRISIS_RESOURCES[DEFAULT_CRISIS_LANGUAGE])


def format_crisis_resources(language: str | None = None) -> str:
    """危機支援情報を Markdown で返す。"""
    resources = get_crisis_resources(language)
    lines = [
        f"**{resources.title}**",
        "",
        resources.emergency,
        "",
        "**📞 Crisis Hotlines:**",
        *(f"- {hotline}" for hotline in resources.hotlines),
        "",
        resources.message,
    ]
    return "\n".join(lines)


def _validate_safety(safety: object) -> list[str]:
    if safety is None:
        return []
    if not isinstance(safety, Mapping):
        return ["Invalid safety: expected an object"]

    errors = [
        f"Missing required safety field: {field_name}"
        for field_name in _SAFETY_REQUIRED_FIELDS
        if field_name not in safety
    ]
    try:
        normalize_danger_level(safety.get("danger_level"))
    except ValueError as exc:
        errors.append(str(exc))
    return errors


def _validate_text_blocks(content: object) -> list[str]:
    text_blocks = content.get("text_blocks") if isinstance(content, Mapping) else None
    if not isinstance(text_blocks, list):
        return ["Missing or invalid content.text_blocks array"]
    if not text_blocks:
        return ["content.text_blocks must have at least one block"]

    errors: list[str] = []
    for index, block in enumerate(text_blocks):
        if (
            not isinstance(block, Mapping)
            or block.get("type") is None
            or block.get("content") is None
        ):
            errors.append(f"Text block {index} missing required fields (type, content)")
    return errors
