"""モデル出力テキストを StructuredResponse へ解釈する。"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from llmchat.domain.services.form_schema import form_from_payload
from llmchat.domain.services.json_scanning import (
    is_incomplete_json,
    strip_code_fence,
    unescape_json_fragment,
)
from llmchat.domain.services.safety_gate import parse_safety_assessment
from llmchat.domain.value_objects.structured_response import (
    FormDefinition,
    MediaRef,
    ResponseMeta,
    ResponseProgress,
    StructuredResponse,
    TextBlock,
    TextBlockKind,
)

_LOG = logging.getLogger(__name__)

FALLBACK_RESPONSE_TYPE = "fallback"
UNIFIED_FORM_ID = "form_1"
DEFAULT_HEADING_LEVEL = 2

# スキーマ版ごとのブロック種別対応。新しい版はここに表を足す。
UNIFIED_BLOCK_KINDS: Mapping[str, TextBlockKind] = {
    "text": "paragraph",
    "heading": "heading",
    "info": "info",
    "warning": "warning",
    "success": "success",
    "error": "warning",
    "code": "quote",
}
LEGACY_BLOCK_KINDS: Mapping[str, TextBlockKind] = {
    "paragraph": "paragraph",
    "heading": "heading",
    "info": "info",
    "warning": "warning",
    "error": "error",
    "success": "success",
    "quote": "quote",
    "list": "paragraph",
    "tip": "info",
}

SNIFF_TEXT_FIELDS: tuple[str, ...] = ("content", "text", "message", "response", "answer", "output")
_SNIFF_MAX_DEPTH = 3

_PARTIAL_VALUE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(rf'"{key}"\s*:\s*"((?:[^"\\]|\\.)*)(?:"|\\?$)', re.DOTALL)
    for key in ("content", "text")
)


@dataclass(frozen=True, slots=True)
class InterpretationInput:
    """各解釈戦略が共有する前処理済み入力。"""

    raw: str
    text: str
    incomplete: bool
    payload: object = None
    parsed: bool = False


InterpretationStrategy = Callable[[InterpretationInput], StructuredResponse | None]


def prepare_interpretation_input(content: str | None) -> InterpretationInput | None:
    """囲みを外し、完全性判定と JSON 解析を一度だけ行う。空入力は None。"""
    if content is None or not content.strip():
        return None

    text = strip_code_fence(content)
    if is_incomplete_json(text):
        return InterpretationInput(raw=content, text=text, incomplete=True)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return InterpretationInput(raw=content, text=text, incomplete=False)
    return InterpretationInput(
        raw=content, text=text, incomplete=False, payload=payload, parsed=True
    )


def interpret_incomplete(source: InterpretationInput) -> StructuredResponse | None:
    """途中切れや非 JSON のテキストを読める部分だけの fallback にする。"""
    if not source.incomplete:
        return None
    return fallback_response(extract_partial_text(source.text))


def interpret_unified(source: InterpretationInput) -> StructuredResponse | None:
    """type=response の統一スキーマを解釈する。"""
    payload = source.payload
    if not source.parsed or not isinstance(payload, Mapping) or payload.get("type") != "response":
        return None
    content = payload.get("content")
    if not isinstance(content, Mapping):
        return None
    raw_blocks = content.get("text_blocks")
    if not isinstance(raw_blocks, list) or not raw_blocks:
        return None

    text_blocks = tuple(
        TextBlock(
            kind=UNIFIED_BLOCK_KINDS.get(_text(block.get("type")), "paragraph"),
            content=_text(block.get("content")),
            level=DEFAULT_HEADING_LEVEL if block.get("type") == "heading" else None,
        )
        for block in raw_blocks
        if isinstance(block, Mapping)
    )
    if not text_blocks:
        return None

    forms: tuple[FormDefinition, ...] = ()
    raw_form = content.get("form")
    if isinstance(raw_form, Mapping):
        form = form_from_payload(raw_form, default_id=UNIFIED_FORM_ID)
        if form is None:
            _LOG.warning("Dropped invalid form in unified response.")
        else:
            forms = (form,)

    return StructuredResponse(
        text_blocks=text_blocks,
        meta=ResponseMeta(
            response_type="conversational",
            emotion="neutral",
            progress=_unified_progress(payload.get("progress")),
        ),
        forms=forms,
        media=_parse_media(content.get("media"), source_key="url"),
        suggestions=extract_suggestion_texts(content.get("suggestions")),
        safety=parse_safety_assessment(payload.get("safety")),
    )


def interpret_legacy(source: InterpretationInput) -> StructuredResponse | None:
    """meta.response_type を持つ旧スキーマを解釈する。"""
    payload = source.payload
    if not source.parsed or not isinstance(payload, Mapping):
        return None
    meta = payload.get("meta")
    content = payload.get("content")
    if not isinstance(meta, Mapping) or not isinstance(meta.get("response_type"), str):
        return None
    if not isinstance(content, Mapping):
        return None
    raw_blocks = content.get("text_blocks")
    if not isinstance(raw_blocks, list) or not raw_blocks:
        return None

    text_blocks = tuple(
        _legacy_block(block) for block in raw_blocks if isinstance(block, Mapping)
    )
    if not text_blocks:
        return None

    forms: list[FormDefinition] = []
    raw_forms = content.get("forms")
    if isinstance(raw_forms, list):
        for index, raw_form in enumerate(raw_forms):
            form = (
                form_from_payload(raw_form, default_id=f"form_{index + 1}")
                if isinstance(raw_form, Mapping)
                else None
            )
            if form is None:
                _LOG.warning("Dropped invalid form at index %s in legacy response.", index)
                continue
            forms.append(form)

    next_step = content.get("next_step")
    raw_suggestions = next_step.get("suggestions") if isinstance(next_step, Mapping) else None

    return StructuredResponse(
        text_blocks=text_blocks,
        meta=ResponseMeta(
            response_type=meta["response_type"],
            emotion=_optional_text(meta.get("emotion")),
            progress=_legacy_progress(meta.get("progress")),
        ),
        forms=tuple(forms),
        media=_parse_media(content.get("media"), source_key="src"),
        suggestions=extract_suggestion_texts(raw_suggestions, allow_plain_strings=True),
        safety=parse_safety_assessment(payload.get("safety")),
    )


def interpret_by_field_sniffing(source: InterpretationInput) -> StructuredResponse | None:
    """スキーマ不一致の JSON から代表的なテキスト項目を拾って fallback にする。"""
    if not source.parsed:
        return None
    text = sniff_text(source.payload)
    if not text.strip():
        return None
    return fallback_response(text)


INTERPRETATION_STRATEGIES: tuple[InterpretationStrategy, ...] = (
    interpret_incomplete,
    interpret_unified,
    interpret_legacy,
    interpret_by_field_sniffing,
)


def interpret_response(
    content: str | None,
    *,
    strategies: Sequence[InterpretationStrategy] = INTERPRETATION_STRATEGIES,
) -> StructuredResponse | None:
    """最初に結果を返した戦略の解釈を採用する。どれも該当しなければ None。"""
    source = prepare_interpretation_input(content)
    if source is None:
        return None
    for strategy in strategies:
        result = strategy(source)
        if result is not None:
            return result
    return None


def fallback_response(text: str) -> StructuredResponse:
    """1段落だけの fallback 応答を作る。"""
    return StructuredResponse(
        text_blocks=(TextBlock(kind="paragraph", content=text),),
        meta=ResponseMeta(response_type=FALLBACK_RESPONSE_TYPE),
    )


def extract_partial_text(text: str) -> str:
    """途中切れ JSON から content（無ければ text）の値を拾う。非 JSON はそのまま返す。"""
    stripped = text.strip()
    if not stripped.startswith(("{", "[")):
        return stripped
    for pattern in _PARTIAL_VALUE_PATTERNS:
        values = [unescape_json_fragment(match) for match in pattern.findall(stripped)]
        values = [value for value in values if value.strip()]
        if values:
            return "\n\n".join(values)
    return ""


def extract_suggestion_texts(
    raw_suggestions: object,
    *,
    allow_plain_strings: bool = False,
) -> tuple[str, ...]:
    """{text: str} 形式の提案だけを残す。それ以外は警告して捨てる。"""
    if not isinstance(raw_suggestions, list):
        return ()

    suggestions: list[str] = []
    for item in raw_suggestions:
        if isinstance(item, Mapping) and isinstance(item.get("text"), str):
            text = item["text"]
        elif allow_plain_strings and isinstance(item, str):
            text = item
        else:
            _LOG.warning("Dropped suggestion with unexpected format: %r", item)
            continue
        if text.strip():
            suggestions.append(text)
    return tuple(suggestions)


def sniff_text(value: object, *, depth: int = 0) -> str:
    """content/text/message 等のキーから文字列を集めて連結する。"""
    if depth > _SNIFF_MAX_DEPTH:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "\n\n".join(
            text for item in value if (text := _sniff_item(item, depth=depth + 1))
        )
    if not isinstance(value, Mapping):
        return ""

    texts: list[str] = []
    for key in SNIFF_TEXT_FIELDS:
        field_value = value.get(key)
        if not field_value:
            continue
        if isinstance(field_value, str):
            texts.append(field_value)
        elif isinstance(field_value, list):
            texts.extend(text for item in field_value if (text := _sniff_item(item, depth=depth + 1)))
        elif isinstance(field_value, Mapping):
            nested = sniff_text(field_value, depth=depth + 1)
            if nested:
                texts.append(nested)

    content = value.get("content")
    if isinstance(content, Mapping) and isinstance(content.get("text_blocks"), list):
        for block in content["text_blocks"]:
            if isinstance(block, Mapping) and isinstance(block.get("content"), str) and block["content"]:
                texts.append(block["content"])

    return "\n\n".join(_dedupe(texts))


def _sniff_item(item: object, *, depth: int) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, Mapping):
        for key in ("content", "text"):
            if isinstance(item.get(key), str) and item[key]:
                return item[key]
        return sniff_text(item, depth=depth)
    return ""


def _dedupe(texts: list[str]) -> list[str]:
    # content オブジェクトの再帰と text_blocks 走査で同じ文字列を二重に拾うため。
    seen: set[str] = set()
    unique: list[str] = []
    for text in texts:
        if text not in seen:
            seen.add(text)
            unique.append(text)
    return unique


def _legacy_block(block: Mapping[str, object]) -> TextBlock:
    kind = LEGACY_BLOCK_KINDS.get(_text(block.get("type")), "paragraph")
    level: int | None = None
    if kind == "heading":
        raw_level = block.get("level")
        valid = isinstance(raw_level, int) and not isinstance(raw_level, bool) and 1 <= raw_level <= 6
        level = raw_level if valid else DEFAULT_HEADING_LEVEL
    return TextBlock(kind=kind, content=_text(block.get("content")), level=level)


def _parse_media(raw_media: object, *, source_key: str) -> tuple[MediaRef, ...]:
    if not isinstance(raw_media, list):
        return ()

    media: list[MediaRef] = []
    for item in raw_media:
        if not isinstance(item, Mapping):
            continue
        src = _optional_text(item.get(source_key)) or _optional_text(item.get("src"))
        if src is None:
            continue
        media.append(
            MediaRef(
                kind=_optional_text(item.get("type")) or "image",
                src=src,
                alt=_optional_text(item.get("alt")),
                caption=_optional_text(item.get("caption")),
            )
        )
    return tuple(media)


def _unified_progress(raw_progress: object) -> ResponseProgress | None:
    if not isinstance(raw_progress, Mapping):
        return None
    percentage = _number(raw_progress.get("percentage"))
    if percentage is None:
        return None
    remaining = raw_progress.get("topics_remaining")
    return ResponseProgress(
        percentage=percentage,
        covered_topics=_string_tuple(raw_progress.get("topics_covered")),
        remaining_topics_count=len(remaining) if isinstance(remaining, list) else None,
    )


def _legacy_progress(raw_progress: object) -> ResponseProgress | None:
    if not isinstance(raw_progress, Mapping):
        return None
    percentage = _number(raw_progress.get("percentage"))
    if percentage is None:
        return None
    remaining = raw_progress.get("remaining_topics")
    return ResponseProgress(
        percentage=percentage,
        covered_topics=_string_tuple(raw_progress.get("covered_topics")),
        remaining_topics_count=(
            remaining if isinstance(remaining, int) and not isinstance(remaining, bool) else None
        ),
    )


def _string_tuple(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(item for item in value if isinstance(item, str))


def _number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return value


def _text(value: object) -> str:
    return value if isinstance(value, str) else ""


def _optional_text(value: object) -> str | None:
    return value if isinstance(value, str) and value else None
