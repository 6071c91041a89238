"""StructuredResponse の直列化と Markdown 描画。"""

from __future__ import annotations

import json

from llmchat.domain.services.form_schema import form_to_payload
from llmchat.domain.services.json_scanning import strip_code_fence
from llmchat.domain.value_objects.structured_response import (
    ResponseMeta,
    ResponseProgress,
    SafetyAssessment,
    StructuredResponse,
    TextBlock,
)

_BLOCK_PREFIXES = {
    "info": "ℹ️ **Info**: ",
    "warning": "⚠️ **Warning**: ",
    "error": "🚨 **Important**: ",
    "success": "✅ ",
}


def structured_response_to_payload(response: StructuredResponse) -> dict[str, object]:
    """旧スキーマ形（safety 付き）の辞書に変換する。再解釈で同じ応答に戻る。"""
    content: dict[str, object] = {
        "text_blocks": [_block_to_payload(block) for block in response.text_blocks],
    }
    if response.forms:
        content["forms"] = [form_to_payload(form) for form in response.forms]
    if response.media:
        content["media"] = [
            {
                key: value
                for key, value in (
                    ("type", media.kind),
                    ("src", media.src),
                    ("alt", media.alt),
                    ("caption", media.caption),
                )
                if value is not None
            }
            for media in response.media
        ]
    if response.suggestions:
        content["next_step"] = {"suggestions": list(response.suggestions)}

    return {
        "content": content,
        "meta": _meta_to_payload(response.meta),
        "safety": safety_to_payload(response.safety),
    }


def safety_to_payload(safety: SafetyAssessment) -> dict[str, object]:
    """SafetyAssessment を統一スキーマの safety 形式で返す。"""
    return {
        "is_safe": safety.is_safe,
        "danger_level": safety.danger_level,
        "detected_concerns": list(safety.detected_concerns),
        "requires_intervention": safety.requires_intervention,
        "safety_message": safety.safety_message,
    }


def load_response_payload(content: str) -> dict[str, object] | None:
    """囲みを外して JSON object として読む。object でなければ None。"""
    try:
        payload = json.loads(strip_code_fence(content))
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def structured_response_to_markdown(response: StructuredResponse) -> str:
    """テキストブロックを Markdown に描画する。"""
    sections: list[str] = []
    safety = response.safety
    if not safety.is_safe and safety.safety_message:
        sections.append(f"⚠️ **Safety Notice**: {safety.safety_message}")
    sections.extend(text_block_to_markdown(block) for block in response.text_blocks)
    return "\n\n".join(section for section in sections if section)


def text_block_to_markdown(block: TextBlock) -> str:
    """1ブロックを Markdown 文字列にする。"""
    if block.kind == "heading":
        return f"{'#' * (block.level or 2)} {block.content}"
    if block.kind == "quote":
        return "\n".join(f"> {line}" for line in block.content.split("\n"))
    return f"{_BLOCK_PREFIXES.get(block.kind, '')}{block.content}"


def create_error_response(message: str) -> StructuredResponse:
    """ユーザー向けのエラー応答を作る。"""
    return StructuredResponse(
        text_blocks=(TextBlock(kind="warning", content=message),),
        meta=ResponseMeta(response_type="error", emotion="supportive"),
    )


def _block_to_payload(block: TextBlock) -> dict[str, object]:
    payload: dict[str, object] = {"type": block.kind, "content": block.content}
    if block.level is not None:
        payload["level"] = block.level
    return payload


def _meta_to_payload(meta: ResponseMeta) -> dict[str, object]:
    payload: dict[str, object] = {"response_type": meta.response_type}
    if meta.emotion is not None:
        payload["emotion"] = meta.emotion
    if meta.progress is not None:
        payload["progress"] = _progress_to_payload(meta.progress)
    return payload


def _progress_to_payload(progress: ResponseProgress) -> dict[str, object]:
    payload: dict[str, object] = {
        "percentage": progress.percentage,
        "covered_topics": list(progress.covered_topics),
    }
    if progress.remaining_topics_count is not None:
        payload["remaining_topics"] = progress.remaining_topics_count
    return payload
