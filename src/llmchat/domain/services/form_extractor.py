"""メッセージ中のフォーム検出と、フォーム回答の読み取り。"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import replace

from llmchat.domain.services.form_schema import form_from_payload
from llmchat.domain.services.json_scanning import extract_embedded_object
from llmchat.domain.services.response_interpreter import interpret_response
from llmchat.domain.value_objects.structured_response import (
    FREE_INPUT_FIELD_TYPES,
    FormDefinition,
    FormSubmissionRecord,
)

_LOG = logging.getLogger(__name__)

LEGACY_FORM_ID = "form_1"
FORM_SUBMISSION_TYPE = "form_submission"
NO_SELECTIONS_TEXT = "Form submitted (no selections)"

FormValues = Mapping[str, str | tuple[str, ...]]


def parse_legacy_form(content: str | None) -> FormDefinition | None:
    """{type: form} 形式のフォームを、単独 JSON か散文埋め込みのどちらからでも取り出す。"""
    if not content or not content.strip():
        return None

    try:
        payload = json.loads(content.strip())
    except json.JSONDecodeError:
        payload = None
    if _is_legacy_form_payload(payload):
        return form_from_payload(payload, default_id=LEGACY_FORM_ID)

    embedded = extract_embedded_object(content)
    if embedded is None or not _is_legacy_form_payload(embedded.value):
        return None
    form = form_from_payload(embedded.value, default_id=LEGACY_FORM_ID)
    if form is None:
        return None
    return replace(
        form,
        content_before=form.content_before or embedded.text_before or None,
        content_after=form.content_after or embedded.text_after or None,
    )


def extract_form_from_message(content: str | None) -> FormDefinition | None:
    """旧形式・統一形式のどちらかに含まれるフォームを返す。"""
    legacy_form = parse_legacy_form(content)
    if legacy_form is not None:
        return legacy_form
    response = interpret_response(content)
    if response is None or not response.forms:
        return None
    return response.forms[0]


def message_has_form(content: str | None) -> bool:
    """メッセージがフォームを含むかを返す。自由入力の可否判定に使う。"""
    if parse_legacy_form(content) is not None:
        return True
    response = interpret_response(content)
    return response is not None and bool(response.forms)


def parse_form_submission_values(attachments: str | None) -> dict[str, str | tuple[str, ...]] | None:
    """添付 JSON からフォーム回答の values を読む。過去の3種類の格納形式に対応する。"""
    if not attachments or not attachments.strip():
        return None
    try:
        parsed = json.loads(attachments)
    except json.JSONDecodeError:
        return None

    submission = _as_submission(parsed)
    if submission is None and isinstance(parsed, list) and parsed:
        first_item = parsed[0]
        inner_path = first_item.get("path") if isinstance(first_item, Mapping) else None
        if isinstance(inner_path, str):
            submission = _as_submission(_loads_or_none(inner_path))
    if submission is None and isinstance(parsed, str):
        submission = _as_submission(_loads_or_none(parsed))

    if submission is None:
        return None
    return _normalize_values(submission["values"])


def reconcile_form_submission(
    attachments: str | None,
    form: FormDefinition | None = None,
) -> FormSubmissionRecord | None:
    """添付の回答をフォーム定義と突き合わせ、読みやすい文面を付けて返す。"""
    values = parse_form_submission_values(attachments)
    if values is None:
        return None
    if form is None:
        _LOG.debug("Form definition unavailable; rendering raw submission values.")
        return FormSubmissionRecord(values=values, readable_text=_format_raw_values(values))
    return FormSubmissionRecord(values=values, readable_text=format_form_selections(form, values))


def format_form_selections(form: FormDefinition, values: FormValues) -> str:
    """回答を「ラベル: 値」の行に整形する。選択肢は表示ラベルを使う。"""
    lines: list[str] = []
    for field in form.fields:
        value = values.get(field.id)
        if not value:
            continue
        if field.type in FREE_INPUT_FIELD_TYPES:
            if isinstance(value, str) and value.strip():
                lines.append(f"{field.label}: {value}")
            continue

        selected = (value,) if isinstance(value, str) else value
        labels = [field.option_label(item) for item in selected if item]
        if labels:
            lines.append(f"{field.label}: {', '.join(labels)}")

    if not lines:
        return NO_SELECTIONS_TEXT
    if form.title:
        return "\n".join([f"**{form.title}**", "", *lines])
    return "\n".join(lines)


def encode_form_submission(values: FormValues) -> str:
    """回答を添付用の JSON 文字列にする。"""
    return json.dumps(
        {
            "type": FORM_SUBMISSION_TYPE,
            "values": {
                key: list(value) if isinstance(value, tuple) else value
                for key, value in values.items()
            },
        },
        ensure_ascii=False,
    )


def build_form_submission(form: FormDefinition, values: FormValues) -> FormSubmissionRecord:
    """送信時点の回答レコードを作る。"""
    normalized = _normalize_values(values)
    return FormSubmissionRecord(
        values=normalized,
        readable_text=format_form_selections(form, normalized),
    )


def _is_legacy_form_payload(payload: object) -> bool:
    return (
        isinstance(payload, Mapping)
        and payload.get("type") == "form"
        and isinstance(payload.get("fields"), list)
    )


def _as_submission(value: object) -> Mapping[str, object] | None:
    if (
        isinstance(value, Mapping)
        and value.get("type") == FORM_SUBMISSION_TYPE
        and isinstance(value.get("values"), Mapping)
    ):
        return value
    return None


def _loads_or_none(text: str) -> object:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _normalize_values(raw_values: object) -> dict[str, str | tuple[str, ...]]:
    values: dict[str, str | tuple[str, ...]] = {}
    if not isinstance(raw_values, Mapping):
        return values
    for key, value in raw_values.items():
        if isinstance(value, list | tuple):
            values[str(key)] = tuple(_scalar_text(item) for item in value if item is not None)
        elif value is not None:
            values[str(key)] = _scalar_text(value)
    return values


def _scalar_text(value: object) -> str:
    return value if isinstance(value, str) else str(value)


def _format_raw_values(values: FormValues) -> str:
    lines = [
        f"{key}: {', '.join(value) if isinstance(value, tuple) else value}"
        for key, value in values.items()
        if value
    ]
    return "\n".join(lines) if lines else NO_SELECTIONS_TEXT
