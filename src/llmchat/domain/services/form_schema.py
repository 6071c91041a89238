"""フォーム定義 payload と内部表現の相互変換。"""

from __future__ import annotations

from collections.abc import Mapping

from llmchat.domain.value_objects.structured_response import (
    FormDefinition,
    FormField,
    FormFieldOption,
)


def parse_form_fields(raw_fields: object) -> tuple[FormField, ...] | None:
    """fields 配列を検証して変換する。1件でも不正なら None を返す。"""
    if not isinstance(raw_fields, list):
        return None

    fields: list[FormField] = []
    for raw_field in raw_fields:
        parsed = _parse_field(raw_field)
        if parsed is None:
            return None
        fields.append(parsed)
    return tuple(fields)


def form_from_payload(
    payload: Mapping[str, object],
    *,
    default_id: str,
) -> FormDefinition | None:
    """フォーム payload を FormDefinition に変換する。fields 不正なら None。"""
    fields = parse_form_fields(payload.get("fields"))
    if fields is None:
        return None

    form_id = payload.get("id")
    return FormDefinition(
        id=form_id if isinstance(form_id, str) and form_id else default_id,
        fields=fields,
        title=_optional_text(payload.get("title")),
        description=_optional_text(payload.get("description")),
        submit_label=_optional_text(_first_present(payload, "submit_label", "submitLabel")),
        content_before=_optional_text(_first_present(payload, "contentBefore", "content_before")),
        content_after=_optional_text(_first_present(payload, "contentAfter", "content_after")),
    )


def form_to_payload(form: FormDefinition) -> dict[str, object]:
    """FormDefinition を payload 形式へ戻す。"""
    payload: dict[str, object] = {
        "id": form.id,
        "fields": [field_to_payload(field) for field in form.fields],
    }
    optional_items = (
        ("title", form.title),
        ("description", form.description),
        ("submit_label", form.submit_label),
        ("contentBefore", form.content_before),
        ("contentAfter", form.content_after),
    )
    for key, value in optional_items:
        if value is not None:
            payload[key] = value
    return payload


def field_to_payload(field: FormField) -> dict[str, object]:
    """FormField を payload 形式へ戻す。"""
    payload: dict[str, object] = {
        "id": field.id,
        "type": field.type,
        "label": field.label,
        "required": field.required,
    }
    if field.options:
        payload["options"] = [
            {"value": option.value, "label": option.label} for option in field.options
        ]
    optional_items = (
        ("placeholder", field.placeholder),
        ("helpText", field.help_text),
        ("min", field.min_value),
        ("max", field.max_value),
    )
    for key, value in optional_items:
        if value is not None:
            payload[key] = value
    return payload


def _parse_field(raw_field: object) -> FormField | None:
    if not isinstance(raw_field, Mapping):
        return None
    field_id = _optional_text(raw_field.get("id"))
    field_type = _optional_text(raw_field.get("type"))
    label = _optional_text(raw_field.get("label"))
    if field_id is None or field_type is None or label is None:
        return None

    options: tuple[FormFieldOption, ...] = ()
    if field_type in ("radio", "checkbox", "select"):
        parsed_options = _parse_options(raw_field.get("options"))
        if not parsed_options:
            return None
        options = parsed_options
    elif field_type not in ("text", "textarea", "number"):
        # 未知の type は汎用描画に回すため、選択肢があれば拾っておく。
        options = _parse_options(raw_field.get("options")) or ()

    return FormField(
        id=field_id,
        type=field_type,
        label=label,
        required=raw_field.get("required") is True,
        options=options,
        placeholder=_optional_text(raw_field.get("placeholder")),
        help_text=_optional_text(_first_present(raw_field, "helpText", "help_text")),
        min_value=_optional_number(raw_field.get("min")),
        max_value=_optional_number(raw_field.get("max")),
    )


def _parse_options(raw_options: object) -> tuple[FormFieldOption, ...] | None:
    if not isinstance(raw_options, list) or not raw_options:
        return None
    options: list[FormFieldOption] = []
    for raw_option in raw_options:
        if not isinstance(raw_option, Mapping):
            return None
        value = _option_value(raw_option.get("value"))
        label = _optional_text(raw_option.get("label"))
        if value is None or label is None:
            return None
        options.append(FormFieldOption(value=value, label=label))
    return tuple(options)


def _option_value(value: object) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return str(value)
    return _optional_text(value)


def _optional_text(value: object) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return value


def _optional_number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return value


def _first_present(payload: Mapping[str, object], *keys: str) -> object:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None
