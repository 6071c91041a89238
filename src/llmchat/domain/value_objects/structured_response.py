"""描画可能なアシスタント応答の内部表現。"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

TextBlockKind = Literal["paragraph", "heading", "info", "warning", "error", "success", "quote"]
DangerLevel = Literal["warning", "critical", "emergency"]

CHOICE_FIELD_TYPES: frozenset[str] = frozenset({"radio", "checkbox", "select"})
FREE_INPUT_FIELD_TYPES: frozenset[str] = frozenset({"text", "textarea", "number"})


@dataclass(frozen=True, slots=True)
class TextBlock:
    """描画単位となる1ブロック。"""

    kind: TextBlockKind
    content: str
    level: int | None = None


@dataclass(frozen=True, slots=True)
class MediaRef:
    """画像・動画・音声への参照。"""

    kind: str
    src: str
    alt: str | None = None
    caption: str | None = None


@dataclass(frozen=True, slots=True)
class FormFieldOption:
    """選択肢1件。"""

    value: str
    label: str


@dataclass(frozen=True, slots=True)
class FormField:
    """フォームの入力項目。未知の type も前方互換のため保持する。"""

    id: str
    type: str
    label: str
    required: bool = False
    options: tuple[FormFieldOption, ...] = ()
    placeholder: str | None = None
    help_text: str | None = None
    min_value: float | None = None
    max_value: float | None = None

    @property
    def is_choice(self) -> bool:
        """選択式の項目かを返す。"""
        return self.type in CHOICE_FIELD_TYPES

    def option_label(self, value: str) -> str:
        """value に対応する表示ラベルを返す。見つからなければ value のまま。"""
        for option in self.options:
            if option.value == value:
                return option.label or value
        return value


@dataclass(frozen=True, slots=True)
class FormDefinition:
    """対話中に提示するフォーム定義。"""

    id: str
    fields: tuple[FormField, ...]
    title: str | None = None
    description: str | None = None
    submit_label: str | None = None
    content_before: str | None = None
    content_after: str | None = None


@dataclass(frozen=True, slots=True)
class SafetyAssessment:
    """応答に付随する危険度判定。"""

    is_safe: bool = True
    danger_level: DangerLevel | None = None
    detected_concerns: tuple[str, ...] = ()
    requires_intervention: bool = False
    safety_message: str | None = None

    def __post_init__(self) -> None:
        """emergency は常に介入要とする。"""
        if self.danger_level == "emergency" and not self.requires_intervention:
            object.__setattr__(self, "requires_intervention", True)


@dataclass(frozen=True, slots=True)
class ResponseProgress:
    """トピック進捗。"""

    percentage: float
    covered_topics: tuple[str, ...] = ()
    remaining_topics_count: int | None = None


@dataclass(frozen=True, slots=True)
class ResponseMeta:
    """応答種別と補助情報。"""

    response_type: str
    emotion: str | None = None
    progress: ResponseProgress | None = None


@dataclass(frozen=True, slots=True)
class StructuredResponse:
    """1ターン分の解釈済み応答。"""

    text_blocks: tuple[TextBlock, ...]
    meta: ResponseMeta
    forms: tuple[FormDefinition, ...] = ()
    media: tuple[MediaRef, ...] = ()
    suggestions: tuple[str, ...] = ()
    safety: SafetyAssessment = field(default_factory=SafetyAssessment)

    @property
    def is_fallback(self) -> bool:
        """フォールバック解釈かを返す。"""
        return self.meta.response_type == "fallback"


@dataclass(frozen=True, slots=True)
class FormSubmissionRecord:
    """フォーム回答。ユーザー発話に添付され、以後変更されない。"""

    values: Mapping[str, str | tuple[str, ...]]
    readable_text: str
