"""HTTP API の入出力スキーマ。"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """ヘルスチェックレスポンス。"""

    status: str = "ok"
    provider: str


class ContentRequest(BaseModel):
    """モデル出力テキストを受け取るリクエスト。"""

    content: str = Field(max_length=200_000)


class InterpretResponse(BaseModel):
    """解釈結果。空入力では structured が null になる。"""

    structured: dict[str, Any] | None
    markdown: str | None
    is_fallback: bool
    has_form: bool


class ValidateResponse(BaseModel):
    """スキーマ検証結果。"""

    valid: bool
    errors: list[str]


class CrisisResourcesResponse(BaseModel):
    """危機支援情報。"""

    language: str
    title: str
    emergency: str
    hotlines: list[str]
    message: str
    markdown: str


class FormDetectResponse(BaseModel):
    """フォーム検出結果。"""

    has_form: bool
    form: dict[str, Any] | None


class FormReadableRequest(BaseModel):
    """フォーム回答の整形リクエスト。form_content はフォームを含むアシスタント発話。"""

    attachments: str = Field(min_length=1)
    form_content: str | None = None


class FormReadableResponse(BaseModel):
    """フォーム回答の整形結果。"""

    values: dict[str, str | list[str]]
    readable_text: str


class ChatMessageItem(BaseModel):
    """会話履歴の1メッセージ。"""

    role: Literal["system", "user", "assistant"]
    content: str = Field(max_length=10_000)


class ChatTurnRequest(BaseModel):
    """チャットターン実行リクエスト。"""

    conversation_id: str = Field(min_length=1)
    messages: list[ChatMessageItem] = Field(min_length=1)


class ChatTurnResponse(BaseModel):
    """チャットターン実行レスポンス。"""

    conversation_id: str
    status: Literal["ok", "blocked", "invalid"]
    attempts: int = Field(ge=0)
    response: dict[str, Any]
    markdown: str
    validation_errors: list[str]
    detected_keywords: list[str]


class ErrorResponse(BaseModel):
    """API エラーレスポンス。"""

    error: str
