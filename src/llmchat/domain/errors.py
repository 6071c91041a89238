"""LLM 連携で発生する例外群。"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping

_LOG = logging.getLogger(__name__)

_RAW_EXCERPT_LIMIT = 1000

_HTTP_STATUS_MESSAGES: Mapping[int, str] = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


class LlmError(RuntimeError):
    """LLM 連携エラーの基底。context に診断情報を持つ。"""

    def __init__(self, message: str, *, context: Mapping[str, object] | None = None) -> None:
        """メッセージと診断用 context を受け取る。"""
        super().__init__(message)
        self.message = message
        self.context: dict[str, object] = dict(context or {})

    def to_dict(self) -> dict[str, object]:
        """ログ・API 用の辞書表現を返す。"""
        return {
            "error": True,
            "type": type(self).__name__,
            "message": self.message,
            "context": dict(self.context),
        }


class ChatModelConfigurationError(LlmError):
    """モデル接続設定の不備を表す例外。"""


class UpstreamApiError(LlmError):
    """上流モデル API の呼び出し・応答の失敗。ターン全体を失敗させる。"""

    def __init__(
        self,
        message: str,
        *,
        error_type: str,
        raw_payload: object = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """エラー種別と生 payload（切り詰めて保持）を受け取る。"""
        merged = dict(context or {})
        merged["error_type"] = error_type
        super().__init__(message, context=merged)
        self.error_type = error_type
        self.provider = merged.get("provider")
        self.endpoint = merged.get("endpoint")
        self.http_status = merged.get("http_status")
        self.raw_excerpt = _excerpt(raw_payload) if raw_payload is not None else None

    @property
    def has_raw_payload(self) -> bool:
        """生 payload を保持しているかを返す。"""
        return self.raw_excerpt is not None

    def to_dict(self) -> dict[str, object]:
        """生 payload 自体は含めず、有無だけを返す。"""
        data = super().to_dict()
        data["provider"] = self.provider
        data["endpoint"] = self.endpoint
        data["has_raw_payload"] = self.has_raw_payload
        return data

    def log(self) -> None:
        """エラー内容と payload 抜粋をログに出す。"""
        _LOG.error("Upstream API error: type=%s message=%s", self.error_type, self.message)
        if self.raw_excerpt is not None:
            _LOG.error("Upstream API payload: %s", self.raw_excerpt[:500])

    @classmethod
    def no_response(cls) -> UpstreamApiError:
        return cls("LLM API request failed - no response received", error_type="no_response")

    @classmethod
    def invalid_response(cls, details: str, raw_payload: object = None) -> UpstreamApiError:
        return cls(
            f"LLM API returned invalid response: {details}",
            error_type="invalid_response",
            raw_payload=raw_payload,
        )

    @classmethod
    def normalization_failed(
        cls, provider: str, details: str, raw_payload: object = None
    ) -> UpstreamApiError:
        return cls(
            f"Failed to normalize {provider} response: {details}",
            error_type="normalization_failed",
            raw_payload=raw_payload,
            context={"provider": provider},
        )

    @classmethod
    def timeout(cls, timeout_seconds: float, endpoint: str | None = None) -> UpstreamApiError:
        return cls(
            f"LLM API request timed out after {timeout_seconds} seconds",
            error_type="timeout",
            context={"timeout": timeout_seconds, "endpoint": endpoint},
        )

    @classmethod
    def connection_failed(cls, url: str, reason: str | None = None) -> UpstreamApiError:
        message = f"Failed to connect to LLM API: {url}"
        if reason:
            message += f" ({reason})"
        return cls(message, error_type="connection_failed", context={"endpoint": url})

    @classmethod
    def http_error(cls, status_code: int, raw_payload: object = None) -> UpstreamApiError:
        status_message = _HTTP_STATUS_MESSAGES.get(status_code, "Unknown Error")
        return cls(
            f"LLM API returned HTTP {status_code}: {status_message}",
            error_type="http_error",
            raw_payload=raw_payload,
            context={"http_status": status_code},
        )

    @classmethod
    def model_not_found(cls, model: str) -> UpstreamApiError:
        return cls(f"Model not found: {model}", error_type="model_not_found", context={"model": model})

    @classmethod
    def content_filtered(cls, reason: str | None = None) -> UpstreamApiError:
        message = "Content was filtered by the API"
        if reason:
            message += f": {reason}"
        return cls(message, error_type="content_filtered", context={"reason": reason})


def _excerpt(raw_payload: object, max_length: int = _RAW_EXCERPT_LIMIT) -> str:
    """生 payload を文字列化して上限長で切り詰める。"""
    if isinstance(raw_payload, str):
        text = raw_payload
    else:
        try:
            text = json.dumps(raw_payload, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            text = repr(raw_payload)
    if len(text) > max_length:
        return f"{text[:max_length]}... [truncated]"
    return text
