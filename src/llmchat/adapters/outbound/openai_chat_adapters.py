"""OpenAI SDK で OpenAI 互換エンドポイントを呼ぶチャットモデルアダプタ。"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Sequence
from typing import Any

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    NotFoundError,
    OpenAI,
)

from llmchat.adapters.outbound.provider_dialects import ProviderDialectRegistry
from llmchat.config import LlmSettings
from llmchat.domain.errors import ChatModelConfigurationError, UpstreamApiError
from llmchat.domain.value_objects.model_reply import CanonicalModelReply, ChatMessage, StreamEvent
from llmchat.ports.outbound.chat_model_port import ChatModelPort
from llmchat.ports.outbound.provider_dialect_port import ProviderDialectPort

_LOG = logging.getLogger(__name__)


class OpenAICompatibleChatModelAdapter(ChatModelPort):
    """生 JSON / SSE 行を検出済み方言で正規化して返す。"""

    def __init__(
        self,
        settings: LlmSettings,
        *,
        registry: ProviderDialectRegistry | None = None,
        client: Any | None = None,
    ) -> None:
        """接続設定と方言レジストリを受け取る。client はテスト用の差し替え口。"""
        self._settings = settings
        self._dialect: ProviderDialectPort = (registry or ProviderDialectRegistry()).detect(
            settings.base_url
        )
        self._client = client

    @property
    def dialect(self) -> ProviderDialectPort:
        """使用中の方言を返す。"""
        return self._dialect

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._settings.api_key:
                raise ChatModelConfigurationError("LLM_API_KEY が設定されていません。")
            self._client = OpenAI(
                api_key=self._settings.api_key,
                base_url=self._settings.base_url,
                timeout=self._settings.timeout_seconds,
                max_retries=0,
            )
        return self._client

    def complete(self, messages: Sequence[ChatMessage]) -> CanonicalModelReply:
        """1回分の応答を取得し、方言で正規化する。"""
        client = self._get_client()
        try:
            raw_response = client.chat.completions.with_raw_response.create(
                **self._request_params(messages)
            )
        except APIError as exc:
            raise _translate_openai_error(exc, self._settings) from exc
        try:
            payload = raw_response.http_response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise UpstreamApiError.invalid_response(
                "response body is not valid JSON", raw_response.http_response.text
            ) from exc

        reply = self._dialect.normalize_response(payload)
        if reply.finish_reason == "content_filter" and not reply.content.strip():
            raise UpstreamApiError.content_filtered("finish_reason=content_filter")
        return reply

    def stream(self, messages: Sequence[ChatMessage]) -> Iterator[StreamEvent]:
        """SSE 行を1行ずつ正規化して返す。ジェネレータを閉じると接続も閉じる。"""
        client = self._get_client()
        try:
            with client.chat.completions.with_streaming_response.create(
                **self._request_params(messages),
                stream=True,
            ) as response:
                for line in response.iter_lines():
                    event = self._dialect.normalize_stream_chunk(line)
                    if event is not None:
                        yield event
        except APIError as exc:
            raise _translate_openai_error(exc, self._settings) from exc

    def _request_params(self, messages: Sequence[ChatMessage]) -> dict[str, Any]:
        return {
            "model": self._settings.model,
            "messages": [{"role": message.role, "content": message.content} for message in messages],
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
        }


def _translate_openai_error(exc: APIError, settings: LlmSettings) -> Exception:
    """OpenAI SDK 例外をドメイン例外へ変換する。上流エラーはここでログに出す。"""
    if isinstance(exc, AuthenticationError):
        return ChatModelConfigurationError(
            "LLM API の認証に失敗しました。LLM_API_KEY を確認してください。"
        )
    if isinstance(exc, APITimeoutError):
        error = UpstreamApiError.timeout(settings.timeout_seconds, settings.base_url)
    elif isinstance(exc, APIConnectionError):
        error = UpstreamApiError.connection_failed(settings.base_url, exc.__class__.__name__)
    elif isinstance(exc, NotFoundError):
        error = UpstreamApiError.model_not_found(settings.model)
    elif isinstance(exc, APIStatusError):
        error = UpstreamApiError.http_error(exc.status_code, exc.body)
    else:
        _LOG.debug("Unclassified OpenAI API error: %s", exc.__class__.__name__)
        error = UpstreamApiError.invalid_response(str(exc), exc.body)
    error.log()
    return error
