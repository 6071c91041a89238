"""OpenAI 互換 API の方言実装と、接続先 URL からの選択レジストリ。"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping

from llmchat.domain.errors import UpstreamApiError
from llmchat.domain.value_objects.model_reply import (
    FINISH_REASONS,
    CanonicalModelReply,
    StreamDoneMarker,
    StreamEvent,
    StreamTextDelta,
    StreamUsageMarker,
    TokenUsage,
)
from llmchat.ports.outbound.provider_dialect_port import ProviderDialectPort

_LOG = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data: "
STREAM_DONE_SENTINEL = "[DONE]"


class OpenAICompatibleDialect:
    """choices[0].message 形式の共通処理。方言差分はサブクラスで上書きする。"""

    provider_id = "openai_compatible"
    provider_name = "OpenAI-compatible API"
    host_markers: tuple[str, ...] = ()

    def can_handle(self, base_url: str) -> bool:
        """接続先 URL にホスト名が含まれるかで判定する。"""
        return any(marker in base_url for marker in self.host_markers)

    def normalize_response(self, raw_response: Mapping[str, object] | None) -> CanonicalModelReply:
        """choices[0].message から正規化済み応答を組み立てる。"""
        if not raw_response:
            raise UpstreamApiError.no_response()
        if not isinstance(raw_response, Mapping):
            raise UpstreamApiError.invalid_response("response body is not a JSON object", raw_response)

        choice, message = _first_choice_message(raw_response)
        if not isinstance(message.get("content"), str) or not isinstance(message.get("role"), str):
            raise UpstreamApiError.invalid_response(
                f"{self.provider_name} response missing required field: "
                "choices.0.message.content / choices.0.message.role",
                raw_response,
            )

        try:
            return CanonicalModelReply(
                content=message["content"],
                role=message["role"],
                finish_reason=_finish_reason(choice.get("finish_reason")),
                usage=_token_usage(raw_response.get("usage")),
                reasoning=self.extract_reasoning(message),
                raw=raw_response,
            )
        except (TypeError, ValueError) as exc:
            raise UpstreamApiError.normalization_failed(
                self.provider_name, str(exc), raw_response
            ) from exc

    def extract_reasoning(self, message: Mapping[str, object]) -> str | None:
        """推論テキストを返す。基本形式は持たない。"""
        return None

    def normalize_stream_chunk(self, raw_line: str) -> StreamEvent | None:
        """SSE 1行をテキスト増分・使用量・終端のいずれかに変換する。"""
        line = raw_line.strip()
        if not line:
            return None
        data = line[len(SSE_DATA_PREFIX) :] if line.startswith(SSE_DATA_PREFIX) else line
        if data.strip() == STREAM_DONE_SENTINEL:
            return StreamDoneMarker()

        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            return None
        if not isinstance(parsed, Mapping) or not parsed:
            return None

        if parsed.get("error") is not None:
            return StreamDoneMarker(finish_reason="error", error=_error_text(parsed["error"]))

        choice = _first_stream_choice(parsed)
        delta = choice.get("delta")
        if isinstance(delta, Mapping):
            text = delta.get("content")
            if isinstance(text, str) and text:
                return StreamTextDelta(text=text)

        usage = parsed.get("usage")
        if isinstance(usage, Mapping) and _is_int(usage.get("total_tokens")):
            return StreamUsageMarker(total_tokens=usage["total_tokens"])

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            return StreamDoneMarker(finish_reason=str(finish_reason))
        return None


class GpuStackDialect(OpenAICompatibleDialect):
    """GPUStack（基本形式）。"""

    provider_id = "gpustack"
    provider_name = "GPUStack"
    host_markers = ("gpustack.unibe.ch",)


class BfhInferenceDialect(OpenAICompatibleDialect):
    """BFH Inference API（推論テキスト付きの拡張形式）。"""

    provider_id = "bfh"
    provider_name = "BFH Inference API"
    host_markers = ("inference.mlmp.ti.bfh.ch",)

    def extract_reasoning(self, message: Mapping[str, object]) -> str | None:
        """reasoning_content、無ければ provider_specific_fields.reasoning を返す。"""
        reasoning = message.get("reasoning_content")
        if isinstance(reasoning, str) and reasoning:
            return reasoning
        specific = message.get("provider_specific_fields")
        if isinstance(specific, Mapping) and isinstance(specific.get("reasoning"), str):
            return specific["reasoning"]
        return None


class ProviderDialectRegistry:
    """登録済み方言から接続先に合うものを選ぶ。先頭の登録が既定になる。"""

    def __init__(self, dialects: Iterable[ProviderDialectPort] | None = None) -> None:
        """方言を登録順に受け取る。省略時は GPUStack と BFH。"""
        self._dialects: list[ProviderDialectPort] = []
        for dialect in dialects if dialects is not None else (GpuStackDialect(), BfhInferenceDialect()):
            self.register(dialect)
        if not self._dialects:
            raise ValueError("方言を1つ以上登録してください。")

    @property
    def default(self) -> ProviderDialectPort:
        """既定の方言を返す。"""
        return self._dialects[0]

    def register(self, dialect: ProviderDialectPort) -> None:
        """方言を追加する。同じ provider_id は無視する。"""
        if self.get(dialect.provider_id) is not None:
            _LOG.info("Provider dialect already registered: id=%s", dialect.provider_id)
            return
        self._dialects.append(dialect)

    def get(self, provider_id: str) -> ProviderDialectPort | None:
        """provider_id で方言を引く。"""
        for dialect in self._dialects:
            if dialect.provider_id == provider_id:
                return dialect
        return None

    def detect(self, base_url: str) -> ProviderDialectPort:
        """接続先に合う方言を返す。該当なしは既定方言（失敗しない）。"""
        for dialect in self._dialects:
            if dialect.can_handle(base_url):
                return dialect
        _LOG.info(
            "No specific provider dialect for url=%s; using default=%s",
            base_url,
            self.default.provider_id,
        )
        return self.default

    def describe(self) -> dict[str, object]:
        """登録状況を返す。"""
        return {
            "total": len(self._dialects),
            "default_provider": self.default.provider_id,
            "providers": [
                {"id": dialect.provider_id, "name": dialect.provider_name}
                for dialect in self._dialects
            ],
        }


def _first_choice_message(
    raw_response: Mapping[str, object],
) -> tuple[Mapping[str, object], Mapping[str, object]]:
    choices = raw_response.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], Mapping):
        raise UpstreamApiError.invalid_response("response has no choices", raw_response)
    choice = choices[0]
    message = choice.get("message")
    if not isinstance(message, Mapping):
        raise UpstreamApiError.invalid_response("choices.0.message is missing", raw_response)
    return choice, message


def _first_stream_choice(parsed: Mapping[str, object]) -> Mapping[str, object]:
    choices = parsed.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
        return choices[0]
    return {}


def _finish_reason(value: object) -> str:
    if isinstance(value, str) and value in FINISH_REASONS:
        return value
    return "stop"


def _token_usage(raw_usage: object) -> TokenUsage:
    if raw_usage is None:
        return TokenUsage()
    if not isinstance(raw_usage, Mapping):
        raise TypeError("usage must be an object")
    return TokenUsage(
        prompt_tokens=int(raw_usage.get("prompt_tokens") or 0),
        completion_tokens=int(raw_usage.get("completion_tokens") or 0),
        total_tokens=int(raw_usage.get("total_tokens") or 0),
    )


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _error_text(error: object) -> str:
    if isinstance(error, Mapping) and isinstance(error.get("message"), str):
        return error["message"]
    return str(error)
