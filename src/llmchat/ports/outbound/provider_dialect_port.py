"""上流 API 方言ごとの正規化契約。"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from llmchat.domain.value_objects.model_reply import CanonicalModelReply, StreamEvent


class ProviderDialectPort(Protocol):
    """1つの上流 API 形式を正規形へ変換する抽象ポート。"""

    provider_id: str
    provider_name: str

    def can_handle(self, base_url: str) -> bool:
        """base_url がこの方言の接続先かを返す。"""

    def normalize_response(self, raw_response: Mapping[str, object] | None) -> CanonicalModelReply:
        """非ストリーム応答を正規化する。形が不正なら UpstreamApiError。"""

    def normalize_stream_chunk(self, raw_line: str) -> StreamEvent | None:
        """SSE 1行を正規化する。読み飛ばす行は None。"""
