"""上流チャットモデル呼び出しの契約。"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Protocol

from llmchat.domain.value_objects.model_reply import CanonicalModelReply, ChatMessage, StreamEvent


class ChatModelPort(Protocol):
    """正規化済みの応答・ストリームを返すモデル呼び出し抽象ポート。"""

    def complete(self, messages: Sequence[ChatMessage]) -> CanonicalModelReply:
        """1回分の応答を返す。"""

    def stream(self, messages: Sequence[ChatMessage]) -> Iterator[StreamEvent]:
        """ストリームイベントを順に返す。close() で接続を閉じる。"""
