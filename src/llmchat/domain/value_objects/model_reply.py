"""上流モデル API 応答の正規化済み表現。"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal, TypeAlias

FinishReason = Literal["stop", "length", "content_filter", "error"]

FINISH_REASONS: tuple[str, ...] = ("stop", "length", "content_filter", "error")


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """1回のモデル呼び出しで消費した token 数。"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """モデルへ送る1メッセージ。"""

    role: str
    content: str

    def __post_init__(self) -> None:
        """最低限の整合性を検証する。"""
        if not self.role:
            raise ValueError("role は空にできません。")


@dataclass(frozen=True, slots=True)
class CanonicalModelReply:
    """プロバイダ差異を吸収した応答。"""

    content: str
    role: str
    finish_reason: FinishReason = "stop"
    usage: TokenUsage = field(default_factory=TokenUsage)
    reasoning: str | None = None
    raw: Mapping[str, object] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class StreamTextDelta:
    """ストリームの増分テキスト。"""

    text: str


@dataclass(frozen=True, slots=True)
class StreamUsageMarker:
    """ストリーム中に届いた token 使用量。"""

    total_tokens: int


@dataclass(frozen=True, slots=True)
class StreamDoneMarker:
    """ストリーム終端。error は上流がエラーで打ち切った場合のみ入る。"""

    finish_reason: str | None = None
    error: str | None = None


StreamEvent: TypeAlias = StreamTextDelta | StreamUsageMarker | StreamDoneMarker
