"""ローカル実行・テスト向けの in-memory アダプタ群。"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from llmchat.domain.value_objects.model_reply import (
    CanonicalModelReply,
    ChatMessage,
    StreamDoneMarker,
    StreamEvent,
    StreamTextDelta,
    StreamUsageMarker,
    TokenUsage,
)
from llmchat.ports.outbound.chat_model_port import ChatModelPort
from llmchat.ports.outbound.message_store_port import AssistantMessageRecord, MessageStorePort

ScriptedReply = str | CanonicalModelReply | Exception


@dataclass(frozen=True, slots=True)
class ConversationBlock:
    """会話ブロックの記録。"""

    conversation_id: str
    reason: str
    detected: tuple[str, ...]
    blocked_at: datetime


class InMemoryMessageStore(MessageStorePort):
    """アシスタント発話とブロック状態を保持する簡易ストア。"""

    def __init__(self, now_provider: Callable[[], datetime] | None = None) -> None:
        """現在時刻取得関数を受け取る。"""
        self._messages: list[AssistantMessageRecord] = []
        self._blocks: dict[str, ConversationBlock] = {}
        self._now_provider = now_provider or (lambda: datetime.now(UTC))

    @property
    def messages(self) -> tuple[AssistantMessageRecord, ...]:
        """保存済み発話を返す。"""
        return tuple(self._messages)

    def messages_for(self, conversation_id: str) -> tuple[AssistantMessageRecord, ...]:
        """会話単位の保存済み発話を返す。"""
        return tuple(record for record in self._messages if record.conversation_id == conversation_id)

    def block_record(self, conversation_id: str) -> ConversationBlock | None:
        """ブロック記録を返す。"""
        return self._blocks.get(conversation_id)

    def save_assistant_message(self, record: AssistantMessageRecord) -> None:
        """アシスタント発話を保存する。"""
        self._messages.append(record)

    def block_conversation(
        self,
        conversation_id: str,
        reason: str,
        detected: Sequence[str],
    ) -> None:
        """会話をブロックする。既にブロック済みなら最初の記録を保つ。"""
        if conversation_id in self._blocks:
            return
        self._blocks[conversation_id] = ConversationBlock(
            conversation_id=conversation_id,
            reason=reason,
            detected=tuple(detected),
            blocked_at=self._now_provider(),
        )

    def is_conversation_blocked(self, conversation_id: str) -> bool:
        """会話がブロック済みかを返す。"""
        return conversation_id in self._blocks


class ScriptedChatModelAdapter(ChatModelPort):
    """用意した応答を順に返すチャットモデル。例外を入れるとその回で送出する。"""

    def __init__(self, replies: Sequence[ScriptedReply], *, stream_chunk_size: int = 16) -> None:
        """応答列とストリーム分割幅を受け取る。"""
        if stream_chunk_size < 1:
            raise ValueError("stream_chunk_size は 1 以上である必要があります。")
        self._replies: list[ScriptedReply] = list(replies)
        self._stream_chunk_size = stream_chunk_size
        self.received: list[tuple[ChatMessage, ...]] = []
        self.closed_streams = 0

    @property
    def remaining(self) -> int:
        """未使用の応答数を返す。"""
        return len(self._replies)

    def complete(self, messages: Sequence[ChatMessage]) -> CanonicalModelReply:
        """次の応答を返す。"""
        self.received.append(tuple(messages))
        return self._next_reply()

    def stream(self, messages: Sequence[ChatMessage]) -> Iterator[StreamEvent]:
        """次の応答を一定幅に分割して流す。"""
        self.received.append(tuple(messages))
        reply = self._next_reply()
        try:
            content = reply.content
            for start in range(0, len(content), self._stream_chunk_size):
                yield StreamTextDelta(text=content[start : start + self._stream_chunk_size])
            yield StreamUsageMarker(total_tokens=reply.usage.total_tokens)
            yield StreamDoneMarker(finish_reason=reply.finish_reason)
        finally:
            self.closed_streams += 1

    def _next_reply(self) -> CanonicalModelReply:
        if not self._replies:
            raise RuntimeError("スクリプト済みの応答がありません。")
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, CanonicalModelReply):
            return reply
        return CanonicalModelReply(
            content=reply,
            role="assistant",
            usage=TokenUsage(total_tokens=len(reply.split())),
        )
