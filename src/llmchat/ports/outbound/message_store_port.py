"""アシスタント発話と会話ブロック状態の永続化契約。"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from llmchat.domain.value_objects.structured_response import DangerLevel


@dataclass(frozen=True, slots=True)
class AssistantMessageRecord:
    """保存対象のアシスタント発話。raw_content は常に原文のまま保持する。"""

    conversation_id: str
    raw_content: str
    is_validated: bool
    attempts: int
    danger_level: DangerLevel | None = None
    requires_intervention: bool = False
    detected_concerns: tuple[str, ...] = ()
    validation_errors: tuple[str, ...] = ()


class MessageStorePort(Protocol):
    """発話保存と会話ブロックを扱う抽象ポート。"""

    def save_assistant_message(self, record: AssistantMessageRecord) -> None:
        """アシスタント発話を保存する。"""

    def block_conversation(
        self,
        conversation_id: str,
        reason: str,
        detected: Sequence[str],
    ) -> None:
        """会話をブロック状態にする。"""

    def is_conversation_blocked(self, conversation_id: str) -> bool:
        """会話がブロック済みかを返す。"""
