"""1ターン分のモデル呼び出し・検証・再試行・安全判定を行うユースケース。"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Literal

from llmchat.domain.errors import UpstreamApiError
from llmchat.domain.services.danger_keyword_scanner import scan_message_for_keywords
from llmchat.domain.services.response_interpreter import fallback_response, interpret_response
from llmchat.domain.services.response_rendering import create_error_response, load_response_payload
from llmchat.domain.services.response_schema_prompt import (
    build_retry_instruction,
    build_system_instruction,
)
from llmchat.domain.services.safety_gate import (
    SchemaValidationResult,
    assess_safety,
    format_crisis_resources,
    requires_safety_intervention,
    should_block_conversation,
    validate_response_payload,
)
from llmchat.domain.value_objects.model_reply import (
    ChatMessage,
    StreamDoneMarker,
    StreamTextDelta,
)
from llmchat.domain.value_objects.structured_response import (
    ResponseMeta,
    SafetyAssessment,
    StructuredResponse,
    TextBlock,
)
from llmchat.ports.outbound.chat_model_port import ChatModelPort
from llmchat.ports.outbound.message_store_port import AssistantMessageRecord, MessageStorePort

_LOG = logging.getLogger(__name__)

INVALID_RESPONSE_MESSAGE = (
    "Sorry, I could not produce a proper answer this time. Please try sending your message again."
)
KEYWORD_BLOCK_REASON = "danger_keywords"
EMERGENCY_BLOCK_REASON = "llm_emergency"

TurnStatus = Literal["ok", "blocked", "invalid"]


class ConversationBlockedError(RuntimeError):
    """ブロック済み会話への発話を表す例外。"""


@dataclass(frozen=True, slots=True)
class ChatTurnResult:
    """1ターンの最終結果。invalid の場合 raw_content は利用者に見せない。"""

    conversation_id: str
    status: TurnStatus
    response: StructuredResponse
    attempts: int
    raw_content: str | None = None
    validation_errors: tuple[str, ...] = ()
    detected_keywords: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class StreamingPreview:
    """ストリーム途中の累積テキストと暫定解釈。保存対象ではない。"""

    text: str
    preview: StructuredResponse | None


class ChatTurnUseCase:
    """モデル出力をスキーマ検証し、上限回数まで再試行して保存する。"""

    def __init__(
        self,
        *,
        chat_model: ChatModelPort,
        message_store: MessageStorePort,
        max_attempts: int = 3,
        danger_keywords: Sequence[str] = (),
        language: str = "en",
    ) -> None:
        """モデル・保存先と再試行上限、危険キーワード、危機情報の言語を受け取る。"""
        if max_attempts < 1:
            raise ValueError("max_attempts は 1 以上である必要があります。")
        self._chat_model = chat_model
        self._message_store = message_store
        self._max_attempts = max_attempts
        self._danger_keywords = tuple(danger_keywords)
        self._language = language
        self._system_instruction = build_system_instruction(self._danger_keywords)

    def run_turn(self, conversation_id: str, messages: Sequence[ChatMessage]) -> ChatTurnResult:
        """非ストリームで1ターンを実行する。UpstreamApiError はそのまま送出する。"""
        blocked = self._pre_check(conversation_id, messages)
        if blocked is not None:
            return blocked

        base_messages = [ChatMessage(role="system", content=self._system_instruction), *messages]
        request_messages = base_messages
        raw_content = ""
        validation = SchemaValidationResult(valid=False)
        for attempt in range(1, self._max_attempts + 1):
            reply = self._chat_model.complete(request_messages)
            raw_content = reply.content
            payload, validation = _validate(raw_content)
            if validation.valid:
                return self._finalize(conversation_id, raw_content, payload, attempts=attempt)

            _LOG.warning(
                "Schema validation failed: conversation_id=%s attempt=%s/%s errors=%s",
                conversation_id,
                attempt,
                self._max_attempts,
                "; ".join(validation.errors),
            )
            retry_message = ChatMessage(
                role="system", content=build_retry_instruction(validation.errors)
            )
            request_messages = [retry_message, *base_messages]

        return self._store_invalid(
            conversation_id, raw_content, validation.errors, attempts=self._max_attempts
        )

    def stream_turn(
        self,
        conversation_id: str,
        messages: Sequence[ChatMessage],
    ) -> Iterator[StreamingPreview | ChatTurnResult]:
        """ストリームで1ターンを実行する。最後に ChatTurnResult を1つ返す。

        終端マーカーを受け取るまで何も保存しないため、途中で閉じれば部分テキストは残らない。
        """
        blocked = self._pre_check(conversation_id, messages)
        if blocked is not None:
            yield blocked
            return

        request_messages = [ChatMessage(role="system", content=self._system_instruction), *messages]
        parts: list[str] = []
        completed = False
        events = self._chat_model.stream(request_messages)
        try:
            for event in events:
                if isinstance(event, StreamTextDelta):
                    parts.append(event.text)
                    text = "".join(parts)
                    yield StreamingPreview(text=text, preview=interpret_response(text))
                elif isinstance(event, StreamDoneMarker):
                    if event.error is not None:
                        raise UpstreamApiError.invalid_response(
                            f"stream terminated by upstream error: {event.error}"
                        )
                    completed = True
                    break
        finally:
            close = getattr(events, "close", None)
            if callable(close):
                close()

        if not completed:
            raise UpstreamApiError.invalid_response(
                "stream ended without completion marker", "".join(parts)
            )

        raw_content = "".join(parts)
        payload, validation = _validate(raw_content)
        if validation.valid:
            yield self._finalize(conversation_id, raw_content, payload, attempts=1)
            return
        _LOG.warning(
            "Schema validation failed on streamed turn: conversation_id=%s errors=%s",
            conversation_id,
            "; ".join(validation.errors),
        )
        yield self._store_invalid(conversation_id, raw_content, validation.errors, attempts=1)

    def _pre_check(
        self,
        conversation_id: str,
        messages: Sequence[ChatMessage],
    ) -> ChatTurnResult | None:
        if not messages:
            raise ValueError("messages は1件以上必要です。")
        if self._message_store.is_conversation_blocked(conversation_id):
            raise ConversationBlockedError(f"会話はブロックされています: {conversation_id}")

        latest_user = next(
            (message.content for message in reversed(messages) if message.role == "user"),
            "",
        )
        detected = scan_message_for_keywords(latest_user, self._danger_keywords)
        if not detected:
            return None

        _LOG.warning(
            "Danger keywords detected; blocking conversation: conversation_id=%s keywords=%s",
            conversation_id,
            ",".join(detected),
        )
        self._message_store.block_conversation(conversation_id, KEYWORD_BLOCK_REASON, detected)
        safety = SafetyAssessment(
            is_safe=False,
            danger_level="emergency",
            detected_concerns=detected,
        )
        return ChatTurnResult(
            conversation_id=conversation_id,
            status="blocked",
            response=self._crisis_response(safety),
            attempts=0,
            detected_keywords=detected,
        )

    def _finalize(
        self,
        conversation_id: str,
        raw_content: str,
        payload: dict[str, object] | None,
        *,
        attempts: int,
    ) -> ChatTurnResult:
        safety = assess_safety(payload)
        response = interpret_response(raw_content) or fallback_response(raw_content)
        self._message_store.save_assistant_message(
            AssistantMessageRecord(
                conversation_id=conversation_id,
                raw_content=raw_content,
                is_validated=True,
                attempts=attempts,
                danger_level=safety.danger_level,
                requires_intervention=safety.requires_intervention,
                detected_concerns=safety.detected_concerns,
            )
        )

        if should_block_conversation(safety):
            _LOG.warning(
                "Emergency safety assessment; blocking conversation: conversation_id=%s concerns=%s",
                conversation_id,
                ",".join(safety.detected_concerns),
            )
            self._message_store.block_conversation(
                conversation_id, EMERGENCY_BLOCK_REASON, safety.detected_concerns
            )
            return ChatTurnResult(
                conversation_id=conversation_id,
                status="blocked",
                response=self._crisis_response(safety),
                attempts=attempts,
                raw_content=raw_content,
            )
        if requires_safety_intervention(safety):
            _LOG.warning(
                "Safety intervention required: conversation_id=%s danger_level=%s concerns=%s",
                conversation_id,
                safety.danger_level,
                ",".join(safety.detected_concerns),
            )

        return ChatTurnResult(
            conversation_id=conversation_id,
            status="ok",
            response=response,
            attempts=attempts,
            raw_content=raw_content,
        )

    def _store_invalid(
        self,
        conversation_id: str,
        raw_content: str,
        errors: tuple[str, ...],
        *,
        attempts: int,
    ) -> ChatTurnResult:
        self._message_store.save_assistant_message(
            AssistantMessageRecord(
                conversation_id=conversation_id,
                raw_content=raw_content,
                is_validated=False,
                attempts=attempts,
                validation_errors=errors,
            )
        )
        return ChatTurnResult(
            conversation_id=conversation_id,
            status="invalid",
            response=create_error_response(INVALID_RESPONSE_MESSAGE),
            attempts=attempts,
            validation_errors=errors,
        )

    def _crisis_response(self, safety: SafetyAssessment) -> StructuredResponse:
        blocks = []
        if safety.safety_message:
            blocks.append(TextBlock(kind="warning", content=safety.safety_message))
        blocks.append(TextBlock(kind="paragraph", content=format_crisis_resources(self._language)))
        return StructuredResponse(
            text_blocks=tuple(blocks),
            meta=ResponseMeta(response_type="safety", emotion="supportive"),
            safety=safety,
        )


def _validate(raw_content: str) -> tuple[dict[str, object] | None, SchemaValidationResult]:
    payload = load_response_payload(raw_content)
    if payload is None:
        return None, SchemaValidationResult(valid=False, errors=("Response is not a valid JSON object",))
    return payload, validate_response_payload(payload)
