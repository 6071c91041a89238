"""FastAPI ベースの LLM チャット API。"""

from __future__ import annotations

import json
import os
from collections.abc import Iterator
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI, HTTPException, status
from fastapi.responses import StreamingResponse

from llmchat.adapters.inbound.http.schemas import (
    ChatTurnRequest,
    ChatTurnResponse,
    ContentRequest,
    CrisisResourcesResponse,
    ErrorResponse,
    FormDetectResponse,
    FormReadableRequest,
    FormReadableResponse,
    HealthResponse,
    InterpretResponse,
    ValidateResponse,
)
from llmchat.adapters.outbound.in_memory_components import InMemoryMessageStore
from llmchat.adapters.outbound.openai_chat_adapters import OpenAICompatibleChatModelAdapter
from llmchat.adapters.outbound.provider_dialects import ProviderDialectRegistry
from llmchat.application.use_cases.chat_turn import (
    ChatTurnResult,
    ChatTurnUseCase,
    ConversationBlockedError,
    StreamingPreview,
)
from llmchat.config import LlmSettings, load_llm_settings
from llmchat.domain.errors import ChatModelConfigurationError, UpstreamApiError
from llmchat.domain.services.form_extractor import (
    extract_form_from_message,
    message_has_form,
    reconcile_form_submission,
)
from llmchat.domain.services.form_schema import form_to_payload
from llmchat.domain.services.response_interpreter import interpret_response
from llmchat.domain.services.response_rendering import (
    load_response_payload,
    structured_response_to_markdown,
    structured_response_to_payload,
)
from llmchat.domain.services.safety_gate import (
    format_crisis_resources,
    get_crisis_resources,
    validate_response_payload,
)
from llmchat.domain.value_objects.model_reply import ChatMessage

_STREAM_ERROR_MESSAGE = "The assistant is unavailable right now. Please try again."


def create_app(
    *,
    settings: LlmSettings | None = None,
    chat_turn_use_case: ChatTurnUseCase | None = None,
) -> FastAPI:
    """LLM チャット API アプリを構築する。設定はここで一度だけ読み込む。"""
    _load_runtime_env()
    resolved_settings = settings or load_llm_settings()
    use_case = chat_turn_use_case or _build_default_chat_turn_use_case(resolved_settings)

    app = FastAPI(
        title="LLM Chat API",
        version="0.1.0",
    )
    app.state.settings = resolved_settings
    app.state.provider_id = ProviderDialectRegistry().detect(resolved_settings.base_url).provider_id
    app.state.chat_turn_use_case = use_case
    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    api = APIRouter(prefix="/api")

    @api.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok", provider=app.state.provider_id)

    @api.post("/responses/interpret", response_model=InterpretResponse)
    def interpret(request: ContentRequest) -> InterpretResponse:
        structured = interpret_response(request.content)
        if structured is None:
            return InterpretResponse(
                structured=None,
                markdown=None,
                is_fallback=False,
                has_form=message_has_form(request.content),
            )
        return InterpretResponse(
            structured=structured_response_to_payload(structured),
            markdown=structured_response_to_markdown(structured),
            is_fallback=structured.is_fallback,
            has_form=message_has_form(request.content),
        )

    @api.post("/responses/validate", response_model=ValidateResponse)
    def validate(request: ContentRequest) -> ValidateResponse:
        payload = load_response_payload(request.content)
        if payload is None:
            return ValidateResponse(valid=False, errors=["Response is not a valid JSON object"])
        result = validate_response_payload(payload)
        return ValidateResponse(valid=result.valid, errors=list(result.errors))

    @api.get("/crisis-resources/{language}", response_model=CrisisResourcesResponse)
    def crisis_resources(language: str) -> CrisisResourcesResponse:
        resources = get_crisis_resources(language)
        return CrisisResourcesResponse(
            language=resources.language,
            title=resources.title,
            emergency=resources.emergency,
            hotlines=list(resources.hotlines),
            message=resources.message,
            markdown=format_crisis_resources(language),
        )

    @api.post("/forms/detect", response_model=FormDetectResponse)
    def detect_form(request: ContentRequest) -> FormDetectResponse:
        form = extract_form_from_message(request.content)
        return FormDetectResponse(
            has_form=form is not None,
            form=form_to_payload(form) if form is not None else None,
        )

    @api.post(
        "/forms/readable",
        response_model=FormReadableResponse,
        responses={400: {"model": ErrorResponse}},
    )
    def readable_form(request: FormReadableRequest) -> FormReadableResponse:
        form = extract_form_from_message(request.form_content) if request.form_content else None
        record = reconcile_form_submission(request.attachments, form)
        if record is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="フォーム回答を読み取れませんでした。",
            )
        return FormReadableResponse(
            values={
                key: list(value) if isinstance(value, tuple) else value
                for key, value in record.values.items()
            },
            readable_text=record.readable_text,
        )

    @api.post(
        "/chat/messages",
        response_model=ChatTurnResponse,
        responses={
            400: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
            502: {"model": ErrorResponse},
            503: {"model": ErrorResponse},
        },
    )
    def post_message(request: ChatTurnRequest) -> ChatTurnResponse:
        use_case: ChatTurnUseCase = app.state.chat_turn_use_case
        try:
            result = use_case.run_turn(request.conversation_id, _to_chat_messages(request))
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except ConversationBlockedError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        except ChatModelConfigurationError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=exc.message,
            ) from exc
        except UpstreamApiError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=exc.message,
            ) from exc

        return _to_turn_response(result)

    @api.post("/chat/stream")
    def stream_message(request: ChatTurnRequest) -> StreamingResponse:
        use_case: ChatTurnUseCase = app.state.chat_turn_use_case
        events = use_case.stream_turn(request.conversation_id, _to_chat_messages(request))
        return StreamingResponse(_sse_events(events), media_type="text/event-stream")

    app.include_router(api)


def _sse_events(events: Iterator[StreamingPreview | ChatTurnResult]) -> Iterator[str]:
    sent_length = 0
    try:
        for event in events:
            if isinstance(event, StreamingPreview):
                yield _sse({"type": "chunk", "content": event.text[sent_length:]})
                sent_length = len(event.text)
            else:
                yield _sse({"type": "done", **_to_turn_response(event).model_dump()})
    except ConversationBlockedError as exc:
        yield _sse({"type": "error", "message": str(exc)})
    except (ChatModelConfigurationError, UpstreamApiError) as exc:
        if isinstance(exc, UpstreamApiError):
            exc.log()
        yield _sse({"type": "error", "message": _STREAM_ERROR_MESSAGE})
    finally:
        close = getattr(events, "close", None)
        if callable(close):
            close()


def _sse(payload: dict[str, object]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _to_chat_messages(request: ChatTurnRequest) -> list[ChatMessage]:
    return [ChatMessage(role=item.role, content=item.content) for item in request.messages]


def _to_turn_response(result: ChatTurnResult) -> ChatTurnResponse:
    return ChatTurnResponse(
        conversation_id=result.conversation_id,
        status=result.status,
        attempts=result.attempts,
        response=structured_response_to_payload(result.response),
        markdown=structured_response_to_markdown(result.response),
        validation_errors=list(result.validation_errors),
        detected_keywords=list(result.detected_keywords),
    )


def _build_default_chat_turn_use_case(settings: LlmSettings) -> ChatTurnUseCase:
    return ChatTurnUseCase(
        chat_model=OpenAICompatibleChatModelAdapter(settings),
        message_store=InMemoryMessageStore(),
        max_attempts=settings.max_attempts,
        danger_keywords=settings.danger_keywords,
        language=settings.language,
    )


def run() -> None:
    """開発用サーバーを起動する。"""
    uvicorn.run(
        "llmchat.adapters.inbound.http.app:create_app",
        factory=True,
        host=os.getenv("LLMCHAT_HOST", "127.0.0.1"),
        port=int(os.getenv("LLMCHAT_PORT", "8000")),
    )


def _load_runtime_env() -> None:
    app_env = os.getenv("APP_ENV", "development")
    env_file = Path(f".env.{app_env}")
    if env_file.exists():
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)
