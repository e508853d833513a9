from __future__ import annotations

import time
from typing import Any
from uuid import uuid4

from gemini_pool.errors import InvalidRequestError, TranslationError
from gemini_pool.gateway.schemas import (
    AssistantMessage,
    ChatChoice,
    ChatCompletionRequest,
    ChatCompletionResponse,
    GeminiContent,
    GeminiGenerationConfig,
    GeminiModelList,
    GeminiPart,
    GeminiRequest,
    GeminiResponse,
    GeminiSystemInstruction,
    ModelList,
    ModelObject,
)

UPSTREAM_ROLES = {"user": "user", "assistant": "model"}
CHAT_GENERATION_METHOD = "generateContent"
MODEL_NAME_PREFIX = "models/"
TOKEN_ESTIMATE_DIVISOR = 4


def message_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return str(content)

    chunks: list[str] = []
    for item in content:
        if isinstance(item, str):
            chunks.append(item)
            continue
        if not isinstance(item, dict):
            continue
        raw_text = item.get("text")
        if isinstance(raw_text, str):
            chunks.append(raw_text)
    return "\n".join(chunks)


def estimate_tokens(text: str) -> int:
    """Coarse token estimate: one token per four characters, rounded up."""
    return -(-len(text) // TOKEN_ESTIMATE_DIVISOR)


def estimate_request_tokens(request: ChatCompletionRequest) -> int:
    return sum(estimate_tokens(message_text(m.content)) for m in request.messages)


def _generation_config(request: ChatCompletionRequest) -> GeminiGenerationConfig | None:
    stop = request.stop
    if isinstance(stop, str):
        stop = [stop]
    config = GeminiGenerationConfig(
        temperature=request.temperature,
        top_p=request.top_p,
        max_output_tokens=request.max_tokens,
        stop_sequences=stop or None,
    )
    return None if config.is_empty() else config


def to_upstream(request: ChatCompletionRequest) -> GeminiRequest:
    """Map a caller chat request onto a Gemini ``generateContent`` body.

    Only the first system message is kept, as the system instruction. The
    first remaining turn has to come from the user.
    """
    if request.stream:
        raise InvalidRequestError("Streaming responses are not supported.")

    contents: list[GeminiContent] = []
    system_instruction: GeminiSystemInstruction | None = None

    for message in request.messages:
        text = message_text(message.content)
        if message.role == "system":
            if system_instruction is None:
                system_instruction = GeminiSystemInstruction(
                    parts=[GeminiPart(text=text)]
                )
            continue
        upstream_role = UPSTREAM_ROLES.get(message.role)
        if upstream_role is None:
            raise InvalidRequestError(f"Unsupported role: {message.role}")
        contents.append(
            GeminiContent(role=upstream_role, parts=[GeminiPart(text=text)])
        )

    if contents and contents[0].role == "model":
        raise InvalidRequestError(
            "Conversation must start with a user message after the system prompt."
        )

    return GeminiRequest(
        contents=contents,
        system_instruction=system_instruction,
        generation_config=_generation_config(request),
    )


def from_upstream(response: GeminiResponse, model: str) -> ChatCompletionResponse:
    """Turn the first part of the first candidate into a single chat choice."""
    if not response.candidates:
        raise TranslationError("No content found in Gemini response")
    content = response.candidates[0].content
    if content is None or not content.parts or content.parts[0].text is None:
        raise TranslationError("No content found in Gemini response")
    reply = content.parts[0].text

    return ChatCompletionResponse(
        id=f"chatcmpl-{uuid4()}",
        created=int(time.time()),
        model=model,
        choices=[
            ChatChoice(
                index=0,
                message=AssistantMessage(content=reply),
                finish_reason="stop",
            )
        ],
    )


def models_from_upstream(model_list: GeminiModelList) -> ModelList:
    data: list[ModelObject] = []
    for info in model_list.models:
        if CHAT_GENERATION_METHOD not in info.supported_generation_methods:
            continue
        if "embedding" in info.name:
            continue
        model_id = info.name.removeprefix(MODEL_NAME_PREFIX)
        data.append(ModelObject(id=model_id))
    return ModelList(data=data)
