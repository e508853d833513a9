"""Wire schemas for the two chat formats.

``ChatCompletion*`` models describe the OpenAI-style format callers speak;
``Gemini*`` models describe the upstream ``generateContent`` format. The
functions in :mod:`gemini_pool.gateway.translate` map between them.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Caller format


class ChatMessage(BaseModel):
    role: str
    content: str | list[Any] | None = None


class ChatCompletionRequest(BaseModel):
    model: str
    messages: list[ChatMessage]
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    stop: str | list[str] | None = None
    stream: bool | None = None


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str


class ChatChoice(BaseModel):
    index: int = 0
    message: AssistantMessage
    finish_reason: str = "stop"


class ChatCompletionResponse(BaseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: list[ChatChoice]


class ModelObject(BaseModel):
    id: str
    object: Literal["model"] = "model"
    created: int = 1
    owned_by: str = "google"


class ModelList(BaseModel):
    object: Literal["list"] = "list"
    data: list[ModelObject] = Field(default_factory=list)


# Upstream format


class GeminiPart(BaseModel):
    text: str = ""


class GeminiContent(BaseModel):
    role: str = ""
    parts: list[GeminiPart] = Field(default_factory=list)


class GeminiSystemInstruction(BaseModel):
    parts: list[GeminiPart]


class GeminiGenerationConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    temperature: float | None = None
    top_p: float | None = Field(default=None, alias="topP")
    max_output_tokens: int | None = Field(default=None, alias="maxOutputTokens")
    stop_sequences: list[str] | None = Field(default=None, alias="stopSequences")

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class GeminiRequest(BaseModel):
    contents: list[GeminiContent] = Field(default_factory=list)
    system_instruction: GeminiSystemInstruction | None = None
    generation_config: GeminiGenerationConfig | None = Field(
        default=None, alias="generationConfig"
    )

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class GeminiCandidatePart(BaseModel):
    # Absent for functionCall, inlineData and other non-text parts.
    text: str | None = None


class GeminiCandidateContent(BaseModel):
    role: str = ""
    parts: list[GeminiCandidatePart] = Field(default_factory=list)


class GeminiCandidate(BaseModel):
    content: GeminiCandidateContent | None = None


class GeminiResponse(BaseModel):
    candidates: list[GeminiCandidate] = Field(default_factory=list)


class GeminiModelInfo(BaseModel):
    name: str
    supported_generation_methods: list[str] = Field(
        default_factory=list, alias="supportedGenerationMethods"
    )


class GeminiModelList(BaseModel):
    models: list[GeminiModelInfo] = Field(default_factory=list)
