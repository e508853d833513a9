from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from gemini_pool.errors import InvalidRequestError, StorageError
from gemini_pool.gateway.schemas import ChatCompletionRequest, ChatCompletionResponse, ModelList
from gemini_pool.gateway.translate import (
    estimate_request_tokens,
    estimate_tokens,
    from_upstream,
    models_from_upstream,
    to_upstream,
)
from gemini_pool.gateway.upstream import GeminiClient
from gemini_pool.runtime.key_pool import KeyPool, key_suffix
from gemini_pool.storage.repository import ApiKeyRepository

logger = logging.getLogger("uvicorn.error")

CHAT_COMPLETIONS_ENDPOINT = "/v1/chat/completions"


def parse_chat_request(payload: Any) -> ChatCompletionRequest:
    if not isinstance(payload, dict):
        raise InvalidRequestError("Expected a JSON object request body.")
    try:
        return ChatCompletionRequest.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors(include_url=False)[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "invalid value")
        raise InvalidRequestError(
            f"Invalid request body: {location}: {message}" if location else message
        ) from exc


class ChatGateway:
    """Runs one inbound call from key selection through usage recording.

    Validation problems stop the call before Gemini is contacted. Upstream
    and translation failures propagate as :class:`UpstreamError`. Nothing is
    written to the ledger unless the caller gets a translated response.
    """

    def __init__(
        self,
        *,
        pool: KeyPool,
        client: GeminiClient,
        repository: ApiKeyRepository,
    ) -> None:
        self.pool = pool
        self.client = client
        self.repository = repository

    async def chat_completion(
        self,
        payload: Any,
        *,
        caller_key_id: str | None = None,
        request_id: str | None = None,
    ) -> ChatCompletionResponse:
        request_id = request_id or uuid4().hex[:12]
        chat_request = parse_chat_request(payload)
        upstream_key = self.pool.next_key()
        logger.info(
            "chat_request request_id=%s model=%s messages=%d key_suffix=%s",
            request_id,
            chat_request.model,
            len(chat_request.messages),
            key_suffix(upstream_key),
        )

        gemini_request = to_upstream(chat_request)
        gemini_response = await self.client.generate_content(
            model=chat_request.model,
            api_key=upstream_key,
            request=gemini_request,
        )
        response = from_upstream(gemini_response, chat_request.model)

        input_tokens = estimate_request_tokens(chat_request)
        output_tokens = estimate_tokens(response.choices[0].message.content)
        await self._record_usage(
            caller_key_id=caller_key_id,
            upstream_key=upstream_key,
            model=chat_request.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            request_id=request_id,
        )
        logger.info(
            "chat_response request_id=%s model=%s input_tokens=%d output_tokens=%d",
            request_id,
            chat_request.model,
            input_tokens,
            output_tokens,
        )
        return response

    async def list_models(self) -> ModelList:
        upstream_key = self.pool.next_key()
        logger.info("list_models key_suffix=%s", key_suffix(upstream_key))
        model_list = await self.client.list_models(api_key=upstream_key)
        return models_from_upstream(model_list)

    async def _record_usage(
        self,
        *,
        caller_key_id: str | None,
        upstream_key: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        request_id: str,
    ) -> None:
        usage: dict[str, Any] = {
            "endpoint": CHAT_COMPLETIONS_ENDPOINT,
            "model": model,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
        }
        try:
            if caller_key_id is not None:
                await asyncio.to_thread(self.repository.record_usage, caller_key_id, **usage)
            else:
                await asyncio.to_thread(
                    self.repository.record_pool_usage, upstream_key, **usage
                )
        except StorageError:
            logger.exception(
                "usage_record_failed request_id=%s caller_key_id=%s key_suffix=%s model=%s",
                request_id,
                caller_key_id,
                key_suffix(upstream_key),
                model,
            )
