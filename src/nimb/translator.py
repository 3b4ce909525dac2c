"""Request translation onto the upstream schema and non-streaming response mapping."""

import logging
import time
from typing import Any, Dict, Optional

from .config import DEFAULT_MODEL, request_logger
from .models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    Choice,
    ProxySettings,
    ResponseMessage,
    Usage,
)
from .stats import token_count
from .utils import inline_reasoning

logger = logging.getLogger(__name__)

# Client-facing aliases that all land on the one real backend model.
MODEL_MAPPING = {
    "gpt-4o": "deepseek-ai/deepseek-v3.2",
    "gpt-4": "deepseek-ai/deepseek-v3.2",
    "gpt-4-turbo": "deepseek-ai/deepseek-v3.2",
    "deepseek-chat": "deepseek-ai/deepseek-v3.2",
    "deepseek-v3.2": "deepseek-ai/deepseek-v3.2",
}

PASSTHROUGH_PARAMS = (
    "top_p",
    "top_k",
    "frequency_penalty",
    "presence_penalty",
    "repetition_penalty",
    "min_p",
    "seed",
    "stop",
    "logit_bias",
    "n",
    "user",
    "response_format",
)


def resolve_model(requested: Optional[str], settings: ProxySettings) -> str:
    """Settings model first, then the alias table, then the default model."""
    if settings.current_model:
        return settings.current_model
    if requested and requested in MODEL_MAPPING:
        return MODEL_MAPPING[requested]
    return DEFAULT_MODEL


def build_upstream_request(
    request: ChatCompletionRequest, settings: ProxySettings
) -> Dict[str, Any]:
    """
    Map a client chat request onto the upstream request body.

    Client values win over settings for temperature, max_tokens and stream.
    Only the PASSTHROUGH_PARAMS allow-list is forwarded from the rest of the
    request. The thinking flag is merged into extra_body.chat_template_kwargs.
    """
    sent = request.model_dump(exclude_unset=True)
    upstream_model = resolve_model(request.model, settings)

    upstream: Dict[str, Any] = {
        "model": upstream_model,
        "messages": sent["messages"],
        "temperature": (
            request.temperature
            if request.temperature is not None
            else settings.temperature
        ),
        "max_tokens": request.max_tokens or settings.max_tokens,
        "stream": (
            request.stream if request.stream is not None else settings.streaming_enabled
        ),
    }

    for param in PASSTHROUGH_PARAMS:
        if param in sent:
            upstream[param] = sent[param]

    extra_body = dict(request.extra_body or {})
    if settings.enable_thinking:
        template_kwargs = extra_body.get("chat_template_kwargs")
        if not isinstance(template_kwargs, dict):
            template_kwargs = {}
        extra_body["chat_template_kwargs"] = {**template_kwargs, "thinking": True}
    if extra_body:
        upstream["extra_body"] = extra_body

    if settings.log_requests:
        request_logger.info(f"[Proxy] {request.model} -> {upstream_model}")

    return upstream


def _message_text(content: Any) -> str:
    """Flatten message content; list content keeps only its text parts."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)
    return ""


def map_completion(
    upstream: Dict[str, Any],
    requested_model: Optional[str],
    settings: ProxySettings,
) -> Dict[str, Any]:
    """
    Wrap an upstream completion in the client-facing envelope.

    The model field echoes what the caller asked for, not the upstream model.
    Choices that are not objects are skipped.
    """
    raw_choices = upstream.get("choices")
    if not isinstance(raw_choices, list):
        raw_choices = []

    choices = []
    for position, choice in enumerate(raw_choices):
        if not isinstance(choice, dict):
            continue
        message = choice.get("message")
        if not isinstance(message, dict):
            message = {}
        content = _message_text(message.get("content"))
        reasoning = message.get("reasoning_content")
        if settings.show_reasoning and isinstance(reasoning, str) and reasoning:
            content = inline_reasoning(reasoning, content)
        index = choice.get("index")
        if not isinstance(index, int) or isinstance(index, bool):
            index = position
        finish_reason = choice.get("finish_reason")
        role = message.get("role")
        choices.append(
            Choice(
                index=index,
                message=ResponseMessage(
                    role=role if isinstance(role, str) and role else "assistant",
                    content=content,
                ),
                finish_reason=finish_reason if isinstance(finish_reason, str) else None,
            )
        )

    usage = upstream.get("usage") if isinstance(upstream.get("usage"), dict) else {}
    model = upstream.get("model")
    response = ChatCompletionResponse(
        id=f"chatcmpl-{int(time.time() * 1000)}",
        created=int(time.time()),
        model=requested_model
        or (model if isinstance(model, str) and model else resolve_model(None, settings)),
        choices=choices,
        usage=Usage(
            prompt_tokens=token_count(usage.get("prompt_tokens")),
            completion_tokens=token_count(usage.get("completion_tokens")),
            total_tokens=token_count(usage.get("total_tokens")),
        ),
    )
    return response.model_dump()
