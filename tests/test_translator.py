"""
Tests for request translation and non-streaming response mapping.
"""
from grappa import should

from nimb.config import DEFAULT_MODEL
from nimb.models import ChatCompletionRequest, ProxySettings
from nimb.translator import (
    MODEL_MAPPING,
    build_upstream_request,
    map_completion,
    resolve_model,
)
from .conftest import MOCK_COMPLETION_RESPONSE

MESSAGES = [{"role": "user", "content": "Hello!"}]


def chat_request(**fields):
    return ChatCompletionRequest.model_validate({"messages": MESSAGES, **fields})


def test_resolve_model_uses_alias_without_override():
    settings = ProxySettings(current_model="")
    resolve_model("gpt-4", settings) | should.equal(MODEL_MAPPING["gpt-4"])
    resolve_model("something-else", settings) | should.equal(DEFAULT_MODEL)
    resolve_model(None, settings) | should.equal(DEFAULT_MODEL)


def test_resolve_model_prefers_configured_model():
    settings = ProxySettings(current_model="meta/llama-3.1-405b-instruct")
    resolve_model("gpt-4", settings) | should.equal("meta/llama-3.1-405b-instruct")


def test_settings_fill_unset_parameters():
    settings = ProxySettings(temperature=0.3, max_tokens=512, streaming_enabled=False)
    upstream = build_upstream_request(chat_request(model="gpt-4"), settings)

    upstream | should.equal(
        {
            "model": settings.current_model,
            "messages": MESSAGES,
            "temperature": 0.3,
            "max_tokens": 512,
            "stream": False,
        }
    )


def test_client_values_win():
    settings = ProxySettings(temperature=0.3, max_tokens=512, streaming_enabled=False)
    upstream = build_upstream_request(
        chat_request(temperature=0, max_tokens=64, stream=True), settings
    )

    upstream["temperature"] | should.equal(0)
    upstream["max_tokens"] | should.equal(64)
    upstream["stream"] | should.be.true


def test_zero_max_tokens_falls_back_to_settings():
    upstream = build_upstream_request(chat_request(max_tokens=0), ProxySettings(max_tokens=900))
    upstream["max_tokens"] | should.equal(900)


def test_only_allow_listed_parameters_are_forwarded():
    upstream = build_upstream_request(
        chat_request(
            top_p=0.9,
            top_k=40,
            seed=7,
            stop=["END"],
            response_format={"type": "json_object"},
            tools=[{"type": "function"}],
            api_base="http://evil.example",
        ),
        ProxySettings(),
    )

    upstream["top_p"] | should.equal(0.9)
    upstream["top_k"] | should.equal(40)
    upstream["seed"] | should.equal(7)
    upstream["stop"] | should.equal(["END"])
    upstream["response_format"] | should.equal({"type": "json_object"})
    upstream | should.not_have.key("tools")
    upstream | should.not_have.key("api_base")
    upstream | should.not_have.key("frequency_penalty")


def test_thinking_merges_into_extra_body():
    request = chat_request(
        extra_body={"chat_template_kwargs": {"thinking": False, "mode": "x"}, "nvext": {"a": 1}}
    )
    upstream = build_upstream_request(request, ProxySettings(enable_thinking=True))

    upstream["extra_body"] | should.equal(
        {"chat_template_kwargs": {"thinking": True, "mode": "x"}, "nvext": {"a": 1}}
    )


def test_extra_body_kept_without_thinking():
    request = chat_request(extra_body={"nvext": {"a": 1}})
    upstream = build_upstream_request(request, ProxySettings(enable_thinking=False))
    upstream["extra_body"] | should.equal({"nvext": {"a": 1}})

    build_upstream_request(chat_request(), ProxySettings()) | should.not_have.key("extra_body")


def test_thinking_alone_creates_extra_body():
    upstream = build_upstream_request(chat_request(), ProxySettings(enable_thinking=True))
    upstream["extra_body"] | should.equal({"chat_template_kwargs": {"thinking": True}})


def test_map_completion_echoes_requested_model():
    completion = map_completion(MOCK_COMPLETION_RESPONSE, "gpt-4", ProxySettings())

    completion | should.have.keys("id", "object", "created", "model", "choices", "usage")
    completion["object"] | should.equal("chat.completion")
    completion["model"] | should.equal("gpt-4")
    completion["id"].startswith("chatcmpl-") | should.be.true
    completion["choices"] | should.equal(
        [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": "Hello there, how may I assist you today?",
                },
                "finish_reason": "stop",
            }
        ]
    )
    completion["usage"] | should.equal(MOCK_COMPLETION_RESPONSE["usage"])


def test_map_completion_inlines_reasoning():
    completion = map_completion(MOCK_COMPLETION_RESPONSE, "gpt-4", ProxySettings(show_reasoning=True))
    completion["choices"][0]["message"]["content"] | should.equal(
        "<think>The user greeted me.</think>\n\nHello there, how may I assist you today?"
    )


def test_map_completion_without_usage():
    upstream = {"choices": [{"message": {"role": "assistant", "content": None}}]}
    completion = map_completion(upstream, None, ProxySettings(current_model="m"))

    completion["model"] | should.equal("m")
    completion["choices"][0]["message"]["content"] | should.equal("")
    completion["choices"][0]["finish_reason"] | should.be.none
    completion["usage"] | should.equal(
        {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    )


def test_map_completion_tolerates_malformed_choices():
    upstream = {
        "model": None,
        "choices": [
            "garbage",
            {"index": True, "message": None, "finish_reason": 3},
            {"index": 4, "message": {"role": "", "content": ["a", {"text": "b"}, 7]}},
        ],
        "usage": {"prompt_tokens": None, "completion_tokens": "x", "total_tokens": 2},
    }

    completion = map_completion(upstream, None, ProxySettings())

    completion["model"] | should.equal("deepseek-ai/deepseek-v3.2")
    completion["choices"] | should.equal(
        [
            {
                "index": 1,
                "message": {"role": "assistant", "content": ""},
                "finish_reason": None,
            },
            {
                "index": 4,
                "message": {"role": "assistant", "content": "ab"},
                "finish_reason": None,
            },
        ]
    )
    completion["usage"] | should.equal(
        {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 2}
    )
