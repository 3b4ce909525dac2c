"""Data models and schemas for the NIMB proxy."""

from typing import Dict, List, Any, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Message(BaseModel):
    """Chat message model. Unknown fields (tool_calls, name, ...) are kept."""
    model_config = ConfigDict(extra="allow")

    role: str
    content: Optional[Union[str, List[Dict[str, Any]]]] = None


class ChatCompletionRequest(BaseModel):
    """Request model for chat completions."""
    model_config = ConfigDict(extra="allow")

    model: Optional[str] = None
    messages: List[Message]
    stream: Optional[bool] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    repetition_penalty: Optional[float] = None
    min_p: Optional[float] = None
    seed: Optional[int] = None
    stop: Optional[Union[str, List[str]]] = None
    logit_bias: Optional[Dict[str, float]] = None
    n: Optional[int] = None
    user: Optional[str] = None
    response_format: Optional[Dict[str, Any]] = None
    extra_body: Optional[Dict[str, Any]] = None


class ResponseMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class Choice(BaseModel):
    """Choice model for non-streaming chat completions."""
    index: int
    message: ResponseMessage
    finish_reason: Optional[str] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    """Response model for chat completions."""
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    usage: Usage = Field(default_factory=Usage)


class ErrorEntry(BaseModel):
    """One entry of the usage error log."""
    timestamp: str
    message: str
    code: int


class ProxySettings(BaseModel):
    """
    Runtime configuration, editable through the control endpoints.

    Field names are snake_case in Python and camelCase on the wire. The API key
    is excluded from every dump; persistence writes it explicitly.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    show_reasoning: bool = False
    enable_thinking: bool = False
    log_requests: bool = True
    streaming_enabled: bool = True
    context_size: int = 128000
    max_tokens: int = 4096
    temperature: float = 0.7
    current_model: str = "deepseek-ai/deepseek-v3.2"
    api_key: str = Field(default="", exclude=True)

    def public_dict(self) -> Dict[str, Any]:
        """Serialized settings as returned to clients (no API key)."""
        return self.model_dump(by_alias=True)
