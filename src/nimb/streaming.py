"""Streaming response handling for the NIMB proxy."""

import codecs
import json
import logging
from typing import Any, AsyncGenerator, AsyncIterable, Dict, List, Optional

import httpx

from .config import request_logger
from .models import ProxySettings
from .stats import UsageAccumulator
from .utils import inline_reasoning

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class SSELineBuffer:
    """
    Reassembles complete lines from arbitrarily split byte chunks.

    Bytes are decoded incrementally, so a UTF-8 sequence cut in half by a
    chunk boundary is held back until the rest arrives. The text after the
    last newline stays in the buffer until a later chunk completes it.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)()
        self.buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        self.buffer += self._decoder.decode(chunk)
        *lines, self.buffer = self.buffer.split("\n")
        return [line.rstrip("\r") for line in lines]


def frame(data: str) -> bytes:
    return f"{data}\n\n".encode()


class StreamTranslator:
    """
    Rewrites one SSE data line at a time.

    Settings are read on every line, so a showReasoning toggle takes effect
    mid-stream. Usage objects are added to stats as they are seen.
    """

    def __init__(self, settings: ProxySettings, stats: UsageAccumulator):
        self.settings = settings
        self.stats = stats

    def transform_line(self, line: str) -> Optional[bytes]:
        """Return the downstream frame for line, or None to drop it."""
        if not line.startswith(SSE_DATA_PREFIX):
            return None
        if DONE_SENTINEL in line:
            return frame(line)

        try:
            payload = json.loads(line[len(SSE_DATA_PREFIX):])
        except json.JSONDecodeError:
            logger.debug(f"Relaying unparseable SSE line: {line[:200]}")
            return frame(line)
        if not isinstance(payload, dict):
            return frame(line)

        self.transform_payload(payload)
        return frame(f"{SSE_DATA_PREFIX}{json.dumps(payload)}")

    def transform_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        delta = _first_delta(payload)
        if delta is not None and "reasoning_content" in delta:
            reasoning = delta.pop("reasoning_content")
            if self.settings.show_reasoning and reasoning:
                delta["content"] = inline_reasoning(reasoning, delta.get("content"))

        if isinstance(payload.get("usage"), dict):
            self.stats.add_usage(payload["usage"])
        return payload


def _first_delta(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict) or not isinstance(first.get("delta"), dict):
        return None
    return first["delta"]


async def translate_stream(
    chunks: AsyncIterable[bytes],
    settings: ProxySettings,
    stats: UsageAccumulator,
) -> AsyncGenerator[bytes, None]:
    """
    Turn the upstream SSE byte stream into the downstream SSE byte stream.

    Frames are yielded one at a time as soon as their line is complete; the
    next upstream chunk is only read once the consumer asks for more. A
    transport or decode failure is recorded in the error log and ends the
    stream without an error frame.
    """
    line_buffer = SSELineBuffer()
    translator = StreamTranslator(settings, stats)
    try:
        async for chunk in chunks:
            for line in line_buffer.feed(chunk):
                out = translator.transform_line(line)
                if out is not None:
                    yield out
    except (httpx.HTTPError, UnicodeDecodeError) as e:
        message = str(e) or type(e).__name__
        logger.error(f"Upstream stream failed: {message}")
        stats.record_error(message, 500)
        return

    if line_buffer.buffer.strip():
        logger.debug(f"Discarding incomplete trailing SSE line: {line_buffer.buffer[:200]}")
    if settings.log_requests:
        request_logger.info("[Proxy] Done")


async def relay_stream(
    upstream, settings: ProxySettings, stats: UsageAccumulator
) -> AsyncGenerator[bytes, None]:
    """
    Wrap translate_stream so the upstream response is always released,
    including when the client goes away and the generator is closed early.
    """
    try:
        async for out in translate_stream(upstream, settings, stats):
            yield out
    finally:
        await upstream.aclose()
