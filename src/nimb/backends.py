"""Upstream handling for the NIMB proxy."""

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class UpstreamStream:
    """
    Owns an open streaming httpx response together with its client.

    Iterating yields the raw body bytes in arrival order. aclose() releases
    the connection and must be called once the stream is no longer needed.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self.client = client
        self.response = response
        self.closed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.response.aiter_bytes()

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.response.aclose()
        finally:
            await self.client.aclose()


def upstream_error_message(content: Any, status_code: int) -> str:
    """Pull error.message out of an upstream error body when there is one."""
    if isinstance(content, dict):
        error = content.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if content.get("message"):
            return str(content["message"])
    elif isinstance(content, str) and content.strip():
        return content.strip()
    return f"Upstream request failed with status {status_code}"


async def call_backend(
    base_url: str,
    api_key: str,
    payload: Dict[str, Any],
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """
    Send one chat completion request upstream.

    Args:
        base_url: Upstream API base, e.g. https://integrate.api.nvidia.com/v1
        api_key: Bearer token for the upstream
        payload: Translated request body
        timeout: Request timeout in seconds
        transport: Optional httpx transport, used by tests

    Returns:
        Dictionary with status_code, content and is_stream. For a successful
        streaming call content is an UpstreamStream the caller must close;
        otherwise it is the decoded JSON body (or an error envelope).
    """
    is_stream = bool(payload.get("stream"))
    target_url = f"{base_url.rstrip('/')}/chat/completions"
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    if is_stream:
        headers["Accept"] = "text/event-stream"

    client = httpx.AsyncClient(transport=transport, timeout=httpx.Timeout(timeout))
    try:
        request = client.build_request(
            "POST", target_url, content=json.dumps(payload).encode(), headers=headers
        )
        response = await client.send(request, stream=True)
    except httpx.TimeoutException:
        await client.aclose()
        logger.error(f"Upstream request to {target_url} timed out after {timeout}s")
        return _failure(500, f"Upstream request timed out after {timeout}s")
    except httpx.HTTPError as e:
        await client.aclose()
        logger.error(f"Error calling upstream {target_url}: {str(e)}")
        return _failure(500, str(e) or type(e).__name__)

    if response.status_code == 200 and is_stream:
        return {
            "status_code": 200,
            "headers": dict(response.headers),
            "content": UpstreamStream(client, response),
            "is_stream": True,
        }

    try:
        content = await response.aread()
    except httpx.HTTPError as e:
        logger.error(f"Error reading upstream response: {str(e)}")
        return _failure(500, str(e) or type(e).__name__)
    finally:
        await response.aclose()
        await client.aclose()

    text = content.decode(errors="replace")
    try:
        json_content = json.loads(text)
    except json.JSONDecodeError:
        json_content = None

    if response.status_code == 200:
        if not isinstance(json_content, dict):
            return _failure(500, "Upstream returned an invalid JSON body")
        return {
            "status_code": 200,
            "headers": dict(response.headers),
            "content": json_content,
            "is_stream": False,
        }

    message = upstream_error_message(
        json_content if json_content is not None else text, response.status_code
    )
    logger.error(f"Upstream returned {response.status_code}: {message}")
    return _failure(response.status_code, message)


def _failure(status_code: int, message: str) -> Dict[str, Any]:
    return {
        "status_code": status_code,
        "content": {"error": {"message": message, "type": "api_error"}},
        "is_stream": False,
    }
