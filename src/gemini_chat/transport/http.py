"""
REST HTTP client for the Gemini API.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from gemini_chat.errors import TransportError

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
API_VERSION = "v1beta"
OVERLOADED_MESSAGE = "The AI model is currently overloaded. Please try again in a few moments."


def describe_failure(status_code: int, body: str) -> str:
    """Human-readable detail for a failed call; overload gets a friendly message."""
    if status_code == 503 or "overloaded" in body or "UNAVAILABLE" in body:
        return OVERLOADED_MESSAGE
    return f"HTTP {status_code}: {body[:200]}"


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=f"{self._base_url}/{API_VERSION}",
            headers={"User-Agent": "gemini-chat/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def set_api_key(self, api_key: str) -> None:
        self._api_key = api_key

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-goog-api-key"] = self._api_key
        return headers

    async def post(self, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        try:
            resp = await self._client.post(path, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {e}") from e
        if resp.status_code >= 400:
            raise TransportError(describe_failure(resp.status_code, resp.text), status_code=resp.status_code)
        return resp.json()

    @asynccontextmanager
    async def stream_lines(
        self, path: str, body: Optional[dict[str, Any]] = None, params: Optional[dict[str, str]] = None,
    ) -> AsyncIterator[AsyncIterator[str]]:
        """POST and expose the response body as an async iterator of text lines."""
        try:
            async with self._client.stream("POST", path, json=body, params=params, headers=self._headers()) as resp:
                if resp.status_code >= 400:
                    text = (await resp.aread()).decode("utf-8", errors="replace")
                    raise TransportError(describe_failure(resp.status_code, text), status_code=resp.status_code)
                yield _guard(resp.aiter_lines())
        except httpx.HTTPError as e:
            raise TransportError(f"Stream failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


async def _guard(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    try:
        async for line in lines:
            yield line
    except httpx.HTTPError as e:
        raise TransportError(f"Stream interrupted: {e}") from e
