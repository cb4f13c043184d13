"""
Thin client for an OpenAI-compatible chat completions service.

Used by the brand identifier, authenticity scorer and translator. This layer
raises httpx errors and ValueError; the wrappers above it convert those into
ServiceResult failures.
"""
import base64
import json
import logging
import math
import re
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def image_message(prompt: str, image_bytes: bytes, mime_type: str = "image/png") -> Dict[str, Any]:
    """User message carrying a text prompt and one inline image."""
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return {
        "role": "user",
        "content": [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
        ],
    }


def extract_json(text: str) -> Dict[str, Any]:
    """
    Pull a JSON object out of model output.

    Accepts bare JSON, ```json fenced blocks, or an object embedded in prose.

    Raises:
        ValueError: If no JSON object can be parsed
    """
    candidates = [m.strip() for m in _JSON_FENCE.findall(text)]
    candidates.append(text.strip())

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ValueError("No JSON object found in model output")


def unit_interval(value: Any) -> float:
    """Coerce a model-reported score into [0, 1]; unparseable or non-finite values become 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return min(max(number, 0.0), 1.0)


_TRUE_WORDS = {"true", "yes", "1"}
_FALSE_WORDS = {"false", "no", "0"}


def parse_flag(value: Any) -> Optional[bool]:
    """Read a boolean the model may have written as a string; None when unrecognized."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


class LLMClient:
    """Chat completions over HTTP, buffered or streamed."""

    COMPLETIONS_PATH = "/v1/chat/completions"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
    ):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.COMPLETIONS_PATH}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _body(self, messages: List[Dict[str, Any]], stream: bool) -> Dict[str, Any]:
        return {"model": self.model, "messages": messages, "stream": stream}

    async def complete(self, messages: List[Dict[str, Any]]) -> str:
        """
        Run one non-streaming completion.

        Returns:
            Content of the first choice

        Raises:
            httpx.HTTPError: On transport failure or non-2xx status
            ValueError: If the response has no message content
        """
        response = await self.http_client.post(
            self.url, headers=self._headers(), json=self._body(messages, stream=False)
        )
        response.raise_for_status()
        payload = response.json()

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Completion response missing content: {e}") from e
        if not isinstance(content, str):
            raise ValueError("Completion content is not text")
        return content

    async def stream(self, messages: List[Dict[str, Any]]) -> AsyncIterator[str]:
        """
        Run a streaming completion, yielding content deltas as they arrive.

        The service answers with ``data: {json}`` lines terminated by
        ``data: [DONE]``.

        Raises:
            httpx.HTTPError: On transport failure or non-2xx status
        """
        async with self.http_client.stream(
            "POST", self.url, headers=self._headers(), json=self._body(messages, stream=True)
        ) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[5:].strip()
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                    delta = chunk["choices"][0].get("delta", {}).get("content")
                except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
                    logger.debug(f"Ignoring unparseable stream line: {data[:80]}")
                    continue
                if delta:
                    yield delta
