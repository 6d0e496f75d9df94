"""
AI Stream Client

Streams a page generation from the generative-language endpoint and turns the
server-sent events into an HTML buffer.

The endpoint is called with ``alt=sse``: every event is a ``data: {json}``
line holding one ``GenerateContentResponse``. Text fragments live at
``candidates[].content.parts[].text`` and are appended in arrival order.

Usage:
    client = GeminiStreamClient(api_key)
    html = await client.generate(contents, on_preview=push_preview)
"""

import json
import logging
import re
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from app.libs.models import GenerationState
from app.libs.settings import Settings, get_settings

logger = logging.getLogger("stylo.ai_stream")

PREVIEW_INTERVAL_SECONDS = 0.2
DOCTYPE = "<!DOCTYPE html>"

PreviewCallback = Callable[[str], None]


class GenerationError(Exception):
    """Custom exception for AI generation failures"""
    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[Dict] = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)


class Throttle:
    """
    Leading-edge rate limiter for preview pushes.

    A call goes through when at least ``interval`` seconds passed since the
    last push; calls inside the window are dropped. ``flush`` always pushes.
    """

    def __init__(self, callback: PreviewCallback, interval: float = PREVIEW_INTERVAL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.callback = callback
        self.interval = interval
        self.clock = clock
        self._last_push: Optional[float] = None
        self.pushes = 0

    def __call__(self, value: str) -> bool:
        now = self.clock()
        if self._last_push is not None and now - self._last_push < self.interval:
            return False
        self._push(value, now)
        return True

    def flush(self, value: str) -> None:
        self._push(value, self.clock())

    def _push(self, value: str, now: float) -> None:
        self._last_push = now
        self.pushes += 1
        self.callback(value)


def extract_text(event: Dict[str, Any]) -> str:
    """Concatenate every text part of one streamed response object."""
    fragments = []
    for candidate in event.get("candidates") or []:
        content = candidate.get("content") or {}
        for part in content.get("parts") or []:
            text = part.get("text")
            if isinstance(text, str):
                fragments.append(text)
    return "".join(fragments)


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[Dict[str, Any]]:
    """Yield the JSON payload of each ``data:`` line; malformed lines are skipped."""
    async for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        if not payload or payload == "[DONE]":
            continue
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed stream line: %.120s", payload)
            continue
        if isinstance(event, dict):
            yield event


class StreamConsumer:
    """Accumulates streamed fragments and drives the throttled preview."""

    def __init__(self, on_preview: Optional[PreviewCallback] = None,
                 interval: float = PREVIEW_INTERVAL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.state = GenerationState.IDLE
        self.buffer = ""
        self.throttle = Throttle(on_preview or (lambda _html: None), interval, clock)

    def append(self, fragment: str) -> None:
        if not fragment:
            return
        self.buffer += fragment
        self.throttle(self.buffer)

    async def consume(self, lines: AsyncIterator[str]) -> str:
        self.state = GenerationState.STREAMING
        async for event in iter_sse_events(lines):
            if "error" in event:
                message = (event.get("error") or {}).get("message", "Generation failed.")
                self.state = GenerationState.FAILED
                raise GenerationError(message, response=event)
            self.append(extract_text(event))
        self.throttle.flush(self.buffer)
        self.state = GenerationState.DONE
        return self.buffer


class GeminiStreamClient:
    """
    Client for ``models/{model}:streamGenerateContent``.

    One POST per generation, no retries. Read timeout is disabled because a
    full page can take minutes to stream.
    """

    def __init__(self, api_key: str, model: Optional[str] = None, base_url: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the stream client

        Args:
            api_key: Generative-language API key
            model: Model name, defaults to GEMINI_MODEL
            base_url: API root, defaults to GEMINI_BASE_URL
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        if not api_key:
            raise GenerationError("Could not find API key.")
        settings = get_settings()
        self.api_key = api_key
        self.model = model or settings.gemini_model
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.transport = transport

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:streamGenerateContent"

    async def generate(self, contents: List[Dict[str, Any]], consumer: Optional[StreamConsumer] = None,
                       on_preview: Optional[PreviewCallback] = None) -> str:
        """
        Stream one generation to completion.

        Args:
            contents: Conversation turns in the provider's ``contents`` format
            consumer: Consumer to feed (a new one is created if omitted)
            on_preview: Preview callback for a newly created consumer

        Returns:
            The concatenated text of every fragment

        Raises:
            GenerationError: On a non-2xx response, an in-stream error or a transport failure
        """
        consumer = consumer or StreamConsumer(on_preview)
        consumer.state = GenerationState.REQUESTING
        timeout = httpx.Timeout(30.0, read=None)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                async with client.stream(
                    "POST",
                    self.url,
                    params={"alt": "sse", "key": self.api_key},
                    json={"contents": contents},
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        consumer.state = GenerationState.FAILED
                        raise GenerationError(
                            _error_message(response),
                            status_code=response.status_code,
                        )
                    return await consumer.consume(response.aiter_lines())
        except httpx.HTTPError as e:
            consumer.state = GenerationState.FAILED
            logger.error("Generation request failed: %s", e)
            raise GenerationError(f"Generation request failed: {e}")


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return "Generation failed."
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        return (data.get("error") or {}).get("message") or "Generation failed."
    return "Generation failed."


# =============================================================================
# POST-PROCESSING
# =============================================================================


def post_process(
    html: str,
    project_id: str,
    products_id: str = "",
    orders_id: str = "",
    settings: Optional[Settings] = None,
) -> str:
    """
    Fill the placeholders generated pages rely on and drop any preamble.

    Args:
        html: Raw model output
        project_id: Project the page belongs to (written into ``const PROJECT_ID``)
        products_id: Collection id for product forms
        orders_id: Collection id for checkout forms

    Returns:
        HTML starting at the first ``<!DOCTYPE html>`` when one follows a preamble
    """
    settings = settings or get_settings()
    result = (
        html.replace("'--FIREBASE_CONFIG_REPLACE_ME--'", json.dumps(settings.store_client_config))
        .replace("--CLOUDINARY_NAME--", settings.cloudinary_cloud_name)
        .replace("--CLOUDINARY_PRESET--", settings.cloudinary_upload_preset)
    )
    result = re.sub(r"const PROJECT_ID = '[^']*';", lambda _m: f"const PROJECT_ID = '{project_id or ''}';", result)
    result = result.replace("--PRODUCTS_ID--", products_id or "").replace("--ORDERS_ID--", orders_id or "")

    doctype_index = result.find(DOCTYPE)
    if doctype_index > 0:
        result = result[doctype_index:]
    return result
