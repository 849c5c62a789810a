"""Streaming model backends that turn a prompt into ordered byte chunks."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, AsyncIterator, Protocol

from release_notes.errors import AuthorizationError, ModelUnavailable, StreamInterrupted
from release_notes.models import GenerationOptions, PromptMessage

logger = logging.getLogger(__name__)

VERSION_BUMP_RE = re.compile(r"\b(bump|bumped|release|version)\b.*\bv?\d+\.\d+(?:\.\d+)?\b", re.IGNORECASE)
_AUTH_MARKERS = ("API key not valid", "API_KEY_INVALID", "PERMISSION_DENIED", "UNAUTHENTICATED")


class Generator(Protocol):
    async def generate(self, prompt: PromptMessage, options: GenerationOptions) -> AsyncIterator[bytes]: ...


def _is_auth_failure(exc: BaseException) -> bool:
    """True for 401/403 codes or Gemini messages that mean a bad API key."""
    code = getattr(exc, "code", None)
    if code in (401, 403):
        return True
    text = f"{getattr(exc, 'status', '')} {exc}"
    return any(marker in text for marker in _AUTH_MARKERS)


async def _next_chunk(iterator: AsyncIterator[Any]) -> bytes | None:
    """Advance to the next response carrying text; ``None`` at end of stream."""
    while True:
        try:
            response = await iterator.__anext__()
        except StopAsyncIteration:
            return None
        text = response.text
        if text:
            return text.encode("utf-8")


async def _aclose(iterator: AsyncIterator[Any]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


class GeminiGenerator:
    """Adapter around Google GenAI streaming content generation.

    ``generate`` waits for the first chunk before returning, so failures to
    start are raised to the caller instead of surfacing inside the stream.
    """

    def __init__(self, client: Any | None = None, api_key: str | None = None):
        self.client = client
        self.api_key = api_key

    def _get_client(self) -> Any:
        if self.client is None:
            if not self.api_key:
                raise AuthorizationError("Missing GEMINI_API_KEY (set env var or .api_keys/Gemini.md)")
            from google import genai

            self.client = genai.Client(api_key=self.api_key)
        return self.client

    async def generate(self, prompt: PromptMessage, options: GenerationOptions) -> AsyncIterator[bytes]:
        """Start a streaming generation.

        Args:
            prompt: System and user message pair.
            options: Model name plus optional seed and temperature.

        Returns:
            A single-pass async iterator of UTF-8 byte chunks in upstream order.

        Raises:
            AuthorizationError: If the API key is missing or rejected.
            ModelUnavailable: If the request fails before the first chunk.
        """
        from google.genai import types

        client = self._get_client()
        config = types.GenerateContentConfig(
            system_instruction=prompt.system,
            seed=options.seed,
            temperature=options.temperature,
        )

        logger.info("Calling model %s (seed=%s)", options.model, options.seed)
        iterator: AsyncIterator[Any] | None = None
        try:
            upstream = await client.aio.models.generate_content_stream(
                model=options.model,
                contents=prompt.user,
                config=config,
            )
            iterator = upstream.__aiter__()
            first = await _next_chunk(iterator)
        except Exception as exc:
            if iterator is not None:
                await _aclose(iterator)
            if _is_auth_failure(exc):
                raise AuthorizationError(f"Model API rejected credentials: {exc}") from exc
            raise ModelUnavailable(f"Model request failed: {exc}") from exc

        return _UpstreamStream(self._relay(first, iterator), iterator)

    async def _relay(self, first: bytes | None, iterator: AsyncIterator[Any]) -> AsyncIterator[bytes]:
        """Yield ``first`` and then the rest of the upstream stream.

        Any failure after the first chunk, whether from the API, the transport
        or response parsing, becomes ``StreamInterrupted``. Cancellation and
        consumer close pass through untouched.
        """
        forwarded = 0
        try:
            chunk = first
            while chunk is not None:
                yield chunk
                forwarded += 1
                chunk = await _next_chunk(iterator)
        except Exception as exc:
            logger.warning("Model stream interrupted after %d chunk(s): %s", forwarded, exc)
            raise StreamInterrupted(f"Model stream interrupted: {exc}", chunks_forwarded=forwarded) from exc
        finally:
            await _aclose(iterator)
        logger.info("Model stream finished after %d chunk(s)", forwarded)


class _UpstreamStream:
    """Relay handle that closes the upstream response even if never read.

    A bare async generator skips its ``finally`` when closed before its first
    ``__anext__``, which would leave the model request open.
    """

    def __init__(self, relay: AsyncIterator[bytes], upstream: AsyncIterator[Any]):
        self._relay = relay
        self._upstream = upstream
        self._entered = False

    def __aiter__(self) -> _UpstreamStream:
        return self

    async def __anext__(self) -> bytes:
        self._entered = True
        return await self._relay.__anext__()

    async def aclose(self) -> None:
        await self._relay.aclose()  # type: ignore[attr-defined]
        if not self._entered:
            await _aclose(self._upstream)


def local_release_notes(user_message: str) -> list[str]:
    """Summarize serialized commits without a model.

    Each commit contributes the first line of its message as a list item.
    Version bumps collapse to the first one seen, which is the latest in
    provider order.
    """
    items: list[str] = []
    seen_bump = False
    for line in user_message.splitlines():
        if not line.startswith("MESSAGE: "):
            continue
        summary = line[len("MESSAGE: ") :].strip()
        if not summary:
            continue
        if VERSION_BUMP_RE.search(summary):
            if seen_bump:
                continue
            seen_bump = True
        items.append(f"- {summary}\n")
    return items


class LocalGenerator:
    """Deterministic offline backend used when no model call is wanted."""

    async def generate(self, prompt: PromptMessage, options: GenerationOptions) -> AsyncIterator[bytes]:
        """Stream one list item per commit summary; ``options`` are ignored."""
        return self._stream(local_release_notes(prompt.user))

    async def _stream(self, items: list[str]) -> AsyncIterator[bytes]:
        if not items:
            yield b"- No changes in this window.\n"
            return
        for item in items:
            yield item.encode("utf-8")
            await asyncio.sleep(0)
