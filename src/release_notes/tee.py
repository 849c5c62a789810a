"""Pass-through stream stage that also keeps a full copy of what it forwarded."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable

logger = logging.getLogger(__name__)


class TeeSink:
    """Forward chunks to the consumer while accumulating them for logging.

    Each chunk is recorded and yielded in the same step, so the consumer never
    waits on the accumulator and no lock is needed. When the source ends
    gracefully the chunks are joined, decoded once, and passed to
    ``on_complete``. The callback does not run when the source raises or when
    the consumer closes the stream early; ``on_error`` and ``on_cancel`` are
    told instead.
    """

    def __init__(
        self,
        source: AsyncIterator[bytes],
        on_complete: Callable[[str], None],
        on_error: Callable[[BaseException, int], None] | None = None,
        on_cancel: Callable[[int], None] | None = None,
        encoding: str = "utf-8",
    ):
        self._source = source
        self._on_complete = on_complete
        self._on_error = on_error
        self._on_cancel = on_cancel
        self._encoding = encoding
        self._chunks: list[bytes] = []
        self._started = False
        self.completed = False

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    def stream(self) -> TeeStream:
        """Return the consumer-facing stream. May be called only once.

        Raises:
            RuntimeError: If the stream was already handed out.
        """
        if self._started:
            raise RuntimeError("TeeSink stream has already been consumed")
        self._started = True
        return TeeStream(self)

    def text(self) -> str:
        """Decode everything forwarded so far in one pass."""
        return b"".join(self._chunks).decode(self._encoding, errors="replace")

    async def _run(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._source:
                self._chunks.append(chunk)
                yield chunk
        except (GeneratorExit, asyncio.CancelledError):
            self._cancelled()
            raise
        except Exception as exc:
            if self._on_error is not None:
                self._on_error(exc, self.chunk_count)
            raise
        finally:
            await self._close_source()

        if not self.completed:
            self.completed = True
            self._on_complete(self.text())

    async def _abandon(self) -> None:
        """Handle a close that arrives before the consumer's first read."""
        try:
            self._cancelled()
        finally:
            await self._close_source()

    def _cancelled(self) -> None:
        logger.info("Consumer closed stream after %d chunk(s)", self.chunk_count)
        if self._on_cancel is not None:
            self._on_cancel(self.chunk_count)

    async def _close_source(self) -> None:
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()


class TeeStream:
    """Async iterator handed to the consumer by ``TeeSink.stream``.

    Unlike a bare async generator, ``aclose`` still reaches the source and the
    cancel hook when it is called before the first ``__anext__``.
    """

    def __init__(self, sink: TeeSink):
        self._sink = sink
        self._body = sink._run()
        self._entered = False
        self._closed = False

    def __aiter__(self) -> TeeStream:
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        self._entered = True
        return await self._body.__anext__()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._body.aclose()
        if not self._entered:
            await self._sink._abandon()
