import asyncio
from collections import deque
from typing import Any, AsyncIterable, Callable

from .errors import FetchError, MaxSizeError
from .metrics import Timings


def total_bytes(body: Any) -> int | None:
    """
    Size of a request body in bytes, or None when it can only be read once.

    Strings count as their UTF-8 encoding. Iterators, async iterators and
    file-like objects are streams of unknown length.
    """
    if body is None:
        return 0
    if isinstance(body, (bytes, bytearray)):
        return len(body)
    if isinstance(body, memoryview):
        return body.nbytes
    if isinstance(body, str):
        return len(body.encode("utf-8"))
    return None


class BodyStream:
    """
    Pull-driven response body: an async iterator of decoded byte chunks.

    - nothing is buffered here; every read pulls from the transport
    - fail(error) delivers exactly one error to the reader of a live stream
    - on_close runs once when the stream ends, fails or is closed
    - a non-zero `limit` caps the decoded size; going over it fails with MaxSizeError
    """

    def __init__(
        self,
        chunks: AsyncIterable[bytes],
        *,
        release: Callable[[], None] | None = None,
        on_close: Callable[[], None] | None = None,
        snapshot: Callable[[], Timings] | None = None,
        limit: int = 0,
        url: str = "",
    ):
        self._chunks = chunks.__aiter__()
        self._release = release
        self._on_close = on_close
        self._snapshot = snapshot
        self._limit = limit
        self._url = url
        self._received = 0
        self._failure: BaseException | None = None
        self._done = False

    @property
    def closed(self) -> bool:
        return self._done

    def fail(self, error: BaseException) -> bool:
        if self._done or self._failure is not None:
            return False
        self._failure = error
        return True

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if self._done:
            raise StopAsyncIteration
        if self._failure is not None:
            self._finish()
            raise self._failure

        try:
            chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            self._finish()
            if self._failure is not None:
                raise self._failure from None
            raise
        except Exception as exc:
            self._finish()
            # A pending failure explains why the transport read broke
            if self._failure is not None:
                raise self._failure from exc
            if isinstance(exc, FetchError) and self._snapshot is not None:
                exc.timings = self._snapshot()
            raise

        if self._failure is not None:
            self._finish()
            raise self._failure

        self._received += len(chunk)
        if self._limit and self._received > self._limit:
            await self.aclose()
            raise MaxSizeError(
                f"content size at {self._url} over limit: {self._limit}",
                timings=self._snapshot() if self._snapshot is not None else None,
            )
        return chunk

    def tee(self) -> tuple["BodyStream", "BodyStream"]:
        """
        Split this stream into two independent readers of the same bytes.

        This stream must not be read directly afterwards. Chunks pulled by
        the faster reader are buffered until the slower one catches up.
        """
        tee = _Tee(self)
        return BodyStream(_TeeBranch(tee, 0)), BodyStream(_TeeBranch(tee, 1))

    async def aclose(self) -> None:
        if self._done:
            return
        self._finish()
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()

    def _finish(self) -> None:
        if self._done:
            return
        self._done = True
        if self._release is not None:
            self._release()
        if self._on_close is not None:
            self._on_close()


class _Tee:
    """Shared source for the two branches returned by BodyStream.tee()."""

    def __init__(self, source: BodyStream):
        self._source = source
        self._buffers = (deque(), deque())
        self._open = {0, 1}
        self._lock = asyncio.Lock()
        self._error: BaseException | None = None
        self._ended = False

    async def next(self, index: int) -> bytes:
        buffer = self._buffers[index]
        while not buffer:
            if self._error is not None:
                raise self._error
            if self._ended:
                raise StopAsyncIteration
            async with self._lock:
                # The other branch may have pulled while we waited
                if buffer or self._error is not None or self._ended:
                    continue
                try:
                    chunk = await self._source.__anext__()
                except StopAsyncIteration:
                    self._ended = True
                    continue
                except Exception as exc:
                    self._error = exc
                    continue
                for branch in self._open:
                    self._buffers[branch].append(chunk)
        return buffer.popleft()

    async def close(self, index: int) -> None:
        self._open.discard(index)
        self._buffers[index].clear()
        if not self._open:
            await self._source.aclose()


class _TeeBranch:
    def __init__(self, tee: _Tee, index: int):
        self._tee = tee
        self._index = index

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        return await self._tee.next(self._index)

    async def aclose(self) -> None:
        await self._tee.close(self._index)
