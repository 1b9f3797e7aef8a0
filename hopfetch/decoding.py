"""
Content-Encoding handling for response bodies.

Decompression is streaming and forgiving, the way cURL and browsers are:
truncated gzip trailers are accepted, and "deflate" may be either the
zlib-wrapped format or the raw format some old IIS/Apache servers send.
"""

import zlib
from enum import Enum
from typing import AsyncIterable, AsyncIterator

from .errors import ContentDecodingError

GZIP_WBITS = 16 + zlib.MAX_WBITS
ZLIB_WBITS = zlib.MAX_WBITS
RAW_WBITS = -zlib.MAX_WBITS

# Responses that carry no content by definition
NO_CONTENT_STATUSES = frozenset({204, 304})


class Encoding(Enum):
    IDENTITY = "identity"
    GZIP = "gzip"
    DEFLATE = "deflate"


_CODINGS = {
    "gzip": Encoding.GZIP,
    "x-gzip": Encoding.GZIP,
    "deflate": Encoding.DEFLATE,
    "x-deflate": Encoding.DEFLATE,
}


def select_encoding(content_encoding: str | None, method: str, status: int, compress: bool) -> Encoding:
    if not compress or method == "HEAD" or content_encoding is None or status in NO_CONTENT_STATUSES:
        return Encoding.IDENTITY
    # Unknown codings are handed through untouched
    return _CODINGS.get(content_encoding.strip().lower(), Encoding.IDENTITY)


def deflate_wbits(first_chunk: bytes) -> int:
    """
    Pick zlib or raw inflate from the first byte of a deflate body.

    A zlib header starts with CMF whose low nibble is 8 (CM=deflate).
    """
    if (first_chunk[0] & 0x0F) == 0x08:
        return ZLIB_WBITS
    return RAW_WBITS


def decode(encoding: Encoding, chunks: AsyncIterable[bytes]) -> AsyncIterable[bytes]:
    if encoding is Encoding.GZIP:
        return _inflate(chunks, GZIP_WBITS)
    if encoding is Encoding.DEFLATE:
        return _inflate(chunks, None)
    return chunks


async def _inflate(chunks: AsyncIterable[bytes], wbits: int | None) -> AsyncIterator[bytes]:
    decompressor = None
    async for chunk in chunks:
        if not chunk:
            continue
        if decompressor is None:
            decompressor = zlib.decompressobj(wbits if wbits is not None else deflate_wbits(chunk))
        try:
            data = decompressor.decompress(chunk)
        except zlib.error as exc:
            raise ContentDecodingError(f"invalid compressed response body: {exc}", cause=exc) from exc
        if data:
            yield data

    if decompressor is None:
        return
    # flush() tolerates a missing end-of-stream marker or trailer
    try:
        tail = decompressor.flush()
    except zlib.error as exc:
        raise ContentDecodingError(f"invalid compressed response body: {exc}", cause=exc) from exc
    if tail:
        yield tail
