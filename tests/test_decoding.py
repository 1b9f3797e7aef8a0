import asyncio
import gzip
import zlib

import pytest

from hopfetch.decoding import Encoding, decode, deflate_wbits, select_encoding, RAW_WBITS, ZLIB_WBITS
from hopfetch.errors import ContentDecodingError

PAYLOAD = b"The quick brown fox jumps over the lazy dog. " * 40


async def _chunks(data: bytes, size: int = 17):
    for i in range(0, len(data), size):
        yield data[i:i + size]


def collect(encoding: Encoding, data: bytes) -> bytes:
    async def go():
        return b"".join([chunk async for chunk in decode(encoding, _chunks(data))])
    return asyncio.run(go())


@pytest.mark.parametrize("coding, expected", [
    ("gzip", Encoding.GZIP),
    ("x-gzip", Encoding.GZIP),
    ("deflate", Encoding.DEFLATE),
    ("x-deflate", Encoding.DEFLATE),
    (" GZip ", Encoding.GZIP),
    ("br", Encoding.IDENTITY),
    ("identity", Encoding.IDENTITY),
])
def test_select_encoding_by_header(coding, expected):
    assert select_encoding(coding, "GET", 200, True) is expected


def test_select_encoding_skips_when_not_applicable():
    assert select_encoding("gzip", "GET", 200, False) is Encoding.IDENTITY
    assert select_encoding("gzip", "HEAD", 200, True) is Encoding.IDENTITY
    assert select_encoding(None, "GET", 200, True) is Encoding.IDENTITY
    assert select_encoding("gzip", "GET", 204, True) is Encoding.IDENTITY
    assert select_encoding("gzip", "GET", 304, True) is Encoding.IDENTITY


def test_gzip_roundtrip():
    assert collect(Encoding.GZIP, gzip.compress(PAYLOAD)) == PAYLOAD


def test_gzip_without_trailer():
    # CRC32 + ISIZE stripped
    assert collect(Encoding.GZIP, gzip.compress(PAYLOAD)[:-8]) == PAYLOAD


def test_gzip_without_final_block():
    compressor = zlib.compressobj(wbits=16 + zlib.MAX_WBITS)
    data = compressor.compress(PAYLOAD) + compressor.flush(zlib.Z_SYNC_FLUSH)
    assert collect(Encoding.GZIP, data) == PAYLOAD


def test_zlib_wrapped_deflate():
    data = zlib.compress(PAYLOAD)
    assert deflate_wbits(data) == ZLIB_WBITS
    assert collect(Encoding.DEFLATE, data) == PAYLOAD


def test_raw_deflate():
    compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
    data = compressor.compress(PAYLOAD) + compressor.flush()
    assert deflate_wbits(data) == RAW_WBITS
    assert collect(Encoding.DEFLATE, data) == PAYLOAD


def test_identity_passes_bytes_through():
    assert collect(Encoding.IDENTITY, PAYLOAD) == PAYLOAD


def test_empty_compressed_body():
    assert collect(Encoding.GZIP, b"") == b""


def test_corrupt_gzip_raises_decoding_error():
    with pytest.raises(ContentDecodingError):
        collect(Encoding.GZIP, b"this is not gzip at all")
