import io
from collections.abc import Iterator
from typing import Any, AsyncIterator
from urllib.parse import urlparse

from multidict import CIMultiDict
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .body import total_bytes
from .cancel import CancelToken
from .policy import RedirectMode
from .transport import TransportOptions

DEFAULT_FOLLOW = 20


class Request(BaseModel):
    """
    Immutable description of one request attempt.

    Redirect hops never mutate a Request; they build a new one via replace().
    `agent` is the connection-pool handle (an aiohttp connector) or None for
    the transport's shared pool. `timeout` is in seconds, 0 disables it.
    `size` caps the decoded response body in bytes, 0 means no limit.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    url: str
    method: str = "GET"
    headers: Any = Field(default_factory=CIMultiDict)
    body: Any = None
    redirect: RedirectMode = RedirectMode.FOLLOW
    follow: int = Field(default=DEFAULT_FOLLOW, ge=0)
    counter: int = Field(default=0, ge=0)
    compress: bool = True
    timeout: float = Field(default=0.0, ge=0)
    size: int = Field(default=0, ge=0)
    signal: CancelToken | None = None
    agent: Any = None

    @field_validator("url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Only absolute URLs are supported: {value!r}")
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"Only HTTP(S) protocols are supported: {value!r}")
        return value

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @field_validator("headers", mode="before")
    @classmethod
    def _header_container(cls, value: Any) -> CIMultiDict:
        return CIMultiDict(value or ())

    def replace(self, **changes: Any) -> "Request":
        values = {name: getattr(self, name) for name in type(self).model_fields}
        values.update(changes)
        return type(self)(**values)


async def _iterate_in_loop(chunks: Iterator) -> AsyncIterator:
    for chunk in chunks:
        yield chunk


def transport_options(request: Request, user_agent: str) -> TransportOptions:
    """
    Resolve the headers and body actually put on the wire for `request`.
    """
    headers = CIMultiDict(request.headers)
    headers.setdefault("Accept", "*/*")
    headers.setdefault("User-Agent", user_agent)
    if request.compress:
        headers.setdefault("Accept-Encoding", "gzip,deflate")

    body = request.body
    if isinstance(body, str):
        headers.setdefault("Content-Type", "text/plain;charset=UTF-8")
        body = body.encode("utf-8")
    elif isinstance(body, Iterator) and not isinstance(body, io.IOBase):
        # aiohttp only streams async iterables
        body = _iterate_in_loop(body)

    length = total_bytes(request.body)
    if request.body is None:
        if request.method in ("POST", "PUT"):
            headers["Content-Length"] = "0"
    elif length is not None:
        headers["Content-Length"] = str(length)

    return TransportOptions(
        method=request.method,
        url=request.url,
        headers=headers,
        body=body,
        agent=request.agent,
    )
