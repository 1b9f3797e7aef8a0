import asyncio
import json
from http import HTTPStatus
from typing import Any

from multidict import CIMultiDict

from .body import BodyStream
from .errors import RequestTimeoutError
from .metrics import Timings

_ILLEGAL_HEADER_CHARS = ("\r", "\n", "\0")


def set_header(headers: CIMultiDict, name: str, value: str) -> None:
    """Replace every `name` header with a single validated `value`."""
    if not isinstance(value, str) or any(ch in value for ch in _ILLEGAL_HEADER_CHARS):
        raise ValueError(f"{value!r} is not a legal HTTP header value")
    headers[name] = value


def _reason_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


class Response:
    """
    Result of a fetch: metadata plus a streaming body.

    Fields:
        url         : Effective URL (the last hop of a redirect chain).
        status      : HTTP status code.
        status_text : Reason phrase sent by the server, or the standard one.
        headers     : CIMultiDict of response headers.
        timings     : Timings of the hop that produced this response.
        redirected  : True when at least one redirect was followed.
        body        : BodyStream of decoded bytes (iterate with `async for`).
        remote_address : Peer IP the response came from, when known.

    `timeout` (seconds, 0 disables) bounds the buffering helpers read(),
    text() and json(). Iterating `body` directly is not time-limited.
    """

    def __init__(
        self,
        body: BodyStream | None = None,
        *,
        url: str,
        status: int = 200,
        status_text: str | None = None,
        headers: Any = None,
        timings: Timings | None = None,
        counter: int = 0,
        remote_address: str | None = None,
        timeout: float = 0.0,
    ):
        self.body = body
        self.url = url
        self.status = status
        self.status_text = status_text or _reason_phrase(status)
        self.headers = CIMultiDict(headers or ())
        self.timings = timings if timings is not None else Timings()
        self.counter = counter
        self.remote_address = remote_address
        self.timeout = timeout
        self.body_used = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def redirected(self) -> bool:
        return self.counter > 0

    @property
    def charset(self) -> str | None:
        content_type = self.headers.get("Content-Type", "")
        for param in content_type.split(";")[1:]:
            key, _, value = param.strip().partition("=")
            if key.lower() == "charset" and value:
                return value.strip('"')
        return None

    async def read(self) -> bytes:
        if self.body_used:
            raise TypeError(f"body used already for: {self.url}")
        self.body_used = True
        if self.body is None:
            return b""
        collect = self._collect()
        if self.timeout <= 0:
            return await collect
        try:
            return await asyncio.wait_for(collect, self.timeout)
        except asyncio.TimeoutError as exc:
            await self.body.aclose()
            raise RequestTimeoutError(
                f"Response timeout while trying to fetch {self.url} (over {self.timeout}s)",
                kind="body-timeout",
                cause=exc,
                timings=self.timings,
            ) from exc

    async def _collect(self) -> bytes:
        return b"".join([chunk async for chunk in self.body])

    def clone(self) -> "Response":
        """Copy of this response whose body can be read independently."""
        if self.body_used:
            raise TypeError("cannot clone body after it is used")
        other_body = None
        if self.body is not None:
            self.body, other_body = self.body.tee()
        return Response(
            other_body,
            url=self.url,
            status=self.status,
            status_text=self.status_text,
            headers=self.headers,
            timings=self.timings,
            counter=self.counter,
            remote_address=self.remote_address,
            timeout=self.timeout,
        )

    async def text(self, encoding: str | None = None) -> str:
        data = await self.read()
        return data.decode(encoding or self.charset or "utf-8", errors="replace")

    async def json(self) -> Any:
        return json.loads(await self.read())

    async def aclose(self) -> None:
        if self.body is not None:
            await self.body.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    def __repr__(self) -> str:
        return f"<Response [{self.status}] {self.url}>"
