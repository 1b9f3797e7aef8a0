import asyncio
import inspect
import logging
from typing import Any

from pydantic import ValidationError

from .body import BodyStream
from .decoding import decode, select_encoding
from .errors import (
    AbortError,
    FetchError,
    HeaderCorruptionError,
    InvalidRedirectError,
    NetworkError,
    RequestTimeoutError,
)
from .metrics import FIRST_BYTE, TOTAL, TimingRecorder
from .policy import RedirectAction, build_follow_up, decide_redirect
from .request import Request, transport_options
from .response import Response, set_header
from .settings import DEFAULT_FETCH_CONFIG, FetchConfig, ProxySettings
from .transport import AiohttpTransport, Transport, TransportResponse

logger = logging.getLogger(__name__)

ABORT_MESSAGE = "The user aborted a request."


class _Hop:
    """
    State of one request/response exchange inside a redirect chain.

    The future settles exactly once. finalize() may run from any number of
    sources (timer, transport error, cancellation) without double effect.
    """

    def __init__(self, request: Request):
        self.request = request
        self.recorder = TimingRecorder()
        self.future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.task: asyncio.Task | None = None
        self.response: TransportResponse | None = None
        self.body: BodyStream | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._listening = False

    def start(self, exchange) -> None:
        loop = asyncio.get_running_loop()
        if self.request.timeout > 0:
            self._timer = loop.call_later(self.request.timeout, self._on_timeout)
        if self.request.signal is not None:
            self.request.signal.add_listener(self.on_abort)
            self._listening = True
        self.task = asyncio.ensure_future(exchange)
        self.task.add_done_callback(self._on_task_done)

    def resolve(self, value: Any) -> bool:
        if self.future.done():
            return False
        self.future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True

    def abort(self, error: FetchError) -> None:
        # Pending future gets the error; otherwise the live body stream does
        if not self.reject(error) and self.body is not None:
            self.body.fail(error)
        self._destroy_request_body()
        self.finalize()

    def on_abort(self) -> None:
        logger.debug("aborting %s %s", self.request.method, self.request.url)
        self.abort(AbortError(ABORT_MESSAGE, timings=self.recorder.snapshot()))

    def _on_timeout(self) -> None:
        self._timer = None
        logger.debug("timeout after %ss: %s", self.request.timeout, self.request.url)
        self.abort(RequestTimeoutError(f"network timeout at: {self.request.url}", timings=self.recorder.snapshot()))

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.reject(error)
            self.finalize()
        else:
            self.resolve(task.result())

    def disarm_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def release_listener(self) -> None:
        if self._listening:
            self._listening = False
            self.request.signal.remove_listener(self.on_abort)

    def finalize(self) -> None:
        self.disarm_timer()
        self.release_listener()
        if self.task is not None and not self.task.done():
            self.task.cancel()
        if self.response is not None:
            response, self.response = self.response, None
            response.close()

    def _destroy_request_body(self) -> None:
        body = self.request.body
        if inspect.isasyncgen(body):
            if not body.ag_running:
                task = asyncio.ensure_future(body.aclose())
                _closing_bodies.add(task)
                task.add_done_callback(_on_body_closed)
        elif hasattr(body, "close"):
            body.close()


# Pending request-body aclose() tasks, kept alive until they finish
_closing_bodies: set[asyncio.Task] = set()


def _on_body_closed(task: asyncio.Task) -> None:
    _closing_bodies.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("closing request body failed: %r", error)


class Fetcher:
    """
    fetch()-style client: one call, one Response, redirects handled inside.

    - Follows, rejects or surfaces redirects per request (RedirectMode)
    - Decodes gzip/deflate bodies while streaming
    - Honors CancelToken and per-request timeouts
    - Attaches Timings to every Response and FetchError
    """

    def __init__(self, transport: Transport | None = None, config: FetchConfig | None = None,
                 proxy: ProxySettings | None = None):
        self.config = config or DEFAULT_FETCH_CONFIG
        self.transport = transport if transport is not None else AiohttpTransport(self.config, proxy)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()

    async def fetch(self, resource: str | Request, **options: Any) -> Response:
        """
        Fetch a URL (or a prepared Request) and return its Response.

        Keyword options are Request fields; for a plain URL, missing
        `timeout`, `follow` and `compress` come from the FetchConfig.

        Raises:
            FetchError subclasses, each carrying a Timings snapshot.
        """
        if isinstance(resource, Request):
            request = resource.replace(**options) if options else resource
        else:
            options.setdefault("timeout", self.config.default_timeout_s)
            options.setdefault("follow", self.config.max_redirects)
            options.setdefault("compress", self.config.compress)
            request = Request(url=resource, **options)
        return await self.dispatch(request)

    async def dispatch(self, request: Request) -> Response:
        # One hop at a time; each hop is torn down before the next starts
        while True:
            outcome = await self._send_hop(request)
            if isinstance(outcome, Response):
                return outcome
            request = outcome

    async def _send_hop(self, request: Request) -> Response | Request:
        if request.signal is not None and request.signal.cancelled:
            raise AbortError(ABORT_MESSAGE)

        logger.debug("dispatch %s %s (redirect %d/%d)", request.method, request.url, request.counter, request.follow)
        hop = _Hop(request)
        hop.start(self._exchange(hop))
        try:
            outcome = await hop.future
        except asyncio.CancelledError:
            hop.finalize()
            raise

        if isinstance(outcome, Request):
            hop.finalize()
        return outcome

    async def _exchange(self, hop: _Hop) -> Response | Request:
        request = hop.request
        options = transport_options(request, self.config.user_agent)

        try:
            response = await self.transport.send(options, hop.recorder)
        except Exception as exc:
            raise NetworkError(
                f"request to {request.url} failed, reason: {exc}",
                cause=exc,
                timings=hop.recorder.snapshot(),
            ) from exc

        hop.response = response
        hop.disarm_timer()
        hop.recorder.mark(FIRST_BYTE)

        decision = decide_redirect(request, response.status, response.headers.get("Location"))

        if decision.action is RedirectAction.ERROR:
            raise decision.error(decision.message, timings=hop.recorder.snapshot())

        if decision.action is RedirectAction.FOLLOW:
            logger.debug("following %s from %s to %s", response.status, request.url, decision.location)
            hop.response = None
            response.release()
            try:
                return build_follow_up(request, response.status, decision.location)
            except ValidationError as exc:
                raise InvalidRedirectError(
                    f"invalid redirect location at: {request.url}: {decision.location}",
                    cause=exc,
                    timings=hop.recorder.snapshot(),
                ) from exc

        if decision.action is RedirectAction.MANUAL and decision.location is not None:
            try:
                set_header(response.headers, "Location", decision.location)
            except ValueError as exc:
                raise HeaderCorruptionError(str(exc), cause=exc, timings=hop.recorder.snapshot()) from exc

        return self._assemble(hop, response)

    def _assemble(self, hop: _Hop, response: TransportResponse) -> Response:
        request = hop.request
        encoding = select_encoding(
            response.headers.get("Content-Encoding"), request.method, response.status, request.compress
        )
        body = BodyStream(
            decode(encoding, response.iter_chunks(self.config.chunk_size)),
            release=response.release,
            on_close=hop.release_listener,
            snapshot=hop.recorder.snapshot,
            limit=request.size,
            url=request.url,
        )
        hop.body = body
        hop.recorder.mark(TOTAL)
        return Response(
            body,
            url=request.url,
            status=response.status,
            status_text=response.reason,
            headers=response.headers,
            timings=hop.recorder.snapshot(),
            counter=request.counter,
            remote_address=response.remote_address,
            timeout=request.timeout,
        )
