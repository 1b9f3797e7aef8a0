import logging
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, AsyncIterator, Protocol

import aiohttp
from multidict import CIMultiDict

from .errors import NetworkError
from .metrics import DNS_LOOKUP, TCP_CONNECTION, TLS_HANDSHAKE, TimingRecorder
from .settings import DEFAULT_FETCH_CONFIG, FetchConfig, ProxySettings, resolve_proxy

logger = logging.getLogger(__name__)


@dataclass
class TransportOptions:
    method: str
    url: str
    headers: CIMultiDict
    body: Any = None
    agent: Any = None


class TransportResponse(Protocol):
    status: int
    reason: str | None
    headers: CIMultiDict
    remote_address: str | None

    def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]: ...

    def release(self) -> None: ...

    def close(self) -> None: ...


class Transport(Protocol):
    async def send(self, options: TransportOptions, recorder: TimingRecorder) -> TransportResponse: ...


@dataclass
class _TraceContext:
    recorder: TimingRecorder
    secure: bool


def _trace_context(ctx: SimpleNamespace) -> _TraceContext | None:
    return getattr(ctx, "trace_request_ctx", None)


async def _on_dns_resolvehost_end(session, ctx, params) -> None:
    trace = _trace_context(ctx)
    if trace is not None:
        trace.recorder.mark(DNS_LOOKUP)


async def _on_connection_create_end(session, ctx, params) -> None:
    trace = _trace_context(ctx)
    if trace is None:
        return
    # aiohttp finishes TCP connect and TLS handshake in one step
    trace.recorder.mark(TCP_CONNECTION)
    if trace.secure:
        trace.recorder.mark(TLS_HANDSHAKE)


def _peer_address(resp: aiohttp.ClientResponse) -> str | None:
    connection = resp.connection
    transport = connection.transport if connection is not None else None
    if transport is None:
        return None
    peer = transport.get_extra_info("peername")
    if isinstance(peer, (tuple, list)) and peer:
        return peer[0]
    return None


class AiohttpResponse:
    """Adapter exposing an aiohttp.ClientResponse as a TransportResponse."""

    def __init__(self, resp: aiohttp.ClientResponse):
        self._resp = resp
        self.status = resp.status
        self.reason = resp.reason
        self.headers = CIMultiDict(resp.headers)
        self.remote_address = _peer_address(resp)

    async def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._resp.content.iter_chunked(chunk_size):
                yield chunk
        except aiohttp.ClientError as exc:
            raise NetworkError(
                f"Invalid response body while trying to fetch {self._resp.url}: {exc}", cause=exc
            ) from exc

    def release(self) -> None:
        self._resp.release()

    def close(self) -> None:
        self._resp.close()


class AiohttpTransport:
    """
    HTTP(S) transport built on aiohttp.

    - Redirects and content decoding are disabled; the fetcher owns both
    - One ClientSession for the shared pool, one per caller-supplied connector
    - Reports DNS and connection milestones through aiohttp tracing
    - Supports proxy usage (config.use_proxy; ProxySettings or resolve_proxy)
    """

    name = "aiohttp"

    def __init__(self, config: FetchConfig | None = None, proxy: ProxySettings | None = None):
        self.config = config or DEFAULT_FETCH_CONFIG
        self.proxy = proxy if proxy is not None else resolve_proxy(self.config)
        self._sessions: dict[Any, aiohttp.ClientSession] = {}

        self._trace_config = aiohttp.TraceConfig()
        self._trace_config.on_dns_resolvehost_end.append(_on_dns_resolvehost_end)
        self._trace_config.on_connection_create_end.append(_on_connection_create_end)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.close()

    def _session_for(self, agent: Any) -> aiohttp.ClientSession:
        session = self._sessions.get(agent)
        if session is not None and not session.closed:
            return session

        if agent is None:
            connector = aiohttp.TCPConnector(limit=self.config.http_max_connections)
        else:
            connector = agent

        session = aiohttp.ClientSession(
            connector=connector,
            connector_owner=agent is None,
            auto_decompress=False,
            timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.config.http_connect_timeout_s),
            trace_configs=[self._trace_config],
        )
        self._sessions[agent] = session
        return session

    async def send(self, options: TransportOptions, recorder: TimingRecorder) -> AiohttpResponse:
        session = self._session_for(options.agent)
        proxy_url = self.proxy.url if (self.proxy and self.config.use_proxy) else None
        trace = _TraceContext(recorder=recorder, secure=options.url.startswith("https:"))

        resp = await session.request(
            options.method,
            options.url,
            headers=options.headers,
            data=options.body,
            allow_redirects=False,
            proxy=proxy_url,
            skip_auto_headers=("Accept-Encoding",),
            trace_request_ctx=trace,
        )
        logger.debug("%s %s -> %s", options.method, options.url, resp.status)
        return AiohttpResponse(resp)
