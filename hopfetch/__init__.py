import logging

from .cancel import CancelToken
from .errors import (
    AbortError,
    ContentDecodingError,
    FetchError,
    HeaderCorruptionError,
    InvalidRedirectError,
    MaxRedirectError,
    MaxSizeError,
    NetworkError,
    RedirectPolicyError,
    RequestTimeoutError,
    UnsupportedRedirectError,
)
from .fetch import Fetcher
from .metrics import Timings
from .policy import RedirectMode, is_redirect_status
from .request import Request
from .response import Response
from .settings import FetchConfig, ProxySettings, load_fetch_config, load_proxy_from_txt, resolve_proxy
from .transport import AiohttpTransport

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AbortError",
    "AiohttpTransport",
    "CancelToken",
    "ContentDecodingError",
    "FetchConfig",
    "FetchError",
    "Fetcher",
    "HeaderCorruptionError",
    "InvalidRedirectError",
    "MaxRedirectError",
    "MaxSizeError",
    "NetworkError",
    "ProxySettings",
    "RedirectMode",
    "RedirectPolicyError",
    "Request",
    "RequestTimeoutError",
    "Response",
    "Timings",
    "UnsupportedRedirectError",
    "is_redirect_status",
    "load_fetch_config",
    "load_proxy_from_txt",
    "resolve_proxy",
]
