from .metrics import Timings


class FetchError(Exception):
    """
    Base class for every failure surfaced by a fetch.

    Attributes:
        kind    : Short machine-readable code, e.g. "max-redirect".
        cause   : Underlying exception for transport failures, if any.
        timings : Timings snapshot taken when the failure happened.
    """

    kind = "fetch-error"

    def __init__(self, message: str, kind: str | None = None,
                 cause: BaseException | None = None, timings: Timings | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.cause = cause
        self.timings = timings if timings is not None else Timings()


class AbortError(FetchError):
    kind = "aborted"


class RequestTimeoutError(FetchError):
    kind = "request-timeout"


class NetworkError(FetchError):
    kind = "system"


class RedirectPolicyError(FetchError):
    kind = "no-redirect"


class MaxRedirectError(FetchError):
    kind = "max-redirect"


class UnsupportedRedirectError(FetchError):
    kind = "unsupported-redirect"


class HeaderCorruptionError(FetchError):
    kind = "header-corruption"


class ContentDecodingError(FetchError):
    kind = "decoding"


class InvalidRedirectError(FetchError):
    kind = "invalid-redirect"


class MaxSizeError(FetchError):
    kind = "max-size"
