"""
Policy module: decides what to do with a 3xx response.

The logic is:
- explicit
- a single pure function per decision
- easily auditable (no I/O, no transport state)
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import urljoin

from multidict import CIMultiDict

from .body import total_bytes
from .errors import FetchError, MaxRedirectError, RedirectPolicyError, UnsupportedRedirectError

if TYPE_CHECKING:
    from .request import Request

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


def is_redirect_status(code: int) -> bool:
    return code in REDIRECT_STATUSES


class RedirectMode(str, Enum):
    FOLLOW = "follow"
    ERROR = "error"
    MANUAL = "manual"


class RedirectAction(Enum):
    NONE = "none"
    MANUAL = "manual-rewrite"
    ERROR = "error"
    FOLLOW = "follow"


@dataclass(frozen=True)
class RedirectDecision:
    action: RedirectAction
    location: str | None = None
    error: type[FetchError] | None = None
    message: str | None = None


NO_REDIRECT = RedirectDecision(RedirectAction.NONE)


def resolve_location(base_url: str, location: str | None) -> str | None:
    if location is None:
        return None
    return urljoin(base_url, location)


def decide_redirect(request: "Request", status: int, location: str | None) -> RedirectDecision:
    """
    Classify one response of `request`.

    `location` is the raw Location header (None when absent). FOLLOW and
    MANUAL decisions carry the absolute location; ERROR decisions carry the
    error class and message to raise.
    """
    if not is_redirect_status(status):
        return NO_REDIRECT

    location_url = resolve_location(request.url, location)

    if request.redirect is RedirectMode.ERROR:
        return RedirectDecision(
            RedirectAction.ERROR,
            error=RedirectPolicyError,
            message=f"redirect mode is set to error: {request.url}",
        )

    if request.redirect is RedirectMode.MANUAL:
        return RedirectDecision(RedirectAction.MANUAL, location=location_url)

    # Follow without a target degrades to an ordinary response
    if location_url is None:
        return NO_REDIRECT

    if request.counter >= request.follow:
        return RedirectDecision(
            RedirectAction.ERROR,
            error=MaxRedirectError,
            message=f"maximum redirect reached at: {request.url}",
        )

    # A streamed body cannot be sent twice
    if status != 303 and request.body is not None and total_bytes(request.body) is None:
        return RedirectDecision(
            RedirectAction.ERROR,
            error=UnsupportedRedirectError,
            message="Cannot follow redirect with body being a readable stream",
        )

    return RedirectDecision(RedirectAction.FOLLOW, location=location_url)


def build_follow_up(request: "Request", status: int, location_url: str) -> "Request":
    """
    Next hop of a followed redirect.

    303, and 301/302 answering a POST, turn into a body-less GET.
    Everything else (including 307/308) keeps the method and body.
    """
    headers = CIMultiDict(request.headers)
    method = request.method
    body = request.body

    if status == 303 or (status in (301, 302) and method == "POST"):
        method = "GET"
        body = None
        headers.popall("Content-Length", None)

    return request.replace(
        url=location_url,
        method=method,
        body=body,
        headers=headers,
        counter=request.counter + 1,
    )
