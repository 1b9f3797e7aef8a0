import pytest

from hopfetch.errors import MaxRedirectError, RedirectPolicyError, UnsupportedRedirectError
from hopfetch.policy import (
    RedirectAction,
    build_follow_up,
    decide_redirect,
    is_redirect_status,
)
from hopfetch.request import Request


def make_request(**overrides) -> Request:
    """Helper: start from a plain GET and override fields."""
    base = {"url": "http://h/a", "follow": 5}
    base.update(overrides)
    return Request(**base)


def stream():
    yield b"chunk"


@pytest.mark.parametrize("code", [301, 302, 303, 307, 308])
def test_redirect_statuses(code):
    assert is_redirect_status(code)


@pytest.mark.parametrize("code", [200, 204, 300, 304, 305, 306, 400])
def test_non_redirect_statuses(code):
    assert not is_redirect_status(code)


def test_plain_response_needs_no_decision():
    decision = decide_redirect(make_request(), 200, "/ignored")
    assert decision.action is RedirectAction.NONE


def test_error_mode_always_errors():
    decision = decide_redirect(make_request(redirect="error"), 307, "/b")
    assert decision.action is RedirectAction.ERROR
    assert decision.error is RedirectPolicyError
    assert decision.message == "redirect mode is set to error: http://h/a"


def test_manual_mode_resolves_relative_location():
    decision = decide_redirect(make_request(redirect="manual"), 302, "/x")
    assert decision.action is RedirectAction.MANUAL
    assert decision.location == "http://h/x"


def test_manual_mode_without_location():
    decision = decide_redirect(make_request(redirect="manual"), 302, None)
    assert decision.action is RedirectAction.MANUAL
    assert decision.location is None


def test_follow_without_location_falls_back_to_response():
    decision = decide_redirect(make_request(), 301, None)
    assert decision.action is RedirectAction.NONE


def test_follow_resolves_against_current_url():
    decision = decide_redirect(make_request(url="http://h/dir/page"), 302, "next")
    assert decision.action is RedirectAction.FOLLOW
    assert decision.location == "http://h/dir/next"


def test_counter_at_limit_errors():
    decision = decide_redirect(make_request(counter=5), 302, "/b")
    assert decision.action is RedirectAction.ERROR
    assert decision.error is MaxRedirectError


def test_unreplayable_body_blocks_non_303():
    decision = decide_redirect(make_request(method="PUT", body=stream()), 308, "/b")
    assert decision.action is RedirectAction.ERROR
    assert decision.error is UnsupportedRedirectError


def test_unreplayable_body_allowed_on_303():
    decision = decide_redirect(make_request(method="POST", body=stream()), 303, "/b")
    assert decision.action is RedirectAction.FOLLOW


def test_follow_up_copies_everything_and_counts():
    request = make_request(method="PUT", body=b"data", headers={"X-Token": "1"}, compress=False, timeout=3)
    follow_up = build_follow_up(request, 307, "http://h/b")

    assert follow_up.url == "http://h/b"
    assert follow_up.method == "PUT"
    assert follow_up.body == b"data"
    assert follow_up.headers["X-Token"] == "1"
    assert follow_up.follow == 5
    assert follow_up.counter == 1
    assert follow_up.compress is False
    assert follow_up.timeout == 3
    assert request.counter == 0


def test_follow_up_after_303_drops_body_and_length():
    request = make_request(method="PUT", body=b"data", headers={"Content-Length": "4"})
    follow_up = build_follow_up(request, 303, "http://h/b")

    assert follow_up.method == "GET"
    assert follow_up.body is None
    assert "Content-Length" not in follow_up.headers
    assert request.headers["Content-Length"] == "4"


def test_follow_up_after_302_keeps_put():
    follow_up = build_follow_up(make_request(method="PUT", body=b"d"), 302, "http://h/b")
    assert follow_up.method == "PUT"
    assert follow_up.body == b"d"
