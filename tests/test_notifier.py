"""Unit tests for invitation delivery in mailer/notifier.py.

Covers:
- SendGridNotifier returns True on the first successful post
- Transport failures are retried with linear back-off, then reported as False
- Sandbox mode follows the production flag
- build_notifier() falls back to the log notifier without an API key
- The rendered message escapes user-supplied text
"""

from unittest.mock import MagicMock

import pytest
import requests

from mailer.notifier import MAX_RETRIES, LogNotifier, SendGridNotifier, build_notifier, render_invitation


def _response(status: int) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def notifier(sleeps) -> SendGridNotifier:
    n = SendGridNotifier("SG.test-key", "no-reply@example.com", sandbox=True, timeout=2.0, sleep=sleeps.append)
    n._session = MagicMock()
    return n


def test_send_succeeds_first_try(notifier, sleeps):
    notifier._session.post.return_value = _response(202)

    assert notifier.send_invitation("alice", "alice@x.com", "http://app/confirm/t") is True
    assert notifier._session.post.call_count == 1
    assert sleeps == []

    _, kwargs = notifier._session.post.call_args
    assert kwargs["timeout"] == 2.0
    message = kwargs["json"]
    assert message["personalizations"][0]["to"][0]["email"] == "alice@x.com"
    assert message["mail_settings"]["sandbox_mode"]["enable"] is True
    assert "http://app/confirm/t" in message["content"][0]["value"]


def test_send_retries_then_succeeds(notifier, sleeps):
    notifier._session.post.side_effect = [requests.ConnectionError("reset"), _response(202)]

    assert notifier.send_invitation("alice", "alice@x.com", "http://app/confirm/t") is True
    assert sleeps == [1]


def test_send_gives_up_after_max_retries(notifier, sleeps):
    notifier._session.post.return_value = _response(500)

    assert notifier.send_invitation("alice", "alice@x.com", "http://app/confirm/t") is False
    assert notifier._session.post.call_count == MAX_RETRIES
    assert sleeps == [1, 2]


def test_api_key_required():
    with pytest.raises(ValueError):
        SendGridNotifier("", "no-reply@example.com")


def test_build_notifier_without_key_logs():
    assert isinstance(build_notifier("", "no-reply@example.com", production=False), LogNotifier)


def test_build_notifier_production_disables_sandbox():
    n = build_notifier("SG.key", "no-reply@example.com", production=True)

    assert isinstance(n, SendGridNotifier)
    assert n.sandbox is False
    n.close()


def test_log_notifier_always_succeeds():
    assert LogNotifier().send_invitation("bob", "bob@x.com", "http://app/confirm/t") is True


def test_render_invitation_escapes_username():
    subject, body = render_invitation("<script>", "http://app/confirm/t")

    assert "SocialGate" in subject
    assert "<script>" not in body
    assert "&lt;script&gt;" in body
