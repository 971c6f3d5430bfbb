"""
mailer/notifier.py -- Outbound invitation delivery.

The registration saga only needs one question answered: did the invitation
go out? Notifier.send_invitation() returns True on success and False on
failure; transport exceptions are caught and logged here so the saga can
decide whether to compensate.

Implementations:
  SendGridNotifier -- SendGrid v3 HTTP API via a shared requests.Session.
      Sandbox mode outside production (SendGrid validates but does not
      deliver). Up to 3 attempts with linear back-off; every attempt is
      bounded by the configured timeout.
  LogNotifier -- development default when no API key is configured. Logs the
      activation URL so a developer can click through locally.
"""

from __future__ import annotations

import html
import logging
import time
from collections.abc import Callable
from typing import Protocol

import requests

logger = logging.getLogger("socialgate.mailer")

SENDGRID_API = "https://api.sendgrid.com/v3/mail/send"
FROM_NAME = "SocialGate"
MAX_RETRIES = 3


class Notifier(Protocol):
    def send_invitation(self, username: str, email: str, activation_url: str) -> bool: ...

    def close(self) -> None: ...


def render_invitation(username: str, activation_url: str) -> tuple[str, str]:
    """Return (subject, html_body) for the welcome/activation message."""
    subject = "Finish registration with SocialGate"
    body = (
        f"<p>Hi {html.escape(username)},</p>"
        "<p>Thanks for signing up for SocialGate. Before you can start using it, "
        "please confirm your email address:</p>"
        f'<p><a href="{html.escape(activation_url, quote=True)}">{html.escape(activation_url)}</a></p>'
        "<p>If you did not sign up, you can safely ignore this email.</p>"
    )
    return subject, body


class SendGridNotifier:
    def __init__(
        self,
        api_key: str,
        from_email: str,
        sandbox: bool = True,
        timeout: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("SendGrid API key is required")
        self.from_email = from_email
        self.sandbox = sandbox
        self.timeout = timeout
        self._sleep = sleep
        self._session = requests.Session()
        self._session.headers["Authorization"] = f"Bearer {api_key}"
        # Fixed API endpoint; no redirects expected.
        self._session.max_redirects = 3

    def _message(self, username: str, email: str, activation_url: str) -> dict:
        subject, body = render_invitation(username, activation_url)
        return {
            "personalizations": [{"to": [{"email": email, "name": username}]}],
            "from": {"email": self.from_email, "name": FROM_NAME},
            "subject": subject,
            "content": [{"type": "text/html", "value": body}],
            "mail_settings": {"sandbox_mode": {"enable": self.sandbox}},
        }

    def send_invitation(self, username: str, email: str, activation_url: str) -> bool:
        message = self._message(username, email, activation_url)
        for attempt in range(MAX_RETRIES):
            try:
                resp = self._session.post(SENDGRID_API, json=message, timeout=self.timeout)
                resp.raise_for_status()
                logger.info("Invitation sent to user %s (status %d)", username, resp.status_code)
                return True
            except requests.RequestException as exc:
                logger.warning("SendGrid attempt %d/%d failed: %s", attempt + 1, MAX_RETRIES, exc)
                if attempt + 1 < MAX_RETRIES:
                    self._sleep(attempt + 1)
        logger.error("Failed to send invitation to user %s after %d attempts", username, MAX_RETRIES)
        return False

    def close(self) -> None:
        self._session.close()


class LogNotifier:
    """Writes the invitation to the log instead of sending it."""

    def send_invitation(self, username: str, email: str, activation_url: str) -> bool:
        logger.info("Invitation for %s <%s>: %s", username, email, activation_url)
        return True

    def close(self) -> None:
        pass


def build_notifier(api_key: str, from_email: str, production: bool, timeout: float = 5.0) -> Notifier:
    if not api_key:
        logger.warning("SENDGRID_API_KEY not set -- invitations will be logged, not sent")
        return LogNotifier()
    return SendGridNotifier(api_key, from_email, sandbox=not production, timeout=timeout)
