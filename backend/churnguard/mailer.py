"""
mailer.py
=========
Outbound email transport.

The trigger engine only needs `send(to, subject, html, text) -> message id`,
raising EmailSendError on any failure. `ResendEmailSender` implements it on
the Resend API; tests pass their own object with the same `send` method.
"""

from __future__ import annotations

import re
from typing import Optional, Protocol

import resend

from .config import settings
from .errors import EmailSendError
from .log import get_logger

logger = get_logger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JS_URL_RE = re.compile(r"javascript:", re.IGNORECASE)
_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)
_TAG_VALUE_RE = re.compile(r"[^A-Za-z0-9_-]+")


class EmailSender(Protocol):
    def send(self, to: str, subject: str, html: str, text: str, *, template_name: str = "", trigger_name: str = "") -> str:
        ...


def sanitize_html(html: str) -> str:
    """Strip script blocks, javascript: URLs and inline event handlers."""
    html = _SCRIPT_RE.sub("", html)
    html = _JS_URL_RE.sub("", html)
    return _HANDLER_RE.sub("", html)


def text_fallback(html: str) -> str:
    text = re.sub(r"<br\s*/?>", "\n", html, flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]*>", "", text)
    return re.sub(r"\s+", " ", text).strip()


def _tag_value(value: str) -> str:
    # Resend tag values only allow ASCII letters, digits, "_" and "-"
    return _TAG_VALUE_RE.sub("_", value or "unknown").strip("_") or "unknown"


class ResendEmailSender:
    def __init__(self, api_key: Optional[str] = None, sender: Optional[str] = None, log=None):
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.sender = sender or settings.email_from
        self.log = log or logger

    def send(self, to: str, subject: str, html: str, text: str, *, template_name: str = "", trigger_name: str = "") -> str:
        if not self.api_key:
            raise EmailSendError("Email service not configured: RESEND_API_KEY is required", recipient=to)
        if not to or not EMAIL_RE.match(to):
            raise EmailSendError(f"Invalid email format: {to}", recipient=to)
        if not subject:
            raise EmailSendError("Invalid or missing email subject", recipient=to)
        if not html:
            raise EmailSendError("Invalid or missing HTML content", recipient=to)

        clean_html = sanitize_html(html)
        params = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": clean_html,
            "text": text or text_fallback(clean_html),
            "tags": [
                {"name": "type", "value": "churn-prevention"},
                {"name": "template", "value": _tag_value(template_name)},
                {"name": "trigger", "value": _tag_value(trigger_name)},
            ],
        }

        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(params)
        except Exception as e:
            raise EmailSendError(f"Email delivery failed: {e}", recipient=to) from e

        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        if not message_id:
            raise EmailSendError(f"Email delivery failed: unexpected response {response!r}", recipient=to)

        self.log.info("email_sent", recipient=to, email_id=message_id, template=template_name, trigger=trigger_name)
        return message_id
