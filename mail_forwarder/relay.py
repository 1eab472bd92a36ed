"""Outbound SMTP relay that re-sends decoded messages under a substituted sender."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

import aiosmtplib

from .config import Settings
from .models import Attachment, ParsedMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelayResult:
    ok: bool
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> "RelayResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> "RelayResult":
        return cls(ok=False, reason=reason)


def build_message(parsed: ParsedMessage, sender: str, recipient: str) -> EmailMessage:
    """Assemble the outgoing message, keeping subject, bodies and attachments.

    Parts that carry a Content-ID are attached as related parts of the HTML
    body, so ``cid:`` references in the HTML keep resolving.
    """
    message = EmailMessage()
    message["From"] = sender
    message["To"] = recipient
    message["Subject"] = parsed.subject
    html_part = None
    if parsed.html and not parsed.text:
        message.set_content(parsed.html, subtype="html")
        html_part = message
    else:
        message.set_content(parsed.text or "")
        if parsed.html:
            message.add_alternative(parsed.html, subtype="html")
            html_part = message.get_payload()[-1]

    related = [a for a in parsed.attachments if a.content_id and html_part is not None]
    for attachment in related:
        maintype, subtype = _mime_type(attachment)
        html_part.add_related(
            attachment.content,
            maintype=maintype,
            subtype=subtype,
            filename=attachment.filename,
            cid=attachment.content_id,
        )

    for attachment in parsed.attachments:
        if attachment in related:
            continue
        maintype, subtype = _mime_type(attachment)
        message.add_attachment(
            attachment.content,
            maintype=maintype,
            subtype=subtype,
            filename=attachment.filename,
            disposition="inline" if attachment.content_id else "attachment",
            cid=attachment.content_id,
        )
    return message


def _mime_type(attachment: Attachment) -> tuple[str, str]:
    maintype, _, subtype = attachment.content_type.partition("/")
    if maintype in ("multipart", "message") or not subtype:
        return "application", "octet-stream"
    return maintype, subtype


class Relay:
    """Send messages through the configured SMTP server, one connection per send."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def send(self, parsed: ParsedMessage, sender: str, recipient: str) -> RelayResult:
        """Forward ``parsed`` to ``recipient``; transport errors come back as failures."""
        try:
            message = build_message(parsed, sender, recipient)
            await aiosmtplib.send(
                message,
                hostname=self.settings.smtp_host,
                port=self.settings.smtp_port,
                username=self.settings.smtp_user,
                password=self.settings.smtp_password,
                use_tls=self.settings.smtp_implicit_tls,
                timeout=self.settings.smtp_timeout,
            )
        except Exception as exc:
            logger.error("Failed to forward email: %s Error: %s", parsed.subject, exc)
            return RelayResult.failure(str(exc) or exc.__class__.__name__)

        logger.info("Forwarded email: %s", parsed.subject)
        return RelayResult.success()
