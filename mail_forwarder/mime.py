"""Decode raw RFC 822 bytes into a ParsedMessage."""

from __future__ import annotations

import logging
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses

from .models import Attachment, ParsedMessage

logger = logging.getLogger(__name__)

DEFAULT_ATTACHMENT_NAME = "attachment"


class MessageDecodeError(ValueError):
    """Raised when a raw message cannot be decoded."""


def decode_message(raw: bytes) -> ParsedMessage:
    """Parse raw MIME bytes into sender, subject, bodies and attachments.

    Raises:
        MessageDecodeError: If the content is empty or any part fails to decode.
    """
    if not raw:
        raise MessageDecodeError("Empty message content")

    try:
        msg = BytesParser(policy=policy.default).parsebytes(bytes(raw))
        return ParsedMessage(
            sender=extract_sender(msg),
            subject=str(msg.get("Subject", "") or "").strip(),
            text=_body_content(msg, "plain") or "",
            html=_body_content(msg, "html"),
            attachments=extract_attachments(msg),
        )
    except MessageDecodeError:
        raise
    except (LookupError, ValueError, TypeError, UnicodeError, AttributeError) as exc:
        raise MessageDecodeError(f"Invalid MIME message: {exc}") from exc


def extract_sender(msg: EmailMessage) -> str:
    """Return the first address in From, falling back to the raw header text."""
    header = msg.get("From")
    if header is None:
        return ""
    for _name, address in getaddresses([str(header)]):
        if address:
            return address.strip()
    return str(header).strip()


def _body_content(msg: EmailMessage, subtype: str) -> str | None:
    part = msg.get_body(preferencelist=(subtype,))
    if part is None:
        return None
    return part.get_content()


def extract_attachments(msg: EmailMessage) -> list[Attachment]:
    """Collect every leaf part that is not a chosen body, in MIME order.

    This covers a non-text single-part message and the inline parts of
    ``multipart/related``. Content-ID is kept so ``cid:`` references still resolve.
    """
    bodies = [msg.get_body(preferencelist=(subtype,)) for subtype in ("plain", "html")]
    attachments: list[Attachment] = []
    for part in _leaf_parts(msg):
        if any(part is body for body in bodies):
            continue
        filename = part.get_filename() or DEFAULT_ATTACHMENT_NAME
        content = part.get_payload(decode=True)
        if content is None:
            # message/rfc822 parts carry a nested message instead of bytes
            content = part.get_payload(0).as_bytes() if part.is_multipart() else b""
        content_id = part.get("Content-ID")
        attachments.append(
            Attachment(
                filename=filename,
                content=content,
                content_type=part.get_content_type(),
                content_id=str(content_id).strip() if content_id else None,
            )
        )
        logger.debug("Decoded attachment %s (%s, %d bytes)", filename, part.get_content_type(), len(content))
    return attachments


def _leaf_parts(part: EmailMessage):
    # message/* parts are leaves; their inner tree travels as one attachment
    if part.get_content_maintype() == "multipart":
        for subpart in part.iter_parts():
            yield from _leaf_parts(subpart)
    else:
        yield part
