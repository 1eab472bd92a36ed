from __future__ import annotations

from email.message import EmailMessage

import pytest

from mail_forwarder.mime import MessageDecodeError, decode_message
from tests.helpers import make_raw


def test_decode_plain_message() -> None:
    parsed = decode_message(make_raw(sender="Alice Example <alice@Trusted.com>", subject="Quarterly report"))

    assert parsed.sender == "alice@Trusted.com"
    assert parsed.sender_domain == "trusted.com"
    assert parsed.subject == "Quarterly report"
    assert parsed.text.strip() == "Plain body"
    assert parsed.html is None
    assert parsed.attachments == []


def test_decode_alternative_bodies_and_attachments() -> None:
    raw = make_raw(
        html="<p>Rich body</p>",
        attachments=[
            ("invoice.pdf", b"%PDF-1.4 data", "application/pdf"),
            ("notes.txt", b"line one\n", "text/plain"),
        ],
    )

    parsed = decode_message(raw)

    assert parsed.text.strip() == "Plain body"
    assert "<p>Rich body</p>" in parsed.html
    assert [attachment.filename for attachment in parsed.attachments] == ["invoice.pdf", "notes.txt"]
    assert parsed.attachments[0].content == b"%PDF-1.4 data"
    assert parsed.attachments[0].content_type == "application/pdf"
    assert parsed.attachments[1].content_type == "text/plain"


def test_decode_encoded_subject() -> None:
    raw = (
        b"From: a@trusted.com\r\n"
        b"Subject: =?utf-8?q?Gr=C3=BC=C3=9Fe?=\r\n"
        b"Content-Type: text/plain; charset=utf-8\r\n"
        b"\r\n"
        b"Hallo\r\n"
    )

    parsed = decode_message(raw)

    assert parsed.subject == "Grüße"
    assert parsed.sender == "a@trusted.com"


def test_missing_from_header_yields_empty_sender() -> None:
    parsed = decode_message(b"Subject: no sender\r\n\r\nbody\r\n")

    assert parsed.sender == ""
    assert parsed.sender_domain is None


def test_empty_content_is_a_decode_error() -> None:
    with pytest.raises(MessageDecodeError):
        decode_message(b"")


def test_unknown_charset_is_a_decode_error() -> None:
    raw = (
        b"From: a@trusted.com\r\n"
        b"Subject: broken\r\n"
        b"Content-Type: text/plain; charset=x-no-such-charset\r\n"
        b"\r\n"
        b"body\r\n"
    )

    with pytest.raises(MessageDecodeError):
        decode_message(raw)


def test_single_part_attachment_message_keeps_its_content() -> None:
    raw = (
        b"From: a@trusted.com\r\n"
        b"Subject: scan\r\n"
        b"MIME-Version: 1.0\r\n"
        b"Content-Type: application/pdf\r\n"
        b'Content-Disposition: attachment; filename="scan.pdf"\r\n'
        b"Content-Transfer-Encoding: base64\r\n"
        b"\r\n"
        b"JVBERi0xLjQ=\r\n"
    )

    parsed = decode_message(raw)

    assert parsed.text == ""
    assert parsed.html is None
    assert len(parsed.attachments) == 1
    assert parsed.attachments[0].filename == "scan.pdf"
    assert parsed.attachments[0].content_type == "application/pdf"
    assert parsed.attachments[0].content == b"%PDF-1.4"


def test_inline_related_parts_are_kept_with_content_id() -> None:
    message = EmailMessage()
    message["From"] = "a@trusted.com"
    message["Subject"] = "newsletter"
    message.set_content("Plain body")
    message.add_alternative('<p><img src="cid:logo@trusted.com"></p>', subtype="html")
    html_part = message.get_payload()[1]
    html_part.add_related(b"\x89PNG logo", maintype="image", subtype="png", filename="logo.png", cid="<logo@trusted.com>")
    message.add_attachment(b"%PDF-1.4 data", maintype="application", subtype="pdf", filename="a.pdf")

    parsed = decode_message(message.as_bytes())

    assert parsed.text.strip() == "Plain body"
    assert "cid:logo@trusted.com" in parsed.html
    assert [attachment.filename for attachment in parsed.attachments] == ["logo.png", "a.pdf"]
    logo, pdf = parsed.attachments
    assert logo.content == b"\x89PNG logo"
    assert logo.content_type == "image/png"
    assert logo.content_id == "<logo@trusted.com>"
    assert pdf.content_id is None


def test_nested_message_attachment_stays_whole() -> None:
    inner = EmailMessage()
    inner["Subject"] = "inner"
    inner.set_content("inner body")
    outer = EmailMessage()
    outer["From"] = "a@trusted.com"
    outer["Subject"] = "fwd"
    outer.set_content("see attached")
    outer.add_attachment(inner)

    parsed = decode_message(outer.as_bytes())

    assert len(parsed.attachments) == 1
    assert parsed.attachments[0].content_type == "message/rfc822"
    assert b"inner body" in parsed.attachments[0].content
