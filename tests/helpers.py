from __future__ import annotations

from email.message import EmailMessage

from mail_forwarder.config import Settings
from mail_forwarder.imap_client import MailboxError
from mail_forwarder.models import ParsedMessage, SourceMessage
from mail_forwarder.relay import RelayResult

BASE_ENV = {
    "IMAP_HOST": "imap.example.test",
    "IMAP_PORT": "993",
    "IMAP_USER": "inbox@example.test",
    "IMAP_PASSWORD": "imap-secret",
    "SMTP_HOST": "smtp.example.test",
    "SMTP_PORT": "587",
    "SMTP_USER": "relay@example.test",
    "SMTP_PASSWORD": "smtp-secret",
    "FORWARD_TO": "archive@dest.test",
    "FORWARD_FROM": "forwarder@example.test",
}


def make_settings(**overrides: str) -> Settings:
    values = {**BASE_ENV, **overrides}
    return Settings(_env_file=None, **values)


def make_raw(
    *,
    sender: str = "Alice <a@trusted.com>",
    subject: str = "Hello",
    text: str = "Plain body",
    html: str | None = None,
    attachments: list[tuple[str, bytes, str]] | None = None,
    to: str = "inbox@example.test",
) -> bytes:
    message = EmailMessage()
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message.set_content(text)
    if html is not None:
        message.add_alternative(html, subtype="html")
    for filename, content, content_type in attachments or []:
        maintype, subtype = content_type.split("/")
        message.add_attachment(content, maintype=maintype, subtype=subtype, filename=filename)
    return message.as_bytes()


class FakeMailbox:
    """In-memory source mailbox that records every mutation in order."""

    def __init__(
        self,
        messages: list[SourceMessage] | None = None,
        *,
        fail_connect: bool = False,
        fail_list: bool = False,
        fail_seen: set[str] | None = None,
        fail_delete: set[str] | None = None,
        fail_logout: bool = False,
        events: list | None = None,
    ) -> None:
        self.messages = list(messages or [])
        self.fail_connect = fail_connect
        self.fail_list = fail_list
        self.fail_seen = set(fail_seen or ())
        self.fail_delete = set(fail_delete or ())
        self.fail_logout = fail_logout
        self.events = events if events is not None else []
        self.connected = False
        self.selected: str | None = None
        self.read_only = True
        self.seen: set[str] = set()
        self.deleted: set[str] = set()
        self.connect_calls = 0
        self.logout_calls = 0

    @property
    def mutations(self) -> list[tuple[str, str]]:
        return [event for event in self.events if event[0] in ("seen", "delete")]

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            raise MailboxError("connection refused")
        self.connected = True

    async def open_mailbox(self, name: str, read_only: bool = False) -> None:
        self.events.append(("open", name, read_only))
        self.selected = name
        self.read_only = read_only

    async def list_unseen(self) -> list[SourceMessage]:
        if self.fail_list:
            raise MailboxError("UID SEARCH failed (NO): mailbox locked")
        return [
            message
            for message in self.messages
            if message.uid not in self.seen and message.uid not in self.deleted
        ]

    async def set_seen(self, uid: str) -> None:
        if uid in self.fail_seen:
            raise MailboxError(f"UID STORE failed for {uid}")
        self.seen.add(uid)
        self.events.append(("seen", uid))

    async def delete(self, uid: str) -> None:
        if uid in self.fail_delete:
            raise MailboxError(f"EXPUNGE failed for {uid}")
        self.deleted.add(uid)
        self.events.append(("delete", uid))

    async def logout(self) -> None:
        self.logout_calls += 1
        self.connected = False
        if self.fail_logout:
            raise MailboxError("LOGOUT failed: connection reset")


class FakeRelay:
    """Relay double that records sends and fails for chosen subjects."""

    def __init__(self, *, fail_subjects: set[str] | None = None, events: list | None = None) -> None:
        self.fail_subjects = set(fail_subjects or ())
        self.events = events if events is not None else []
        self.sent: list[tuple[ParsedMessage, str, str]] = []

    async def send(self, parsed: ParsedMessage, sender: str, recipient: str) -> RelayResult:
        self.events.append(("send", parsed.subject))
        if parsed.subject in self.fail_subjects:
            return RelayResult.failure("421 Service not available")
        self.sent.append((parsed, sender, recipient))
        return RelayResult.success()
