"""IMAP helper focused on unseen-message retrieval and reconciliation."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Iterable

import aioimaplib

from .config import Settings
from .models import SourceMessage

logger = logging.getLogger(__name__)

_FETCH_START_RE = re.compile(rb"^\d+ FETCH \(")
_UID_RE = re.compile(rb"\bUID (\d+)")


class MailboxError(RuntimeError):
    """Raised when the IMAP server is unreachable or rejects a command."""


class MailboxClient:
    """Thin async wrapper around the source mailbox session."""

    FETCH_ITEMS = "(UID BODY.PEEK[])"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.selected: str | None = None
        self.read_only = True
        self._imap = None

    @property
    def connected(self) -> bool:
        protocol = getattr(self._imap, "protocol", None)
        if protocol is None:
            return False
        return protocol.state in (aioimaplib.AUTH, aioimaplib.SELECTED)

    async def connect(self) -> None:
        """Open the connection, wait for the greeting and log in."""
        host, port = self.settings.imap_host, self.settings.imap_port
        if self._imap is not None:
            stale, self._imap = self._imap, None
            await _discard(stale)
        if self.settings.imap_tls:
            imap = aioimaplib.IMAP4_SSL(host=host, port=port, timeout=self.settings.imap_timeout)
        else:
            imap = aioimaplib.IMAP4(host=host, port=port, timeout=self.settings.imap_timeout)

        self.selected = None
        self.read_only = True
        try:
            await imap.wait_hello_from_server()
        except (asyncio.TimeoutError, OSError, aioimaplib.Abort) as exc:
            await _discard(imap)
            raise MailboxError(f"Unable to reach IMAP server {host}:{port}: {str(exc) or 'timeout'}") from exc

        try:
            response = await self._call("LOGIN", imap.login(self.settings.imap_user, self.settings.imap_password))
            self._check(response, "LOGIN")
        except MailboxError:
            await _discard(imap)
            raise
        self._imap = imap
        logger.info("IMAP: connected and authenticated to %s:%s", host, port)

    async def open_mailbox(self, name: str, read_only: bool = False) -> None:
        """SELECT (read-write) or EXAMINE (read-only) the named mailbox."""
        imap = self._session()
        if read_only:
            response = await self._call("EXAMINE", imap.examine(name))
        else:
            response = await self._call("SELECT", imap.select(name))
        self._check(response, "EXAMINE" if read_only else "SELECT")
        self.selected = name
        self.read_only = read_only
        logger.debug("Opened mailbox %s (read_only=%s)", name, read_only)

    async def list_unseen(self) -> list[SourceMessage]:
        """Snapshot every unseen message with its raw content, without setting \\Seen."""
        imap = self._session()
        response = await self._call("UID SEARCH", imap.uid_search("UNSEEN"))
        self._check(response, "UID SEARCH")
        uids = parse_search_response(response.lines)
        if not uids:
            return []

        response = await self._call("UID FETCH", imap.uid("fetch", ",".join(uids), self.FETCH_ITEMS))
        self._check(response, "UID FETCH")
        fetched = dict(parse_fetch_response(response.lines))
        missing = [uid for uid in uids if uid not in fetched]
        if missing:
            logger.warning("Server returned no content for UID(s) %s; they will be retried", ", ".join(missing))
        return [SourceMessage(uid=uid, raw=fetched[uid]) for uid in uids if uid in fetched]

    async def set_seen(self, uid: str) -> None:
        imap = self._session()
        response = await self._call("UID STORE", imap.uid("store", uid, "+FLAGS.SILENT", r"(\Seen)"))
        self._check(response, "UID STORE")

    async def delete(self, uid: str) -> None:
        """Flag the message \\Deleted and expunge it."""
        imap = self._session()
        response = await self._call("UID STORE", imap.uid("store", uid, "+FLAGS.SILENT", r"(\Deleted)"))
        self._check(response, "UID STORE")
        if imap.has_capability("UIDPLUS"):
            response = await self._call("UID EXPUNGE", imap.uid("expunge", uid))
        else:
            response = await self._call("EXPUNGE", imap.expunge())
        self._check(response, "EXPUNGE")

    async def logout(self) -> None:
        if self._imap is None:
            return
        imap, self._imap = self._imap, None
        self.selected = None
        try:
            response = await self._call("LOGOUT", imap.logout())
        finally:
            _close_transport(imap)
        self._check(response, "LOGOUT")

    def _session(self):
        if self._imap is None:
            raise MailboxError("IMAP session is not connected")
        return self._imap

    async def _call(self, command: str, awaitable):
        try:
            return await awaitable
        except (asyncio.TimeoutError, OSError, aioimaplib.Abort) as exc:
            # Transport is unusable; force a reconnect on the next pass.
            imap, self._imap = self._imap, None
            self.selected = None
            if imap is not None:
                _close_transport(imap)
            raise MailboxError(f"{command} failed: {str(exc) or 'timeout'}") from exc

    @staticmethod
    def _check(response, command: str) -> None:
        if response.result != "OK":
            detail = b" ".join(
                bytes(line) for line in response.lines if isinstance(line, (bytes, bytearray))
            ).decode(errors="replace")
            logger.error("IMAP %s failed (%s): %s", command, response.result, detail)
            raise MailboxError(f"{command} failed ({response.result}): {detail}")


async def _discard(imap) -> None:
    """Log out of a session that will not be used again, closing its socket regardless."""
    try:
        await imap.logout()
    except Exception as exc:
        logger.debug("IMAP logout of discarded session failed: %s", exc)
    finally:
        _close_transport(imap)


def _close_transport(imap) -> None:
    transport = getattr(getattr(imap, "protocol", None), "transport", None)
    if transport is not None and not transport.is_closing():
        transport.close()


def parse_search_response(lines: Iterable) -> list[str]:
    """Extract UIDs from a UID SEARCH response, ignoring the status line."""
    for line in lines:
        tokens = bytes(line).split()
        if tokens and tokens[0].upper() == b"SEARCH":
            tokens = tokens[1:]
        if tokens and all(token.isdigit() for token in tokens):
            return [token.decode() for token in tokens]
    return []


def parse_fetch_response(lines: Iterable) -> list[tuple[str, bytes]]:
    """Pair each FETCH literal with its UID, wherever the server put the UID item."""
    messages: list[tuple[str, bytes]] = []
    uid: str | None = None
    content: bytes | None = None

    def flush() -> None:
        if uid is not None and content is not None:
            messages.append((uid, content))

    for line in lines:
        if isinstance(line, bytearray):
            content = bytes(line)
            continue
        if _FETCH_START_RE.match(line):
            flush()
            uid, content = None, None
        match = _UID_RE.search(line)
        if match and uid is None:
            uid = match.group(1).decode()
    flush()
    return messages
