"""One fetch, filter, forward and reconcile pass over the source mailbox."""

from __future__ import annotations

import logging
from typing import Callable

from .imap_client import MailboxClient, MailboxError
from .mime import MessageDecodeError, decode_message
from .models import (
    ForwardOutcome,
    MessageResult,
    MessageState,
    ParsedMessage,
    PassReport,
    SourceMessage,
)
from .relay import Relay
from .sender_filter import SenderFilter

logger = logging.getLogger(__name__)


class MessageProcessor:
    """Forward qualifying unseen messages, then delete or flag them.

    A message is only deleted after the relay accepted it. Messages whose
    decode or send fails are left untouched so the next pass retries them.
    """

    def __init__(
        self,
        mailbox: MailboxClient,
        relay: Relay,
        sender_filter: SenderFilter,
        *,
        forward_from: str,
        forward_to: str,
        mailbox_name: str = "INBOX",
        decoder: Callable[[bytes], ParsedMessage] = decode_message,
    ) -> None:
        self.mailbox = mailbox
        self.relay = relay
        self.sender_filter = sender_filter
        self.forward_from = forward_from
        self.forward_to = forward_to
        self.mailbox_name = mailbox_name
        self.decoder = decoder

    async def run_pass(self) -> PassReport:
        """Process every currently unseen message once, in listing order."""
        await self._ensure_mailbox()

        logger.info("Searching for unseen messages...")
        messages = await self.mailbox.list_unseen()
        logger.info("Found %d unseen message(s)", len(messages))

        report = PassReport()
        for message in messages:
            try:
                result = await self.process_message(message)
            except Exception as exc:
                logger.exception("Unexpected error processing message %s", message.uid)
                result = MessageResult(
                    uid=message.uid,
                    state=MessageState.ERRORED,
                    outcome=ForwardOutcome.FAILED_TRANSIENT,
                    error=str(exc),
                )
            report.add(result)

        logger.info(
            "Pass complete: forwarded=%s filtered=%s failed=%s",
            report.forwarded,
            report.filtered,
            report.failed,
        )
        return report

    async def process_message(self, message: SourceMessage) -> MessageResult:
        uid = message.uid
        try:
            parsed = self.decoder(message.raw)
        except MessageDecodeError as exc:
            logger.error("Failed to decode message %s, leaving it for retry: %s", uid, exc)
            return MessageResult(uid, MessageState.DECODE_FAILED, ForwardOutcome.FAILED_TRANSIENT, error=str(exc))

        subject = parsed.subject
        logger.info("Found unread message %s: %s", uid, subject)

        if not self.sender_filter.should_forward(parsed.sender):
            logger.info("Skipping message %s due to domain filter. Marking as seen...", uid)
            try:
                await self.mailbox.set_seen(uid)
            except MailboxError as exc:
                logger.error("Failed to mark filtered message %s (%s) as seen: %s", uid, subject, exc)
                return MessageResult(uid, MessageState.FLAG_FAILED, ForwardOutcome.FILTERED, subject, str(exc))
            return MessageResult(uid, MessageState.SEEN_MARKED, ForwardOutcome.FILTERED, subject)

        result = await self.relay.send(parsed, self.forward_from, self.forward_to)
        if not result.ok:
            logger.error(
                "Skipping message %s (%s) due to forwarding error; it will remain unread for retry: %s",
                uid,
                subject,
                result.reason,
            )
            return MessageResult(uid, MessageState.SEND_FAILED, ForwardOutcome.FAILED_TRANSIENT, subject, result.reason)

        return await self._reconcile_forwarded(uid, subject)

    async def _reconcile_forwarded(self, uid: str, subject: str) -> MessageResult:
        try:
            await self.mailbox.delete(uid)
        except MailboxError as delete_error:
            logger.error("Failed to delete forwarded message %s (%s): %s", uid, subject, delete_error)
        else:
            logger.info("Message %s deleted after forwarding", uid)
            return MessageResult(uid, MessageState.DELETED, ForwardOutcome.FORWARDED, subject)

        try:
            await self.mailbox.set_seen(uid)
        except MailboxError as flag_error:
            # Still unseen: a later pass may forward this message again.
            logger.error(
                "Failed to mark forwarded message %s (%s) as seen; it may be forwarded again: %s",
                uid,
                subject,
                flag_error,
            )
            return MessageResult(uid, MessageState.DELETE_FAILED, ForwardOutcome.FORWARDED, subject, str(flag_error))
        logger.info("Message %s marked as seen as fallback", uid)
        return MessageResult(uid, MessageState.SEEN_MARKED, ForwardOutcome.FORWARDED, subject)

    async def _ensure_mailbox(self) -> None:
        if not self.mailbox.connected:
            logger.info("Source mailbox session is not open; reconnecting")
            await self.mailbox.connect()
        if self.mailbox.selected != self.mailbox_name or self.mailbox.read_only:
            await self.mailbox.open_mailbox(self.mailbox_name, read_only=False)
