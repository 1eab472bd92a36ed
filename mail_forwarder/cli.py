"""Entry point that forwards unseen IMAP messages to a fixed destination."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from .config import ConfigurationError, Settings, load_settings
from .imap_client import MailboxClient
from .processor import MessageProcessor
from .relay import Relay
from .scheduler import PollScheduler
from .sender_filter import SenderFilter

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Forward unseen IMAP messages through an SMTP relay.")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit, even when DAEMON_MODE is enabled",
    )
    parser.add_argument(
        "--interval",
        type=positive_float,
        help="Poll interval in seconds (overrides POLL_INTERVAL)",
    )
    return parser


def positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid number: {value}") from exc
    if number <= 0:
        raise argparse.ArgumentTypeError("Interval must be positive")
    return number


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # aioimaplib logs protocol traffic at DEBUG/INFO
    logging.getLogger("aioimaplib").setLevel(logging.WARNING)


def log_filter_configuration(settings: Settings) -> None:
    allowed = settings.allowed_sender_domains
    if allowed is None:
        logger.info("Domain filtering disabled. All emails will be forwarded.")
    elif not allowed:
        logger.warning("ALLOWED_SENDER_DOMAINS has no usable entries; every email will be filtered.")
    else:
        logger.info("Domain filtering enabled. Allowed domains: %s", ", ".join(sorted(allowed)))


def build_scheduler(settings: Settings, *, daemon: bool, interval: float) -> PollScheduler:
    mailbox = MailboxClient(settings)
    processor = MessageProcessor(
        mailbox,
        Relay(settings),
        SenderFilter(settings.allowed_sender_domains),
        forward_from=settings.forward_from,
        forward_to=settings.forward_to,
        mailbox_name=settings.imap_mailbox,
    )
    return PollScheduler(processor, mailbox, interval=interval, daemon=daemon)


async def serve(scheduler: PollScheduler) -> int:
    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("Received signal %s", sig.name)
        scheduler.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)
    try:
        return await scheduler.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except ConfigurationError as exc:
        configure_logging("INFO")
        logger.error("%s", exc)
        return 1

    configure_logging(settings.log_level)
    logger.info("All required environment variables are set.")
    log_filter_configuration(settings)

    scheduler = build_scheduler(
        settings,
        daemon=settings.daemon_mode and not args.once,
        interval=args.interval or settings.poll_interval_seconds,
    )
    return asyncio.run(serve(scheduler))
