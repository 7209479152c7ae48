"""Outbound mail seam.

Mail transport is outside this package; the node only needs something that
accepts a recipient, subject and body. The default implementation logs the
message and keeps it in an in-memory outbox, which is also what tests read
confirmation links from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from epress_node.core.settings import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingMail:
    sender: str | None
    recipient: str
    subject: str
    body: str
    link: str | None = None


class Mailer(Protocol):
    """Anything able to deliver a message to an email address."""

    def send(self, recipient: str, subject: str, body: str, *, link: str | None = None) -> None:
        ...


class LogMailer:
    """Mailer that records messages instead of sending them."""

    def __init__(self, sender: str | None = None) -> None:
        self.sender = sender if sender is not None else settings.mail_from
        self.outbox: list[OutgoingMail] = []

    def send(self, recipient: str, subject: str, body: str, *, link: str | None = None) -> None:
        mail = OutgoingMail(
            sender=self.sender, recipient=recipient, subject=subject, body=body, link=link
        )
        self.outbox.append(mail)
        logger.info("Mail to %s: %s (%s)", recipient, subject, link or "no link")

    def last_link(self, recipient: str | None = None) -> str | None:
        """Return the link of the most recent message, optionally for one recipient."""
        for mail in reversed(self.outbox):
            if recipient is None or mail.recipient == recipient:
                return mail.link
        return None


_default_mailer = LogMailer()


def get_mailer() -> Mailer:
    """Return the process-wide mailer."""
    return _default_mailer
