"""
Console email sender adapter - Implements EmailSender protocol.

This module provides a console-based implementation of the domain's
email sender port, logging verification mails for development setups
without an SMTP relay.
"""

import logging

logger = logging.getLogger(__name__)


class ConsoleEmailSender:
    """
    Implements EmailSender protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    Selected when no SMTP host is configured.
    """

    def __init__(self, logger: logging.Logger = logger) -> None:
        self.logger = logger

    async def send(self, to: str, subject: str, text_body: str, html_body: str) -> None:
        """
        Log the message to console (simulates email delivery).

        The plain-text body carries the verification link, so it is
        logged at INFO level to be visible in container logs.

        Args:
            to: Recipient email address (normalized by domain layer)
            subject: Message subject
            text_body: Plain-text body
            html_body: HTML body (not logged)
        """
        self.logger.info("[VERIFICATION] To: %s Subject: %s\n%s", to, subject, text_body)
