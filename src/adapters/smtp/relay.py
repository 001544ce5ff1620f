"""
SMTP email sender adapter - Implements EmailSender protocol.

Sends multipart (plain text + HTML) mail through an SMTP relay with
smtplib. smtplib is blocking, so each send runs in a worker thread to
keep the event loop free for other members' requests.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from src.domain.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class SmtpEmailSender:
    """
    Implements EmailSender protocol via smtplib.

    Uses structural subtyping - no explicit inheritance from Protocol.
    Failures surface as ExternalServiceError; nothing is retried.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_address: str,
        from_name: str = "",
        starttls: bool = True,
        timeout: float = 30.0,
        logger: logging.Logger = logger,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from_address = from_address
        self._from_name = from_name
        self._starttls = starttls
        self._timeout = timeout
        self._logger = logger

    def build_message(self, to: str, subject: str, text_body: str, html_body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((self._from_name, self._from_address))
        msg["To"] = to
        msg.set_content(text_body)
        msg.add_alternative(html_body, subtype="html")
        return msg

    async def send(self, to: str, subject: str, text_body: str, html_body: str) -> None:
        msg = self.build_message(to, subject, text_body, html_body)
        await asyncio.to_thread(self._dispatch, msg)
        self._logger.info("Email sent successfully to %s", to)

    def _dispatch(self, msg: EmailMessage) -> None:
        """Open an SMTP connection, authenticate, send, and close."""
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
                if self._starttls:
                    smtp.starttls()
                if self._username:
                    smtp.login(self._username, self._password)
                smtp.send_message(msg)
        except smtplib.SMTPAuthenticationError as exc:
            self._logger.error("SMTP authentication failed for '%s': %s", self._username, exc)
            raise ExternalServiceError("SMTP authentication failed") from exc
        except (smtplib.SMTPException, OSError) as exc:
            self._logger.error("SMTP delivery to %s failed: %s", msg["To"], exc)
            raise ExternalServiceError(f"Failed to send email: {exc}") from exc
