"""
Chat event handlers - member joins and direct messages.

Transport-agnostic: the platform adapter calls these with plain IDs and
text. Each call runs on its own task, so one member's slow mail relay
never delays another member's reply.
"""

import logging
from dataclasses import dataclass, field

from src.domain import messages
from src.domain.exceptions import (
    CodeCollisionError,
    DomainNotApproved,
    EmailAlreadyClaimed,
    ExternalServiceError,
    InvalidEmailFormat,
)
from src.domain.policy import normalize_email
from src.domain.ports import ChatPlatform
from src.domain.verification import SubmitResult, VerificationService

logger = logging.getLogger(__name__)


@dataclass
class ChatEventHandler:
    """Routes chat platform events into the verification service."""

    service: VerificationService
    platform: ChatPlatform
    logger: logging.Logger = field(default=logger)

    async def on_member_joined(self, platform_id: str, display_name: str) -> None:
        await self.service.member_joined(platform_id, display_name)

    async def on_direct_message(self, platform_id: str, display_name: str, text: str) -> str:
        """Handle a DM and send the reply back. Returns the reply text."""
        self.logger.debug("Received DM from %s", display_name)
        reply = await self.reply_for(platform_id, display_name, text)
        try:
            await self.platform.send_direct_message(platform_id, reply)
        except ExternalServiceError as exc:
            self.logger.warning("Could not reply to %s: %s", display_name, exc)
        return reply

    async def reply_for(self, platform_id: str, display_name: str, text: str) -> str:
        try:
            result = await self.service.submit_email(platform_id, display_name, text)
        except InvalidEmailFormat:
            return messages.INVALID_FORMAT
        except DomainNotApproved as exc:
            return messages.domain_not_approved(exc.email)
        except EmailAlreadyClaimed:
            return messages.EMAIL_TAKEN
        except CodeCollisionError:
            self.logger.critical("Verification code collision; check the system random source")
            return messages.GENERIC_FAILURE
        except Exception:
            self.logger.exception("Unexpected error handling DM from %s", display_name)
            return messages.GENERIC_FAILURE

        if result is SubmitResult.SENT:
            return messages.verification_sent(normalize_email(text), self.service.team_selection)
        if result is SubmitResult.EMAIL_FAILED:
            return messages.EMAIL_FAILED
        if result is SubmitResult.ALREADY_VERIFIED:
            return messages.ALREADY_VERIFIED
        if result is SubmitResult.RESTRICTED:
            return messages.RESTRICTED
        return messages.ALREADY_PENDING
