"""
API routes - Web completion of a verification.

This module defines the HTTP endpoints:
- GET /verify?code=... - Render the verification page for a code
- POST /api/verify - Consume the code (PENDING -> VERIFIED)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import HTMLResponse

from src.api.dependencies import get_verification_service
from src.api.models import ErrorResponse, VerifyRequest, VerifyResponse
from src.api.pages import (
    render_already_verified,
    render_error,
    render_restricted,
    render_verification_page,
)
from src.domain import messages
from src.domain.codes import redact_code
from src.domain.exceptions import ConflictError, NotFoundError, UnknownTeamError, ValidationError
from src.domain.ports import MemberState
from src.domain.verification import VerificationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["verification"])


@router.get(
    "/verify",
    response_class=HTMLResponse,
    summary="Verification page",
    description="Landing page for the link in the verification email.",
)
async def verify_page(
    code: str = "",
    service: VerificationService = Depends(get_verification_service),
) -> HTMLResponse:
    if not code:
        return HTMLResponse(
            render_error("Invalid Link", "Verification code is required."),
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    try:
        record = await service.lookup_code(code)
    except NotFoundError:
        logger.warning("Verification page requested for unknown code %s", redact_code(code))
        return HTMLResponse(
            render_error("Invalid Link", "Invalid or expired verification code."),
            status_code=status.HTTP_404_NOT_FOUND,
        )

    if record.state is MemberState.VERIFIED:
        return HTMLResponse(render_already_verified(record))
    if record.state is MemberState.RESTRICTED:
        return HTMLResponse(render_restricted(), status_code=status.HTTP_403_FORBIDDEN)

    teams = service.role_map.team_names() if service.team_selection else []
    return HTMLResponse(render_verification_page(record, teams))


@router.post(
    "/api/verify",
    response_model=VerifyResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request, team or already verified"},
        404: {"model": ErrorResponse, "description": "Unknown verification code"},
        500: {"model": ErrorResponse, "description": "Internal failure"},
    },
    summary="Complete verification",
    description="Consume a verification code. `team` is required when team selection is enabled.",
)
async def complete_verification(
    request_data: VerifyRequest,
    service: VerificationService = Depends(get_verification_service),
) -> VerifyResponse:
    """
    Complete a pending verification.

    - **code**: Verification code from the email link
    - **team**: Team name (only when team selection is enabled)

    A consumed code is rejected even when resubmitted with another team.
    """
    try:
        outcome = await service.complete_verification(request_data.code, request_data.team)
    except UnknownTeamError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid team selection") from None
    except NotFoundError:
        logger.warning("Verification attempted with unknown code %s", redact_code(request_data.code))
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid verification code") from None
    except (ValidationError, ConflictError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from None
    except Exception:
        logger.exception("Failed to verify code %s", redact_code(request_data.code))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to verify user"
        ) from None

    if outcome.degraded:
        return VerifyResponse(message=messages.ROLES_DEGRADED)
    return VerifyResponse(message=messages.verification_complete(outcome.record.team_role))
