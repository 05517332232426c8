"""
Verification endpoints
======================

POST /api/v1/auth/verification/send    -- mail a 6-digit code
POST /api/v1/auth/verification/confirm -- consume the code, mark verified
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_current_user, get_verification
from src.api.middleware import limiter
from src.api.schemas import MessageResponse, VerificationConfirmRequest
from src.domain.entities import AuthContext
from src.services.verification import VerificationService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/verification/send",
    response_model=MessageResponse,
    summary="Send an email verification code",
)
@limiter.limit("5/minute")
async def send_verification(
    request: Request,
    user: AuthContext = Depends(get_current_user),
    verification: VerificationService = Depends(get_verification),
):
    mail = await verification.send_code(user)
    return MessageResponse(message=f"Verification code sent to {mail.recipient}")


@router.post(
    "/verification/confirm",
    response_model=MessageResponse,
    summary="Confirm an email verification code",
)
@limiter.limit("10/minute")
async def confirm_verification(
    request: Request,
    body: VerificationConfirmRequest,
    user: AuthContext = Depends(get_current_user),
    verification: VerificationService = Depends(get_verification),
):
    await verification.confirm(user, body.code)
    return MessageResponse(message="Email verified")
