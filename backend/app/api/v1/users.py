"""
FastAPI routes: the caller's own account.

    GET  /api/v1/auth/user               — who am I
    PUT  /api/v1/user/profile            — edit profile, join a village
    POST /api/v1/auth/send-verification  — SMS a verification code
    POST /api/v1/auth/verify-phone       — confirm the code
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_current_user, get_phone_verification, get_profile_service
from backend.app.api.schemas import ProfileUpdateRequest, SendVerificationRequest, VerifyPhoneRequest
from backend.app.residents.phone_verification import PhoneVerificationService
from backend.app.residents.profile_service import ProfileService
from backend.app.storage.tables import User

router = APIRouter(prefix="/api/v1", tags=["users"])


@router.get("/auth/user")
async def current_user(user: User = Depends(get_current_user)) -> Dict[str, Any]:
    return user.to_dict()


@router.put("/user/profile")
async def update_profile(
    body: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    profiles: ProfileService = Depends(get_profile_service),
) -> Dict[str, Any]:
    updated = await profiles.update_profile(user, body.to_changes())
    return updated.to_dict()


@router.post("/auth/send-verification")
async def send_verification_code(
    body: SendVerificationRequest,
    user: User = Depends(get_current_user),
    verification: PhoneVerificationService = Depends(get_phone_verification),
) -> Dict[str, Any]:
    issued = await verification.send_code(user, body.phone)
    return issued.to_dict()


@router.post("/auth/verify-phone")
async def verify_phone(
    body: VerifyPhoneRequest,
    user: User = Depends(get_current_user),
    verification: PhoneVerificationService = Depends(get_phone_verification),
) -> Dict[str, Any]:
    verified = await verification.confirm(user, body.code)
    return verified.to_dict()
