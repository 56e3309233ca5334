from __future__ import annotations

from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.core.config import settings
from app.core.jwt_utils import jwt_manager


router = APIRouter()


class AnonymousIdentityRequest(BaseModel):
    display_name: Optional[str] = None


class AnonymousIdentityResponse(BaseModel):
    participant_id: str
    token: str


@router.post(
    f"/{settings.app.version}/identity/anonymous",
    response_model=AnonymousIdentityResponse,
    tags=["identity"],
)
async def anonymous_identity(
    req: Optional[AnonymousIdentityRequest] = None,
) -> AnonymousIdentityResponse:
    """Issue a fresh participant identifier for this client session."""
    name = req.display_name if req else None
    participant_id, token = jwt_manager.issue_anonymous(name)
    return AnonymousIdentityResponse(participant_id=participant_id, token=token)


@router.get("/.well-known/jwks.json", tags=["identity"])
async def jwks():
    """JWKS endpoint for public key distribution"""
    return JSONResponse(content=jwt_manager.get_jwks())
