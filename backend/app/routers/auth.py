"""
Command Gateway - Authentication Router
Exchanges a user's API key for a bearer token and reports the current user.
"""
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import UserDB
from ..auth import verify_api_key, create_access_token, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class TokenRequest(BaseModel):
    user_id: str
    api_key: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    role: str
    tier: str
    credits: int


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/token", response_model=TokenResponse)
async def issue_token(request: TokenRequest, db: Session = Depends(get_db)):
    """
    Authenticate with an API key and return a JWT token.
    """
    user = db.query(UserDB).filter(UserDB.id == request.user_id).first()

    if not user or not verify_api_key(request.api_key, user.api_key_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info(f"Token issued for user {user.id}")
    return TokenResponse(access_token=create_access_token(user.id, user.role))


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: UserDB = Depends(get_current_user)):
    """
    Get current authenticated user info.
    """
    return UserResponse(
        id=current_user.id,
        name=current_user.name,
        email=current_user.email,
        role=current_user.role,
        tier=current_user.tier,
        credits=current_user.credits,
    )
