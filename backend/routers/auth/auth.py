from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from config import get_db
from models import UserProfile
from .helpers import auth_helpers
import logging
import uuid

logger = logging.getLogger(__name__)

security = HTTPBearer()

async def authenticate_token(token: str, db: AsyncSession) -> dict:
    """Verify a bearer token and build the current_user dict used by every route"""
    token_user = auth_helpers.verify_token(token)

    current_user = {
        "user_id": token_user.id,
        "email": token_user.email,
        "name": token_user.name,
        "role": None
    }

    # Try to get role from JWT first
    if token_user.role:
        current_user["role"] = token_user.role
        logger.info(f"User {token_user.id} authenticated via JWT role: {token_user.role}")
        return current_user

    # Fallback: Get role from database
    logger.info(f"No role in JWT for user {token_user.id}, checking database...")
    user_profile = None
    try:
        result = await db.execute(
            select(UserProfile).where(UserProfile.user_id == uuid.UUID(str(token_user.id)))
        )
        user_profile = result.scalar_one_or_none()
    except ValueError:
        logger.warning(f"User id {token_user.id} is not a UUID, skipping profile lookup")

    if user_profile:
        current_user["role"] = user_profile.role
        current_user["name"] = current_user["name"] or user_profile.display_name or user_profile.username
        logger.info(f"User {token_user.id} role from database: {user_profile.role}")
    else:
        current_user["role"] = "user"  # Default fallback
        logger.warning(f"No user profile found for {token_user.id}, using default role: user")

    return current_user

async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
):
    """Get current user from JWT token"""
    current_user = await authenticate_token(credentials.credentials, db)
    request.state.current_user = current_user
    return current_user
