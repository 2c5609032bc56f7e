from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import asyncio
import hmac
import logging

from backoffice.services.supabase_service import supabase_service
from backoffice.schemas.auth import TokenData
from backoffice.core.config import settings
from backoffice.core.database import get_db
from backoffice.crud import member_crud
from backoffice.models.member import Member

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

SUPABASE_AUTH_TIMEOUT = 3.0


async def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> TokenData:
    """Verify the Supabase access token and return user data"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or not credentials.credentials:
        raise credentials_exception
    token = credentials.credentials

    # Local verification first (no network call) when the project secret is known
    if settings.supabase_jwt_secret:
        try:
            payload = jwt.decode(
                token,
                settings.supabase_jwt_secret,
                algorithms=["HS256"],
                audience="authenticated",
            )
            if payload.get("sub"):
                return TokenData(user_id=payload["sub"], email=payload.get("email") or "")
        except JWTError as e:
            logger.info(f"Local JWT verification failed, asking Supabase: {e}")

    # Fallback: ask Supabase to validate the token
    try:
        user_result = await asyncio.wait_for(
            supabase_service.get_user(token),
            timeout=SUPABASE_AUTH_TIMEOUT
        )
    except asyncio.TimeoutError:
        logger.warning("Supabase auth timeout")
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Authentication service timeout"
        )
    except RuntimeError as e:
        logger.warning(f"Supabase auth unavailable: {e}")
        raise credentials_exception

    if user_result["success"] and user_result.get("user"):
        user = user_result["user"]
        return TokenData(user_id=str(user.id), email=user.email or "")

    raise credentials_exception


async def get_current_user(token_data: TokenData = Depends(verify_token)) -> TokenData:
    """Get current authenticated user"""
    return token_data


async def get_current_member(
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Member:
    """The member row for the signed-in user, created and linked on first sight"""
    if not current_user.email:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token has no email")
    member = await member_crud.get_or_create_by_email(db, current_user.email)
    if current_user.user_id and not member.user_id:
        member = await member_crud.link_user_id(db, member, current_user.user_id)
    return member


async def require_admin(member: Member = Depends(get_current_member)) -> Member:
    if not member.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return member


async def require_cron_key(x_cron_key: Optional[str] = Header(default=None)) -> None:
    """Scheduled jobs authenticate with the shared x-cron-key header"""
    if not settings.cron_invoke_key:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cron key not configured")
    if not x_cron_key or not hmac.compare_digest(x_cron_key, settings.cron_invoke_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron key")
