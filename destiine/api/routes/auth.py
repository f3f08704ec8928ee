"""
Authentication routes

Issues the access tokens booking endpoints read their session from.
Register and login share the auth rate limit.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from destiine.core.config import settings
from destiine.core.database import get_db
from destiine.core.rate_limit import limiter
from destiine.core.security import create_access_token, hash_password, verify_password
from destiine.models.user import User
from destiine.schemas.user import Token, UserCreate, UserLogin, UserResponse
from destiine.api.deps import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


async def find_account(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


def issue_token(user: User) -> Token:
    """Token claims are the booking session: id, email, display name."""
    return Token(access_token=create_access_token({
        "sub": user.id,
        "email": user.email,
        "name": user.full_name,
    }))


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def register(request: Request, user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    if await find_account(db, user_data.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    user = User(
        email=user_data.email.lower(),
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        phone=user_data.phone,
        hashed_password=hash_password(user_data.password),
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info(f"Traveller account created: id={user.id}")
    return user


@router.post("/login", response_model=Token)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def login(request: Request, credentials: UserLogin, db: AsyncSession = Depends(get_db)):
    user = await find_account(db, credentials.email)
    if user is None or not user.is_active or not verify_password(credentials.password, user.hashed_password):
        logger.info("Login rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect email or password")

    user.record_login()
    return issue_token(user)


@router.get("/me", response_model=UserResponse)
async def who_am_i(current_user: User = Depends(get_current_user)):
    return current_user
