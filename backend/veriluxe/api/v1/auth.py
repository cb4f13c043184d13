"""
Authentication API endpoints.
"""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from veriluxe.api.deps import get_bearer_token, get_current_user, get_token_store, require_admin
from veriluxe.core.config import settings
from veriluxe.core.database import get_db
from veriluxe.models.user import User as UserModel
from veriluxe.schemas.user import (
    MessageResponse,
    TokenResponse,
    User,
    UserCreate,
    UserCreateResponse,
    UserLogin,
)
from veriluxe.services.auth_service import authenticate_user, create_user, get_user_by_email
from veriluxe.services.session_service import TokenStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/login", response_model=TokenResponse, status_code=status.HTTP_200_OK)
async def login(
    credentials: UserLogin,
    db: Session = Depends(get_db),
    tokens: TokenStore = Depends(get_token_store),
):
    """
    Authenticate user and issue a bearer token.

    - **email**: Account email
    - **password**: User's password
    """
    user = authenticate_user(db, credentials.email, credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password"
        )

    token = tokens.create_token(user.id, {"email": user.email, "role": user.role.value})

    return TokenResponse(
        access_token=token,
        expires_in=settings.TOKEN_EXPIRY_SECONDS,
        user=User.model_validate(user),
    )


@router.post("/logout", response_model=MessageResponse, status_code=status.HTTP_200_OK)
async def logout(
    token: str = Depends(get_bearer_token),
    tokens: TokenStore = Depends(get_token_store),
):
    """Revoke the presented bearer token."""
    tokens.delete_token(token)
    return MessageResponse(message="Logout successful")


@router.get("/me", response_model=User)
async def me(current_user: UserModel = Depends(get_current_user)):
    """Get currently authenticated user."""
    return User.model_validate(current_user)


@router.post("/users/{user_id}/revoke", response_model=MessageResponse)
async def revoke_user_tokens(
    user_id: UUID,
    admin: UserModel = Depends(require_admin),
    tokens: TokenStore = Depends(get_token_store),
):
    """Revoke every token of a user (admin only)."""
    count = tokens.delete_user_tokens(user_id)
    return MessageResponse(message=f"Revoked {count} tokens")


@router.post("/users", response_model=UserCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_account(
    account: UserCreate,
    admin: UserModel = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Create a user account (admin only).

    - **email**: Account email, must not already be registered
    - **password**: At least 6 characters
    - **role**: user (default) or admin
    """
    if get_user_by_email(db, account.email):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this email already exists",
        )

    try:
        user = create_user(db, account.email, account.password, account.role)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Admin {admin.id} created {user.role.value} account {user.id}")
    return UserCreateResponse(message="User created successfully", user=User.model_validate(user))
