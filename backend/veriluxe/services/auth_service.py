"""
Authentication service for password hashing and verification.
"""
from datetime import datetime
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from veriluxe.models.user import User, UserRole

# Configure passlib for password hashing with Argon2
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__memory_cost=65536,  # 64 MB
    argon2__time_cost=3,
    argon2__parallelism=4
)


def hash_password(password: str) -> str:
    """
    Hash a password using Argon2.

    Example:
        >>> hashed = hash_password("MySecurePass123!")
        >>> verify_password("MySecurePass123!", hashed)
        True
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Returns:
        True if password matches, False otherwise
    """
    return pwd_context.verify(plain_password, hashed_password)


def needs_rehash(hashed_password: str) -> bool:
    """Check if a hashed password should be rehashed with current parameters."""
    return pwd_context.needs_update(hashed_password)


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    """
    Look up an active user by email and check the password.

    Upgrades the stored hash when parameters changed and records last_login.

    Returns:
        The User on success, None on unknown email, wrong password or
        inactive account
    """
    user = get_user_by_email(db, email)
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)
    user.last_login = datetime.utcnow()
    db.commit()
    db.refresh(user)
    return user


MIN_PASSWORD_LENGTH = 6


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.lower()).first()


def create_user(db: Session, email: str, password: str, role: UserRole = UserRole.USER) -> User:
    """
    Create an active account with a hashed password.

    Raises:
        ValueError: If the password is shorter than MIN_PASSWORD_LENGTH
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    user = User(
        email=email.lower(),
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
