"""
Seed database with an admin and a demo user.
Run this script to populate the database for testing/development.

Usage:
    python -m scripts.seed_data
"""
from typing import List, Tuple

from sqlalchemy.orm import Session

from veriluxe.core.database import Base, SessionLocal, engine
from veriluxe.models.user import User, UserRole
from veriluxe.services.auth_service import hash_password

SEED_USERS: List[Tuple[str, str, UserRole]] = [
    ("admin@demo.com", "admin123", UserRole.ADMIN),  # CHANGE IN PRODUCTION!
    ("user@demo.com", "user123", UserRole.USER),
]


def seed_users(db: Session) -> List[User]:
    """Create the seed accounts that don't exist yet; returns the ones created."""
    created = []
    for email, password, role in SEED_USERS:
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            print(f"⚠️  User already exists, skipping: {email}")
            continue

        user = User(email=email, password_hash=hash_password(password), role=role, is_active=True)
        db.add(user)
        db.commit()
        db.refresh(user)
        created.append(user)
        print(f"✅ Created {role.value}: {email} (password: {password})")

    return created


def seed_database():
    """Seed database with sample data."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        print("🌱 Starting database seeding...")
        seed_users(db)

        print("\n" + "=" * 60)
        print("✅ Database seeding completed successfully!")
        print("=" * 60)
        print("\n⚠️  IMPORTANT: Change the default passwords in production!")

    except Exception as e:
        print(f"\n❌ Error seeding database: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_database()
