"""
Create or promote an admin account from the command line.

Usage:
    python -m storefront.create_admin --email ops@example.com --password '...'

An existing account with the email is promoted and reactivated; its
password is left unchanged.
"""
import argparse
import logging

from . import auth, crud, models
from .database import Base, SessionLocal, engine

logger = logging.getLogger(__name__)


def ensure_admin(db, email: str, password: str) -> models.User:
    user = crud.get_user_by_email(db, email)
    if user is not None:
        user = crud.update_user(db, user, role="admin", is_active=True)
        logger.info(f"Promoted existing user {user.id} to admin")
        return user

    user = crud.create_user(db, email=email, password_hash=auth.get_password_hash(password), role="admin")
    logger.info(f"Created admin user {user.id}")
    return user


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create or promote a storefront admin")
    parser.add_argument("--email", required=True, help="Admin email")
    parser.add_argument("--password", required=True, help="Password for a new account (min 8 characters)")
    args = parser.parse_args(argv)

    if len(args.password) < 8:
        parser.error("password must be at least 8 characters")

    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        user_id = ensure_admin(db, args.email, args.password).id
    finally:
        db.close()
    print(f"Admin ready: {args.email} (id {user_id})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
