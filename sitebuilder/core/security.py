"""
Account reducers: register, login, change password, deactivate, profile.

Usernames and emails are compared case-insensitively. Login failures use
one message for "no such user" and "wrong password" so the response does
not reveal which accounts exist.
"""

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .config import ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_USERNAME
from .crypto import hash_password, new_salt, verify_password
from .errors import AuthError, ConflictError, NotFoundError, ValidationError
from .logging import get_logger
from .models import User, now_ms

log = get_logger("auth")

INVALID_LOGIN = "Invalid username/email or password"


def _require(value: str | None, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} is required")
    return value


def find_user_by_login(db: Session, username_or_email: str) -> User | None:
    needle = username_or_email.strip().lower()
    return (
        db.query(User)
        .filter(or_(func.lower(User.username) == needle, func.lower(User.email) == needle))
        .first()
    )


def register_user(
    db: Session,
    username: str,
    email: str,
    password: str,
    is_admin: bool = False,
) -> User:
    username = _require(username, "Username")
    email = _require(email, "Email")
    if not password:
        raise ValidationError("Password is required")
    if "@" not in email:
        raise ValidationError(f"'{email}' is not a valid email address")

    if db.query(User).filter(func.lower(User.username) == username.lower()).first():
        raise ConflictError(f"Username '{username}' is already taken")
    if db.query(User).filter(func.lower(User.email) == email.lower()).first():
        raise ConflictError(f"Email '{email}' is already registered")

    salt = new_salt()
    now = now_ms()
    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password, salt),
        salt=salt,
        is_admin=is_admin,
        is_active=True,
        profile_picture_url="",
        bio="",
        settings="{}",
        created_at=now,
        last_login=now,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    log.info("User registered username=%s email=%s admin=%s", username, email, is_admin)
    return user


def login_user(db: Session, username_or_email: str, password: str) -> User:
    user = find_user_by_login(db, username_or_email or "")
    if not user or not user.is_active:
        log.warning("Login rejected (unknown or inactive) login=%s", username_or_email)
        raise AuthError(INVALID_LOGIN)

    if not verify_password(password or "", user.salt, user.password_hash):
        log.warning("Login rejected (bad password) user_id=%s", user.id)
        raise AuthError(INVALID_LOGIN)

    user.last_login = now_ms()
    db.commit()
    db.refresh(user)

    log.info("User logged in username=%s", user.username)
    return user


def get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError(f"User with ID {user_id} not found")
    return user


def list_users(db: Session, include_inactive: bool = True) -> list[User]:
    q = db.query(User)
    if not include_inactive:
        q = q.filter(User.is_active.is_(True))
    return q.order_by(User.created_at, User.username).all()


def change_password(db: Session, user_id: str, current_password: str, new_password: str) -> User:
    user = get_user(db, user_id)
    if not user.is_active:
        raise NotFoundError(f"User with ID {user_id} not found")

    if not verify_password(current_password or "", user.salt, user.password_hash):
        log.warning("Password change rejected user_id=%s", user_id)
        raise AuthError("Current password is incorrect")
    if not new_password:
        raise ValidationError("New password is required")

    # Fresh salt on every change
    user.salt = new_salt()
    user.password_hash = hash_password(new_password, user.salt)
    db.commit()

    log.info("Password changed username=%s", user.username)
    return user


def deactivate_user(db: Session, user_id: str) -> User:
    user = get_user(db, user_id)
    user.is_active = False
    db.commit()

    log.info("User deactivated username=%s", user.username)
    return user


def update_user_profile(db: Session, user_id: str, bio: str, profile_picture_url: str) -> User:
    user = get_user(db, user_id)
    user.bio = bio or ""
    user.profile_picture_url = profile_picture_url or ""
    db.commit()
    db.refresh(user)

    log.info("Updated profile username=%s", user.username)
    return user


def ensure_admin_user(db: Session) -> User | None:
    """Create the admin account when no users exist yet."""
    if db.query(User).count() > 0:
        return None

    admin = register_user(db, ADMIN_USERNAME, ADMIN_EMAIL, ADMIN_PASSWORD, is_admin=True)
    admin.bio = "System administrator account"
    db.commit()
    log.warning("Admin user created username=%s; change its password", ADMIN_USERNAME)
    return admin
