# Overview: Service-layer operations for auth; password hashing and credential checks.

"""
Authentication Service

WHY: Every approval and status change must be attributable. Uses bcrypt for
password hashing and validates password strength.

Staff users and storefront customers share the hashing rules; customers get
a relaxed strength policy (minimum length only).
"""

import re

import bcrypt

from ..extensions import db
from ..models import User, Customer
from ..models.auth import ALL_ROLES
from ..time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AuthError(Exception):
    """Raised for invalid credentials or duplicate accounts."""
    pass


def validate_password_strength(password: str, *, strict: bool = True) -> None:
    """
    Validate password meets strength requirements.

    strict (staff):
    - Minimum 8 characters
    - At least one uppercase, one lowercase, one digit, one special character

    non-strict (customers): minimum 8 characters.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not strict:
        return

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str, *, strict: bool = True) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password, strict=strict)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


# =============================================================================
# STAFF USERS
# =============================================================================

def create_user(username: str, email: str, password: str, role: str, name: str | None = None) -> User:
    if role not in ALL_ROLES:
        raise AuthError(f"Invalid role: {role}")

    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username or not email:
        raise AuthError("username and email are required")

    existing = db.session.query(User).filter(
        (User.username == username) | (User.email == email)
    ).first()
    if existing:
        raise AuthError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        name=name,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate_user(identifier: str, password: str) -> User | None:
    """Look up by username or email; returns None for bad credentials or inactive users."""
    identifier = (identifier or "").strip()
    if not identifier:
        return None

    user = db.session.query(User).filter(
        (User.username == identifier) | (User.email == identifier.lower())
    ).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


# =============================================================================
# STOREFRONT CUSTOMERS
# =============================================================================

def register_customer(
    email: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
) -> Customer:
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise AuthError("A valid email is required")

    existing = db.session.query(Customer).filter_by(email=email).first()
    if existing and existing.password_hash:
        raise AuthError("An account with this email already exists")

    password_hash = hash_password(password, strict=False)
    if existing:
        # Guest checkout created the row; claim it
        existing.password_hash = password_hash
        existing.first_name = first_name or existing.first_name
        existing.last_name = last_name or existing.last_name
        existing.phone = phone or existing.phone
        customer = existing
    else:
        customer = Customer(
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            password_hash=password_hash,
        )
        db.session.add(customer)
    db.session.commit()
    return customer


def authenticate_customer(email: str, password: str) -> Customer | None:
    email = (email or "").strip().lower()
    customer = db.session.query(Customer).filter_by(email=email).first()
    if not customer or not customer.is_active:
        return None
    if not verify_password(password, customer.password_hash):
        return None
    customer.last_login_at = utcnow()
    db.session.commit()
    return customer
