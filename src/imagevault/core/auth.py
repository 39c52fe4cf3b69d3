"""Caller identity and account policy.

Identity is modelled as an explicit :class:`AuthContext` that is passed to
every operation requiring a user.  Nothing in the pipeline looks up a session
implicitly; the HTTP layer resolves the bearer token once per request and
hands the resulting context down.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from imagevault.core.errors import PersistenceError, Unauthorized, ValidationError

if TYPE_CHECKING:
    from imagevault.core.backends.base import StorageBackend

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
MIN_NAME_LENGTH = 2


@dataclass
class UserProfile:
    """Row of the user profile table."""

    id: str
    name: str
    email: str
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> UserProfile:
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            email=row.get("email") or "",
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


@dataclass
class AuthContext:
    """Authenticated caller.

    Attributes:
        user_id: Identifier of the user; also the storage namespace.
        access_token: Bearer token the caller presented.
        email: Email address, when the backend reports one.
        profile: Loaded profile row, if any.
    """

    user_id: str
    access_token: str
    email: str | None = None
    profile: UserProfile | None = None


def parse_bearer(header: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_caller(authorization: str | None, backend: StorageBackend) -> AuthContext:
    """Resolve an Authorization header to an :class:`AuthContext`.

    Args:
        authorization: Raw ``Authorization`` header value (may be None).
        backend: Backend used to look the token up.

    Returns:
        The authenticated caller.

    Raises:
        Unauthorized: If the header is missing or malformed, or the token does
            not resolve to a user.
    """
    token = parse_bearer(authorization)
    if token is None:
        raise Unauthorized()

    try:
        caller = backend.get_user(token)
    except Exception as e:
        logger.warning("Token lookup failed: %s", e)
        raise Unauthorized() from e

    if caller is None:
        raise Unauthorized()
    return caller


def validate_credentials(
    mode: str,
    email: str,
    password: str,
    confirm_password: str | None = None,
    name: str | None = None,
) -> None:
    """Apply the sign-in / sign-up form policy.

    Args:
        mode: ``"signin"`` or ``"signup"``.
        email: Email address (must be non-empty).
        password: Password (at least six characters).
        confirm_password: Sign-up only; must equal ``password``.
        name: Sign-up only; at least two characters once trimmed.

    Raises:
        ValidationError: With a message suitable for display.
    """
    if mode not in ("signin", "signup"):
        raise ValidationError("mode must be 'signin' or 'signup'")

    if not email or not email.strip():
        raise ValidationError("Email is required")

    if mode == "signup" and password != confirm_password:
        raise ValidationError("Passwords do not match")

    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )

    if mode == "signup":
        validate_profile_name(name)


def validate_profile_name(name: str | None) -> str:
    """Return the trimmed name, or raise if it is too short."""
    trimmed = (name or "").strip()
    if len(trimmed) < MIN_NAME_LENGTH:
        raise ValidationError(f"Name must be at least {MIN_NAME_LENGTH} characters long")
    return trimmed


def load_profile(auth: AuthContext, backend: StorageBackend, table: str) -> UserProfile | None:
    """Load the caller's profile row.

    A missing row is not an error; the caller simply has no profile yet.

    Raises:
        PersistenceError: If the table cannot be queried.
    """
    try:
        rows = backend.select_rows(table, {"id": auth.user_id})
    except Exception as e:
        logger.error("Error fetching user profile for %s: %s", auth.user_id, e)
        raise PersistenceError("Failed to load user profile") from e

    if not rows:
        auth.profile = None
        return None

    auth.profile = UserProfile.from_row(rows[0])
    return auth.profile


def update_profile_name(
    auth: AuthContext, backend: StorageBackend, table: str, name: str
) -> UserProfile:
    """Update the caller's display name.

    Raises:
        ValidationError: If the name is too short.
        PersistenceError: If the profile row is missing or the update fails.
    """
    trimmed = validate_profile_name(name)
    try:
        rows = backend.update_rows(
            table,
            {"id": auth.user_id},
            {"name": trimmed, "updated_at": datetime.now(timezone.utc).isoformat()},
        )
    except Exception as e:
        logger.error("Error updating user profile for %s: %s", auth.user_id, e)
        raise PersistenceError("Failed to update profile") from e

    if not rows:
        raise PersistenceError("Profile not found")

    auth.profile = UserProfile.from_row(rows[0])
    logger.info("Updated profile name for %s", auth.user_id)
    return auth.profile
