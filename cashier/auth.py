"""
auth.py
Password hashing, role permissions and back-office user administration.
"""

from __future__ import annotations

import logging
from typing import Optional

import bcrypt

from .exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    UserNotFoundError,
    ValidationError,
)
from .models import CreateUserRequest, Permission, Role, UpdateUserRequest, User
from .store import TicketStore

logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.ADMIN: frozenset(Permission),
    Role.CASHIER: frozenset({
        Permission.VIEW_ACTIVE_CLIENTS,
        Permission.CREATE_TICKETS,
        Permission.EXPORT_TODAY_TICKETS,
        Permission.VIEW_DASHBOARD,
    }),
}

DEFAULT_USERS = (
    ("admin", "admin123", Role.ADMIN),
    ("cashier", "cashier123", Role.CASHIER),
)


def has_permission(role: Role, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def require_permission(user: User, permission: Permission) -> None:
    if not has_permission(user.role, permission):
        raise PermissionDeniedError(f"Role {user.role.value} lacks permission {permission.value}")


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    pw = password.encode("utf-8")
    if len(pw) > 72:
        pw = pw[:72]
    return pw


def hash_password(password: str, rounds: int = 12) -> str:
    """Return a bcrypt hash as a UTF-8 string."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_to_bcrypt_secret(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_to_bcrypt_secret(password), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def _validate_username(username: str) -> str:
    username = username.strip()
    if len(username) < MIN_USERNAME_LENGTH:
        raise ValidationError(f"Username must be at least {MIN_USERNAME_LENGTH} characters")
    return username


def _validate_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


class UserService:
    def __init__(self, store: TicketStore, bcrypt_rounds: int = 12):
        self.store = store
        self.bcrypt_rounds = bcrypt_rounds

    def authenticate(self, username: str, password: str) -> User:
        user = self.store.get_user_by_username(username.strip())
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("Failed login for %r", username, extra={"username": username})
            raise AuthenticationError("Invalid username or password")
        if not user.active:
            logger.warning("Login attempt by inactive user %r", username, extra={"username": username})
            raise AuthenticationError("User is inactive")
        return user

    def create_user(self, request: CreateUserRequest) -> User:
        username = _validate_username(request.username)
        _validate_password(request.password)
        user = self.store.add_user(
            username,
            hash_password(request.password, self.bcrypt_rounds),
            request.role,
            request.active,
        )
        logger.info("Created %s user %s", user.role.value, user.username)
        return user

    def update_user(self, user_id: int, request: UpdateUserRequest) -> User:
        fields = {}
        if request.username is not None:
            fields["username"] = _validate_username(request.username)
        # An empty password means "keep the current one"
        if request.password:
            _validate_password(request.password)
            fields["password_hash"] = hash_password(request.password, self.bcrypt_rounds)
        if request.role is not None:
            fields["role"] = request.role
        if request.active is not None:
            fields["active"] = request.active
        return self.store.update_user(user_id, fields)

    def delete_user(self, user_id: int, acting_user_id: Optional[int] = None) -> None:
        if acting_user_id is not None and acting_user_id == user_id:
            raise ValidationError("Users cannot delete their own account")
        self.store.delete_user(user_id)
        logger.info("Deleted user %s", user_id)

    def get_user(self, user_id: int) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    def list_users(self) -> list[User]:
        return self.store.list_users()

    def seed_default_users(self) -> None:
        """Create the default admin and cashier accounts when no user exists."""
        if self.store.count_users():
            return
        for username, password, role in DEFAULT_USERS:
            self.store.add_user(username, hash_password(password, self.bcrypt_rounds), role, True)
            logger.info("Seeded default %s account %r", role.value, username)
