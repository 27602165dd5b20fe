"""
User accounts and their push subscriptions.
"""

import base64
import hashlib
import hmac
import logging
import re
from typing import Any, Optional

import bcrypt

from badly.database.db import EntityRepository
from badly.database.models import PushSubscription, User
from badly.services.exceptions import AuthenticationError, UserValidationError
from badly.utils.constants import MAX_USERS
from badly.utils.datetime_utils import utcnow_iso

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,20}$")
MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 64

# Salt of the sha256 hashes created before the switch to bcrypt
LEGACY_PASSWORD_SALT = "badly-static-salt-v1"


def _bcrypt_input(password: str) -> bytes:
    # bcrypt rejects inputs over 72 bytes; 64 multibyte characters can exceed that
    return base64.b64encode(hashlib.sha256(password.encode()).digest())


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_bcrypt_input(password), bcrypt.gensalt()).decode()


def _legacy_hash(password: str) -> str:
    return hashlib.sha256(f"{password}:{LEGACY_PASSWORD_SALT}".encode()).hexdigest()


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a bcrypt hash or a legacy sha256 hash."""
    if not password_hash:
        return False
    if password_hash.startswith("$2"):
        try:
            return bcrypt.checkpw(_bcrypt_input(password), password_hash.encode())
        except ValueError:
            return False
    return hmac.compare_digest(_legacy_hash(password), password_hash)


def find_user(repository: EntityRepository, name: Optional[str]) -> Optional[User]:
    """Look a user up by name, case-insensitively."""
    if not name:
        return None
    normalized = name.strip().lower()
    for user in repository.read_users():
        if user.normalized == normalized:
            return user
    return None


def signup(repository: EntityRepository, name: Any, password: Any) -> User:
    """
    Create an account.

    Args:
        repository: Entity repository
        name: 3-20 characters, letters, digits, dash or underscore
        password: 6-64 characters

    Returns:
        The new user

    Raises:
        UserValidationError: If the credentials are malformed, the name is
            taken or the user limit is reached
    """
    if not isinstance(name, str) or not isinstance(password, str):
        raise UserValidationError("Missing credentials")

    name = name.strip()
    if not NAME_PATTERN.match(name):
        raise UserValidationError(
            "Invalid name (3-20 characters: letters, digits, dash or underscore)"
        )
    if not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
        raise UserValidationError(
            f"Invalid password ({MIN_PASSWORD_LENGTH}-{MAX_PASSWORD_LENGTH} characters)"
        )

    with repository.users.lock:
        users = repository.read_users()
        if len(users) >= MAX_USERS:
            raise UserValidationError(f"User limit reached ({MAX_USERS} maximum)")
        normalized = name.lower()
        if any(user.normalized == normalized for user in users):
            raise UserValidationError("Name already taken")

        user = User(
            name=name,
            normalized=normalized,
            password_hash=hash_password(password),
            created_at=utcnow_iso(),
            push_subscriptions=[],
        )
        users.append(user)
        repository.write_users(users)

    logger.info(f"User {name} signed up")
    return user


def authenticate(
    repository: EntityRepository,
    name: Any,
    password: Any = None,
    password_hash: Any = None,
) -> User:
    """
    Sign a user in with either a password or the stored password hash.

    Raises:
        UserValidationError: If no name is given or the password length is invalid
        AuthenticationError: If the user is unknown or the credentials do not match
    """
    if not isinstance(name, str):
        raise UserValidationError("Missing credentials")

    user = find_user(repository, name)
    if user is None:
        raise AuthenticationError("Authentication failed")

    if isinstance(password, str):
        if not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
            raise UserValidationError("Authentication failed")
        if verify_password(password, user.password_hash):
            return user
    elif isinstance(password_hash, str) and user.password_hash:
        if hmac.compare_digest(password_hash, user.password_hash):
            return user

    logger.info(f"Failed sign-in for {name}")
    raise AuthenticationError("Authentication failed")


def authenticate_cookie(repository: EntityRepository, payload: Any) -> Optional[User]:
    """Resolve the ``{name, passwordHash}`` auth cookie payload to a user, or None."""
    if not isinstance(payload, dict):
        return None
    name = payload.get("name")
    password_hash = payload.get("passwordHash")
    if not isinstance(name, str) or not isinstance(password_hash, str):
        return None
    user = find_user(repository, name)
    if user is None or not user.password_hash:
        return None
    if not hmac.compare_digest(password_hash, user.password_hash):
        return None
    return user


def subscribe_push(
    repository: EntityRepository,
    user_name: str,
    endpoint: Any,
    keys: Any,
    expiration_time: Any = None,
) -> bool:
    """
    Register or refresh a push subscription for ``user_name``.

    An endpoint already held by this user is updated in place when its keys or
    expiration changed. A new endpoint is removed from any other user first,
    since one browser only delivers to the account last signed in on it.

    Returns:
        True if users.json was written

    Raises:
        UserValidationError: If endpoint or keys are missing
        AuthenticationError: If the user no longer exists
    """
    if not endpoint or not keys:
        raise UserValidationError("Invalid push subscription")
    expiration_time = expiration_time or None

    with repository.users.lock:
        users = repository.read_users()
        current = next((user for user in users if user.name == user_name), None)
        if current is None:
            raise AuthenticationError("User not found")

        existing = next(
            (sub for sub in current.push_subscriptions if sub.endpoint == endpoint), None
        )
        if existing is not None:
            if existing.keys == keys and existing.expiration_time == expiration_time:
                return False
            existing.keys = keys
            existing.expiration_time = expiration_time
            existing.updated_at = utcnow_iso()
            repository.write_users(users)
            logger.info(f"Push subscription updated for {user_name}")
            return True

        for user in users:
            if user.name != user_name:
                user.push_subscriptions = [
                    sub for sub in user.push_subscriptions if sub.endpoint != endpoint
                ]
        current.push_subscriptions.append(
            PushSubscription(
                endpoint=endpoint,
                keys=keys,
                expiration_time=expiration_time,
                created_at=utcnow_iso(),
            )
        )
        repository.write_users(users)

    logger.info(f"New push subscription registered for {user_name}")
    return True


def unsubscribe_push(repository: EntityRepository, endpoint: Any) -> bool:
    """
    Remove a subscription endpoint from every user.

    Returns:
        True if a subscription was removed
    """
    if not endpoint:
        raise UserValidationError("Missing endpoint")

    with repository.users.lock:
        users = repository.read_users()
        removed = False
        for user in users:
            before = len(user.push_subscriptions)
            user.push_subscriptions = [
                sub for sub in user.push_subscriptions if sub.endpoint != endpoint
            ]
            if len(user.push_subscriptions) < before:
                removed = True
        if removed:
            repository.write_users(users)
            logger.info("Push subscription removed")
    return removed
