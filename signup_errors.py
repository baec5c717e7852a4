from __future__ import annotations

import re
from typing import Dict, Optional

from pymongo.errors import DuplicateKeyError

USERNAME_TAKEN = "A user with the given username is already registered"
DEFAULT_MESSAGE = "Something went wrong"
DUPLICATE_ACCOUNT = "An account with this username or email already exists"

_EMAIL_RE = re.compile(r"email", re.IGNORECASE)


class SignupError(Exception):
    pass


class UserExistsError(SignupError):
    def __init__(self, message: str = USERNAME_TAKEN) -> None:
        super().__init__(message)


class ValidationError(SignupError):
    def __init__(self, errors: Dict[str, str], message: str = "Validation failed") -> None:
        super().__init__(message)
        self.errors = errors


def duplicate_field(exc: Exception) -> Optional[str]:
    if not isinstance(exc, DuplicateKeyError):
        return None
    key_value = (exc.details or {}).get("keyValue") or {}
    if not key_value:
        return None
    return next(iter(key_value))


def classify_signup_error(exc: Exception) -> str:
    """Map a registration failure to the message shown to the user.

    First match wins: duplicate key field, username collision, anything
    mentioning email, field validation errors, any other duplicate key,
    then the raw message.
    """
    message = str(exc) if exc.args else ""
    field = duplicate_field(exc)
    if field:
        return f"{field[:1].upper()}{field[1:]} already exists"
    if USERNAME_TAKEN in message:
        return "Username already exists"
    if _EMAIL_RE.search(message):
        return "Account with this email already exists"
    errors = getattr(exc, "errors", None)
    if isinstance(errors, dict) and errors:
        return ", ".join(str(value) for value in errors.values())
    if isinstance(exc, DuplicateKeyError):
        return DUPLICATE_ACCOUNT
    return message or DEFAULT_MESSAGE
