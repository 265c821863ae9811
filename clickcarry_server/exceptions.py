"""Error types raised by the storefront client."""

from typing import Optional

from pydantic import ValidationError as PydanticValidationError


class StorefrontError(Exception):
    """Base class for storefront errors."""


class AuthError(StorefrontError):
    """Invalid credentials, unauthorized role or auth API failure."""


class StoreError(StorefrontError):
    """Any failure of a remote table operation."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(StorefrontError):
    """Client-side form or selection check failure."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    @classmethod
    def from_pydantic(cls, error: PydanticValidationError) -> "ValidationError":
        """Build from a pydantic error, keeping the first message."""
        first = error.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "Invalid input")
        # pydantic prefixes messages raised from validators
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        return cls(message, field=field or None)
