"""
Error taxonomy shared by the cipher, the authorization gate and the store.

Every error carries a short machine-readable code. The store and cipher raise
these and never log-and-continue; the tool dispatcher turns them into text.
"""
from enum import Enum


class ErrorCode(str, Enum):
    DECRYPT_ERROR = "DECRYPT_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TYPE = "INVALID_TYPE"
    INVALID_INPUT = "INVALID_INPUT"
    DB_ERROR = "DB_ERROR"


class AuthErrorCode(str, Enum):
    # "who are you"
    INVALID_TOKEN = "INVALID_TOKEN"
    # "you can't do that"
    INSUFFICIENT_SCOPE = "INSUFFICIENT_SCOPE"


class PersonalContextError(Exception):
    """Base for all errors raised by this package."""

    def __init__(self, message: str, code: str):
        self.message = message
        self.code = code
        super().__init__(message)


class DecryptError(PersonalContextError):
    """Envelope is corrupt, was tampered with, or was sealed under another key."""

    def __init__(self, message: str = "Failed to decrypt data"):
        super().__init__(message, ErrorCode.DECRYPT_ERROR)


class NotFoundError(PersonalContextError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, ErrorCode.NOT_FOUND)


class InvalidTypeError(PersonalContextError):
    """Unrecognized entity kind tag."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.INVALID_TYPE)


class InvalidInputError(PersonalContextError):
    """Entity data is missing required fields or carries fields the kind does not have."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.INVALID_INPUT)


class StoreError(PersonalContextError):
    """Underlying persistence failure; the write did not happen."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.DB_ERROR)


class AuthError(PersonalContextError):
    """Raised by the authorization gate, never by the store."""

    def __init__(self, message: str, code: AuthErrorCode):
        super().__init__(message, code)
