"""
Exception definitions for the key custody service.

Every error the ledger and its collaborators raise derives from LedgerError
and carries an ErrorCode. The API layer maps codes to HTTP responses in one
place (see keyledger.core.errors).
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    # Authentication
    UNAUTHENTICATED = "UNAUTHENTICATED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"

    # Referential preconditions
    KEY_NOT_FOUND = "KEY_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID_HOLDER = "INVALID_HOLDER"
    INVALID_ACTOR = "INVALID_ACTOR"

    # Ledger state
    KEY_ALREADY_ASSIGNED = "KEY_ALREADY_ASSIGNED"
    NO_OPEN_ASSIGNMENT = "NO_OPEN_ASSIGNMENT"
    KEY_STILL_ASSIGNED = "KEY_STILL_ASSIGNED"

    # Registry / user records
    DUPLICATE_KEY = "DUPLICATE_KEY"
    DUPLICATE_EMAIL = "DUPLICATE_EMAIL"
    NO_UPDATES = "NO_UPDATES"

    # Request shape
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Infrastructure
    STORAGE_FAILURE = "STORAGE_FAILURE"


class LedgerError(Exception):
    """Base exception for all service errors."""

    error_code: ErrorCode = ErrorCode.STORAGE_FAILURE
    default_message = "Ledger operation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        **kwargs,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        self.details.update(kwargs)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.error_code.value,
            "message": self.message,
            "type": self.__class__.__name__,
        }


class Unauthenticated(LedgerError):
    error_code = ErrorCode.UNAUTHENTICATED
    default_message = "Could not validate credentials"


class InvalidCredentials(LedgerError):
    error_code = ErrorCode.INVALID_CREDENTIALS
    default_message = "Invalid credentials"


class KeyNotFound(LedgerError):
    error_code = ErrorCode.KEY_NOT_FOUND
    default_message = "Key not found"


class UserNotFound(LedgerError):
    error_code = ErrorCode.USER_NOT_FOUND
    default_message = "User not found"


class InvalidHolder(LedgerError):
    error_code = ErrorCode.INVALID_HOLDER
    default_message = "Assignee does not exist or is inactive"


class InvalidActor(LedgerError):
    error_code = ErrorCode.INVALID_ACTOR
    default_message = "Acting user does not exist or is inactive"


class KeyAlreadyAssigned(LedgerError):
    error_code = ErrorCode.KEY_ALREADY_ASSIGNED
    default_message = "Key is already assigned"


class NoOpenAssignment(LedgerError):
    error_code = ErrorCode.NO_OPEN_ASSIGNMENT
    default_message = "Key has no open assignment"


class KeyStillAssigned(LedgerError):
    error_code = ErrorCode.KEY_STILL_ASSIGNED
    default_message = "Key must be returned before it can be retired"


class DuplicateKey(LedgerError):
    error_code = ErrorCode.DUPLICATE_KEY
    default_message = "Key identifier already exists"


class DuplicateEmail(LedgerError):
    error_code = ErrorCode.DUPLICATE_EMAIL
    default_message = "Email already exists"


class NoUpdates(LedgerError):
    error_code = ErrorCode.NO_UPDATES
    default_message = "No valid updates provided"


class StorageFailure(LedgerError):
    """Infrastructure fault. The message is safe to show; details are not."""

    error_code = ErrorCode.STORAGE_FAILURE
    default_message = "Storage operation failed"
