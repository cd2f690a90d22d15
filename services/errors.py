"""Failure categories reported by the borrowing engine."""
from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    ALREADY_BORROWED = 'already_borrowed'
    BORROW_LIMIT_EXCEEDED = 'borrow_limit_exceeded'
    OUT_OF_STOCK = 'out_of_stock'
    INVALID_FIELD = 'invalid_field'
    HAS_OUTSTANDING_LOANS = 'has_outstanding_loans'
    FORBIDDEN = 'forbidden'
    NOT_FOUND = 'not_found'
    STORAGE_FAILURE = 'storage_failure'


class BorrowServiceError(RuntimeError):
    """Base class for borrow/return failures."""

    default_kind: ErrorKind = ErrorKind.STORAGE_FAILURE

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        self.kind = kind or self.default_kind


class ValidationError(BorrowServiceError):
    """A business rule rejected the request given the current state."""

    default_kind = ErrorKind.INVALID_FIELD


class AuthorizationError(BorrowServiceError):
    default_kind = ErrorKind.FORBIDDEN


class NotFoundError(BorrowServiceError):
    default_kind = ErrorKind.NOT_FOUND


class StorageFailure(BorrowServiceError):
    """The transaction was aborted; nothing was applied. Safe to retry."""

    default_kind = ErrorKind.STORAGE_FAILURE
