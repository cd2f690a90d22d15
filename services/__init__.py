"""Service layer package for encapsulating business logic."""

from .borrowing import BorrowingEngine, DEFAULT_MAX_LOANS  # noqa: F401
from .errors import (  # noqa: F401
    AuthorizationError,
    BorrowServiceError,
    ErrorKind,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from .auth import AuthError, caller_required, verify_caller  # noqa: F401
