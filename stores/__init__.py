"""Catalog and loan storage backends.

The SQL backend lives in ``stores.sql`` and is imported explicitly, since it
depends on the ORM models.
"""

from .base import (  # noqa: F401
    BookRecord,
    BorrowedBook,
    CatalogStore,
    LoanRecord,
    LoanStore,
    Stores,
    UnitOfWork,
)
from .memory import MemoryUnitOfWork  # noqa: F401
