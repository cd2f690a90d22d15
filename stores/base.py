"""Record types and the store contracts the borrowing engine runs against.

Each backend provides a catalog store, a loan store and a unit of work that
hands out both stores bound to a single transaction. Store methods report
expected outcomes as values (``None``, ``False``, counts); failures of the
underlying storage surface from the unit of work as ``StorageFailure``.
"""
from __future__ import annotations

import datetime
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Callable, Iterator, List, Mapping, NamedTuple, Optional, TypeVar

T = TypeVar('T')

# longest value each text column of a book accepts; None means unbounded
BOOK_TEXT_LIMITS = {
    'owner_email': 254,
    'title': 200,
    'author': 200,
    'image': 500,
    'category': 80,
    'description': None,
}


@dataclass(frozen=True)
class BookRecord:
    id: int
    owner_email: str
    quantity: int = 0
    title: Optional[str] = None
    author: Optional[str] = None
    image: Optional[str] = None
    category: Optional[str] = None
    rating: Optional[float] = None
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LoanRecord:
    book_id: int
    borrower_id: str
    borrow_date: datetime.datetime
    return_date: datetime.date
    borrower_name: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'book_id': self.book_id,
            'borrower_id': self.borrower_id,
            'borrower_name': self.borrower_name,
            'borrow_date': self.borrow_date.isoformat() if self.borrow_date else None,
            'return_date': self.return_date.isoformat() if self.return_date else None,
        }


@dataclass(frozen=True)
class BorrowedBook:
    """A loan joined with the book it references."""

    loan: LoanRecord
    book: BookRecord

    def to_dict(self) -> dict:
        data = self.book.to_dict()
        loan = self.loan.to_dict()
        data['loan_id'] = loan.pop('id')
        data.update(loan)
        return data


class CatalogStore(ABC):
    @abstractmethod
    def get(self, book_id: int) -> Optional[BookRecord]:
        ...

    @abstractmethod
    def create(self, fields: Mapping) -> BookRecord:
        ...

    @abstractmethod
    def decrement_quantity(self, book_id: int, by: int = 1) -> bool:
        """Take ``by`` copies out of stock.

        Returns False, changing nothing, when the book is missing or holds
        fewer than ``by`` copies.
        """

    @abstractmethod
    def increment_quantity(self, book_id: int, by: int = 1) -> bool:
        ...

    @abstractmethod
    def delete(self, book_id: int) -> bool:
        ...

    @abstractmethod
    def update(self, book_id: int, fields: Mapping) -> BookRecord:
        """Replace the given fields, creating the book under ``book_id`` if absent."""

    @abstractmethod
    def list_by_category(self, category: str) -> List[BookRecord]:
        ...

    @abstractmethod
    def list_top_rated(self, limit: int) -> List[BookRecord]:
        ...

    @abstractmethod
    def list_by_owner(self, owner_email: str) -> List[BookRecord]:
        ...


class LoanStore(ABC):
    @abstractmethod
    def find(self, book_id: int, borrower_id: str) -> Optional[LoanRecord]:
        ...

    @abstractmethod
    def count_by_borrower(self, borrower_id: str) -> int:
        ...

    @abstractmethod
    def insert(self, record: LoanRecord) -> LoanRecord:
        ...

    @abstractmethod
    def delete(self, book_id: int, borrower_id: str) -> bool:
        ...

    @abstractmethod
    def list_by_borrower(self, borrower_id: str) -> List[LoanRecord]:
        ...

    @abstractmethod
    def count_by_book(self, book_id: int) -> int:
        ...

    @abstractmethod
    def delete_by_book(self, book_id: int) -> int:
        ...


class Stores(NamedTuple):
    catalog: CatalogStore
    loans: LoanStore


class UnitOfWork(ABC):
    """Runs work against both stores as one all-or-nothing transaction."""

    def run(self, work: Callable[[Stores], T]) -> T:
        with self._transaction() as stores:
            return work(stores)

    @abstractmethod
    @contextmanager
    def _transaction(self) -> Iterator[Stores]:
        ...
