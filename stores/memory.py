"""In-process storage backend.

Units of work are serialised by a lock and operate on copies of the tables;
the copies replace the published state only when the unit commits.
"""
from __future__ import annotations

import dataclasses
import itertools
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from services.errors import StorageFailure
from stores.base import BookRecord, CatalogStore, LoanRecord, LoanStore, Stores, UnitOfWork

LoanKey = Tuple[int, str]


class MemoryCatalogStore(CatalogStore):
    def __init__(self, books: Dict[int, BookRecord], ids: Iterator[int]):
        self._books = books
        self._ids = ids

    def get(self, book_id):
        return self._books.get(book_id)

    def create(self, fields: Mapping) -> BookRecord:
        book_id = next(self._ids)
        # skip ids already taken by an upsert
        while book_id in self._books:
            book_id = next(self._ids)
        book = BookRecord(id=book_id, **fields)
        self._books[book.id] = book
        return book

    def decrement_quantity(self, book_id, by=1):
        book = self._books.get(book_id)
        if book is None or book.quantity < by:
            return False
        self._books[book_id] = dataclasses.replace(book, quantity=book.quantity - by)
        return True

    def increment_quantity(self, book_id, by=1):
        book = self._books.get(book_id)
        if book is None:
            return False
        self._books[book_id] = dataclasses.replace(book, quantity=book.quantity + by)
        return True

    def delete(self, book_id):
        return self._books.pop(book_id, None) is not None

    def update(self, book_id, fields):
        book = self._books.get(book_id)
        if book is None:
            book = BookRecord(id=book_id, **fields)
        else:
            book = dataclasses.replace(book, **fields)
        self._books[book_id] = book
        return book

    def list_by_category(self, category):
        return [b for b in self._books.values() if b.category == category]

    def list_top_rated(self, limit):
        rated = sorted(
            self._books.values(),
            key=lambda b: (b.rating is None, -(b.rating or 0.0), b.id),
        )
        return rated[:limit]

    def list_by_owner(self, owner_email):
        return [b for b in self._books.values() if b.owner_email == owner_email]


class MemoryLoanStore(LoanStore):
    def __init__(self, loans: Dict[LoanKey, LoanRecord], ids: Iterator[int]):
        self._loans = loans
        self._ids = ids

    def find(self, book_id, borrower_id):
        return self._loans.get((book_id, borrower_id))

    def count_by_borrower(self, borrower_id):
        return sum(1 for loan in self._loans.values() if loan.borrower_id == borrower_id)

    def insert(self, record: LoanRecord) -> LoanRecord:
        key = (record.book_id, record.borrower_id)
        if key in self._loans:
            raise StorageFailure('Loan already exists for this book and borrower.')
        record = dataclasses.replace(record, id=next(self._ids))
        self._loans[key] = record
        return record

    def delete(self, book_id, borrower_id):
        return self._loans.pop((book_id, borrower_id), None) is not None

    def list_by_borrower(self, borrower_id) -> List[LoanRecord]:
        return [loan for loan in self._loans.values() if loan.borrower_id == borrower_id]

    def count_by_book(self, book_id):
        return sum(1 for key in self._loans if key[0] == book_id)

    def delete_by_book(self, book_id):
        keys = [key for key in self._loans if key[0] == book_id]
        for key in keys:
            del self._loans[key]
        return len(keys)


class MemoryUnitOfWork(UnitOfWork):
    def __init__(self):
        self._lock = threading.Lock()
        self._books: Dict[int, BookRecord] = {}
        self._loans: Dict[LoanKey, LoanRecord] = {}
        self._book_ids = itertools.count(1)
        self._loan_ids = itertools.count(1)
        self._commit_failure: Optional[str] = None

    def fail_next_commit(self, reason: str = 'simulated commit failure') -> None:
        """Make the next unit of work abort at commit time."""
        self._commit_failure = reason

    @contextmanager
    def _transaction(self):
        with self._lock:
            books = dict(self._books)
            loans = dict(self._loans)
            yield Stores(
                catalog=MemoryCatalogStore(books, self._book_ids),
                loans=MemoryLoanStore(loans, self._loan_ids),
            )
            if self._commit_failure is not None:
                reason, self._commit_failure = self._commit_failure, None
                raise StorageFailure(f'Transaction aborted: {reason}')
            self._books = books
            self._loans = loans
