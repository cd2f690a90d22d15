"""Borrowing domain service logic."""
from __future__ import annotations

import datetime
import logging
import numbers
from typing import Callable, List, Mapping, Optional

from services.errors import (
    AuthorizationError,
    ErrorKind,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from stores.base import BOOK_TEXT_LIMITS, BookRecord, BorrowedBook, LoanRecord, Stores, UnitOfWork

DEFAULT_MAX_LOANS = 3
DELETE_POLICIES = ('reject', 'cascade')
EDITABLE_FIELDS = frozenset(
    {'title', 'author', 'image', 'category', 'rating', 'description', 'quantity', 'owner_email'}
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def clean_book_fields(fields: Mapping) -> dict:
    """Validate owner-supplied book fields, returning a plain dict."""
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown book fields: {', '.join(sorted(unknown))}.", ErrorKind.INVALID_FIELD)
    cleaned = dict(fields)
    if 'quantity' in cleaned:
        quantity = cleaned['quantity']
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError('Quantity must be a non-negative integer.', ErrorKind.INVALID_FIELD)
    if cleaned.get('rating') is not None:
        rating = cleaned['rating']
        if isinstance(rating, bool) or not isinstance(rating, numbers.Real):
            raise ValidationError('Rating must be a number.', ErrorKind.INVALID_FIELD)
        cleaned['rating'] = float(rating)
    for name, limit in BOOK_TEXT_LIMITS.items():
        value = cleaned.get(name)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f'{name} must be a string.', ErrorKind.INVALID_FIELD)
        if limit is not None and len(value) > limit:
            raise ValidationError(f'{name} is longer than {limit} characters.', ErrorKind.INVALID_FIELD)
    return cleaned


class BorrowingEngine:
    """Borrow/return workflow run as atomic units of work across the catalog and loan stores."""

    def __init__(
        self,
        unit_of_work: UnitOfWork,
        *,
        max_loans: int = DEFAULT_MAX_LOANS,
        delete_policy: str = 'reject',
        clock: Optional[Callable[[], datetime.datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if delete_policy not in DELETE_POLICIES:
            raise ValueError(f'Unknown delete policy: {delete_policy!r}')
        self.unit_of_work = unit_of_work
        self.max_loans = max_loans
        self.delete_policy = delete_policy
        self._clock = clock or _utcnow
        self._logger = logger or logging.getLogger(__name__)

    def _run(self, operation: str, work: Callable[[Stores], object], **context):
        try:
            return self.unit_of_work.run(work)
        except StorageFailure:
            self._logger.exception('%s transaction failed (%s)', operation, context)
            raise

    def borrow(
        self,
        *,
        book_id: int,
        borrower_id: str,
        return_date: datetime.date,
        borrower_name: Optional[str] = None,
    ) -> LoanRecord:
        def work(stores: Stores) -> LoanRecord:
            if stores.loans.find(book_id, borrower_id) is not None:
                raise ValidationError('You have already borrowed this book.', ErrorKind.ALREADY_BORROWED)
            if stores.loans.count_by_borrower(borrower_id) >= self.max_loans:
                raise ValidationError(
                    'You have reached the maximum limit of borrowed books.',
                    ErrorKind.BORROW_LIMIT_EXCEEDED,
                )
            if stores.catalog.get(book_id) is None:
                raise NotFoundError('Book not found.')
            if not stores.catalog.decrement_quantity(book_id, 1):
                raise ValidationError('This book is out of stock.', ErrorKind.OUT_OF_STOCK)
            return stores.loans.insert(
                LoanRecord(
                    book_id=book_id,
                    borrower_id=borrower_id,
                    borrower_name=borrower_name,
                    borrow_date=self._clock(),
                    return_date=return_date,
                )
            )

        loan = self._run('Borrow', work, book_id=book_id, borrower_id=borrower_id)
        self._logger.info('Book %s borrowed by %s until %s', book_id, borrower_id, return_date)
        return loan

    def return_book(self, *, book_id: int, borrower_id: str) -> bool:
        def work(stores: Stores) -> bool:
            if not stores.loans.delete(book_id, borrower_id):
                raise NotFoundError('No active loan for this book.')
            if not stores.catalog.increment_quantity(book_id, 1):
                self._logger.warning('Loan of missing book %s returned by %s', book_id, borrower_id)
            return True

        self._run('Return', work, book_id=book_id, borrower_id=borrower_id)
        self._logger.info('Book %s returned by %s', book_id, borrower_id)
        return True

    def list_borrowed(self, borrower_id: str) -> List[BorrowedBook]:
        def work(stores: Stores) -> List[BorrowedBook]:
            borrowed = []
            for loan in stores.loans.list_by_borrower(borrower_id):
                book = stores.catalog.get(loan.book_id)
                # loans whose book was removed are left out
                if book is None:
                    continue
                borrowed.append(BorrowedBook(loan=loan, book=book))
            return borrowed

        return self._run('ListBorrowed', work, borrower_id=borrower_id)

    def get_book(self, book_id: int) -> BookRecord:
        book = self._run('GetBook', lambda stores: stores.catalog.get(book_id), book_id=book_id)
        if book is None:
            raise NotFoundError('Book not found.')
        return book

    def add_book(self, *, caller_id: str, fields: Mapping) -> BookRecord:
        fields = clean_book_fields(fields)
        if fields.setdefault('owner_email', caller_id) != caller_id:
            raise AuthorizationError('Books can only be added under your own account.')
        fields.setdefault('quantity', 0)
        book = self._run('AddBook', lambda stores: stores.catalog.create(fields), caller_id=caller_id)
        self._logger.info('Book %s added by %s', book.id, caller_id)
        return book

    def edit_book(self, *, book_id: int, caller_id: str, fields: Mapping) -> BookRecord:
        fields = clean_book_fields(fields)
        if fields.get('owner_email', caller_id) != caller_id:
            raise AuthorizationError('Ownership of a book cannot be handed to another account.')

        def work(stores: Stores) -> BookRecord:
            existing = stores.catalog.get(book_id)
            if existing is None:
                fields['owner_email'] = caller_id
                fields.setdefault('quantity', 0)
            elif existing.owner_email != caller_id:
                raise AuthorizationError('Only the owner can edit this book.')
            return stores.catalog.update(book_id, fields)

        return self._run('EditBook', work, book_id=book_id, caller_id=caller_id)

    def delete_book(self, *, book_id: int, caller_id: str) -> BookRecord:
        def work(stores: Stores) -> BookRecord:
            book = stores.catalog.get(book_id)
            if book is None:
                raise NotFoundError('Book not found.')
            if book.owner_email != caller_id:
                raise AuthorizationError('Only the owner can delete this book.')
            if stores.loans.count_by_book(book_id):
                if self.delete_policy == 'reject':
                    raise ValidationError(
                        'This book still has copies on loan.', ErrorKind.HAS_OUTSTANDING_LOANS
                    )
                dropped = stores.loans.delete_by_book(book_id)
                self._logger.info('Dropped %s outstanding loans of book %s', dropped, book_id)
            stores.catalog.delete(book_id)
            return book

        book = self._run('DeleteBook', work, book_id=book_id, caller_id=caller_id)
        self._logger.info('Book %s deleted by %s', book_id, caller_id)
        return book
