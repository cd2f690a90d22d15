"""SQLAlchemy storage backend built on the models in ``models.py``."""
from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import delete, event, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from models import Book, Loan
from services.errors import StorageFailure
from stores.base import CatalogStore, LoanRecord, LoanStore, Stores, UnitOfWork


class SqlCatalogStore(CatalogStore):
    def __init__(self, session: Session):
        self._session = session

    def get(self, book_id):
        book = self._session.get(Book, book_id)
        return book.to_record() if book else None

    def create(self, fields):
        # upserts insert explicit ids, which database sequences do not track
        next_id = self._session.scalar(select(func.coalesce(func.max(Book.id), 0) + 1))
        book = Book(id=next_id, **fields)
        self._session.add(book)
        self._session.flush()
        return book.to_record()

    def decrement_quantity(self, book_id, by=1):
        # single conditional UPDATE so stock can never be driven below zero
        result = self._session.execute(
            update(Book)
            .where(Book.id == book_id, Book.quantity >= by)
            .values(quantity=Book.quantity - by)
        )
        return result.rowcount == 1

    def increment_quantity(self, book_id, by=1):
        result = self._session.execute(
            update(Book).where(Book.id == book_id).values(quantity=Book.quantity + by)
        )
        return result.rowcount == 1

    def delete(self, book_id):
        result = self._session.execute(delete(Book).where(Book.id == book_id))
        return result.rowcount == 1

    def update(self, book_id, fields):
        book = self._session.get(Book, book_id)
        if book is None:
            book = Book(id=book_id)
            self._session.add(book)
        for key, value in fields.items():
            setattr(book, key, value)
        self._session.flush()
        return book.to_record()

    def list_by_category(self, category):
        rows = self._session.scalars(select(Book).where(Book.category == category).order_by(Book.id))
        return [b.to_record() for b in rows]

    def list_top_rated(self, limit):
        rows = self._session.scalars(
            select(Book).order_by(Book.rating.is_(None), Book.rating.desc(), Book.id).limit(limit)
        )
        return [b.to_record() for b in rows]

    def list_by_owner(self, owner_email):
        rows = self._session.scalars(select(Book).where(Book.owner_email == owner_email).order_by(Book.id))
        return [b.to_record() for b in rows]


class SqlLoanStore(LoanStore):
    def __init__(self, session: Session):
        self._session = session

    def find(self, book_id, borrower_id):
        loan = self._session.scalars(
            select(Loan).where(Loan.book_id == book_id, Loan.borrower_id == borrower_id)
        ).first()
        return loan.to_record() if loan else None

    def count_by_borrower(self, borrower_id):
        return self._session.scalar(
            select(func.count()).select_from(Loan).where(Loan.borrower_id == borrower_id)
        )

    def insert(self, record: LoanRecord) -> LoanRecord:
        loan = Loan(
            book_id=record.book_id,
            borrower_id=record.borrower_id,
            borrower_name=record.borrower_name,
            borrow_date=record.borrow_date,
            return_date=record.return_date,
        )
        self._session.add(loan)
        self._session.flush()
        return loan.to_record()

    def delete(self, book_id, borrower_id):
        result = self._session.execute(
            delete(Loan).where(Loan.book_id == book_id, Loan.borrower_id == borrower_id)
        )
        return result.rowcount == 1

    def list_by_borrower(self, borrower_id):
        rows = self._session.scalars(select(Loan).where(Loan.borrower_id == borrower_id).order_by(Loan.id))
        return [loan.to_record() for loan in rows]

    def count_by_book(self, book_id):
        return self._session.scalar(select(func.count()).select_from(Loan).where(Loan.book_id == book_id))

    def delete_by_book(self, book_id):
        result = self._session.execute(delete(Loan).where(Loan.book_id == book_id))
        return result.rowcount


class SqlUnitOfWork(UnitOfWork):
    """Each unit runs in its own session and transaction from ``session_factory``."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self):
        try:
            with self._session_factory.begin() as session:
                yield Stores(catalog=SqlCatalogStore(session), loans=SqlLoanStore(session))
        except SQLAlchemyError as exc:
            # begin() has already rolled the transaction back
            raise StorageFailure(f'Transaction aborted: {exc.__class__.__name__}') from exc


def _begin_immediate(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write; take the write lock up front instead
    @event.listens_for(engine, 'connect')
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _emit_begin(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


def transactional_sessionmaker(engine: Engine) -> sessionmaker:
    """Session factory whose transactions run at serializable isolation."""
    if engine.dialect.name == 'sqlite':
        _begin_immediate(engine)
        bind = engine
    else:
        bind = engine.execution_options(isolation_level='SERIALIZABLE')
    return sessionmaker(bind=bind, expire_on_commit=False)
