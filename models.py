import datetime

from flask_sqlalchemy import SQLAlchemy

from stores.base import BOOK_TEXT_LIMITS, BookRecord, LoanRecord

# SQLAlchemy instance (initialized by app)
db = SQLAlchemy()


class Book(db.Model):
    __tablename__ = 'book'
    __table_args__ = (db.CheckConstraint('quantity >= 0', name='ck_book_quantity_non_negative'),)

    id = db.Column(db.Integer, primary_key=True)
    owner_email = db.Column(db.String(BOOK_TEXT_LIMITS['owner_email']), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(BOOK_TEXT_LIMITS['title']), nullable=True)
    author = db.Column(db.String(BOOK_TEXT_LIMITS['author']), nullable=True)
    image = db.Column(db.String(BOOK_TEXT_LIMITS['image']), nullable=True)
    category = db.Column(db.String(BOOK_TEXT_LIMITS['category']), nullable=True, index=True)
    rating = db.Column(db.Float, nullable=True)
    description = db.Column(db.Text, nullable=True)

    def to_record(self) -> BookRecord:
        return BookRecord(
            id=self.id,
            owner_email=self.owner_email,
            quantity=self.quantity,
            title=self.title,
            author=self.author,
            image=self.image,
            category=self.category,
            rating=self.rating,
            description=self.description,
        )


class Loan(db.Model):
    __tablename__ = 'loan'
    __table_args__ = (db.UniqueConstraint('book_id', 'borrower_id', name='uq_loan_book_borrower'),)

    id = db.Column(db.Integer, primary_key=True)
    # weak reference: a loan may outlive its book
    book_id = db.Column(db.Integer, nullable=False, index=True)
    borrower_id = db.Column(db.String(254), nullable=False, index=True)
    borrower_name = db.Column(db.String(120), nullable=True)
    borrow_date = db.Column(db.DateTime(timezone=True), nullable=False)
    return_date = db.Column(db.Date, nullable=False)

    def to_record(self) -> LoanRecord:
        borrow_date = self.borrow_date
        # SQLite hands DateTime values back without their zone; they are stored as UTC
        if borrow_date is not None and borrow_date.tzinfo is None:
            borrow_date = borrow_date.replace(tzinfo=datetime.timezone.utc)
        return LoanRecord(
            id=self.id,
            book_id=self.book_id,
            borrower_id=self.borrower_id,
            borrower_name=self.borrower_name,
            borrow_date=borrow_date,
            return_date=self.return_date,
        )
