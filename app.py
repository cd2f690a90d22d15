from __future__ import annotations

import datetime
import os

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from config import BaseConfig, config_by_name
from models import db
from services.auth import caller_required
from services.borrowing import BorrowingEngine
from services.errors import (
    AuthorizationError,
    BorrowServiceError,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from stores.memory import MemoryUnitOfWork

RETURN_DATE_FORMATS = ('%Y-%m-%d', '%m/%d/%Y')

ERROR_STATUS = (
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (StorageFailure, 503),
)


class InvalidRequest(ValueError):
    pass


def _load_config(app: Flask, config_name: str | None, test_config: dict | None) -> None:
    resolved_name = config_name or os.environ.get('FLASK_CONFIG', 'development')
    config_cls = config_by_name.get(resolved_name, BaseConfig)
    app.config.from_object(config_cls)
    if test_config:
        app.config.update(test_config)


def _build_engine(app: Flask) -> BorrowingEngine:
    backend = app.config.get('STORAGE_BACKEND', 'sql')
    if backend == 'memory':
        unit_of_work = MemoryUnitOfWork()
    elif backend == 'sql':
        from stores.sql import SqlUnitOfWork, transactional_sessionmaker

        with app.app_context():
            unit_of_work = SqlUnitOfWork(transactional_sessionmaker(db.engine))
    else:
        raise ValueError(f'Unknown STORAGE_BACKEND: {backend!r}')
    return BorrowingEngine(
        unit_of_work,
        max_loans=int(app.config['MAX_LOANS_PER_BORROWER']),
        delete_policy=app.config['BOOK_DELETE_POLICY'],
        logger=app.logger,
    )


def parse_return_date(raw_value) -> datetime.date:
    if not raw_value:
        raise InvalidRequest('returnDate is required')
    for fmt in RETURN_DATE_FORMATS:
        try:
            return datetime.datetime.strptime(str(raw_value), fmt).date()
        except ValueError:
            continue
    raise InvalidRequest('returnDate must be YYYY-MM-DD or MM/DD/YYYY')


def book_fields_from(payload) -> dict:
    if not isinstance(payload, dict):
        raise InvalidRequest('expected a JSON object')
    # the catalog client echoes ids back; they are not editable
    fields = {k: v for k, v in payload.items() if k not in ('id', '_id')}
    if 'email' in fields and 'owner_email' not in fields:
        fields['owner_email'] = fields.pop('email')
    return fields


def create_app(config_name: str | None = None, test_config: dict | None = None):
    if isinstance(config_name, dict) and test_config is None:
        test_config = config_name
        config_name = None
    app = Flask(__name__)
    _load_config(app, config_name, test_config)
    db.init_app(app)
    engine = _build_engine(app)
    app.extensions['borrowing_engine'] = engine

    @app.errorhandler(BorrowServiceError)
    def handle_service_error(exc: BorrowServiceError):
        status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
        return jsonify({'error': exc.kind.value, 'message': str(exc)}), status

    @app.errorhandler(InvalidRequest)
    def handle_invalid_request(exc: InvalidRequest):
        return jsonify({'error': 'invalid_request', 'message': str(exc)}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({'error': exc.name.lower().replace(' ', '_'), 'message': exc.description}), exc.code

    @app.after_request
    def set_security_headers(response):
        response.headers.setdefault('X-Frame-Options', 'DENY')
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('Referrer-Policy', 'no-referrer-when-downgrade')
        return response

    @app.route('/health')
    def health():
        return jsonify({'ok': True})

    @app.route('/books/new', methods=['POST'])
    @caller_required
    def add_book():
        fields = book_fields_from(request.get_json(silent=True))
        book = engine.add_book(caller_id=g.caller_id, fields=fields)
        return jsonify(book.to_dict()), 201

    @app.route('/book/<int:book_id>')
    @caller_required
    def get_book(book_id: int):
        return jsonify(engine.get_book(book_id).to_dict())

    @app.route('/book/<int:book_id>/borrow', methods=['PUT'])
    @caller_required
    def borrow(book_id: int):
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            raise InvalidRequest('expected a JSON object')
        return_date = parse_return_date(data.get('returnDate'))
        loan = engine.borrow(
            book_id=book_id,
            borrower_id=g.caller_id,
            return_date=return_date,
            borrower_name=data.get('name') or g.caller_id,
        )
        return jsonify(loan.to_dict()), 201

    @app.route('/book/<int:book_id>/return', methods=['PUT'])
    @caller_required
    def do_return(book_id: int):
        engine.return_book(book_id=book_id, borrower_id=g.caller_id)
        return jsonify({'success': True})

    @app.route('/books/borrowed')
    @caller_required
    def borrowed_books():
        return jsonify([item.to_dict() for item in engine.list_borrowed(g.caller_id)])

    @app.route('/book/<int:book_id>/edit', methods=['PUT'])
    @caller_required
    def edit_book(book_id: int):
        fields = book_fields_from(request.get_json(silent=True))
        book = engine.edit_book(book_id=book_id, caller_id=g.caller_id, fields=fields)
        return jsonify(book.to_dict())

    @app.route('/book/<int:book_id>', methods=['DELETE'])
    @caller_required
    def delete_book(book_id: int):
        book = engine.delete_book(book_id=book_id, caller_id=g.caller_id)
        return jsonify({'deleted': True, 'book': book.to_dict()})

    return app


if __name__ == '__main__':
    application = create_app()
    with application.app_context():
        db.create_all()
    application.run(debug=True)
