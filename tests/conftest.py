import datetime

import pytest

from app import create_app
from models import db

OWNER = 'owner@example.com'
RETURN_DATE = datetime.date(2030, 1, 15)


def build_app(backend='sql', **overrides):
    config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'STORAGE_BACKEND': backend,
    }
    config.update(overrides)
    return create_app(config)


@pytest.fixture(params=['sql', 'memory'])
def app(request):
    app = build_app(request.param)
    with app.app_context():
        db.create_all()
        yield app


@pytest.fixture
def engine(app):
    return app.extensions['borrowing_engine']


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def add_book(engine):
    def _add(quantity=1, owner=OWNER, **fields):
        fields.setdefault('title', 'Untitled')
        return engine.add_book(caller_id=owner, fields=dict(fields, quantity=quantity))

    return _add
