"""Application configuration profiles."""
from __future__ import annotations

import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_DB_URI = os.environ.get('DATABASE_URL', f"sqlite:///{os.path.join(BASE_DIR, 'library.db')}")


class BaseConfig:
    SQLALCHEMY_DATABASE_URI = DEFAULT_DB_URI
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get('FLASK_SECRET', 'dev-secret-key')
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # lending policy
    MAX_LOANS_PER_BORROWER = int(os.environ.get('MAX_LOANS_PER_BORROWER', '3'))
    # 'reject' refuses to delete a book with outstanding loans, 'cascade' drops the loans with it
    BOOK_DELETE_POLICY = os.environ.get('BOOK_DELETE_POLICY', 'reject')
    STORAGE_BACKEND = os.environ.get('STORAGE_BACKEND', 'sql')


class DevelopmentConfig(BaseConfig):
    DEBUG = True


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'


class ProductionConfig(BaseConfig):
    DEBUG = False
    SESSION_COOKIE_SECURE = True


config_by_name = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}
