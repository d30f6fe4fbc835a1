"""
Configuration for the College Administration Portal
"""

import os
from urllib.parse import quote_plus
import dotenv
dotenv.load_dotenv()  # Load environment variables from .env file


def _env_bool(name, default='False'):
    return os.environ.get(name, default).lower() in ('true', '1', 'yes')


class Config:
    """Base configuration"""

    # Flask settings (also the single signing secret for access/refresh tokens)
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'supersecretkey'

    # Database settings
    DATABASE_URL = os.environ.get('DATABASE_URL')
    MYSQL_HOST = os.environ.get('DB_HOST', 'localhost')
    MYSQL_PORT = int(os.environ.get('DB_PORT', 3306))
    MYSQL_USERNAME = os.environ.get('DB_USER', 'portal')
    MYSQL_PASSWORD = os.environ.get('DB_PASS', '')
    MYSQL_DATABASE = os.environ.get('DB_NAME')
    MYSQL_CHARSET = 'utf8mb4'

    # SQLAlchemy settings
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_recycle': 280,
        'pool_pre_ping': True,
    }

    # Session / token lifetimes (seconds)
    ACCESS_TOKEN_TTL_SECONDS = int(os.environ.get('ACCESS_TOKEN_TTL_SECONDS', 60))
    REFRESH_TOKEN_TTL_SECONDS = int(os.environ.get('REFRESH_TOKEN_TTL_SECONDS', 7 * 24 * 60 * 60))
    SESSION_TTL_SECONDS = int(os.environ.get('SESSION_TTL_SECONDS', 7 * 24 * 60 * 60))
    SESSION_EXTENSION_SECONDS = int(os.environ.get('SESSION_EXTENSION_SECONDS', 15 * 60))
    IDLE_TIMEOUT_SECONDS = int(os.environ.get('IDLE_TIMEOUT_SECONDS', 10 * 60))

    # 'direct' sets the refreshed cookie on the current response,
    # 'redirect' bounces through /set-cookie
    REFRESH_COOKIE_MODE = os.environ.get('REFRESH_COOKIE_MODE', 'direct')
    COOKIE_SECURE = _env_bool('COOKIE_SECURE')

    # Assessments / password reset
    ASSIGNMENT_PASSWORD_TTL_MINUTES = int(os.environ.get('ASSIGNMENT_PASSWORD_TTL_MINUTES', 20))
    RESET_CODE_TTL_MINUTES = int(os.environ.get('RESET_CODE_TTL_MINUTES', 15))

    # Object storage
    AWS_REGION = os.environ.get('AWS_REGION', 'eu-north-1')
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')
    S3_BUCKET_NAME = os.environ.get('S3_BUCKET_NAME')
    UPLOAD_URL_EXPIRES = int(os.environ.get('UPLOAD_URL_EXPIRES', 600))
    DOWNLOAD_URL_EXPIRES = int(os.environ.get('DOWNLOAD_URL_EXPIRES', 300))

    # Outbound mail (reset codes, new-account credentials)
    MAIL_SERVER = os.environ.get('MAIL_SERVER', '')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', 587))
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME', '')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD', '')
    MAIL_USE_TLS = _env_bool('MAIL_USE_TLS', 'True')
    MAIL_USE_SSL = _env_bool('MAIL_USE_SSL')
    MAIL_TIMEOUT = int(os.environ.get('MAIL_TIMEOUT', 20))

    PORTAL_NAME = os.environ.get('PORTAL_NAME', 'College Portal')
    MAIL_SENDER_NAME = os.environ.get('MAIL_SENDER_NAME') or PORTAL_NAME

    def _encoded_password(self) -> str:
        """Percent-encode special characters for URL usage."""
        return quote_plus(self.MYSQL_PASSWORD) if self.MYSQL_PASSWORD else ''

    def get_database_uri(self) -> str:
        """Database URI: DATABASE_URL, then MySQL settings, then a local SQLite file."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if not self.MYSQL_DATABASE:
            return 'sqlite:///portal.db'

        user = self.MYSQL_USERNAME
        pwd = self._encoded_password()
        host = self.MYSQL_HOST
        port = self.MYSQL_PORT
        database = self.MYSQL_DATABASE

        if pwd:
            return f"mysql+pymysql://{user}:{pwd}@{host}:{port}/{database}?charset={self.MYSQL_CHARSET}"
        return f"mysql+pymysql://{user}@{host}:{port}/{database}?charset={self.MYSQL_CHARSET}"


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False
    COOKIE_SECURE = True


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'testing-secret-key'
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Use in-memory SQLite for testing
    def get_database_uri(self) -> str:
        return 'sqlite:///:memory:'


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
