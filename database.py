"""
Database management for the portal
"""

import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from config import Config

logger = logging.getLogger(__name__)

# Global engine and session factory
ENGINE = None
SessionLocal = None


def init_database(config=None):
    """Initialize database engine and session factory"""
    global ENGINE, SessionLocal

    config = config or Config()
    database_uri = config.get_database_uri()

    engine_options = dict(config.SQLALCHEMY_ENGINE_OPTIONS)
    if database_uri.startswith('sqlite'):
        engine_options = {'connect_args': {'check_same_thread': False}}
        if ':memory:' in database_uri:
            # one shared connection so every session sees the same in-memory database
            engine_options['poolclass'] = StaticPool

    ENGINE = create_engine(database_uri, **engine_options)
    SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, autocommit=False, expire_on_commit=False)

    logger.info(f"Database initialized: {ENGINE.url.render_as_string(hide_password=True)}")
    return ENGINE, SessionLocal


def get_session():
    """Get a database session"""
    if SessionLocal is None:
        init_database()
    return SessionLocal()


def create_tables():
    """Create every table registered on the declarative Base"""
    # Import model modules so their tables are registered
    import assignment_models  # noqa: F401
    from models import Base

    if ENGINE is None:
        init_database()
    Base.metadata.create_all(ENGINE)


def drop_tables():
    import assignment_models  # noqa: F401
    from models import Base

    if ENGINE is not None:
        Base.metadata.drop_all(ENGINE)
