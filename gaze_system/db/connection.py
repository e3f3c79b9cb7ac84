"""
Database connection helper
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = 'sqlite:///gaze_system.db'


def get_db_connection(url: str = DEFAULT_DATABASE_URL, echo: bool = False):
    """
    Connect to the database and make sure the gaze tables exist.

    Args:
        url:  SQLAlchemy database URL.
        echo: Log emitted SQL.

    Returns:
        (engine, session) tuple.
    """
    engine = create_engine(url, echo=echo)
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    logger.debug(f"Connected to {engine.url.render_as_string(hide_password=True)}")
    return engine, session
