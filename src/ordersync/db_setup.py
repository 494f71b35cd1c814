import os
import logging
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker
from .models import Base

lgr = logging.getLogger(__name__)

DEFAULT_DB_PATH = "~/.ordersync/ordersync.db"


def get_engine(db_path=DEFAULT_DB_PATH, echo=False):
    """
    Create a SQLAlchemy engine for the local SQLite database.

    Args:
        db_path (str): The file path for the SQLite database, or ":memory:".
        echo (bool): If True, SQLAlchemy will log all SQL queries.

    Returns:
        Engine: A SQLAlchemy engine connected to the SQLite database.
    """
    if db_path == ":memory:":
        return create_engine(
            "sqlite://",
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    db_path = os.path.expanduser(db_path)

    # Ensure the directory for the database exists
    db_dir = os.path.dirname(db_path)
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir)

    # The callback API and the cron worker may share the engine across threads
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=echo,
        connect_args={"check_same_thread": False},
    )
    return engine


def init_database(db_path=None, echo=None):
    """
    Create tables if they do not already exist and return a session factory.

    Falls back to the DB_PATH / DB_ECHO environment variables.
    """
    if db_path is None:
        db_path = os.getenv("DB_PATH", DEFAULT_DB_PATH)
    if echo is None:
        echo = os.getenv("DB_ECHO", "False").lower() in ("true", "1")

    engine = get_engine(db_path=db_path, echo=echo)
    Base.metadata.create_all(engine)
    lgr.debug(f"Database ready at {db_path}")

    return sessionmaker(bind=engine, expire_on_commit=False)
