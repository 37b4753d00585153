from __future__ import annotations

import logging
from os import getenv

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from models.base_model import Base
from models.password_reset_token import PasswordResetToken
from models.refresh_token import RefreshToken
from models.user import User

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///auth-api.db"

# Map model names for easy querying
classes = {
    "User": User,
    "RefreshToken": RefreshToken,
    "PasswordResetToken": PasswordResetToken,
}


class DBStorage:
    """
    Thin wrapper around an engine and a thread-scoped session.
    Each request thread gets its own session; the app removes it on teardown.
    """

    __engine = None
    __session = None

    def __init__(self, database_url: str | None = None):
        self.configure(database_url or getenv("DATABASE_URL", DEFAULT_DATABASE_URL))

    def configure(self, database_url: str):
        """(Re)create the engine for a database URL"""
        if self.__session is not None:
            self.__session.remove()
        if self.__engine is not None:
            self.__engine.dispose()

        kwargs = {"pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            # one connection shared by every thread, otherwise each thread
            # would see its own empty in-memory database
            if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
                kwargs = {"poolclass": StaticPool}
            kwargs["connect_args"] = {"check_same_thread": False}

        self.__engine = create_engine(database_url, **kwargs)
        # Enable SQLite foreign keys (needed for ON DELETE CASCADE)
        if self.__engine.url.get_backend_name() == "sqlite":
            @event.listens_for(self.__engine, "connect")
            def _set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
        self.__session = None
        logger.debug("Storage configured for %s", self.__engine.url.get_backend_name())

    def reload(self):
        """Create tables and start session"""
        Base.metadata.create_all(self.__engine)
        session_factory = sessionmaker(bind=self.__engine, expire_on_commit=False)
        self.__session = scoped_session(session_factory)

    def drop_all(self):
        """Drop every table (tests)"""
        if self.__session is not None:
            self.__session.remove()
        Base.metadata.drop_all(self.__engine)

    def new(self, obj):
        """Add object to session"""
        self.__session.add(obj)

    def save(self):
        """Commit session"""
        try:
            self.__session.commit()
        except SQLAlchemyError:
            self.__session.rollback()
            raise

    def rollback(self):
        self.__session.rollback()

    def get(self, cls, id):
        """Fetch one object by class and ID"""
        if cls in classes.values():
            return self.__session.get(cls, id)
        return None

    def close(self):
        """Remove session (for API teardown)"""
        if self.__session is not None:
            self.__session.remove()

    # expose the SQLAlchemy session for advanced querying (conditional updates, filters, etc.)
    def get_session(self):
        return self.__session
