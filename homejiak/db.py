from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool

from homejiak.config import config
from homejiak.exceptions import DatabaseError


class Database:
    """Database connection manager for the HomeJiak marketplace."""

    _instance = None

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Database, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize the database connection if not already initialized."""
        if self._initialized:
            return

        self._engine = None
        self._session_factory = None
        self._session = None
        self._initialized = True

    def initialize(self, connection_string=None):
        """Initialize database connection.

        Args:
            connection_string: Optional database connection string.
                              If not provided, will use configuration.
        """
        db_config = config.database_config
        if connection_string is None:
            connection_string = db_config['url']

        if self._session is not None:
            self._session.remove()
        if self._engine is not None:
            self._engine.dispose()

        if connection_string.startswith('sqlite'):
            # Single shared connection so in-memory databases survive across sessions
            self._engine = create_engine(
                connection_string,
                echo=db_config['echo'],
                connect_args={'check_same_thread': False},
                poolclass=StaticPool
            )
        else:
            self._engine = create_engine(
                connection_string,
                echo=db_config['echo'],
                pool_size=db_config['pool_size'],
                max_overflow=db_config['max_overflow'],
                pool_timeout=db_config['pool_timeout'],
                pool_recycle=db_config['pool_recycle'],
                pool_pre_ping=True
            )

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._session = scoped_session(self._session_factory)

    def create_all_tables(self):
        """Create all tables defined in the models."""
        from homejiak.models import Base
        Base.metadata.create_all(self.engine)

    def drop_all_tables(self):
        """Drop all tables from the database."""
        from homejiak.models import Base
        Base.metadata.drop_all(self.engine)

    def test_connection(self):
        """Run a trivial query against the database."""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except Exception as e:
            raise DatabaseError(f"Database connection test failed: {str(e)}")
        return True

    @property
    def session(self):
        """Get the scoped session registry."""
        if self._session is None:
            self.initialize()
        return self._session

    @property
    def session_factory(self):
        """Get the plain session factory (one new session per call)."""
        if self._session_factory is None:
            self.initialize()
        return self._session_factory

    @property
    def engine(self):
        """Get the database engine."""
        if self._engine is None:
            self.initialize()
        return self._engine

    @contextmanager
    def session_scope(self):
        """Provide a transactional scope around a series of operations."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Global database instance
db = Database()


def get_session():
    """Get current database session."""
    return db.session()


@contextmanager
def session_scope():
    """Session scope context manager."""
    with db.session_scope() as session:
        yield session
