"""Database configuration and initialization."""
from sqlalchemy import create_engine, event, BigInteger, Integer
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base

# Create SQLAlchemy base
Base = declarative_base()

# BIGINT ids on PostgreSQL, INTEGER rowid alias on SQLite (autoincrement)
BigIntId = BigInteger().with_variant(Integer(), 'sqlite')

# Global session and engine
engine = None
db_session = None


def build_engine(database_uri: str, echo: bool = False):
    """Create an engine with pool settings suited to the backend."""
    if database_uri.startswith('sqlite'):
        # SQLite: connections may move between threads, wait on writer locks
        sqlite_engine = create_engine(
            database_uri,
            echo=echo,
            connect_args={'check_same_thread': False, 'timeout': 30}
        )

        @event.listens_for(sqlite_engine, 'connect')
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            # pysqlite's implicit BEGIN breaks SAVEPOINT (begin_nested)
            dbapi_connection.isolation_level = None

        @event.listens_for(sqlite_engine, 'begin')
        def _begin_immediate(conn):
            # No row locks on SQLite: take the write lock up front
            conn.exec_driver_sql('BEGIN IMMEDIATE')

        return sqlite_engine

    return create_engine(
        database_uri,
        echo=echo,
        pool_pre_ping=True,  # Enable connection health checks
        pool_size=10,
        max_overflow=20
    )


def init_engine(database_uri: str, echo: bool = False):
    """Bind the global engine and scoped session to a database."""
    global engine, db_session

    if db_session is not None:
        db_session.remove()
    if engine is not None:
        engine.dispose()

    engine = build_engine(database_uri, echo=echo)
    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )
    Base.query = db_session.query_property()
    return engine


def init_db(app):
    """Initialize database connection."""
    init_engine(
        app.config['SQLALCHEMY_DATABASE_URI'],
        echo=app.config.get('SQLALCHEMY_ECHO', False)
    )

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create every table known to the models package."""
    import quotedesk.models  # noqa: F401  (registers mappers)
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop every table known to the models package."""
    import quotedesk.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


def get_engine():
    """Get the current engine."""
    return engine
