"""Database configuration and initialization."""
import uuid
from datetime import datetime, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def new_id() -> str:
    """Opaque identifier for sales, lines, payments and products."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine_options = {
        'echo': app.config.get('SQLALCHEMY_ECHO', False),
        'pool_pre_ping': True,  # Enable connection health checks
    }
    if database_uri.startswith('sqlite'):
        # Sessions live on different threads (scoped per request/worker)
        engine_options['connect_args'] = {'check_same_thread': False}
    else:
        engine_options['pool_size'] = app.config.get('SQLALCHEMY_POOL_SIZE', 10)
        engine_options['max_overflow'] = app.config.get('SQLALCHEMY_MAX_OVERFLOW', 20)

    engine = create_engine(database_uri, **engine_options)

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_tables():
    """Create all tables for the registered models."""
    import app.models  # noqa: F401 - registers mappers on Base.metadata
    Base.metadata.create_all(bind=engine)


def get_engine():
    """Get the current engine."""
    return engine


def get_session():
    """Get database session."""
    return db_session
