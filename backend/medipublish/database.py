# medipublish/database.py

from sqlalchemy import BigInteger, Integer, create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.orm import Session
from medipublish.config import settings

# Postgres connection URL
DATABASE_URL = settings.database_url

# SQLAlchemy engine
engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    future=True
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()

# BIGINT on Postgres, INTEGER PRIMARY KEY (rowid alias) on SQLite
BigIntId = BigInteger().with_variant(Integer, "sqlite")


def init_db(bind=None) -> None:
    """Create all tables that don't exist yet."""
    # Models register themselves on Base.metadata when imported
    from medipublish.models import activity, attempt, audit, completion, export, requirement  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


# Dependency for FastAPI routes
def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
