from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

engine = create_engine(DATABASE_URL, future=True, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


@lru_cache(maxsize=8)
def scorer_session_factory(pool_size: int) -> sessionmaker:
    """Sessions on a separate engine holding one connection per concurrent scorer call."""
    size = max(1, int(pool_size))
    scorer_engine = create_engine(DATABASE_URL, future=True, pool_pre_ping=True, pool_size=size, max_overflow=0)
    return sessionmaker(bind=scorer_engine, autoflush=False, autocommit=False, future=True)
