from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from .models import Base
from .config import DATABASE_URL

# SQLite connections are shared with the threadpool that runs sync routes
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, future=True, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine)

def init_db():
    """Create the daily metric and baseline tables if they are missing."""
    Base.metadata.create_all(bind=engine)

def get_db():
    """FastAPI dependency yielding a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def session_scope(factory=None):
    """Session for a batch run; closed on exit, callers commit per unit of work."""
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()
