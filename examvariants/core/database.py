from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from examvariants.core.config import settings

_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, future=True, pool_pre_ping=True,
                       echo=settings.DATABASE_ECHO, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None):
    """Create tables if they don't exist."""
    from examvariants.models.orm import Base
    Base.metadata.create_all(bind=bind or engine)
