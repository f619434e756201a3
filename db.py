from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from config import GROUP_DB_URL


def make_engine(url: str = GROUP_DB_URL, **kwargs):
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, **kwargs)


# Remote group store ----------------------------------------------------------
engine = make_engine(GROUP_DB_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
