from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from agent_directory.config import DATABASE_URL

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db(bind=None) -> None:
    # Registers the tables on Base before creating them
    from agent_directory import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
