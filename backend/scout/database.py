"""
Shared database engine, session factory, and declarative base.
Imported by models and service modules to avoid circular dependencies.
DATABASE_URL comes from scout.config, which loads .env first.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from scout.config import get_settings

DATABASE_URL = get_settings().database_url
if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable not set")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
