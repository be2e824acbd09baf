from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from services.auth.app.db.connection import settings


engine = create_engine(
    settings.AUTH_DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=3600,
    future=True,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
