from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from services.coupon.app.db.connection import settings


engine = create_engine(
    settings.COUPON_DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=3600,
    future=True,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
