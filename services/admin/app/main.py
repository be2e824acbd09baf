import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from libs.common import audit_logger
from services.admin.app.api.v1.router import router
from services.admin.app.db.repositories.audit_logs import SQLAuditLogStore
from services.admin.app.db.connection import settings

# libs/common reads these with os.getenv(); values already in the environment win
os.environ.setdefault("JWT_SECRET_KEY", settings.JWT_SECRET_KEY)
os.environ.setdefault("JWT_ALGORITHM", settings.JWT_ALGORITHM)
os.environ.setdefault("APP_URL", settings.APP_URL)
os.environ.setdefault("REDIS_URL", settings.REDIS_URL)
os.environ.setdefault("RESEND_API_KEY", settings.RESEND_API_KEY)

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    audit_logger.use_store(SQLAuditLogStore())
    yield
    await audit_logger.flush()


app = FastAPI(
    title="Admin Service",
    description="Corbez platform administration: merchant approval, moderation and audit log",
    lifespan=lifespan,
)

# CORS
# ALLOWED_ORIGINS wins when set; development falls back to the localhost list
if settings.ALLOWED_ORIGINS:
    allowed_origins = [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",") if origin.strip()]
elif settings.is_development:
    allowed_origins = [
        "http://localhost:3000",
        "http://localhost:3001",
        "http://localhost:5173",  # Vite
        "http://localhost:8000",
        "http://localhost:8004",  # Admin service
        "http://127.0.0.1:3000",
        "http://127.0.0.1:3001",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8000",
        "http://127.0.0.1:8004",
    ]
else:
    # production without ALLOWED_ORIGINS blocks every origin
    allowed_origins = []

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,  # refresh cookie
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


# health check
@app.get("/")
def read_root():
    return {"service": "Admin Service", "status": "running"}
