import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from filehub.api.routes import router, sessions
from filehub.cleaner import start_session_reaper
from filehub.config import CORS_ORIGINS, ENABLE_SESSION_REAPER, SESSION_IDLE_HOURS, STORE_BACKEND
from filehub.core.exceptions import register_exception_handlers

app = FastAPI(title="File Transfer Hub API", version="1.0.0")

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("filehub")

origins = [origin.strip() for origin in CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info("Using %s store backend.", STORE_BACKEND)

app.include_router(router)
register_exception_handlers(app)

if ENABLE_SESSION_REAPER:
    start_session_reaper(sessions, SESSION_IDLE_HOURS, logger)
