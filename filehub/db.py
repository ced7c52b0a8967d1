import logging

from sqlmodel import SQLModel, create_engine
from sqlalchemy.pool import QueuePool

from filehub.config import DB_CONNECT_ARGS, DB_URL

logger = logging.getLogger("filehub.db")

engine = create_engine(
    DB_URL,
    connect_args=DB_CONNECT_ARGS,
    poolclass=QueuePool,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,  # Verify connections before use
    pool_recycle=3600,
    echo=False,
)


def init_db() -> None:
    SQLModel.metadata.create_all(engine)
    logger.info("event=db_ready url=%s", DB_URL)
