import os
from dotenv import load_dotenv

load_dotenv()

# Store adapter selection: "sql", "redis" or "memory"
STORE_BACKEND = os.getenv("STORE_BACKEND", "sql").lower()
DB_URL = os.getenv("DB_URL", "sqlite:///./filehub.db")
REDIS_URL = os.getenv("REDIS_URL", "")
STORE_OWNER = os.getenv("STORE_OWNER", "local")
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

DB_CONNECT_ARGS = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}

# File catalog
FILE_PREFIX = os.getenv("FILE_PREFIX", "file:")
FILE_ID_TOKEN_LENGTH = max(4, min(32, int(os.getenv("FILE_ID_TOKEN_LENGTH", "9"))))
TIMESTAMP_FORMAT = os.getenv("TIMESTAMP_FORMAT", "%m/%d/%Y, %I:%M:%S %p")
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE_BYTES", str(10 * 1024 * 1024)))

# Transfer animation
TICK_INTERVAL_SECONDS = float(os.getenv("TICK_INTERVAL_SECONDS", "0.2"))
PROGRESS_MAX_STEP = float(os.getenv("PROGRESS_MAX_STEP", "15"))
UPLOAD_MIN_SECONDS = float(os.getenv("UPLOAD_MIN_SECONDS", "1.5"))

# Sessions
ENABLE_SESSION_REAPER = os.getenv("ENABLE_SESSION_REAPER", "true").lower() in {"true", "1", "yes"}
SESSION_IDLE_HOURS = int(os.getenv("SESSION_IDLE_HOURS", "12"))
