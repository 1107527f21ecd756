# lab_inventory/core/config.py
import os
import sys # Import sys untuk stderr
from dotenv import load_dotenv
from loguru import logger # Import logger Loguru
import logging
from pathlib import Path # Import Path

# --- Muat file .env JIKA ADA ---
project_root = Path(__file__).resolve().parent.parent.parent
dotenv_path = project_root / '.env'
if dotenv_path.is_file():
    logger.info(f"Loading environment variables from: {dotenv_path}")
    load_dotenv(dotenv_path=dotenv_path, override=False)
else:
    logger.debug(f".env file not found at {dotenv_path}. Relying on system environment variables.")

# --- Intercept Handler (untuk Loguru menangkap log standar) ---
class InterceptHandler(logging.Handler):
    """Handler untuk mencegat log standar Python dan mengarahkannya ke Loguru."""
    def emit(self, record: logging.LogRecord) -> None:
        try: level = logger.level(record.levelname).name
        except ValueError: level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())

# --- Fungsi Setup Logging ---
def setup_logging():
    """Konfigurasi Loguru untuk aplikasi."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    log_file_path = Path(os.getenv("LOG_FILE_PATH", "logs/lab_inventory_{time:YYYY-MM-DD}.log"))
    log_rotation = os.getenv("LOG_ROTATION", "1 day")
    log_retention = os.getenv("LOG_RETENTION", "7 days")
    log_serialize = os.getenv("LOG_SERIALIZE", "False").lower() == 'true'

    logger.remove() # Hapus handler default

    # Handler Console
    logger.add(sys.stderr, level=log_level_name, format=log_format, colorize=True)

    # Handler File
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file_path,
            level=log_level_name,
            format=log_format,
            rotation=log_rotation,
            retention=log_retention,
            serialize=log_serialize,
            enqueue=True,
            backtrace=True,
            diagnose=False,
            encoding="utf-8"
        )
        logger.info(f"File logging enabled at: {log_file_path}")
    except OSError as e:
        logger.error(f"Failed to setup file logging at {log_file_path}: {e}")

    # --- Intercept Log Standar ---
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(("uvicorn", "fastapi", "starlette", "apscheduler")):
            existing_logger = logging.getLogger(name)
            existing_logger.handlers = [InterceptHandler()]
            existing_logger.propagate = False # Hindari duplikasi

    logger.info(f"Loguru logging setup complete. Level: {log_level_name}")


# --- Helper baca env ---
def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}. Using default: {default}.")
        return default

def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}. Using default: {default}.")
        return default

def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# --- JWT Configuration (hanya verifikasi token dari identity provider) ---
SECRET_KEY: str = os.getenv("SECRET_KEY", "")
if not SECRET_KEY:
    logger.critical("SECRET_KEY environment variable is not set. All bearer tokens will be rejected.")
ALGORITHM: str = os.getenv("ALGORITHM", "HS256")

# --- Database Configuration ---
MONGODB_URL: str = os.getenv("MONGODB_URL", "mongodb://localhost:27017/lab_inventory")

_default_db_name = "lab_inventory"
_path_part = MONGODB_URL.rsplit('/', 1)[-1].split('?')[0]
if _path_part and "://" in MONGODB_URL and MONGODB_URL.count('/') >= 3:
    _default_db_name = _path_part
DATABASE_NAME: str = os.getenv("DATABASE_NAME", _default_db_name)

# --- Waktu lokal (WIB) ---
LOCAL_UTC_OFFSET_HOURS: int = _env_int("LOCAL_UTC_OFFSET_HOURS", 7)

# --- Scheduler ---
SCHEDULER_ENABLED: bool = _env_bool("SCHEDULER_ENABLED", True)
SCHEDULER_INTERVAL_HOURS: float = _env_float("SCHEDULER_INTERVAL_HOURS", 24)
SCHEDULER_SHUTDOWN_GRACE_SECONDS: float = _env_float("SCHEDULER_SHUTDOWN_GRACE_SECONDS", 30)

# --- Email ---
MAIL_HOST: str = os.getenv("MAIL_HOST", "")
MAIL_PORT: int = _env_int("MAIL_PORT", 587)
MAIL_USERNAME: str = os.getenv("MAIL_USERNAME", "")
MAIL_PASSWORD: str = os.getenv("MAIL_PASSWORD", "")
MAIL_USE_TLS: bool = _env_bool("MAIL_USE_TLS", True)
MAIL_FROM: str = os.getenv("MAIL_FROM", MAIL_USERNAME)
ADMIN_EMAIL: str = os.getenv("ADMIN_EMAIL", "")
LAB_NAME: str = os.getenv("LAB_NAME", "Laboratorium RPL")
NOTIFY_TIMEOUT_SECONDS: float = _env_float("NOTIFY_TIMEOUT_SECONDS", 10)
NOTIFY_MAX_CONCURRENCY: int = _env_int("NOTIFY_MAX_CONCURRENCY", 4)

# --- Rate limit ---
RATE_LIMIT_ENABLED: bool = _env_bool("RATE_LIMIT_ENABLED", True)
BORROW_CREATE_RATE_LIMIT: str = os.getenv("BORROW_CREATE_RATE_LIMIT", "10/hour")

# --- Log Konfigurasi yang Dimuat ---
logger.info(f"JWT Algorithm: {ALGORITHM}")
logger.info(f"Database Name: {DATABASE_NAME}")
logger.info(f"Scheduler: enabled={SCHEDULER_ENABLED}, interval={SCHEDULER_INTERVAL_HOURS}h")
