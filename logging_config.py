# logging_config.py
import logging
import os
from logging.handlers import RotatingFileHandler
from dotenv import load_dotenv

load_dotenv()
# Use an environment variable for the log file, with a default
LOG_FILE = os.environ.get("LOG_FILE_PATH", "/tmp/ecomission_app.log")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# HTTP client libraries used by the judge providers log every request at INFO.
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "google_genai")


def setup_logging(log_file=None, level=None):
    """Configures a rotating file logger for the API process and the Celery worker."""
    logger = logging.getLogger()

    # Avoid adding handlers multiple times
    if any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        return

    logger.setLevel(level or LOG_LEVEL)

    # 10MB per file, keep last 5 files
    handler = RotatingFileHandler(log_file or LOG_FILE, maxBytes=10*1024*1024, backupCount=5)
    handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
