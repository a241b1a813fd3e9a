import logging
import sys
from pythonjsonlogger import jsonlogger

def setup_logging(level: int = logging.INFO):
    """
    Configures centralized JSON logging for the archive pipelines.
    Keeps application loggers at INFO and quiets storage/transport libraries.
    """
    # 1. Get the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # 2. Prevent duplicate logs by removing existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # 3. StreamHandler for stdout so container runtimes pick the logs up
    log_handler = logging.StreamHandler(sys.stdout)

    # 4. Define JSON Format
    formatter = jsonlogger.JsonFormatter(
        fmt='%(asctime)s %(levelname)s %(name)s %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%SZ'
    )
    log_handler.setFormatter(formatter)
    root_logger.addHandler(log_handler)

    # 5. Library-Specific Verbosity Management
    logging.getLogger("services").setLevel(level)
    logging.getLogger("core").setLevel(level)

    # Boto3/Botocore log every signed request at INFO
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("s3transfer").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    root_logger.info("Logging infrastructure initialized successfully.")
