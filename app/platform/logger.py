import logging
import os
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

log_dir = os.path.join(os.getcwd(), "logs")
os.makedirs(log_dir, exist_ok=True)

log_file_path = os.path.join(log_dir, "a11y_pipeline.log")


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """
    Logger writing to the console and to the rotating pipeline log file.

    Handlers are attached once per name, so module level calls are cheap.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(log_file_path, maxBytes=10_000_000, backupCount=5)
    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger


class JobLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the job's subject id, e.g. ``[scan-1] Sent``."""

    def process(self, msg, kwargs):
        return f"[{self.extra['job_id']}] {msg}", kwargs


def job_logger(logger: logging.Logger, job_id: str) -> JobLoggerAdapter:
    return JobLoggerAdapter(logger, {"job_id": job_id})
