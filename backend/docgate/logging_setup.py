import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "docgate"


def setup_logging(level: str = "INFO", log_dir: str = "logs") -> logging.Logger:
    """Configure the package logger: rotating file plus stderr. Safe to call twice."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if logger.handlers:
        return logger

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(path / "app.log", maxBytes=2*1024*1024, backupCount=3, encoding="utf-8")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
