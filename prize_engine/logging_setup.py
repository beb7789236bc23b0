import logging
from logging.handlers import RotatingFileHandler

from prize_engine import config


def setup_logging() -> None:
    config.LOG_DIR.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(config.LOG_LEVEL)

    fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    file_handler = RotatingFileHandler(
        config.LOG_DIR / "prize_engine.log",
        maxBytes=config.LOG_MAX_MB * 1024 * 1024,
        backupCount=config.LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(fmt)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(fmt)

    root.addHandler(file_handler)
    root.addHandler(stream_handler)

    # Per-request access lines are noisy; keep warnings/errors.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
