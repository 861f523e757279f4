import logging
import sys

_HANDLER_NAME = "trade-journal-stdout"


def setup_logging(level: int | str | None = None) -> None:
    """Send application logs to stdout; calling it again only adjusts the level."""
    if level is None:
        from app.config import get_settings

        level = get_settings().log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger()
    if not any(handler.get_name() == _HANDLER_NAME for handler in root_logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.set_name(_HANDLER_NAME)
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Per-leg skip messages are DEBUG; keep library chatter above that
    for noisy in ("sqlalchemy", "httpx", "httpcore", "multipart", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
