# Impulz coaching backend package init
import logging
import os

# LogRecord attributes that are not caller-supplied ``extra`` fields
_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class EventFormatter(logging.Formatter):
    """``[IMPULZ][LEVEL] event key=value ...``: event-style messages with their ``extra`` fields."""

    def __init__(self) -> None:
        super().__init__("[IMPULZ][%(levelname)s] %(name)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = [f"{key}={value!r}" for key, value in vars(record).items() if key not in _RECORD_FIELDS]
        return f"{line} {' '.join(fields)}" if fields else line


def _level(env_name: str, default: int) -> int:
    name = (os.getenv(env_name) or "").strip().upper()
    value = getattr(logging, name, None) if name else None
    return value if isinstance(value, int) else default


def _configure_logging() -> None:
    logger = logging.getLogger("impulz")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(EventFormatter())
        logger.addHandler(handler)
    # uvicorn installs root handlers of its own
    logger.propagate = False
    level = _level("IMPULZ_LOG_LEVEL", logging.INFO)
    logger.setLevel(level)
    # model stream open/close lines are noisy; opt in with IMPULZ_LLM_LOG_LEVEL
    logging.getLogger("impulz.llm").setLevel(_level("IMPULZ_LLM_LOG_LEVEL", max(level, logging.WARNING)))


_configure_logging()
