"""Rich console logging for the API process"""

import logging
import re

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings

DATE_FORMAT = "[%Y-%m-%d %H:%M:%S]"

# Loggers that are too chatty at INFO
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")

_SECRET = re.compile(r"(?i)(bearer\s+|(?:access|refresh)_token=|code=)[^\s&\"']+")


class RedactSecrets(logging.Filter):
    """Mask bearer tokens and OAuth codes that end up in log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _SECRET.sub(r"\1***", message)
        if redacted != message:
            record.msg, record.args = redacted, None
        return True


def setup_logging(settings: Settings) -> None:
    handler = RichHandler(
        # Containers have no TTY; keep colors off there
        console=Console(force_terminal=not settings.is_production, width=120),
        show_path=False,
        markup=False,
        rich_tracebacks=True,
        tracebacks_width=120,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt=DATE_FORMAT))
    handler.addFilter(RedactSecrets())

    # uvicorn installs its own root handler before we run
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        handlers=[handler],
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging: {settings.log_level} | Env: {settings.environment}"
    )
