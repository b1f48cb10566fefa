import logging
import re

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

from proxyhop.utils.request_id import get_execution_id
from proxyhop.utils.security import mask_secrets

custom_theme = Theme(
    {
        "info": "dim cyan",
        "warning": "magenta",
        "error": "bold red",
        "proxy": "bold yellow",
        "node": "bold blue",
        "page": "bold green",
    }
)

console = Console(theme=custom_theme, stderr=True)


class CompactFilter(logging.Filter):
    """Shortens UUIDs and floats, masks credentials and prefixes the execution ID."""

    UUID_PATTERN = re.compile(
        r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.I
    )
    FLOAT_PATTERN = re.compile(r"(\d+\.\d{4,})")

    def filter(self, record):
        if not isinstance(record.msg, str):
            return True

        msg = record.getMessage()
        msg = msg.replace("proxyhop.engine.runtime.", "runtime.")
        msg = msg.replace("proxyhop.engine.", "engine.")

        # Credentials must never reach the console
        msg = mask_secrets(msg)

        # Shorten UUIDs before adding our own prefix
        msg = self.UUID_PATTERN.sub(lambda m: f"{m.group(0)[:4]}..", msg)
        msg = self.FLOAT_PATTERN.sub(lambda m: f"{float(m.group(0)):.3f}", msg)

        execution_id = get_execution_id()
        if execution_id:
            msg = f"[{execution_id[:8]}] {msg}"

        record.msg = msg
        record.args = None
        return True


def setup_global_logger(log_level: str = "INFO"):
    """
    Configures the proxyhop logger using Rich for readable console output.
    """
    logger = logging.getLogger("proxyhop")

    level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(level)

    # Avoid duplicate handlers
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        rich_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            markup=False,
            show_path=False,
            show_time=True,
            omit_repeated_times=True,
            keywords=["proxy", "page", "node", "redirect", "timeout"],
        )
        rich_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        rich_handler.addFilter(CompactFilter())
        logger.addHandler(rich_handler)

    return logger


logger = logging.getLogger("proxyhop")
