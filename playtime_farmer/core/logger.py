"""Advanced logging with Loguru."""

import contextvars
import logging
import sys
from pathlib import Path
from types import FrameType
from typing import Any, Dict, Optional

from loguru import logger


# Context variable carrying the account the current task works for
account_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "account", default=None
)

__all__ = ["account_ctx", "setup_structured_logging", "InterceptHandler"]

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>[{extra[account]}]</magenta> "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def _account_patcher(record: Dict[str, Any]) -> None:
    """
    Patch log records with the account from context.

    Called by Loguru for each record. An explicit ``logger.bind(account=...)``
    wins over the context variable, so every line identifies its account.
    """
    if record["extra"].get("account") in (None, "-"):
        record["extra"]["account"] = account_ctx.get() or "-"


class InterceptHandler(logging.Handler):
    """Route standard-library log records (tenacity, asyncio) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding Loguru level if it exists
        try:
            level: Any = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame: Optional[FrameType] = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_structured_logging(
    level: str = "INFO",
    json_format: bool = True,
    logs_dir: Path = Path("logs"),
    diagnose: bool = False,
) -> None:
    """
    Setup Loguru logging with structured output.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format for the file sink (True for production)
        logs_dir: Directory receiving the rotating log files
        diagnose: Include variable values in error tracebacks (development only)
    """
    level = level.upper()

    # Remove default handler
    logger.remove()
    logger.configure(extra={"account": "-"}, patcher=_account_patcher)

    logs_dir.mkdir(parents=True, exist_ok=True)

    # Console handler - human readable, one self-identifying line per event
    logger.add(sys.stdout, format=CONSOLE_FORMAT, level=level, colorize=True, enqueue=False)

    if json_format:
        logger.add(
            logs_dir / "farmer.jsonl",
            format="{message}",
            level=level,
            rotation="10 MB",
            retention="30 days",
            compression="zip",
            serialize=True,
        )
    else:
        text_format = (
            "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | [{extra[account]}] "
            "{name}:{function}:{line} - {message}"
        )
        logger.add(
            logs_dir / "farmer.log",
            format=text_format,
            level=level,
            rotation="10 MB",
            retention="30 days",
            compression="zip",
        )

    # Error file - variable values only in development (may contain credentials)
    logger.add(
        logs_dir / "errors_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | [{extra[account]}] "
        "{name}:{function}:{line} - {message}",
        level="ERROR",
        rotation="10 MB",
        retention="90 days",
        backtrace=True,
        diagnose=diagnose,
    )

    # Intercept all standard logging
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.root.setLevel(getattr(logging, level, logging.INFO))

    logger.info(f"Logging initialized (level={level}, json={json_format})")
