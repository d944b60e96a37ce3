"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from resonance.config import settings

LOG_DIR = Path("logs")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

# Framework and network libraries that log through stdlib logging
NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "httpx",
    "httpcore",
    "openai._base_client",
    "asyncpg",
    "asyncio",
)


def configure_logging(level: str, noisy_level: str, log_dir: Path = LOG_DIR) -> None:
    """Console sink plus a daily rotating file sink."""
    log_dir.mkdir(exist_ok=True)
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level.upper(), colorize=True)
    logger.add(
        log_dir / "resonance_{time:YYYY-MM-DD}.log",
        format=FILE_FORMAT,
        level="DEBUG",
        rotation="00:00",
        retention="7 days",
        compression="zip",
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level.upper())


configure_logging(settings.app_log_level, settings.noisy_log_level)


def _emit(kind: str, level: str, payload: dict[str, Any]) -> None:
    record = {"timestamp": datetime.now(timezone.utc).isoformat(), **payload}
    logger.opt(depth=2).log(level, f"{kind}: {record}")


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log one text generation call with token usage."""
    _emit(
        "LLM_CALL_FAILED" if error else "LLM_CALL",
        "ERROR" if error else "INFO",
        {
            "model": model,
            "caller": caller,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "duration_ms": duration_ms,
            "status": status,
            "error": error,
        },
    )


def log_stage(task_id: str, stage: str, status: str, data: Optional[dict] = None) -> None:
    """Log a research stage transition (started, completed, degraded, failed)."""
    _emit(
        "RESEARCH_STAGE",
        "WARNING" if status in ("failed", "degraded") else "INFO",
        {"task_id": task_id, "stage": stage, "status": status, "data": data},
    )


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    _emit(
        "DB_OPERATION_FAILED" if error else "DB_OPERATION",
        "ERROR" if error else "DEBUG",
        {"operation": operation, "table": table, "status": status, "details": details, "error": error},
    )


def log_event(event_type: str, message: str, **kwargs: Any) -> None:
    _emit("EVENT", "INFO", {"event_type": event_type, "message": message, **kwargs})
