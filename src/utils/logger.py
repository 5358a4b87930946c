import sys
from typing import Literal, Optional, TextIO

from loguru import logger

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Every bound logger lives under this namespace
BASE_LOGGER_NAMESPACE = "agent_core"

_CONSOLE_FORMAT = "<level>{level: <8}</level> | <cyan>{extra[module]}</cyan> | {message}"

_handler_ids: list[int] = []


def get_logger(name: str) -> "logger":
    """
    Returns the global loguru logger bound to `agent_core.<name>`.

    Example: get_logger("ToolClientManager") → module="agent_core.ToolClientManager"
    """
    return logger.bind(module=f"{BASE_LOGGER_NAMESPACE}.{name}")


def _console_filter(record) -> bool:
    # Audit records go to their own JSONL sink (see agentcore/utils/audit.py)
    return not record["extra"].get("audit")


def configure_logging(level: LogLevel = "INFO", sink: Optional[TextIO] = None, force: bool = False) -> None:
    """
    Install the console sink for the whole process.

    The CLI entry point and Agent both call this; only the first call takes
    effect unless `force` is set, which replaces the sink (e.g. to change the
    level after startup).

    Args:
        level: Minimum level written to the console.
        sink: Stream to write to, stderr by default.
        force: Replace an existing console sink.
    """
    if _handler_ids and not force:
        return

    if _handler_ids:
        for handler_id in _handler_ids:
            logger.remove(handler_id)
        _handler_ids.clear()
    else:
        logger.remove()

    # Records logged without get_logger() still need a module column
    logger.configure(extra={"module": BASE_LOGGER_NAMESPACE})
    _handler_ids.append(
        logger.add(
            sink or sys.stderr,
            format=_CONSOLE_FORMAT,
            level=level,
            colorize=sink is None,
            filter=_console_filter,
        )
    )
