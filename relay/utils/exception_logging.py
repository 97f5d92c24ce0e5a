"""
Exception logging helpers that understand exception groups.

The MCP transports run inside anyio task groups, so a dropped backend
usually surfaces as an ExceptionGroup wrapping the real transport error.
"""

import logging
from typing import Optional, Tuple, Type, Union

ExceptionTypes = Union[Type[BaseException], Tuple[Type[BaseException], ...]]


def _safe_str(obj) -> str:
    """
    Convert an object to string without ever raising.

    Args:
        obj: The object to convert

    Returns:
        str(obj), repr(obj) or a placeholder naming the type
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def find_exception_in_exception_groups(
    exception: Optional[BaseException], target_type: ExceptionTypes
) -> Optional[BaseException]:
    """
    Recursively search an exception and its sub-exceptions for one of the
    target type(s).

    Args:
        exception: The exception to search through
        target_type: An exception class or a tuple of classes

    Returns:
        The first matching exception (depth first), or None
    """
    if exception is None:
        return None
    try:
        if isinstance(exception, target_type):
            return exception
    except TypeError:
        return None
    for sub_exc in _sub_exceptions(exception):
        found = find_exception_in_exception_groups(sub_exc, target_type)
        if found is not None:
            return found
    return None


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Optional[BaseException],
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, including each sub-exception of an exception group.
    Never raises, even for broken exception objects or failing loggers.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g. "[Supervisor]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        message = "None" if exception is None else _safe_str(exception)
        sub_exceptions = _sub_exceptions(exception)

        if not sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception: {message}",
                exc_info=exception if exception is not None else False,
            )
            return

        logger.log(
            level,
            f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: {message}",
        )
        for i, sub_exc in enumerate(sub_exceptions):
            try:
                logger.log(
                    level,
                    f"{safe_prefix} Sub-exception {i + 1}: "
                    f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                    exc_info=sub_exc,
                )
            except Exception:
                continue
    except Exception:
        try:
            logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass


def format_exception_message(exception: Optional[BaseException]) -> str:
    """
    Format an exception for an API response, listing sub-exceptions of an
    exception group. Never raises.
    """
    try:
        if exception is None:
            return "None"
        main = _safe_str(exception)
        sub_exceptions = _sub_exceptions(exception)
        if not sub_exceptions:
            return main or type(exception).__name__
        parts = [f"{type(e).__name__}: {_safe_str(e)}" for e in sub_exceptions]
        return f"{main} (Sub-exceptions: {'; '.join(parts)})"
    except Exception:
        return "<exception (formatting failed)>"
