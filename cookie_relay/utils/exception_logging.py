"""
Utility functions for exception logging that never raise themselves.
"""

import logging


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            try:
                return f"<{type(obj).__name__} object (string conversion failed)>"
            except Exception:
                return "<object (all string conversions failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def find_exception_in_exception_groups(exception: Exception, target_type: type):
    """
    Recursively search through an exception and its sub-exceptions to find
    if any exception is of the target type.

    Returns:
        The first exception matching the target type, or None if not found
    """
    try:
        if isinstance(exception, target_type):
            return exception

        if hasattr(exception, "exceptions"):
            for sub_exc in _safe_get_exceptions(exception):
                inner_exc = find_exception_in_exception_groups(sub_exc, target_type)
                if inner_exc is not None:
                    return inner_exc

        return None
    except Exception:
        return None


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with detailed information, including sub-exceptions for exception groups.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Relay]", "[Body]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_exception_str = "None" if exception is None else _safe_str(exception)
        safe_prefix = _safe_str(prefix) if prefix is not None else ""

        sub_exceptions = []
        if exception is not None and hasattr(exception, "exceptions"):
            sub_exceptions = _safe_get_exceptions(exception)

        if sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: {safe_exception_str}",
            )
            for i, sub_exc in enumerate(sub_exceptions):
                try:
                    sub_message = f"{safe_prefix} Sub-exception {i+1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}"
                    logger.log(level, sub_message, exc_info=sub_exc)
                except Exception:
                    continue
        else:
            try:
                logger.log(
                    level,
                    f"{safe_prefix} Exception: {safe_exception_str}",
                    exc_info=exception if exception is not None else False,
                )
            except Exception:
                logger.log(level, f"{safe_prefix} Exception: {safe_exception_str}")

    except Exception:
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass


def format_exception_message(exception: Exception) -> str:
    """
    Format an exception message, including sub-exceptions for exception groups.

    Exceptions with an empty message (e.g. ``httpx.ReadTimeout()``) are
    described by their type name so the text is never blank.
    """
    try:
        if exception is None:
            return "None"

        sub_exceptions = []
        if hasattr(exception, "exceptions"):
            sub_exceptions = _safe_get_exceptions(exception)

        if sub_exceptions:
            parts = [format_exception_message(sub_exc) for sub_exc in sub_exceptions]
            return f"{_safe_str(exception)} ({'; '.join(parts)})"

        message = _safe_str(exception)
        if not message:
            return type(exception).__name__
        return message
    except Exception:
        return "<exception formatting failed>"
