"""
Utility functions for logging forwarding and reload failures with their full
cause chain. httpx maps low level transport errors to its own exception types
and keeps the original one as ``__cause__``, which is usually the interesting
part for an operator (the errno, the DNS failure, ...).
"""

import logging

# Guards against cyclic __cause__/__context__ links
MAX_CHAIN_DEPTH = 8


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.

    Args:
        obj: The object to convert to string

    Returns:
        A string representation of the object, falling back to safe alternatives
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


def _describe(exception: BaseException) -> str:
    text = _safe_str(exception)
    name = type(exception).__name__
    return f"{name}: {text}" if text else name


def exception_chain(exception: BaseException) -> list:
    """
    Return the exception followed by its causes, outermost first.

    Explicit causes (``raise ... from``) win over implicit context. The walk
    stops on cycles and after MAX_CHAIN_DEPTH entries.
    """
    chain = []
    seen = set()
    current = exception
    while current is not None and id(current) not in seen and len(chain) < MAX_CHAIN_DEPTH:
        chain.append(current)
        seen.add(id(current))
        try:
            current = current.__cause__ or (
                None if current.__suppress_context__ else current.__context__
            )
        except Exception:
            break
    return chain


def format_exception_message(exception: BaseException) -> str:
    """
    Format an exception and its causes as a single line. Exception groups
    list their members. Never raises.

    Args:
        exception: The exception to format

    Returns:
        A formatted string describing the exception
    """
    try:
        if exception is None:
            return "None"

        parts = []
        for exc in exception_chain(exception):
            sub_exceptions = _safe_get_exceptions(exc)
            if sub_exceptions:
                members = "; ".join(_describe(sub) for sub in sub_exceptions)
                parts.append(f"{_describe(exc)} (Sub-exceptions: {members})")
            else:
                parts.append(_describe(exc))
        return " <- ".join(parts)
    except Exception:
        try:
            return f"<{type(exception).__name__} (formatting failed)>"
        except Exception:
            return "<exception (all formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
    include_traceback: bool = False,
) -> None:
    """
    Log an exception with its cause chain on a single record.
    This function never throws, even for broken exception objects or logger failures.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Forward]", "[Reload]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
        include_traceback: Attach the traceback (debug mode only)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        message = f"{safe_prefix} {format_exception_message(exception)}".strip()
        try:
            logger.log(
                level,
                message,
                exc_info=exception if include_traceback and exception is not None else False,
            )
        except Exception:
            logger.log(level, message)
    except Exception:
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass
