"""
Unified logging facade for PicNexus.

One call works from the CLI, worker threads and library code:

    from picnexus.utils.logger import log

    log("Simple message")                              # INFO level, general category
    log("Write failed", level="error")                 # ERROR level
    log("Cookie refreshed", category="auth")           # INFO level, auth category
    log("[uploads] File uploaded")                     # category from the [tag]
    log("Backoff 2.1s", level="debug", category="retry")

Levels: TRACE (5, never written to file), DEBUG, INFO, WARNING, ERROR, CRITICAL.

Messages go to the rotating file log (see picnexus.utils.logging), to any
registered sinks (the CLI registers one that writes through tqdm), and to
the console: warnings and errors on stderr, info on stdout unless quiet
mode is on or a sink has taken over console output.
"""

from __future__ import annotations
import threading
import logging
import sys
from typing import Optional, Callable, List
from datetime import datetime

# Thread safety
_lock = threading.Lock()

# Extra sinks: callables receiving (formatted_message, level_name, category)
_sinks: List[Callable[[str, str, str], None]] = []

# Lazy holder for AppLogger
_app_logger = None

# When True, info/debug messages are not printed to stdout
_quiet = False

# Debug mode flag - when True, print everything to console
_debug_mode = '--debug' in sys.argv

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LEVEL_MAP = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def timestamp() -> str:
    """Return current timestamp in HH:MM:SS format."""
    return datetime.now().strftime("%H:%M:%S")


def set_quiet(quiet: bool) -> None:
    """Suppress info/debug console output (file logging is unaffected)."""
    global _quiet
    with _lock:
        _quiet = quiet


def set_debug(enabled: bool) -> None:
    global _debug_mode
    with _lock:
        _debug_mode = enabled


def register_sink(sink: Callable[[str, str, str], None]) -> None:
    """Register a callable that receives every formatted message.

    While at least one sink is registered, plain console printing of
    info/debug messages is left to the sinks.
    """
    with _lock:
        if sink not in _sinks:
            _sinks.append(sink)


def unregister_sink(sink: Callable[[str, str, str], None]) -> None:
    with _lock:
        if sink in _sinks:
            _sinks.remove(sink)


def _get_app_logger():
    """Get the AppLogger singleton lazily to avoid circular imports."""
    global _app_logger
    if _app_logger is None:
        from picnexus.utils.logging import get_logger
        _app_logger = get_logger()
    return _app_logger


def _detect_category_from_message(message: str) -> tuple[str, str]:
    """Split a leading [category] tag off the message.

    Returns:
        Tuple of (category, cleaned_message)
    """
    if message.startswith("[") and "]" in message:
        close_idx = message.find("]")
        tag = message[1:close_idx]
        category = tag.split(":", 1)[0] or "general"
        return category, message[close_idx + 1:].lstrip()
    return "general", message


def _format(message: str, level: str, category: str) -> str:
    prefix = "" if level == "info" else f"{level.upper()}: "
    tag = "" if category == "general" else f"[{category}] "
    return f"{timestamp()} {prefix}{tag}{message}"


def log(message: str,
        level: Optional[str] = None,
        category: Optional[str] = None) -> None:
    """
    Universal logging function.

    Args:
        message: The log message to output
        level: trace/debug/info/warning/error/critical (default info)
               NOTE: 'trace' level is never written to log files
        category: store/uploads/queue/retry/sync/auth/network/general.
                  If None, detected from a leading [tag] or 'general'
    """
    level = (level or "info").lower()
    if level not in LEVEL_MAP:
        level = "info"
    if level == "warn":
        level = "warning"
    log_level = LEVEL_MAP[level]

    if category is None:
        category, message = _detect_category_from_message(message)
    else:
        category = category.split(":", 1)[0]

    formatted_message = _format(message, level, category)

    with _lock:
        sinks = list(_sinks)
        quiet = _quiet
        debug_mode = _debug_mode

    # 1. File log (never for trace)
    if log_level > TRACE:
        try:
            app_logger = _get_app_logger()
            if app_logger.should_emit_file(category, log_level):
                app_logger.log_to_file(formatted_message, log_level, category)
        except Exception:
            # File logging problems must not break uploads
            pass

    # 2. Registered sinks
    for sink in sinks:
        try:
            sink(formatted_message, level, category)
        except Exception:
            unregister_sink(sink)

    # 3. Console
    if debug_mode:
        print(formatted_message, file=sys.stderr if log_level >= logging.WARNING else sys.stdout, flush=True)
    elif log_level >= logging.WARNING:
        if not sinks:
            print(formatted_message, file=sys.stderr, flush=True)
    elif not sinks and not quiet and log_level >= logging.INFO:
        print(formatted_message, flush=True)


def install_exception_hook() -> None:
    """
    Install global exception hook so unhandled exceptions are always visible.
    Call this early in application startup.
    """
    original_hook = sys.excepthook

    def exception_handler(exc_type, exc_value, exc_traceback):
        import traceback

        error_msg = ''.join(traceback.format_exception(exc_type, exc_value, exc_traceback))

        print(f"\n{'='*70}", file=sys.stderr, flush=True)
        print("UNHANDLED EXCEPTION:", file=sys.stderr, flush=True)
        print(error_msg, file=sys.stderr, flush=True)
        print(f"{'='*70}\n", file=sys.stderr, flush=True)

        try:
            log(f"Unhandled exception: {exc_type.__name__}: {exc_value}", level="critical", category="general")
        except Exception:
            pass

        original_hook(exc_type, exc_value, exc_traceback)

    sys.excepthook = exception_handler
