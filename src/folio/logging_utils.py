from __future__ import annotations

from rich.console import Console

_DEBUG_LOG = False
_CONSOLE: Console | None = None


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_enabled() -> bool:
    return _DEBUG_LOG


def _stderr_console() -> Console:
    global _CONSOLE
    if _CONSOLE is None:
        _CONSOLE = Console(stderr=True, highlight=False)
    return _CONSOLE


def debug_log(message: str) -> None:
    """Print a ``[folio debug]`` line to stderr when debug logging is on."""
    if _DEBUG_LOG:
        _stderr_console().print(f"[folio debug] {message}", markup=False)


__all__ = ["debug_enabled", "debug_log", "set_debug_logging"]
