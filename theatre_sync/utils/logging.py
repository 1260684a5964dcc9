from __future__ import annotations

import logging
import time

_LAST: dict[str, float] = {}
_MAX_CODES = 256


def warn_once(logger: logging.Logger, code: str, message: str, *args: object, window: float = 60) -> bool:
    """Log a warning for ``code`` at most once per ``window`` seconds.

    Connectivity loss produces a burst of identical failures; only the first
    one in each window is logged at warning level, the rest at debug.
    Returns ``True`` when the warning was emitted.
    """
    now = time.monotonic()
    last = _LAST.get(code)
    if last is not None and now - last <= window:
        logger.debug("%s: " + message, code, *args)
        return False
    if len(_LAST) >= _MAX_CODES:
        oldest = min(_LAST, key=_LAST.get)
        _LAST.pop(oldest, None)
    _LAST[code] = now
    logger.warning("%s: " + message, code, *args)
    return True


def reset_warnings() -> None:
    _LAST.clear()
