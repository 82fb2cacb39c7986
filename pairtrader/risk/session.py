"""Session filter — pure function, checks if a UTC time of day is within the trading window."""

from datetime import time


def is_in_session(now: time, session_start: time, session_end: time) -> bool:
    """Return True if *now* falls within ``[session_start, session_end]``.

    Both bounds are inclusive.  A window whose end precedes its start wraps
    midnight, e.g. 22:00–02:00.
    """
    if session_start <= session_end:
        return session_start <= now <= session_end
    return now >= session_start or now <= session_end
