"""General utility functions."""

from __future__ import annotations

import math
from datetime import timedelta

__all__ = ["format_duration"]


def format_duration(duration: timedelta) -> str:
    """Format a duration for display, rounded to the nearest second.

    The format is the compact one used by Go's ``time.Duration``, such as
    ``1h2m3s``, ``4m0s``, or ``12s``.

    Parameters
    ----------
    duration
        Duration to format.

    Returns
    -------
    str
        Formatted duration.
    """
    total = duration.total_seconds()
    seconds = math.floor(abs(total) + 0.5)
    sign = "-" if total < 0 and seconds else ""
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}s"
    elif minutes:
        return f"{sign}{minutes}m{seconds}s"
    else:
        return f"{sign}{seconds}s"
