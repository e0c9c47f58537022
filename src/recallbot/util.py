import datetime
import time


def get_timestamp(as_int: bool = False) -> str | int:
    """Get the current time.

    Parameters
    ----------
    as_int : bool, optional
        If True, return integer milliseconds since the epoch. Otherwise
        return a compact, human-readable local timestamp.

    Returns
    -------
    str | int
    """
    if as_int:
        return time.time_ns() // 1_000_000
    else:
        return datetime.datetime.now().strftime("%Y%m%d_%H%M%S_%f")[:-3]


def timestamp_to_iso(timestamp_ms: int) -> str:
    """Convert epoch milliseconds to an ISO-8601 UTC string, e.g.
    ``2024-01-02T03:04:05.678Z``.
    """
    moment = datetime.datetime.fromtimestamp(timestamp_ms / 1000, tz=datetime.timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def shorten(text: str, length: int = 50) -> str:
    if len(text) <= length:
        return text
    return text[:length] + "..."
