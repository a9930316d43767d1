"""Utility functions."""


def format_bytes(num_bytes: int) -> str:
    """Human readable size, e.g. ``5242880 -> '5 MB'``."""
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    value = round(value, 2)
    if value == int(value):
        return f"{int(value)} {units[i]}"
    return f"{value} {units[i]}"


def format_timestamp(seconds: float) -> str:
    """Format seconds as ``HH:MM:SS.cc``."""
    centis = int(round(max(0.0, seconds) * 100))
    hours, rem = divmod(centis, 360000)
    minutes, rem = divmod(rem, 6000)
    secs, centis = divmod(rem, 100)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{centis:02d}"
