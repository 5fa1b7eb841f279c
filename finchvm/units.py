"""Human-readable byte sizes."""

from __future__ import annotations

_BINARY_ABBRS = ("B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB", "ZiB", "YiB")

_DECIMAL_MULTIPLIERS = {
    "k": 1000,
    "m": 1000**2,
    "g": 1000**3,
    "t": 1000**4,
    "p": 1000**5,
}

_NUMBER_CHARS = "0123456789. "


def bytes_size(size: float) -> str:
    """Format a byte count with binary units, e.g. ``3GiB``, using four significant digits."""
    value = float(size)
    unit = 0
    while value >= 1024.0 and unit < len(_BINARY_ABBRS) - 1:
        value /= 1024.0
        unit += 1
    return "%.4g%s" % (value, _BINARY_ABBRS[unit])


def from_human_size(text: str) -> int:
    """Parse a size such as ``4GiB`` or ``10 MB`` into bytes, using decimal (1000) multipliers.

    Raises ValueError for an invalid number or suffix.
    """
    sep = max((text.rfind(ch) for ch in _NUMBER_CHARS), default=-1)
    if sep == -1:
        raise ValueError(f"invalid size: '{text}'")
    if text[sep] != " ":
        num, suffix = text[: sep + 1], text[sep + 1 :]
    else:
        num, suffix = text[:sep], text[sep + 1 :]

    if not num or "_" in num or num.strip() != num:
        raise ValueError(f"invalid size: '{text}'")
    try:
        size = float(num)
    except ValueError as exc:
        raise ValueError(f"invalid size: '{text}'") from exc
    if size != size or size < 0:
        raise ValueError(f"invalid size: '{text}'")

    if not suffix:
        return int(size)
    if len(suffix) > 3:
        raise ValueError(f"invalid suffix: '{suffix}'")
    suffix = suffix.lower()
    if suffix[0] == "b":
        if len(suffix) > 1:
            raise ValueError(f"invalid suffix: '{suffix}'")
        return int(size)
    multiplier = _DECIMAL_MULTIPLIERS.get(suffix[0])
    if multiplier is None:
        raise ValueError(f"invalid suffix: '{suffix}'")
    if (len(suffix) == 2 and suffix[1] != "b") or (len(suffix) == 3 and suffix[1:] != "ib"):
        raise ValueError(f"invalid suffix: '{suffix}'")
    return int(size * multiplier)