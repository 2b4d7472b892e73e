"""
Durations as written in configuration and shown in log records.

The grace period and the quiet interval accept plain seconds or compact
strings made of value/unit pairs; elapsed times in log fields use the same
notation.

    >>> delta_to_secs('100ms')
    0.1
    >>> delta_to_secs('1m30s')
    90.0
    >>> delta_str(0.0125)
    '12ms'
"""

import math
import re

_MINUTE = 60
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR

_UNITS: dict[str, float] = {
    "d": _DAY,
    "h": _HOUR,
    "m": _MINUTE,
    "s": 1.0,
    "ms": 1e-3,
    "μs": 1e-6,
    "us": 1e-6,
}

# "ms" must be tried before "m"
_PAIR = re.compile(r"(\d+(?:\.\d+)?)(ms|μs|us|d|h|m|s)")


class InvalidDurationError(ValueError):
    """A duration that is not a finite, non-negative number or a valid string."""


def _checked(secs: float) -> float:
    if isinstance(secs, bool) or not isinstance(secs, (int, float)):
        raise InvalidDurationError(f"not a number: {secs!r}")
    if not math.isfinite(secs):
        raise InvalidDurationError(f"not finite: {secs}")
    if secs < 0:
        raise InvalidDurationError(f"negative: {secs}")
    return float(secs)


def delta_str(secs: float | None) -> str:
    """
    Format seconds compactly: '500μs', '12ms', '1.250s', '1h1m1s'.

    Sub-second values and fractional values below ten seconds keep their
    precision; longer ones are truncated to whole seconds. None formats as
    an empty string.

    Raises:
        InvalidDurationError: If secs is negative, NaN or infinite
    """
    if secs is None:
        return ""
    secs = _checked(secs)

    if secs == 0:
        return "0s"
    if secs < 1e-3:
        return f"{int(secs * 1e6)}μs"
    if secs < 1:
        return f"{int(secs * 1e3)}ms"
    if secs < 10 and not secs.is_integer():
        return f"{secs:.3f}s"

    out = ""
    rest = int(secs)
    for unit, size in (("d", _DAY), ("h", _HOUR), ("m", _MINUTE)):
        count, rest = divmod(rest, size)
        if count:
            out += f"{count}{unit}"
    if rest or not out:
        out += f"{rest}s"
    return out


def delta_to_secs(duration: str | int | float) -> float:
    """
    Parse a duration into seconds.

    Numbers, and strings holding just a number, are seconds. Other strings
    are value/unit pairs over d, h, m, s, ms and μs (or us), each unit at
    most once: '2s', '1h30m', '250ms'.

    Raises:
        InvalidDurationError: If the value cannot be parsed
    """
    if not isinstance(duration, str):
        return _checked(duration)

    text = duration.replace(" ", "")
    if not text:
        raise InvalidDurationError("empty duration")
    try:
        return _checked(float(text))
    except InvalidDurationError:
        raise
    except ValueError:
        pass

    pairs = _PAIR.findall(text)
    if not pairs or "".join(value + unit for value, unit in pairs) != text:
        raise InvalidDurationError(f"cannot parse duration {duration!r}")

    units = ["μs" if unit == "us" else unit for _, unit in pairs]
    if len(set(units)) != len(units):
        raise InvalidDurationError(f"repeated unit in duration {duration!r}")
    return sum(float(value) * _UNITS[unit] for value, unit in pairs)
