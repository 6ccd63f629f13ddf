"""Name lookups for stream encodings and process priority classes.

Names are matched case-insensitively against a fixed set; anything else is
rejected with UnsupportedValueError.
"""

from __future__ import annotations

import sys

import psutil

from supervised_process.status import UnsupportedValueError

# Host encoding names -> Python codec names
ENCODINGS: dict[str, str] = {
    "ascii": "ascii",
    "unicode": "utf-16-le",
    "utf7": "utf-7",
    "utf8": "utf-8",
    "utf32": "utf-32-le",
    "bigendianunicode": "utf-16-be",
}

PRIORITY_CLASSES: tuple[str, ...] = (
    "normal",
    "idle",
    "high",
    "realtime",
    "abovenormal",
    "belownormal",
)

DEFAULT_PRIORITY_CLASS = "normal"

# POSIX nice values standing in for the Windows priority classes
_NICE_VALUES: dict[str, int] = {
    "normal": 0,
    "idle": 19,
    "high": -10,
    "realtime": -20,
    "abovenormal": -5,
    "belownormal": 10,
}


def encoding_from_name(name: str) -> str:
    """Return the codec name for a host encoding name.

    Raises:
        UnsupportedValueError: If the name is not one of ENCODINGS.
    """
    codec = ENCODINGS.get(name.lower()) if isinstance(name, str) else None
    if codec is None:
        error_message = f"Encoding not supported: {name}"
        raise UnsupportedValueError(error_message)
    return codec


def priority_class_from_name(name: str) -> str:
    """Normalize a priority class name.

    Raises:
        UnsupportedValueError: If the name is not one of PRIORITY_CLASSES.
    """
    key = name.lower() if isinstance(name, str) else None
    if key not in PRIORITY_CLASSES:
        error_message = f"Name does not match a priority class: {name}"
        raise UnsupportedValueError(error_message)
    return key


def priority_value(name: str) -> int:
    """Return the value psutil.Process.nice() expects for a priority class."""
    key = priority_class_from_name(name)
    if sys.platform == "win32":
        return {
            "normal": psutil.NORMAL_PRIORITY_CLASS,
            "idle": psutil.IDLE_PRIORITY_CLASS,
            "high": psutil.HIGH_PRIORITY_CLASS,
            "realtime": psutil.REALTIME_PRIORITY_CLASS,
            "abovenormal": psutil.ABOVE_NORMAL_PRIORITY_CLASS,
            "belownormal": psutil.BELOW_NORMAL_PRIORITY_CLASS,
        }[key]
    return _NICE_VALUES[key]


def priority_name_from_value(value: int) -> str:
    """Map a psutil nice()/priority value back to the closest class name."""
    if sys.platform == "win32":
        for key in PRIORITY_CLASSES:
            if priority_value(key) == value:
                return key
        return DEFAULT_PRIORITY_CLASS
    # Nearest nice value wins
    return min(_NICE_VALUES, key=lambda k: abs(_NICE_VALUES[k] - value))
