"""
Conversions between device-registry codes and domain vocabulary.
Every function here is total: firmware emits undocumented codes, so unknown input
falls back to a default instead of raising.
"""

from __future__ import annotations
import re
from adherence_sync.models.domain import AdherenceSignal, DeviceStatus

INVALID_DAYS_MASK = -1
INVALID_INPUT = "Invalid input"
ALL_DAYS = 127

ADHERENCE_CODES = {
    "0": AdherenceSignal.NONE,
    "1": AdherenceSignal.ONCE,
    "2": AdherenceSignal.MULTIPLE,
    "9": AdherenceSignal.HEARTBEAT,
}

DEVICE_STATUS_CODES = {
    1: DeviceStatus.LINKED,
    2: DeviceStatus.AVAILABLE,
    3: DeviceStatus.DAMAGED_OR_LOST,
    9: DeviceStatus.UNAVAILABLE,
}

_SEPARATORS = re.compile(r"[\s,;]+")


def days_mask_to_bits(mask: str) -> int:
    """
    Convert a day-of-week mask (SMTWTFS, e.g. "1111111") to its integer value.
    The rightmost character is bit 0. Returns INVALID_DAYS_MASK when a character
    other than '0' or '1' appears.
    """
    value = 0
    for position, char in enumerate(reversed(str(mask))):
        if char == "1":
            value += 1 << position
        elif char != "0":
            return INVALID_DAYS_MASK
    return value


def bits_to_days_mask(bits: int) -> str:
    try:
        value = int(bits)
    except (TypeError, ValueError):
        return INVALID_INPUT
    if value < 0 or value > ALL_DAYS:
        return INVALID_INPUT
    return format(value, "07b")


def classify_adherence_code(code) -> AdherenceSignal:
    return ADHERENCE_CODES.get(str(code).strip(), AdherenceSignal.NONE)


def classify_device_status(code) -> DeviceStatus:
    try:
        status_code = int(str(code).strip())
    except (TypeError, ValueError):
        return DeviceStatus.UNKNOWN
    return DEVICE_STATUS_CODES.get(status_code, DeviceStatus.UNKNOWN)


def battery_fraction(raw) -> float:
    """Registry battery levels are percentages; the tracker stores a 0-1 fraction."""
    try:
        return int(float(raw)) / 100
    except (TypeError, ValueError, OverflowError):
        return 0.0


def parse_adherence_codes(adherence_string) -> list[str]:
    """
    Split an adherence string into single codes, oldest day first.
    Both "1,1,0,2" and "1102" are accepted.
    """
    if adherence_string is None:
        return []
    text = str(adherence_string).strip()
    if not text:
        return []
    if _SEPARATORS.search(text):
        return [c for c in _SEPARATORS.split(text) if c]
    return list(text)
