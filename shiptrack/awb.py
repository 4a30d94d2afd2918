"""
Waybill (AWB) code generation.

All codes look like ``UEX`` followed by digits. Nothing here checks the
store: callers compare against persisted codes and retry inserts that hit
the unique constraint on ``shipments.awb_code``.
"""
import random
import time
from typing import List

PREFIX = "UEX"

_rng = random.SystemRandom()


def _clock_digits() -> str:
    return str(time.time_ns() // 1_000_000)


def generate_awb() -> str:
    """Single code: last 6 digits of the millisecond clock + 4 random digits."""
    return f"{PREFIX}{_clock_digits()[-6:]}{_rng.randint(1000, 9999)}"


def generate_awb_batch(count: int) -> List[str]:
    """
    ``count`` distinct codes of 8 random digits each.

    Clock-based codes collapse when many are minted in the same
    millisecond, so batches draw purely random suffixes and resample on
    collision.
    """
    codes: List[str] = []
    seen = set()
    while len(codes) < count:
        code = f"{PREFIX}{_rng.randint(10_000_000, 99_999_999)}"
        if code in seen:
            continue
        seen.add(code)
        codes.append(code)
    return codes


def check_digit(serial: str) -> str:
    return str(int(serial) % 7)


def generate_checked_awb() -> str:
    """``UEX`` + 7 digit serial + ``serial % 7``, e.g. UEX83920115."""
    serial = _clock_digits()[-7:]
    return f"{PREFIX}{serial}{check_digit(serial)}"


def is_valid_checked_awb(code: str) -> bool:
    if not code or not code.startswith(PREFIX):
        return False
    digits = code[len(PREFIX):]
    if len(digits) != 8 or not digits.isdigit():
        return False
    return check_digit(digits[:-1]) == digits[-1]
