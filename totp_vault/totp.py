"""
TOTP Engine — RFC 6238 time-based codes over RFC 4226 HOTP.

Code generation is delegated to ``pyotp``. Seed validation stays here: a
seed that does not decode to key bytes yields ``INVALID_SEED`` instead of
an exception.
"""
import time
import base64
from typing import Optional

import pyotp

from . import base32

INVALID_SEED = "Invalid Seed"
DEFAULT_TIME_STEP = 30
DEFAULT_DIGITS = 6


def _otp_secret(seed: bytes) -> str:
    # pyotp takes its key as Base32 text
    return base64.b32encode(seed).decode("ascii")


def hotp(seed: bytes, counter: int, digits: int = DEFAULT_DIGITS) -> str:
    """Compute the HOTP value of ``seed`` at ``counter``.

    Args:
        seed: Raw (decoded) secret bytes.
        counter: Moving factor, a non-negative integer.
        digits: Length of the returned code.

    Returns:
        Zero-padded decimal code, or ``INVALID_SEED`` for an empty seed.
    """
    if not seed:
        return INVALID_SEED
    if counter < 0:
        raise ValueError("counter must be a non-negative integer")
    return pyotp.HOTP(_otp_secret(seed), digits=digits).at(counter)


def generate(
    seed: Optional[bytes],
    time_step: int = DEFAULT_TIME_STEP,
    digits: int = DEFAULT_DIGITS,
    now: Optional[float] = None,
) -> str:
    """Generate the TOTP code for ``seed`` at time ``now``.

    Args:
        seed: Raw (decoded) secret bytes; None or empty yields INVALID_SEED.
        time_step: Period of each code in seconds.
        digits: Length of the returned code.
        now: Unix timestamp, defaults to the current time.

    Returns:
        The code as a zero-padded string, or ``INVALID_SEED``.
    """
    if not seed:
        return INVALID_SEED
    if now is None:
        now = time.time()
    # the counter is computed here so timestamps past what datetime can
    # represent still produce a code
    return hotp(seed, int(now // time_step), digits)


def generate_from_base32(
    seed_text: str,
    time_step: int = DEFAULT_TIME_STEP,
    digits: int = DEFAULT_DIGITS,
    now: Optional[float] = None,
) -> str:
    """Decode a Base32 seed and generate its current code."""
    return generate(base32.decode(seed_text), time_step, digits, now)


def is_valid_seed(seed_text: str) -> bool:
    """Return True when ``seed_text`` decodes to a usable TOTP key."""
    return generate_from_base32(seed_text, now=0) != INVALID_SEED


def seconds_remaining(
    time_step: int = DEFAULT_TIME_STEP, now: Optional[float] = None
) -> int:
    """Seconds left before the code of the current period rolls over."""
    if now is None:
        now = time.time()
    return time_step - int(now % time_step)
