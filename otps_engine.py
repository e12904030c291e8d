"""
HOTP (RFC 4226) and TOTP (RFC 6238) code generation.

Both engines produce 6-digit codes from HMAC-SHA1. An engine is built fresh
for each request; only an incremented HOTP counter outlives it (written back
to the vault by the caller).
"""

import hashlib
import hmac
import struct
import time
from dataclasses import dataclass
from typing import Callable, Optional

from otps_codec import decode_secret, raw_key
from otps_debug import debug_log
from otps_errors import CounterOverflow
from otps_store import MAX_COUNTER, Kind

OTP_DIGITS = 6
TOTP_PERIOD = 30


def truncate(tag: bytes) -> int:
    """Dynamic truncation (RFC 4226 section 5.3) of an HMAC-SHA1 tag"""
    offset = tag[19] & 0x0F
    value = struct.unpack(">I", tag[offset:offset + 4])[0] & 0x7FFFFFFF
    return value % (10 ** OTP_DIGITS)


def hotp(key: bytes, counter: int) -> str:
    """Generate HOTP code (RFC 4226)"""
    tag = hmac.new(key, struct.pack(">Q", counter), hashlib.sha1).digest()
    return str(truncate(tag)).zfill(OTP_DIGITS)


def codes_match(candidate: str, reference: str) -> bool:
    """Constant-time comparison of a candidate code against the expected one"""
    if not isinstance(candidate, str) or len(candidate) != OTP_DIGITS:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), reference.encode("ascii"))


def _check_counter(counter: int) -> int:
    if counter < 0:
        raise ValueError(f"Counter must be non-negative, got {counter}")
    if counter > MAX_COUNTER:
        raise CounterOverflow(f"Counter {counter} does not fit in 64 bits")
    return counter


class Hotp:
    """
    Counter-based one-time password engine.

    The counter only moves through increment_counter(); generate() and
    validate() leave it alone. Call increment_counter() after issuing a code
    when replay prevention is wanted (RFC 4226 section 7.2).
    """

    def __init__(self, key: bytes, counter: int = 0):
        self._key = bytes(key)
        self._counter = _check_counter(counter)

    @classmethod
    def from_base32(cls, secret: str, counter: int = 0) -> "Hotp":
        return build_hotp(EngineConfig(secret=secret, counter=counter))

    @classmethod
    def from_key(cls, key: bytes, counter: int = 0) -> "Hotp":
        return build_hotp(EngineConfig(key=key, counter=counter))

    @property
    def key(self) -> bytes:
        return self._key

    @property
    def counter(self) -> int:
        return self._counter

    def get_counter(self) -> int:
        return self._counter

    def generate(self) -> str:
        return hotp(self._key, self._counter)

    def increment_counter(self) -> int:
        if self._counter >= MAX_COUNTER:
            raise CounterOverflow("HOTP counter reached 2**64 - 1")
        self._counter += 1
        debug_log(f"HOTP counter incremented to {self._counter}")
        return self._counter

    def validate(self, candidate: str) -> bool:
        return codes_match(candidate, self.generate())

    def __repr__(self) -> str:
        return f"Hotp(counter={self._counter})"


class Totp:
    """
    Time-based one-time password engine (30 second period).

    Each call derives the counter from the clock and delegates to a
    throwaway Hotp. Only the current period is accepted by validate().
    """

    def __init__(self, key: bytes, clock: Optional[Callable[[], float]] = None):
        self._key = bytes(key)
        self._clock = clock or time.time

    @classmethod
    def from_base32(cls, secret: str) -> "Totp":
        return build_totp(EngineConfig(secret=secret))

    @classmethod
    def from_key(cls, key: bytes) -> "Totp":
        return build_totp(EngineConfig(key=key))

    @property
    def key(self) -> bytes:
        return self._key

    def _now(self, timestamp: Optional[float]) -> int:
        return int(self._clock() if timestamp is None else timestamp)

    def counter_at(self, timestamp: Optional[float] = None) -> int:
        return self._now(timestamp) // TOTP_PERIOD

    def generate(self, timestamp: Optional[float] = None) -> str:
        return Hotp(self._key, self.counter_at(timestamp)).generate()

    def validate(self, candidate: str, timestamp: Optional[float] = None) -> bool:
        return codes_match(candidate, self.generate(timestamp))

    def remaining(self, timestamp: Optional[float] = None) -> int:
        """Seconds until the code rotates"""
        return TOTP_PERIOD - (self._now(timestamp) % TOTP_PERIOD)

    def __repr__(self) -> str:
        return "Totp(period=30)"


@dataclass
class EngineConfig:
    """Inputs for building an engine: exactly one of secret (base32 text) or key (raw bytes)."""
    secret: Optional[str] = None
    key: Optional[bytes] = None
    counter: int = 0


def _resolve_key(config: EngineConfig) -> bytes:
    if (config.secret is None) == (config.key is None):
        raise ValueError("Exactly one of secret or key must be given")
    if config.secret is not None:
        return decode_secret(config.secret)
    return raw_key(config.key)


def build_hotp(config: EngineConfig) -> Hotp:
    """Validate config and build a Hotp engine"""
    return Hotp(_resolve_key(config), config.counter)


def build_totp(config: EngineConfig, clock: Optional[Callable[[], float]] = None) -> Totp:
    """Validate config and build a Totp engine"""
    return Totp(_resolve_key(config), clock)


def engine_for(credential, clock: Optional[Callable[[], float]] = None):
    """Build the engine matching a stored credential"""
    if credential.kind is Kind.HOTP:
        return build_hotp(EngineConfig(secret=credential.secret, counter=credential.counter))
    return build_totp(EngineConfig(secret=credential.secret), clock)
