"""
Secret decoding for OTP keys.

Seeds are handed to humans as unpadded RFC 4648 base32. Decoding is strict:
a garbled seed is rejected instead of being used as raw bytes, because a
silently wrong key produces codes that never match.
"""

import base64
import binascii
import re

from otps_errors import InvalidSecretEncoding

BASE32_ALPHABET = re.compile(r"[A-Z2-7]+")

# Unpadded lengths (mod 8) that map to a whole number of bytes
_VALID_TAIL_LENGTHS = {0, 2, 4, 5, 7}


def decode_base32(text: str) -> bytes:
    """Decode unpadded RFC 4648 base32 text into key bytes"""
    if not text:
        raise InvalidSecretEncoding("Secret is empty")
    if not BASE32_ALPHABET.fullmatch(text):
        raise InvalidSecretEncoding(
            "Secret contains characters outside the base32 alphabet (A-Z, 2-7, no padding)"
        )
    if len(text) % 8 not in _VALID_TAIL_LENGTHS:
        raise InvalidSecretEncoding(f"Secret has an invalid base32 length ({len(text)})")

    padded = text + "=" * (-len(text) % 8)
    try:
        return base64.b32decode(padded)
    except binascii.Error as e:
        raise InvalidSecretEncoding(f"Invalid secret key format: {e}") from e


def raw_key(data) -> bytes:
    """Use key bytes as they are (secret is known not to be base32)"""
    return bytes(data)


def decode_secret(text: str) -> bytes:
    """Shared secret decoding for HOTP and TOTP construction"""
    return decode_base32(text)


def encode_base32(data: bytes) -> str:
    """Encode key bytes as unpadded base32"""
    return base64.b32encode(data).decode("ascii").rstrip("=")


def normalize_secret(text: str) -> str:
    """Remove spaces and trailing padding, and uppercase a secret typed or pasted by a user"""
    return "".join(text.split()).upper().rstrip("=")
