"""
otpauth:// URIs and Google Authenticator migration exports.

Entries are plain dicts (name, issuer, secret, type, digits, period,
algorithm, counter) until entry_to_credential() turns them into vault
records.
"""

import base64
import binascii
from typing import Iterable, List, Optional
from urllib.parse import parse_qs, quote, unquote, urlencode, urlparse

from otps_codec import decode_base32, encode_base32, normalize_secret
from otps_errors import InvalidSecretEncoding, UnsupportedEntry
from otps_store import MAX_COUNTER, Credential, Kind


# ==================== otpauth:// ====================

def parse_otpauth_uri(uri: str) -> Optional[dict]:
    """Parse a standard otpauth://totp/ or otpauth://hotp/ URI"""
    parsed = urlparse(uri)
    if parsed.scheme != "otpauth" or parsed.netloc not in ("totp", "hotp"):
        return None

    params = parse_qs(parsed.query)
    secret = params.get("secret", [None])[0]
    if not secret:
        return None

    # Label is "issuer:account" or just "account"
    label = unquote(parsed.path.lstrip("/"))
    if ":" in label:
        issuer_from_label, name = label.split(":", 1)
    else:
        issuer_from_label = ""
        name = label

    entry = {
        "secret": normalize_secret(secret),
        "name": name.strip(),
        "issuer": params.get("issuer", [issuer_from_label])[0],
        "digits": int(params.get("digits", [6])[0]),
        "period": int(params.get("period", [30])[0]),
        "algorithm": params.get("algorithm", ["SHA1"])[0].upper(),
        "type": parsed.netloc.upper(),
    }
    if entry["type"] == "HOTP":
        counter = params.get("counter", ["0"])[0]
        entry["counter"] = int(counter) if counter.isascii() and counter.isdigit() else counter
    return entry


def format_otpauth_uri(credential: Credential, issuer: Optional[str] = None) -> str:
    """Build the otpauth:// URI authenticator apps scan"""
    label = f"{issuer}:{credential.name}" if issuer else credential.name
    params = {"secret": credential.secret}
    if issuer:
        params["issuer"] = issuer
    if credential.kind is Kind.HOTP:
        params["counter"] = credential.counter or 0
    return f"otpauth://{credential.kind}/{quote(label)}?{urlencode(params)}"


# ==================== otpauth-migration:// ====================

def parse_protobuf_varint(data: bytes, offset: int) -> tuple:
    """Parse a protobuf varint and return (value, new_offset)"""
    result = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise ValueError("Truncated varint in migration payload")
        byte = data[offset]
        result |= (byte & 0x7F) << shift
        offset += 1
        if not (byte & 0x80):
            break
        shift += 7
    return result, offset


def parse_migration_payload(data: bytes) -> List[dict]:
    """Parse Google Authenticator migration protobuf payload"""
    entries = []
    offset = 0

    while offset < len(data):
        tag, offset = parse_protobuf_varint(data, offset)
        field_number = tag >> 3
        wire_type = tag & 0x07

        if field_number == 1 and wire_type == 2:  # OTP parameters
            length, offset = parse_protobuf_varint(data, offset)
            entry = parse_otp_entry(data[offset:offset + length])
            offset += length
            if entry:
                entries.append(entry)
        elif wire_type == 0:
            _, offset = parse_protobuf_varint(data, offset)
        elif wire_type == 2:
            length, offset = parse_protobuf_varint(data, offset)
            offset += length
        else:
            break

    return entries


def parse_otp_entry(data: bytes) -> Optional[dict]:
    """Parse a single OTP entry from protobuf"""
    entry = {"type": "TOTP", "digits": 6, "period": 30, "algorithm": "SHA1"}
    offset = 0

    while offset < len(data):
        tag, offset = parse_protobuf_varint(data, offset)
        field_number = tag >> 3
        wire_type = tag & 0x07

        if wire_type == 2:
            length, offset = parse_protobuf_varint(data, offset)
            value = data[offset:offset + length]
            offset += length

            if field_number == 1:
                entry["secret"] = encode_base32(value)
            elif field_number == 2:
                entry["name"] = value.decode("utf-8", errors="replace")
            elif field_number == 3:
                entry["issuer"] = value.decode("utf-8", errors="replace")
        elif wire_type == 0:
            value, offset = parse_protobuf_varint(data, offset)
            if field_number == 4:
                entry["algorithm"] = {1: "SHA1", 2: "SHA256", 3: "SHA512", 4: "MD5"}.get(value, "SHA1")
            elif field_number == 5:
                entry["digits"] = {1: 6, 2: 8}.get(value, 6)
            elif field_number == 6:
                entry["type"] = {1: "HOTP", 2: "TOTP"}.get(value, "TOTP")
            elif field_number == 7:
                entry["counter"] = value
        else:
            break

    if entry["type"] == "HOTP":
        entry.setdefault("counter", 0)
    return entry if "secret" in entry else None


def parse_migration_uri(uri: str) -> List[dict]:
    """Decode the data parameter of an otpauth-migration:// URI"""
    parsed = urlparse(uri)
    if parsed.scheme != "otpauth-migration":
        raise ValueError("Expected an otpauth-migration:// URI")

    params = parse_qs(parsed.query)
    if "data" not in params:
        raise ValueError("No data parameter found in migration URI")

    try:
        payload = base64.b64decode(unquote(params["data"][0]))
    except binascii.Error as e:
        raise ValueError(f"Cannot decode migration data: {e}") from e
    return parse_migration_payload(payload)


def parse_any_uri(uri: str) -> List[dict]:
    """Entries from either an otpauth:// or an otpauth-migration:// URI"""
    if uri.startswith("otpauth-migration://"):
        return parse_migration_uri(uri)
    if uri.startswith("otpauth://"):
        entry = parse_otpauth_uri(uri)
        if entry is None:
            raise ValueError("Could not parse otpauth URI")
        return [entry]
    raise ValueError("Unsupported URI, expected otpauth:// or otpauth-migration://")


# ==================== Vault records ====================

def alias_for(name: str, taken: Iterable[str]) -> str:
    """Turn an account label into a unique vault name"""
    alias = name.lower().replace("@", "-").replace(" ", "-").replace(":", "-")
    alias = "".join(c for c in alias if c.isascii() and (c.isalnum() or c == "-"))
    alias = alias.strip("-") or "imported"

    taken = set(taken)
    base_alias = alias
    counter = 1
    while alias in taken:
        alias = f"{base_alias}-{counter}"
        counter += 1
    return alias


def entry_to_credential(entry: dict, taken: Iterable[str] = ()) -> Credential:
    """Convert a parsed entry into a vault record, or raise UnsupportedEntry"""
    if entry.get("digits", 6) != 6:
        raise UnsupportedEntry(f"{entry.get('digits')}-digit codes are not supported")
    if entry.get("algorithm", "SHA1") != "SHA1":
        raise UnsupportedEntry(f"{entry.get('algorithm')} is not supported, only SHA1")

    kind = Kind.HOTP if entry.get("type") == "HOTP" else Kind.TOTP
    if kind is Kind.TOTP and entry.get("period", 30) != 30:
        raise UnsupportedEntry(f"{entry.get('period')}s period is not supported, only 30s")

    secret = entry.get("secret", "")
    try:
        decode_base32(secret)
    except InvalidSecretEncoding as e:
        raise UnsupportedEntry(str(e)) from e

    name = alias_for(entry.get("name") or entry.get("issuer") or "", taken)
    counter = None
    if kind is Kind.HOTP:
        counter = entry.get("counter", 0)
        if not isinstance(counter, int) or not 0 <= counter <= MAX_COUNTER:
            raise UnsupportedEntry(f"counter {counter!r} is not a 64-bit unsigned integer")
    return Credential(name, secret, kind, counter)
