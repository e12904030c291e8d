"""
Unit tests for otpauth URIs and migration payloads.
"""

import base64
from urllib.parse import quote

import pytest

from otps_codec import encode_base32
from otps_errors import UnsupportedEntry
from otps_store import Credential, Kind
from otps_uri import (
    alias_for,
    entry_to_credential,
    format_otpauth_uri,
    parse_any_uri,
    parse_migration_payload,
    parse_migration_uri,
    parse_otpauth_uri,
    parse_protobuf_varint,
)

SECRET_BYTES = b"Hello!\xde\xad\xbe\xef"


def field(number: int, value: bytes) -> bytes:
    """Length-delimited protobuf field (lengths < 128 only)"""
    return bytes([(number << 3) | 2, len(value)]) + value


def varint_field(number: int, value: int) -> bytes:
    return bytes([number << 3, value])


def migration_payload(*entries: bytes) -> bytes:
    return b"".join(field(1, entry) for entry in entries) + varint_field(2, 1)


def otp_parameters(name: bytes, issuer: bytes = b"", digits: int = 1, otp_type: int = 2,
                   algorithm: int = 1, counter: int = None) -> bytes:
    data = field(1, SECRET_BYTES) + field(2, name) + field(3, issuer)
    data += varint_field(4, algorithm) + varint_field(5, digits) + varint_field(6, otp_type)
    if counter is not None:
        data += varint_field(7, counter)
    return data


class TestOtpauthUri:
    """otpauth:// parsing and formatting."""

    def test_totp_with_issuer_label(self):
        """Label issuer and account are split."""
        entry = parse_otpauth_uri("otpauth://totp/GitHub:alice?secret=jbswy3dpehpk3pxp&issuer=GitHub")
        assert entry["name"] == "alice"
        assert entry["issuer"] == "GitHub"
        assert entry["secret"] == "JBSWY3DPEHPK3PXP"
        assert entry["type"] == "TOTP"
        assert entry["digits"] == 6
        assert entry["period"] == 30

    def test_hotp_counter(self):
        """HOTP URIs carry their counter."""
        entry = parse_otpauth_uri("otpauth://hotp/bank?secret=JBSWY3DPEHPK3PXP&counter=12")
        assert entry["type"] == "HOTP"
        assert entry["counter"] == 12
        assert entry["issuer"] == ""

    def test_rejects_other_uris(self):
        """Non-otpauth URIs and missing secrets give None."""
        assert parse_otpauth_uri("https://example.com/?secret=ABC") is None
        assert parse_otpauth_uri("otpauth://totp/alice?issuer=GitHub") is None

    def test_format(self):
        """Exported URIs parse back to the same record."""
        uri = format_otpauth_uri(Credential("bank", "JBSWY3DPEHPK3PXP", Kind.HOTP, 5), issuer="My Bank")
        assert uri.startswith("otpauth://hotp/My%20Bank%3Abank?")
        entry = parse_otpauth_uri(uri)
        assert entry["name"] == "bank"
        assert entry["issuer"] == "My Bank"
        assert entry["counter"] == 5

    def test_format_without_issuer(self):
        """The label is the bare name when no issuer is given."""
        uri = format_otpauth_uri(Credential("github", "JBSWY3DPEHPK3PXP", Kind.TOTP))
        assert uri == "otpauth://totp/github?secret=JBSWY3DPEHPK3PXP"


class TestMigration:
    """Google Authenticator export payloads."""

    def test_varint(self):
        """Multi-byte varints decode."""
        assert parse_protobuf_varint(bytes([0xAC, 0x02]), 0) == (300, 2)

    def test_truncated_varint(self):
        """A varint running off the end is an error."""
        with pytest.raises(ValueError):
            parse_protobuf_varint(bytes([0x80]), 0)

    def test_payload(self):
        """Entries come back with decoded fields."""
        payload = migration_payload(
            otp_parameters(b"alice@example.com", b"Example"),
            otp_parameters(b"bank", otp_type=1, counter=9),
        )
        entries = parse_migration_payload(payload)
        assert len(entries) == 2
        assert entries[0]["name"] == "alice@example.com"
        assert entries[0]["issuer"] == "Example"
        assert entries[0]["secret"] == encode_base32(SECRET_BYTES)
        assert entries[0]["type"] == "TOTP"
        assert entries[1]["type"] == "HOTP"
        assert entries[1]["counter"] == 9

    def test_uri(self):
        """The data parameter is URL-quoted base64."""
        data = base64.b64encode(migration_payload(otp_parameters(b"alice")))
        entries = parse_migration_uri("otpauth-migration://offline?data=" + quote(data))
        assert [e["name"] for e in entries] == ["alice"]

    def test_uri_without_data(self):
        """A migration URI needs a data parameter."""
        with pytest.raises(ValueError):
            parse_migration_uri("otpauth-migration://offline")

    def test_any_uri(self):
        """Dispatch on the scheme."""
        assert len(parse_any_uri("otpauth://totp/a?secret=JBSWY3DPEHPK3PXP")) == 1
        with pytest.raises(ValueError):
            parse_any_uri("mailto:alice@example.com")
        with pytest.raises(ValueError):
            parse_any_uri("otpauth://totp/a")


class TestCredentials:
    """Turning entries into vault records."""

    def test_alias(self):
        """Labels become unique whitespace-free names."""
        assert alias_for("Alice@Example.com", []) == "alice-examplecom"
        assert alias_for("GitHub", ["github"]) == "github-1"
        assert alias_for("GitHub", ["github", "github-1"]) == "github-2"
        assert alias_for("  ", []) == "imported"

    def test_totp_entry(self):
        """TOTP entries have no counter."""
        entry = parse_otpauth_uri("otpauth://totp/GitHub:Alice?secret=JBSWY3DPEHPK3PXP")
        assert entry_to_credential(entry) == Credential("alice", "JBSWY3DPEHPK3PXP", Kind.TOTP)

    def test_hotp_entry(self):
        """HOTP entries keep their counter."""
        entry = parse_otpauth_uri("otpauth://hotp/bank?secret=JBSWY3DPEHPK3PXP&counter=3")
        credential = entry_to_credential(entry, ["bank"])
        assert credential.name == "bank-1"
        assert credential.counter == 3

    @pytest.mark.parametrize("uri", [
        "otpauth://totp/a?secret=JBSWY3DPEHPK3PXP&digits=8",
        "otpauth://totp/a?secret=JBSWY3DPEHPK3PXP&algorithm=SHA256",
        "otpauth://totp/a?secret=JBSWY3DPEHPK3PXP&period=60",
        "otpauth://totp/a?secret=NOT-BASE32",
    ])
    def test_unsupported(self, uri):
        """Entries the vault cannot represent are refused."""
        with pytest.raises(UnsupportedEntry):
            entry_to_credential(parse_otpauth_uri(uri))

    @pytest.mark.parametrize("counter", ["-5", "18446744073709551616", "abc", "%C2%B3"])
    def test_unsupported_counter(self, counter):
        """HOTP counters outside 0..2**64-1 are refused."""
        entry = parse_otpauth_uri(f"otpauth://hotp/a?secret=JBSWY3DPEHPK3PXP&counter={counter}")
        with pytest.raises(UnsupportedEntry):
            entry_to_credential(entry)

    def test_largest_counter(self):
        """The top of the 64-bit range is still accepted."""
        entry = parse_otpauth_uri("otpauth://hotp/a?secret=JBSWY3DPEHPK3PXP&counter=18446744073709551615")
        assert entry_to_credential(entry).counter == 2 ** 64 - 1
