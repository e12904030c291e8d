"""
Flat-file credential vault.

One record per line, whitespace separated:

    <name> <digits> <secret> <kind> [<counter>]

kind is "hotp" or "totp"; counter is present only for hotp. Lines that do
not parse are skipped when reading and kept verbatim when rewriting.
"""

import enum
import errno
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from otps_debug import debug_log
from otps_errors import CredentialNotFound, MalformedRecord, VaultIOError

VAULT_MODE = 0o600
MAX_COUNTER = 2 ** 64 - 1

_NUMBER = re.compile(r"[0-9]+")


class Kind(enum.Enum):
    HOTP = "hotp"
    TOTP = "totp"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Credential:
    name: str
    secret: str
    kind: Kind
    counter: Optional[int] = None
    digits: int = 6

    def to_line(self) -> str:
        """Serialize as a vault line (newline terminated)"""
        line = f"{self.name} {self.digits} {self.secret} {self.kind}"
        if self.kind is Kind.HOTP:
            line += f" {self.counter if self.counter is not None else 0}"
        return line + "\n"

    def with_counter(self, counter: int) -> "Credential":
        return Credential(self.name, self.secret, self.kind, counter, self.digits)


def parse_record(line: str) -> Credential:
    """Parse one vault line, raising MalformedRecord if it is not a valid record"""
    try:
        line.encode("utf-8")
    except UnicodeEncodeError:
        raise MalformedRecord("line is not valid UTF-8") from None

    fields = line.split()
    if len(fields) < 4:
        raise MalformedRecord(f"expected at least 4 fields, got {len(fields)}")

    name, digits, secret, kind = fields[:4]
    if not name or not secret:
        raise MalformedRecord("empty name or secret")
    if not _NUMBER.fullmatch(digits):
        raise MalformedRecord(f"digits field is not a number: {digits!r}")
    try:
        kind = Kind(kind)
    except ValueError:
        raise MalformedRecord(f"unknown kind {kind!r}") from None

    if kind is Kind.TOTP:
        return Credential(name, secret, kind, None, int(digits))

    if len(fields) < 5 or not _NUMBER.fullmatch(fields[4]):
        raise MalformedRecord("hotp record without a valid counter")
    counter = int(fields[4])
    if counter > MAX_COUNTER:
        raise MalformedRecord("hotp counter does not fit in 64 bits")
    return Credential(name, secret, kind, counter, int(digits))


def split_lines(text: str) -> List[str]:
    """Split on newlines only, keeping line endings (a final line may lack one)"""
    lines = [line + "\n" for line in text.split("\n")]
    lines[-1] = lines[-1][:-1]
    return lines if lines[-1] else lines[:-1]


def first_field(line: str) -> str:
    fields = line.split(maxsplit=1)
    return fields[0] if fields else ""


def _check_name(name: str):
    # an empty name would match every blank line
    if not name or name.split() != [name]:
        raise ValueError(f"Invalid record name {name!r}")


class CredentialStore:
    """
    Credential records kept in a single UTF-8 text file.

    Every rewrite goes to a temporary file in the same directory which then
    replaces the vault with os.replace(), so a crash leaves either the old or
    the new file. There is no locking: two processes rewriting the vault at
    once means the last writer wins.
    """

    def __init__(self, path):
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"CredentialStore('{self.path}')"

    def exists(self) -> bool:
        return self.path.is_file()

    # ---- reading ----

    def _read_text(self) -> str:
        try:
            # newline="" keeps \r\n endings and surrogateescape keeps non-UTF-8 bytes intact for rewrites
            with open(self.path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
                return f.read()
        except OSError as e:
            raise VaultIOError(e.errno, f"Cannot read vault: {e.strerror}", str(self.path)) from e

    def read(self) -> str:
        """Whole vault text, as stored"""
        return self._read_text()

    def _read_lines(self) -> List[str]:
        return split_lines(self._read_text())

    def records(self) -> List[Credential]:
        """All valid records in file order"""
        result = []
        for lineno, line in enumerate(self._read_lines(), 1):
            try:
                result.append(parse_record(line))
            except MalformedRecord as e:
                if line.strip():
                    debug_log(f"{self.path}:{lineno}: skipping malformed line ({e})")
        return result

    def get(self, name: str) -> Credential:
        for credential in self.records():
            if credential.name == name:
                return credential
        raise CredentialNotFound(name)

    def list(self) -> List[str]:
        return [credential.name for credential in self.records()]

    # ---- writing ----

    def _write_text(self, content: str):
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{self.path.name}-", suffix=".tmp")
        except OSError as e:
            raise VaultIOError(e.errno, f"Cannot write vault: {e.strerror}", str(self.path)) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, VAULT_MODE)
            os.replace(tmp, self.path)
        except OSError as e:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise VaultIOError(e.errno, f"Cannot write vault: {e.strerror}", str(self.path)) from e
        debug_log(f"Wrote {len(content)} characters to {self.path}")

    def set(self, content: str):
        """Replace the whole vault with content (initial creation or restore)"""
        self._write_text(content)

    def alter(self, name: str, new_line: str) -> int:
        """
        Replace every line whose first field is name with new_line.

        new_line is written as given, without validation. Every other line,
        malformed ones included, is kept byte for byte. Returns the number of
        lines replaced.
        """
        _check_name(name)
        replaced = 0
        lines = []
        for line in self._read_lines():
            if first_field(line) == name:
                lines.append(new_line)
                replaced += 1
            else:
                lines.append(line)
        self._write_text("".join(lines))
        debug_log(f"Altered {replaced} line(s) for '{name}'")
        return replaced

    def append(self, line: str):
        """Add a record at the end of the vault, creating it if needed"""
        try:
            content = self._read_text()
        except VaultIOError as e:
            if e.errno != errno.ENOENT:
                raise
            content = ""
        if content and not content.endswith("\n"):
            content += "\n"
        self._write_text(content + line)

    def remove(self, name: str) -> int:
        """Drop every line whose first field is name; returns how many were dropped"""
        _check_name(name)
        kept = []
        removed = 0
        for line in self._read_lines():
            if first_field(line) == name:
                removed += 1
            else:
                kept.append(line)
        if removed:
            self._write_text("".join(kept))
        return removed
