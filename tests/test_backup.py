"""
Unit tests for encrypted vault backups.
"""

import json
import os
import stat

import pytest

from otps_backup import decrypt_vault, encrypt_vault, read_backup, write_backup
from otps_errors import BackupError
from otps_store import CredentialStore

VAULT = "github 6 JBSWY3DPEHPK3PXP totp\nbank 6 GEZDGNBV hotp 4\n"


class TestEncryption:
    """Vault text encryption."""

    def test_decrypts_with_password(self, fast_kdf):
        """The right password restores the exact text."""
        stored = encrypt_vault(VAULT, "correct horse")
        assert stored["encrypted"] is True
        assert VAULT not in json.dumps(stored)
        assert decrypt_vault(stored, "correct horse") == VAULT

    def test_fresh_salt(self, fast_kdf):
        """Each backup uses its own salt."""
        assert encrypt_vault(VAULT, "pw")["salt"] != encrypt_vault(VAULT, "pw")["salt"]

    def test_wrong_password(self, fast_kdf):
        """A wrong password is reported as BackupError."""
        stored = encrypt_vault(VAULT, "correct horse")
        with pytest.raises(BackupError):
            decrypt_vault(stored, "battery staple")

    def test_corrupted_document(self, fast_kdf):
        """Missing fields are reported as BackupError."""
        with pytest.raises(BackupError):
            decrypt_vault({"encrypted": True}, "pw")


class TestBackupFiles:
    """Backup files on disk."""

    def test_write_and_read(self, tmp_path, fast_kdf):
        """A written backup reads back to the vault contents."""
        store = CredentialStore(tmp_path / "vault")
        store.set(VAULT)
        backup = tmp_path / "vault.backup"

        write_backup(store, backup, "pw")

        assert stat.S_IMODE(os.stat(backup).st_mode) == 0o600
        assert read_backup(backup, "pw") == VAULT

    def test_not_a_backup(self, tmp_path):
        """Arbitrary JSON or text is refused."""
        other = tmp_path / "other.json"
        other.write_text('{"secrets": {}}')
        with pytest.raises(BackupError):
            read_backup(other, "pw")

        other.write_text("github 6 ABC totp\n")
        with pytest.raises(BackupError):
            read_backup(other, "pw")

    def test_binary_file(self, tmp_path):
        """A file that is not text at all is refused."""
        image = tmp_path / "qr.png"
        image.write_bytes(b"\x89PNG\r\n\x1a\n\xff\xd8")
        with pytest.raises(BackupError):
            read_backup(image, "pw")

    def test_non_utf8_vault_round_trip(self, tmp_path, fast_kdf):
        """Vault bytes that are not UTF-8 come back unchanged."""
        path = tmp_path / "vault"
        path.write_bytes(b"caf\xe9 6 ABC totp\n" + VAULT.encode())
        backup = tmp_path / "vault.backup"

        write_backup(CredentialStore(path), backup, "pw")
        CredentialStore(path).set(read_backup(backup, "pw"))

        assert path.read_bytes() == b"caf\xe9 6 ABC totp\n" + VAULT.encode()
