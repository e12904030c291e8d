"""
Password-protected vault backups.

The backup is a JSON document holding a random salt and the Fernet token of
the whole vault file. Restoring writes the decrypted text back with
CredentialStore.set().
"""

import base64
import binascii
import json
import os

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from otps_debug import debug_log
from otps_errors import BackupError
from otps_store import CredentialStore

PBKDF2_ITERATIONS = 480000
SALT_BYTES = 16


def derive_key(password: str, salt: bytes) -> bytes:
    """Derive encryption key from password"""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode()))


def encrypt_vault(text: str, password: str) -> dict:
    """Encrypt vault contents with password"""
    salt = os.urandom(SALT_BYTES)
    fernet = Fernet(derive_key(password, salt))
    return {
        "salt": base64.b64encode(salt).decode(),
        "data": fernet.encrypt(text.encode("utf-8", "surrogateescape")).decode(),
        "encrypted": True,
    }


def decrypt_vault(stored: dict, password: str) -> str:
    """Decrypt a stored backup document"""
    try:
        salt = base64.b64decode(stored["salt"])
        token = stored["data"].encode()
    except (KeyError, TypeError, AttributeError, binascii.Error) as e:
        raise BackupError(f"Backup is corrupted: {e}") from e

    try:
        return Fernet(derive_key(password, salt)).decrypt(token).decode("utf-8", "surrogateescape")
    except InvalidToken:
        raise BackupError("Invalid password or corrupted data") from None


def write_backup(store: CredentialStore, path, password: str):
    """Encrypt the current vault into a backup file"""
    stored = encrypt_vault(store.read(), password)
    with open(path, "w") as f:
        json.dump(stored, f, indent=2)

    # Set restrictive permissions
    os.chmod(path, 0o600)
    debug_log(f"Backup of {store.path} written to {path}")


def read_backup(path, password: str) -> str:
    """Decrypt a backup file and return the vault text"""
    with open(path, "r", encoding="utf-8") as f:
        try:
            stored = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BackupError(f"Backup is not valid JSON: {e}") from e

    if not isinstance(stored, dict) or not stored.get("encrypted"):
        raise BackupError("Not an otps backup file")
    return decrypt_vault(stored, password)
