class OtpError(Exception):
    """Base class for otps errors."""


# Secrets / engine
class InvalidSecretEncoding(OtpError, ValueError):
    pass


class CounterOverflow(OtpError, OverflowError):
    pass


# Vault
class MalformedRecord(OtpError, ValueError):
    pass


class CredentialNotFound(OtpError, LookupError):
    def __init__(self, name: str):
        super().__init__(f"There is no endpoint named '{name}'")
        self.name = name


class VaultIOError(OtpError, OSError):
    pass


# Import / backup
class UnsupportedEntry(OtpError, ValueError):
    pass


class BackupError(OtpError):
    pass
