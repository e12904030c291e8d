import pytest

import otps_backup


@pytest.fixture
def fast_kdf(monkeypatch):
    """Keep PBKDF2 cheap in tests"""
    monkeypatch.setattr(otps_backup, "PBKDF2_ITERATIONS", 1000)


@pytest.fixture
def vault_path(tmp_path, monkeypatch):
    """Point the CLI at a vault inside tmp_path"""
    path = tmp_path / "vault"
    monkeypatch.setenv("OTPS_VAULT", str(path))
    return path
