"""
Tests for SecretsManager.
"""

import json

import pytest

from cache_common.errors import ConfigInvalidError
from cache_common.secrets_manager import SecretsManager


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("CACHE_MASTER_KEY", "CACHE_SECRETS_FILE", "CACHE_REDIS_ACCESS_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def secrets_file(tmp_path):
    return str(tmp_path / "secrets.json")


def test_encrypt_decrypt(secrets_file):
    manager = SecretsManager(master_key="master", secrets_file=secrets_file)
    encrypted = manager.encrypt_secret("s3cret")
    assert encrypted != "s3cret"
    assert manager.decrypt_secret(encrypted) == "s3cret"


def test_environment_takes_precedence(monkeypatch, secrets_file):
    manager = SecretsManager(master_key="master", secrets_file=secrets_file)
    manager.set_secret("REDIS_ACCESS_KEY", "from-file")
    monkeypatch.setenv("CACHE_REDIS_ACCESS_KEY", "from-env")

    assert manager.get_secret("REDIS_ACCESS_KEY") == "from-env"


def test_file_is_encrypted_at_rest(secrets_file):
    manager = SecretsManager(master_key="master", secrets_file=secrets_file)
    manager.set_secret("REDIS_ACCESS_KEY", "plain-value")

    with open(secrets_file) as f:
        raw = json.load(f)
    assert raw["REDIS_ACCESS_KEY"] != "plain-value"
    assert manager.get_secret("REDIS_ACCESS_KEY") == "plain-value"


def test_wrong_master_key(secrets_file):
    SecretsManager(master_key="master", secrets_file=secrets_file).set_secret("REDIS_ACCESS_KEY", "v")
    other = SecretsManager(master_key="different", secrets_file=secrets_file)

    with pytest.raises(ConfigInvalidError):
        other.get_secret("REDIS_ACCESS_KEY")


def test_without_master_key_only_env(secrets_file):
    manager = SecretsManager(secrets_file=secrets_file)
    assert manager.get_secret("REDIS_ACCESS_KEY", default="fallback") == "fallback"
    with pytest.raises(ConfigInvalidError):
        manager.encrypt_secret("x")


def test_set_secret_requires_file():
    manager = SecretsManager(master_key="master")
    with pytest.raises(ConfigInvalidError):
        manager.set_secret("REDIS_ACCESS_KEY", "v")


def test_corrupt_file_ignored(secrets_file):
    with open(secrets_file, "w") as f:
        f.write("{not json")
    manager = SecretsManager(master_key="master", secrets_file=secrets_file)
    assert manager.get_secret("REDIS_ACCESS_KEY") is None
