import os
import shutil
import tempfile

import pytest
from cryptography.hazmat.primitives import serialization

from nexuslog.core.settings import EncryptionSettings, NetworkSettings, StoreSettings
from nexuslog.security.hybrid import HybridEncryptor, generate_identity


@pytest.fixture
def tmp_dir():
    """Create a temporary directory for test data."""
    d = tempfile.mkdtemp(prefix="nexuslog_test_")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(scope="session")
def identity():
    return generate_identity(2048)


@pytest.fixture(scope="session")
def other_identity():
    return generate_identity(2048)


def _write_pem(private_key, path):
    with open(path, "wb") as f:
        f.write(
            private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
    return path


@pytest.fixture
def write_pem():
    return _write_pem


@pytest.fixture
def encryption_settings(tmp_dir, identity):
    key_path = _write_pem(identity, os.path.join(tmp_dir, "private.pem"))
    ipns_path = os.path.join(tmp_dir, "ipns.key")
    with open(ipns_path, "w") as f:
        f.write("k51qzi5uqu5dkml4vrxkesf5e1of62xic6s0un5bw4sq83f1av3jlotel9kpxs\n")
    return EncryptionSettings(private_key_file=key_path, ipns_key_file=ipns_path)


@pytest.fixture
def encryptor(identity, encryption_settings):
    return HybridEncryptor(identity.public_key(), encryption_settings)


@pytest.fixture
def store_settings(tmp_dir):
    return StoreSettings(
        binary="fake-ipfs",
        max_retries=3,
        retry_delay=0,
        timeout=5,
        pid_file=os.path.join(tmp_dir, "daemon.pid"),
        repo_dir=os.path.join(tmp_dir, "repo"),
    )


@pytest.fixture
def network_settings():
    return NetworkSettings(
        process_kill_timeout=0.5,
        cleanup_wait_timeout=0,
        daemon_shutdown_timeout=2,
    )
