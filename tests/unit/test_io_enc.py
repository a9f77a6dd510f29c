import os
import stat
from pathlib import Path

import pytest

pytestmark = pytest.mark.unit


def test_key_file_seal_unseal(tmp_path: Path):
    from secretsync.io.enc import MAGIC, key_gen, seal_with_key, unseal_with_key

    key_path = Path(key_gen(tmp_path / "k.key"))
    key = key_path.read_bytes()
    assert len(key) == 32
    if os.name == "posix":
        assert stat.S_IMODE(key_path.stat().st_mode) == 0o600

    sealed = seal_with_key(b"payload", key)
    assert sealed.startswith(MAGIC)
    assert b"payload" not in sealed
    assert unseal_with_key(sealed, key) == b"payload"


def test_wrong_key_and_tampering_fail():
    from secretsync.core.errors import DecryptError
    from secretsync.io.enc import seal_with_key, unseal_with_key

    key = b"k" * 32
    sealed = seal_with_key(b"payload", key)

    with pytest.raises(DecryptError):
        unseal_with_key(sealed, b"x" * 32)
    tampered = sealed[:-1] + bytes([sealed[-1] ^ 0x01])
    with pytest.raises(DecryptError):
        unseal_with_key(tampered, key)
    with pytest.raises(DecryptError):
        seal_with_key(b"payload", b"short")


def test_header_checks():
    from secretsync.core.errors import InvalidSnapshotError
    from secretsync.io.enc import seal_with_key, unseal_with_key, unseal_with_passphrase

    with pytest.raises(InvalidSnapshotError):
        unseal_with_key(b"garbage", b"k" * 32)
    key_sealed = seal_with_key(b"x", b"k" * 32)
    with pytest.raises(InvalidSnapshotError):
        unseal_with_passphrase(key_sealed, "pw")


def test_passphrase_seal_unseal():
    from secretsync.core.errors import DecryptError, InvalidSnapshotError
    from secretsync.io.enc import seal_with_passphrase, unseal_with_key, unseal_with_passphrase

    sealed = seal_with_passphrase(b"payload", "correct horse", memory_cost=1024)

    assert unseal_with_passphrase(sealed, "correct horse") == b"payload"
    with pytest.raises(DecryptError):
        unseal_with_passphrase(sealed, "wrong")
    with pytest.raises(InvalidSnapshotError):
        unseal_with_key(sealed, b"k" * 32)


def test_passphrase_header_parameters_are_bounded():
    from secretsync.core.errors import InvalidSnapshotError
    from secretsync.io.enc import MAGIC, seal_with_passphrase, unseal_with_passphrase

    sealed = seal_with_passphrase(b"payload", "pw", memory_cost=1024)
    # MAGIC | mode | kdf | time_cost | parallelism | memory_cost(4) | salt len | ...
    tc = len(MAGIC) + 2
    mc = tc + 2

    zero_time = sealed[:tc] + bytes([0]) + sealed[tc + 1 :]
    with pytest.raises(InvalidSnapshotError):
        unseal_with_passphrase(zero_time, "pw")

    huge_memory = sealed[:mc] + (2**31).to_bytes(4, "big") + sealed[mc + 4 :]
    with pytest.raises(InvalidSnapshotError):
        unseal_with_passphrase(huge_memory, "pw")

    with pytest.raises(InvalidSnapshotError):
        unseal_with_passphrase(sealed[: mc + 6], "pw")

    with pytest.raises(ValueError):
        seal_with_passphrase(b"payload", "pw", time_cost=0)
