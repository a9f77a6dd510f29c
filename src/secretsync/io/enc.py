from __future__ import annotations

import os
import secrets
import stat
from pathlib import Path
from typing import Optional, Union

from argon2.low_level import Type as Argon2Type
from argon2.low_level import hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from secretsync.core.errors import DecryptError, InvalidSnapshotError
from secretsync.io.fs import default_key_path

MAGIC = b"SSNAP1"  # secretsync sealed snapshot v1
MODE_KEYFILE = 0x00
MODE_PASSPHRASE = 0x01
KDF_ID_ARGON2ID = 0x01
NONCE_SIZE = 12
KEY_SIZE = 32
# accepted argon2id parameters for sealed snapshots
MAX_TIME_COST = 16
MAX_PARALLELISM = 16
MAX_MEMORY_COST = 2**20  # KiB
MIN_SALT_SIZE = 8


def key_gen(out: Optional[Union[str, Path]] = None) -> str:
    """Write a random 32-byte snapshot key readable only by the owner."""
    out_path = Path(out) if out is not None else default_key_path()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(secrets.token_bytes(KEY_SIZE))
    os.chmod(out_path, stat.S_IRUSR | stat.S_IWUSR)  # 0o600
    return str(out_path)


def seal_with_key(plaintext: bytes, key: bytes) -> bytes:
    if len(key) != KEY_SIZE:
        raise DecryptError("snapshot key must be 32 bytes")
    nonce = os.urandom(NONCE_SIZE)
    header = MAGIC + bytes([MODE_KEYFILE])
    # header doubles as AAD so the mode byte cannot be swapped
    return header + nonce + AESGCM(key).encrypt(nonce, plaintext, header)


def unseal_with_key(data: bytes, key: bytes) -> bytes:
    header = MAGIC + bytes([MODE_KEYFILE])
    if not data.startswith(MAGIC):
        raise InvalidSnapshotError("missing or invalid magic header")
    if not data.startswith(header):
        raise InvalidSnapshotError("not key-file mode payload")
    idx = len(header)
    nonce = data[idx : idx + NONCE_SIZE]
    ct = data[idx + NONCE_SIZE :]
    try:
        return AESGCM(key).decrypt(nonce, ct, header)
    except (InvalidTag, ValueError) as exc:
        raise DecryptError("decryption failed") from exc


def _kdf_argon2id(
    passphrase: str,
    salt: bytes,
    *,
    time_cost: int = 2,
    memory_cost: int = 2**16,
    parallelism: int = 1,
) -> bytes:
    return hash_secret_raw(
        secret=passphrase.encode("utf-8"),
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=KEY_SIZE,
        type=Argon2Type.ID,
    )


def seal_with_passphrase(
    plaintext: bytes,
    passphrase: str,
    *,
    time_cost: int = 2,
    memory_cost: int = 2**16,
    parallelism: int = 1,
) -> bytes:
    if not 1 <= time_cost <= MAX_TIME_COST or not 1 <= parallelism <= MAX_PARALLELISM:
        raise ValueError("argon2id parameters out of range")
    if not 8 * parallelism <= memory_cost <= MAX_MEMORY_COST:
        raise ValueError("argon2id parameters out of range")
    salt = os.urandom(16)
    key = _kdf_argon2id(
        passphrase, salt, time_cost=time_cost, memory_cost=memory_cost, parallelism=parallelism
    )
    nonce = os.urandom(NONCE_SIZE)
    # MAGIC | MODE | KDF_ID | tc(1) | par(1) | mc(4) | sl(1) | salt | nonce | ct
    header = MAGIC + bytes([MODE_PASSPHRASE, KDF_ID_ARGON2ID, time_cost & 0xFF, parallelism & 0xFF])
    header += memory_cost.to_bytes(4, "big") + bytes([len(salt)]) + salt
    return header + nonce + AESGCM(key).encrypt(nonce, plaintext, header)


def unseal_with_passphrase(data: bytes, passphrase: str) -> bytes:
    if not data.startswith(MAGIC):
        raise InvalidSnapshotError("missing or invalid magic header")
    idx = len(MAGIC)
    if len(data) <= idx or data[idx] != MODE_PASSPHRASE:
        raise InvalidSnapshotError("not passphrase-encoded payload")
    idx += 1
    if len(data) < idx + 8 or data[idx] != KDF_ID_ARGON2ID:
        raise InvalidSnapshotError("unsupported KDF id")
    time_cost = data[idx + 1]
    parallelism = data[idx + 2]
    memory_cost = int.from_bytes(data[idx + 3 : idx + 7], "big")
    sl = data[idx + 7]
    if not 1 <= time_cost <= MAX_TIME_COST or not 1 <= parallelism <= MAX_PARALLELISM:
        raise InvalidSnapshotError("argon2id parameters out of range")
    if not 8 * parallelism <= memory_cost <= MAX_MEMORY_COST or sl < MIN_SALT_SIZE:
        raise InvalidSnapshotError("argon2id parameters out of range")
    idx += 8
    if len(data) < idx + sl + NONCE_SIZE:
        raise InvalidSnapshotError("truncated payload")
    salt = data[idx : idx + sl]
    header = data[: idx + sl]
    nonce = data[idx + sl : idx + sl + NONCE_SIZE]
    ct = data[idx + sl + NONCE_SIZE :]
    key = _kdf_argon2id(
        passphrase, salt, time_cost=time_cost, memory_cost=memory_cost, parallelism=parallelism
    )
    try:
        return AESGCM(key).decrypt(nonce, ct, header)
    except (InvalidTag, ValueError) as exc:
        raise DecryptError("decryption failed") from exc
