from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel

from secretsync.app.associations import AssociationTable
from secretsync.app.engine import SyncEngine
from secretsync.core.errors import (
    DestinationNotFoundError,
    InvalidSnapshotError,
    MissingKeyMaterialError,
)
from secretsync.core.value import SecretData
from secretsync.io.enc import seal_with_key, seal_with_passphrase, unseal_with_key, unseal_with_passphrase
from secretsync.io.env import expand_tree
from secretsync.io.fs import DEFAULT_SNAPSHOT_FILENAME, default_key_path, resolve_config_path
from secretsync.io.yaml import read_yaml
from secretsync.provider.factory import ClientFactory
from secretsync.registry.destinations import DestinationKey, DestinationRegistry, TypeLike
from secretsync.schema.models import (
    Association,
    Destination,
    DestinationType,
    SecretMetadata,
    SyncConfig,
)
from secretsync.store.kv import KVStore

ENV_CONFIG = "SECRETSYNC_CONFIG"
ENV_SNAPSHOT = "SECRETSYNC_SNAPSHOT"
ENV_KEY_FILE = "SECRETSYNC_KEY_FILE"
ENV_PASSPHRASE = "SECRETSYNC_PASSPHRASE"


class SnapshotSettings(BaseModel):
    mode: Literal["key-file", "passphrase"] = "key-file"
    path: Optional[str] = None
    key_file_path: Optional[str] = None
    passphrase: Optional[str] = None  # tests convenience; prefer SECRETSYNC_PASSPHRASE


class SecretSyncSettings(BaseModel):
    auto_flush: bool = True
    config_path: Optional[str] = None
    snapshot: Optional[SnapshotSettings] = None


@dataclass
class SecretSync:
    settings: SecretSyncSettings = field(default_factory=SecretSyncSettings)
    factories: Optional[Dict[DestinationType, ClientFactory]] = None
    store: KVStore = field(init=False)
    registry: DestinationRegistry = field(init=False)
    associations: AssociationTable = field(init=False)
    engine: SyncEngine = field(init=False)

    def __post_init__(self) -> None:
        self._log = logging.getLogger("secretsync.client")
        self.store = KVStore()
        self.associations = AssociationTable()
        self.registry = DestinationRegistry(in_use=self._destination_in_use)
        self.engine = SyncEngine(self.store, self.registry, self.associations, self.factories)

    def _destination_in_use(self, key: DestinationKey) -> bool:
        return self.associations.has_destination(key) or self.engine.has_pending(key)

    def _after_write(self) -> None:
        if self.settings.auto_flush:
            self.engine.flush()

    # secret engine

    def enable_mount(self, path: str, max_versions: int = 0) -> str:
        return self.store.enable_mount(path, max_versions=max_versions)

    def disable_mount(self, path: str) -> None:
        self.store.disable_mount(path)
        self._after_write()

    def kv_put(
        self, mount: str, name: str, data: Mapping[str, Any], cas: Optional[int] = None
    ) -> SecretMetadata:
        meta = self.store.put(mount, name, data, cas=cas)
        self._after_write()
        return meta

    def kv_patch(self, mount: str, name: str, data: Mapping[str, Any]) -> SecretMetadata:
        meta = self.store.patch(mount, name, data)
        self._after_write()
        return meta

    def kv_get(self, mount: str, name: str, version: Optional[int] = None) -> SecretData:
        data, _ = self.store.get(mount, name, version)
        return data

    def kv_metadata(self, mount: str, name: str) -> SecretMetadata:
        return self.store.metadata(mount, name)

    def kv_list(self, mount: str, prefix: str = "") -> List[str]:
        return self.store.list(mount, prefix)

    def kv_delete(self, mount: str, name: str, versions: Optional[List[int]] = None) -> None:
        self.store.delete(mount, name, versions)
        self._after_write()

    def kv_undelete(self, mount: str, name: str, versions: List[int]) -> None:
        self.store.undelete(mount, name, versions)
        self._after_write()

    def kv_destroy(self, mount: str, name: str, versions: List[int]) -> None:
        self.store.destroy(mount, name, versions)
        self._after_write()

    def kv_delete_metadata(self, mount: str, name: str) -> None:
        self.store.delete_metadata(mount, name)
        self._after_write()

    # destinations

    def write_destination(self, type_: TypeLike, name: str, **fields: Any) -> Destination:
        dest = self.registry.write(type_, name, **fields)
        if self._resync_updated(dest):
            self._after_write()
        return dest

    def destination_from_env(
        self, type_: TypeLike, name: str, environ: Optional[Mapping[str, str]] = None, **overrides: Any
    ) -> Destination:
        dest = self.registry.from_env(type_, name, environ=environ, **overrides)
        if self._resync_updated(dest):
            self._after_write()
        return dest

    def _resync_updated(self, dest: Destination) -> bool:
        # new credentials or naming: push everything again
        if not self.associations.for_destination(dest.type, dest.name):
            return False
        self.engine.resync(dest.type, dest.name)
        return True

    def read_destination(self, type_: TypeLike, name: str) -> Dict[str, Any]:
        return self.registry.read(type_, name)

    def list_destinations(self, type_: Optional[TypeLike] = None) -> List[DestinationKey]:
        return self.registry.list(type_)

    def delete_destination(self, type_: TypeLike, name: str) -> None:
        self.registry.delete(type_, name)

    # associations

    def set_association(
        self, type_: TypeLike, name: str, mount: str, secret_name: Optional[str] = None
    ) -> Association:
        assoc = self.engine.associate(type_, name, mount, secret_name)
        self._after_write()
        return assoc

    def remove_association(
        self, type_: TypeLike, name: str, mount: str, secret_name: Optional[str] = None
    ) -> Association:
        assoc = self.engine.unassociate(type_, name, mount, secret_name)
        self._after_write()
        return assoc

    def status(self, type_: TypeLike, name: str) -> List[Association]:
        return self.engine.status(type_, name)

    def resync(self, type_: TypeLike, name: str) -> int:
        count = self.engine.resync(type_, name)
        self._after_write()
        return count

    def flush(self) -> int:
        return self.engine.flush()

    # configuration

    def load_config(
        self, path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
    ) -> SyncConfig:
        base = path or self.settings.config_path or os.getenv(ENV_CONFIG)
        if not base:
            raise FileNotFoundError(f"no config path given and {ENV_CONFIG} is not set")
        cfg_path = resolve_config_path(base)
        raw = expand_tree(read_yaml(cfg_path), environ)
        cfg = SyncConfig.model_validate(raw)
        for m in cfg.mounts:
            if not self.store.has_mount(m.path):
                self.store.enable_mount(m.path, max_versions=m.max_versions)
        for d in cfg.destinations:
            try:
                previous: Optional[Destination] = self.registry.get(d.type, d.name)
            except DestinationNotFoundError:
                previous = None
            dest = self.registry.write(d.type, d.name, **d.options)
            if previous is not None and previous.revealed() != dest.revealed():
                self._resync_updated(dest)
        for s in cfg.secrets:
            current = self.store.read_current(s.mount, s.name)
            if current is None or current.reveal() != s.data:
                self.store.put(s.mount, s.name, s.data)
        for a in cfg.associations:
            self.engine.associate(a.type, a.name, a.mount, a.secret_name)
        self._log.info(
            "config applied: path=%s, mounts=%d, destinations=%d, secrets=%d, associations=%d",
            cfg_path,
            len(cfg.mounts),
            len(cfg.destinations),
            len(cfg.secrets),
            len(cfg.associations),
        )
        self._after_write()
        return cfg

    # snapshots

    def _snapshot_path(self, path: Optional[str]) -> Path:
        if path:
            return Path(path)
        s = self.settings.snapshot
        if s and s.path:
            return Path(s.path)
        env = os.getenv(ENV_SNAPSHOT)
        if env:
            return Path(env).expanduser()
        return Path.cwd() / DEFAULT_SNAPSHOT_FILENAME

    def _use_passphrase(self) -> bool:
        s = self.settings.snapshot
        if s and s.mode == "passphrase":
            return True
        return bool(os.getenv(ENV_PASSPHRASE))

    def _load_passphrase(self) -> str:
        s = self.settings.snapshot
        if s and s.passphrase:
            return s.passphrase
        env = os.getenv(ENV_PASSPHRASE)
        if env:
            return env
        raise MissingKeyMaterialError("passphrase not provided")

    def _load_key(self, directory: Path) -> bytes:
        # Priority: explicit in settings -> env -> key next to snapshot -> default config path
        s = self.settings.snapshot
        if s and s.key_file_path:
            return Path(s.key_file_path).expanduser().read_bytes()
        env = os.getenv(ENV_KEY_FILE)
        if env:
            return Path(env).expanduser().read_bytes()
        local = directory / "secretsync.key"
        if local.exists():
            return local.read_bytes()
        default = default_key_path()
        if default.exists():
            return default.read_bytes()
        raise MissingKeyMaterialError("snapshot key file not found")

    def save(self, path: Optional[str] = None) -> str:
        """Seal store, destinations and associations to an encrypted file."""
        out = self._snapshot_path(path)
        payload = json.dumps(
            {
                "store": self.store.snapshot(),
                "destinations": self.registry.snapshot(),
                "associations": self.associations.snapshot(),
            },
            sort_keys=True,
        ).encode("utf-8")
        if self._use_passphrase():
            sealed = seal_with_passphrase(payload, self._load_passphrase())
        else:
            sealed = seal_with_key(payload, self._load_key(out.parent))
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(sealed)
        self._log.info("snapshot saved: path=%s", out)
        return str(out)

    def restore(self, path: Optional[str] = None) -> None:
        src = self._snapshot_path(path)
        data = src.read_bytes()
        if self._use_passphrase():
            plain = unseal_with_passphrase(data, self._load_passphrase())
        else:
            plain = unseal_with_key(data, self._load_key(src.parent))
        try:
            doc = json.loads(plain.decode("utf-8"))
            store, destinations, associations = doc["store"], doc["destinations"], doc["associations"]
        except (ValueError, KeyError, TypeError) as exc:
            raise InvalidSnapshotError("malformed snapshot payload") from exc
        _check_snapshot(store, destinations, associations)
        self.store.restore(store)
        self.registry.restore(destinations)
        self.associations.restore(associations)
        self.engine.reset()
        self._log.info("snapshot restored: path=%s", src)


def _check_snapshot(store: Any, destinations: Any, associations: Any) -> None:
    # validate every part before any live state is replaced
    staged_store = KVStore()
    staged_registry = DestinationRegistry()
    staged_associations = AssociationTable()
    try:
        staged_store.restore(store)
        staged_registry.restore(destinations)
        staged_associations.restore(associations)
    except InvalidSnapshotError:
        raise
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise InvalidSnapshotError("malformed snapshot payload") from exc
    known = set(staged_registry.list())
    for assoc in staged_associations.all():
        if (assoc.destination_type, assoc.destination_name) not in known:
            raise InvalidSnapshotError(
                f"association references unknown destination "
                f"{assoc.destination_type.value}/{assoc.destination_name}"
            )
        if not staged_store.has_mount(assoc.mount):
            raise InvalidSnapshotError(f"association references unknown mount {assoc.mount}")


def secretsync(settings: Optional[SecretSyncSettings] = None) -> SecretSync:
    return SecretSync(settings or SecretSyncSettings())
