from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Literal, Mapping, Optional, Tuple

from secretsync.core.errors import (
    CheckAndSetError,
    InvalidSecretNameError,
    InvalidSnapshotError,
    MountExistsError,
    MountNotFoundError,
    SecretNotFoundError,
    SecretVersionNotFoundError,
)
from secretsync.core.value import SecretData
from secretsync.schema.models import SecretMetadata, VersionMetadata, utcnow

EventKind = Literal["write", "delete"]
SNAPSHOT_FORMAT = 1


@dataclass(frozen=True)
class SecretEvent:
    kind: EventKind
    mount: str
    name: str
    version: int


Subscriber = Callable[[SecretEvent], None]


@dataclass
class SecretVersion:
    version: int
    data: Optional[SecretData]
    created_time: datetime
    deletion_time: Optional[datetime] = None
    destroyed: bool = False

    @property
    def readable(self) -> bool:
        return self.deletion_time is None and not self.destroyed

    def metadata(self) -> VersionMetadata:
        return VersionMetadata(
            version=self.version,
            created_time=self.created_time,
            deletion_time=self.deletion_time,
            destroyed=self.destroyed,
        )


@dataclass
class _Secret:
    name: str
    max_versions: int
    created_time: datetime
    updated_time: datetime
    versions: Dict[int, SecretVersion] = field(default_factory=dict)
    current_version: int = 0

    def current(self) -> Optional[SecretVersion]:
        return self.versions.get(self.current_version)


@dataclass
class _Mount:
    path: str
    max_versions: int = 0
    secrets: Dict[str, _Secret] = field(default_factory=dict)


def normalize_path(path: str) -> str:
    p = path.strip().strip("/")
    if not p:
        raise InvalidSecretNameError("path must not be empty")
    if any(part in ("", ".", "..") for part in p.split("/")):
        raise InvalidSecretNameError(f"invalid path: {path!r}")
    return p


class KVStore:
    """Versioned key/value secret store with change notifications.

    Mounts hold secrets; every ``put`` creates a new version. Subscribers are
    called synchronously after any mutation that changes the current readable
    value of a secret.
    """

    def __init__(self) -> None:
        self._mounts: Dict[str, _Mount] = {}
        self._subscribers: List[Subscriber] = []
        self._log = logging.getLogger("secretsync.store")

    # mounts

    def enable_mount(self, path: str, max_versions: int = 0) -> str:
        p = normalize_path(path)
        if p in self._mounts:
            raise MountExistsError(p)
        if max_versions < 0:
            raise ValueError("max_versions must be >= 0")
        self._mounts[p] = _Mount(path=p, max_versions=max_versions)
        self._log.info("enabled kv-v2 mount: path=%s", p)
        return p

    def disable_mount(self, path: str) -> None:
        mount = self._mount(path)
        for name in list(mount.secrets):
            self.delete_metadata(mount.path, name)
        del self._mounts[mount.path]
        self._log.info("disabled kv-v2 mount: path=%s", mount.path)

    def list_mounts(self) -> List[str]:
        return sorted(self._mounts)

    def has_mount(self, path: str) -> bool:
        try:
            return normalize_path(path) in self._mounts
        except InvalidSecretNameError:
            return False

    # subscriptions

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        self._subscribers.remove(callback)

    def _emit(self, kind: EventKind, mount: str, name: str, version: int) -> None:
        event = SecretEvent(kind=kind, mount=mount, name=name, version=version)
        for cb in list(self._subscribers):
            cb(event)

    # reads

    def get(
        self, mount: str, name: str, version: Optional[int] = None
    ) -> Tuple[SecretData, SecretVersion]:
        secret = self._secret(mount, name)
        ver = secret.current_version if version is None else int(version)
        sv = secret.versions.get(ver)
        if sv is None or not sv.readable or sv.data is None:
            raise SecretVersionNotFoundError((mount, name, ver))
        return sv.data, sv

    def read_current(self, mount: str, name: str) -> Optional[SecretData]:
        """Current readable data, or None when missing or deleted."""
        try:
            data, _ = self.get(mount, name)
        except (MountNotFoundError, SecretNotFoundError, SecretVersionNotFoundError):
            return None
        return data

    def metadata(self, mount: str, name: str) -> SecretMetadata:
        m = self._mount(mount)
        secret = self._secret(mount, name)
        return SecretMetadata(
            mount=m.path,
            name=secret.name,
            current_version=secret.current_version,
            oldest_version=min(secret.versions) if secret.versions else 0,
            max_versions=secret.max_versions,
            created_time=secret.created_time,
            updated_time=secret.updated_time,
            versions={v: sv.metadata() for v, sv in secret.versions.items()},
        )

    def list(self, mount: str, prefix: str = "") -> List[str]:
        m = self._mount(mount)
        return sorted(n for n in m.secrets if n.startswith(prefix))

    # writes

    def put(
        self,
        mount: str,
        name: str,
        data: Mapping[str, Any],
        cas: Optional[int] = None,
    ) -> SecretMetadata:
        m = self._mount(mount)
        key = normalize_path(name)
        values = self._coerce(data)
        secret = m.secrets.get(key)
        current = secret.current_version if secret is not None else 0
        if cas is not None and cas != current:
            raise CheckAndSetError(f"check-and-set mismatch: expected {cas}, current {current}")
        now = utcnow()
        if secret is None:
            secret = _Secret(name=key, max_versions=m.max_versions, created_time=now, updated_time=now)
            m.secrets[key] = secret
        ver = secret.current_version + 1
        secret.versions[ver] = SecretVersion(version=ver, data=SecretData(values), created_time=now)
        secret.current_version = ver
        secret.updated_time = now
        self._prune(secret)
        self._log.debug("kv put: mount=%s, secret=%s, version=%d", m.path, key, ver)
        self._emit("write", m.path, key, ver)
        return self.metadata(m.path, key)

    def patch(self, mount: str, name: str, data: Mapping[str, Any]) -> SecretMetadata:
        current, sv = self.get(mount, name)
        merged = current.reveal()
        merged.update(self._coerce(data))
        return self.put(mount, name, merged, cas=sv.version)

    def delete(self, mount: str, name: str, versions: Optional[Iterable[int]] = None) -> None:
        m = self._mount(mount)
        secret = self._secret(mount, name)
        targets = [secret.current_version] if versions is None else [int(v) for v in versions]
        now = utcnow()
        for v in targets:
            sv = secret.versions.get(v)
            if sv is not None and sv.deletion_time is None:
                sv.deletion_time = now
        secret.updated_time = now
        if secret.current_version in targets:
            self._emit("delete", m.path, secret.name, secret.current_version)

    def undelete(self, mount: str, name: str, versions: Iterable[int]) -> None:
        m = self._mount(mount)
        secret = self._secret(mount, name)
        restored = False
        for v in versions:
            sv = secret.versions.get(int(v))
            if sv is not None and not sv.destroyed and sv.deletion_time is not None:
                sv.deletion_time = None
                restored = restored or sv.version == secret.current_version
        secret.updated_time = utcnow()
        if restored:
            self._emit("write", m.path, secret.name, secret.current_version)

    def destroy(self, mount: str, name: str, versions: Iterable[int]) -> None:
        m = self._mount(mount)
        secret = self._secret(mount, name)
        cur = secret.current()
        was_readable = cur is not None and cur.readable
        for v in versions:
            sv = secret.versions.get(int(v))
            if sv is not None:
                sv.destroyed = True
                sv.data = None
        secret.updated_time = utcnow()
        cur = secret.current()
        if was_readable and (cur is None or not cur.readable):
            self._emit("delete", m.path, secret.name, secret.current_version)

    def delete_metadata(self, mount: str, name: str) -> None:
        m = self._mount(mount)
        secret = self._secret(mount, name)
        del m.secrets[secret.name]
        self._emit("delete", m.path, secret.name, secret.current_version)

    # persistence

    def snapshot(self) -> Dict[str, Any]:
        mounts: List[Dict[str, Any]] = []
        for m in self._mounts.values():
            secrets = []
            for s in m.secrets.values():
                secrets.append(
                    {
                        "name": s.name,
                        "max_versions": s.max_versions,
                        "created_time": s.created_time.isoformat(),
                        "updated_time": s.updated_time.isoformat(),
                        "current_version": s.current_version,
                        "versions": [
                            {
                                "version": sv.version,
                                "data": sv.data.reveal() if sv.data is not None else None,
                                "created_time": sv.created_time.isoformat(),
                                "deletion_time": (
                                    sv.deletion_time.isoformat() if sv.deletion_time else None
                                ),
                                "destroyed": sv.destroyed,
                            }
                            for sv in s.versions.values()
                        ],
                    }
                )
            mounts.append({"path": m.path, "max_versions": m.max_versions, "secrets": secrets})
        return {"format": SNAPSHOT_FORMAT, "mounts": mounts}

    def restore(self, snapshot: Mapping[str, Any]) -> None:
        """Replace the store contents. Subscribers are not notified."""
        if snapshot.get("format") != SNAPSHOT_FORMAT:
            raise InvalidSnapshotError("unsupported snapshot format")
        mounts: Dict[str, _Mount] = {}
        try:
            for md in snapshot.get("mounts", []):
                mount = _Mount(path=normalize_path(md["path"]), max_versions=int(md["max_versions"]))
                for sd in md.get("secrets", []):
                    secret = _Secret(
                        name=sd["name"],
                        max_versions=int(sd["max_versions"]),
                        created_time=datetime.fromisoformat(sd["created_time"]),
                        updated_time=datetime.fromisoformat(sd["updated_time"]),
                        current_version=int(sd["current_version"]),
                    )
                    for vd in sd.get("versions", []):
                        deleted = vd.get("deletion_time")
                        secret.versions[int(vd["version"])] = SecretVersion(
                            version=int(vd["version"]),
                            data=SecretData(vd["data"]) if vd.get("data") is not None else None,
                            created_time=datetime.fromisoformat(vd["created_time"]),
                            deletion_time=datetime.fromisoformat(deleted) if deleted else None,
                            destroyed=bool(vd.get("destroyed", False)),
                        )
                    mount.secrets[secret.name] = secret
                mounts[mount.path] = mount
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidSnapshotError("malformed snapshot") from exc
        self._mounts = mounts

    # helpers

    def _mount(self, path: str) -> _Mount:
        p = normalize_path(path)
        try:
            return self._mounts[p]
        except KeyError as exc:
            raise MountNotFoundError(p) from exc

    def _secret(self, mount: str, name: str) -> _Secret:
        m = self._mount(mount)
        key = normalize_path(name)
        try:
            return m.secrets[key]
        except KeyError as exc:
            raise SecretNotFoundError((m.path, key)) from exc

    @staticmethod
    def _coerce(data: Mapping[str, Any]) -> Dict[str, str]:
        if not isinstance(data, Mapping):
            raise TypeError("secret data must be a mapping")
        out: Dict[str, str] = {}
        for k, v in data.items():
            if not isinstance(k, str) or not k:
                raise InvalidSecretNameError(f"invalid key: {k!r}")
            if isinstance(v, (dict, list)) or v is None:
                raise TypeError(f"value for {k!r} must be a scalar")
            out[k] = v if isinstance(v, str) else str(v)
        return out

    @staticmethod
    def _prune(secret: _Secret) -> None:
        if secret.max_versions <= 0:
            return
        while len(secret.versions) > secret.max_versions:
            del secret.versions[min(secret.versions)]
