from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from secretsync.core.errors import (
    DestinationInUseError,
    DestinationNotFoundError,
    MissingKeyMaterialError,
    UnsupportedDestinationError,
)
from secretsync.schema.models import DESTINATION_MODELS, Destination, DestinationType

DestinationKey = Tuple[DestinationType, str]
TypeLike = Union[DestinationType, str]

# environment variable -> destination field, per destination type
ENV_FIELDS: Dict[DestinationType, Dict[str, str]] = {
    DestinationType.AWS_SM: {
        "AWS_ACCESS_KEY_ID": "access_key_id",
        "AWS_SECRET_ACCESS_KEY": "secret_access_key",
        "AWS_SESSION_TOKEN": "session_token",
        "AWS_REGION": "region",
    },
    DestinationType.AZURE_KV: {
        "TENANT_ID": "tenant_id",
        "CLIENT_ID": "client_id",
        "CLIENT_SECRET": "client_secret",
        "KEY_VAULT_URI": "key_vault_uri",
    },
    DestinationType.GCP_SM: {
        "GOOGLE_CLOUD_PROJECT": "project_id",
    },
    DestinationType.IN_MEMORY: {},
}


def parse_type(value: TypeLike) -> DestinationType:
    if isinstance(value, DestinationType):
        return value
    try:
        return DestinationType(value)
    except ValueError as exc:
        raise UnsupportedDestinationError(f"unsupported destination type: {value!r}") from exc


class DestinationRegistry:
    def __init__(self, in_use: Optional[Callable[[DestinationKey], bool]] = None):
        self._items: Dict[DestinationKey, Destination] = {}
        self._in_use = in_use
        self._listeners: List[Callable[[DestinationKey], None]] = []
        self._log = logging.getLogger("secretsync.registry")

    def on_change(self, callback: Callable[[DestinationKey], None]) -> None:
        self._listeners.append(callback)

    def _changed(self, key: DestinationKey) -> None:
        for cb in list(self._listeners):
            cb(key)

    def write(self, type_: TypeLike, name: str, **fields: Any) -> Destination:
        """Create a destination, or merge ``fields`` into an existing one."""
        dtype = parse_type(type_)
        model = DESTINATION_MODELS[dtype]
        key: DestinationKey = (dtype, name)
        existing = self._items.get(key)
        payload: Dict[str, Any] = existing.revealed() if existing is not None else {}
        payload.update(fields)
        payload["name"] = name
        dest = model.model_validate(payload)
        self._items[key] = dest
        if self._log.isEnabledFor(logging.INFO):
            self._log.info(
                "destination %s: type=%s, name=%s",
                "updated" if existing is not None else "created",
                dtype.value,
                name,
            )
        if existing is not None:
            self._changed(key)
        return dest

    def get(self, type_: TypeLike, name: str) -> Destination:
        key: DestinationKey = (parse_type(type_), name)
        try:
            return self._items[key]
        except KeyError as exc:
            raise DestinationNotFoundError(key) from exc

    def read(self, type_: TypeLike, name: str) -> Dict[str, Any]:
        return self.get(type_, name).masked()

    def list(self, type_: Optional[TypeLike] = None) -> List[DestinationKey]:
        keys = sorted(self._items, key=lambda k: (k[0].value, k[1]))
        if type_ is None:
            return keys
        dtype = parse_type(type_)
        return [k for k in keys if k[0] is dtype]

    def delete(self, type_: TypeLike, name: str) -> None:
        dest = self.get(type_, name)
        if self._in_use is not None and self._in_use(dest.key):
            raise DestinationInUseError(
                f"destination {dest.type.value}/{name} still has associations; remove them first"
            )
        del self._items[dest.key]
        self._log.info("destination deleted: type=%s, name=%s", dest.type.value, name)
        self._changed(dest.key)

    def from_env(
        self,
        type_: TypeLike,
        name: str,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> Destination:
        """Write a destination whose credentials come from environment variables."""
        dtype = parse_type(type_)
        env = os.environ if environ is None else environ
        fields: Dict[str, Any] = {}
        for var, field in ENV_FIELDS[dtype].items():
            value = env.get(var)
            if value:
                fields[field] = value
        if dtype is DestinationType.GCP_SM:
            path = env.get("GOOGLE_APPLICATION_CREDENTIALS")
            if path:
                p = Path(path).expanduser()
                if not p.exists():
                    raise MissingKeyMaterialError(f"{p} not found")
                fields["credentials"] = p.read_text(encoding="utf-8")
        fields.update(overrides)
        return self.write(dtype, name, **fields)

    def snapshot(self) -> List[Dict[str, Any]]:
        return [{"type": d.type.value, **d.revealed()} for d in self._items.values()]

    def restore(self, items: List[Mapping[str, Any]]) -> None:
        restored: Dict[DestinationKey, Destination] = {}
        for item in items:
            data = dict(item)
            dtype = parse_type(data.pop("type"))
            dest = DESTINATION_MODELS[dtype].model_validate(data)
            restored[dest.key] = dest
        self._items = restored
