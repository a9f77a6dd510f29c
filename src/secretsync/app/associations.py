from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from secretsync.core.errors import AssociationNotFoundError
from secretsync.schema.models import Association, AssociationKey, DestinationType
from secretsync.store.kv import normalize_path


class AssociationTable:
    def __init__(self) -> None:
        self._items: Dict[AssociationKey, Association] = {}

    @staticmethod
    def make_key(
        type_: DestinationType, name: str, mount: str, secret_name: Optional[str] = None
    ) -> AssociationKey:
        secret = normalize_path(secret_name) if secret_name is not None else None
        return (type_, name, normalize_path(mount), secret)

    def set(
        self, type_: DestinationType, name: str, mount: str, secret_name: Optional[str] = None
    ) -> Tuple[Association, bool]:
        """Return the association and whether it was newly created."""
        key = self.make_key(type_, name, mount, secret_name)
        existing = self._items.get(key)
        if existing is not None:
            return existing, False
        assoc = Association(
            destination_type=key[0],
            destination_name=key[1],
            mount=key[2],
            secret_name=key[3],
        )
        self._items[key] = assoc
        return assoc, True

    def get(
        self, type_: DestinationType, name: str, mount: str, secret_name: Optional[str] = None
    ) -> Association:
        key = self.make_key(type_, name, mount, secret_name)
        try:
            return self._items[key]
        except KeyError as exc:
            raise AssociationNotFoundError(key) from exc

    def lookup(self, key: AssociationKey) -> Optional[Association]:
        return self._items.get(key)

    def remove(self, key: AssociationKey) -> Association:
        try:
            return self._items.pop(key)
        except KeyError as exc:
            raise AssociationNotFoundError(key) from exc

    def for_destination(self, type_: DestinationType, name: str) -> List[Association]:
        return [a for k, a in sorted(self._items.items(), key=_sort_key) if k[0] is type_ and k[1] == name]

    def has_destination(self, key: Tuple[DestinationType, str]) -> bool:
        return any(k[0] is key[0] and k[1] == key[1] for k in self._items)

    def matching(self, mount: str, secret_name: str) -> List[Association]:
        m = normalize_path(mount)
        s = normalize_path(secret_name)
        return [a for _, a in sorted(self._items.items(), key=_sort_key) if a.covers(m, s)]

    def all(self) -> List[Association]:
        return [a for _, a in sorted(self._items.items(), key=_sort_key)]

    def snapshot(self) -> List[Dict[str, Any]]:
        return [a.model_dump(mode="json") for a in self.all()]

    def restore(self, items: List[Mapping[str, Any]]) -> None:
        restored: Dict[AssociationKey, Association] = {}
        for item in items:
            assoc = Association.model_validate(item)
            restored[assoc.key] = assoc
        self._items = restored


def _sort_key(item: Tuple[AssociationKey, Association]) -> Tuple[str, str, str, str]:
    k = item[0]
    return (k[0].value, k[1], k[2], k[3] or "")
