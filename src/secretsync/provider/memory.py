from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Tuple

from secretsync.core.errors import MissingRemoteSecretError


class InMemoryDestination:
    """Dict-backed destination used for local runs and tests."""

    def __init__(self) -> None:
        self.secrets: Dict[str, Tuple[str, Dict[str, str]]] = {}
        self.calls: List[Tuple[str, str]] = []

    def put(self, name: str, value: str, tags: Optional[Mapping[str, str]] = None) -> None:
        self.calls.append(("put", name))
        self.secrets[name] = (value, dict(tags or {}))

    def delete(self, name: str) -> None:
        self.calls.append(("delete", name))
        if name not in self.secrets:
            raise MissingRemoteSecretError(name)
        del self.secrets[name]

    def value(self, name: str) -> str:
        try:
            return self.secrets[name][0]
        except KeyError as exc:
            raise MissingRemoteSecretError(name) from exc
