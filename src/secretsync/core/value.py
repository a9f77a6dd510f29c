from __future__ import annotations

import hashlib
import json
from typing import Dict, Iterator, Mapping

from pydantic import SecretStr


class SecretData:
    def __init__(self, data: Mapping[str, str]):
        self._secrets: Dict[str, SecretStr] = {k: SecretStr(str(v)) for k, v in data.items()}

    def get(self, key: str) -> str:
        return self._secrets[key].get_secret_value()

    def keys(self) -> list[str]:
        return sorted(self._secrets.keys())

    def reveal(self) -> Dict[str, str]:
        return {k: v.get_secret_value() for k, v in self._secrets.items()}

    def to_json(self) -> str:
        # canonical form: sorted keys, compact separators
        return json.dumps(self.reveal(), sort_keys=True, separators=(",", ":"))

    def digest(self) -> str:
        return hashlib.sha3_256(self.to_json().encode("utf-8")).hexdigest()

    def __contains__(self, key: object) -> bool:
        return key in self._secrets

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._secrets)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SecretData):
            return NotImplemented
        return self.reveal() == other.reveal()

    def __repr__(self) -> str:  # masked
        return "SecretData({" + ", ".join(f"{k!r}: '***'" for k in self.keys()) + "})"

    __str__ = __repr__


def digest_text(value: str) -> str:
    return hashlib.sha3_256(value.encode("utf-8")).hexdigest()
