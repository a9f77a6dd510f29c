from __future__ import annotations

from typing import Mapping, Optional, Protocol


class DestinationClientProtocol(Protocol):
    def put(self, name: str, value: str, tags: Optional[Mapping[str, str]] = None) -> None: ...

    def delete(self, name: str) -> None: ...
