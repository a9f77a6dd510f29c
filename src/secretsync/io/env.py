from __future__ import annotations

import os
import re
from typing import Any, Mapping, Optional

from secretsync.core.errors import MissingKeyMaterialError

_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def expand_env(value: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Expand ``${NAME}`` and ``${NAME:-default}`` references."""
    env = os.environ if environ is None else environ

    def _sub(m: re.Match[str]) -> str:
        name, default = m.group(1), m.group(2)
        found = env.get(name)
        if found:
            return found
        if default is not None:
            return default
        raise MissingKeyMaterialError(f"environment variable {name} is not set")

    return _REF.sub(_sub, value)


def expand_tree(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    if isinstance(value, str):
        return expand_env(value, environ)
    if isinstance(value, dict):
        return {k: expand_tree(v, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_tree(v, environ) for v in value]
    return value
