from __future__ import annotations

import re
from typing import Dict, List, Optional

from secretsync.core.errors import RemoteArgumentError
from secretsync.schema.models import Destination, DestinationType, Granularity

# disallowed characters and max length per provider
_RULES: Dict[DestinationType, tuple[re.Pattern[str], int]] = {
    DestinationType.AWS_SM: (re.compile(r"[^A-Za-z0-9/_+=.@-]"), 512),
    DestinationType.AZURE_KV: (re.compile(r"[^A-Za-z0-9-]"), 127),
    DestinationType.GCP_SM: (re.compile(r"[^A-Za-z0-9_-]"), 255),
    DestinationType.IN_MEMORY: (re.compile(r"[^A-Za-z0-9/_+=.@-]"), 512),
}


def sanitize(dtype: DestinationType, name: str) -> str:
    pattern, limit = _RULES[dtype]
    out = pattern.sub("-", name)
    if not out or len(out) > limit:
        raise RemoteArgumentError(f"secret name {name!r} is not valid for {dtype.value}")
    return out


def render_name(dest: Destination, mount: str, secret_path: str, secret_key: Optional[str] = None) -> str:
    raw = dest.effective_template.format(
        mount=mount,
        secret_path=secret_path,
        secret_key=secret_key or "",
    )
    return sanitize(dest.type, raw)


def render_names(dest: Destination, mount: str, secret_path: str, keys: List[str]) -> Dict[str, Optional[str]]:
    """Map destination-side names to the source key they carry.

    With secret-path granularity there is a single name carrying the whole
    secret (key ``None``); with secret-key granularity one name per key.
    """
    if dest.granularity is Granularity.SECRET_PATH:
        return {render_name(dest, mount, secret_path): None}
    out: Dict[str, Optional[str]] = {}
    for k in keys:
        name = render_name(dest, mount, secret_path, k)
        if name in out:
            raise RemoteArgumentError(f"keys {out[name]!r} and {k!r} collide on {name!r}")
        out[name] = k
    return out
