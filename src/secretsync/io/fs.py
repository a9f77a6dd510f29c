from __future__ import annotations

from pathlib import Path

DEFAULT_CONFIG_FILENAME = "secretsync.yaml"
DEFAULT_SNAPSHOT_FILENAME = "secretsync.snapshot.enc"
DEFAULT_KEY_FILENAME = "secretsync.key"


def resolve_config_path(base: str) -> str:
    """Resolve a directory or file path to the configuration file.

    - If `base` is a directory, returns `<dir>/secretsync.yaml` if it exists.
    - If `base` is a file, returns it.
    - Otherwise, raises FileNotFoundError.
    """
    p = Path(base).expanduser()
    if p.is_dir():
        candidate = p / DEFAULT_CONFIG_FILENAME
        if candidate.exists():
            return str(candidate)
        raise FileNotFoundError(f"{candidate} not found")
    if p.is_file():
        return str(p)
    raise FileNotFoundError(f"{p} not found")


def default_key_path() -> Path:
    return Path.home() / ".config" / "secretsync" / DEFAULT_KEY_FILENAME
