from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


def read_yaml_text(text: str) -> dict[str, Any]:
    data = yaml.safe_load(text)
    if data is not None and not isinstance(data, dict):
        raise ValueError("top-level YAML document must be a mapping")
    return data or {}


def read_yaml(path: str) -> dict[str, Any]:
    p = Path(path)
    return read_yaml_text(p.read_text(encoding="utf-8"))
