from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import yaml

def load_mapping(path: Path) -> Dict[str, Any]:
    """Read a YAML file whose top level must be a mapping; raises ValueError otherwise."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ValueError(f"cannot read {path}: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValueError(f"malformed YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"malformed YAML in {path}: top-level must be a mapping")
    return data

def dump_mapping(data: Dict[str, Any]) -> str:
    return yaml.safe_dump(
        data,
        sort_keys=True,
        allow_unicode=True,
        default_flow_style=False,
        width=88,
    )
