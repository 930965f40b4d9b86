from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

STAMP_FILE = ".symwasm-stamp.json"

@dataclass(frozen=True)
class Stamp:
    name: str
    version: str
    toolchain: str  # "" for toolchain-independent trees

def load_stamp(install_path: Path) -> Optional[Stamp]:
    p = install_path / STAMP_FILE
    if not p.exists():
        return None
    try:
        obj = json.loads(p.read_text(encoding="utf-8"))
        return Stamp(name=str(obj["name"]), version=str(obj["version"]), toolchain=str(obj["toolchain"]))
    except (ValueError, KeyError, TypeError):
        # unreadable stamp: treat the dependency as incomplete
        return None

def write_stamp(install_path: Path, stamp: Stamp) -> None:
    install_path.mkdir(parents=True, exist_ok=True)
    (install_path / STAMP_FILE).write_text(
        json.dumps({"name": stamp.name, "version": stamp.version, "toolchain": stamp.toolchain}, indent=2, sort_keys=True),
        encoding="utf-8",
    )

def stamp_matches(install_path: Path, expected: Stamp) -> bool:
    return load_stamp(install_path) == expected
