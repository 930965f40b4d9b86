from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from symwasm.core.ar import ArchiveFormatError, member_names, remove_members_in_place
from symwasm.core.yaml import load_mapping
from symwasm.errors import LinkError
from symwasm.logging import get_logger

log = get_logger()

DEFAULT_POLICY_FILE = Path(__file__).resolve().parent.parent / "data" / "runtime_strip.yaml"

@dataclass(frozen=True)
class StripPolicy:
    """Which members leave the bundled C runtime, and what the consumer must supply instead."""

    archive: str
    groups: Dict[str, Tuple[str, ...]]
    consumer_symbols: Dict[str, Tuple[str, ...]]

    @property
    def members(self) -> Tuple[str, ...]:
        out = []
        for names in self.groups.values():
            out.extend(n for n in names if n not in out)
        return tuple(out)

    def with_members(self, members: Optional[Sequence[str]]) -> "StripPolicy":
        if members is None:
            return self
        return StripPolicy(self.archive, {"configured": tuple(members)}, self.consumer_symbols)

def load_strip_policy(path: Path = DEFAULT_POLICY_FILE) -> StripPolicy:
    try:
        data = load_mapping(path)
    except ValueError as e:
        raise LinkError(f"strip policy: {e}") from e
    groups: Dict[str, Tuple[str, ...]] = {}
    symbols: Dict[str, Tuple[str, ...]] = {}
    for name, group in (data.get("groups") or {}).items():
        group = group or {}
        groups[str(name)] = tuple(str(m) for m in group.get("members") or [])
        symbols[str(name)] = tuple(str(s) for s in group.get("consumer_provides") or [])
    return StripPolicy(archive=str(data.get("archive", "libc.a")), groups=groups, consumer_symbols=symbols)

@dataclass(frozen=True)
class PatchWarning:
    archive: Path
    member: str

    def __str__(self) -> str:
        return f"{self.archive.name}: member {self.member} not present (already stripped or renamed by this SDK)"

@dataclass(frozen=True)
class PatchResult:
    archive: Path
    removed: Tuple[str, ...]
    warnings: Tuple[PatchWarning, ...]

def strip_members(archive: Path, members: Sequence[str]) -> PatchResult:
    """
    Remove `members` from the ar archive at `archive`, in place.

    Members that are not in the archive yield a PatchWarning rather than an
    error: their absence is exactly the state we want. Running this twice
    leaves the archive byte-identical to running it once.
    """
    try:
        present = set(member_names(archive.read_bytes()))
        removed = remove_members_in_place(archive, members)
    except (ArchiveFormatError, OSError) as e:
        raise LinkError(f"cannot patch {archive}: {e}") from e

    warnings = tuple(PatchWarning(archive, m) for m in members if m not in present)
    for w in warnings:
        log.warning("%s", w)
    if removed:
        log.info("stripped %s from %s", ", ".join(sorted(set(removed))), archive.name)
    return PatchResult(archive=archive, removed=tuple(sorted(set(removed))), warnings=warnings)
