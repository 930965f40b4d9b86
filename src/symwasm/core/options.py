from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from symwasm.config import (
    BuildConfig,
    BuildPaths,
    IntegerBackend,
    OptimizationProfile,
    OutputShape,
    Toolchain,
)
from symwasm.core.yaml import load_mapping
from symwasm.errors import ConfigurationError

E = TypeVar("E", bound=Enum)

BOOL_KEYS = ("threads", "embind", "single_file", "clean", "install_deps", "skip_library_build")
PATH_KEYS = (
    "source_dir",
    "deps_dir",
    "build_dir",
    "install_prefix",
    "bindings_source",
    "declarations_file",
)
KNOWN_KEYS = frozenset(
    ("toolchain", "shape", "integer", "optimization", "jobs", "project_root",
     "emsdk_root", "wasi_sdk_root", "strip_members")
    + BOOL_KEYS
    + PATH_KEYS
)

# spellings accepted besides the enum values themselves
_ALIASES: Dict[type, Dict[str, str]] = {
    Toolchain: {"hostruntime": "emscripten", "foreignunknown": "unknown", "wasm32-unknown-unknown": "unknown"},
    OutputShape: {"standalone": "main", "mainmodule": "main", "sidemodule": "side", "staticlibrary": "static"},
    IntegerBackend: {"headeronlymp": "boostmp", "arbitraryprecisionlib": "gmp"},
    OptimizationProfile: {"minsizerel": "minsize"},
}

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}

def _parse_enum(enum_cls: Type[E], key: str, value: Any, violations: List[str]) -> Optional[E]:
    s = str(value).strip().lower()
    s = _ALIASES.get(enum_cls, {}).get(s, s)
    try:
        return enum_cls(s)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        violations.append(f"{key}: invalid value {value!r} (expected one of: {allowed})")
        return None

def _parse_bool(key: str, value: Any, violations: List[str]) -> bool:
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    violations.append(f"{key}: expected a boolean, got {value!r}")
    return False

def _parse_jobs(value: Any, violations: List[str]) -> int:
    try:
        jobs = int(str(value).strip()) if not isinstance(value, bool) else None
    except ValueError:
        jobs = None
    if jobs is None or jobs < 1:
        violations.append(f"jobs: expected a positive integer, got {value!r}")
        return 1
    return jobs

def _parse_members(value: Any, violations: List[str]) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(m, str) and m.strip() for m in value):
        violations.append("strip_members: expected a list of archive member names")
        return None
    return tuple(m.strip() for m in value)

def _path_under(root: Path, value: Any) -> Path:
    p = Path(str(value)).expanduser()
    return p if p.is_absolute() else root / p

def resolve(raw: Mapping[str, Any]) -> BuildConfig:
    """
    Turn flat build options into a validated BuildConfig.

    Pure: nothing is read from or written to disk. Every problem found is
    collected and reported together in a single ConfigurationError.
    """
    violations: List[str] = []
    opts = {k: v for k, v in raw.items() if v is not None}

    for key in sorted(set(opts) - KNOWN_KEYS):
        violations.append(f"{key}: unknown option")

    toolchain = _parse_enum(Toolchain, "toolchain", opts.get("toolchain", "emscripten"), violations)

    shape: Optional[OutputShape] = None
    if "shape" in opts:
        shape = _parse_enum(OutputShape, "shape", opts["shape"], violations)
    elif toolchain is not None:
        shape = OutputShape.MAIN_MODULE if toolchain is Toolchain.HOST_RUNTIME else OutputShape.STATIC_LIBRARY

    integer = _parse_enum(IntegerBackend, "integer", opts.get("integer", "boostmp"), violations)
    optimization = _parse_enum(OptimizationProfile, "optimization", opts.get("optimization", "release"), violations)
    flags = {k: _parse_bool(k, opts[k], violations) for k in BOOL_KEYS if k in opts}
    jobs = _parse_jobs(opts["jobs"], violations) if "jobs" in opts else (os.cpu_count() or 4)
    strip_members = _parse_members(opts.get("strip_members"), violations)

    if toolchain is Toolchain.FOREIGN_UNKNOWN:
        if shape in (OutputShape.MAIN_MODULE, OutputShape.SIDE_MODULE):
            violations.append(f"shape={shape.value} requires toolchain=emscripten")
        if flags.get("threads"):
            violations.append(
                "threads cannot be enabled for toolchain=unknown; the consumer's final link owns the thread pool"
            )
        if flags.get("embind"):
            violations.append("embind requires toolchain=emscripten")
    elif toolchain is Toolchain.HOST_RUNTIME and shape is OutputShape.STATIC_LIBRARY:
        violations.append("shape=static requires toolchain=unknown")

    if flags.get("single_file") and shape is not None and shape is not OutputShape.MAIN_MODULE:
        violations.append(f"single_file only applies to shape=main, not shape={shape.value}")

    if violations:
        raise ConfigurationError(violations)

    root = Path(str(opts.get("project_root", "."))).expanduser()
    defaults = BuildPaths.under(root)
    paths = BuildPaths(
        project_root=root,
        **{k: _path_under(root, opts[k]) if k in opts else getattr(defaults, k) for k in PATH_KEYS},
    )

    root_key = "emsdk_root" if toolchain is Toolchain.HOST_RUNTIME else "wasi_sdk_root"
    toolchain_root = _path_under(root, opts[root_key]) if root_key in opts else None

    return BuildConfig(
        toolchain=toolchain,
        output_shape=shape,
        integer_backend=integer,
        optimization=optimization,
        paths=paths,
        jobs=jobs,
        toolchain_root=toolchain_root,
        strip_members=strip_members,
        **flags,
    )

def load_options_file(path: Path) -> Dict[str, Any]:
    """Options file: a YAML mapping using the same keys `resolve` accepts."""
    try:
        data = load_mapping(path)
    except ValueError as e:
        raise ConfigurationError([f"options file: {e}"]) from e
    return {str(k).replace("-", "_"): v for k, v in data.items()}
