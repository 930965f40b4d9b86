from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

from symwasm.config import ARTIFACT_BASENAME, FOREIGN_TAG, BuildConfig, OutputShape
from symwasm.core.hashing import sha256_file
from symwasm.core.templates import render
from symwasm.core.yaml import dump_mapping
from symwasm.errors import InstallError
from symwasm.io.fs import copy_file, ensure_dir, write_text_utf8
from symwasm.logging import get_logger
from symwasm.stages.link import ArtifactDescriptor, ArtifactKind, Assembly, describe
from symwasm.stages.patch import PatchResult, StripPolicy

log = get_logger()

HOST_METADATA = f"{ARTIFACT_BASENAME}.build.yaml"
BUNDLE_METADATA = f"{FOREIGN_TAG}/build.yaml"
STUBS_DEST = f"{FOREIGN_TAG}/share/symwasm/runtime_stubs.c"
LINKABLE = (ArtifactKind.ARCHIVE, ArtifactKind.STATIC_BUNDLE)

def human_size(n: int) -> str:
    size = float(n)
    for unit in ("B", "KiB", "MiB"):
        if size < 1024 or unit == "MiB":
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GiB"

@dataclass(frozen=True)
class BuildReport:
    config: BuildConfig
    artifacts: Tuple[ArtifactDescriptor, ...] = ()
    flags: Tuple[str, ...] = ()
    patches: Tuple[PatchResult, ...] = ()

    def of_kind(self, kind: ArtifactKind) -> List[ArtifactDescriptor]:
        return [a for a in self.artifacts if a.kind is kind]

    def summary_lines(self) -> List[str]:
        cfg = self.config
        lines = [
            "Build summary:",
            f"  Toolchain: {cfg.toolchain.value}",
            f"  Shape: {cfg.output_shape.value}",
            f"  Integer class: {cfg.integer_backend.value}",
            f"  Build type: {cfg.optimization.cmake_build_type}",
            f"  Threads: {cfg.threads}  Embind: {cfg.embind}  Single file: {cfg.single_file}",
        ]
        if self.artifacts:
            lines.append("  Artifacts:")
            width = max(len(a.kind.value) for a in self.artifacts)
            for a in self.artifacts:
                lines.append(f"    {a.kind.value:<{width}}  {human_size(a.size_bytes):>10}  {a.path}")
        else:
            lines.append("  Artifacts: none (library build skipped)")
        if self.flags:
            lines.append(f"  Flags: {' '.join(self.flags)}")
        for p in self.patches:
            lines.append(f"  Stripped from {p.archive.name}: {', '.join(p.removed) or 'nothing'}")
            lines.extend(f"  Warning: {w}" for w in p.warnings)
        return lines

def link_order(artifacts: Sequence[ArtifactDescriptor]) -> List[str]:
    """Library names in the order a consumer must pass them to its linker."""
    out = []
    for a in artifacts:
        if a.kind in LINKABLE:
            name = Path(a.dest).name
            out.append(name[3:-2] if name.startswith("lib") and name.endswith(".a") else name)
    return out

DESTRUCTOR_PREAMBLE = """
/*
 * Destructor registration is a no-op: hosts that run constructors and
 * destructors around every exported call would otherwise destroy
 * SymEngine's global constants after the first call.
 */
"""

# libc member -> no-op replacement for the symbol it defined
DESTRUCTOR_STUBS = {
    "__cxa_atexit.o": """
typedef void (*symwasm_dtor_fn)(void *);

int __cxa_atexit(symwasm_dtor_fn func, void *arg, void *dso_handle) {
    (void)func;
    (void)arg;
    (void)dso_handle;
    return 0;
}
""",
    "atexit.o": """
int atexit(void (*func)(void)) {
    (void)func;
    return 0;
}
""",
}

def render_runtime_stubs(policy: StripPolicy, removed: Sequence[str]) -> str:
    """Only members actually removed get a stub; the rest still define their symbols."""
    allocator = policy.consumer_symbols.get("allocator", ())
    bodies = [DESTRUCTOR_STUBS[m] for m in DESTRUCTOR_STUBS if m in removed]
    return render(
        "runtime_stubs.c.in",
        foreign_tag=FOREIGN_TAG,
        archive=policy.archive,
        removed_members=", ".join(removed) or "(nothing)",
        allocator_symbols=", ".join(allocator) or "(nothing)",
        stubs=DESTRUCTOR_PREAMBLE + "".join(bodies) if bodies else "",
    )

def build_metadata(cfg: BuildConfig, installed: Sequence[ArtifactDescriptor], assembly: Assembly) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "config": {
            "toolchain": cfg.toolchain.value,
            "shape": cfg.output_shape.value,
            "integer": cfg.integer_backend.value,
            "optimization": cfg.optimization.value,
            "threads": cfg.threads,
            "embind": cfg.embind,
            "single_file": cfg.single_file,
        },
        "artifacts": [
            {"kind": a.kind.value, "path": a.dest, "size": a.size_bytes, "sha256": sha256_file(a.path)}
            for a in installed
        ],
    }
    if assembly.flags:
        data["flags"] = list(assembly.flags)
    if cfg.output_shape is OutputShape.STATIC_LIBRARY:
        data["link_order"] = link_order(installed)
        if assembly.policy is not None:
            data["consumer_provides"] = {k: list(v) for k, v in assembly.policy.consumer_symbols.items()}
        data["stripped"] = {p.archive.name: list(p.removed) for p in assembly.patches}
    return data

def install(assembly: Assembly, cfg: BuildConfig) -> BuildReport:
    """
    Copy assembled artifacts into the install prefix and write the companion
    files for the shape. Existing files from an earlier run are overwritten.
    """
    root = cfg.paths.install_prefix
    declarations = cfg.paths.declarations_file
    if cfg.output_shape is OutputShape.MAIN_MODULE and not declarations.is_file():
        raise InstallError(f"type declarations not found at {declarations}")

    ensure_dir(root)
    installed: List[ArtifactDescriptor] = []
    for a in assembly.artifacts:
        dst = copy_file(a.path, root / a.dest)
        installed.append(describe(a.kind, dst, a.dest))

    if cfg.output_shape is OutputShape.MAIN_MODULE:
        dest = f"{ARTIFACT_BASENAME}.d.ts"
        dst = copy_file(declarations, root / dest)
        installed.append(describe(ArtifactKind.TYPE_DECLARATION, dst, dest))

    if cfg.output_shape is OutputShape.STATIC_LIBRARY and assembly.policy is not None:
        removed = [m for p in assembly.patches for m in p.removed]
        stubs = root / STUBS_DEST
        write_text_utf8(stubs, render_runtime_stubs(assembly.policy, removed))
        installed.append(describe(ArtifactKind.SUPPORT_SOURCE, stubs, STUBS_DEST))

    meta_dest = BUNDLE_METADATA if cfg.output_shape is OutputShape.STATIC_LIBRARY else HOST_METADATA
    meta = root / meta_dest
    write_text_utf8(meta, dump_mapping(build_metadata(cfg, installed, assembly)))
    installed.append(describe(ArtifactKind.METADATA, meta, meta_dest))

    log.info("installed %d artifacts under %s", len(installed), root)
    return BuildReport(config=cfg, artifacts=tuple(installed), flags=assembly.flags, patches=assembly.patches)
