from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from symwasm.config import ARTIFACT_BASENAME, FOREIGN_TAG, BuildConfig, OutputShape
from symwasm.errors import CompileError, LinkError
from symwasm.io.fs import copy_file, ensure_dir, file_size, remove_tree
from symwasm.io.process import run_command
from symwasm.logging import get_logger
from symwasm.stages.deps import ResolvedDependencies
from symwasm.stages.patch import PatchResult, StripPolicy, load_strip_policy, strip_members
from symwasm.stages.toolchain import ToolchainAdapter, ToolchainHandle, WasiSdkAdapter

log = get_logger()

INITIAL_MEMORY = "16MB"
MAXIMUM_MEMORY = "4GB"
STACK_SIZE = "1MB"
PTHREAD_POOL_SIZE = 4
EXPORT_NAME = "SymEngine"

SOURCE_HEADERS = ("cwrapper.h", "symengine_exception.h")
GENERATED_HEADERS = ("symengine_config.h",)
CXX_RUNTIME_ARCHIVES = ("libc++.a", "libc++abi.a")

class ArtifactKind(str, Enum):
    ARCHIVE = "archive"
    GLUE_SCRIPT = "glueScript"
    WASM_BINARY = "wasmBinary"
    TYPE_DECLARATION = "typeDeclaration"
    STATIC_BUNDLE = "staticBundle"      # toolchain runtime archive shipped with the library
    HEADER = "header"
    METADATA = "metadata"
    SUPPORT_SOURCE = "supportSource"

@dataclass(frozen=True)
class ArtifactDescriptor:
    kind: ArtifactKind
    path: Path
    size_bytes: int
    dest: str        # relative to the install prefix

def describe(kind: ArtifactKind, path: Path, dest: str) -> ArtifactDescriptor:
    return ArtifactDescriptor(kind=kind, path=path, size_bytes=file_size(path), dest=dest)

@dataclass(frozen=True)
class Assembly:
    artifacts: Tuple[ArtifactDescriptor, ...]
    flags: Tuple[str, ...] = ()
    patches: Tuple[PatchResult, ...] = ()
    policy: Optional[StripPolicy] = None

def output_dir(cfg: BuildConfig) -> Path:
    return cfg.paths.build_dir / f"out-{cfg.output_shape.value}"

def compile_flags(cfg: BuildConfig, deps: ResolvedDependencies, library_build_dir: Path) -> List[str]:
    flags = [
        *cfg.optimization.compiler_flags,
        "-std=c++17",
        f"-I{deps.source_tree}",
        f"-I{library_build_dir}",
    ]
    if cfg.is_host_runtime:
        flags.append("-fPIC")
    if cfg.uses_gmp and deps.gmp is not None:
        flags.append(f"-I{deps.gmp / 'include'}")
    else:
        flags.append(f"-I{deps.boost}")
    if cfg.threads:
        flags.append("-pthread")
    return flags

def link_flags(cfg: BuildConfig) -> List[str]:
    flags = [
        "-sALLOW_MEMORY_GROWTH=1",
        f"-sINITIAL_MEMORY={INITIAL_MEMORY}",
        f"-sMAXIMUM_MEMORY={MAXIMUM_MEMORY}",
        f"-sSTACK_SIZE={STACK_SIZE}",
        "-sEXPORT_ES6=1",
        "-sFILESYSTEM=0",
    ]
    if cfg.threads:
        flags += ["-pthread", f"-sPTHREAD_POOL_SIZE={PTHREAD_POOL_SIZE}"]

    if cfg.output_shape is OutputShape.MAIN_MODULE:
        flags += [
            "-sMAIN_MODULE=2",
            "-sMODULARIZE=1",
            f"-sEXPORT_NAME={EXPORT_NAME}",
            "-sENVIRONMENT=web,node,worker",
        ]
        if cfg.single_file:
            flags.append("-sSINGLE_FILE=1")
    elif cfg.output_shape is OutputShape.SIDE_MODULE:
        # a side module is loaded later by hosts we cannot see: export everything
        flags += ["-sSIDE_MODULE=1", "-sEXPORT_ALL=1", "--no-entry"]
    else:
        raise LinkError(f"shape={cfg.output_shape.value} is not linked")

    if cfg.embind:
        flags.append("-lembind")
    return flags

def link_inputs(cfg: BuildConfig, archive: Path, deps: ResolvedDependencies) -> List[str]:
    if cfg.output_shape is OutputShape.SIDE_MODULE:
        # keep every object, not only those this link happens to reference
        inputs = ["-Wl,--whole-archive", str(archive), "-Wl,--no-whole-archive"]
    else:
        inputs = [str(archive)]
    if cfg.uses_gmp and deps.gmp is not None:
        inputs.append(str(deps.gmp / "lib" / "libgmp.a"))
    return inputs

def _link_module(
    archive: Path,
    cfg: BuildConfig,
    deps: ResolvedDependencies,
    handle: ToolchainHandle,
    adapter: ToolchainAdapter,
    run: Callable[..., str],
) -> Assembly:
    out = output_dir(cfg)
    remove_tree(out)
    ensure_dir(out)
    env = adapter.environment(handle)

    cflags = compile_flags(cfg, deps, adapter.library_build_dir(cfg))
    lflags = link_flags(cfg)
    objects: List[str] = []

    if cfg.embind:
        bindings = cfg.paths.bindings_source
        if not bindings.is_file():
            raise LinkError(f"embind bindings not found at {bindings}")
        obj = cfg.paths.build_dir / "bindings.o"
        log.info("compiling embind bindings")
        run([str(handle.cxx), *cflags, "-c", str(bindings), "-o", str(obj)], cwd=cfg.paths.build_dir, env=env, error=CompileError)
        objects.append(str(obj))

    if cfg.output_shape is OutputShape.MAIN_MODULE:
        target = out / f"{ARTIFACT_BASENAME}.js"
    else:
        target = out / f"{ARTIFACT_BASENAME}.wasm"

    log.info("linking %s module", cfg.output_shape.value)
    run(
        [str(handle.cxx), *cflags, *lflags, *objects, *link_inputs(cfg, archive, deps), "-o", str(target)],
        cwd=out,
        env=env,
        error=LinkError,
    )

    if not target.is_file():
        raise LinkError(f"link finished but {target} was not produced")

    artifacts: List[ArtifactDescriptor] = []
    if cfg.output_shape is OutputShape.MAIN_MODULE:
        artifacts.append(describe(ArtifactKind.GLUE_SCRIPT, target, target.name))
        if not cfg.single_file:
            wasm = target.with_suffix(".wasm")
            if not wasm.is_file():
                raise LinkError(f"link finished but {wasm} was not produced")
            artifacts.append(describe(ArtifactKind.WASM_BINARY, wasm, wasm.name))
    else:
        artifacts.append(describe(ArtifactKind.WASM_BINARY, target, target.name))

    return Assembly(artifacts=tuple(artifacts), flags=tuple(cflags + lflags))

def _stage_static_bundle(
    archive: Path,
    cfg: BuildConfig,
    deps: ResolvedDependencies,
    handle: ToolchainHandle,
    adapter: ToolchainAdapter,
) -> Assembly:
    if not isinstance(adapter, WasiSdkAdapter):
        raise LinkError("shape=static requires toolchain=unknown")

    bundle = output_dir(cfg)
    remove_tree(bundle)
    lib_dir = bundle / "lib"
    inc_dir = bundle / "include" / "symengine"
    ensure_dir(lib_dir)
    ensure_dir(inc_dir)
    lib_dest = f"{FOREIGN_TAG}/lib"
    inc_dest = f"{FOREIGN_TAG}/include/symengine"

    # order matters: it is the link order recorded for the consumer
    artifacts: List[ArtifactDescriptor] = []
    staged = copy_file(archive, lib_dir / archive.name)
    artifacts.append(describe(ArtifactKind.ARCHIVE, staged, f"{lib_dest}/{staged.name}"))

    if cfg.uses_gmp and deps.gmp is not None:
        gmp_lib = copy_file(deps.gmp / "lib" / "libgmp.a", lib_dir / "libgmp.a")
        artifacts.append(describe(ArtifactKind.ARCHIVE, gmp_lib, f"{lib_dest}/{gmp_lib.name}"))

    policy = load_strip_policy().with_members(cfg.strip_members)
    runtime_dir = adapter.runtime_lib_dir(handle)
    patches: List[PatchResult] = []
    for name in (*CXX_RUNTIME_ARCHIVES, policy.archive):
        src = runtime_dir / name
        if not src.is_file():
            log.warning("wasi-sdk runtime archive not found: %s", src)
            continue
        staged = copy_file(src, lib_dir / name)
        if name == policy.archive:
            patches.append(strip_members(staged, policy.members))
        artifacts.append(describe(ArtifactKind.STATIC_BUNDLE, staged, f"{lib_dest}/{name}"))

    headers = [deps.source_tree / "symengine" / h for h in SOURCE_HEADERS]
    headers += [adapter.library_build_dir(cfg) / "symengine" / h for h in GENERATED_HEADERS]
    for h in headers:
        if not h.is_file():
            raise LinkError(f"header not found: {h}")
        staged = copy_file(h, inc_dir / h.name)
        artifacts.append(describe(ArtifactKind.HEADER, staged, f"{inc_dest}/{h.name}"))

    return Assembly(artifacts=tuple(artifacts), patches=tuple(patches), policy=policy)

def assemble(
    archive: Path,
    cfg: BuildConfig,
    deps: ResolvedDependencies,
    handle: ToolchainHandle,
    adapter: ToolchainAdapter,
    *,
    run: Callable[..., str] = run_command,
) -> Assembly:
    """Produce the artifacts for the configured output shape from `libsymengine.a`."""
    if cfg.output_shape is OutputShape.STATIC_LIBRARY:
        return _stage_static_bundle(archive, cfg, deps, handle, adapter)
    return _link_module(archive, cfg, deps, handle, adapter, run)
