from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from symwasm.config import BOOST_VERSION, GMP_VERSION, SYMENGINE_VERSION, BuildConfig
from symwasm.errors import DependencyAcquisitionError, DependencyBuildError
from symwasm.io.fetch import fetch_source
from symwasm.io.fs import ensure_dir, remove_tree
from symwasm.io.process import run_command
from symwasm.logging import get_logger
from symwasm.stages.cache import Stamp, stamp_matches, write_stamp

if TYPE_CHECKING:
    from symwasm.stages.toolchain import ToolchainAdapter, ToolchainHandle

log = get_logger()

Fetch = Callable[..., Path]
Run = Callable[..., str]

@dataclass(frozen=True)
class DependencySpec:
    name: str
    version: str
    toolchain: str                 # toolchain tag, "" when the tree is toolchain-independent
    source_url: str
    install_path: Path
    marker: str                    # relative path that exists once the dependency is usable
    top_dir: str = ""              # directory inside the source tarball
    source: Optional["DependencySpec"] = None  # set for dependencies built from source

    @property
    def needs_build(self) -> bool:
        return self.source is not None

    @property
    def stamp(self) -> Stamp:
        return Stamp(name=self.name, version=self.version, toolchain=self.toolchain)

    def __str__(self) -> str:
        suffix = f" ({self.toolchain})" if self.toolchain else ""
        return f"{self.name} {self.version}{suffix}"

@dataclass(frozen=True)
class ResolvedDependencies:
    source_tree: Path
    boost: Path
    gmp: Optional[Path] = None     # install prefix, only with integer=gmp

def symengine_spec(cfg: BuildConfig) -> DependencySpec:
    v = SYMENGINE_VERSION
    return DependencySpec(
        name="symengine",
        version=v,
        toolchain="",
        source_url=f"https://github.com/symengine/symengine/archive/refs/tags/v{v}.tar.gz",
        install_path=cfg.paths.source_dir,
        marker="symengine/cwrapper.h",
        top_dir=f"symengine-{v}",
    )

def boost_spec(cfg: BuildConfig) -> DependencySpec:
    v = BOOST_VERSION
    underscored = v.replace(".", "_")
    return DependencySpec(
        name="boost",
        version=v,
        toolchain="",
        source_url=f"https://archives.boost.io/release/{v}/source/boost_{underscored}.tar.gz",
        install_path=cfg.paths.deps_dir / f"boost-{v}",
        marker="boost/version.hpp",
        top_dir=f"boost_{underscored}",
    )

def gmp_spec(cfg: BuildConfig) -> DependencySpec:
    v = GMP_VERSION
    source = DependencySpec(
        name="gmp-source",
        version=v,
        toolchain="",
        source_url=f"https://ftp.gnu.org/gnu/gmp/gmp-{v}.tar.xz",
        install_path=cfg.paths.deps_dir / f"gmp-{v}",
        marker="configure",
        top_dir=f"gmp-{v}",
    )
    return DependencySpec(
        name="gmp",
        version=v,
        toolchain=cfg.toolchain.tag,
        source_url=source.source_url,
        install_path=cfg.paths.deps_dir / f"gmp-{v}-{cfg.toolchain.tag}",
        marker="lib/libgmp.a",
        source=source,
    )

def is_complete(spec: DependencySpec) -> bool:
    if not (spec.install_path / spec.marker).exists():
        return False
    if spec.needs_build:
        # the marker library may exist from an interrupted `make install`
        return stamp_matches(spec.install_path, spec.stamp)
    return True

def _build_autotools(
    spec: DependencySpec,
    source_tree: Path,
    cfg: BuildConfig,
    adapter: "ToolchainAdapter",
    handle: "ToolchainHandle",
    run: Run,
) -> None:
    build_dir = cfg.paths.build_dir / f"{spec.name}-{spec.toolchain}"
    remove_tree(build_dir)
    remove_tree(spec.install_path)
    ensure_dir(build_dir)
    ensure_dir(spec.install_path)

    env = adapter.environment(handle)
    configure = source_tree / "configure"
    # --disable-assembly: GMP's hand-written assembly targets native CPUs only
    run(adapter.autotools_configure(handle, configure, spec.install_path), cwd=build_dir, env=env, error=DependencyBuildError)
    run(adapter.make_command(handle, cfg.jobs), cwd=build_dir, env=env, error=DependencyBuildError)
    run(adapter.make_command(handle, 1, "install"), cwd=build_dir, env=env, error=DependencyBuildError)

def ensure(
    spec: DependencySpec,
    cfg: BuildConfig,
    *,
    adapter: Optional["ToolchainAdapter"] = None,
    handle: Optional["ToolchainHandle"] = None,
    fetch: Fetch = fetch_source,
    run: Run = run_command,
) -> Path:
    """
    Make `spec` available at its install path and return that path.

    A dependency that is already complete is returned without any network or
    build activity. Built dependencies get their completion stamp only after
    `make install` succeeded, so an interrupted build is redone next time.
    """
    if is_complete(spec):
        log.info("%s already present at %s", spec, spec.install_path)
        return spec.install_path

    if not spec.needs_build:
        log.info("fetching %s", spec)
        fetch(spec.source_url, spec.install_path, top_dir=spec.top_dir)
        if not (spec.install_path / spec.marker).exists():
            raise DependencyAcquisitionError(f"{spec} fetched but {spec.marker} is missing")
        return spec.install_path

    if adapter is None or handle is None:
        raise DependencyBuildError(f"{spec} must be built but no toolchain was provided")

    source_tree = ensure(spec.source, cfg, fetch=fetch, run=run)
    log.info("building %s", spec)
    _build_autotools(spec, source_tree, cfg, adapter, handle, run)
    if not (spec.install_path / spec.marker).exists():
        raise DependencyBuildError(f"{spec} build finished but {spec.marker} was not installed")
    write_stamp(spec.install_path, spec.stamp)
    log.info("%s installed to %s", spec, spec.install_path)
    return spec.install_path

def resolve_dependencies(
    cfg: BuildConfig,
    adapter: "ToolchainAdapter",
    handle: "ToolchainHandle",
    *,
    fetch: Fetch = fetch_source,
    run: Run = run_command,
) -> ResolvedDependencies:
    source_tree = ensure(symengine_spec(cfg), cfg, fetch=fetch, run=run)
    boost = ensure(boost_spec(cfg), cfg, fetch=fetch, run=run)
    gmp = None
    if cfg.uses_gmp:
        gmp = ensure(gmp_spec(cfg), cfg, adapter=adapter, handle=handle, fetch=fetch, run=run)
    return ResolvedDependencies(source_tree=source_tree, boost=boost, gmp=gmp)
