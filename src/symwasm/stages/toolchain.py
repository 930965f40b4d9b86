"""
Toolchain adapters.

Both toolchains answer the same two questions: where is the SDK
(`discover`), and how is SymEngine compiled into `libsymengine.a` with it
(`compile_library`). They also supply the hooks the dependency recipes need
to cross-compile GMP with the same compilers.
"""
from __future__ import annotations

import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Mapping, Optional, Tuple

from symwasm.config import BuildConfig, FOREIGN_TAG, Toolchain
from symwasm.core.templates import render
from symwasm.errors import CompileError, ToolchainDiscoveryError
from symwasm.io.fs import ensure_dir, remove_tree, write_text_utf8
from symwasm.io.process import run_command
from symwasm.logging import get_logger

if TYPE_CHECKING:
    from symwasm.stages.deps import ResolvedDependencies

log = get_logger()

# features SymEngine can build that have no meaning inside a wasm sandbox
DISABLED_FEATURES = ("WITH_BFD", "WITH_LLVM", "WITH_PRIMESIEVE", "WITH_ECM", "WITH_TCMALLOC", "WITH_COTIRE")

COMPILE_TARGET = "wasm32-wasi"

@dataclass(frozen=True)
class ToolchainHandle:
    name: str
    root: Path
    bin_dir: Path
    cc: Path
    cxx: Path
    ar: Path
    ranlib: Path
    sysroot: Path
    cmake: Path
    make: Path

def cmake_feature_options(cfg: BuildConfig, deps: "ResolvedDependencies") -> List[str]:
    opts = {
        "CMAKE_BUILD_TYPE": cfg.optimization.cmake_build_type,
        "BUILD_SHARED_LIBS": "OFF",
        "BUILD_TESTS": "OFF",
        "BUILD_BENCHMARKS": "OFF",
        "WITH_SYMENGINE_RCP": "ON",
        "WITH_SYMENGINE_ASSERT": "OFF",
        "INTEGER_CLASS": cfg.integer_backend.value,
    }
    if cfg.is_host_runtime:
        # main and side modules link against position independent objects
        opts["CMAKE_POSITION_INDEPENDENT_CODE"] = "ON"
    if cfg.threads:
        opts["WITH_SYMENGINE_THREAD_SAFE"] = "ON"
    else:
        opts["WITH_SYMENGINE_THREAD_SAFE"] = "OFF"
        opts["WITH_OPENMP"] = "OFF"
    for feature in DISABLED_FEATURES:
        opts[feature] = "OFF"

    if cfg.uses_gmp:
        if deps.gmp is None:
            raise CompileError("integer=gmp but GMP was not resolved")
        opts.update({
            "WITH_GMP": "ON",
            "GMP_INCLUDE_DIR": str(deps.gmp / "include"),
            "GMP_LIBRARY": str(deps.gmp / "lib" / "libgmp.a"),
            "WITH_MPFR": "OFF",
            "WITH_MPC": "OFF",
        })
    else:
        opts.update({
            "WITH_GMP": "OFF",
            "WITH_MPFR": "OFF",
            "WITH_MPC": "OFF",
            "WITH_FLINT": "OFF",
            "WITH_ARB": "OFF",
            "Boost_INCLUDE_DIR": str(deps.boost),
        })
    return [f"-D{k}={v}" for k, v in opts.items()]

def _which(name: str, environ: Mapping[str, str]) -> Path:
    found = shutil.which(name, path=environ.get("PATH"))
    if found is None:
        raise ToolchainDiscoveryError(f"required command not found on PATH: {name}")
    return Path(found)

def _require_file(p: Path, what: str) -> Path:
    if not p.is_file():
        raise ToolchainDiscoveryError(f"{what} not found at {p}")
    return p

def _require_dir(p: Path, what: str) -> Path:
    if not p.is_dir():
        raise ToolchainDiscoveryError(f"{what} not found at {p}")
    return p

class ToolchainAdapter(ABC):
    name: str = ""
    root_env: str = ""     # environment variable naming the SDK root
    root_marker: str = ""  # file whose presence identifies an SDK root

    @abstractmethod
    def default_locations(self, cfg: BuildConfig) -> List[Path]:
        ...

    @abstractmethod
    def discover(self, cfg: BuildConfig, environ: Optional[Mapping[str, str]] = None) -> ToolchainHandle:
        ...

    @abstractmethod
    def library_build_dir(self, cfg: BuildConfig) -> Path:
        ...

    @abstractmethod
    def configure_command(
        self, source_tree: Path, cfg: BuildConfig, deps: "ResolvedDependencies", handle: ToolchainHandle, build_dir: Path
    ) -> List[str]:
        ...

    @abstractmethod
    def make_command(self, handle: ToolchainHandle, jobs: int, *targets: str) -> List[str]:
        ...

    @abstractmethod
    def autotools_configure(self, handle: ToolchainHandle, configure_script: Path, prefix: Path) -> List[str]:
        """Command line that configures an autotools project for this toolchain."""

    def environment(self, handle: ToolchainHandle, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        env = dict(os.environ if environ is None else environ)
        env["PATH"] = os.pathsep.join([str(handle.bin_dir), env.get("PATH", "")]).rstrip(os.pathsep)
        env[self.root_env] = str(handle.root)
        return env

    def prepare_build_dir(self, cfg: BuildConfig, handle: ToolchainHandle, build_dir: Path) -> None:
        pass

    def locate_root(self, cfg: BuildConfig, environ: Mapping[str, str]) -> Path:
        candidates: List[Tuple[str, Path]] = []
        if cfg.toolchain_root is not None:
            candidates.append(("override", cfg.toolchain_root))
        if environ.get(self.root_env):
            candidates.append((f"${self.root_env}", Path(environ[self.root_env]).expanduser()))
        candidates.extend(("default", p) for p in self.default_locations(cfg))

        for origin, path in candidates:
            if (path / self.root_marker).is_file():
                log.info("using %s at %s (%s)", self.name, path, origin)
                return path.resolve()
            if origin != "default":
                raise ToolchainDiscoveryError(
                    f"{path} from {origin} is not a {self.name} root (no {self.root_marker})"
                )

        searched = ", ".join(str(p) for _, p in candidates)
        raise ToolchainDiscoveryError(
            f"{self.name} not found (looked in: {searched}). "
            f"Install it, set {self.root_env}, or pass the SDK root explicitly."
        )

    def compile_library(
        self,
        source_tree: Path,
        cfg: BuildConfig,
        deps: "ResolvedDependencies",
        handle: ToolchainHandle,
        *,
        run: Callable[..., str] = run_command,
    ) -> Path:
        build_dir = self.library_build_dir(cfg)
        if cfg.clean:
            log.info("cleaning %s", build_dir)
            remove_tree(build_dir)
        ensure_dir(build_dir)
        self.prepare_build_dir(cfg, handle, build_dir)

        env = self.environment(handle)
        log.info("configuring SymEngine (%s, %s)", self.name, cfg.optimization.cmake_build_type)
        run(self.configure_command(source_tree, cfg, deps, handle, build_dir), cwd=build_dir, env=env, error=CompileError)
        log.info("compiling SymEngine with %d jobs", cfg.jobs)
        run(self.make_command(handle, cfg.jobs, "symengine"), cwd=build_dir, env=env, error=CompileError)

        archive = build_dir / "symengine" / "libsymengine.a"
        if not archive.is_file():
            raise CompileError(f"build finished but {archive} was not produced")
        return archive

class EmscriptenAdapter(ToolchainAdapter):
    name = "Emscripten SDK"
    root_env = "EMSDK"
    root_marker = "emsdk_env.sh"

    TOOLS = ("emcc", "em++", "emar", "emranlib", "emcmake", "emmake", "emconfigure")

    def default_locations(self, cfg: BuildConfig) -> List[Path]:
        return [
            Path.home() / "emsdk",
            Path("/opt/emsdk"),
            Path("/usr/local/emsdk"),
            cfg.paths.project_root / "emsdk",
        ]

    def discover(self, cfg: BuildConfig, environ: Optional[Mapping[str, str]] = None) -> ToolchainHandle:
        environ = os.environ if environ is None else environ
        root = self.locate_root(cfg, environ)
        em_dir = root / "upstream" / "emscripten"
        for tool in self.TOOLS:
            _require_file(em_dir / tool, tool)
        return ToolchainHandle(
            name="emscripten",
            root=root,
            bin_dir=em_dir,
            cc=em_dir / "emcc",
            cxx=em_dir / "em++",
            ar=em_dir / "emar",
            ranlib=em_dir / "emranlib",
            sysroot=em_dir / "cache" / "sysroot",
            cmake=_which("cmake", environ),
            make=_which("make", environ),
        )

    def environment(self, handle: ToolchainHandle, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        env = super().environment(handle, environ)
        env["PATH"] = os.pathsep.join([str(handle.root), env["PATH"]])
        config_file = handle.root / ".emscripten"
        if config_file.is_file():
            env["EM_CONFIG"] = str(config_file)
        return env

    def library_build_dir(self, cfg: BuildConfig) -> Path:
        return cfg.paths.build_dir / f"symengine-{cfg.output_shape.value}"

    def configure_command(self, source_tree, cfg, deps, handle, build_dir) -> List[str]:
        cmd = [
            str(handle.bin_dir / "emcmake"),
            str(handle.cmake),
            f"-DCMAKE_INSTALL_PREFIX={cfg.paths.install_prefix}",
            *cmake_feature_options(cfg, deps),
        ]
        if cfg.threads:
            cmd += ["-DCMAKE_C_FLAGS=-pthread", "-DCMAKE_CXX_FLAGS=-pthread"]
        cmd.append(str(source_tree))
        return cmd

    def make_command(self, handle: ToolchainHandle, jobs: int, *targets: str) -> List[str]:
        return [str(handle.bin_dir / "emmake"), str(handle.make), f"-j{jobs}", *targets]

    def autotools_configure(self, handle: ToolchainHandle, configure_script: Path, prefix: Path) -> List[str]:
        return [
            str(handle.bin_dir / "emconfigure"),
            str(configure_script),
            f"--prefix={prefix}",
            "--host=wasm32-unknown-emscripten",
            "--disable-assembly",
            "--enable-static",
            "--disable-shared",
            "CFLAGS=-O2 -fPIC",
            "CXXFLAGS=-O2 -fPIC",
        ]

def render_toolchain_file(handle: ToolchainHandle) -> str:
    """CMake toolchain file for compiling (never linking) wasm objects with wasi-sdk."""
    per_config = {
        "RELEASE": "-O2",
        "MINSIZEREL": "-Os",
        "RELWITHDEBINFO": "-O2 -g",
        "DEBUG": "-g",
    }
    lines = []
    for lang in ("C", "CXX"):
        for config, opt in per_config.items():
            lines.append(f'set(CMAKE_{lang}_FLAGS_{config}_INIT "{opt} -fno-exceptions -fno-rtti")')
    return render(
        "wasm32-unknown.cmake.in",
        sdk_root=str(handle.root),
        cc=str(handle.cc),
        cxx=str(handle.cxx),
        ar=str(handle.ar),
        ranlib=str(handle.ranlib),
        base_flags=f"--target={COMPILE_TARGET} --sysroot={handle.sysroot} -fvisibility=hidden",
        config_flags="\n".join(lines),
    )

class WasiSdkAdapter(ToolchainAdapter):
    name = "wasi-sdk"
    root_env = "WASI_SDK_PATH"
    root_marker = "bin/clang"

    RUNTIME_LIB_SUBDIRS = ("wasm32-wasi", "wasm32-wasip1")

    def default_locations(self, cfg: BuildConfig) -> List[Path]:
        return [
            Path("/opt/wasi-sdk"),
            Path.home() / "wasi-sdk",
            cfg.paths.project_root / "wasi-sdk",
        ]

    def discover(self, cfg: BuildConfig, environ: Optional[Mapping[str, str]] = None) -> ToolchainHandle:
        environ = os.environ if environ is None else environ
        root = self.locate_root(cfg, environ)
        bin_dir = root / "bin"
        handle = ToolchainHandle(
            name="wasi-sdk",
            root=root,
            bin_dir=bin_dir,
            cc=_require_file(bin_dir / "clang", "wasi-sdk clang"),
            cxx=_require_file(bin_dir / "clang++", "wasi-sdk clang++"),
            ar=_require_file(bin_dir / "llvm-ar", "wasi-sdk llvm-ar"),
            ranlib=_require_file(bin_dir / "llvm-ranlib", "wasi-sdk llvm-ranlib"),
            sysroot=_require_dir(root / "share" / "wasi-sysroot", "wasi-sdk sysroot"),
            cmake=_which("cmake", environ),
            make=_which("make", environ),
        )
        self.runtime_lib_dir(handle)
        return handle

    def runtime_lib_dir(self, handle: ToolchainHandle) -> Path:
        lib = handle.sysroot / "lib"
        for sub in self.RUNTIME_LIB_SUBDIRS:
            if (lib / sub).is_dir():
                return lib / sub
        looked = ", ".join(self.RUNTIME_LIB_SUBDIRS)
        raise ToolchainDiscoveryError(f"wasi-sdk runtime libraries not found under {lib} (looked for {looked})")

    def library_build_dir(self, cfg: BuildConfig) -> Path:
        return cfg.paths.build_dir / f"symengine-{FOREIGN_TAG}"

    def toolchain_file(self, build_dir: Path) -> Path:
        return build_dir / "wasm32-unknown.cmake"

    def prepare_build_dir(self, cfg: BuildConfig, handle: ToolchainHandle, build_dir: Path) -> None:
        write_text_utf8(self.toolchain_file(build_dir), render_toolchain_file(handle))

    def configure_command(self, source_tree, cfg, deps, handle, build_dir) -> List[str]:
        return [
            str(handle.cmake),
            f"-DCMAKE_TOOLCHAIN_FILE={self.toolchain_file(build_dir)}",
            f"-DWASI_SDK_PREFIX={handle.root}",
            f"-DCMAKE_INSTALL_PREFIX={cfg.paths.install_prefix / FOREIGN_TAG}",
            *cmake_feature_options(cfg, deps),
            str(source_tree),
        ]

    def make_command(self, handle: ToolchainHandle, jobs: int, *targets: str) -> List[str]:
        return [str(handle.make), f"-j{jobs}", *targets]

    def autotools_configure(self, handle: ToolchainHandle, configure_script: Path, prefix: Path) -> List[str]:
        cflags = f"--target={COMPILE_TARGET} --sysroot={handle.sysroot} -O2 -fno-exceptions"
        return [
            str(configure_script),
            f"--prefix={prefix}",
            "--host=none",
            "--disable-assembly",
            "--enable-static",
            "--disable-shared",
            f"CC={handle.cc}",
            f"CXX={handle.cxx}",
            f"AR={handle.ar}",
            f"RANLIB={handle.ranlib}",
            f"CFLAGS={cflags}",
            f"CXXFLAGS={cflags}",
        ]

def adapter_for(cfg: BuildConfig) -> ToolchainAdapter:
    if cfg.toolchain is Toolchain.HOST_RUNTIME:
        return EmscriptenAdapter()
    return WasiSdkAdapter()
