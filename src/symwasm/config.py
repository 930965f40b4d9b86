from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

GMP_VERSION = "6.3.0"
BOOST_VERSION = "1.84.0"
SYMENGINE_VERSION = "0.12.0"

ARTIFACT_BASENAME = "symengine"
FOREIGN_TAG = "wasm-unknown"

class Toolchain(str, Enum):
    HOST_RUNTIME = "emscripten"
    FOREIGN_UNKNOWN = "unknown"

    @property
    def tag(self) -> str:
        return "emscripten" if self is Toolchain.HOST_RUNTIME else FOREIGN_TAG

class OutputShape(str, Enum):
    MAIN_MODULE = "main"
    SIDE_MODULE = "side"
    STATIC_LIBRARY = "static"

class IntegerBackend(str, Enum):
    HEADER_ONLY_MP = "boostmp"
    ARBITRARY_PRECISION_LIB = "gmp"

class OptimizationProfile(str, Enum):
    RELEASE = "release"
    DEBUG = "debug"
    MIN_SIZE = "minsize"

    @property
    def cmake_build_type(self) -> str:
        return {"release": "Release", "debug": "Debug", "minsize": "MinSizeRel"}[self.value]

    @property
    def compiler_flags(self) -> Tuple[str, ...]:
        return {"release": ("-O2",), "debug": ("-O0", "-g"), "minsize": ("-Os",)}[self.value]

@dataclass(frozen=True)
class BuildPaths:
    project_root: Path
    source_dir: Path             # SymEngine source tree
    deps_dir: Path               # dependency cache
    build_dir: Path              # transient build tree
    install_prefix: Path
    bindings_source: Path        # embind wrapper, compiled only with embind
    declarations_file: Path      # copied next to main-module output

    @classmethod
    def under(cls, root: Path) -> "BuildPaths":
        return cls(
            project_root=root,
            source_dir=root / "symengine",
            deps_dir=root / "deps",
            build_dir=root / "build",
            install_prefix=root / "dist",
            bindings_source=root / "src" / "bindings.cpp",
            declarations_file=root / "src" / "symengine.d.ts",
        )

@dataclass(frozen=True)
class BuildConfig:
    toolchain: Toolchain
    output_shape: OutputShape
    integer_backend: IntegerBackend
    optimization: OptimizationProfile
    paths: BuildPaths
    jobs: int = 4
    threads: bool = False
    embind: bool = False             # emscripten only
    single_file: bool = False        # main module only: wasm embedded in the js glue
    clean: bool = False
    install_deps: bool = False
    skip_library_build: bool = False
    toolchain_root: Optional[Path] = None
    strip_members: Optional[Tuple[str, ...]] = None  # None: use the packaged strip policy

    @property
    def is_host_runtime(self) -> bool:
        return self.toolchain is Toolchain.HOST_RUNTIME

    @property
    def uses_gmp(self) -> bool:
        return self.integer_backend is IntegerBackend.ARBITRARY_PRECISION_LIB
