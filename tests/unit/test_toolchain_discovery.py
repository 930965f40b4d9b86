import shutil
from pathlib import Path

import pytest

from symwasm.core.options import resolve
from symwasm.errors import CompileError, ToolchainDiscoveryError
from symwasm.stages.deps import ResolvedDependencies
from symwasm.stages.toolchain import (
    EmscriptenAdapter,
    WasiSdkAdapter,
    adapter_for,
    cmake_feature_options,
    render_toolchain_file,
)

@pytest.fixture(autouse=True)
def no_default_locations(monkeypatch, tmp_path: Path):
    # keep SDKs installed on the machine running the tests out of the search
    monkeypatch.setattr(EmscriptenAdapter, "default_locations", lambda self, cfg: [tmp_path / "no-emsdk"])
    monkeypatch.setattr(WasiSdkAdapter, "default_locations", lambda self, cfg: [tmp_path / "no-wasi-sdk"])

def test_adapter_for_toolchain() -> None:
    assert isinstance(adapter_for(resolve({})), EmscriptenAdapter)
    assert isinstance(adapter_for(resolve({"toolchain": "unknown"})), WasiSdkAdapter)

def test_emsdk_found_through_environment(emsdk: Path, tool_environ) -> None:
    cfg = resolve({})
    handle = EmscriptenAdapter().discover(cfg, {**tool_environ, "EMSDK": str(emsdk)})
    assert handle.root == emsdk.resolve()
    assert handle.cxx.name == "em++"
    assert handle.cmake.name == "cmake"
    assert handle.make.name == "make"

def test_explicit_override_wins_over_environment(tmp_path: Path, emsdk: Path, emsdk_factory, tool_environ) -> None:
    other = emsdk_factory(tmp_path / "other-emsdk")
    cfg = resolve({"emsdk_root": str(other)})
    handle = EmscriptenAdapter().discover(cfg, {**tool_environ, "EMSDK": str(emsdk)})
    assert handle.root == other.resolve()

def test_invalid_override_is_fatal(tmp_path: Path, emsdk: Path, tool_environ) -> None:
    cfg = resolve({"emsdk_root": str(tmp_path / "not-an-sdk")})
    with pytest.raises(ToolchainDiscoveryError) as ei:
        EmscriptenAdapter().discover(cfg, {**tool_environ, "EMSDK": str(emsdk)})
    assert "not-an-sdk" in str(ei.value)
    assert "override" in str(ei.value)

def test_invalid_environment_root_is_fatal(tmp_path: Path, wasi_sdk: Path, tool_environ, monkeypatch) -> None:
    # a valid SDK at a default location must not mask a bad WASI_SDK_PATH
    monkeypatch.setattr(WasiSdkAdapter, "default_locations", lambda self, cfg: [wasi_sdk])
    environ = {**tool_environ, "WASI_SDK_PATH": str(tmp_path / "stale-wasi-sdk")}
    with pytest.raises(ToolchainDiscoveryError) as ei:
        WasiSdkAdapter().discover(resolve({"toolchain": "unknown"}), environ)
    assert "WASI_SDK_PATH" in str(ei.value)

def test_missing_sdk_is_fatal(tool_environ) -> None:
    with pytest.raises(ToolchainDiscoveryError) as ei:
        EmscriptenAdapter().discover(resolve({}), tool_environ)
    assert "EMSDK" in str(ei.value)
    assert ei.value.stage == "toolchain"

def test_missing_emscripten_tool_is_fatal(emsdk: Path, tool_environ) -> None:
    (emsdk / "upstream" / "emscripten" / "emmake").unlink()
    with pytest.raises(ToolchainDiscoveryError) as ei:
        EmscriptenAdapter().discover(resolve({}), {**tool_environ, "EMSDK": str(emsdk)})
    assert "emmake" in str(ei.value)

def test_missing_cmake_is_fatal(tmp_path: Path, emsdk: Path) -> None:
    empty = tmp_path / "empty-bin"
    empty.mkdir()
    with pytest.raises(ToolchainDiscoveryError) as ei:
        EmscriptenAdapter().discover(resolve({}), {"PATH": str(empty), "EMSDK": str(emsdk)})
    assert "cmake" in str(ei.value)

def test_wasi_sdk_discovery(wasi_sdk: Path, tool_environ) -> None:
    adapter = WasiSdkAdapter()
    cfg = resolve({"toolchain": "unknown", "wasi_sdk_root": str(wasi_sdk)})
    handle = adapter.discover(cfg, tool_environ)
    assert handle.cc.name == "clang"
    assert handle.ar.name == "llvm-ar"
    assert handle.sysroot == wasi_sdk.resolve() / "share" / "wasi-sysroot"
    assert adapter.runtime_lib_dir(handle).name == "wasm32-wasi"

def test_wasi_sdk_without_sysroot_is_fatal(wasi_sdk: Path, tool_environ) -> None:
    shutil.rmtree(wasi_sdk / "share" / "wasi-sysroot")
    cfg = resolve({"toolchain": "unknown", "wasi_sdk_root": str(wasi_sdk)})
    with pytest.raises(ToolchainDiscoveryError) as ei:
        WasiSdkAdapter().discover(cfg, tool_environ)
    assert "sysroot" in str(ei.value)

def test_wasi_sdk_without_runtime_libraries_is_fatal(wasi_sdk: Path, tool_environ) -> None:
    shutil.rmtree(wasi_sdk / "share" / "wasi-sysroot" / "lib" / "wasm32-wasi")
    cfg = resolve({"toolchain": "unknown", "wasi_sdk_root": str(wasi_sdk)})
    with pytest.raises(ToolchainDiscoveryError) as ei:
        WasiSdkAdapter().discover(cfg, tool_environ)
    assert "wasm32-wasip1" in str(ei.value)

def test_wasi_sdk_accepts_wasip1_runtime_dir(wasi_sdk: Path, tool_environ) -> None:
    lib = wasi_sdk / "share" / "wasi-sysroot" / "lib"
    (lib / "wasm32-wasi").rename(lib / "wasm32-wasip1")
    adapter = WasiSdkAdapter()
    handle = adapter.discover(resolve({"toolchain": "unknown", "wasi_sdk_root": str(wasi_sdk)}), tool_environ)
    assert adapter.runtime_lib_dir(handle) == lib.resolve() / "wasm32-wasip1"

def test_environment_puts_sdk_first(emsdk: Path, tool_environ) -> None:
    adapter = EmscriptenAdapter()
    handle = adapter.discover(resolve({}), {**tool_environ, "EMSDK": str(emsdk)})
    env = adapter.environment(handle, {"PATH": "/usr/bin"})
    parts = env["PATH"].split(":")
    assert parts[0] == str(handle.root)
    assert parts[1] == str(handle.bin_dir)
    assert parts[-1] == "/usr/bin"
    assert env["EMSDK"] == str(handle.root)

def test_toolchain_file_is_compile_only(wasi_sdk: Path, tool_environ) -> None:
    cfg = resolve({"toolchain": "unknown", "wasi_sdk_root": str(wasi_sdk)})
    text = render_toolchain_file(WasiSdkAdapter().discover(cfg, tool_environ))

    assert "set(CMAKE_TRY_COMPILE_TARGET_TYPE STATIC_LIBRARY)" in text
    assert "CMAKE_SYSTEM_NAME" in text and "Generic" in text
    assert "--target=wasm32-wasi" in text
    assert 'set(CMAKE_CXX_FLAGS_RELEASE_INIT "-O2 -fno-exceptions -fno-rtti")' in text
    # try_compile uses the base flags, which must still allow exceptions
    base = next(line for line in text.splitlines() if line.startswith("set(CMAKE_CXX_FLAGS_INIT"))
    assert "-fno-exceptions" not in base
    assert "@{" not in text

def test_feature_options_boostmp(tmp_path: Path) -> None:
    cfg = resolve({"optimization": "debug"})
    deps = ResolvedDependencies(source_tree=tmp_path / "src", boost=tmp_path / "boost")
    opts = cmake_feature_options(cfg, deps)
    assert "-DCMAKE_BUILD_TYPE=Debug" in opts
    assert "-DINTEGER_CLASS=boostmp" in opts
    assert "-DWITH_GMP=OFF" in opts
    assert f"-DBoost_INCLUDE_DIR={tmp_path / 'boost'}" in opts
    assert "-DWITH_SYMENGINE_THREAD_SAFE=OFF" in opts
    assert "-DBUILD_SHARED_LIBS=OFF" in opts
    assert "-DWITH_LLVM=OFF" in opts
    assert "-DCMAKE_POSITION_INDEPENDENT_CODE=ON" in opts

def test_feature_options_gmp_threads(tmp_path: Path) -> None:
    cfg = resolve({"integer": "gmp", "threads": True})
    gmp = tmp_path / "gmp"
    opts = cmake_feature_options(cfg, ResolvedDependencies(tmp_path / "src", tmp_path / "boost", gmp))
    assert "-DINTEGER_CLASS=gmp" in opts
    assert f"-DGMP_LIBRARY={gmp / 'lib' / 'libgmp.a'}" in opts
    assert "-DWITH_SYMENGINE_THREAD_SAFE=ON" in opts
    assert "-DCMAKE_POSITION_INDEPENDENT_CODE=ON" in opts

    with pytest.raises(CompileError):
        cmake_feature_options(cfg, ResolvedDependencies(tmp_path / "src", tmp_path / "boost"))

def test_compile_library_requires_archive(tmp_path: Path, wasi_sdk: Path, tool_environ) -> None:
    adapter = WasiSdkAdapter()
    cfg = resolve({"toolchain": "unknown", "wasi_sdk_root": str(wasi_sdk), "project_root": str(tmp_path)})
    handle = adapter.discover(cfg, tool_environ)
    deps = ResolvedDependencies(source_tree=tmp_path / "symengine", boost=tmp_path / "boost")
    commands = []

    def run(cmd, *, cwd, env=None, error=None):
        commands.append([str(c) for c in cmd])
        return ""

    with pytest.raises(CompileError):
        adapter.compile_library(deps.source_tree, cfg, deps, handle, run=run)

    configure, make = commands
    toolchain_file = adapter.library_build_dir(cfg) / "wasm32-unknown.cmake"
    assert f"-DCMAKE_TOOLCHAIN_FILE={toolchain_file}" in configure
    assert toolchain_file.is_file()
    assert make[-1] == "symengine"

def test_clean_removes_previous_build_dir(tmp_path: Path, emsdk: Path, tool_environ) -> None:
    adapter = EmscriptenAdapter()
    cfg = resolve({"clean": True, "project_root": str(tmp_path)})
    handle = adapter.discover(cfg, {**tool_environ, "EMSDK": str(emsdk)})
    stale = adapter.library_build_dir(cfg) / "stale.o"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"")

    def run(cmd, *, cwd, env=None, error=None):
        if cmd[-1] == "symengine":
            lib = Path(cwd) / "symengine" / "libsymengine.a"
            lib.parent.mkdir(parents=True, exist_ok=True)
            lib.write_bytes(b"!<arch>\n")
        return ""

    deps = ResolvedDependencies(source_tree=tmp_path / "symengine", boost=tmp_path / "boost")
    archive = adapter.compile_library(deps.source_tree, cfg, deps, handle, run=run)
    assert archive.is_file()
    assert not stale.exists()

def test_foreign_build_is_not_forced_position_independent(tmp_path: Path) -> None:
    cfg = resolve({"toolchain": "unknown"})
    opts = cmake_feature_options(cfg, ResolvedDependencies(tmp_path / "src", tmp_path / "boost"))
    assert not any(o.startswith("-DCMAKE_POSITION_INDEPENDENT_CODE") for o in opts)
