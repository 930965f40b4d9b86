from pathlib import Path

import pytest

from symwasm.core.options import resolve
from symwasm.errors import LinkError
from symwasm.stages.deps import ResolvedDependencies
from symwasm.stages.link import compile_flags, link_flags, link_inputs

def _deps(tmp_path: Path, gmp=False) -> ResolvedDependencies:
    return ResolvedDependencies(
        source_tree=tmp_path / "symengine",
        boost=tmp_path / "boost",
        gmp=tmp_path / "gmp" if gmp else None,
    )

def test_main_module_flags() -> None:
    flags = link_flags(resolve({"shape": "main"}))
    assert "-sMAIN_MODULE=2" in flags
    assert "-sMODULARIZE=1" in flags
    assert "-sEXPORT_NAME=SymEngine" in flags
    assert "-sALLOW_MEMORY_GROWTH=1" in flags
    assert "-sSINGLE_FILE=1" not in flags
    assert "-sSIDE_MODULE=1" not in flags

def test_single_file_and_embind() -> None:
    flags = link_flags(resolve({"shape": "main", "single_file": True, "embind": True}))
    assert "-sSINGLE_FILE=1" in flags
    assert flags[-1] == "-lembind"

def test_side_module_exports_everything() -> None:
    flags = link_flags(resolve({"shape": "side"}))
    assert "-sSIDE_MODULE=1" in flags
    assert "-sEXPORT_ALL=1" in flags
    assert "--no-entry" in flags
    assert not any(f.startswith("-sMAIN_MODULE") for f in flags)

def test_thread_flags() -> None:
    flags = link_flags(resolve({"threads": True}))
    assert "-pthread" in flags
    assert "-sPTHREAD_POOL_SIZE=4" in flags
    assert "-pthread" not in link_flags(resolve({}))

def test_static_shape_is_not_linked() -> None:
    with pytest.raises(LinkError):
        link_flags(resolve({"toolchain": "unknown"}))

def test_side_module_links_whole_archive(tmp_path: Path) -> None:
    archive = tmp_path / "libsymengine.a"
    inputs = link_inputs(resolve({"shape": "side"}), archive, _deps(tmp_path))
    assert inputs == ["-Wl,--whole-archive", str(archive), "-Wl,--no-whole-archive"]

def test_main_module_links_gmp_after_symengine(tmp_path: Path) -> None:
    archive = tmp_path / "libsymengine.a"
    inputs = link_inputs(resolve({"integer": "gmp"}), archive, _deps(tmp_path, gmp=True))
    assert inputs == [str(archive), str(tmp_path / "gmp" / "lib" / "libgmp.a")]

@pytest.mark.parametrize(
    "optimization, expected",
    [("release", ["-O2"]), ("debug", ["-O0", "-g"]), ("minsize", ["-Os"])],
)
def test_compile_flags_follow_profile(tmp_path: Path, optimization: str, expected) -> None:
    flags = compile_flags(resolve({"optimization": optimization}), _deps(tmp_path), tmp_path / "build")
    assert flags[:len(expected)] == expected
    assert f"-I{tmp_path / 'boost'}" in flags
    assert f"-I{tmp_path / 'build'}" in flags

def test_compile_flags_gmp_include(tmp_path: Path) -> None:
    flags = compile_flags(resolve({"integer": "gmp"}), _deps(tmp_path, gmp=True), tmp_path / "build")
    assert f"-I{tmp_path / 'gmp' / 'include'}" in flags
    assert f"-I{tmp_path / 'boost'}" not in flags

def test_module_objects_are_position_independent(tmp_path: Path) -> None:
    for shape in ("main", "side"):
        assert "-fPIC" in compile_flags(resolve({"shape": shape}), _deps(tmp_path), tmp_path / "build")
