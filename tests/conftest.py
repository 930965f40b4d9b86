from __future__ import annotations

import struct
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import pytest

def _header(name: str, size: int) -> bytes:
    return f"{name:<16}{0:<12}{0:<6}{0:<6}{644:<8}{size:<10}".encode("ascii") + b"`\n"

def _pad(data: bytes) -> bytes:
    return data + b"\n" if len(data) % 2 else data

def build_gnu_archive(
    members: Sequence[Tuple[str, bytes]],
    symbols: Dict[str, List[str]],
    *,
    with_index: bool = True,
) -> bytes:
    """GNU-format archive with a `/` symbol index and a `//` long-name table."""
    long_table = b""
    names = []
    for name, _ in members:
        if len(name) > 15:
            names.append(f"/{len(long_table)}")
            long_table += name.encode("ascii") + b"/\n"
        else:
            names.append(name + "/")

    index_syms = [(i, s) for i, (name, _) in enumerate(members) for s in symbols.get(name, [])]
    index_size = 4 + 4 * len(index_syms) + sum(len(s) + 1 for _, s in index_syms)

    pos = 8
    if with_index:
        pos += 60 + index_size + (index_size % 2)
    if long_table:
        pos += 60 + len(long_table) + (len(long_table) % 2)
    offsets = []
    for _, data in members:
        offsets.append(pos)
        pos += 60 + len(data) + (len(data) % 2)

    out = [b"!<arch>\n"]
    if with_index:
        index = struct.pack(">I", len(index_syms))
        index += b"".join(struct.pack(">I", offsets[i]) for i, _ in index_syms)
        index += b"".join(s.encode("ascii") + b"\0" for _, s in index_syms)
        out += [_header("/", len(index)), _pad(index)]
    if long_table:
        out += [_header("//", len(long_table)), _pad(long_table)]
    for name, (_, data) in zip(names, members):
        out += [_header(name, len(data)), _pad(data)]
    return b"".join(out)

LIBC_MEMBERS = [
    ("printf.o", b"\0asm printf body"),
    ("dlmalloc.o", b"\0asm dlmalloc body, odd"),
    ("sbrk.o", b"\0asm sbrk"),
    ("atexit.o", b"\0asm atexit body"),
    ("__cxa_atexit.o", b"\0asm cxa atexit"),
    ("a_rather_long_member_name.o", b"\0asm long"),
]

LIBC_SYMBOLS = {
    "printf.o": ["printf", "vprintf"],
    "dlmalloc.o": ["malloc", "free", "calloc", "realloc"],
    "sbrk.o": ["sbrk"],
    "atexit.o": ["atexit"],
    "__cxa_atexit.o": ["__cxa_atexit"],
    "a_rather_long_member_name.o": ["long_symbol"],
}

@pytest.fixture
def archive_builder():
    return build_gnu_archive

@pytest.fixture
def fake_libc() -> bytes:
    return build_gnu_archive(LIBC_MEMBERS, LIBC_SYMBOLS)

def _touch_exe(p: Path, body: str = "#!/bin/sh\nexit 0\n") -> Path:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(body, encoding="utf-8")
    p.chmod(0o755)
    return p

def make_emsdk(root: Path) -> Path:
    _touch_exe(root / "emsdk_env.sh")
    for tool in ("emcc", "em++", "emar", "emranlib", "emcmake", "emmake", "emconfigure"):
        _touch_exe(root / "upstream" / "emscripten" / tool)
    return root

def make_wasi_sdk(root: Path, libc: bytes = b"") -> Path:
    for tool in ("clang", "clang++", "llvm-ar", "llvm-ranlib"):
        _touch_exe(root / "bin" / tool)
    runtime = root / "share" / "wasi-sysroot" / "lib" / "wasm32-wasi"
    runtime.mkdir(parents=True)
    (runtime / "libc++.a").write_bytes(b"!<arch>\n")
    (runtime / "libc++abi.a").write_bytes(b"!<arch>\n")
    if libc:
        (runtime / "libc.a").write_bytes(libc)
    return root

@pytest.fixture
def tool_environ(tmp_path: Path) -> Dict[str, str]:
    """Environment whose PATH holds only stub `cmake` and `make`."""
    bin_dir = tmp_path / "host-bin"
    _touch_exe(bin_dir / "cmake")
    _touch_exe(bin_dir / "make")
    return {"PATH": str(bin_dir)}

@pytest.fixture
def emsdk(tmp_path: Path) -> Path:
    return make_emsdk(tmp_path / "emsdk")

@pytest.fixture
def wasi_sdk(tmp_path: Path, fake_libc: bytes) -> Path:
    return make_wasi_sdk(tmp_path / "wasi-sdk", fake_libc)

@pytest.fixture
def emsdk_factory():
    return make_emsdk
