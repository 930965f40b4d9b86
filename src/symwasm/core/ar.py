"""
Minimal reader/writer for Unix `ar` archives (GNU/SysV variant, as written by
llvm-ar on Linux hosts).

Only what member removal needs is supported: regular members, the `//`
long-name table, and the `/` (32-bit) or `/SYM64/` (64-bit) symbol index,
which is rewritten so its offsets point at the surviving members.
"""
from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

AR_MAGIC = b"!<arch>\n"
THIN_MAGIC = b"!<thin>\n"
HEADER_SIZE = 60
FMAG = b"`\n"

SYMTAB_NAMES = {"/": 4, "/SYM64/": 8}  # name -> width of count/offset fields
LONGNAMES = "//"

class ArchiveFormatError(ValueError):
    pass

@dataclass(frozen=True)
class Entry:
    raw_name: str        # name field as stored in the header
    name: str            # resolved member name ("" for special members)
    header: bytes
    data: bytes
    offset: int          # offset of the header in the original file

    @property
    def is_special(self) -> bool:
        return self.raw_name in SYMTAB_NAMES or self.raw_name == LONGNAMES

    @property
    def stored_size(self) -> int:
        n = HEADER_SIZE + len(self.data)
        return n + (n % 2)

def _long_name(table: bytes, index: int) -> str:
    end = table.find(b"/\n", index)
    if end < 0:
        end = table.find(b"\n", index)
    if index >= len(table) or end < 0:
        raise ArchiveFormatError(f"long name offset {index} outside name table")
    return table[index:end].decode("utf-8", errors="replace")

def parse(blob: bytes) -> List[Entry]:
    if blob.startswith(THIN_MAGIC):
        raise ArchiveFormatError("thin archives reference external files and cannot be patched")
    if not blob.startswith(AR_MAGIC):
        raise ArchiveFormatError("not an ar archive")

    entries: List[Entry] = []
    long_names = b""
    pos = len(AR_MAGIC)
    while pos < len(blob):
        if blob[pos:pos + 1] == b"\n":  # stray padding
            pos += 1
            continue
        header = blob[pos:pos + HEADER_SIZE]
        if len(header) < HEADER_SIZE or header[58:60] != FMAG:
            raise ArchiveFormatError(f"corrupt member header at offset {pos}")
        raw_name = header[:16].decode("ascii", errors="replace").rstrip(" ")
        try:
            size = int(header[48:58].decode("ascii").strip())
        except ValueError as e:
            raise ArchiveFormatError(f"bad member size at offset {pos}") from e
        data = blob[pos + HEADER_SIZE:pos + HEADER_SIZE + size]
        if len(data) != size:
            raise ArchiveFormatError(f"truncated member at offset {pos}")

        if raw_name == "__.SYMDEF" or raw_name.startswith("__.SYMDEF "):
            raise ArchiveFormatError("BSD symbol tables are not supported; rebuild the archive in GNU format")
        if raw_name in SYMTAB_NAMES:
            name = ""
        elif raw_name == LONGNAMES:
            name = ""
            long_names = data
        elif raw_name.startswith("/") and raw_name[1:].isdigit():
            name = _long_name(long_names, int(raw_name[1:]))
        elif raw_name.startswith("#1/") and raw_name[3:].isdigit():
            name = data[:int(raw_name[3:])].rstrip(b"\0").decode("utf-8", errors="replace")
        else:
            name = raw_name[:-1] if raw_name.endswith("/") else raw_name

        entries.append(Entry(raw_name=raw_name, name=name, header=header, data=data, offset=pos))
        pos += HEADER_SIZE + size + (size % 2)
    return entries

def member_names(blob: bytes) -> List[str]:
    return [e.name for e in parse(blob) if not e.is_special]

def _read_symbols(entry: Entry) -> List[Tuple[int, bytes]]:
    width = SYMTAB_NAMES[entry.raw_name]
    fmt = ">I" if width == 4 else ">Q"
    data = entry.data
    (count,) = struct.unpack_from(fmt, data, 0)
    offsets = [struct.unpack_from(fmt, data, width * (i + 1))[0] for i in range(count)]
    names = data[width * (count + 1):].split(b"\0")[:count]
    if len(names) != count:
        raise ArchiveFormatError("symbol index is truncated")
    return list(zip(offsets, names))

def _write_symbols(raw_name: str, symbols: List[Tuple[int, bytes]]) -> bytes:
    width = SYMTAB_NAMES[raw_name]
    fmt = ">I" if width == 4 else ">Q"
    out = [struct.pack(fmt, len(symbols))]
    out.extend(struct.pack(fmt, off) for off, _ in symbols)
    out.extend(name + b"\0" for _, name in symbols)
    return b"".join(out)

def _with_size(header: bytes, size: int) -> bytes:
    return header[:48] + f"{size:<10d}".encode("ascii") + header[58:]

def _serialize(entries: List[Entry]) -> bytes:
    out = [AR_MAGIC]
    for e in entries:
        out.append(e.header)
        out.append(e.data)
        if len(e.data) % 2:
            out.append(b"\n")
    return b"".join(out)

def remove_members(blob: bytes, names: Iterable[str]) -> Tuple[bytes, List[str]]:
    """
    Return (new_archive, removed_names). Every member whose name is in `names`
    is dropped, together with its symbol index entries. When nothing matches
    the input bytes are returned unchanged.
    """
    wanted = set(names)
    entries = parse(blob)
    dropped = [e for e in entries if not e.is_special and e.name in wanted]
    if not dropped:
        return blob, []

    dropped_offsets = {e.offset for e in dropped}
    kept = [e for e in entries if e.offset not in dropped_offsets]

    symtab: Optional[Entry] = next((e for e in kept if e.raw_name in SYMTAB_NAMES), None)
    symbols: List[Tuple[int, bytes]] = []
    if symtab is not None:
        symbols = [(off, sym) for off, sym in _read_symbols(symtab) if off not in dropped_offsets]
        # size of the new index does not depend on the offsets it holds
        placeholder = _write_symbols(symtab.raw_name, symbols)
        symtab = Entry(symtab.raw_name, "", _with_size(symtab.header, len(placeholder)), placeholder, symtab.offset)
        kept = [symtab if e.offset == symtab.offset else e for e in kept]

    relocated: Dict[int, int] = {}
    pos = len(AR_MAGIC)
    for e in kept:
        relocated[e.offset] = pos
        pos += e.stored_size

    if symtab is not None:
        try:
            symbols = [(relocated[off], sym) for off, sym in symbols]
        except KeyError as e:
            raise ArchiveFormatError(f"symbol index points at unknown offset {e.args[0]}") from e
        data = _write_symbols(symtab.raw_name, symbols)
        kept = [Entry(e.raw_name, "", e.header, data, e.offset) if e.offset == symtab.offset else e for e in kept]

    return _serialize(kept), [e.name for e in dropped]

def remove_members_in_place(path: Path, names: Iterable[str]) -> List[str]:
    path = Path(path)
    blob = path.read_bytes()
    new_blob, removed = remove_members(blob, names)
    if removed:
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(new_blob)
        os.replace(tmp, path)
    return removed
