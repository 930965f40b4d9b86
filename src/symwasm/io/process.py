from __future__ import annotations

import shlex
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Sequence, Type, Union

from symwasm.errors import BuildError, CompileError
from symwasm.logging import get_logger

log = get_logger()

Arg = Union[str, Path]

TAIL_LINES = 40

def run_command(
    cmd: Sequence[Arg],
    *,
    cwd: Path,
    env: Optional[Mapping[str, str]] = None,
    error: Type[BuildError] = CompileError,
) -> str:
    """
    Run an external build tool to completion and return its combined output.

    A non-zero exit raises `error` with the command, exit status and the tail
    of the tool's own output.
    """
    argv = [str(a) for a in cmd]
    log.info("$ %s  (in %s)", shlex.join(argv), cwd)
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
    except OSError as e:
        raise error(f"could not execute {argv[0]}: {e}") from e

    output = proc.stdout or ""
    for line in output.splitlines():
        log.debug("  %s", line)

    if proc.returncode != 0:
        tail = "\n".join(output.splitlines()[-TAIL_LINES:])
        raise error(f"{Path(argv[0]).name} exited with status {proc.returncode}: {shlex.join(argv)}\n{tail}")
    return output
