from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any, Dict

from symwasm.core.options import load_options_file, resolve
from symwasm.errors import BuildError, ConfigurationError
from symwasm.logging import get_logger, set_verbose
from symwasm.pipeline.build import build
from symwasm.stages.patch import load_strip_policy, strip_members

log = get_logger()

# environment variable -> option key
ENV_OPTIONS = {
    "JOBS": "jobs",
    "SYMENGINE_SRC": "source_dir",
    "DEPS_DIR": "deps_dir",
    "BUILD_DIR": "build_dir",
    "INSTALL_PREFIX": "install_prefix",
}

# argparse dest -> option key, for flags that override the options file
FLAG_OPTIONS = {
    "toolchain": "toolchain",
    "shape": "shape",
    "integer": "integer",
    "build_type": "optimization",
    "threads": "threads",
    "embind": "embind",
    "single_file": "single_file",
    "clean": "clean",
    "install_deps": "install_deps",
    "skip_library_build": "skip_library_build",
    "emsdk": "emsdk_root",
    "wasi_sdk": "wasi_sdk_root",
    "jobs": "jobs",
    "project_root": "project_root",
}

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="symwasm", description="Build SymEngine for WebAssembly")
    sub = p.add_subparsers(dest="cmd", required=True)

    b = sub.add_parser("build", help="Build SymEngine and install the artifacts")
    b.add_argument("--config", default=None, help="YAML options file (flags and environment override it)")
    b.add_argument("--toolchain", "--arch", dest="toolchain", default=None, help="emscripten or unknown")
    b.add_argument("--shape", "--mode", dest="shape", default=None, help="main, side or static")
    b.add_argument("--integer", default=None, help="boostmp or gmp")
    b.add_argument("--build-type", dest="build_type", default=None, help="release, debug or minsize")
    b.add_argument("--threads", action="store_true", default=None, help="Enable pthreads (emscripten only)")
    b.add_argument("--embind", "--with-embind", dest="embind", action="store_true", default=None,
                   help="Compile and link the embind bindings")
    b.add_argument("--single-file", dest="single_file", action="store_true", default=None,
                   help="Embed the wasm binary in the JS glue (shape=main)")
    b.add_argument("--clean", action="store_true", default=None, help="Remove this configuration's build dir first")
    b.add_argument("--install-deps", dest="install_deps", action="store_true", default=None,
                   help="Accepted for compatibility; missing dependencies are always installed")
    b.add_argument("--skip-library-build", "--skip-symengine", dest="skip_library_build",
                   action="store_true", default=None, help="Only install dependencies; stop before compiling SymEngine")
    b.add_argument("--emsdk", default=None, help="Emscripten SDK root (default: $EMSDK, then common locations)")
    b.add_argument("--wasi-sdk", dest="wasi_sdk", default=None,
                   help="wasi-sdk root (default: $WASI_SDK_PATH, then common locations)")
    b.add_argument("--jobs", "-j", default=None, help="Parallel make jobs (default: $JOBS or CPU count)")
    b.add_argument("--project-root", dest="project_root", default=None, help="Root for relative paths (default: cwd)")
    b.add_argument("--verbose", "-v", action="store_true", help="Debug logging, including tool output")

    s = sub.add_parser("strip-archive", help="Remove members from a static archive in place")
    s.add_argument("archive", help="Path to the .a file")
    s.add_argument("--member", action="append", default=None,
                   help="Member to remove (repeatable; default: the packaged runtime strip list)")
    return p

def options_from(args: argparse.Namespace, environ) -> Dict[str, Any]:
    """Merge options file, environment and flags, later sources winning."""
    raw: Dict[str, Any] = {}
    if args.config:
        raw.update(load_options_file(Path(args.config).expanduser()))
    for var, key in ENV_OPTIONS.items():
        if environ.get(var):
            raw[key] = environ[var]
    for dest, key in FLAG_OPTIONS.items():
        value = getattr(args, dest)
        if value is not None:
            raw[key] = value
    # external tools run with cwd inside the build tree
    root = Path(str(raw.get("project_root", "."))).expanduser().resolve()
    raw["project_root"] = str(root)
    return raw

def _cmd_build(args: argparse.Namespace) -> int:
    cfg = resolve(options_from(args, os.environ))
    report = build(cfg)
    log.info("done: %d artifacts in %s", len(report.artifacts), cfg.paths.install_prefix)
    return 0

def _cmd_strip_archive(args: argparse.Namespace) -> int:
    archive = Path(args.archive).expanduser().resolve()
    members = args.member if args.member else list(load_strip_policy().members)
    result = strip_members(archive, members)
    log.info("%s: removed %d of %d members", archive.name, len(result.removed), len(members))
    return 0

def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)
    set_verbose(bool(getattr(args, "verbose", False)))
    try:
        if args.cmd == "build":
            return _cmd_build(args)
        return _cmd_strip_archive(args)
    except BuildError as e:
        log.error("[%s] %s", e.stage, e)
        return 2 if isinstance(e, ConfigurationError) else 1

if __name__ == "__main__":
    raise SystemExit(main())
