from __future__ import annotations

from typing import Callable, Mapping, Optional

from symwasm.config import BuildConfig
from symwasm.io.fetch import fetch_source
from symwasm.io.process import run_command
from symwasm.logging import get_logger
from symwasm.stages.deps import resolve_dependencies
from symwasm.stages.install import BuildReport, install
from symwasm.stages.link import assemble
from symwasm.stages.toolchain import adapter_for

log = get_logger()

def build(
    cfg: BuildConfig,
    *,
    fetch: Callable[..., object] = fetch_source,
    run: Callable[..., str] = run_command,
    environ: Optional[Mapping[str, str]] = None,
) -> BuildReport:
    """
    Run the stages in order: toolchain discovery, dependencies, library
    compile, link/assembly, install. Any BuildError propagates unchanged and
    nothing is installed after it.
    """
    adapter = adapter_for(cfg)
    handle = adapter.discover(cfg, environ)
    log.info("toolchain: %s (%s), shape=%s, integer=%s",
             handle.name, handle.root, cfg.output_shape.value, cfg.integer_backend.value)

    # idempotent: dependencies already present are not fetched or rebuilt
    deps = resolve_dependencies(cfg, adapter, handle, fetch=fetch, run=run)
    if cfg.skip_library_build:
        log.info("skipping SymEngine library build")
        return BuildReport(config=cfg)

    archive = adapter.compile_library(deps.source_tree, cfg, deps, handle, run=run)
    assembly = assemble(archive, cfg, deps, handle, adapter, run=run)
    report = install(assembly, cfg)

    for line in report.summary_lines():
        log.info("%s", line)
    return report
