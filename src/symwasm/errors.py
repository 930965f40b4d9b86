from __future__ import annotations

from typing import Iterable, List

class BuildError(Exception):
    """Fatal pipeline failure; `stage` names the component that raised it."""

    stage = "build"

class ConfigurationError(BuildError):
    stage = "config"

    def __init__(self, violations: Iterable[str]):
        self.violations: List[str] = list(violations)
        lines = "\n".join(f"  - {v}" for v in self.violations)
        super().__init__(f"invalid build configuration:\n{lines}")

class ToolchainDiscoveryError(BuildError):
    stage = "toolchain"

class DependencyAcquisitionError(BuildError):
    stage = "dependencies"

class DependencyBuildError(BuildError):
    stage = "dependencies"

class CompileError(BuildError):
    stage = "compile"

class LinkError(BuildError):
    stage = "link"

class InstallError(BuildError):
    stage = "install"
