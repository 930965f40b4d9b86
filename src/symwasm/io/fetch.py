from __future__ import annotations

import shutil
import tarfile
import urllib.error
import urllib.request
from pathlib import Path
from urllib.parse import urlparse

from symwasm.errors import DependencyAcquisitionError
from symwasm.io.fs import ensure_dir, remove_tree
from symwasm.logging import get_logger

log = get_logger()

USER_AGENT = "symwasm/0.1"

def download(url: str, dest: Path, *, timeout: int = 60) -> Path:
    ensure_dir(dest.parent)
    part = dest.with_name(dest.name + ".part")
    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp, open(part, "wb") as out:
            shutil.copyfileobj(resp, out)
    except (urllib.error.URLError, OSError) as e:
        remove_tree(part)
        raise DependencyAcquisitionError(f"failed to download {url}: {e}") from e
    part.replace(dest)
    return dest

def extract(archive: Path, dest: Path) -> None:
    ensure_dir(dest)
    try:
        with tarfile.open(archive, "r:*") as tar:
            if hasattr(tarfile, "data_filter"):
                tar.extractall(dest, filter="data")
            else:
                tar.extractall(dest)
    except (tarfile.TarError, OSError) as e:
        raise DependencyAcquisitionError(f"failed to extract {archive.name}: {e}") from e

def fetch_source(url: str, install_path: Path, *, top_dir: str) -> Path:
    """
    Download a source tarball and place its `top_dir` at `install_path`.

    Everything happens in a scratch directory next to `install_path`; the
    final step is a single rename, so an interrupted fetch never leaves a
    half-extracted tree at the install location.
    """
    scratch = install_path.parent / f".{install_path.name}.scratch"
    remove_tree(scratch)
    ensure_dir(scratch)

    filename = Path(urlparse(url).path).name or "source.tar"
    log.info("downloading %s", url)
    archive = download(url, scratch / filename)
    unpacked = scratch / "unpacked"
    extract(archive, unpacked)

    src = unpacked / top_dir
    if not src.is_dir():
        raise DependencyAcquisitionError(f"{filename} does not contain {top_dir}/")

    remove_tree(install_path)
    ensure_dir(install_path.parent)
    src.rename(install_path)
    remove_tree(scratch)
    return install_path
