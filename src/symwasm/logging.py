from __future__ import annotations

import logging
import sys

class _BelowWarning(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.WARNING

def get_logger(name: str = "symwasm") -> logging.Logger:
    log = logging.getLogger(name)
    if log.handlers:
        return log
    fmt = logging.Formatter("[%(levelname)s] %(message)s")

    out = logging.StreamHandler(sys.stdout)
    out.setFormatter(fmt)
    out.addFilter(_BelowWarning())
    log.addHandler(out)

    # warnings and errors (including failing stage diagnostics) go to stderr
    err = logging.StreamHandler(sys.stderr)
    err.setFormatter(fmt)
    err.setLevel(logging.WARNING)
    log.addHandler(err)

    log.setLevel(logging.INFO)
    return log

def set_verbose(verbose: bool) -> None:
    get_logger().setLevel(logging.DEBUG if verbose else logging.INFO)
