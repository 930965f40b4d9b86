from __future__ import annotations

from pathlib import Path
from string import Template

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

class _AtTemplate(Template):
    # CMake and C sources use ${...} themselves
    delimiter = "@"

def render(name: str, **values: str) -> str:
    """Render `templates/<name>`; a missing placeholder value raises KeyError."""
    text = (TEMPLATES_DIR / name).read_text(encoding="utf-8")
    return _AtTemplate(text).substitute(values)
