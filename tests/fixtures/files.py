"""
Filesystem helpers for building and inspecting project trees in tests.
"""

from pathlib import Path
from typing import Dict, Tuple, Union


def write_file(root: Path, rel: str, content: Union[str, bytes]) -> Path:
    """Write a file below root, creating parent directories."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        path.write_text(content, encoding="utf-8")
    else:
        path.write_bytes(content)
    return path


def read_tree(root: Path, skip: Tuple[str, ...] = (".agent", ".git")) -> Dict[str, bytes]:
    """Snapshot every regular file below root, keyed by POSIX relative path."""
    files = {}
    for path in root.rglob("*"):
        rel = path.relative_to(root).as_posix()
        if rel.split("/")[0] in skip or path.is_symlink() or not path.is_file():
            continue
        files[rel] = path.read_bytes()
    return files
