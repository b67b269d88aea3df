from __future__ import annotations

import os
import shutil
import tempfile

from .models import Kind


def exists(path: str) -> Kind:
    """Kind at ``path``, following symlinks.

    A dangling symlink is still something in the way and reports FILE; see
    ``is_broken_link``.
    """
    if not os.path.lexists(path):
        return Kind.NONE
    if os.path.isdir(path):
        return Kind.DIRECTORY
    return Kind.FILE


def is_broken_link(path: str) -> bool:
    return os.path.islink(path) and not os.path.exists(path)


def remove_recursive(path: str) -> None:
    # Removing a symlink only drops the link, never what it points to.
    if os.path.islink(path):
        os.remove(path)
        return
    kind = exists(path)
    if kind is Kind.NONE:
        return
    if kind is Kind.DIRECTORY:
        shutil.rmtree(path)
    else:
        os.remove(path)


def create_directory(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def write_file(path: str, content: str) -> None:
    """Write atomically: temp file in the same directory, then replace."""
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".dvr-", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        # mkstemp creates 0600; containers mounting the file need to read it
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def set_permissions(path: str, mode: int) -> None:
    os.chmod(path, mode)
