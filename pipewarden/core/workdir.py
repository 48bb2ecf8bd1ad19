"""Pipeline-root paths and scoped working-directory changes.

The current working directory is process-wide state.  Code that must run
with a project's pipeline root as its cwd does so inside
``working_directory`` so the previous directory is restored on every
exit path, including exceptions and ``KeyboardInterrupt``.  Command paths
are joined onto the root with ``resolve_in`` and never need a chdir.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

# chdir affects every thread; serialize holders.
_cwd_lock = threading.RLock()


@contextmanager
def working_directory(path: Path) -> Iterator[Path]:
    """Temporarily change the working directory to *path*."""
    with _cwd_lock:
        previous = os.getcwd()
        os.chdir(path)
        try:
            yield Path(path)
        finally:
            os.chdir(previous)


def resolve_in(root: Path, relative: str | Path) -> Path:
    """Join *relative* onto *root* and normalise it to an absolute path.

    Symlinks are left in place: a virtualenv interpreter must keep its
    own path to find its site-packages.
    """
    path = Path(relative)
    if path.is_absolute():
        return path
    return Path(os.path.abspath(Path(root) / path))
