# qbsync Path Utilities
# Safe file operations with atomic writes, backups and repository walking

import os
import shutil
import tempfile
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

BACKUP_DIR_NAME = "manifest_backups"


def expand_path(path: str | Path) -> Path:
    """
    Expand ~ and environment variables in path.

    Args:
        path: Path string or Path object.

    Returns:
        Expanded Path object.
    """
    path_str = str(path)
    path_str = os.path.expanduser(path_str)
    path_str = os.path.expandvars(path_str)
    return Path(path_str).resolve()


def ensure_dir(path: Path) -> Path:
    """
    Ensure directory exists, creating if necessary.

    Args:
        path: Directory path.

    Returns:
        The path that was ensured.
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def create_backup(path: Path) -> Path | None:
    """
    Copy a file into a ``manifest_backups`` directory beside it.

    Args:
        path: File to back up.

    Returns:
        Path to backup, or None if source doesn't exist.
    """
    if not path.exists():
        return None

    backup_dir = ensure_dir(path.parent / BACKUP_DIR_NAME)
    timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
    backup_path = backup_dir / f"{timestamp}_{path.name}"
    shutil.copy2(path, backup_path)
    return backup_path


def atomic_write(path: Path, content: str | bytes, *, encoding: str = "utf-8") -> None:
    """
    Atomically write content to file.

    Uses a temporary file in the target directory and ``os.replace``.

    Args:
        path: Target file path.
        content: Content to write (str or bytes).
        encoding: Encoding for string content (default utf-8).
    """
    ensure_dir(path.parent)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        if isinstance(content, str):
            with os.fdopen(fd, "w", encoding=encoding) as f:
                f.write(content)
        else:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def get_relative_path(path: Path, base: Path) -> Path | None:
    """
    Get path relative to base, or None if not relative.

    Args:
        path: Path to make relative.
        base: Base path.

    Returns:
        Relative path or None if not relative.
    """
    try:
        return path.relative_to(base)
    except ValueError:
        return None


def walk_tree(directory: Path, *, suffix: str | None = None) -> Iterator[tuple[Path, list[Path]]]:
    """
    Walk a repository top-down, parents before children.

    Hidden directories (``.git``) and the manifest backup directory are
    skipped. Siblings are visited in sorted order so runs are repeatable.

    Args:
        directory: Directory to walk.
        suffix: Optional file suffix filter (e.g. ".xml").

    Yields:
        Tuples of (directory, sorted files in that directory).
    """
    if not directory.is_dir():
        return

    for current, dirnames, filenames in os.walk(directory):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and d != BACKUP_DIR_NAME)
        files = [
            Path(current) / name
            for name in sorted(filenames)
            if not name.startswith(".") and (suffix is None or name.endswith(suffix))
        ]
        yield Path(current), files
