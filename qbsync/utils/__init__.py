# qbsync Utilities Module
# Helper functions for path handling

from qbsync.utils.paths import (
    atomic_write,
    create_backup,
    ensure_dir,
    expand_path,
    get_relative_path,
    walk_tree,
)

__all__ = [
    "expand_path",
    "ensure_dir",
    "create_backup",
    "atomic_write",
    "get_relative_path",
    "walk_tree",
]
