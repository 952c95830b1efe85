"""qbsync - Moodle question bank sync.

Synchronizes questions between a Moodle question bank (via the gitsync
webservices) and a local, optionally git tracked, question repository.
"""

__version__ = "1.0.0"

__all__ = [
    "__version__",
    "SyncEngine",
    "ManifestStore",
    "Manifest",
    "ManifestEntry",
    "Scope",
    "ContextLevel",
    "MoodleClient",
    "QbsyncError",
]


def __getattr__(name: str):
    """Lazy import to avoid loading dependencies during setup."""
    if name in ("SyncEngine", "ManifestStore", "Manifest", "ManifestEntry"):
        from qbsync import sync

        return getattr(sync, name)
    if name in ("Scope", "ContextLevel", "MoodleClient"):
        from qbsync import remote

        return getattr(remote, name)
    if name == "QbsyncError":
        from qbsync.errors import QbsyncError

        return QbsyncError
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
