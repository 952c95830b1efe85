# qbsync Output Module
# Rich console output

from qbsync.output.console import Console, create_console

__all__ = [
    "Console",
    "create_console",
]
