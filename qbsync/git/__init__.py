# qbsync Git Module
# Git operations for question repositories

from qbsync.git.operations import (
    GitError,
    commit_all,
    commit_hash_of,
    ensure_gitignore,
    get_repo_root,
    has_commits,
    has_uncommitted_changes,
    init_repo,
    is_git_repo,
)

__all__ = [
    "GitError",
    "get_repo_root",
    "is_git_repo",
    "init_repo",
    "has_commits",
    "has_uncommitted_changes",
    "commit_hash_of",
    "ensure_gitignore",
    "commit_all",
]
