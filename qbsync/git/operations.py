# qbsync Git Operations
# Git command execution for version-tracked question repositories

import subprocess
from pathlib import Path
from typing import Optional

from qbsync.errors import QbsyncError


class GitError(QbsyncError):
    """Exception raised for git operation errors."""

    def __init__(self, message: str, returncode: int = 1, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


def _run_git(
    *args: str,
    cwd: Optional[Path] = None,
    check: bool = True,
    capture_output: bool = True,
) -> subprocess.CompletedProcess[str]:
    """
    Run a git command.

    Args:
        *args: Git command arguments.
        cwd: Working directory.
        check: Whether to raise on non-zero exit.
        capture_output: Whether to capture stdout/stderr.

    Returns:
        CompletedProcess with result.

    Raises:
        GitError: If command fails and check is True.
    """
    cmd = ["git", *args]
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            check=False,
            capture_output=capture_output,
            text=True,
        )
        if check and result.returncode != 0:
            raise GitError(
                f"Git command failed: {' '.join(cmd)}",
                returncode=result.returncode,
                stderr=result.stderr.strip() if result.stderr else "",
            )
        return result
    except FileNotFoundError:
        raise GitError("git command not found. Is git installed?")


def get_repo_root(path: Optional[Path] = None) -> Optional[Path]:
    """
    Get the root directory of a git repository.

    Args:
        path: Starting path (defaults to current directory).

    Returns:
        Path to repo root, or None if not in a repo.
    """
    try:
        result = _run_git("rev-parse", "--show-toplevel", cwd=path)
        return Path(result.stdout.strip())
    except GitError:
        return None


def is_git_repo(path: Optional[Path] = None) -> bool:
    """
    Check if path is within a git repository.

    Args:
        path: Path to check (defaults to current directory).

    Returns:
        True if in a git repo.
    """
    return get_repo_root(path) is not None


def init_repo(path: Path) -> None:
    """
    Initialise a git repository in ``path`` unless it is already in one.

    Args:
        path: Directory to initialise.

    Raises:
        GitError: If git init fails.
    """
    if not is_git_repo(path):
        _run_git("init", cwd=path)


def has_commits(path: Optional[Path] = None) -> bool:
    """
    Check if the repository has a commit (HEAD is not unborn).

    Args:
        path: Repository path.

    Returns:
        True if HEAD points to a commit.
    """
    return _run_git("rev-parse", "--verify", "--quiet", "HEAD", cwd=path, check=False).returncode == 0


def has_uncommitted_changes(path: Optional[Path] = None) -> bool:
    """
    Check if the repository holding ``path`` has uncommitted changes.

    Everything is staged first and the index refreshed, so timestamp-only
    changes are not reported. In a repository without commits any staged
    file counts as a change.

    Args:
        path: Repository path.

    Returns:
        True if there are uncommitted changes.
    """
    _run_git("add", ".", cwd=path)
    if not has_commits(path):
        status = _run_git("status", "--porcelain", cwd=path)
        return bool(status.stdout.strip())
    _run_git("update-index", "--refresh", cwd=path, check=False)
    result = _run_git("diff-index", "--quiet", "HEAD", "--", cwd=path, check=False)
    return result.returncode != 0


def commit_hash_of(file_path: Path) -> Optional[str]:
    """
    Get the hash of the last commit that touched a file.

    Args:
        file_path: Absolute path of a tracked file.

    Returns:
        Commit hash, or None if the file has no history.
    """
    try:
        result = _run_git("log", "-n", "1", "--pretty=format:%H", "--", file_path.name, cwd=file_path.parent)
    except GitError:
        return None
    commit = result.stdout.strip()
    return commit or None


def ensure_gitignore(path: Path, patterns: list[str]) -> list[str]:
    """
    Append missing patterns to ``.gitignore`` in ``path``.

    Args:
        path: Repository directory.
        patterns: Patterns that must be ignored.

    Returns:
        Patterns that were added.
    """
    gitignore = path / ".gitignore"
    text = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
    existing = text.splitlines()

    missing = [p for p in patterns if p not in existing]
    if missing:
        with open(gitignore, "a", encoding="utf-8") as f:
            if text and not text.endswith("\n"):
                f.write("\n")
            f.write("\n".join(missing) + "\n")
    return missing


def commit_all(message: str, path: Optional[Path] = None) -> Optional[str]:
    """
    Stage everything and create a commit.

    Args:
        message: Commit message.
        path: Repository path.

    Returns:
        Commit hash if successful, None otherwise.
    """
    try:
        _run_git("add", ".", cwd=path)
        _run_git("commit", "-m", message, cwd=path)
        result = _run_git("rev-parse", "HEAD", cwd=path)
        return result.stdout.strip()
    except GitError:
        return None
