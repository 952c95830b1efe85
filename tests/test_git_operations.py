# Tests for qbsync.git.operations
# Git command execution for question repositories

import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import pytest

from qbsync.errors import QbsyncError
from qbsync.git.operations import (
    GitError,
    _run_git,
    commit_all,
    commit_hash_of,
    ensure_gitignore,
    get_repo_root,
    has_commits,
    has_uncommitted_changes,
    init_repo,
    is_git_repo,
)


class TestGitError:
    """Tests for GitError exception."""

    def test_basic_error(self):
        err = GitError("test message")
        assert err.message == "test message"
        assert err.returncode == 1
        assert err.stderr == ""
        assert isinstance(err, QbsyncError)

    def test_error_with_details(self):
        err = GitError("failed", returncode=128, stderr="fatal: not a repo")
        assert err.returncode == 128
        assert err.stderr == "fatal: not a repo"


class TestRunGit:
    """Tests for _run_git helper."""

    @patch("qbsync.git.operations.subprocess.run")
    def test_successful_command(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            args=["git", "status"], returncode=0, stdout="clean", stderr=""
        )
        result = _run_git("status")
        assert result.stdout == "clean"

    @patch("qbsync.git.operations.subprocess.run")
    def test_failed_command_raises(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            args=["git", "bad"], returncode=1, stdout="", stderr="error\n"
        )
        with pytest.raises(GitError) as exc_info:
            _run_git("bad")
        assert exc_info.value.stderr == "error"

    @patch("qbsync.git.operations.subprocess.run")
    def test_failed_command_no_check(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            args=["git", "bad"], returncode=1, stdout="", stderr="error"
        )
        assert _run_git("bad", check=False).returncode == 1

    @patch("qbsync.git.operations.subprocess.run", side_effect=FileNotFoundError)
    def test_git_not_found(self, mock_run):
        with pytest.raises(GitError, match="git command not found"):
            _run_git("status")

    @patch("qbsync.git.operations.subprocess.run")
    def test_cwd_passed(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(args=["git", "status"], returncode=0, stdout="", stderr="")
        _run_git("status", cwd=Path("/tmp"))
        mock_run.assert_called_once_with(
            ["git", "status"], cwd=Path("/tmp"), check=False, capture_output=True, text=True
        )


class TestRepoDetection:
    """Tests for get_repo_root and is_git_repo."""

    @patch("qbsync.git.operations._run_git")
    def test_returns_path(self, mock_git):
        mock_git.return_value = MagicMock(stdout="/home/user/questions\n")
        assert get_repo_root() == Path("/home/user/questions")

    @patch("qbsync.git.operations._run_git", side_effect=GitError("not a repo"))
    def test_returns_none_outside_repo(self, mock_git):
        assert get_repo_root() is None

    @patch("qbsync.git.operations.get_repo_root", return_value=Path("/repo"))
    def test_true_in_repo(self, mock_root):
        assert is_git_repo() is True

    @patch("qbsync.git.operations.get_repo_root", return_value=None)
    def test_false_outside_repo(self, mock_root):
        assert is_git_repo() is False


class TestUncommittedChanges:
    """Tests for has_uncommitted_changes."""

    @patch("qbsync.git.operations.has_commits", return_value=True)
    @patch("qbsync.git.operations._run_git")
    def test_changes(self, mock_git, mock_commits):
        mock_git.return_value = MagicMock(returncode=1)
        assert has_uncommitted_changes(Path("/repo")) is True

    @patch("qbsync.git.operations.has_commits", return_value=True)
    @patch("qbsync.git.operations._run_git")
    def test_clean(self, mock_git, mock_commits):
        mock_git.return_value = MagicMock(returncode=0)
        assert has_uncommitted_changes(Path("/repo")) is False

    @patch("qbsync.git.operations.has_commits", return_value=True)
    @patch("qbsync.git.operations._run_git")
    def test_stages_first(self, mock_git, mock_commits):
        mock_git.return_value = MagicMock(returncode=0)
        has_uncommitted_changes(Path("/repo"))
        assert mock_git.call_args_list[0] == call("add", ".", cwd=Path("/repo"))
        last = call("diff-index", "--quiet", "HEAD", "--", cwd=Path("/repo"), check=False)
        assert mock_git.call_args_list[-1] == last

    @patch("qbsync.git.operations.has_commits", return_value=False)
    @patch("qbsync.git.operations._run_git")
    def test_unborn_head_uses_status(self, mock_git, mock_commits):
        mock_git.return_value = MagicMock(returncode=0, stdout="")
        assert has_uncommitted_changes(Path("/repo")) is False
        assert call("status", "--porcelain", cwd=Path("/repo")) in mock_git.call_args_list
        assert all(c.args[0] != "diff-index" for c in mock_git.call_args_list)

    @patch("qbsync.git.operations.has_commits", return_value=False)
    @patch("qbsync.git.operations._run_git")
    def test_unborn_head_with_files(self, mock_git, mock_commits):
        mock_git.return_value = MagicMock(returncode=0, stdout="A  top/q1.xml\n")
        assert has_uncommitted_changes(Path("/repo")) is True


class TestHasCommits:
    """Tests for has_commits."""

    @patch("qbsync.git.operations._run_git")
    def test_commit(self, mock_git):
        mock_git.return_value = MagicMock(returncode=0)
        assert has_commits(Path("/repo")) is True
        mock_git.assert_called_once_with("rev-parse", "--verify", "--quiet", "HEAD", cwd=Path("/repo"), check=False)

    @patch("qbsync.git.operations._run_git")
    def test_unborn(self, mock_git):
        mock_git.return_value = MagicMock(returncode=1)
        assert has_commits(Path("/repo")) is False


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
class TestNewRepository:
    """Tests against a real repository without commits."""

    @pytest.fixture
    def repo(self, temp_dir: Path, git_identity) -> Path:
        path = temp_dir / "repo"
        path.mkdir()
        init_repo(path)
        return path

    def test_init_repo(self, repo: Path):
        assert is_git_repo(repo)
        assert not has_commits(repo)

    def test_init_repo_twice(self, repo: Path):
        init_repo(repo)
        assert is_git_repo(repo)

    def test_empty_repository_is_clean(self, repo: Path):
        assert has_uncommitted_changes(repo) is False

    def test_files_in_repository_without_commits(self, repo: Path):
        (repo / "q1.xml").write_text("<quiz/>")
        assert has_uncommitted_changes(repo) is True

    def test_clean_after_first_commit(self, repo: Path):
        (repo / "q1.xml").write_text("<quiz/>")
        commit = commit_all("Initial Commit", repo)
        assert commit is not None
        assert has_commits(repo)
        assert has_uncommitted_changes(repo) is False
        assert commit_hash_of(repo / "q1.xml") == commit


class TestCommitHashOf:
    """Tests for commit_hash_of."""

    @patch("qbsync.git.operations._run_git")
    def test_returns_hash(self, mock_git):
        mock_git.return_value = MagicMock(stdout="abc123\n")
        assert commit_hash_of(Path("/repo/top/q1.xml")) == "abc123"
        mock_git.assert_called_once_with("log", "-n", "1", "--pretty=format:%H", "--", "q1.xml", cwd=Path("/repo/top"))

    @patch("qbsync.git.operations._run_git")
    def test_no_history(self, mock_git):
        mock_git.return_value = MagicMock(stdout="")
        assert commit_hash_of(Path("/repo/new.xml")) is None

    @patch("qbsync.git.operations._run_git", side_effect=GitError("not a repo"))
    def test_error_returns_none(self, mock_git):
        assert commit_hash_of(Path("/repo/q.xml")) is None


class TestEnsureGitignore:
    """Tests for ensure_gitignore."""

    def test_creates_file(self, temp_dir: Path):
        added = ensure_gitignore(temp_dir, ["*.tmp", "manifest_backups/"])
        assert added == ["*.tmp", "manifest_backups/"]
        assert (temp_dir / ".gitignore").read_text() == "*.tmp\nmanifest_backups/\n"

    def test_appends_missing_only(self, temp_dir: Path):
        (temp_dir / ".gitignore").write_text("*.tmp")
        added = ensure_gitignore(temp_dir, ["*.tmp", "manifest_backups/"])
        assert added == ["manifest_backups/"]
        assert (temp_dir / ".gitignore").read_text() == "*.tmp\nmanifest_backups/\n"

    def test_appends_after_trailing_newline(self, temp_dir: Path):
        (temp_dir / ".gitignore").write_text("*.tmp\n")
        ensure_gitignore(temp_dir, ["manifest_backups/"])
        assert (temp_dir / ".gitignore").read_text() == "*.tmp\nmanifest_backups/\n"

    def test_nothing_missing(self, temp_dir: Path):
        (temp_dir / ".gitignore").write_text("*.tmp\n")
        assert ensure_gitignore(temp_dir, ["*.tmp"]) == []


class TestCommitAll:
    """Tests for commit_all."""

    @patch("qbsync.git.operations._run_git")
    def test_commit(self, mock_git):
        mock_git.return_value = MagicMock(stdout="deadbeef\n")
        assert commit_all("Initial Commit", Path("/repo")) == "deadbeef"
        assert call("commit", "-m", "Initial Commit", cwd=Path("/repo")) in mock_git.call_args_list

    @patch("qbsync.git.operations._run_git", side_effect=GitError("nothing to commit"))
    def test_failure_returns_none(self, mock_git):
        assert commit_all("Initial Commit") is None
