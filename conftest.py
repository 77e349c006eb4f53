import subprocess

import pytest

from linewise import (
    AgentAuthor,
    Checkpoint,
    CheckpointEntry,
    CheckpointStore,
    HumanAuthor,
    LineRange,
    ProgressReporter,
    WorkingLog,
)


@pytest.fixture
def quiet_reporter():
    return ProgressReporter(quiet=True)


@pytest.fixture
def alice():
    return HumanAuthor("Alice")


@pytest.fixture
def cursor():
    return AgentAuthor("cursor", "gpt-4")


@pytest.fixture
def claude():
    return AgentAuthor("claude", "sonnet")


def make_entry(path, added=(), removed=(), line_count=0, previous_path=None):
    """Entry from (start, end) tuples"""
    return CheckpointEntry(
        file_path=path,
        added_line_ranges=tuple(LineRange(s, e) for s, e in added),
        removed_line_ranges=tuple(LineRange(s, e) for s, e in removed),
        line_count=line_count,
        previous_path=previous_path,
    )


def make_log(*checkpoints, base="abc1234"):
    """WorkingLog from (author, [entries]) pairs, timestamps 1000, 1001, ..."""
    return WorkingLog(
        base,
        tuple(
            Checkpoint.create(author, entries, timestamp=1000 + i)
            for i, (author, entries) in enumerate(checkpoints)
        ),
    )


@pytest.fixture
def store(tmp_path):
    return CheckpointStore(str(tmp_path / "store"))


def _git(repo, *args):
    return subprocess.run(
        ["git", "-C", str(repo), "-c", "commit.gpgsign=false"] + list(args),
        check=True,
        capture_output=True,
    )


@pytest.fixture
def git_run():
    return _git


@pytest.fixture
def empty_git_repo(tmp_path):
    """Repository with no commits yet"""
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init")
    _git(repo, "config", "user.email", "tester@test.com")
    _git(repo, "config", "user.name", "Tester")
    return repo


@pytest.fixture
def git_repo(empty_git_repo):
    """Repository with one commit: app.py (3 lines) and README.md"""
    repo = empty_git_repo
    (repo / "app.py").write_text("a\nb\nc\n", encoding="utf-8")
    (repo / "README.md").write_text("# App\n", encoding="utf-8")
    _git(repo, "add", ".")
    _git(repo, "commit", "-m", "initial")
    return repo
