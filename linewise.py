#!/usr/bin/env python3
"""
linewise - line-level human/AI authorship tracking between commits

Records an ordered log of checkpoints on top of the current HEAD commit, each
tagged with the author who produced it (a human, or an AI agent identified by
tool and model), and replays that log to answer: of the code that currently
differs from HEAD, how much survives from each author?

Components:
- GitRepository: read-only access to the repository (HEAD, config, diffs)
- CheckpointStore: append-only JSONL working logs keyed by base commit
- CheckpointRecorder: diffs the working tree into new checkpoints
- VirtualAttributions: replays a working log into per-line ownership
- build_authorship_log: exportable, file-ordered ownership ranges
- StatsAggregator: gross (recorded) vs net (surviving) line totals
- main: click command line interface

Version: 1.0.0
"""

import difflib
import fcntl
import functools
import hashlib
import json
import os
import re
import subprocess
import sys
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

import click
import jsonschema
import yaml
from colorama import Fore, Style, just_fix_windows_console
from tqdm import tqdm


# Version information
VERSION = "1.0.0"
SCHEMA_VERSION = "1.0.0"

# Base identifier for working logs recorded before the first commit
INITIAL_BASE = "initial"

DEFAULT_RENAME_SIMILARITY = 0.5


# ============================================================================
# ERRORS
# ============================================================================


class LinewiseError(Exception):
    """Base class for every failure linewise reports to its caller"""


class CorruptCheckpoint(LinewiseError):
    """
    A checkpoint could not be replayed: unparseable record, schema violation,
    or line ranges that are malformed or inconsistent with the file state
    reached by the checkpoints before it.
    """

    def __init__(
        self,
        message: str,
        checkpoint_index: Optional[int] = None,
        file_path: Optional[str] = None,
    ):
        self.checkpoint_index = checkpoint_index
        self.file_path = file_path

        context = []
        if checkpoint_index is not None:
            context.append(f"checkpoint #{checkpoint_index}")
        if file_path:
            context.append(f"file {file_path}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class StoreUnavailable(LinewiseError):
    """The checkpoint store could not be read or written"""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class NotAGitRepository(LinewiseError):
    pass


class GitCommandError(LinewiseError, RuntimeError):
    pass


# ============================================================================
# DATA MODEL
# ============================================================================


@dataclass(frozen=True)
class HumanAuthor:
    """A person, identified by display name"""

    name: str

    kind = "human"

    @property
    def label(self) -> str:
        return self.name

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "name": self.name}


@dataclass(frozen=True)
class AgentAuthor:
    """An AI coding agent, identified by the tool running it and its model"""

    tool: str
    model: str

    kind = "ai_agent"

    @property
    def label(self) -> str:
        return f"{self.tool[:1].upper()}{self.tool[1:]} {self.model}"

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "tool": self.tool, "model": self.model}


Author = Union[HumanAuthor, AgentAuthor]


def author_from_dict(data: Dict[str, Any]) -> Author:
    if data.get("kind") == AgentAuthor.kind:
        return AgentAuthor(tool=data["tool"], model=data["model"])
    return HumanAuthor(name=data["name"])


def author_key(author: Author) -> str:
    """Stable string key, used for sorting and as a JSON object key"""
    if isinstance(author, AgentAuthor):
        return f"ai_agent:{author.tool}/{author.model}"
    return f"human:{author.name}"


@dataclass(frozen=True, order=True)
class LineRange:
    """
    Half-open range of 1-based line numbers: LineRange(3, 6) covers lines
    3, 4 and 5.
    """

    start: int
    end: int

    def __len__(self) -> int:
        return max(self.end - self.start, 0)

    def __str__(self) -> str:
        if self.end - self.start == 1:
            return str(self.start)
        return f"{self.start}-{self.end - 1}"

    def to_list(self) -> List[int]:
        return [self.start, self.end]

    @classmethod
    def from_list(cls, values: List[int]) -> "LineRange":
        return cls(int(values[0]), int(values[1]))


@dataclass(frozen=True)
class LineStats:
    additions: int = 0
    deletions: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"additions": self.additions, "deletions": self.deletions}


@dataclass(frozen=True)
class CheckpointEntry:
    """
    The edit a checkpoint made to one file.

    ``added_line_ranges`` are line numbers of the file as it stands right
    after this edit. ``removed_line_ranges`` are line numbers of the file as
    it stood right before it, i.e. after the previous checkpoint touching the
    file (or at the base commit). ``line_count`` is the length of the file
    after the edit, 0 when the edit deleted it. ``previous_path`` is set when
    the file was renamed from another path. ``content_digest`` is the sha256
    of the file content after the edit (None when deleted); the store keeps
    that content as a blob for the next checkpoint to diff against.
    """

    file_path: str
    added_line_ranges: Tuple[LineRange, ...] = ()
    removed_line_ranges: Tuple[LineRange, ...] = ()
    line_count: int = 0
    previous_path: Optional[str] = None
    content_digest: Optional[str] = None

    @property
    def additions(self) -> int:
        return sum(len(r) for r in self.added_line_ranges)

    @property
    def deletions(self) -> int:
        return sum(len(r) for r in self.removed_line_ranges)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "file_path": self.file_path,
            "added_line_ranges": [r.to_list() for r in self.added_line_ranges],
            "removed_line_ranges": [r.to_list() for r in self.removed_line_ranges],
            "line_count": self.line_count,
            "content_digest": self.content_digest,
        }
        if self.previous_path is not None:
            data["previous_path"] = self.previous_path
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckpointEntry":
        return cls(
            file_path=data["file_path"],
            added_line_ranges=tuple(
                LineRange.from_list(r) for r in data.get("added_line_ranges", [])
            ),
            removed_line_ranges=tuple(
                LineRange.from_list(r) for r in data.get("removed_line_ranges", [])
            ),
            line_count=data.get("line_count", 0),
            previous_path=data.get("previous_path"),
            content_digest=data.get("content_digest"),
        )


@dataclass(frozen=True)
class Checkpoint:
    """One recorded snapshot of edits, tagged with the author who made them"""

    timestamp: int
    author: Author
    entries: Tuple[CheckpointEntry, ...]
    line_stats: LineStats

    @classmethod
    def create(
        cls,
        author: Author,
        entries: Iterable[CheckpointEntry],
        timestamp: Optional[int] = None,
    ) -> "Checkpoint":
        """Build a checkpoint, computing line_stats from the entries"""
        entries = tuple(entries)
        stats = LineStats(
            additions=sum(e.additions for e in entries),
            deletions=sum(e.deletions for e in entries),
        )
        if timestamp is None:
            timestamp = int(time.time())
        return cls(timestamp=timestamp, author=author, entries=entries, line_stats=stats)

    @property
    def kind(self) -> str:
        return self.author.kind

    @property
    def is_human(self) -> bool:
        return isinstance(self.author, HumanAuthor)

    @property
    def agent_id(self) -> Optional[Dict[str, str]]:
        if isinstance(self.author, AgentAuthor):
            return {"tool": self.author.tool, "model": self.author.model}
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "timestamp": self.timestamp,
            "author": self.author.to_dict(),
            "entries": [e.to_dict() for e in self.entries],
            "line_stats": self.line_stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        stats = data.get("line_stats", {})
        return cls(
            timestamp=data["timestamp"],
            author=author_from_dict(data["author"]),
            entries=tuple(CheckpointEntry.from_dict(e) for e in data.get("entries", [])),
            line_stats=LineStats(
                additions=stats.get("additions", 0),
                deletions=stats.get("deletions", 0),
            ),
        )


@dataclass(frozen=True)
class WorkingLog:
    """
    Ordered checkpoint history for one base commit. Storage order is replay
    order; it is never re-sorted.
    """

    base_commit: str
    checkpoints: Tuple[Checkpoint, ...] = ()

    def __len__(self) -> int:
        return len(self.checkpoints)

    def __iter__(self) -> Iterator[Checkpoint]:
        return iter(self.checkpoints)

    @property
    def is_empty(self) -> bool:
        return not self.checkpoints

    def touched_paths(self) -> Set[str]:
        return {e.file_path for cp in self.checkpoints for e in cp.entries}

    def snapshot_state(self) -> Dict[str, Optional[str]]:
        """
        Content digest of every touched file as the last checkpoint left it,
        None for deleted files and rename sources.
        """
        state: Dict[str, Optional[str]] = {}
        for cp in self.checkpoints:
            for entry in cp.entries:
                if entry.previous_path is not None:
                    state[entry.previous_path] = None
                state[entry.file_path] = entry.content_digest
        return state

    def gross_totals(self) -> LineStats:
        return LineStats(
            additions=sum(cp.line_stats.additions for cp in self.checkpoints),
            deletions=sum(cp.line_stats.deletions for cp in self.checkpoints),
        )


_RANGE_SCHEMA = {
    "type": "array",
    "items": {"type": "integer"},
    "minItems": 2,
    "maxItems": 2,
}

CHECKPOINT_SCHEMA = {
    "type": "object",
    "required": ["timestamp", "author", "entries", "line_stats"],
    "properties": {
        "schema_version": {"type": "string"},
        "timestamp": {"type": "integer", "minimum": 0},
        "author": {
            "oneOf": [
                {
                    "type": "object",
                    "required": ["kind", "name"],
                    "properties": {
                        "kind": {"const": HumanAuthor.kind},
                        "name": {"type": "string"},
                    },
                    "additionalProperties": False,
                },
                {
                    "type": "object",
                    "required": ["kind", "tool", "model"],
                    "properties": {
                        "kind": {"const": AgentAuthor.kind},
                        "tool": {"type": "string", "minLength": 1},
                        "model": {"type": "string", "minLength": 1},
                    },
                    "additionalProperties": False,
                },
            ]
        },
        "entries": {
            "type": "array",
            "items": {
                "type": "object",
                "required": [
                    "file_path",
                    "added_line_ranges",
                    "removed_line_ranges",
                    "line_count",
                    "content_digest",
                ],
                "properties": {
                    "file_path": {"type": "string", "minLength": 1},
                    "added_line_ranges": {"type": "array", "items": _RANGE_SCHEMA},
                    "removed_line_ranges": {"type": "array", "items": _RANGE_SCHEMA},
                    "line_count": {"type": "integer", "minimum": 0},
                    "previous_path": {"type": ["string", "null"]},
                    "content_digest": {"type": ["string", "null"], "pattern": "^[0-9a-f]{64}$"},
                },
            },
        },
        "line_stats": {
            "type": "object",
            "required": ["additions", "deletions"],
            "properties": {
                "additions": {"type": "integer", "minimum": 0},
                "deletions": {"type": "integer", "minimum": 0},
            },
        },
    },
}

_CHECKPOINT_VALIDATOR = jsonschema.Draft7Validator(CHECKPOINT_SCHEMA)


# ============================================================================
# TEXT & DIFF HELPERS
# ============================================================================


_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


def count_lines(text: str) -> int:
    """Number of lines the way git counts them (a final unterminated line counts)"""
    if not text:
        return 0
    newlines = text.count("\n")
    return newlines if text.endswith("\n") else newlines + 1


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _coalesce(ranges: List[LineRange]) -> List[LineRange]:
    merged: List[LineRange] = []
    for r in ranges:
        if merged and merged[-1].end == r.start:
            merged[-1] = LineRange(merged[-1].start, r.end)
        else:
            merged.append(r)
    return merged


def parse_unified_diff(diff_output: str) -> Tuple[List[LineRange], List[LineRange]]:
    """
    Parse the ``@@`` hunk headers of a zero-context unified diff.

    Returns:
        (removed, added): removed ranges in old-file line numbers, added
        ranges in new-file line numbers
    """
    removed: List[LineRange] = []
    added: List[LineRange] = []

    for line in diff_output.split("\n"):
        m = _HUNK_RE.match(line)
        if not m:
            continue
        old_start = int(m.group(1))
        old_count = int(m.group(2)) if m.group(2) is not None else 1
        new_start = int(m.group(3))
        new_count = int(m.group(4)) if m.group(4) is not None else 1

        if old_count > 0:
            removed.append(LineRange(old_start, old_start + old_count))
        if new_count > 0:
            added.append(LineRange(new_start, new_start + new_count))

    return _coalesce(removed), _coalesce(added)


def line_similarity(old_text: str, new_text: str) -> float:
    """Similarity ratio (0.0-1.0) of two texts compared line by line"""
    matcher = difflib.SequenceMatcher(
        None, old_text.splitlines(), new_text.splitlines(), autojunk=False
    )
    return matcher.ratio()


def format_time_ago(timestamp: int, now: Optional[float] = None) -> str:
    if now is None:
        now = time.time()
    diff = max(int(now) - timestamp, 0)

    if diff < 60:
        return f"{diff} secs ago"
    if diff < 3600:
        return f"{diff // 60} mins ago"
    if diff < 86400:
        return f"{diff // 3600} hours ago"
    return f"{diff // 86400} days ago"


def short_sha(base_commit: str) -> str:
    if base_commit == INITIAL_BASE:
        return base_commit
    return base_commit[:7]


# ============================================================================
# VERSION CONTROL ACCESS
# ============================================================================


class GitRepository:
    """
    Read-only view of a git repository, driven through the git executable.
    """

    def __init__(self, repo_path: str):
        self.repo_path = os.path.abspath(repo_path)

    @classmethod
    def discover(cls, path: str = ".") -> "GitRepository":
        """Open the repository containing ``path``"""
        try:
            result = subprocess.run(
                ["git", "-C", path, "rev-parse", "--show-toplevel"],
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise GitCommandError(f"Unable to run git: {e}") from e

        if result.returncode != 0:
            raise NotAGitRepository(f"Not a git repository: {os.path.abspath(path)}")
        return cls(result.stdout.strip())

    def _run(
        self, *args: str, ok_codes: Tuple[int, ...] = (0,), check: bool = True
    ) -> subprocess.CompletedProcess:
        cmd = ["git", "-C", self.repo_path, *args]
        try:
            result = subprocess.run(cmd, capture_output=True)
        except OSError as e:
            raise GitCommandError(f"Unable to run git: {e}") from e

        if check and result.returncode not in ok_codes:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise GitCommandError(f"Git command failed: git {' '.join(args)}: {stderr}")
        return result

    def _run_text(self, *args: str, **kwargs) -> str:
        return self._run(*args, **kwargs).stdout.decode("utf-8", errors="replace")

    def head_sha(self) -> Optional[str]:
        """Current HEAD commit, or None on a branch with no commits yet"""
        result = self._run("rev-parse", "--verify", "--quiet", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.decode("utf-8").strip()

    def config_get(self, key: str) -> Optional[str]:
        result = self._run("config", "--get", key, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.decode("utf-8", errors="replace").strip()

    def git_dir(self) -> str:
        return self._run_text("rev-parse", "--absolute-git-dir").strip()

    def changed_paths(self, base_commit: str) -> Set[str]:
        """
        Paths that may differ from the base commit: tracked paths changed
        since ``base_commit`` plus untracked files that are not ignored.
        """
        if base_commit == INITIAL_BASE:
            output = self._run_text(
                "ls-files", "-z", "--cached", "--others", "--exclude-standard"
            )
            return {p for p in output.split("\0") if p}

        tracked = self._run_text(
            "diff", "--name-only", "-z", "--no-renames", base_commit, "--"
        )
        untracked = self._run_text("ls-files", "-z", "--others", "--exclude-standard")
        return {p for p in tracked.split("\0") + untracked.split("\0") if p}

    def read_base_file(self, base_commit: str, path: str) -> Optional[str]:
        """File content at the base commit, or None if absent or not text"""
        if base_commit == INITIAL_BASE:
            return None
        result = self._run("show", f"{base_commit}:{path}", check=False)
        if result.returncode != 0:
            return None
        try:
            return result.stdout.decode("utf-8")
        except UnicodeDecodeError:
            return None

    def read_working_file(self, path: str) -> Optional[str]:
        """Working-tree content, or None if absent or not text"""
        full_path = os.path.join(self.repo_path, path)
        try:
            with open(full_path, "rb") as f:
                raw = f.read()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return None

    def diff_ranges(
        self, old_text: str, new_text: str
    ) -> Tuple[List[LineRange], List[LineRange]]:
        """
        Diff two versions of a file with git.

        Returns:
            (removed, added) as parsed by parse_unified_diff
        """
        with tempfile.TemporaryDirectory(prefix="linewise-") as tmp:
            old_file = os.path.join(tmp, "old")
            new_file = os.path.join(tmp, "new")
            for file_path, text in ((old_file, old_text), (new_file, new_text)):
                with open(file_path, "w", encoding="utf-8", newline="") as f:
                    f.write(text)

            # --no-index exits with 1 when the files differ
            output = self._run_text(
                "diff",
                "--no-index",
                "--no-color",
                "--no-ext-diff",
                "--no-textconv",
                "--text",
                "-U0",
                "--",
                old_file,
                new_file,
                ok_codes=(0, 1),
            )
        return parse_unified_diff(output)

    def relative_path(self, path: str) -> str:
        """Repository-relative, slash-separated form of a filesystem path"""
        rel = os.path.relpath(os.path.realpath(path), os.path.realpath(self.repo_path))
        return rel.replace(os.sep, "/")


# ============================================================================
# CHECKPOINT STORE
# ============================================================================


_BASE_ID_RE = re.compile(r"^[0-9A-Za-z_.-]+$")


class WorkingLogWriter:
    """
    Handle for one working log while the store's exclusive lock is held.
    Obtained from CheckpointStore.writer(); never used after the block exits.
    """

    def __init__(self, store: "CheckpointStore", base_commit: str):
        self.store = store
        self.base_commit = base_commit

    def read_all(self) -> WorkingLog:
        return self.store._read_log(self.base_commit)

    def append(self, checkpoint: Checkpoint):
        self.store._append(self.base_commit, checkpoint)

    def read_blob(self, digest: str) -> str:
        return self.store.read_blob(digest)

    def write_blob(self, text: str) -> str:
        return self.store.write_blob(text)


class CheckpointStore:
    """
    Durable, append-only checkpoint logs partitioned by base commit.

    Layout under ``root``::

        working_logs/<base>/checkpoints.jsonl   one checkpoint per line
        working_logs/<base>/.lock               flock target
        blobs/<aa>/<sha256>                     file contents named by entry digests

    Writers hold an exclusive flock on the working log, readers a shared one,
    so a reader never observes a partially written checkpoint. The content
    snapshot after the last checkpoint is derived from the log itself
    (WorkingLog.snapshot_state), so one append records both.
    """

    LOG_FILE_NAME = "checkpoints.jsonl"
    LOCK_FILE_NAME = ".lock"

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    @classmethod
    def for_repository(
        cls, repo: GitRepository, store_dir: Optional[str] = None
    ) -> "CheckpointStore":
        """Store for a repository, by default inside its git directory"""
        if store_dir:
            return cls(os.path.join(repo.repo_path, os.path.expanduser(store_dir)))
        return cls(os.path.join(repo.git_dir(), "linewise"))

    # -- paths --------------------------------------------------------------

    def _log_dir(self, base_commit: str) -> str:
        if not _BASE_ID_RE.match(base_commit) or base_commit in (".", ".."):
            raise ValueError(f"Invalid base commit identifier: {base_commit!r}")
        return os.path.join(self.root, "working_logs", base_commit)

    def _log_path(self, base_commit: str) -> str:
        return os.path.join(self._log_dir(base_commit), self.LOG_FILE_NAME)

    def _blob_path(self, digest: str) -> str:
        return os.path.join(self.root, "blobs", digest[:2], digest)

    # -- locking ------------------------------------------------------------

    @contextmanager
    def _locked(self, base_commit: str, exclusive: bool):
        log_dir = self._log_dir(base_commit)
        try:
            os.makedirs(log_dir, exist_ok=True)
            fd = os.open(
                os.path.join(log_dir, self.LOCK_FILE_NAME), os.O_RDWR | os.O_CREAT, 0o644
            )
        except OSError as e:
            raise StoreUnavailable(
                f"Cannot open working log for {base_commit}: {e}", path=log_dir
            ) from e

        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            except OSError as e:
                raise StoreUnavailable(
                    f"Cannot lock working log for {base_commit}: {e}", path=log_dir
                ) from e
            yield
        finally:
            os.close(fd)

    @contextmanager
    def writer(self, base_commit: str) -> Iterator[WorkingLogWriter]:
        """
        Hold the exclusive lock on a working log. Concurrent recorders
        serialize here; whatever they read inside the block is the latest
        state.
        """
        with self._locked(base_commit, exclusive=True):
            yield WorkingLogWriter(self, base_commit)

    # -- public operations --------------------------------------------------

    def append(self, base_commit: str, checkpoint: Checkpoint):
        with self.writer(base_commit) as writer:
            writer.append(checkpoint)

    def read_all(self, base_commit: str) -> WorkingLog:
        """All checkpoints for a base commit in storage order (empty if none)"""
        if not os.path.exists(self._log_path(base_commit)):
            return WorkingLog(base_commit)
        with self._locked(base_commit, exclusive=False):
            return self._read_log(base_commit)

    def list_base_commits(self) -> List[str]:
        logs_dir = os.path.join(self.root, "working_logs")
        try:
            names = os.listdir(logs_dir)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreUnavailable(f"Cannot list working logs: {e}", path=logs_dir) from e
        return sorted(
            name
            for name in names
            if os.path.exists(os.path.join(logs_dir, name, self.LOG_FILE_NAME))
        )

    def read_blob(self, digest: str) -> str:
        path = self._blob_path(digest)
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except OSError as e:
            raise StoreUnavailable(f"Cannot read snapshot blob {digest}: {e}", path=path) from e

    def write_blob(self, text: str) -> str:
        """Store file content by hash and return the hash"""
        digest = content_hash(text)
        path = self._blob_path(digest)
        if not os.path.exists(path):
            self._atomic_write(path, text)
        return digest

    # -- internals (callers hold the lock) ----------------------------------

    def _read_log(self, base_commit: str) -> WorkingLog:
        path = self._log_path(base_commit)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw_lines = f.read().split("\n")
        except FileNotFoundError:
            return WorkingLog(base_commit)
        except OSError as e:
            raise StoreUnavailable(f"Cannot read working log: {e}", path=path) from e

        checkpoints: List[Checkpoint] = []
        for index, line in enumerate(l for l in raw_lines if l.strip()):
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise CorruptCheckpoint(
                    f"Unparseable checkpoint record: {e}", checkpoint_index=index
                ) from e

            error = jsonschema.exceptions.best_match(_CHECKPOINT_VALIDATOR.iter_errors(record))
            if error is not None:
                raise CorruptCheckpoint(
                    f"Checkpoint record does not match schema: {error.message}",
                    checkpoint_index=index,
                )

            checkpoint = Checkpoint.from_dict(record)
            if checkpoints and checkpoint.timestamp < checkpoints[-1].timestamp:
                raise CorruptCheckpoint(
                    "Checkpoint timestamp is earlier than the one before it",
                    checkpoint_index=index,
                )
            checkpoints.append(checkpoint)

        return WorkingLog(base_commit, tuple(checkpoints))

    def _append(self, base_commit: str, checkpoint: Checkpoint):
        path = self._log_path(base_commit)
        line = json.dumps(checkpoint.to_dict(), sort_keys=True, ensure_ascii=False) + "\n"
        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise StoreUnavailable(f"Cannot append checkpoint: {e}", path=path) from e

    def _atomic_write(self, path: str, text: str):
        directory = os.path.dirname(path)
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
        except OSError as e:
            raise StoreUnavailable(f"Cannot write {path}: {e}", path=path) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(text)
            os.replace(tmp_path, path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StoreUnavailable(f"Cannot write {path}: {e}", path=path) from e


# ============================================================================
# PROGRESS REPORTING
# ============================================================================


class ProgressReporter:
    """
    Console output for the CLI and the recorder
    - Color-coded messages (colorama)
    - Progress bars for long file scans (tqdm)
    - Errors always go to stderr, even when quiet
    """

    def __init__(
        self, quiet: bool = False, verbose: bool = False, use_colors: bool = True
    ):
        self.quiet = quiet
        self.verbose = verbose
        self.use_colors = use_colors
        self.stage_times = {}

    def _colorize(self, text: str, color: str) -> str:
        """Apply color if enabled"""
        if self.use_colors:
            return f"{color}{text}{Style.RESET_ALL}"
        return text

    def stage_start(self, stage_name: str, message: str = ""):
        """Mark the start of a processing stage (verbose only)"""
        self.stage_times[stage_name] = time.time()
        if self.quiet or not self.verbose:
            return
        print(self._colorize(f"🔄 {stage_name}", Fore.BLUE + Style.BRIGHT))
        if message:
            print(f"   {message}")

    def stage_complete(self, stage_name: str, stats: Optional[Dict] = None):
        if self.quiet or not self.verbose:
            return
        elapsed = time.time() - self.stage_times.get(stage_name, time.time())
        print(
            self._colorize(
                f"✅ {stage_name} complete ({elapsed:.2f}s)", Fore.GREEN + Style.BRIGHT
            )
        )
        if stats:
            for key, value in stats.items():
                print(f"   {key}: {value}")

    def create_progress_bar(
        self, total: int, desc: str = "Scanning", unit: str = " files"
    ) -> Optional[tqdm]:
        """Progress bar with ETA, or None when quiet"""
        if self.quiet:
            return None
        return tqdm(
            total=total,
            desc=self._colorize(desc, Fore.CYAN),
            unit=unit,
            ncols=100,
            leave=False,
            file=sys.stderr,
        )

    def info(self, message: str):
        if not self.quiet:
            print(f"{self._colorize('ℹ️  ', Fore.BLUE)}{message}")

    def warning(self, message: str):
        if not self.quiet:
            print(f"{self._colorize('⚠️  ', Fore.YELLOW + Style.BRIGHT)}{message}")

    def error(self, message: str):
        """Display error message (always shown)"""
        print(self._colorize(f"❌ ERROR: {message}", Fore.RED + Style.BRIGHT), file=sys.stderr)

    def success(self, message: str):
        if not self.quiet:
            print(self._colorize(f"✨ {message}", Fore.GREEN + Style.BRIGHT))

    def dim(self, message: str):
        if not self.quiet:
            print(self._colorize(message, Fore.LIGHTBLACK_EX))

    def line(self, message: str = ""):
        if not self.quiet:
            print(message)

    def bar(self, left_label: str, left: int, right_label: str, right: int, width: int = 40):
        """Two-segment proportion bar, e.g. human vs AI lines"""
        if self.quiet or left + right == 0:
            return
        right_width = round(width * right / (left + right))
        bar = self._colorize("█" * (width - right_width), Fore.LIGHTBLACK_EX)
        bar += self._colorize("█" * right_width, Fore.MAGENTA)
        print(f"   {left_label} {bar} {right_label}")

    def summary(self, title: str, stats: Dict[str, Any]):
        if self.quiet:
            return
        separator = self._colorize("=" * 70, Fore.CYAN)
        print(separator)
        print(self._colorize(f"📊 {title}", Fore.MAGENTA + Style.BRIGHT))
        print(separator)
        for key, value in stats.items():
            print(f"   {key}: {value}")


# ============================================================================
# CHECKPOINT RECORDER
# ============================================================================


class CheckpointRecorder:
    """
    Turns working-tree changes into checkpoints.

    Each checkpoint is diffed against the content left by the previous one
    (or against the base commit for files no checkpoint has touched yet), so
    replaying the log reproduces the working tree's line layout exactly.
    """

    def __init__(
        self,
        repo: GitRepository,
        store: CheckpointStore,
        reporter: Optional[ProgressReporter] = None,
        rename_similarity: Optional[float] = DEFAULT_RENAME_SIMILARITY,
        clock: Callable[[], float] = time.time,
    ):
        self.repo = repo
        self.store = store
        self.reporter = reporter or ProgressReporter(quiet=True)
        self.rename_similarity = rename_similarity
        self.clock = clock

    def current_base(self) -> str:
        return self.repo.head_sha() or INITIAL_BASE

    def record(
        self, author: Author, paths: Optional[Iterable[str]] = None
    ) -> Optional[Checkpoint]:
        """
        Record a checkpoint for everything that changed since the last one.

        Args:
            author: who made the changes
            paths: restrict the checkpoint to these repository-relative paths

        Returns:
            The appended checkpoint, or None when nothing changed
        """
        base = self.current_base()
        self.reporter.stage_start("Checkpoint", f"Diffing working tree against {short_sha(base)}")

        with self.store.writer(base) as writer:
            working_log = writer.read_all()
            state = working_log.snapshot_state()

            candidates = set(state) | self.repo.changed_paths(base)
            if paths is not None:
                candidates &= set(paths)

            changes = self._collect_changes(base, state, sorted(candidates), writer)
            entries = self._build_entries(changes, writer)
            if not entries:
                self.reporter.stage_complete("Checkpoint", {"Changed files": 0})
                return None

            timestamp = int(self.clock())
            if working_log.checkpoints:
                timestamp = max(timestamp, working_log.checkpoints[-1].timestamp)
            checkpoint = Checkpoint.create(author, entries, timestamp)

            # Blobs are already stored, so this single append records the edit
            # and the new content snapshot together
            writer.append(checkpoint)

        self.reporter.stage_complete(
            "Checkpoint",
            {
                "Changed files": len(entries),
                "Lines": f"+{checkpoint.line_stats.additions} -{checkpoint.line_stats.deletions}",
            },
        )
        return checkpoint

    def _previous_content(
        self,
        base: str,
        state: Dict[str, Optional[str]],
        path: str,
        writer: WorkingLogWriter,
    ) -> Optional[str]:
        if path in state:
            digest = state[path]
            return writer.read_blob(digest) if digest is not None else None
        return self.repo.read_base_file(base, path)

    def _collect_changes(
        self,
        base: str,
        state: Dict[str, Optional[str]],
        candidates: List[str],
        writer: WorkingLogWriter,
    ) -> Dict[str, Tuple[Optional[str], Optional[str]]]:
        changes = {}
        progress_bar = None
        if len(candidates) > 200:
            progress_bar = self.reporter.create_progress_bar(
                total=len(candidates), desc="Scanning files"
            )

        for path in candidates:
            old_text = self._previous_content(base, state, path, writer)
            new_text = self.repo.read_working_file(path)
            if old_text != new_text:
                changes[path] = (old_text, new_text)
            if progress_bar:
                progress_bar.update(1)

        if progress_bar:
            progress_bar.close()
        return changes

    def _detect_renames(
        self, changes: Dict[str, Tuple[Optional[str], Optional[str]]]
    ) -> Dict[str, str]:
        """Map new path -> old path for deleted/created pairs with similar content"""
        if self.rename_similarity is None:
            return {}

        deleted = sorted(p for p, (old, new) in changes.items() if new is None and old)
        created = sorted(p for p, (old, new) in changes.items() if old is None and new)
        renames = {}

        for old_path in deleted:
            best_path, best_score = None, self.rename_similarity
            for new_path in created:
                if new_path in renames:
                    continue
                score = line_similarity(changes[old_path][0], changes[new_path][1])
                if score >= best_score and (best_path is None or score > best_score):
                    best_path, best_score = new_path, score
            if best_path is not None:
                renames[best_path] = old_path

        return renames

    def _build_entries(
        self,
        changes: Dict[str, Tuple[Optional[str], Optional[str]]],
        writer: WorkingLogWriter,
    ) -> List[CheckpointEntry]:
        renames = self._detect_renames(changes)
        renamed_from = set(renames.values())

        entries = []
        for path in sorted(changes):
            if path in renamed_from:
                continue
            old_text, new_text = changes[path]
            previous_path = renames.get(path)
            if previous_path is not None:
                old_text = changes[previous_path][0]

            removed, added = self.repo.diff_ranges(old_text or "", new_text or "")
            if not removed and not added and previous_path is None:
                continue
            entries.append(
                CheckpointEntry(
                    file_path=path,
                    added_line_ranges=tuple(added),
                    removed_line_ranges=tuple(removed),
                    line_count=count_lines(new_text or ""),
                    previous_path=previous_path,
                    content_digest=writer.write_blob(new_text) if new_text is not None else None,
                )
            )
        return entries


# ============================================================================
# VIRTUAL ATTRIBUTION ENGINE
# ============================================================================


class LineOwnership:
    """
    Current owner of every line of every file touched by a working log.

    Each file is a list with one slot per current line holding the index of
    the checkpoint that last wrote it, or None for lines from the base commit.
    """

    def __init__(self, working_log: WorkingLog, slots: Dict[str, List[Optional[int]]]):
        self.working_log = working_log
        self._slots = slots

    def __contains__(self, path: str) -> bool:
        return path in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def files(self) -> List[str]:
        return sorted(self._slots)

    def line_count(self, path: str) -> int:
        return len(self._slots.get(path, ()))

    def checkpoint_indexes(self, path: str) -> List[Optional[int]]:
        return list(self._slots.get(path, ()))

    def owners(self, path: str) -> List[Optional[Author]]:
        checkpoints = self.working_log.checkpoints
        return [
            checkpoints[i].author if i is not None else None
            for i in self._slots.get(path, ())
        ]

    def checkpoint_at(self, path: str, line: int) -> Optional[int]:
        slots = self._slots.get(path)
        if slots is None:
            return None
        if line < 1 or line > len(slots):
            raise IndexError(f"{path} has {len(slots)} lines, no line {line}")
        return slots[line - 1]

    def owner_at(self, path: str, line: int) -> Optional[Author]:
        index = self.checkpoint_at(path, line)
        if index is None:
            return None
        return self.working_log.checkpoints[index].author


class VirtualAttributions:
    """
    Replays a working log to find who last wrote each surviving line.

    Lines are tracked as slots that move as lines above them are inserted or
    removed, so every checkpoint's ranges are resolved against the file as it
    stood at that point of the replay, never against stale offsets.

    Usage::

        va = VirtualAttributions.from_store(store, base_commit)
        ownership = va.ownership(paths={"src/app.py"})
    """

    def __init__(self, working_log: WorkingLog):
        self.working_log = working_log
        self._replayed: Optional[Dict[str, List[Optional[int]]]] = None

    @classmethod
    def from_working_log(cls, working_log: WorkingLog) -> "VirtualAttributions":
        return cls(working_log)

    @classmethod
    def from_store(cls, store: CheckpointStore, base_commit: str) -> "VirtualAttributions":
        return cls(store.read_all(base_commit))

    def ownership(self, paths: Optional[Iterable[str]] = None) -> LineOwnership:
        """
        Ownership map of the current file states, optionally limited to
        ``paths``. Deleted files are not included.
        """
        if self._replayed is None:
            self._replayed = self._replay()

        wanted = set(paths) if paths is not None else None
        slots = {
            path: lines
            for path, lines in self._replayed.items()
            if lines and (wanted is None or path in wanted)
        }
        return LineOwnership(self.working_log, slots)

    def _replay(self) -> Dict[str, List[Optional[int]]]:
        files: Dict[str, List[Optional[int]]] = {}

        for index, checkpoint in enumerate(self.working_log.checkpoints):
            for entry in checkpoint.entries:
                self._apply_entry(files, index, entry)

            additions = sum(e.additions for e in checkpoint.entries)
            deletions = sum(e.deletions for e in checkpoint.entries)
            if (additions, deletions) != (
                checkpoint.line_stats.additions,
                checkpoint.line_stats.deletions,
            ):
                raise CorruptCheckpoint(
                    f"line_stats +{checkpoint.line_stats.additions} "
                    f"-{checkpoint.line_stats.deletions} disagree with recorded "
                    f"ranges +{additions} -{deletions}",
                    checkpoint_index=index,
                )

        return files

    @staticmethod
    def _check_ranges(ranges: Tuple[LineRange, ...], label: str, index: int, path: str):
        previous = None
        for r in ranges:
            if r.start < 1 or r.end <= r.start:
                raise CorruptCheckpoint(
                    f"Malformed {label} range [{r.start}, {r.end})",
                    checkpoint_index=index,
                    file_path=path,
                )
            if previous is not None and r.start < previous.end:
                raise CorruptCheckpoint(
                    f"{label.capitalize()} ranges overlap or are out of order: "
                    f"[{previous.start}, {previous.end}) then [{r.start}, {r.end})",
                    checkpoint_index=index,
                    file_path=path,
                )
            previous = r

    def _apply_entry(
        self, files: Dict[str, List[Optional[int]]], index: int, entry: CheckpointEntry
    ):
        path = entry.file_path
        self._check_ranges(entry.removed_line_ranges, "removed", index, path)
        self._check_ranges(entry.added_line_ranges, "added", index, path)

        if entry.previous_path is not None:
            if entry.previous_path == path:
                raise CorruptCheckpoint(
                    "File renamed onto itself", checkpoint_index=index, file_path=path
                )
            slots = files.get(entry.previous_path)
            files[entry.previous_path] = []
        else:
            slots = files.get(path)

        added = entry.additions
        removed = entry.deletions

        if slots is None:
            # First time this file is seen: its base-commit length follows from the entry
            base_length = entry.line_count - added + removed
            if base_length < 0:
                raise CorruptCheckpoint(
                    f"line_count {entry.line_count} is smaller than the {added} added lines",
                    checkpoint_index=index,
                    file_path=path,
                )
            slots = [None] * base_length

        pre_length = len(slots)
        if entry.removed_line_ranges and entry.removed_line_ranges[-1].end - 1 > pre_length:
            r = entry.removed_line_ranges[-1]
            raise CorruptCheckpoint(
                f"Removed range [{r.start}, {r.end}) is beyond the end of the file "
                f"({pre_length} lines)",
                checkpoint_index=index,
                file_path=path,
            )
        if entry.added_line_ranges and entry.added_line_ranges[-1].end - 1 > entry.line_count:
            r = entry.added_line_ranges[-1]
            raise CorruptCheckpoint(
                f"Added range [{r.start}, {r.end}) is beyond the end of the file "
                f"({entry.line_count} lines)",
                checkpoint_index=index,
                file_path=path,
            )
        if pre_length - removed + added != entry.line_count:
            raise CorruptCheckpoint(
                f"File had {pre_length} lines; -{removed} +{added} gives "
                f"{pre_length - removed + added}, but the entry records {entry.line_count}",
                checkpoint_index=index,
                file_path=path,
            )

        kept: List[Optional[int]] = []
        cursor = 1
        for r in entry.removed_line_ranges:
            kept.extend(slots[cursor - 1 : r.start - 1])
            cursor = r.end
        kept.extend(slots[cursor - 1 :])

        result: List[Optional[int]] = []
        taken = 0
        for r in entry.added_line_ranges:
            gap = r.start - 1 - len(result)
            result.extend(kept[taken : taken + gap])
            taken += gap
            result.extend([index] * len(r))
        result.extend(kept[taken:])

        files[path] = result


# ============================================================================
# AUTHORSHIP LOG
# ============================================================================


@dataclass(frozen=True)
class AuthorshipEntry:
    line_range: LineRange
    owner: Author

    def to_dict(self) -> Dict[str, Any]:
        return {"line_range": self.line_range.to_list(), "owner": self.owner.to_dict()}


@dataclass(frozen=True)
class AuthorshipLog:
    """
    Exportable ownership snapshot: file path -> line ranges with their owner,
    files in path order, ranges in line order. Base-commit lines are omitted.
    """

    base_commit: str
    files: Dict[str, Tuple[AuthorshipEntry, ...]] = field(default_factory=dict)

    def file_paths(self) -> List[str]:
        return sorted(self.files)

    def entries_for(self, path: str) -> Tuple[AuthorshipEntry, ...]:
        return self.files.get(path, ())

    def net_lines_by_owner(self) -> Dict[Author, int]:
        counts: Dict[Author, int] = {}
        for entries in self.files.values():
            for entry in entries:
                counts[entry.owner] = counts.get(entry.owner, 0) + len(entry.line_range)
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "base_commit": self.base_commit,
            "files": {
                path: [entry.to_dict() for entry in self.files[path]]
                for path in self.file_paths()
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthorshipLog":
        files = {
            path: tuple(
                AuthorshipEntry(
                    line_range=LineRange.from_list(item["line_range"]),
                    owner=author_from_dict(item["owner"]),
                )
                for item in items
            )
            for path, items in data.get("files", {}).items()
        }
        return cls(base_commit=data["base_commit"], files=files)


def build_authorship_log(
    ownership: LineOwnership, paths: Optional[Iterable[str]] = None
) -> AuthorshipLog:
    """
    Collapse a LineOwnership map into owner ranges, keeping only ``paths``
    (all files when None). Adjacent lines with the same owner merge into one
    range.
    """
    wanted = set(paths) if paths is not None else None
    files = {}

    for path in ownership.files():
        if wanted is not None and path not in wanted:
            continue

        entries: List[AuthorshipEntry] = []
        for line, owner in enumerate(ownership.owners(path), start=1):
            if owner is None:
                continue
            last = entries[-1] if entries else None
            if last is not None and last.owner == owner and last.line_range.end == line:
                entries[-1] = AuthorshipEntry(LineRange(last.line_range.start, line + 1), owner)
            else:
                entries.append(AuthorshipEntry(LineRange(line, line + 1), owner))

        if entries:
            files[path] = tuple(entries)

    return AuthorshipLog(base_commit=ownership.working_log.base_commit, files=files)


# ============================================================================
# STATS AGGREGATION
# ============================================================================


@dataclass
class AuthorStats:
    author: Author
    checkpoints: int = 0
    gross_additions: int = 0
    gross_deletions: int = 0
    net_additions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "author": self.author.to_dict(),
            "checkpoints": self.checkpoints,
            "gross_additions": self.gross_additions,
            "gross_deletions": self.gross_deletions,
            "net_additions": self.net_additions,
        }


@dataclass
class AuthorshipStats:
    """
    Gross totals are what the checkpoints recorded; net totals count only
    lines that survive in the current working tree.
    """

    gross_additions: int = 0
    gross_deletions: int = 0
    human_net: int = 0
    ai_net: int = 0
    authors: Dict[str, AuthorStats] = field(default_factory=dict)
    tool_model_breakdown: Dict[str, int] = field(default_factory=dict)

    @property
    def total_net(self) -> int:
        return self.human_net + self.ai_net

    @property
    def discarded_additions(self) -> int:
        """Recorded additions that were later overwritten or deleted"""
        return self.gross_additions - self.total_net

    @property
    def human_percentage(self) -> float:
        return round(self.human_net / self.total_net * 100, 1) if self.total_net else 0.0

    @property
    def ai_percentage(self) -> float:
        return round(self.ai_net / self.total_net * 100, 1) if self.total_net else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gross_additions": self.gross_additions,
            "gross_deletions": self.gross_deletions,
            "net_additions": self.total_net,
            "discarded_additions": self.discarded_additions,
            "human_net": self.human_net,
            "ai_net": self.ai_net,
            "human_percentage": self.human_percentage,
            "ai_percentage": self.ai_percentage,
            "authors": {key: stats.to_dict() for key, stats in sorted(self.authors.items())},
            "tool_model_breakdown": dict(sorted(self.tool_model_breakdown.items())),
        }


class StatsAggregator:
    """
    Combines the raw checkpoint totals of a working log with an authorship
    log into reportable stats.

    Usage::

        aggregator = StatsAggregator()
        aggregator.process_working_log(working_log)
        stats = aggregator.finalize(authorship_log)
    """

    def __init__(self, reporter: Optional[ProgressReporter] = None):
        self.reporter = reporter or ProgressReporter(quiet=True)
        self.gross_additions = 0
        self.gross_deletions = 0
        self.authors: Dict[str, AuthorStats] = {}

    def _author_stats(self, author: Author) -> AuthorStats:
        key = author_key(author)
        if key not in self.authors:
            self.authors[key] = AuthorStats(author=author)
        return self.authors[key]

    def process_checkpoint(self, checkpoint: Checkpoint):
        self.gross_additions += checkpoint.line_stats.additions
        self.gross_deletions += checkpoint.line_stats.deletions

        stats = self._author_stats(checkpoint.author)
        stats.checkpoints += 1
        stats.gross_additions += checkpoint.line_stats.additions
        stats.gross_deletions += checkpoint.line_stats.deletions

    def process_working_log(self, working_log: WorkingLog):
        for checkpoint in working_log:
            self.process_checkpoint(checkpoint)

    def finalize(self, authorship_log: AuthorshipLog) -> AuthorshipStats:
        result = AuthorshipStats(
            gross_additions=self.gross_additions,
            gross_deletions=self.gross_deletions,
        )
        for key, stats in self.authors.items():
            result.authors[key] = AuthorStats(
                author=stats.author,
                checkpoints=stats.checkpoints,
                gross_additions=stats.gross_additions,
                gross_deletions=stats.gross_deletions,
            )

        for owner, lines in authorship_log.net_lines_by_owner().items():
            key = author_key(owner)
            if key not in result.authors:
                result.authors[key] = AuthorStats(author=owner)
            result.authors[key].net_additions += lines

            if isinstance(owner, AgentAuthor):
                result.ai_net += lines
                result.tool_model_breakdown[owner.label] = (
                    result.tool_model_breakdown.get(owner.label, 0) + lines
                )
            else:
                result.human_net += lines

        return result

    def export(self, authorship_log: AuthorshipLog, output_path: str) -> AuthorshipStats:
        """Write the authorship log and its stats to a JSON file"""
        stats = self.finalize(authorship_log)
        data = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "authorship_log": authorship_log.to_dict(),
            "stats": stats.to_dict(),
        }
        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True, ensure_ascii=False)
        self.reporter.success(f"Authorship exported to {output_path}")
        return stats


def compute_stats(
    working_log: WorkingLog, paths: Optional[Iterable[str]] = None
) -> Tuple[AuthorshipLog, AuthorshipStats]:
    """Replay, build the authorship log and aggregate stats in one go"""
    ownership = VirtualAttributions.from_working_log(working_log).ownership()
    authorship_log = build_authorship_log(ownership, paths)
    aggregator = StatsAggregator()
    aggregator.process_working_log(working_log)
    return authorship_log, aggregator.finalize(authorship_log)


# ============================================================================
# CONFIGURATION
# ============================================================================


CONFIG_FILE_NAMES = [".linewise.yaml", ".linewise.yml", ".linewise.json"]

PRESETS = {
    "minimal": {"show_checkpoints": False, "show_files": False},
    "standard": {"show_checkpoints": True, "show_files": False},
    "detailed": {"show_checkpoints": True, "show_files": True},
}


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML or JSON file"""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    file_ext = os.path.splitext(config_path)[1].lower()

    with open(config_path, "r", encoding="utf-8") as f:
        if file_ext in [".yaml", ".yml"]:
            data = yaml.safe_load(f)
        elif file_ext == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {file_ext}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_path}")
    return data


def find_config_file(repo_path: str) -> Optional[str]:
    """Look for .linewise.yaml/.yml/.json in the repository, then the current directory"""
    for search_dir in [repo_path, os.getcwd()]:
        for config_name in CONFIG_FILE_NAMES:
            config_path = os.path.join(search_dir, config_name)
            if os.path.exists(config_path):
                return config_path
    return None


class ConfigResolver:
    """
    Resolve configuration with precedence: CLI > Config File > Preset > Defaults
    """

    def __init__(
        self,
        cli_args: Dict[str, Any],
        config_path: Optional[str],
        preset_name: Optional[str],
        repo_path: str,
    ):
        self.cli = {k: v for k, v in cli_args.items() if v is not None}
        self.config = {}
        self.preset = {}
        self.source = None
        self.warnings = []

        if config_path:
            self.config = load_config_file(config_path)
            self.source = config_path
        else:
            auto_path = find_config_file(repo_path)
            if auto_path:
                try:
                    self.config = load_config_file(auto_path)
                    self.source = auto_path
                except (OSError, ValueError, yaml.YAMLError) as e:
                    self.warnings.append(f"Found config file but failed to load: {e}")

        # Normalize config keys (kebab-case to snake_case)
        self.config = {k.replace("-", "_"): v for k, v in self.config.items()}

        self.use_preset(preset_name or self.config.get("preset"))

    def use_preset(self, name: Optional[str]):
        self.preset = PRESETS.get(name, {}) if name else {}

    def get(self, key: str, default: Any = None) -> Any:
        """Resolve value based on precedence"""
        if key in self.cli:
            return self.cli[key]
        if key in self.config:
            return self.config[key]
        if key in self.preset:
            return self.preset[key]
        return default


def resolve_human_name(
    repo: GitRepository, resolver: ConfigResolver, override: Optional[str] = None
) -> str:
    """--name, then config human_name, then git user.name, then 'unknown'"""
    for candidate in (override, resolver.get("human_name")):
        if candidate and str(candidate).strip():
            return str(candidate).strip()
    name = repo.config_get("user.name")
    if name and name.strip():
        return name.strip()
    return "unknown"


# ============================================================================
# CLI INTERFACE
# ============================================================================


@dataclass
class CliState:
    repo: GitRepository
    store: CheckpointStore
    resolver: ConfigResolver
    reporter: ProgressReporter

    def recorder(self, reporter: Optional[ProgressReporter] = None) -> CheckpointRecorder:
        return CheckpointRecorder(
            self.repo,
            self.store,
            reporter=reporter or self.reporter,
            rename_similarity=self.resolver.get("rename_similarity", DEFAULT_RENAME_SIMILARITY),
        )

    def base_commit(self) -> str:
        return self.repo.head_sha() or INITIAL_BASE


def _reports_errors(func):
    """Print LinewiseErrors through the reporter and exit with status 1"""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LinewiseError as e:
            ctx = click.get_current_context()
            state = ctx.find_object(CliState)
            reporter = state.reporter if state else ProgressReporter()
            reporter.error(str(e))
            ctx.exit(1)

    return wrapper


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "-C",
    "--repo",
    "repo_path",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Repository to operate on (default: current directory)",
)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path (.yaml or .json)",
)
@click.option(
    "-q", "--quiet", is_flag=True, default=None, help="Suppress informational output"
)
@click.option(
    "-v", "--verbose", is_flag=True, default=None, help="Show detailed progress information"
)
@click.option("--no-color", is_flag=True, default=None, help="Disable colored output")
@click.version_option(version=VERSION)
@click.pass_context
def main(ctx, repo_path, config, **kwargs):
    """
    linewise - who wrote the lines that changed since HEAD?

    Records checkpoints of working-tree edits tagged with a human or an AI
    agent, and reports how many of each author's lines survive.
    """
    just_fix_windows_console()

    try:
        repo = GitRepository.discover(repo_path)
        resolver = ConfigResolver(kwargs, config, None, repo.repo_path)
    except (LinewiseError, OSError, ValueError, yaml.YAMLError) as e:
        ProgressReporter(use_colors=not kwargs.get("no_color")).error(str(e))
        ctx.exit(1)

    reporter = ProgressReporter(
        quiet=resolver.get("quiet", False),
        verbose=resolver.get("verbose", False),
        use_colors=not resolver.get("no_color", False),
    )
    for warning in resolver.warnings:
        reporter.warning(warning)
    if resolver.source and reporter.verbose:
        reporter.info(f"Using configuration: {resolver.source}")

    try:
        store = CheckpointStore.for_repository(repo, resolver.get("store_dir"))
    except LinewiseError as e:
        reporter.error(str(e))
        ctx.exit(1)

    ctx.obj = CliState(repo=repo, store=store, resolver=resolver, reporter=reporter)


@main.command()
@click.option("--agent", "tool", help="AI tool that made the edits (e.g. cursor)")
@click.option("--model", help="Model used by the AI tool (e.g. gpt-4o)")
@click.option("--name", help="Human author name (default: git user.name)")
@click.argument("paths", nargs=-1, type=click.Path())
@click.pass_obj
@_reports_errors
def checkpoint(state: CliState, tool, model, name, paths):
    """Record a checkpoint of the working tree, attributed to a human or an agent."""
    if bool(tool) != bool(model):
        raise click.UsageError("--agent and --model must be given together")
    if tool and name:
        raise click.UsageError("--name cannot be combined with --agent")

    if tool:
        author = AgentAuthor(tool=tool, model=model)
    else:
        author = HumanAuthor(name=resolve_human_name(state.repo, state.resolver, name))

    rel_paths = [state.repo.relative_path(p) for p in paths] if paths else None
    result = state.recorder().record(author, rel_paths)

    if result is None:
        state.reporter.info("No changes since the last checkpoint")
        return
    state.reporter.success(
        f"Checkpoint recorded for {author.label}: "
        f"+{result.line_stats.additions} -{result.line_stats.deletions} "
        f"in {len(result.entries)} file(s)"
    )


def _print_stats(reporter: ProgressReporter, stats: AuthorshipStats):
    summary = {
        "Human": f"{stats.human_net} lines ({stats.human_percentage}%)",
        "AI": f"{stats.ai_net} lines ({stats.ai_percentage}%)",
    }
    for label, lines in sorted(stats.tool_model_breakdown.items()):
        summary[f"  {label}"] = f"{lines} lines"
    summary["Recorded"] = f"+{stats.gross_additions} -{stats.gross_deletions}"
    summary["Overwritten or removed"] = f"{stats.discarded_additions} lines"
    reporter.summary("AUTHORSHIP SINCE LAST COMMIT", summary)

    reporter.bar("you", stats.human_net, "ai", stats.ai_net)


@main.command()
@click.option(
    "--preset",
    type=click.Choice(sorted(PRESETS)),
    help="Amount of detail to show",
)
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON")
@click.pass_obj
@_reports_errors
def status(state: CliState, preset, as_json):
    """Show surviving human/AI lines since the last commit."""
    if preset:
        state.resolver.use_preset(preset)
    human_name = resolve_human_name(state.repo, state.resolver)

    # Pick up any human edits made since the last checkpoint; report anyway if that fails
    try:
        state.recorder(ProgressReporter(quiet=True)).record(HumanAuthor(human_name))
    except LinewiseError as e:
        state.reporter.warning(f"Could not record pending edits: {e}")

    base = state.base_commit()
    working_log = state.store.read_all(base)

    if working_log.is_empty and not as_json:
        reporter = state.reporter
        reporter.line(f"No checkpoints recorded since last commit ({short_sha(base)})")
        reporter.line()
        reporter.line("If you've made AI edits recently and don't see them here, record them with:")
        reporter.line()
        reporter.line("  linewise checkpoint --agent <tool> --model <model>")
        return

    authorship_log, stats = compute_stats(working_log, working_log.touched_paths())

    if as_json:
        data = {
            "base_commit": base,
            "stats": stats.to_dict(),
            "checkpoints": [cp.to_dict() for cp in working_log],
        }
        click.echo(json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False))
        return

    reporter = state.reporter
    _print_stats(reporter, stats)

    if state.resolver.get("show_files", False):
        reporter.line()
        for path in authorship_log.file_paths():
            counts = AuthorshipLog(base, {path: authorship_log.files[path]}).net_lines_by_owner()
            parts = ", ".join(
                f"{owner.label} {lines}"
                for owner, lines in sorted(counts.items(), key=lambda kv: author_key(kv[0]))
            )
            reporter.line(f"   {path}: {parts}")

    if state.resolver.get("show_checkpoints", True):
        reporter.line()
        now = time.time()
        for cp in reversed(working_log.checkpoints):
            add_str = f"+{cp.line_stats.additions}" if cp.line_stats.additions else "0"
            del_str = f"-{cp.line_stats.deletions}" if cp.line_stats.deletions else "0"
            row = f"{format_time_ago(cp.timestamp, now):<14} {add_str:>5}  {del_str:>5}  {cp.author.label}"
            if cp.is_human:
                reporter.dim(row)
            else:
                reporter.line(row)


@main.command()
@click.argument("file", type=click.Path())
@click.pass_obj
@_reports_errors
def blame(state: CliState, file):
    """Show which author owns each changed line of FILE."""
    path = state.repo.relative_path(file)
    working_log = state.store.read_all(state.base_commit())
    ownership = VirtualAttributions.from_working_log(working_log).ownership([path])
    authorship_log = build_authorship_log(ownership)

    entries = authorship_log.entries_for(path)
    if not entries:
        state.reporter.info(f"No attributed lines in {path}")
        return

    for entry in entries:
        label = entry.owner.label
        if isinstance(entry.owner, HumanAuthor):
            state.reporter.dim(f"{str(entry.line_range):>12}  {label}")
        else:
            state.reporter.line(f"{str(entry.line_range):>12}  {label}")


@main.command()
@click.option(
    "-o", "--output", type=click.Path(dir_okay=False), help="Write JSON to this file"
)
@click.argument("paths", nargs=-1, type=click.Path())
@click.pass_obj
@_reports_errors
def export(state: CliState, output, paths):
    """Export the authorship log and stats as JSON (optionally for PATHS only)."""
    working_log = state.store.read_all(state.base_commit())
    rel_paths = [state.repo.relative_path(p) for p in paths] if paths else None

    ownership = VirtualAttributions.from_working_log(working_log).ownership()
    authorship_log = build_authorship_log(ownership, rel_paths)

    aggregator = StatsAggregator(reporter=state.reporter)
    aggregator.process_working_log(working_log)

    if output:
        aggregator.export(authorship_log, output)
        return

    data = {
        "authorship_log": authorship_log.to_dict(),
        "stats": aggregator.finalize(authorship_log).to_dict(),
    }
    click.echo(json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False))


@main.command(name="log")
@click.option("--json", "as_json", is_flag=True, help="Print raw checkpoint records")
@click.pass_obj
@_reports_errors
def show_log(state: CliState, as_json):
    """List the checkpoints recorded since the last commit."""
    base = state.base_commit()
    working_log = state.store.read_all(base)

    if as_json:
        click.echo(
            json.dumps([cp.to_dict() for cp in working_log], indent=2, ensure_ascii=False)
        )
        return

    if working_log.is_empty:
        state.reporter.info(f"No checkpoints recorded since last commit ({short_sha(base)})")
        return

    for index, cp in enumerate(working_log):
        when = datetime.fromtimestamp(cp.timestamp, timezone.utc).isoformat()
        files = ", ".join(e.file_path for e in cp.entries)
        state.reporter.line(
            f"#{index:<3} {when}  {cp.kind:<8}  {cp.author.label:<24} "
            f"+{cp.line_stats.additions} -{cp.line_stats.deletions}  {files}"
        )


if __name__ == "__main__":
    main()
