#!/usr/bin/env python3
"""
Tests for the append-only checkpoint store
"""

import json
import os
import threading
from unittest.mock import patch

import pytest

from conftest import make_entry
from linewise import (
    Checkpoint,
    CheckpointEntry,
    CheckpointStore,
    CorruptCheckpoint,
    HumanAuthor,
    LineRange,
    StoreUnavailable,
    content_hash,
)


BASE = "0123abcd"


def checkpoint(author, timestamp=1000, path="f.py"):
    return Checkpoint.create(
        author, [make_entry(path, added=[(1, 3)], line_count=2)], timestamp=timestamp
    )


def log_file(store, base=BASE):
    return os.path.join(store.root, "working_logs", base, CheckpointStore.LOG_FILE_NAME)


class TestAppendAndRead:
    def test_missing_log_is_empty(self, store):
        log = store.read_all(BASE)
        assert log.is_empty
        assert log.base_commit == BASE
        assert not os.path.exists(os.path.join(store.root, "working_logs", BASE))

    def test_storage_order_preserved(self, store, alice, cursor):
        store.append(BASE, checkpoint(cursor, 1000))
        store.append(BASE, checkpoint(alice, 1000, path="g.py"))
        store.append(BASE, checkpoint(cursor, 1005))

        log = store.read_all(BASE)
        assert [cp.author for cp in log] == [cursor, alice, cursor]
        assert log.checkpoints[1].entries[0].file_path == "g.py"
        assert log.checkpoints[0] == checkpoint(cursor, 1000)

    def test_one_json_line_per_checkpoint(self, store, cursor):
        store.append(BASE, checkpoint(cursor))
        with open(log_file(store), encoding="utf-8") as f:
            lines = f.read().splitlines()

        assert len(lines) == 1
        record = json.loads(lines[0])
        assert record["author"] == {"kind": "ai_agent", "tool": "cursor", "model": "gpt-4"}
        assert record["line_stats"] == {"additions": 2, "deletions": 0}

    def test_logs_are_partitioned_by_base(self, store, cursor):
        store.append(BASE, checkpoint(cursor))
        store.append("initial", checkpoint(cursor))

        assert store.list_base_commits() == [BASE, "initial"]
        assert len(store.read_all(BASE)) == 1

    def test_invalid_base_identifier(self, store):
        with pytest.raises(ValueError):
            store.read_all("../escape")

    def test_concurrent_appends_do_not_interleave(self, store, cursor):
        def worker(n):
            for i in range(20):
                store.append(BASE, checkpoint(cursor, 1000, path=f"w{n}_{i}.py"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        log = store.read_all(BASE)
        assert len(log) == 80
        assert len({cp.entries[0].file_path for cp in log}) == 80


class TestCorruptRecords:
    def _write(self, store, *lines):
        os.makedirs(os.path.dirname(log_file(store)), exist_ok=True)
        with open(log_file(store), "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")

    def test_unparseable_line(self, store, cursor):
        good = json.dumps(checkpoint(cursor).to_dict())
        self._write(store, good, "{not json")

        with pytest.raises(CorruptCheckpoint) as exc_info:
            store.read_all(BASE)
        assert exc_info.value.checkpoint_index == 1

    def test_agent_without_identity(self, store):
        record = checkpoint(HumanAuthor("x")).to_dict()
        record["author"] = {"kind": "ai_agent", "tool": "cursor"}
        self._write(store, json.dumps(record))

        with pytest.raises(CorruptCheckpoint, match="schema"):
            store.read_all(BASE)

    def test_human_with_tool_fields(self, store):
        record = checkpoint(HumanAuthor("x")).to_dict()
        record["author"]["tool"] = "cursor"
        self._write(store, json.dumps(record))

        with pytest.raises(CorruptCheckpoint):
            store.read_all(BASE)

    def test_timestamps_going_backwards(self, store, cursor):
        self._write(
            store,
            json.dumps(checkpoint(cursor, 2000).to_dict()),
            json.dumps(checkpoint(cursor, 1000).to_dict()),
        )
        with pytest.raises(CorruptCheckpoint, match="earlier"):
            store.read_all(BASE)


class TestSnapshotState:
    def test_state_follows_the_log(self, store, cursor, alice):
        """The content snapshot is whatever the last entry for each path recorded"""
        digest = store.write_blob("a\nb\n")
        store.append(
            BASE,
            Checkpoint.create(
                cursor,
                [
                    CheckpointEntry("f.py", (LineRange(1, 3),), (), 2, None, digest),
                    CheckpointEntry("gone.py", (), (LineRange(1, 2),), 0, None, None),
                ],
                timestamp=1000,
            ),
        )
        store.append(
            BASE,
            Checkpoint.create(
                alice,
                [CheckpointEntry("g.py", (), (), 2, "f.py", digest)],
                timestamp=1001,
            ),
        )

        log = store.read_all(BASE)
        assert log.snapshot_state() == {"f.py": None, "gone.py": None, "g.py": digest}
        assert store.read_blob(digest) == "a\nb\n"
        assert log.checkpoints[0].entries[0].content_digest == digest

    def test_malformed_digest_is_corrupt(self, store, cursor):
        record = checkpoint(cursor).to_dict()
        record["entries"][0]["content_digest"] = "not-a-hash"
        path = log_file(store)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")

        with pytest.raises(CorruptCheckpoint, match="schema"):
            store.read_all(BASE)

    def test_blobs_are_content_addressed(self, store):
        first = store.write_blob("same\r\n")
        second = store.write_blob("same\r\n")
        assert first == second == content_hash("same\r\n")
        assert store.read_blob(first) == "same\r\n"

    def test_missing_blob(self, store):
        with pytest.raises(StoreUnavailable):
            store.read_blob("ff" * 32)

    def test_unwritable_store(self, tmp_path, cursor):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        store = CheckpointStore(str(blocker / "store"))

        with pytest.raises(StoreUnavailable) as exc_info:
            store.append(BASE, checkpoint(cursor))
        assert exc_info.value.path is not None

    def test_append_failure_reports_path(self, store, cursor):
        with patch("linewise.os.fsync", side_effect=OSError("disk full")):
            with pytest.raises(StoreUnavailable, match="disk full"):
                store.append(BASE, checkpoint(cursor))
