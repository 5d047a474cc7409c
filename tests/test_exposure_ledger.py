"""
Tests for the exposure ledger: seeding, pruning, commits and durability.
"""

import json
import threading

import pytest

import exposure_ledger
from exposure_ledger import ExposureLedger
from survey_errors import InvalidInput, PersistenceError


class TestEnsure:
    """ensure() seeds unseen entries and prunes removed items."""

    def test_seeds_every_item_at_zero(self, ledger):
        table = ledger.ensure(["safer", "lively"], ["a.jpg", "b.jpg"])
        assert table == {"safer": {"a.jpg": 0, "b.jpg": 0}, "lively": {"a.jpg": 0, "b.jpg": 0}}

    def test_persists_to_disk(self, ledger, counts_path):
        ledger.ensure(["safer"], ["a.jpg", "b.jpg"])
        assert json.loads(counts_path.read_text(encoding="utf-8")) == {"safer": {"a.jpg": 0, "b.jpg": 0}}

    def test_second_identical_call_is_noop(self, ledger, monkeypatch):
        first = ledger.ensure(["safer"], ["a.jpg", "b.jpg"])
        writes = []
        monkeypatch.setattr(exposure_ledger, "write_table", lambda *a: writes.append(a))
        second = ledger.ensure(["safer"], ["a.jpg", "b.jpg"])
        assert second == first
        assert writes == []

    def test_keeps_existing_counts(self, ledger):
        ledger.ensure(["safer"], ["a.jpg", "b.jpg"])
        ledger.commit([("safer", "a.jpg", 3)])
        table = ledger.ensure(["safer"], ["a.jpg", "b.jpg", "c.jpg"])
        assert table["safer"] == {"a.jpg": 3, "b.jpg": 0, "c.jpg": 0}

    def test_prunes_removed_item_from_all_dimensions(self, ledger):
        ledger.ensure(["safer", "lively"], ["a.jpg", "b.jpg", "c.jpg"])
        table = ledger.ensure(["safer"], ["a.jpg", "b.jpg"])
        assert "c.jpg" not in table["safer"]
        assert "c.jpg" not in table["lively"]

    def test_returns_copy(self, ledger):
        table = ledger.ensure(["safer"], ["a.jpg", "b.jpg"])
        table["safer"]["a.jpg"] = 99
        assert ledger.snapshot()["safer"]["a.jpg"] == 0

    def test_failed_write_leaves_memory_and_dir_untouched(self, ledger, counts_path, monkeypatch):
        ledger.ensure(["safer"], ["a.jpg", "b.jpg"])
        before = ledger.snapshot()

        def fail(src, dst):
            raise OSError("read-only file system")

        monkeypatch.setattr(exposure_ledger.os, "replace", fail)
        with pytest.raises(PersistenceError):
            ledger.ensure(["safer", "lively"], ["a.jpg", "b.jpg", "c.jpg"])
        assert ledger.snapshot() == before
        assert [p.name for p in counts_path.parent.iterdir()] == [counts_path.name]

    def test_non_utf8_file_name_round_trips(self, ledger, counts_path):
        # a name read from disk with undecodable bytes carries lone surrogates
        odd = b"\xb0\xb2\xc8\xab.jpg".decode("utf-8", "surrogateescape")
        ledger.ensure(["safer"], ["a.jpg", odd])
        ledger.commit([("safer", odd, 1)])
        assert ExposureLedger(counts_path).snapshot() == {"safer": {"a.jpg": 0, odd: 1}}


class TestCommit:
    """commit() adds increments atomically and durably."""

    def test_one_comparison_increments_both_sides(self, ledger):
        ledger.ensure(["safer"], ["A", "B"])
        table = ledger.commit([("safer", "A", 1), ("safer", "B", 1)])
        assert table["safer"] == {"A": 1, "B": 1}

    def test_reseeds_missing_entries(self, ledger):
        table = ledger.commit([("walkable", "x.jpg", 2)])
        assert table == {"walkable": {"x.jpg": 2}}

    def test_empty_commit_changes_nothing(self, ledger, counts_path):
        ledger.commit([])
        assert not counts_path.exists()

    def test_negative_increment_rejected_before_any_change(self, ledger):
        ledger.ensure(["safer"], ["A", "B"])
        with pytest.raises(InvalidInput):
            ledger.commit([("safer", "A", 1), ("safer", "B", -1)])
        assert ledger.snapshot()["safer"] == {"A": 0, "B": 0}

    def test_failed_write_leaves_memory_untouched(self, ledger, counts_path, monkeypatch):
        ledger.ensure(["safer"], ["A", "B"])

        def boom(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(exposure_ledger.os, "replace", boom)
        with pytest.raises(PersistenceError) as exc:
            ledger.commit([("safer", "A", 1), ("safer", "B", 1)])
        assert exc.value.path == counts_path
        assert ledger.snapshot()["safer"] == {"A": 0, "B": 0}
        assert [p.name for p in counts_path.parent.iterdir()] == [counts_path.name]

    def test_reload_sees_committed_counts(self, ledger, counts_path):
        ledger.ensure(["safer"], ["A", "B"])
        ledger.commit([("safer", "A", 1)])
        assert ExposureLedger(counts_path).snapshot() == {"safer": {"A": 1, "B": 0}}

    def test_concurrent_commits_on_disjoint_items(self, ledger):
        ledger.ensure(["safer"], ["A", "B"])
        barrier = threading.Barrier(2)

        def bump(item):
            barrier.wait()
            ledger.commit([("safer", item, 1)])

        threads = [threading.Thread(target=bump, args=(i,)) for i in ("A", "B")]
        for t in threads: t.start()
        for t in threads: t.join()
        assert ledger.snapshot()["safer"] == {"A": 1, "B": 1}

    def test_many_concurrent_commits_lose_nothing(self, ledger, counts_path):
        ledger.ensure(["safer"], ["A", "B"])

        def bump():
            for _ in range(25):
                ledger.commit([("safer", "A", 1), ("safer", "B", 1)])

        threads = [threading.Thread(target=bump) for _ in range(6)]
        for t in threads: t.start()
        for t in threads: t.join()
        assert ledger.snapshot()["safer"] == {"A": 150, "B": 150}
        assert ExposureLedger(counts_path).snapshot()["safer"] == {"A": 150, "B": 150}


class TestLoading:
    """Reading the persisted table."""

    def test_missing_file_is_empty(self, ledger):
        assert ledger.snapshot() == {}

    def test_malformed_file_raises(self, counts_path):
        counts_path.parent.mkdir(parents=True)
        counts_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(PersistenceError):
            ExposureLedger(counts_path)

    def test_non_mapping_raises(self, counts_path):
        counts_path.parent.mkdir(parents=True)
        counts_path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(PersistenceError):
            ExposureLedger(counts_path)

    def test_bad_counts_reset_to_zero(self, counts_path):
        counts_path.parent.mkdir(parents=True)
        counts_path.write_text(json.dumps({"safer": {"A": "x", "B": -2, "C": 4}}), encoding="utf-8")
        assert ExposureLedger(counts_path).snapshot() == {"safer": {"A": 0, "B": 0, "C": 4}}


class TestSnapshotAndSummary:

    def test_snapshot_limited_to_dimensions(self, ledger):
        ledger.ensure(["safer", "lively"], ["A", "B"])
        assert ledger.snapshot(["lively", "unknown"]) == {"lively": {"A": 0, "B": 0}}

    def test_summary(self, ledger):
        ledger.ensure(["safer", "lively"], ["A", "B", "C"])
        ledger.commit([("safer", "A", 2), ("safer", "B", 1)])
        rows = {r["dimension"]: r for r in ledger.summary()}
        assert rows["safer"] == {"dimension": "safer", "items": 3, "min": 0, "max": 2, "total": 3}
        assert rows["lively"]["total"] == 0
