"""Tests for content fingerprints and export records."""

from pathlib import Path

import pytest

from convoport.models import Entry, ThreadDetail
from convoport.store import KeyValueStore
from convoport.sync.fingerprint import FingerprintStore, compute_fingerprint, simple_hash


@pytest.fixture
def store(tmp_path: Path) -> KeyValueStore:
    s = KeyValueStore(tmp_path / "state.db")
    yield s
    s.close()


def make_detail(**overrides) -> ThreadDetail:
    values = {
        "id": "t1",
        "title": "Title",
        "entries": [Entry("first", "a"), Entry("middle", "b"), Entry("last", "c")],
    }
    values.update(overrides)
    return ThreadDetail(**values)


class TestSimpleHash:
    """Tests for the rolling hash."""

    def test_known_values(self) -> None:
        assert simple_hash("") == "0"
        assert simple_hash("a") == "2p"
        assert simple_hash("ab") == "2e9"

    def test_wraps_to_signed_32_bit(self) -> None:
        """Long inputs should overflow into negative values like a 32-bit int."""
        h = 0
        for ch in "the quick brown fox":
            h = (h * 31 + ord(ch)) & 0xFFFFFFFF
        expected_negative = h >= 0x80000000
        assert simple_hash("the quick brown fox").startswith("-") is expected_negative

    def test_deterministic(self) -> None:
        assert simple_hash("same input") == simple_hash("same input")


class TestComputeFingerprint:
    def test_stable_for_equal_content(self) -> None:
        assert compute_fingerprint(make_detail()) == compute_fingerprint(make_detail())

    def test_changes_with_title(self) -> None:
        assert compute_fingerprint(make_detail()) != compute_fingerprint(make_detail(title="Other"))

    def test_changes_with_entry_count(self) -> None:
        more = make_detail(entries=[Entry("first"), Entry("middle"), Entry("x"), Entry("last")])
        assert compute_fingerprint(make_detail()) != compute_fingerprint(more)

    def test_middle_entries_not_fingerprinted(self) -> None:
        """Only id, title, count, first and last query feed the fingerprint."""
        edited = make_detail(entries=[Entry("first", "changed"), Entry("edited", "b"), Entry("last", "c")])
        assert compute_fingerprint(make_detail()) == compute_fingerprint(edited)

    def test_empty_thread(self) -> None:
        assert compute_fingerprint(ThreadDetail(id="t", title="")) == simple_hash("t||0||")


class TestFingerprintStore:
    def test_unknown_thread_has_changed(self, store: KeyValueStore) -> None:
        fingerprints = FingerprintStore(store)
        assert fingerprints.has_changed("t1", "abc") is True
        assert fingerprints.is_exported("t1") is False

    def test_save_then_unchanged(self, store: KeyValueStore) -> None:
        fingerprints = FingerprintStore(store, clock=lambda: 1000.0)

        record = fingerprints.save("t1", "abc")

        assert record.exported_at == 1000.0
        assert fingerprints.has_changed("t1", "abc") is False
        assert fingerprints.has_changed("t1", "xyz") is True
        assert fingerprints.get("t1").fingerprint == "abc"

    def test_save_overwrites(self, store: KeyValueStore) -> None:
        fingerprints = FingerprintStore(store)
        fingerprints.save("t1", "old")
        fingerprints.save("t1", "new")
        assert fingerprints.get("t1").fingerprint == "new"
        assert fingerprints.exported_ids() == ["t1"]

    def test_clear(self, store: KeyValueStore) -> None:
        fingerprints = FingerprintStore(store)
        fingerprints.save("t1", "a")
        fingerprints.save("t2", "b")
        store.set("failures", [])

        assert fingerprints.clear() == 2
        assert fingerprints.exported_ids() == []
        assert store.get("failures") == []
