"""Tests for index.json and timeline.json maintenance.

Tests cover:
- Merging partial, foreign and corrupt documents over defaults
- Index updates on add and status changes
- Recent and high-importance bookkeeping
- Timeline capping
- Rebuilding from memory files
"""

import json

from claudememory.index_store import (
    RECENT_LIMIT,
    TIMELINE_LIMIT,
    empty_index,
    merge_index_with_defaults,
    merge_timeline_with_defaults,
)
from claudememory.models import Memory, MemoryContext, MemoryLinks, MemoryStatus, MemoryType


def make_memory(memory_id, importance=0.5, tags=(), files=(), timestamp=None, **kwargs):
    extra = {"timestamp": timestamp} if timestamp else {}
    return Memory(
        id=memory_id,
        type=kwargs.pop("type", MemoryType.FACT),
        title=kwargs.pop("title", f"Memory {memory_id}"),
        summary="summary",
        tags=list(tags),
        importance=importance,
        context=MemoryContext(related_files=list(files)) if files else None,
        **extra,
        **kwargs,
    )


class TestMergeIndexWithDefaults:
    """Tests for the pure index merge function."""

    def test_none_gives_complete_index(self):
        """Test that missing input yields every expected key."""
        merged = merge_index_with_defaults(None)
        assert set(merged) >= {"by_type", "by_tag", "by_file", "by_status", "recent", "high_importance"}
        assert set(merged["by_type"]) == {t.value for t in MemoryType}
        assert set(merged["by_status"]) == {s.value for s in MemoryStatus}

    def test_partial_index_keeps_present_values(self):
        """Test that a partial document fills in the rest from defaults."""
        merged = merge_index_with_defaults({"by_type": {"decision": ["aaaaaaaa"]}})
        assert merged["by_type"]["decision"] == ["aaaaaaaa"]
        assert merged["by_type"]["fact"] == []
        assert merged["recent"] == []
        assert merged["by_status"]["active"] == []

    def test_malformed_lists_fall_back(self):
        """Test that non-list values are replaced by defaults."""
        merged = merge_index_with_defaults({"recent": "oops", "by_tag": {"auth": 5, "api": ["bbbbbbbb"]}})
        assert merged["recent"] == []
        assert "auth" not in merged["by_tag"]
        assert merged["by_tag"]["api"] == ["bbbbbbbb"]

    def test_unknown_top_level_keys_are_kept(self):
        """Test that keys from other versions are carried through."""
        assert merge_index_with_defaults({"extension": {"x": 1}})["extension"] == {"x": 1}

    def test_input_is_not_modified(self):
        """Test purity of the merge."""
        raw = {"by_type": {"decision": ["aaaaaaaa"]}}
        merge_index_with_defaults(raw)
        assert raw == {"by_type": {"decision": ["aaaaaaaa"]}}

    def test_non_dict_gives_defaults(self):
        """Test that a JSON list or string is ignored."""
        assert merge_index_with_defaults([1, 2])["recent"] == []


class TestMergeTimeline:
    """Tests for the pure timeline merge function."""

    def test_drops_malformed_entries(self):
        """Test that entries without a string memory_id are dropped."""
        merged = merge_timeline_with_defaults(
            {"entries": [{"memory_id": "aaaaaaaa"}, {"memory_id": 3}, "junk"]}
        )
        assert merged["entries"] == [{"memory_id": "aaaaaaaa"}]

    def test_none_gives_empty(self):
        """Test that missing input gives an empty ledger."""
        assert merge_timeline_with_defaults(None)["entries"] == []


class TestIndexStoreLoading:
    """Tests for tolerant loading from disk."""

    def test_missing_files_load_as_defaults(self, index_store):
        """Test that a fresh project loads empty documents."""
        assert index_store.load_index()["recent"] == []
        assert index_store.load_timeline()["entries"] == []

    def test_corrupt_index_loads_as_defaults(self, index_store):
        """Test that truncated JSON does not raise."""
        index_store.index_path.parent.mkdir(parents=True)
        index_store.index_path.write_text('{"by_type": {"decision": [')
        loaded = index_store.load_index()
        expected = empty_index()
        loaded.pop("last_updated")
        expected.pop("last_updated")
        assert loaded == expected

    def test_empty_file_loads_as_defaults(self, index_store):
        """Test that an empty index file does not raise."""
        index_store.index_path.parent.mkdir(parents=True)
        index_store.index_path.write_text("")
        assert index_store.load_index()["by_tag"] == {}

    def test_initialize_does_not_overwrite(self, index_store):
        """Test that initialize leaves existing documents alone."""
        index_store.add(make_memory("aaaaaaaa"))
        index_store.initialize()
        assert index_store.load_index()["recent"] == ["aaaaaaaa"]


class TestIndexStoreUpdates:
    """Tests for add and set_status."""

    def test_add_indexes_every_dimension(self, index_store):
        """Test type, tag, file and status lists after add."""
        index_store.add(make_memory("aaaaaaaa", tags=["auth"], files=["src/auth.py"]))
        index = index_store.load_index()
        assert index["by_type"]["fact"] == ["aaaaaaaa"]
        assert index["by_tag"]["auth"] == ["aaaaaaaa"]
        assert index["by_file"]["src/auth.py"] == ["aaaaaaaa"]
        assert index["by_status"]["active"] == ["aaaaaaaa"]

    def test_recent_is_newest_first_and_capped(self, index_store):
        """Test that recent holds at most RECENT_LIMIT ids, newest first."""
        for i in range(RECENT_LIMIT + 5):
            index_store.add(make_memory(f"{i:08x}"))
        recent = index_store.load_index()["recent"]
        assert len(recent) == RECENT_LIMIT
        assert recent[0] == f"{RECENT_LIMIT + 4:08x}"

    def test_high_importance_threshold(self, index_store):
        """Test that only importance >= 0.7 is listed as high importance."""
        index_store.add(make_memory("aaaaaaaa", importance=0.7))
        index_store.add(make_memory("bbbbbbbb", importance=0.69))
        assert index_store.load_index()["high_importance"] == ["aaaaaaaa"]

    def test_set_status_moves_between_buckets(self, index_store):
        """Test that an id sits in exactly one status bucket."""
        index_store.add(make_memory("aaaaaaaa", importance=0.9))
        index_store.set_status("aaaaaaaa", MemoryStatus.SUPERSEDED)
        index = index_store.load_index()
        assert index["by_status"]["active"] == []
        assert index["by_status"]["superseded"] == ["aaaaaaaa"]
        assert "aaaaaaaa" not in index["recent"]
        assert "aaaaaaaa" not in index["high_importance"]
        assert index["by_type"]["fact"] == ["aaaaaaaa"]

    def test_index_file_is_pretty_json(self, index_store):
        """Test the on-disk format of index.json."""
        index_store.add(make_memory("aaaaaaaa"))
        text = index_store.index_path.read_text()
        assert text.startswith("{\n  ")
        assert json.loads(text)["recent"] == ["aaaaaaaa"]


class TestTimeline:
    """Tests for the timeline ledger."""

    def test_entry_shape(self, index_store):
        """Test the fields of a timeline entry."""
        memory = make_memory(
            "bbbbbbbb", type=MemoryType.DECISION, title="Switch to JWT",
            links=MemoryLinks(supersedes=["aaaaaaaa"]),
        )
        entry = index_store.append_timeline(memory)
        assert entry == {
            "timestamp": memory.timestamp,
            "memory_id": "bbbbbbbb",
            "type": "decision",
            "summary": "Switch to JWT",
            "supersedes": ["aaaaaaaa"],
        }
        assert index_store.load_timeline()["entries"] == [entry]

    def test_timeline_capped(self, index_store):
        """Test that only the last TIMELINE_LIMIT entries are kept."""
        timeline = {"entries": [{"memory_id": f"{i:08x}"} for i in range(TIMELINE_LIMIT)]}
        index_store.save_timeline(timeline)
        index_store.append_timeline(make_memory("ffffffff"))
        entries = index_store.load_timeline()["entries"]
        assert len(entries) == TIMELINE_LIMIT
        assert entries[0]["memory_id"] == f"{1:08x}"
        assert entries[-1]["memory_id"] == "ffffffff"


class TestRebuild:
    """Tests for IndexStore.rebuild."""

    def test_rebuild_from_memories(self, index_store):
        """Test that rebuild reflects exactly the given memories."""
        index_store.add(make_memory("deadbeef"))
        old = make_memory("aaaaaaaa", importance=0.9, timestamp="2025-01-01T00:00:00+00:00")
        new = make_memory("bbbbbbbb", importance=0.9, tags=["x"], timestamp="2025-02-01T00:00:00+00:00")
        gone = make_memory(
            "cccccccc", importance=0.9, status=MemoryStatus.SUPERSEDED,
            timestamp="2025-03-01T00:00:00+00:00",
        )
        index = index_store.rebuild([new, gone, old])

        assert index == index_store.load_index()
        assert "deadbeef" not in index["by_type"]["fact"]
        assert index["recent"] == ["bbbbbbbb", "aaaaaaaa"]
        assert index["high_importance"] == ["aaaaaaaa", "bbbbbbbb"]
        assert index["by_status"]["superseded"] == ["cccccccc"]
        assert index["by_tag"]["x"] == ["bbbbbbbb"]
