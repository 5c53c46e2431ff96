"""
Unit tests for the pattern stores and the PatternRepository.
"""
import json
import threading

import httpx
import pytest

from neurolint.agents.pattern_learner import PatternLearner
from neurolint.errors import StorageUnavailableError
from neurolint.models import LearnedPattern
from neurolint.storage.pattern_store import (
    HttpPatternStore,
    InMemoryPatternStore,
    JsonFilePatternStore,
)
from neurolint.storage.repository import PatternRepository


def make_pattern(pattern_id="p1", matcher="foo", confidence=0.8, category="entity"):
    return LearnedPattern(
        id=pattern_id,
        name=f"{category}-literal-{pattern_id}",
        matcher=matcher,
        replacement="bar",
        category=category,
        source_layer=2,
        confidence=confidence,
    )


class BrokenStore:
    def save(self, patterns):
        raise StorageUnavailableError("disk full")

    def load(self):
        raise StorageUnavailableError("disk gone")

    def clear(self):
        raise StorageUnavailableError("disk gone")


# ─── In-Memory Store ─────────────────────────────────────────────────────────

class TestInMemoryStore:
    def test_round_trip(self):
        store = InMemoryPatternStore()
        store.save([make_pattern()])
        loaded = store.load()
        assert [p.id for p in loaded] == ["p1"]
        assert loaded[0].matcher == "foo"

    def test_low_confidence_not_loaded(self):
        store = InMemoryPatternStore()
        store.save([make_pattern("keep"), make_pattern("drop", matcher="x", confidence=0.3)])
        assert [p.id for p in store.load()] == ["keep"]

    def test_clear(self):
        store = InMemoryPatternStore()
        store.save([make_pattern()])
        assert store.clear() is True
        assert store.load() == []


# ─── JSON File Store ─────────────────────────────────────────────────────────

class TestJsonFileStore:
    def test_versioned_document(self, tmp_path):
        path = tmp_path / "patterns.json"
        JsonFilePatternStore(path).save([make_pattern()])
        document = json.loads(path.read_text())
        assert document["version"] == "2.0"
        assert document["patterns"][0]["pattern"] == "foo"
        assert document["patterns"][0]["successCount"] == 1

    def test_reload(self, tmp_path):
        path = tmp_path / "nested" / "patterns.json"
        JsonFilePatternStore(path).save([make_pattern()])
        assert [p.id for p in JsonFilePatternStore(path).load()] == ["p1"]

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonFilePatternStore(tmp_path / "absent.json").load() == []

    def test_corrupt_file_is_empty(self, tmp_path):
        path = tmp_path / "patterns.json"
        path.write_text("{ not json")
        assert JsonFilePatternStore(path).load() == []

    def test_wrong_version_is_ignored(self, tmp_path):
        path = tmp_path / "patterns.json"
        path.write_text(json.dumps({"version": "1.0", "patterns": [make_pattern().to_record()]}))
        assert JsonFilePatternStore(path).load() == []

    def test_malformed_record_skipped(self, tmp_path):
        path = tmp_path / "patterns.json"
        path.write_text(json.dumps({"version": "2.0", "patterns": [{"name": "no id"}, make_pattern().to_record()]}))
        assert [p.id for p in JsonFilePatternStore(path).load()] == ["p1"]

    def test_clear_removes_file(self, tmp_path):
        path = tmp_path / "patterns.json"
        store = JsonFilePatternStore(path)
        store.save([make_pattern()])
        store.clear()
        assert not path.exists()

    def test_unwritable_location_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(StorageUnavailableError):
            JsonFilePatternStore(blocker / "patterns.json").save([make_pattern()])


# ─── HTTP Store ──────────────────────────────────────────────────────────────

class TestHttpStore:
    def make_client(self, saved):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/v1/patterns/save":
                saved.extend(json.loads(request.content)["patterns"])
                return httpx.Response(200, json={"success": True})
            if request.url.path == "/api/v1/patterns/load":
                return httpx.Response(200, json={"patterns": list(saved)})
            if request.url.path == "/api/v1/patterns/clear":
                saved.clear()
                return httpx.Response(200, json={"success": True})
            return httpx.Response(404)

        return httpx.Client(transport=httpx.MockTransport(handler))

    def test_save_and_load(self):
        saved = []
        store = HttpPatternStore("http://patterns.test", api_key="k", client=self.make_client(saved))
        assert store.save([make_pattern()]) is True
        assert [p.id for p in store.load()] == ["p1"]
        assert store.clear() is True
        assert store.load() == []

    def test_server_error_raises(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        with pytest.raises(StorageUnavailableError):
            HttpPatternStore("http://patterns.test", client=client).load()


# ─── Repository ──────────────────────────────────────────────────────────────

class TestRepository:
    def test_upsert_creates_then_updates(self):
        repo = PatternRepository()
        pattern, created = repo.upsert(("entity", "foo"), make_pattern, lambda p: None)
        assert created is True
        again, created = repo.upsert(("entity", "foo"), make_pattern,
                                     lambda p: setattr(p, "success_count", p.success_count + 1))
        assert created is False
        assert again is pattern
        assert pattern.success_count == 2

    def test_autoload_from_store(self):
        store = InMemoryPatternStore()
        store.save([make_pattern()])
        assert len(PatternRepository(store)) == 1

    def test_persist_writes_snapshot(self, tmp_path):
        path = tmp_path / "patterns.json"
        learner = PatternLearner(repository=PatternRepository(JsonFilePatternStore(path)))
        learner.learn('console.log("a");', 'console.debug("a");', 2)
        reloaded = PatternRepository(JsonFilePatternStore(path))
        assert len(reloaded) == 1
        assert reloaded.snapshot()[0].matcher == learner.rules()[0].matcher

    def test_broken_store_degrades_to_memory(self):
        repo = PatternRepository(BrokenStore())
        assert repo.degraded is True
        pattern, created = repo.upsert(("entity", "foo"), make_pattern, lambda p: None)
        assert created is True
        assert repo.persist() is False
        assert repo.get(("entity", "foo")) is pattern

    def test_learning_survives_broken_store(self):
        learner = PatternLearner(repository=PatternRepository(BrokenStore()))
        assert learner.learn('console.log("a");', 'console.debug("a");', 2) is not None
        assert learner.statistics()["store_degraded"] is True

    def test_remove_and_clear(self):
        repo = PatternRepository()
        repo.upsert(("entity", "a"), lambda: make_pattern("a", "a"), lambda p: None)
        repo.upsert(("entity", "b"), lambda: make_pattern("b", "b"), lambda p: None)
        assert repo.remove([("entity", "a"), ("entity", "missing")]) == 1
        assert repo.clear() is True
        assert len(repo) == 0

    def test_concurrent_reinforcement_is_not_lost(self):
        repo = PatternRepository()
        repo.upsert(("entity", "foo"), make_pattern, lambda p: None)

        def bump():
            for _ in range(200):
                repo.update(("entity", "foo"), lambda p: setattr(p, "success_count", p.success_count + 1))

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert repo.get(("entity", "foo")).success_count == 801
