"""
NeuroLint — Pattern Repository
==============================
Owns the learned rule set for the lifetime of an executor. Writes are
serialised per dedupe key (category, matcher); readers take a snapshot.
A failing store never fails a transformation: the repository logs a
warning and carries on in memory only.
"""

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

from neurolint.errors import StorageUnavailableError
from neurolint.models import LearnedPattern
from neurolint.storage.pattern_store import InMemoryPatternStore, PatternStore

logger = logging.getLogger(__name__)

PatternKey = Tuple[str, str]


class PatternRepository:
    def __init__(self, store: Optional[PatternStore] = None, autoload: bool = True):
        self.store: PatternStore = store if store is not None else InMemoryPatternStore()
        self.degraded = False
        self._patterns: Dict[PatternKey, LearnedPattern] = {}
        self._registry_lock = threading.Lock()
        self._key_locks: Dict[PatternKey, threading.Lock] = defaultdict(threading.Lock)
        if autoload:
            self.load()

    # ── Store I/O ─────────────────────────────────────────────────────────

    def load(self) -> int:
        try:
            patterns = self.store.load()
        except StorageUnavailableError as e:
            self._degrade(f"load failed: {e}")
            return 0
        with self._registry_lock:
            for pattern in patterns:
                self._patterns[pattern.key] = pattern
        logger.info(f"[PatternRepository] Loaded {len(patterns)} patterns")
        return len(patterns)

    def persist(self) -> bool:
        if self.degraded:
            return False
        try:
            saved = self.store.save(self.snapshot())
        except StorageUnavailableError as e:
            self._degrade(f"save failed: {e}")
            return False
        if not saved:
            self._degrade("store refused save")
        return saved

    def clear(self) -> bool:
        with self._registry_lock:
            self._patterns.clear()
            self._key_locks.clear()
        if self.degraded:
            return True
        try:
            return self.store.clear()
        except StorageUnavailableError as e:
            self._degrade(f"clear failed: {e}")
            return False

    def _degrade(self, reason: str) -> None:
        if not self.degraded:
            logger.warning(f"[PatternRepository] Pattern store unavailable ({reason}); using in-memory patterns only")
        self.degraded = True

    # ── Rule set ──────────────────────────────────────────────────────────

    def _lock_for(self, key: PatternKey) -> threading.Lock:
        with self._registry_lock:
            return self._key_locks[key]

    def upsert(
        self,
        key: PatternKey,
        create: Callable[[], LearnedPattern],
        update: Callable[[LearnedPattern], None],
    ) -> Tuple[LearnedPattern, bool]:
        """Create the rule for key or update it in place. Returns (rule, created)."""
        with self._lock_for(key):
            with self._registry_lock:
                existing = self._patterns.get(key)
            if existing is not None:
                update(existing)
                return existing, False
            pattern = create()
            with self._registry_lock:
                self._patterns[key] = pattern
            return pattern, True

    def update(self, key: PatternKey, mutate: Callable[[LearnedPattern], None]) -> Optional[LearnedPattern]:
        with self._lock_for(key):
            with self._registry_lock:
                pattern = self._patterns.get(key)
            if pattern is not None:
                mutate(pattern)
            return pattern

    def remove(self, keys: List[PatternKey]) -> int:
        with self._registry_lock:
            removed = 0
            for key in keys:
                if self._patterns.pop(key, None) is not None:
                    self._key_locks.pop(key, None)
                    removed += 1
            return removed

    def snapshot(self) -> List[LearnedPattern]:
        with self._registry_lock:
            return list(self._patterns.values())

    def get(self, key: PatternKey) -> Optional[LearnedPattern]:
        with self._registry_lock:
            return self._patterns.get(key)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._patterns)
