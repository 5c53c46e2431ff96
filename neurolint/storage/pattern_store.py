"""
NeuroLint — Pattern Stores
==========================
Persistence backends for learned patterns. Every store speaks the same
record shape (LearnedPattern.to_record) and the same three calls:

  save(patterns) -> bool
  load()         -> List[LearnedPattern]
  clear()        -> bool

Stores raise StorageUnavailableError when the backing medium cannot be
used; the PatternRepository turns that into degraded in-memory mode.
"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import httpx

from neurolint.errors import StorageUnavailableError
from neurolint.models import LearnedPattern

logger = logging.getLogger(__name__)

STORE_VERSION = "2.0"
MIN_LOAD_CONFIDENCE = 0.3


class PatternStore(Protocol):
    def save(self, patterns: List[LearnedPattern]) -> bool: ...

    def load(self) -> List[LearnedPattern]: ...

    def clear(self) -> bool: ...


def _decode_records(records: List[Dict[str, Any]]) -> List[LearnedPattern]:
    patterns = []
    for record in records:
        try:
            pattern = LearnedPattern.from_record(record)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"[PatternStore] Skipping malformed pattern record: {e}")
            continue
        if pattern.confidence > MIN_LOAD_CONFIDENCE:
            patterns.append(pattern)
    return patterns


class InMemoryPatternStore:
    """Keeps records in process; used by tests and as the default store."""

    def __init__(self):
        self._records: List[Dict[str, Any]] = []

    def save(self, patterns: List[LearnedPattern]) -> bool:
        self._records = [p.to_record() for p in patterns]
        return True

    def load(self) -> List[LearnedPattern]:
        return _decode_records(list(self._records))

    def clear(self) -> bool:
        self._records = []
        return True


class JsonFilePatternStore:
    """
    Versioned JSON document on disk. Writes go to a temp file that is
    atomically moved into place.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def save(self, patterns: List[LearnedPattern]) -> bool:
        document = {
            "version": STORE_VERSION,
            "timestamp": time.time(),
            "patterns": [p.to_record() for p in patterns],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".patterns-", suffix=".json")
            with os.fdopen(fd, "w") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_name, self.path)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot write pattern file {self.path}: {e}", e) from e
        logger.debug(f"[JsonFilePatternStore] Saved {len(patterns)} patterns to {self.path}")
        return True

    def load(self) -> List[LearnedPattern]:
        if not self.path.exists():
            return []
        try:
            with open(self.path) as f:
                document = json.load(f)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot read pattern file {self.path}: {e}", e) from e
        except json.JSONDecodeError as e:
            logger.warning(f"[JsonFilePatternStore] Corrupt pattern file {self.path}: {e}")
            return []

        if not isinstance(document, dict) or document.get("version") != STORE_VERSION:
            logger.warning(f"[JsonFilePatternStore] Incompatible pattern file version, ignoring {self.path}")
            return []
        return _decode_records(document.get("patterns") or [])

    def clear(self) -> bool:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot remove pattern file {self.path}: {e}", e) from e
        return True


class HttpPatternStore:
    """
    Remote pattern persistence over the NeuroLint API:
      POST {base}/api/v1/patterns/save   {"patterns": [...]}
      GET  {base}/api/v1/patterns/load   -> {"patterns": [...]}
      POST {base}/api/v1/patterns/clear
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_s: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._client = client

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                resp = self._client.request(method, url, json=payload, headers=self._headers,
                                            timeout=self.timeout_s)
            else:
                resp = httpx.request(method, url, json=payload, headers=self._headers,
                                     timeout=self.timeout_s)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise StorageUnavailableError(f"Pattern API {method} {path} failed: {e}", e) from e

    def save(self, patterns: List[LearnedPattern]) -> bool:
        data = self._request("POST", "/api/v1/patterns/save", {
            "version": STORE_VERSION,
            "patterns": [p.to_record() for p in patterns],
        })
        return bool(data.get("success", True))

    def load(self) -> List[LearnedPattern]:
        data = self._request("GET", "/api/v1/patterns/load")
        return _decode_records(data.get("patterns") or [])

    def clear(self) -> bool:
        data = self._request("POST", "/api/v1/patterns/clear")
        return bool(data.get("success", True))
