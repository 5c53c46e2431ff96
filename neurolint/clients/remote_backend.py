"""
NeuroLint — Remote Layer Backend
================================
HTTP client for a NeuroLint layer service:

  POST {base}/api/v1/layers/{id}/execute
       {"code": ..., "options": {...}, "timestamp": ...}
  ->   {"success": bool, "transformedCode": str, "changeCount": int,
        "improvements": [...], "error": str?}

Falls back to a local backend when the service is unreachable, if one is
configured; otherwise the failure is raised to the executor.
"""

import logging
import time
from collections import deque
from typing import Any, Dict, Optional

import httpx

from neurolint.errors import LayerBackendError
from neurolint.layers.base import LayerBackend, count_changes
from neurolint.models import LayerExecution

LATENCY_WINDOW = 500

logger = logging.getLogger(__name__)


class RemoteLayerBackend:
    """
    Client for the NeuroLint layer execution API.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        api_key: Optional[str] = None,
        timeout_s: float = 30.0,
        fallback: Optional[LayerBackend] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.fallback = fallback
        self._client = client
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._healthy: Optional[bool] = None
        self._latency_log: deque = deque(maxlen=LATENCY_WINDOW)

    def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, json=payload, headers=self._headers, timeout=self.timeout_s)
        return httpx.post(url, json=payload, headers=self._headers, timeout=self.timeout_s)

    def is_healthy(self) -> bool:
        """Check if the layer service is available."""
        try:
            if self._client is not None:
                resp = self._client.get(f"{self.base_url}/health", timeout=2.0)
            else:
                resp = httpx.get(f"{self.base_url}/health", timeout=2.0)
            self._healthy = resp.status_code == 200
        except httpx.HTTPError:
            self._healthy = False
        return self._healthy

    def execute(self, layer_id: int, code: str, options: Optional[Dict[str, Any]] = None) -> LayerExecution:
        url = f"{self.base_url}/api/v1/layers/{layer_id}/execute"
        payload = {"code": code, "options": dict(options or {}), "timestamp": time.time()}
        t_start = time.time()
        try:
            resp = self._post(url, payload)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            if self.fallback is not None:
                logger.warning(f"[RemoteLayerBackend] Layer {layer_id} request failed ({e}), using fallback")
                return self.fallback.execute(layer_id, code, options or {})
            raise LayerBackendError(layer_id, f"remote execution failed: {e}") from e

        latency_ms = (time.time() - t_start) * 1000
        self._latency_log.append(latency_ms)
        logger.debug(f"[RemoteLayerBackend] Layer {layer_id} responded in {latency_ms:.1f}ms")

        if not data.get("success", False):
            return LayerExecution(success=False, error=str(data.get("error") or "remote layer reported failure"))

        transformed = data.get("transformedCode")
        if not isinstance(transformed, str):
            transformed = code
        return LayerExecution(
            success=True,
            transformed_code=transformed,
            change_count=int(data.get("changeCount", count_changes(code, transformed))),
            improvements=[str(i) for i in data.get("improvements") or []],
            description=str(data.get("description") or ""),
        )

    def get_avg_latency_ms(self) -> float:
        if not self._latency_log:
            return 0.0
        return sum(self._latency_log) / len(self._latency_log)
