"""
NeuroLint API Server
====================
Exposes the TransformationExecutor as a REST API on port 8000.
The /api/v1/layers/{id}/execute route is what RemoteLayerBackend talks
to, so one NeuroLint server can act as the layer service for another.
"""

import logging
import os
from typing import Any, Dict, List

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from neurolint.config import LOG_FORMAT
from neurolint.errors import NeuroLintError

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

app = FastAPI(title="NeuroLint API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Lazy-init the executor so configuration errors surface on first use
_executor = None


def get_executor():
    global _executor
    if _executor is None:
        from neurolint.config import NeuroLintSettings, build_executor
        _executor = build_executor(NeuroLintSettings.from_env())
    return _executor


class CodeRequest(BaseModel):
    code: str


class TransformRequest(BaseModel):
    code: str
    layers: List[int]
    options: Dict[str, Any] = Field(default_factory=dict)
    include_history: bool = False


class ResolveRequest(BaseModel):
    layers: List[int]


class LayerExecuteRequest(BaseModel):
    code: str
    options: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = 0.0


@app.get("/health")
def health():
    return {"status": "ok", "service": "neurolint"}


@app.get("/status")
def status():
    try:
        return get_executor().get_status()
    except Exception as e:
        logger.warning(f"Status check failed: {e}")
        return {"status": "initializing", "error": str(e)}


@app.get("/layers")
def layers():
    from neurolint.layers.dependencies import LAYER_CATALOG
    return {"layers": [
        {
            "id": spec.id,
            "name": spec.name,
            "kind": spec.kind.value,
            "dependsOn": sorted(spec.depends_on),
            "description": spec.description,
            "supportsAst": spec.supports_ast,
        }
        for spec in LAYER_CATALOG.values()
    ]}


@app.post("/layers/resolve")
def resolve(req: ResolveRequest):
    try:
        return get_executor().resolve_layers(req.layers).to_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/analyze")
def analyze(req: CodeRequest):
    return get_executor().analyze(req.code).to_dict()


@app.post("/transform")
def transform(req: TransformRequest):
    executor = get_executor()
    try:
        result = executor.transform(req.code, req.layers, req.options)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Transformation failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    data = result.to_dict(include_history=req.include_history)
    data["warnings"] = list(result.resolution.warnings) if result.resolution else []
    data["recoverySuggestions"] = executor.classifier.suggestions_for(result.outcomes)
    return data


@app.post("/api/v1/layers/{layer_id}/execute")
def execute_layer(layer_id: int, req: LayerExecuteRequest):
    from neurolint.layers.base import LocalLayerBackend
    executor = get_executor()
    backend = executor.backend if isinstance(executor.backend, LocalLayerBackend) else LocalLayerBackend(executor.learner)
    try:
        execution = backend.execute(layer_id, req.code, req.options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NeuroLintError as e:
        return {"success": False, "error": str(e)}
    return {
        "success": execution.success,
        "transformedCode": execution.transformed_code,
        "changeCount": execution.change_count,
        "improvements": execution.improvements,
        "description": execution.description,
        "error": execution.error,
    }


@app.get("/patterns")
def patterns():
    learner = get_executor().learner
    return {
        "statistics": learner.statistics(),
        "patterns": [p.to_record() for p in learner.rules()],
    }


@app.delete("/patterns")
def clear_patterns():
    cleared = get_executor().learner.repository.clear()
    return {"success": cleared}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("NEUROLINT_PORT", "8000")), log_level="info")
