"""
NeuroLint — Layer 7: Adaptive Learning
======================================
Applies the rules the PatternLearner extracted from earlier accepted
transformations.

Recognised params:
  skipPatterns : ids of rules learned earlier in the same run; their
                 source layer has already rewritten this code
  dryRun       : apply without touching hit/miss counters
"""

from typing import Any, Dict, List, Tuple

from neurolint.layers.base import BaseLayer, register_layer


@register_layer
class AdaptiveLearningLayer(BaseLayer):
    layer_id = 7
    requires_learner = True

    def __init__(self, learner=None):
        self.learner = learner

    def apply(self, source_code: str, params: Dict[str, Any]) -> Tuple[str, List[str]]:
        if self.learner is None:
            return source_code, []
        application = self.learner.apply(
            source_code,
            skip=params.get("skipPatterns") or (),
            record=not params.get("dryRun", False),
        )
        improvements = [f"Applied learned pattern {name}" for name in application.applied_rule_names]
        return application.code, improvements

    def describe(self) -> str:
        return "Learned pattern application"
