"""
NeuroLint — Code Analyzer
=========================
Detects issues each layer knows how to fix and recommends which layers to
run. Structural issues (missing keys, unguarded browser APIs, unhandled
async) come from the tree-sitter metrics; the rest are textual.

Confidence: 0.8 when anything is found, 0.3 otherwise.
Impact: high when more than two issues or any high/critical issue.
"""

import logging
from typing import List

from neurolint.layers.configuration import OUTDATED_SETTINGS
from neurolint.layers.entity_cleanup import CONSOLE_LOG_RE, ENTITY_RE
from neurolint.layers.nextjs_router import misplaced_use_client_line
from neurolint.models import (
    AnalysisResult,
    ConsoleLogIssue,
    DetectedIssue,
    EstimatedImpact,
    HtmlEntityIssue,
    MisplacedUseClientIssue,
    MissingKeyIssue,
    OutdatedConfigIssue,
    Severity,
    UnguardedBrowserApiIssue,
    UnhandledAsyncIssue,
)
from neurolint.parsing.js_parser import (
    browser_api_stats,
    map_render_stats,
    parse_source,
    unhandled_async_functions,
)

logger = logging.getLogger(__name__)

CONFIDENCE_WITH_ISSUES = 0.8
CONFIDENCE_WITHOUT_ISSUES = 0.3


class CodeAnalyzer:
    def analyze(self, code: str) -> AnalysisResult:
        if not isinstance(code, str):
            raise TypeError(f"code must be a str, got {type(code).__name__}")

        issues = self.detect_issues(code)
        recommended = sorted({issue.fixed_by_layer for issue in issues})
        reasoning = [f"Layer {issue.fixed_by_layer}: {issue.description}" for issue in issues]

        logger.info(f"[CodeAnalyzer] {len(issues)} issue(s), recommending layers {recommended}")
        return AnalysisResult(
            detected_issues=issues,
            recommended_layers=recommended,
            confidence=CONFIDENCE_WITH_ISSUES if issues else CONFIDENCE_WITHOUT_ISSUES,
            estimated_impact=self._impact(issues),
            reasoning=reasoning,
        )

    def detect_issues(self, code: str) -> List[DetectedIssue]:
        issues: List[DetectedIssue] = []

        for setting, pattern in OUTDATED_SETTINGS.items():
            if pattern.search(code):
                issues.append(OutdatedConfigIssue(setting=setting))

        entities = len(ENTITY_RE.findall(code))
        if entities:
            issues.append(HtmlEntityIssue(occurrences=entities))
        logs = len(CONSOLE_LOG_RE.findall(code))
        if logs:
            issues.append(ConsoleLogIssue(occurrences=logs))

        parsed = parse_source(code)
        if parsed.ok and parsed.tree is not None:
            renders = map_render_stats(parsed)
            if renders.missing:
                issues.append(MissingKeyIssue(element_count=renders.missing))
            apis = browser_api_stats(parsed)
            if apis.unguarded:
                issues.append(UnguardedBrowserApiIssue(apis=apis.apis, access_count=apis.unguarded))
            unhandled = unhandled_async_functions(parsed)
            if unhandled:
                issues.append(UnhandledAsyncIssue(function_count=len(unhandled)))

        line = misplaced_use_client_line(code)
        if line:
            issues.append(MisplacedUseClientIssue(line=line))

        issues.sort(key=lambda issue: issue.fixed_by_layer)
        return issues

    def _impact(self, issues: List[DetectedIssue]) -> EstimatedImpact:
        if not issues:
            return EstimatedImpact("low", "No issues detected", "0 minutes")
        severe = any(issue.severity in (Severity.HIGH, Severity.CRITICAL) for issue in issues)
        if len(issues) > 2 or severe:
            return EstimatedImpact("high", f"{len(issues)} issues affecting correctness or SSR safety",
                                   f"{len(issues) * 5} minutes")
        return EstimatedImpact("medium", f"{len(issues)} issue(s) affecting code quality",
                               f"{len(issues) * 3} minutes")
