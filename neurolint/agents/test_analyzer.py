"""
Unit tests for issue detection and layer recommendation.
"""
import pytest

from neurolint.agents.analyzer import CodeAnalyzer

analyzer = CodeAnalyzer()


def kinds(result):
    return [issue.kind for issue in result.detected_issues]


# ─── Clean Input ─────────────────────────────────────────────────────────────

class TestCleanCode:
    def test_nothing_detected(self):
        result = analyzer.analyze("const a = 1;\n")
        assert result.detected_issues == []
        assert result.recommended_layers == []
        assert result.confidence == pytest.approx(0.3)
        assert result.estimated_impact.level == "low"

    def test_empty_source(self):
        assert analyzer.analyze("").recommended_layers == []

    def test_non_string_rejected(self):
        with pytest.raises(TypeError):
            analyzer.analyze(None)


# ─── Detection ───────────────────────────────────────────────────────────────

class TestDetection:
    def test_outdated_config(self):
        result = analyzer.analyze('{\n  "compilerOptions": {\n    "target": "es5"\n  }\n}\n')
        assert kinds(result) == ["outdated-config"]
        assert result.recommended_layers == [1]

    def test_html_entities(self):
        result = analyzer.analyze('const t = "&quot;x&quot;";')
        assert kinds(result) == ["html-entity"]
        assert result.detected_issues[0].occurrences == 2
        assert result.confidence == pytest.approx(0.8)
        assert result.estimated_impact.level == "medium"

    def test_missing_keys(self):
        result = analyzer.analyze("const L = ({ items }) => <ul>{items.map((i) => <li>{i}</li>)}</ul>;")
        assert kinds(result) == ["missing-key"]
        assert result.recommended_layers == [3]

    def test_unguarded_browser_api_is_high_impact(self):
        result = analyzer.analyze('const t = localStorage.getItem("t");')
        assert kinds(result) == ["unguarded-browser-api"]
        assert result.detected_issues[0].apis == ("localStorage",)
        assert result.estimated_impact.level == "high"

    def test_misplaced_use_client(self):
        result = analyzer.analyze("import React from 'react';\n'use client';\n")
        assert kinds(result) == ["misplaced-use-client"]
        assert result.detected_issues[0].line == 2

    def test_unhandled_async(self):
        result = analyzer.analyze("async function f() {\n  await g();\n}\n")
        assert kinds(result) == ["unhandled-async"]
        assert result.recommended_layers == [6]


# ─── Recommendation ──────────────────────────────────────────────────────────

class TestRecommendation:
    CODE = (
        "'use client';\n"
        "export default function Page({ items }) {\n"
        "  console.log(items);\n"
        "  const t = localStorage.getItem(\"t\");\n"
        "  return <ul>{items.map((i) => <li>{i}</li>)}</ul>;\n"
        "}\n"
    )

    def test_layers_sorted_and_unique(self):
        result = analyzer.analyze(self.CODE)
        assert result.recommended_layers == [2, 3, 4]

    def test_issues_ordered_by_fixing_layer(self):
        layers = [issue.fixed_by_layer for issue in analyzer.analyze(self.CODE).detected_issues]
        assert layers == sorted(layers)

    def test_reasoning_names_layers(self):
        result = analyzer.analyze(self.CODE)
        assert result.reasoning[0].startswith("Layer 2: ")
        assert len(result.reasoning) == len(result.detected_issues)

    def test_to_dict(self):
        data = analyzer.analyze(self.CODE).to_dict()
        assert data["recommendedLayers"] == [2, 3, 4]
        assert data["estimatedImpact"]["level"] == "high"
        issue = data["detectedIssues"][0]
        assert issue["kind"] == "console-log"
        assert issue["severity"] == "low"
        assert "description" in issue
