"""
Unit tests for the SafetyValidator tiers.
"""
from neurolint.agents.safety_validator import SafetyValidator
from neurolint.layers.hydration import SSR_GUARD
from neurolint.models import FailureKind

validator = SafetyValidator()


# ─── Cheap Tiers ─────────────────────────────────────────────────────────────

class TestCheapTiers:
    def test_identical_code_accepted_with_warning(self):
        verdict = validator.check("const a = 1;", "const a = 1;", 2)
        assert verdict.valid is True
        assert verdict.should_revert is False
        assert verdict.warnings == ["no changes"]

    def test_empty_output_reverted(self):
        verdict = validator.check("const a = 1;", "   \n", 2)
        assert verdict.should_revert is True
        assert verdict.failure_kind == FailureKind.STRUCTURAL_INTEGRITY_VIOLATION

    def test_syntax_error_reverted(self):
        verdict = validator.check("const a = 1;", "const a = ;", 2)
        assert verdict.should_revert is True
        assert verdict.failure_kind == FailureKind.SYNTAX_ERROR
        assert verdict.reason.startswith("syntax error")

    def test_valid_edit_accepted(self):
        verdict = validator.check('console.log("a");', 'console.debug("a");', 2)
        assert verdict.valid is True
        assert verdict.reason == "validation passed"


# ─── Corruption ──────────────────────────────────────────────────────────────

class TestCorruption:
    def test_double_arrow_handler_detected(self):
        before = "const b = <button onClick={() => handleClick()}>Go</button>;"
        after = "const b = <button onClick={() => () => handleClick()}>Go</button>;"
        verdict = validator.check(before, after, 2)
        assert verdict.should_revert is True
        assert verdict.failure_kind == FailureKind.CORRUPTION_DETECTED
        assert "Corruption detected: Double function calls" in verdict.errors

    def test_signature_already_present_is_not_new_corruption(self):
        code = "const b = <button onClick={() => () => go()}>Go</button>;"
        assert validator.detect_corruption(code, code + "\n// done") == []

    def test_duplicated_guard(self):
        after = f"const t = {SSR_GUARD}{SSR_GUARD}localStorage.getItem('t');"
        assert "Duplicated SSR guards" in validator.detect_corruption("const t = 1;", after)


# ─── Structural Integrity ────────────────────────────────────────────────────

class TestIntegrity:
    def test_dropping_exports_reverted(self):
        before = "export default function A() {}\nexport default function B() {}\n"
        after = "function A() {}\nfunction B() {}\n"
        verdict = validator.check(before, after, 2)
        assert verdict.should_revert is True
        assert verdict.reason == "critical pattern significantly reduced"

    def test_removed_react_import_reverted(self):
        before = "import React from 'react';\nconst a = 1;\n"
        after = "import Vue from 'vue';\nconst a = 1;\n"
        errors = validator.integrity_violations(before, after)
        assert "Critical import removed: React" in errors

    def test_partial_reduction_within_ratio_allowed(self):
        before = "const a = 1;\nconst b = 2;\n"
        after = "const a = 1;\nlet b = 2;\n"
        assert validator.integrity_violations(before, after) == []


# ─── AST Semantics ───────────────────────────────────────────────────────────

class TestSemanticTier:
    def test_component_keys_added_accepted_with_metrics(self):
        before = "const L = ({ items }) => <ul>{items.map((i) => <li>{i}</li>)}</ul>;"
        after = "const L = ({ items }) => <ul>{items.map((i) => <li key={i.id ?? i}>{i}</li>)}</ul>;"
        verdict = validator.check(before, after, 3)
        assert verdict.valid is True
        assert verdict.metrics["missing_keys_before"] == 1
        assert verdict.metrics["missing_keys_after"] == 0

    def test_component_edit_without_keys_reverted(self):
        before = "const L = ({ items }) => <ul>{items.map((i) => <li>{i}</li>)}</ul>;"
        after = "const L = ({ items }) => <ol>{items.map((i) => <li>{i}</li>)}</ol>;"
        verdict = validator.check(before, after, 3)
        assert verdict.should_revert is True
        assert verdict.failure_kind == FailureKind.STRUCTURAL_INTEGRITY_VIOLATION

    def test_hydration_guard_accepted(self):
        before = 'const t = localStorage.getItem("t");'
        after = f'const t = {SSR_GUARD}localStorage.getItem("t");'
        verdict = validator.check(before, after, 4)
        assert verdict.valid is True
        assert verdict.metrics["guarded_after"] == 1
        assert verdict.metrics["unguarded_after"] == 0

    def test_hydration_new_unguarded_access_reverted(self):
        before = "const t = 1;"
        after = 'const t = localStorage.getItem("t");'
        verdict = validator.check(before, after, 4)
        assert verdict.should_revert is True

    def test_hydration_guard_that_changes_precedence_reverted(self):
        before = 'const v = "prefix:" + localStorage.getItem("k");'
        after = 'const v = "prefix:" + typeof window !== "undefined" && localStorage.getItem("k");'
        verdict = validator.check(before, after, 4)
        assert verdict.should_revert is True
        assert verdict.metrics["guarded_after"] == 0

    def test_hydration_negated_guard_reverted(self):
        before = 'if (!localStorage.getItem("seen")) {\n  show();\n}\n'
        after = 'if (!typeof window !== "undefined" && localStorage.getItem("seen")) {\n  show();\n}\n'
        assert validator.check(before, after, 4).should_revert is True

    def test_hydration_parenthesized_guard_accepted(self):
        before = 'const v = "prefix:" + localStorage.getItem("k");'
        after = f'const v = "prefix:" + ({SSR_GUARD}localStorage.getItem("k"));'
        verdict = validator.check(before, after, 4)
        assert verdict.valid is True
        assert verdict.metrics["guarded_after"] == 1

    def test_semantic_tier_only_for_structural_layers(self):
        before = "const t = 1;"
        after = 'const t = localStorage.getItem("t");'
        assert validator.check(before, after, 2).valid is True


# ─── Stats ───────────────────────────────────────────────────────────────────

class TestStats:
    def test_counters(self):
        local = SafetyValidator()
        local.check("a;", "a;", 1)
        local.check("const a = 1;", "const a = ;", 1)
        assert local.get_stats() == {"checks_run": 2, "reverts": 1}
