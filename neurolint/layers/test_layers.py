"""
Unit tests for the local layers and the in-process layer backend.
Every layer must be deterministic and idempotent.
"""
import pytest

from neurolint.agents.pattern_learner import PatternLearner
from neurolint.errors import ASTParsingError, InvalidLayerError
from neurolint.layers.base import LocalLayerBackend, count_changes, get_layer_class, list_layers
from neurolint.layers.hydration import SSR_GUARD

backend = LocalLayerBackend()


def run(layer_id, code):
    return backend.execute(layer_id, code, {}).transformed_code


# ─── Registry ────────────────────────────────────────────────────────────────

class TestRegistry:
    def test_all_layers_registered(self):
        assert list_layers() == [1, 2, 3, 4, 5, 6, 7]

    def test_unknown_layer_class(self):
        with pytest.raises(InvalidLayerError):
            get_layer_class(12)

    def test_backend_reports_change_count(self):
        execution = backend.execute(2, 'console.log("hi");', {})
        assert execution.success is True
        assert execution.transformed_code == 'console.debug("hi");'
        assert execution.change_count == 1
        assert execution.improvements

    def test_backend_reports_layer_description(self):
        execution = backend.execute(4, "const a = 1;", {})
        assert execution.description == "SSR guards for localStorage, sessionStorage and matchMedia"

    @pytest.mark.parametrize("layer_id", [1, 2, 3, 4, 5, 6, 7])
    def test_every_layer_describes_itself(self, layer_id):
        assert backend.execute(layer_id, "const a = 1;", {}).description

    def test_count_changes(self):
        assert count_changes("a\nb", "a\nb") == 0
        assert count_changes("a\nb", "a\nc\nd") == 2


# ─── Layer 1: Configuration ──────────────────────────────────────────────────

class TestConfigurationLayer:
    def test_upgrades_es5_target(self):
        code = '{\n  "compilerOptions": {\n    "target": "es5"\n  }\n}\n'
        assert '"target": "ES2020"' in run(1, code)

    def test_enables_strict_mode_and_drops_app_dir(self):
        code = "module.exports = {\n  reactStrictMode: false,\n  experimental: {\n    appDir: true,\n  },\n};\n"
        result = run(1, code)
        assert "reactStrictMode: true" in result
        assert "appDir" not in result

    def test_modern_config_untouched(self):
        code = '{\n  "compilerOptions": {\n    "target": "ES2020"\n  }\n}\n'
        assert run(1, code) == code


# ─── Layer 2: Entity Cleanup ─────────────────────────────────────────────────

class TestEntityCleanupLayer:
    def test_collapses_wrapped_quotes(self):
        assert run(2, 'const test = "&quot;test&quot;";') == 'const test = "test";'

    def test_decodes_entities(self):
        assert run(2, "const s = '&lt;div&gt;';") == "const s = '<div>';"

    def test_amp_decoded_once(self):
        assert run(2, "const s = '&amp;lt;';") == "const s = '&lt;';"

    def test_console_log_becomes_debug(self):
        assert run(2, "console.log(x);\nlogger.log(y);") == "console.debug(x);\nlogger.log(y);"

    def test_idempotent(self):
        once = run(2, 'const a = "&quot;a&quot;";\nconsole.log(a);')
        assert run(2, once) == once


# ─── Layer 3: Components ─────────────────────────────────────────────────────

class TestComponentsLayer:
    def test_single_parameter_key(self):
        code = "const L = ({ items }) => <ul>{items.map((item) => <li>{item.name}</li>)}</ul>;"
        assert "<li key={item.id ?? item}>" in run(3, code)

    def test_index_parameter_key(self):
        code = "const L = ({ items }) => <ul>{items.map((item, index) => <li>{item}</li>)}</ul>;"
        assert "<li key={item.id ?? index}>" in run(3, code)

    def test_unparenthesised_parameter(self):
        code = "const L = ({ items }) => <ul>{items.map(item => <li>{item}</li>)}</ul>;"
        assert "<li key={item.id ?? item}>" in run(3, code)

    def test_destructured_id(self):
        code = "const L = ({ items }) => <ul>{items.map(({ id, name }) => <li>{name}</li>)}</ul>;"
        assert "<li key={id}>" in run(3, code)

    def test_self_closing_element(self):
        code = "const L = ({ rows }) => <div>{rows.map((row) => <Row data={row} />)}</div>;"
        assert "<Row key={row.id ?? row} data={row} />" in run(3, code)

    def test_keyed_render_untouched(self):
        code = "const L = ({ items }) => <ul>{items.map((item) => <li key={item.id}>{item}</li>)}</ul>;"
        assert run(3, code) == code

    def test_no_map_untouched(self):
        code = "const A = () => <div>hello</div>;"
        assert run(3, code) == code

    def test_idempotent(self):
        code = "const L = ({ items }) => <ul>{items.map((item) => <li>{item}</li>)}</ul>;"
        once = run(3, code)
        assert run(3, once) == once

    def test_unparseable_source_raises(self):
        with pytest.raises(ASTParsingError):
            run(3, "const L = items.map((x) => <li>{x}</li>;")


# ─── Layer 4: Hydration ──────────────────────────────────────────────────────

class TestHydrationLayer:
    def test_guards_local_storage(self):
        code = 'const theme = localStorage.getItem("theme");'
        assert run(4, code) == f'const theme = {SSR_GUARD}localStorage.getItem("theme");'

    def test_guards_match_media(self):
        code = 'const dark = window.matchMedia("(prefers-color-scheme: dark)");'
        assert SSR_GUARD + "window.matchMedia(" in run(4, code)

    def test_already_guarded_untouched(self):
        code = f'const theme = {SSR_GUARD}localStorage.getItem("theme");'
        assert run(4, code) == code

    def test_member_chain_untouched(self):
        code = 'const theme = window.localStorage.getItem("theme");'
        assert run(4, code) == code

    def test_idempotent(self):
        once = run(4, 'sessionStorage.setItem("a", "1");\nsessionStorage.clear();')
        assert run(4, once) == once

    def test_guard_inside_expression_is_parenthesized(self):
        code = 'const v = "prefix:" + localStorage.getItem("k");'
        assert run(4, code) == f'const v = "prefix:" + ({SSR_GUARD}localStorage.getItem("k"));'

    def test_guard_under_negation_is_parenthesized(self):
        code = 'if (!localStorage.getItem("seen")) {\n  show();\n}\n'
        assert run(4, code) == f'if (!({SSR_GUARD}localStorage.getItem("seen"))) {{\n  show();\n}}\n'

    def test_parenthesized_guard_is_idempotent(self):
        once = run(4, 'render("theme: " + localStorage.getItem("theme"));')
        assert run(4, once) == once

    def test_if_block_guard_untouched(self):
        code = 'if (typeof window !== "undefined") {\n  localStorage.setItem("a", "1");\n}\n'
        assert run(4, code) == code

    def test_unparseable_source_raises(self):
        with pytest.raises(ASTParsingError):
            run(4, 'const t = localStorage.getItem("t";')


# ─── Layer 5: Next.js App Router ─────────────────────────────────────────────

class TestNextJsRouterLayer:
    def test_moves_misplaced_directive(self):
        code = "import React from 'react';\n'use client';\n\nexport default function Page() {}\n"
        assert run(5, code) == "'use client';\n\nimport React from 'react';\n\nexport default function Page() {}\n"

    def test_directive_in_place_untouched(self):
        code = "'use client';\nimport React from 'react';\n"
        assert run(5, code) == code

    def test_leading_comment_allowed(self):
        code = "// page\n'use client';\nimport React from 'react';\n"
        assert run(5, code) == code

    def test_idempotent(self):
        once = run(5, "import React from 'react';\n\"use client\";\n")
        assert run(5, once) == once


# ─── Layer 6: Testing & Validation ───────────────────────────────────────────

class TestTestingLayer:
    CODE = (
        "async function load() {\n"
        "  const res = await fetch(\"/api\");\n"
        "  return res.json();\n"
        "}\n"
    )

    def test_wraps_unhandled_async_body(self):
        assert run(6, self.CODE) == (
            "async function load() {\n"
            "  try {\n"
            "    const res = await fetch(\"/api\");\n"
            "    return res.json();\n"
            "  } catch (error) {\n"
            "    console.error(\"Error:\", error);\n"
            "    throw error;\n"
            "  }\n"
            "}\n"
        )

    def test_idempotent(self):
        once = run(6, self.CODE)
        assert run(6, once) == once

    def test_handled_async_untouched(self):
        code = (
            "async function load() {\n"
            "  try {\n"
            "    await fetch(\"/api\");\n"
            "  } catch (e) {\n"
            "    console.error(e);\n"
            "  }\n"
            "}\n"
        )
        assert run(6, code) == code

    def test_async_without_await_untouched(self):
        code = "async function noop() {\n  return 1;\n}\n"
        assert run(6, code) == code

    def test_template_literal_lines_kept_verbatim(self):
        code = (
            "async function query() {\n"
            "  const q = `select *\n"
            "from users\n"
            "    where id = 1`;\n"
            "  await db.run(q);\n"
            "}\n"
        )
        assert run(6, code) == (
            "async function query() {\n"
            "  try {\n"
            "    const q = `select *\n"
            "from users\n"
            "    where id = 1`;\n"
            "    await db.run(q);\n"
            "  } catch (error) {\n"
            "    console.error(\"Error:\", error);\n"
            "    throw error;\n"
            "  }\n"
            "}\n"
        )


# ─── Layer 7: Adaptive Learning ──────────────────────────────────────────────

class TestAdaptiveLayer:
    def test_without_learner_is_a_no_op(self):
        code = 'const a = "&quot;x&quot;";'
        assert run(7, code) == code

    def test_applies_learned_rules(self):
        learner = PatternLearner(autosave=False)
        learner.learn('const a = "&quot;x&quot;";', 'const a = "x";', 2)
        adaptive = LocalLayerBackend(learner=learner)
        execution = adaptive.execute(7, 'const b = "&quot;y&quot;";', {})
        assert execution.transformed_code == 'const b = "y";'
        assert execution.improvements
