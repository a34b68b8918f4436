"""Tests for import resolution, graph construction and graph export."""

from pathlib import Path

import pytest

from coherence_cli.engine import CoherenceEngine
from coherence_cli.graph import ASSET, EXTERNAL, MODULE, UNRESOLVED, ImportResolver
from coherence_cli.graph_export import export_dot, export_html
from coherence_cli.models import IssueKind, Severity


def _resolver(root: Path, modules, aliases=None) -> ImportResolver:
    return ImportResolver(root, modules, aliases)


class TestImportResolver:
    """Tests for specifier resolution."""

    def test_relative_with_extension_fallback(self, make_project):
        root = make_project({"src/a.ts": "", "src/b.tsx": ""})
        resolver = _resolver(root, ["src/a.ts", "src/b.tsx"])

        result = resolver.resolve("./b", root / "src" / "a.ts")

        assert (result.status, result.target) == (MODULE, "src/b.tsx")

    def test_index_fallback(self, make_project):
        root = make_project({"src/a.ts": "", "src/utils/index.ts": ""})
        resolver = _resolver(root, ["src/a.ts", "src/utils/index.ts"])

        result = resolver.resolve("./utils", root / "src" / "a.ts")

        assert result.target == "src/utils/index.ts"

    def test_compiled_extension_maps_to_source(self, make_project):
        root = make_project({"src/a.ts": "", "src/b.ts": ""})
        resolver = _resolver(root, ["src/a.ts", "src/b.ts"])

        result = resolver.resolve("./b.js", root / "src" / "a.ts")

        assert result.target == "src/b.ts"

    def test_alias_prefix(self, make_project):
        root = make_project({"src/lib/x.ts": "", "app/page.tsx": ""})
        resolver = _resolver(root, ["src/lib/x.ts", "app/page.tsx"], {"@/": "src/"})

        result = resolver.resolve("@/lib/x", root / "app" / "page.tsx")

        assert (result.status, result.target) == (MODULE, "src/lib/x.ts")

    def test_longest_alias_wins(self, make_project):
        root = make_project({"src/x.ts": "", "shared/ui/x.ts": "", "a.ts": ""})
        resolver = _resolver(
            root, ["src/x.ts", "shared/ui/x.ts", "a.ts"], {"@/": "src/", "@/ui/": "shared/ui/"}
        )

        assert resolver.resolve("@/ui/x", root / "a.ts").target == "shared/ui/x.ts"
        assert resolver.resolve("@/x", root / "a.ts").target == "src/x.ts"

    def test_external_package(self, make_project):
        root = make_project({"a.ts": ""})
        resolver = _resolver(root, ["a.ts"])

        assert resolver.resolve("react", root / "a.ts").status == EXTERNAL
        assert resolver.resolve("@scope/pkg/sub", root / "a.ts").status == EXTERNAL

    def test_asset_and_unresolved(self, make_project):
        root = make_project({"a.ts": "", "styles.css": ""})
        resolver = _resolver(root, ["a.ts"])

        assert resolver.resolve("./styles.css", root / "a.ts").status == ASSET
        assert resolver.resolve("./nope", root / "a.ts").status == UNRESOLVED


class TestGraphBuilder:
    """Tests for graph assembly through the engine."""

    def test_edges_and_unresolved_issue(self, make_project):
        root = make_project({
            "src/a.ts": "import { b } from './b';\nimport { c } from './c';\nimport x from 'lodash';\nb(c, x);\n",
            "src/b.ts": "export function b() {}\n",
        })

        graph = CoherenceEngine(root).build_graph()

        assert set(graph.modules) == {"src/a.ts", "src/b.ts"}
        assert list(graph.edges) == [("src/a.ts", "src/b.ts")]
        assert graph.imports_checked == 3
        assert graph.external_imports == 1
        assert len(graph.issues) == 1
        issue = graph.issues[0]
        assert issue.kind == IssueKind.UNRESOLVED_IMPORT
        assert issue.severity == Severity.ERROR
        assert (issue.file, issue.line) == ("src/a.ts", 2)
        assert "./c" in issue.message

    def test_resolved_imports_have_edges(self, make_project):
        """Every import resolved to a module has exactly one edge for its pair."""
        root = make_project({
            "a.ts": "import { x } from './b';\nimport { y } from './b';\nimport './c';\nx(y);\n",
            "b.ts": "export const x = 1;\nexport const y = 2;\n",
            "c.ts": "",
        })

        graph = CoherenceEngine(root).build_graph()

        for module in graph.modules.values():
            for record in module.imports:
                if record.resolved is not None:
                    assert (module.path, record.resolved) in graph.edges
        assert len(graph.edges[("a.ts", "b.ts")].imports) == 2
        assert ("a.ts", "c.ts") in graph.edges

    def test_star_reexport_chased_one_hop(self, make_project):
        root = make_project({
            "index.ts": "export * from './middle';\n",
            "middle.ts": "export * from './leaf';\nexport const mid = 1;\n",
            "leaf.ts": "export const leaf = 1;\n",
        })

        graph = CoherenceEngine(root).build_graph()

        assert graph.lookup_export("index.ts", "mid")[0] == "middle.ts"
        assert graph.lookup_export("middle.ts", "leaf")[0] == "leaf.ts"
        # two hops away
        assert graph.lookup_export("index.ts", "leaf") is None

    def test_opaque_star_from_external(self, make_project):
        root = make_project({"index.ts": "export * from 'some-package';\n"})

        graph = CoherenceEngine(root).build_graph()

        assert graph.has_opaque_star("index.ts")


class TestGraphExport:
    """Tests for DOT and HTML export."""

    @pytest.fixture
    def graph(self, make_project):
        root = make_project({
            "src/a.ts": "import { b } from './b';\nimport c from './c';\nb(c);\n",
            "src/b.ts": "export function b() {}\n",
            "src/c.ts": "export default 1;\n",
            "src/lonely.ts": "export const lonely = 1;\n",
        })
        return CoherenceEngine(root).build_graph()

    def test_export_dot(self, graph, temp_dir):
        output = temp_dir / "graph.dot"
        export_dot(graph, output)

        content = output.read_text(encoding="utf-8")
        assert content.startswith("digraph Modules {")
        assert '"src/a.ts" -> "src/b.ts" [label="b"];' in content
        assert '"src/a.ts" -> "src/c.ts" [label="default"];' in content
        assert '"src/lonely.ts" [label="src/lonely.ts\\n1 exports"];' in content

    def test_export_dot_focus(self, graph, temp_dir):
        output = temp_dir / "focused.dot"
        export_dot(graph, output, focus="src/b")

        content = output.read_text(encoding="utf-8")
        assert '"src/a.ts" -> "src/b.ts"' in content
        assert "lonely" not in content
        assert '"src/c.ts" [' not in content

    def test_export_html(self, graph, temp_dir):
        output = temp_dir / "graph.html"
        export_html(graph, output)

        content = output.read_text(encoding="utf-8")
        assert "<title>Module Graph</title>" in content
        assert '"id": "src/lonely.ts"' in content
        assert '"src": "src/a.ts"' in content
