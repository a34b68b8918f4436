"""Tests for the ripple impact query."""

import pytest

from coherence_cli.cache import TTLCache
from coherence_cli.ripple import DEFAULT_GUIDANCE, GUIDANCE, RippleQuery


def _heavy_user(index: int) -> str:
    return (
        "import { UserRole } from '../types/roles';\n"
        f"export function check{index}(role: UserRole) {{\n"
        "  if (role === UserRole.Admin) return 1;\n"
        "  if (role === UserRole.Editor) return 2;\n"
        "  if (role === UserRole.Viewer) return 3;\n"
        "  const all: UserRole[] = [];\n"
        "  return all.length;\n"
        "}\n"
    )


class TestRippleQuery:
    """Tests for ranking files by usage of one entity."""

    def test_five_heavy_users_are_high_impact(self, make_project):
        files = {"src/types/roles.ts": "export enum UserRole {\n  Admin,\n  Editor,\n  Viewer,\n}\n"}
        for i in range(5):
            files[f"src/checks/check{i}.ts"] = _heavy_user(i)
        root = make_project(files)

        report = RippleQuery(root).run("UserRole")

        assert report.definition is not None
        assert report.definition.path == "src/types/roles.ts"
        assert len(report.high) == 5
        assert report.medium == []
        assert report.low == []
        assert report.total_files == 6
        assert all(f.usage_count == 5 for f in report.high)
        assert report.total_usages == 26

    def test_bands_and_import_lines(self, make_project):
        root = make_project({
            "src/model.ts": "export interface Invoice { id: string }\n",
            "src/few.ts": "import { Invoice } from './model';\nconst a: Invoice = x;\nconst b: Invoice = y;\n",
            "src/one.ts": "import type {\n  Invoice,\n} from './model';\nlet only: Invoice;\n",
            "src/unrelated.ts": "const InvoiceNumber = 1;\n",
        })

        report = RippleQuery(root).run("Invoice")

        assert [f.path for f in report.medium] == ["src/few.ts"]
        assert [f.path for f in report.low] == ["src/one.ts"]
        assert report.medium[0].import_line == "import { Invoice } from './model';"
        assert report.low[0].usage_count == 1
        assert report.low[0].excerpts == [(4, "let only: Invoice;")]
        assert "src/unrelated.ts" not in [f.path for f in report.files]

    def test_ordering_by_usage_then_path(self, make_project):
        root = make_project({
            "b.ts": "Thing();\nThing();\n",
            "a.ts": "Thing();\nThing();\n",
            "c.ts": "Thing();\nThing();\nThing();\n",
        })

        report = RippleQuery(root).run("Thing")

        assert [f.path for f in report.medium] == ["c.ts", "a.ts", "b.ts"]
        assert report.definition is None

    def test_excerpts_capped(self, make_project):
        root = make_project({"a.ts": "".join(f"use(Widget, {i});\n" for i in range(8))})

        impact = RippleQuery(root).run("Widget").high[0]

        assert impact.usage_count == 8
        assert len(impact.excerpts) == 5

    def test_no_references(self, make_project):
        root = make_project({"a.ts": "const x = 1;\n"})

        report = RippleQuery(root).run("Nothing")

        assert report.total_files == 0
        assert report.total_usages == 0

    def test_guidance_by_change_type(self, make_project):
        root = make_project({"a.ts": "export type Shape = {};\n"})

        assert RippleQuery(root).run("Shape", "renamed").guidance == GUIDANCE["renamed"]
        assert RippleQuery(root).run("Shape").guidance == DEFAULT_GUIDANCE
        assert RippleQuery(root).run("Shape", "other").guidance == DEFAULT_GUIDANCE

    def test_invalid_input(self, make_project):
        root = make_project({"a.ts": ""})

        with pytest.raises(ValueError):
            RippleQuery(root).run("   ")
        with pytest.raises(ValueError):
            RippleQuery(root).run("Shape", "exploded")

    def test_uses_supplied_cache(self, make_project):
        root = make_project({"a.ts": "Widget();\n", "b.ts": "other();\n"})
        cache = TTLCache(ttl=60)
        query = RippleQuery(root, cache=cache)

        query.run("Widget")
        query.run("Widget")

        assert len(cache) == 2
        assert cache.hits == 2

    def test_to_dict(self, make_project):
        root = make_project({"a.ts": "export const Widget = 1;\n", "b.ts": "Widget;\n"})

        payload = RippleQuery(root).run("Widget", "type_changed", "now a string").to_dict()

        assert payload["entity"] == "Widget"
        assert payload["changeType"] == "type_changed"
        assert payload["description"] == "now a string"
        assert payload["totalFiles"] == 2
        assert payload["definition"]["file"] == "a.ts"
        assert payload["low"][0]["file"] == "b.ts"
