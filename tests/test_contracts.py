"""Tests for environment, API route and schema contract checks."""

from pathlib import Path

from coherence_cli.contracts import (
    check_api_contracts,
    check_env,
    check_schema,
    collect_endpoints,
    collect_env_reads,
    collect_outbound_calls,
    collect_schema,
    read_env_declarations,
)
from coherence_cli.engine import CoherenceEngine
from coherence_cli.models import IssueKind, Severity, SourceFile


def _source(path: str, text: str) -> SourceFile:
    return SourceFile(path=path, abs_path=Path("/virtual") / path, text=text)


class TestEnvContracts:
    """Tests for environment variable checks."""

    def test_collects_every_read_form(self):
        source = _source("src/env.ts", (
            "const a = process.env.ALPHA;\n"
            "const b = process.env['BETA'];\n"
            "const c = import.meta.env.VITE_GAMMA;\n"
            "const mode = import.meta.env.MODE;\n"
            "const { DELTA, EPSILON: eps } = process.env;\n"
            "// process.env.COMMENTED\n"
        ))

        reads = collect_env_reads([source])

        assert set(reads) == {"ALPHA", "BETA", "VITE_GAMMA", "DELTA", "EPSILON"}
        assert reads["BETA"] == [("src/env.ts", 2)]
        assert reads["DELTA"] == [("src/env.ts", 5)]

    def test_reads_declarations_from_env_files(self, temp_dir):
        (temp_dir / ".env").write_text("# comment\nexport ALPHA=1\nBETA = two\n", encoding="utf-8")
        (temp_dir / ".env.example").write_text("ALPHA=\nGAMMA=\n", encoding="utf-8")

        declared = read_env_declarations(temp_dir)

        assert declared["ALPHA"] == (".env", 2)
        assert declared["BETA"] == (".env", 3)
        assert declared["GAMMA"] == (".env.example", 2)

    def test_undeclared_and_unused(self, temp_dir):
        (temp_dir / ".env.example").write_text("DATABASE_URL=\nSTALE=\nNEXT_PUBLIC_X=\n", encoding="utf-8")
        sources = [
            _source("src/db.ts", "connect(process.env.DATABASE_URL, process.env.API_KEY);\n"),
            _source("src/app.ts", "const env = process.env.NODE_ENV;\nconst k = process.env.API_KEY;\n"),
        ]

        issues = check_env(sources, temp_dir)
        by_kind = {i.kind: i for i in issues}

        assert len(issues) == 2
        undeclared = by_kind[IssueKind.ENV_UNDECLARED]
        assert undeclared.symbol == "API_KEY"
        assert undeclared.file == ".env.example"
        assert undeclared.auto_fixable
        assert undeclared.severity == Severity.WARNING
        assert "src/app.ts:2" in undeclared.message

        unused = by_kind[IssueKind.ENV_UNUSED]
        assert (unused.symbol, unused.file, unused.line) == ("STALE", ".env.example", 2)
        assert unused.severity == Severity.INFO

    def test_custom_ignore_list(self, temp_dir):
        sources = [_source("src/a.ts", "process.env.INTERNAL_TOKEN;\n")]

        assert check_env(sources, temp_dir, ignore=[], ignore_prefixes=["INTERNAL_"]) == []


class TestApiContracts:
    """Tests for route declarations and outbound request matching."""

    ROUTES = [
        _source("src/app/api/users/route.ts", "export async function GET() {}\nexport async function POST() {}\n"),
        _source("src/app/api/users/[id]/route.ts", "async function handler() {}\nexport { handler as GET, handler as PUT };\n"),
        _source("src/app/(admin)/api/reports/route.ts", "export const GET = () => null;\n"),
        _source("pages/api/legacy/index.ts", "export default function handler() {}\n"),
        _source("pages/api/files/[...path].ts", "export default function handler() {}\n"),
    ]

    def test_collect_endpoints(self):
        endpoints = {e.path: e for e in collect_endpoints(self.ROUTES)}

        assert set(endpoints) == {
            "/api/users", "/api/users/[id]", "/api/reports", "/api/legacy", "/api/files/[...path]",
        }
        assert endpoints["/api/users"].methods == frozenset({"GET", "POST"})
        assert endpoints["/api/users/[id]"].methods == frozenset({"GET", "PUT"})
        assert endpoints["/api/legacy"].methods is None

    def test_express_routes(self):
        server = _source("server/index.js", (
            "app.get('/api/health', ok);\n"
            "router.post('/api/items/:id', save);\n"
            "app.all('/api/any', any);\n"
        ))

        endpoints = {e.path: e.methods for e in collect_endpoints([server])}

        assert endpoints == {
            "/api/health": frozenset({"GET"}),
            "/api/items/:id": frozenset({"POST"}),
            "/api/any": None,
        }

    def test_outbound_calls(self):
        client = _source("src/client.ts", (
            "fetch('/api/users');\n"
            "fetch(`/api/users/${id}`, { method: 'PUT' });\n"
            "fetch('/api/users', { method: verb });\n"
            "axios.post('/api/users', body);\n"
            "fetch('https://example.com/api/users');\n"
        ))

        calls = [(c.url, c.line, c.method) for c in collect_outbound_calls([client])]

        assert calls == [
            ("/api/users", 1, "GET"),
            ("/api/users/${id}", 2, "PUT"),
            ("/api/users", 3, None),
            ("/api/users", 4, "POST"),
        ]

    def test_matching_calls_produce_no_issues(self):
        client = _source("src/client.ts", (
            "fetch('/api/users');\n"
            "fetch(`/api/users/${id}`, { method: 'PUT' });\n"
            "fetch('/api/reports?range=week');\n"
            "fetch('/api/legacy', { method: 'DELETE' });\n"
            "fetch('/api/files/a/b/c.txt');\n"
        ))

        assert check_api_contracts(self.ROUTES + [client]) == []

    def test_unknown_path(self):
        client = _source("src/client.ts", "\nfetch('/api/orders');\n")

        issues = check_api_contracts(self.ROUTES + [client])

        assert len(issues) == 1
        assert issues[0].kind == IssueKind.API_CONTRACT_MISMATCH
        assert (issues[0].file, issues[0].line, issues[0].symbol) == ("src/client.ts", 2, "/api/orders")

    def test_method_mismatch(self):
        client = _source("src/client.ts", "fetch('/api/users', { method: 'DELETE' });\n")

        issues = check_api_contracts(self.ROUTES + [client])

        assert [i.kind for i in issues] == [IssueKind.API_METHOD_MISMATCH]
        assert "GET, POST" in issues[0].message

    def test_fully_dynamic_paths_skipped(self):
        client = _source("src/client.ts", "fetch(`/api/${resource}`);\n")

        assert check_api_contracts(self.ROUTES + [client]) == []

    def test_no_endpoints_means_no_check(self):
        client = _source("src/client.ts", "fetch('/api/anything');\n")

        assert check_api_contracts([client]) == []


class TestSchemaContracts:
    """Tests for table and model reference checks."""

    def test_collect_schema_sources(self):
        catalog = collect_schema([
            _source("db/schema.prisma", "model UserProfile {\n  id Int @id\n  @@map(\"profiles\")\n}\nmodel Post {\n  id Int @id\n}\n"),
            _source("db/init.sql", "CREATE TABLE IF NOT EXISTS public.\"Audit_Log\" (id int);\n"),
            _source("src/schema.ts", "export const orders = pgTable('orders', {});\n"),
            _source("src/types.ts", "export interface Database { public: { Tables: {\n  invoices: { Row: {} }\n} } }\n"),
        ])

        assert catalog.models == {"userProfile", "post"}
        assert catalog.tables == {"profiles", "post", "audit_log", "orders", "invoices"}
        assert catalog.table_vars == {"orders"}

    def test_unknown_table_literal(self):
        sources = [
            _source("src/schema.ts", "export const users = pgTable('users', {});\n"),
            _source("src/api.ts", (
                "supabase.from('users').select();\n"
                "supabase\n  .from('userz').select();\n"
                "Array.from('abc');\n"
                "knex('accounts').where({});\n"
            )),
        ]

        issues = check_schema(sources)

        assert [(i.symbol, i.line) for i in issues] == [("userz", 3), ("accounts", 5)]
        assert all(i.kind == IssueKind.SCHEMA_MISMATCH and i.severity == Severity.ERROR for i in issues)

    def test_prisma_model_references(self):
        schema = _source("prisma/schema.prisma", "model User {\n  id Int @id\n}\n")
        code = _source("src/users.ts", "prisma.user.findMany();\nprisma.account.create({});\n")

        issues = check_schema([code], [schema])

        assert [i.symbol for i in issues] == ["account"]

    def test_drizzle_identifiers_only_when_imported(self, make_project):
        root = make_project({
            "src/schema.ts": "export const users = pgTable('users', {});\nexport const posts = 1;\n",
            "src/write.ts": (
                "import { users, posts } from './schema';\n"
                "db.insert(users).values({});\n"
                "db.insert(posts).values({});\n"
                "db.delete(localThing);\n"
            ),
        })
        engine = CoherenceEngine(root)
        graph = engine.build_graph()
        sources = [
            SourceFile(rel, root / rel, (root / rel).read_text(encoding="utf-8"))
            for rel in ("src/schema.ts", "src/write.ts")
        ]

        issues = check_schema(sources, graph=graph)

        assert [(i.symbol, i.line) for i in issues] == [("posts", 3)]

    def test_no_schema_means_no_check(self):
        code = _source("src/api.ts", "supabase.from('anything');\nprisma.thing.findMany();\n")

        assert check_schema([code]) == []
