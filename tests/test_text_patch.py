"""Tests for comment-preserving JSON edits."""

import json

import pytest

from coherence_cli.text_patch import PatchError, find_value, parse_jsonc, set_value, tokenize

TSCONFIG = """{
  // compiler settings
  "compilerOptions": {
    "strict": true, /* keep */
    "paths": {
      "@/*": ["./src/*"],
    },
  },
  "include": ["src"]
}
"""


class TestParseJsonc:
    """Tests for lenient JSON parsing."""

    def test_comments_and_trailing_commas(self):
        data = parse_jsonc(TSCONFIG)

        assert data["compilerOptions"]["strict"] is True
        assert data["compilerOptions"]["paths"] == {"@/*": ["./src/*"]}
        assert data["include"] == ["src"]

    def test_comment_markers_inside_strings(self):
        data = parse_jsonc('{"url": "http://x/*y*/", "n": 1}')

        assert data == {"url": "http://x/*y*/", "n": 1}

    def test_invalid_documents(self):
        with pytest.raises(PatchError):
            parse_jsonc("{ \"a\": }")
        with pytest.raises(PatchError):
            parse_jsonc("   // only a comment\n")
        with pytest.raises(PatchError):
            parse_jsonc('{"a": "unterminated}')

    def test_tokenize_keeps_comments_on_request(self):
        kinds = [t.kind for t in tokenize("{ // c\n}", keep_comments=True)]

        assert kinds == ["punct", "comment", "punct"]


class TestSetValue:
    """Tests for span-preserving edits."""

    def test_replace_existing_value(self):
        updated = set_value(TSCONFIG, ("compilerOptions", "strict"), False)

        assert '"strict": false, /* keep */' in updated
        assert "// compiler settings" in updated
        assert updated.replace("false", "true") == TSCONFIG

    def test_insert_after_trailing_comma(self):
        updated = set_value(TSCONFIG, ("compilerOptions", "paths", "~/*"), ["./*"])

        assert parse_jsonc(updated)["compilerOptions"]["paths"] == {"@/*": ["./src/*"], "~/*": ["./*"]}
        assert '      "@/*": ["./src/*"],\n      "~/*": ["./*"],\n' in updated
        assert "/* keep */" in updated

    def test_insert_without_trailing_comma(self):
        text = '{\n  "a": 1\n}\n'

        updated = set_value(text, ("b",), 2)

        assert updated == '{\n  "a": 1,\n  "b": 2\n}\n'

    def test_insert_into_empty_object(self):
        assert set_value("{}\n", ("a",), 1) == '{\n  "a": 1\n}\n'

    def test_creates_missing_parents(self):
        text = '{\n  "name": "app"\n}\n'

        updated = set_value(text, ("compilerOptions", "paths", "@/*"), ["./src/*"])

        assert json.loads(updated) == {
            "name": "app",
            "compilerOptions": {"paths": {"@/*": ["./src/*"]}},
        }
        assert updated.startswith('{\n  "name": "app",\n  "compilerOptions": {\n    "paths": {\n')

    def test_non_object_parent(self):
        with pytest.raises(PatchError):
            set_value(TSCONFIG, ("include", "x"), 1)

    def test_non_object_root(self):
        with pytest.raises(PatchError):
            set_value("[1, 2]", ("a",), 1)

    def test_empty_path(self):
        with pytest.raises(PatchError):
            set_value("{}", (), 1)


class TestFindValue:
    """Tests for value span lookup."""

    def test_span_of_nested_value(self):
        span = find_value(TSCONFIG, ("compilerOptions", "paths", "@/*"))

        assert span is not None
        assert TSCONFIG[span[0]:span[1]] == '["./src/*"]'

    def test_missing_key(self):
        assert find_value(TSCONFIG, ("compilerOptions", "baseUrl")) is None
