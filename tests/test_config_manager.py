"""Tests for settings loading, saving and tsconfig alias handling."""

import logging

import pytest
import toml

from coherence_cli import config
from coherence_cli.config_manager import (
    EngineSettings,
    load_settings,
    read_tsconfig_aliases,
    save_settings,
    write_tsconfig_alias,
)
from coherence_cli.models import ConfigError
from coherence_cli.text_patch import parse_jsonc


class TestLoadSettings:
    """Tests for layered settings."""

    def test_defaults(self, temp_dir):
        settings = load_settings(temp_dir)

        assert settings.aliases == {"@/": "src/", "~/": ""}
        assert settings.api_prefix == "/api/"
        assert ".tsx" in settings.extensions
        assert settings.max_workers is None

    def test_project_file_overrides(self, temp_dir):
        (temp_dir / ".coherence.toml").write_text(
            '[coherence]\n'
            'exclude_dirs = ["generated"]\n'
            'entry_points = ["bin/*"]\n'
            'max_workers = 2\n'
            '[coherence.aliases]\n'
            '"#lib/" = "lib/"\n',
            encoding="utf-8",
        )

        settings = load_settings(temp_dir)

        assert settings.exclude_dirs == ["generated"]
        assert settings.entry_points == ["bin/*"]
        assert settings.max_workers == 2
        assert settings.aliases["#lib/"] == "lib/"
        assert settings.aliases["@/"] == "src/"

    def test_precedence_user_tsconfig_project(self, temp_dir):
        config.USER_CONFIG_FILE.write_text(
            '[coherence]\napi_prefix = "/user/"\nenv_example_file = ".env.user"\n'
            '[coherence.aliases]\n"@/" = "from-user/"\n',
            encoding="utf-8",
        )
        (temp_dir / "tsconfig.json").write_text(
            '{"compilerOptions": {"paths": {"@/*": ["./app/*"]}}}', encoding="utf-8"
        )
        (temp_dir / ".coherence.toml").write_text('[coherence]\napi_prefix = "/rest/"\n', encoding="utf-8")

        settings = load_settings(temp_dir)

        assert settings.api_prefix == "/rest/"
        assert settings.env_example_file == ".env.user"
        assert settings.aliases["@/"] == "app/"

    def test_unknown_key_warns(self, temp_dir, caplog):
        (temp_dir / ".coherence.toml").write_text('[coherence]\nmystery = 1\n', encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            load_settings(temp_dir)

        assert "mystery" in caplog.text

    def test_invalid_toml(self, temp_dir):
        (temp_dir / ".coherence.toml").write_text("[coherence\n", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_settings(temp_dir)

    @pytest.mark.parametrize(
        "line",
        [
            "include_dirs = \"src\"",
            "include_dependency_dirs = \"yes\"",
            "max_workers = 0",
            "api_prefix = 5",
        ],
    )
    def test_wrong_types(self, temp_dir, line):
        (temp_dir / ".coherence.toml").write_text(f"[coherence]\n{line}\n", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_settings(temp_dir)


class TestTsconfigAliases:
    """Tests for reading and writing compilerOptions.paths."""

    def test_read_with_base_url_and_comments(self, temp_dir):
        (temp_dir / "tsconfig.json").write_text(
            '{\n'
            '  // aliases\n'
            '  "compilerOptions": {\n'
            '    "baseUrl": "./src",\n'
            '    "paths": {\n'
            '      "@components/*": ["components/*"],\n'
            '      "~/*": ["./*"],\n'
            '      "config": ["config/index.ts"],\n'
            '    },\n'
            '  },\n'
            '}\n',
            encoding="utf-8",
        )

        aliases = read_tsconfig_aliases(temp_dir)

        assert aliases == {
            "@components/": "src/components/",
            "~/": "src/",
            "config": "src/config/index.ts",
        }

    def test_jsconfig_fallback(self, temp_dir):
        (temp_dir / "jsconfig.json").write_text(
            '{"compilerOptions": {"paths": {"@/*": ["./*"]}}}', encoding="utf-8"
        )

        assert read_tsconfig_aliases(temp_dir) == {"@/": ""}

    def test_broken_tsconfig_is_ignored(self, temp_dir, caplog):
        (temp_dir / "tsconfig.json").write_text('{"compilerOptions": ', encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            assert read_tsconfig_aliases(temp_dir) == {}
        assert "tsconfig.json" in caplog.text

    def test_write_alias_preserves_comments(self, temp_dir):
        tsconfig = temp_dir / "tsconfig.json"
        tsconfig.write_text(
            '{\n'
            '  // keep me\n'
            '  "compilerOptions": {\n'
            '    "strict": true\n'
            '  }\n'
            '}\n',
            encoding="utf-8",
        )

        written = write_tsconfig_alias(temp_dir, "@lib/", "src/lib")

        text = written.read_text(encoding="utf-8")
        assert "// keep me" in text
        assert parse_jsonc(text)["compilerOptions"]["paths"] == {"@lib/*": ["./src/lib/*"]}
        assert read_tsconfig_aliases(temp_dir)["@lib/"] == "src/lib/"

    def test_write_alias_creates_tsconfig(self, temp_dir):
        written = write_tsconfig_alias(temp_dir, "~/", "")

        assert written.name == "tsconfig.json"
        assert parse_jsonc(written.read_text(encoding="utf-8")) == {
            "compilerOptions": {"paths": {"~/*": ["./*"]}}
        }

    def test_write_alias_requires_trailing_slash(self, temp_dir):
        with pytest.raises(ConfigError):
            write_tsconfig_alias(temp_dir, "@lib", "src/lib")

    def test_write_alias_rejects_broken_file(self, temp_dir):
        (temp_dir / "tsconfig.json").write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(ConfigError):
            write_tsconfig_alias(temp_dir, "@/", "src")


class TestSaveSettings:
    """Tests for writing settings back to TOML."""

    def test_round_trip_keeps_other_tables(self, temp_dir):
        target = temp_dir / ".coherence.toml"
        target.write_text('[other]\nkeep = true\n', encoding="utf-8")
        settings = EngineSettings(exclude_dirs=["gen"], max_workers=4)

        save_settings(settings, target)

        document = toml.load(str(target))
        assert document["other"] == {"keep": True}
        assert document["coherence"]["exclude_dirs"] == ["gen"]
        assert load_settings(temp_dir).max_workers == 4

    def test_none_values_omitted(self, temp_dir):
        target = temp_dir / "nested" / "config.toml"

        save_settings(EngineSettings(), target)

        assert "max_workers" not in toml.load(str(target))["coherence"]
