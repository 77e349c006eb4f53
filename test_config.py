"""
Tests for configuration loading and resolution
"""

import json
from unittest.mock import MagicMock

import pytest

from linewise import (
    PRESETS,
    ConfigResolver,
    find_config_file,
    load_config_file,
    resolve_human_name,
)


def test_config_loading(tmp_path):
    yaml_file = tmp_path / "c.yaml"
    yaml_file.write_text("human_name: Alice\nrename-similarity: 0.8\n", encoding="utf-8")
    assert load_config_file(str(yaml_file)) == {"human_name": "Alice", "rename-similarity": 0.8}

    json_file = tmp_path / "c.json"
    json_file.write_text(json.dumps({"quiet": True}), encoding="utf-8")
    assert load_config_file(str(json_file)) == {"quiet": True}

    empty = tmp_path / "empty.yml"
    empty.write_text("", encoding="utf-8")
    assert load_config_file(str(empty)) == {}

    with pytest.raises(FileNotFoundError):
        load_config_file(str(tmp_path / "missing.yaml"))

    txt = tmp_path / "c.txt"
    txt.write_text("x", encoding="utf-8")
    with pytest.raises(ValueError, match="Unsupported config file format"):
        load_config_file(str(txt))

    not_mapping = tmp_path / "list.yaml"
    not_mapping.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError, match="mapping"):
        load_config_file(str(not_mapping))


def test_find_config_file(tmp_path):
    repo = tmp_path / "repo"
    repo.mkdir()
    assert find_config_file(str(repo)) is None

    (repo / ".linewise.json").write_text("{}", encoding="utf-8")
    (repo / ".linewise.yaml").write_text("{}", encoding="utf-8")
    assert find_config_file(str(repo)) == str(repo / ".linewise.yaml")


class TestConfigResolver:
    def test_precedence(self, tmp_path):
        """CLI beats config file beats preset beats default"""
        config = tmp_path / "c.yaml"
        config.write_text("show-files: false\nquiet: true\nstore_dir: custom\n", encoding="utf-8")

        resolver = ConfigResolver({"quiet": False, "verbose": None}, str(config), "detailed", str(tmp_path))

        assert resolver.get("quiet") is False
        assert resolver.get("show_files") is False
        assert resolver.get("show_checkpoints") is True
        assert resolver.get("store_dir") == "custom"
        assert resolver.get("verbose", "fallback") == "fallback"
        assert resolver.source == str(config)

    def test_preset_from_config_and_override(self, tmp_path):
        (tmp_path / ".linewise.yml").write_text("preset: minimal\n", encoding="utf-8")
        resolver = ConfigResolver({}, None, None, str(tmp_path))
        assert resolver.preset == PRESETS["minimal"]

        resolver.use_preset("detailed")
        assert resolver.get("show_files") is True

    def test_broken_auto_discovered_config_is_a_warning(self, tmp_path):
        (tmp_path / ".linewise.yaml").write_text("key: [unclosed\n", encoding="utf-8")
        resolver = ConfigResolver({}, None, None, str(tmp_path))

        assert resolver.config == {}
        assert len(resolver.warnings) == 1
        assert "failed to load" in resolver.warnings[0]


class TestHumanName:
    def _repo(self, user_name):
        repo = MagicMock()
        repo.config_get.return_value = user_name
        return repo

    def test_override_wins(self, tmp_path):
        resolver = ConfigResolver({"human_name": "From CLI"}, None, None, str(tmp_path))
        assert resolve_human_name(self._repo("Git User"), resolver, "Override") == "Override"
        assert resolve_human_name(self._repo("Git User"), resolver) == "From CLI"

    def test_git_user_name(self, tmp_path):
        resolver = ConfigResolver({}, None, None, str(tmp_path))
        assert resolve_human_name(self._repo("  Git User "), resolver) == "Git User"

    def test_unknown_fallback(self, tmp_path):
        resolver = ConfigResolver({}, None, None, str(tmp_path))
        assert resolve_human_name(self._repo(None), resolver) == "unknown"
        assert resolve_human_name(self._repo(""), resolver) == "unknown"
