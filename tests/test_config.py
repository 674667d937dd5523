"""Tests for hooks config loading and resolution."""

import json

import pytest

from policy_guard import config, rules
from policy_guard.errors import ConfigError


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    monkeypatch.setenv("POLICY_GUARD_CONFIG", str(path))
    return path


class TestConfigPath:
    def test_explicit_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("POLICY_GUARD_CONFIG", str(tmp_path / "c.json"))
        assert config.config_path() == tmp_path / "c.json"

    def test_xdg_config_home(self, monkeypatch, tmp_path):
        monkeypatch.delenv("POLICY_GUARD_CONFIG", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert config.config_path() == tmp_path / "policy-guard" / "config.json"


class TestResolveHooks:
    def test_missing_is_recommended(self):
        hooks = config.resolve_hooks(None)
        assert all(hooks[rule.flag] == rule.recommended for rule in rules.RULES)
        assert hooks["logReadOnlyToolUse"] is False

    def test_true_enables_everything(self):
        hooks = config.resolve_hooks(True)
        assert all(hooks[key] for key in rules.config_keys())

    def test_object_lists_enabled_flags(self):
        hooks = config.resolve_hooks({"banGitC": True, "banLsCommand": False})
        assert hooks["banGitC"] is True
        assert hooks["banLsCommand"] is False
        assert hooks["banCommandChaining"] is False

    def test_empty_object_disables_everything(self):
        assert not any(config.resolve_hooks({}).values())

    def test_unknown_key_is_ignored(self):
        hooks = config.resolve_hooks({"banEverything": True, "banGitC": True})
        assert "banEverything" not in hooks
        assert hooks["banGitC"] is True

    def test_result_is_read_only(self):
        hooks = config.resolve_hooks(True)
        with pytest.raises(TypeError):
            hooks["banGitC"] = False

    @pytest.mark.parametrize(
        "value",
        [{"banGitC": "yes"}, {"banGitC": 1}, ["banGitC"], "all"],
        ids=["string-value", "int-value", "list", "string"],
    )
    def test_wrong_shape(self, value):
        with pytest.raises(ConfigError):
            config.resolve_hooks(value)


class TestLoadHooksConfig:
    def test_missing_file(self, config_file):
        hooks = config.load_hooks_config()
        assert hooks["banGitC"] is True

    def test_file_without_hooks(self, config_file):
        config_file.write_text(json.dumps({"theme": "dark"}))
        assert config.load_hooks_config()["banCommandChaining"] is True

    def test_file_with_hooks(self, config_file):
        config_file.write_text(json.dumps({"hooks": {"banCommandChaining": True}}))
        hooks = config.load_hooks_config()
        assert hooks["banCommandChaining"] is True
        assert hooks["banGitC"] is False

    @pytest.mark.parametrize(
        "content",
        ["{not json", "[]", json.dumps({"hooks": 3})],
        ids=["bad-json", "array", "hooks-number"],
    )
    def test_invalid_file(self, config_file, content):
        config_file.write_text(content)
        with pytest.raises(ConfigError):
            config.load_hooks_config()


class TestValidateConfig:
    def test_valid(self, config_file):
        config_file.write_text(json.dumps({"hooks": {"banGitC": True}}))
        assert config.validate_config() == []

    def test_missing_file_is_valid(self, config_file):
        assert config.validate_config() == []

    def test_reports_every_issue(self, config_file):
        config_file.write_text(json.dumps({"hooks": {"banGitC": "on", "banTypo": True}}))
        issues = config.validate_config()
        assert len(issues) == 2
        assert any("banGitC" in issue and "boolean" in issue for issue in issues)
        assert any("banTypo" in issue for issue in issues)
