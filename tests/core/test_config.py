"""Tests for config loading, merging, and logging."""

import json
from pathlib import Path

import pytest

from leash.core import config as config_module
from leash.core.config import (
    SCOPE_ENV,
    SCOPE_PROJECT,
    SCOPE_USER,
    Config,
    ProtectRule,
    _extract_message,
    _find_project_config,
    _merge_configs,
    _tag_rules,
    configure_logging,
    load_config,
    log_decision,
    parse_config,
)


@pytest.fixture
def no_user_config(tmp_path, monkeypatch):
    """Point the user config somewhere empty and clear the env override."""
    monkeypatch.setattr("leash.core.config.USER_CONFIG", tmp_path / "nonexistent")
    monkeypatch.delenv("LEASH_CONFIG", raising=False)


class TestFindProjectConfig:
    """Test walking up to find .leash."""

    def test_finds_in_cwd(self, tmp_path):
        (tmp_path / ".leash").write_text("protect secrets/")
        assert _find_project_config(tmp_path) == tmp_path / ".leash"

    def test_finds_in_parent(self, tmp_path):
        (tmp_path / ".leash").write_text("protect secrets/")
        child = tmp_path / "src" / "deep"
        child.mkdir(parents=True)
        assert _find_project_config(child) == tmp_path / ".leash"

    def test_stops_at_first(self, tmp_path):
        (tmp_path / ".leash").write_text("root")
        child = tmp_path / "project"
        child.mkdir()
        (child / ".leash").write_text("project")
        assert _find_project_config(child) == child / ".leash"

    def test_ignores_directory(self, tmp_path):
        (tmp_path / ".leash").mkdir()
        child = tmp_path / "a"
        child.mkdir()
        found = _find_project_config(child)
        assert found is None or found != tmp_path / ".leash"


class TestMergeConfigs:
    """Test config merging."""

    def test_lists_accumulate(self):
        base = Config(platform_paths=[".a"], temp_paths=["/t1"], protect_rules=[ProtectRule("x", "x")])
        overlay = Config(platform_paths=[".b"], temp_paths=["/t2"], protect_rules=[ProtectRule("y", "y")])
        merged = _merge_configs(base, overlay)
        assert merged.platform_paths == [".a", ".b"]
        assert merged.temp_paths == ["/t1", "/t2"]
        assert [r.pattern for r in merged.protect_rules] == ["x", "y"]

    def test_log_path_override(self):
        merged = _merge_configs(Config(log=Path("/a.log")), Config(log=Path("/b.log")))
        assert merged.log == Path("/b.log")

    def test_log_path_kept_when_overlay_unset(self):
        merged = _merge_configs(Config(log=Path("/a.log")), Config())
        assert merged.log == Path("/a.log")

    def test_log_full_sticks(self):
        assert _merge_configs(Config(log_full=True), Config()).log_full

    def test_does_not_mutate_inputs(self):
        base = Config(platform_paths=[".a"])
        _merge_configs(base, Config(platform_paths=[".b"]))
        assert base.platform_paths == [".a"]


class TestTagRules:
    def test_tags_source_and_scope(self):
        config = Config(protect_rules=[ProtectRule("x", "x"), ProtectRule("y", "y")])
        tagged = _tag_rules(config, "/home/u/.leash/config", SCOPE_USER)
        assert all(r.source == "/home/u/.leash/config" for r in tagged.protect_rules)
        assert all(r.scope == SCOPE_USER for r in tagged.protect_rules)
        assert config.protect_rules[0].source is None


class TestLoadConfig:
    """Test full config loading from files."""

    def test_no_config(self, tmp_path, no_user_config):
        config = load_config(tmp_path)
        assert config == Config()

    def test_loads_user_config(self, tmp_path, monkeypatch):
        user_cfg = tmp_path / "user" / "config"
        user_cfg.parent.mkdir()
        user_cfg.write_text("temp-path /scratch\nplatform-path .agent\n")
        monkeypatch.setattr("leash.core.config.USER_CONFIG", user_cfg)
        monkeypatch.delenv("LEASH_CONFIG", raising=False)

        config = load_config(tmp_path)
        assert config.temp_paths == ["/scratch"]
        assert config.platform_paths == [".agent"]

    def test_loads_project_config(self, tmp_path, no_user_config):
        proj = tmp_path / "project"
        proj.mkdir()
        (proj / ".leash").write_text('protect (^|/)secrets/ "secrets"')

        config = load_config(proj)
        assert len(config.protect_rules) == 1
        rule = config.protect_rules[0]
        assert rule.name == "secrets"
        assert rule.scope == SCOPE_PROJECT
        assert rule.source == str(proj / ".leash")

    def test_loads_env_config(self, tmp_path, no_user_config, monkeypatch):
        env_cfg = tmp_path / "env.cfg"
        env_cfg.write_text("protect \\.pem$")
        monkeypatch.setenv("LEASH_CONFIG", str(env_cfg))

        config = load_config(tmp_path)
        assert config.protect_rules[0].pattern == "\\.pem$"
        assert config.protect_rules[0].scope == SCOPE_ENV

    def test_missing_env_file_ignored(self, tmp_path, no_user_config, monkeypatch):
        monkeypatch.setenv("LEASH_CONFIG", str(tmp_path / "missing.cfg"))
        assert load_config(tmp_path) == Config()

    def test_scopes_accumulate_in_order(self, tmp_path, monkeypatch):
        user_cfg = tmp_path / "user.cfg"
        user_cfg.write_text("protect user-rule")
        monkeypatch.setattr("leash.core.config.USER_CONFIG", user_cfg)
        proj = tmp_path / "project"
        proj.mkdir()
        (proj / ".leash").write_text("protect project-rule")
        env_cfg = tmp_path / "env.cfg"
        env_cfg.write_text("protect env-rule")
        monkeypatch.setenv("LEASH_CONFIG", str(env_cfg))

        config = load_config(proj)
        assert [r.pattern for r in config.protect_rules] == ["user-rule", "project-rule", "env-rule"]
        assert [r.scope for r in config.protect_rules] == [SCOPE_USER, SCOPE_PROJECT, SCOPE_ENV]

    def test_project_cannot_relax_zones(self, tmp_path, no_user_config):
        proj = tmp_path / "project"
        proj.mkdir()
        (proj / ".leash").write_text("# widen\ntemp-path /home\n")

        with pytest.raises(ValueError, match="line 2: 'temp-path' is not allowed in a project config"):
            load_config(proj)

    def test_syntax_error_propagates(self, tmp_path, no_user_config):
        proj = tmp_path / "project"
        proj.mkdir()
        (proj / ".leash").write_text("frobnicate everything")

        with pytest.raises(ValueError, match="unknown directive"):
            load_config(proj)


class TestParseConfig:
    """Test config text parsing."""

    def test_empty(self):
        assert parse_config("") == Config()

    def test_comments_and_blank_lines(self):
        assert parse_config("# comment\n\n   \n# another") == Config()

    def test_platform_path(self):
        assert parse_config("platform-path .agent/").platform_paths == [".agent"]

    def test_platform_path_must_be_relative(self):
        with pytest.raises(ValueError, match="line 1: platform-path is relative"):
            parse_config("platform-path /etc")
        with pytest.raises(ValueError, match="relative to the home directory"):
            parse_config("platform-path ~/.agent")

    def test_temp_path(self):
        assert parse_config("temp-path /scratch/").temp_paths == ["/scratch"]

    def test_temp_path_must_be_absolute(self):
        with pytest.raises(ValueError, match="must be absolute"):
            parse_config("temp-path scratch")

    def test_temp_path_cannot_be_root(self):
        with pytest.raises(ValueError, match="cannot be /"):
            parse_config("temp-path /")

    def test_directive_requires_argument(self):
        with pytest.raises(ValueError, match="requires a directory"):
            parse_config("temp-path")
        with pytest.raises(ValueError, match="requires a pattern"):
            parse_config("protect")

    def test_protect_with_name(self):
        config = parse_config('protect (^|/)id_rsa$ "SSH keys"')
        assert config.protect_rules == [ProtectRule("(^|/)id_rsa$", "SSH keys")]

    def test_protect_name_defaults_to_pattern(self):
        config = parse_config("protect \\.pem$")
        assert config.protect_rules[0].name == "\\.pem$"

    def test_protect_invalid_regex(self):
        with pytest.raises(ValueError, match="line 1: invalid pattern"):
            parse_config("protect (unclosed")

    def test_directive_case_insensitive(self):
        assert parse_config("TEMP-PATH /scratch").temp_paths == ["/scratch"]

    def test_relaxing_allowed_in_user_and_env(self):
        assert parse_config("temp-path /scratch", scope=SCOPE_USER).temp_paths == ["/scratch"]
        assert parse_config("platform-path .x", scope=SCOPE_ENV).platform_paths == [".x"]

    def test_relaxing_refused_in_project(self):
        with pytest.raises(ValueError, match="not allowed in a project config"):
            parse_config("platform-path .agent", scope=SCOPE_PROJECT)

    def test_protect_allowed_in_project(self):
        config = parse_config("protect secrets/", scope=SCOPE_PROJECT)
        assert len(config.protect_rules) == 1

    def test_set_log(self):
        config = parse_config("set log ~/leash.log")
        assert config.log == Path("~/leash.log").expanduser()

    def test_set_log_requires_path(self):
        with pytest.raises(ValueError, match="'log' requires a path"):
            parse_config("set log")

    def test_set_log_full(self):
        assert parse_config("set log-full").log_full
        assert parse_config("set log_full").log_full

    def test_set_log_full_takes_no_value(self):
        with pytest.raises(ValueError, match="takes no value"):
            parse_config("set log-full yes")

    def test_unknown_setting(self):
        with pytest.raises(ValueError, match="unknown setting 'color'"):
            parse_config("set color")

    def test_set_requires_name(self):
        with pytest.raises(ValueError, match="requires a setting name"):
            parse_config("set")

    def test_error_line_number(self):
        with pytest.raises(ValueError, match="line 3:"):
            parse_config("# ok\ntemp-path /scratch\nbogus")


class TestExtractMessage:
    """Test splitting a protect pattern from its display name."""

    def test_no_message(self):
        assert _extract_message("secrets/") == ("secrets/", None)

    def test_message(self):
        assert _extract_message('secrets/ "Secrets dir"') == ("secrets/", "Secrets dir")

    def test_escaped_quote_in_message(self):
        assert _extract_message('x "say \\"no\\""') == ("x", 'say "no"')

    def test_escaped_trailing_quote(self):
        assert _extract_message('x\\"') == ('x\\"', None)

    def test_quote_must_follow_whitespace(self):
        assert _extract_message('a"b"') == ('a"b"', None)

    def test_message_without_pattern(self):
        with pytest.raises(ValueError, match="pattern required"):
            _extract_message('"only a name"')


class TestLogging:
    """Test structured decision logging."""

    def test_no_logging_when_disabled(self, tmp_path):
        configure_logging(Config(log=None))
        log_decision("command", "ls", blocked=False)
        assert not list(tmp_path.glob("*.log"))

    def test_logs_to_file(self, tmp_path):
        log_path = tmp_path / "audit.log"
        configure_logging(Config(log=log_path))

        log_decision("command", "rm -rf ~/x", True, 'Command "rm" targets path outside working directory: /x')

        line = json.loads(log_path.read_text().strip())
        assert line["event"] == "command"
        assert line["decision"] == "block"
        assert line["reason"].startswith('Command "rm"')
        assert "ts" in line

    def test_allowed_has_no_reason(self, tmp_path):
        log_path = tmp_path / "audit.log"
        configure_logging(Config(log=log_path))

        log_decision("path", "src/main.py", False)

        line = json.loads(log_path.read_text().strip())
        assert line["decision"] == "allow"
        assert "reason" not in line

    def test_log_full_includes_subject(self, tmp_path):
        log_path = tmp_path / "audit.log"
        configure_logging(Config(log=log_path, log_full=True))

        log_decision("command", "git status --porcelain", False)

        line = json.loads(log_path.read_text().strip())
        assert line["command"] == "git status --porcelain"

    def test_log_without_full_excludes_subject(self, tmp_path):
        log_path = tmp_path / "audit.log"
        configure_logging(Config(log=log_path, log_full=False))

        log_decision("path", "/etc/passwd", True, "blocked")

        line = json.loads(log_path.read_text().strip())
        assert "path" not in line
        assert "_log_full" not in line

    def test_creates_log_directory(self, tmp_path):
        log_path = tmp_path / "nested" / "dir" / "audit.log"
        configure_logging(Config(log=log_path))

        log_decision("command", "ls", False)

        assert log_path.exists()

    def test_appends_to_log(self, tmp_path):
        log_path = tmp_path / "audit.log"
        configure_logging(Config(log=log_path))

        log_decision("command", "ls", False)
        log_decision("command", "rm -rf /", True, "blocked")

        lines = log_path.read_text().strip().split("\n")
        assert [json.loads(line)["decision"] for line in lines] == ["allow", "block"]

    def test_reconfigure_closes_previous_file(self, tmp_path):
        configure_logging(Config(log=tmp_path / "first.log"))
        first = config_module._log_file

        configure_logging(Config(log=tmp_path / "second.log"))
        second = config_module._log_file
        assert first.closed
        assert not second.closed

        configure_logging(Config())
        assert second.closed
        assert config_module._log_file is None

    def test_reconfigure_logs_to_new_file(self, tmp_path):
        configure_logging(Config(log=tmp_path / "first.log"))
        configure_logging(Config(log=tmp_path / "second.log"))

        log_decision("command", "ls", False)

        assert (tmp_path / "first.log").read_text() == ""
        assert json.loads((tmp_path / "second.log").read_text())["decision"] == "allow"
