"""Tests for configuration loading."""

import textwrap
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from autoheal.config import ConfigError, ConfigWatcher, expand_env_vars, load_config, merge_config_data
from autoheal.models import BatchJobAction, JobAction, parse_duration


def write(path: Path, text: str) -> Path:
    path.write_text(textwrap.dedent(text))
    return path


def reloaded_with(listener: MagicMock, rule_name: str) -> bool:
    """Whether the listener got a configuration containing the rule."""
    return any(
        rule_name in [r.name for r in call.args[0].rules]
        for call in listener.call_args_list
    )


class TestParseDuration:
    """Tests for duration strings."""

    @pytest.mark.parametrize("text,seconds", [
        ("30s", 30),
        ("5m", 300),
        ("1h", 3600),
        ("1h30m", 5400),
        ("500ms", 0.5),
        ("0", 0),
        ("45", 45),
    ])
    def test_valid(self, text, seconds):
        assert parse_duration(text) == pytest.approx(seconds)

    def test_numbers_are_seconds(self):
        assert parse_duration(10) == 10.0

    @pytest.mark.parametrize("text", ["", "abc", "5x", "1h 30m", "-5s"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)


class TestLoadConfig:
    """Tests for loading and merging configuration files."""

    def test_defaults(self):
        config = load_config([])
        assert config.throttling.interval == 3600
        assert config.awx.job_status_check_interval == 300
        assert config.server.port == 9099
        assert config.rules == []

    def test_full_file(self, tmp_path):
        path = write(tmp_path / "autoheal.yml", """
            awx:
              address: https://awx.example.com/api
              project: Autoheal
              jobStatusCheckInterval: 1m
              credentials:
                username: admin
                password: secret
            throttling:
              interval: 30m
            rules:
            - metadata:
                name: start-node
              labels:
                alertname: "NodeDown"
              awxJob:
                template: "Start node"
                extraVars: |-
                  {"node": "{{ labels.instance }}"}
            - metadata:
                name: cleanup
              batchJob:
                metadata:
                  name: cleanup
                spec:
                  template:
                    spec:
                      restartPolicy: Never
        """)

        config = load_config([path])

        assert config.awx.address == "https://awx.example.com/api"
        assert config.awx.project == "Autoheal"
        assert config.awx.job_status_check_interval == 60
        assert config.awx.credentials.username == "admin"
        assert config.throttling.interval == 1800
        assert [r.name for r in config.rules] == ["start-node", "cleanup"]
        assert isinstance(config.rules[0].action, JobAction)
        assert config.rules[0].awx_job.extra_vars == {"node": "{{ labels.instance }}"}
        assert isinstance(config.rules[1].action, BatchJobAction)

    def test_directory_merge(self, tmp_path):
        """Files load alphabetically, later sections win and rules accumulate."""
        write(tmp_path / "b.yaml", """
            throttling:
              interval: 10m
            rules:
            - name: second
        """)
        write(tmp_path / "a.yml", """
            throttling:
              interval: 1h
            rules:
            - name: first
        """)
        write(tmp_path / "notes.txt", "not: loaded")

        config = load_config([tmp_path])

        assert config.throttling.interval == 600
        assert [r.name for r in config.rules] == ["first", "second"]

    def test_credentials_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AWX_PASSWORD", "from-env")
        creds = write(tmp_path / "creds.yml", """
            username: autoheal
            password: ${env:AWX_PASSWORD}
        """)
        path = write(tmp_path / "autoheal.yml", f"""
            awx:
              address: https://awx.example.com
              credentialsFile: {creds}
        """)

        config = load_config([path])

        assert config.awx.credentials.username == "autoheal"
        assert config.awx.credentials.password == "from-env"

    def test_missing_path(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config([tmp_path / "missing.yml"])

    def test_invalid_yaml(self, tmp_path):
        path = write(tmp_path / "bad.yml", "awx: [unclosed")
        with pytest.raises(ConfigError):
            load_config([path])

    def test_invalid_rule(self, tmp_path):
        path = write(tmp_path / "bad.yml", """
            rules:
            - name: both
              awxJob:
                template: t
              batchJob:
                metadata:
                  name: j
        """)
        with pytest.raises(ConfigError):
            load_config([path])

    def test_invalid_duration(self, tmp_path):
        path = write(tmp_path / "bad.yml", """
            throttling:
              interval: soon
        """)
        with pytest.raises(ConfigError):
            load_config([path])

    def test_rules_must_be_a_list(self):
        with pytest.raises(ConfigError):
            merge_config_data([{"rules": {"name": "x"}}])


class TestExpandEnvVars:
    def test_env_syntax(self, monkeypatch):
        monkeypatch.setenv("AUTOHEAL_TOKEN", "abc")
        assert expand_env_vars("${env:AUTOHEAL_TOKEN}") == "abc"
        assert expand_env_vars("$AUTOHEAL_TOKEN") == "abc"

    def test_missing_variable(self, monkeypatch):
        monkeypatch.delenv("AUTOHEAL_MISSING", raising=False)
        assert expand_env_vars("${env:AUTOHEAL_MISSING}") == ""


class TestConfigWatcher:
    """Tests for reloading changed configuration."""

    def test_reload_notifies_listener(self, tmp_path):
        path = write(tmp_path / "autoheal.yml", """
            rules:
            - name: first
        """)
        on_change = MagicMock()
        watcher = ConfigWatcher([path], on_change)

        config = watcher.reload()

        assert [r.name for r in config.rules] == ["first"]
        on_change.assert_called_once_with(config)

    def test_invalid_reload_keeps_listener_quiet(self, tmp_path):
        path = write(tmp_path / "autoheal.yml", "rules: [")
        on_change = MagicMock()
        watcher = ConfigWatcher([path], on_change)

        assert watcher.reload() is None
        on_change.assert_not_called()

    def test_file_change_triggers_reload(self, tmp_path):
        path = write(tmp_path / "autoheal.yml", "rules: []\n")
        on_change = MagicMock()
        watcher = ConfigWatcher([path], on_change)
        watcher.start()
        try:
            write(path, """
                rules:
                - name: added
            """)
            deadline = time.monotonic() + 5
            while not reloaded_with(on_change, "added") and time.monotonic() < deadline:
                time.sleep(0.05)
        finally:
            watcher.stop()

        assert reloaded_with(on_change, "added")
