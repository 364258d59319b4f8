"""Tests for configuration module."""

import sys

import pytest
import yaml

from netcomply.common.config import (
    ComplianceConfig,
    RunnerConfig,
    SandboxConfig,
    load_config,
    load_typed_config,
    parse_config,
    parse_logging_config,
    parse_runner_config,
    parse_sandbox_config,
)


class TestRunnerConfig:
    """Tests for RunnerConfig parsing."""

    def test_parse_runner(self):
        """Test parsing runner config."""
        runner = parse_runner_config({"max_workers": 2, "evaluation_timeout": 5})

        assert runner.max_workers == 2
        assert runner.evaluation_timeout == 5.0

    def test_defaults(self):
        """Test runner defaults."""
        assert parse_runner_config({}) == RunnerConfig()

    def test_rejects_zero_workers(self):
        """Test that a pool needs at least one worker."""
        with pytest.raises(ValueError, match="max_workers"):
            parse_runner_config({"max_workers": 0})

    def test_rejects_non_positive_timeout(self):
        """Test that the evaluation timeout must be positive."""
        with pytest.raises(ValueError, match="evaluation_timeout"):
            parse_runner_config({"evaluation_timeout": 0})


class TestSandboxConfig:
    """Tests for SandboxConfig parsing."""

    def test_defaults(self):
        """Test sandbox defaults to the running interpreter."""
        sandbox = parse_sandbox_config({})

        assert sandbox.python_executable == sys.executable
        assert sandbox.node_executable == "node"
        assert sandbox.timeout == 30.0

    def test_parse_sandbox(self):
        """Test parsing sandbox config."""
        sandbox = parse_sandbox_config({"python_executable": "/usr/bin/python3", "timeout": "12"})

        assert sandbox.python_executable == "/usr/bin/python3"
        assert sandbox.timeout == 12.0


class TestFullConfig:
    """Tests for full configuration parsing."""

    def test_parse_full_config(self, sample_config):
        """Test parsing complete config."""
        config = parse_config(sample_config)

        assert isinstance(config, ComplianceConfig)
        assert config.runner.max_workers == 8
        assert config.runner.evaluation_timeout == 15.0
        assert config.sandbox.node_executable == "/usr/local/bin/node"
        assert config.sandbox.timeout == 10.0
        assert config.logging.level == "DEBUG"
        assert config.logging.log_dir == ""

    def test_parse_empty_sections(self):
        """Test that empty sections fall back to defaults."""
        config = parse_config({"runner": None, "sandbox": None})

        assert config.runner == RunnerConfig()
        assert config.sandbox == SandboxConfig()

    def test_parse_logging(self):
        """Test parsing logging config."""
        logging_config = parse_logging_config({"level": "WARNING", "log_dir": "/var/log/netcomply"})

        assert logging_config.level == "WARNING"
        assert logging_config.log_dir == "/var/log/netcomply"


class TestLoadConfig:
    """Tests for loading configuration files."""

    def test_load_config(self, tmp_path, sample_config):
        """Test loading config from file."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump(sample_config))

        assert load_config(str(config_file)) == sample_config

    def test_load_missing_file(self, tmp_path):
        """Test loading a missing config file."""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_load_empty_file(self, tmp_path):
        """Test that an empty file is an empty config."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        assert load_config(str(config_file)) == {}

    def test_load_non_mapping(self, tmp_path):
        """Test that the document root must be a mapping."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(TypeError):
            load_config(str(config_file))

    def test_env_var_expansion(self, tmp_path, monkeypatch):
        """Test environment variable expansion."""
        monkeypatch.setenv("NODE_HOME", "/opt/node")
        config_file = tmp_path / "config.yaml"
        config_file.write_text("sandbox:\n  node_executable: ${NODE_HOME}/bin/node\n")

        config = load_typed_config(str(config_file))

        assert config.sandbox.node_executable == "/opt/node/bin/node"
