"""Configuration management for netcomply.

Handles loading and validation of YAML configuration files for the
compliance runner, script sandboxes and logging.
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_CONFIG_PATH = "/etc/netcomply/config.yaml"


@dataclass
class RunnerConfig:
    """Configuration for the compliance runner worker pool."""

    max_workers: int = 4
    evaluation_timeout: float = 60.0


@dataclass
class SandboxConfig:
    """Configuration for the script rule sandboxes."""

    python_executable: str = sys.executable
    node_executable: str = "node"
    timeout: float = 30.0


@dataclass
class LoggingConfig:
    """Configuration for logging output."""

    level: str = "INFO"
    log_dir: str = ""


@dataclass
class ComplianceConfig:
    """Top-level configuration for netcomply."""

    runner: RunnerConfig = field(default_factory=RunnerConfig)
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def parse_runner_config(runner_dict: Dict[str, Any]) -> RunnerConfig:
    """Parse runner configuration dictionary.

    Args:
        runner_dict: Runner configuration dictionary

    Returns:
        RunnerConfig instance

    Raises:
        ValueError: If a value is out of range
    """
    config = RunnerConfig(
        max_workers=int(runner_dict.get("max_workers", 4)),
        evaluation_timeout=float(runner_dict.get("evaluation_timeout", 60.0)),
    )
    if config.max_workers < 1:
        raise ValueError(f"runner.max_workers must be at least 1, got {config.max_workers}")
    if config.evaluation_timeout <= 0:
        raise ValueError(
            f"runner.evaluation_timeout must be positive, got {config.evaluation_timeout}"
        )
    return config


def parse_sandbox_config(sandbox_dict: Dict[str, Any]) -> SandboxConfig:
    """Parse sandbox configuration dictionary.

    Args:
        sandbox_dict: Sandbox configuration dictionary

    Returns:
        SandboxConfig instance
    """
    return SandboxConfig(
        python_executable=sandbox_dict.get("python_executable", sys.executable),
        node_executable=sandbox_dict.get("node_executable", "node"),
        timeout=float(sandbox_dict.get("timeout", 30.0)),
    )


def parse_logging_config(logging_dict: Dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration dictionary."""
    return LoggingConfig(
        level=logging_dict.get("level", "INFO"),
        log_dir=logging_dict.get("log_dir", ""),
    )


def parse_config(config_dict: Dict[str, Any]) -> ComplianceConfig:
    """Parse the full configuration dictionary.

    Args:
        config_dict: Full configuration dictionary

    Returns:
        ComplianceConfig instance
    """
    return ComplianceConfig(
        runner=parse_runner_config(config_dict.get("runner", {}) or {}),
        sandbox=parse_sandbox_config(config_dict.get("sandbox", {}) or {}),
        logging=parse_logging_config(config_dict.get("logging", {}) or {}),
    )


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
        TypeError: If the document root is not a mapping
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r") as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise TypeError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )

    return _expand_env_vars(config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def load_typed_config(config_path: str = DEFAULT_CONFIG_PATH) -> ComplianceConfig:
    """Load and parse configuration into typed dataclasses.

    Args:
        config_path: Path to configuration file

    Returns:
        ComplianceConfig instance
    """
    return parse_config(load_config(config_path))
