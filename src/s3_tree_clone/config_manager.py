"""User configuration file management."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from s3_tree_clone.config import Config
from s3_tree_clone.errors import ConfigurationError

# Keys accepted in the user config file, mapped to their Config section.
FILE_KEYS = {
    "profile": "aws",
    "region": "aws",
    "storage_class": "s3",
    "encryption_algorithm": "s3",
    "kms_key_id": "s3",
    "check_bucket": "s3",
    "ignore_timestamps": "sync",
    "verbose": "sync",
    "max_concurrent": "sync",
    "max_retries": "sync",
    "max_backoff_delay": "sync",
    "workers": "sync",
    "multipart_threshold": "sync",
    "part_size": "sync",
    "part_concurrency": "sync",
}


def get_config_path() -> Path:
    """Get the path to the user config file."""
    return Path.home() / ".s3-tree-clone" / "config.yaml"


def load_config(config_path: Path) -> Optional[Dict[str, Any]]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the config file

    Returns:
        Config dictionary, or None if the file doesn't exist or is empty

    Raises:
        yaml.YAMLError: If the file is not valid YAML
    """
    if not config_path.exists():
        return None

    with open(config_path, "r") as f:
        return yaml.safe_load(f)


def apply_file_config(config: Config, config_data: Optional[Dict[str, Any]]) -> Config:
    """Overlay values from a loaded config file onto ``config``; unknown keys are ignored."""
    if not config_data:
        return config
    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Configuration file must contain a mapping, got {type(config_data).__name__}")

    sections: Dict[str, Dict[str, Any]] = {"aws": {}, "s3": {}, "sync": {}}
    for key, value in config_data.items():
        section = FILE_KEYS.get(key)
        if section is not None:
            sections[section][key] = value
    return config.with_overrides(**sections)
