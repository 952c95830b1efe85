# qbsync Configuration Module
# Handles YAML-based configuration loading, validation, and defaults

from qbsync.config.defaults import DEFAULT_CONFIG, generate_default_config
from qbsync.config.loader import (
    ensure_config_exists,
    get_config_path,
    load_config,
    save_config,
    validate_config_file,
)
from qbsync.config.schema import (
    MoodleInstance,
    OutputConfig,
    QbsyncConfig,
    RepositoryConfig,
)

__all__ = [
    # Schema
    "QbsyncConfig",
    "MoodleInstance",
    "RepositoryConfig",
    "OutputConfig",
    # Loader
    "load_config",
    "save_config",
    "get_config_path",
    "ensure_config_exists",
    "validate_config_file",
    # Defaults
    "DEFAULT_CONFIG",
    "generate_default_config",
]
