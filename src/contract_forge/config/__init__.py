"""Config loading, validation, and the read-only settings view."""

from contract_forge.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    load_config,
    load_settings,
    normalize_paths,
)
from contract_forge.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    ForgeSettings,
    HostToolSettings,
    ObservabilitySettings,
    SandboxSettings,
    assert_valid_config,
    default_config,
    merge_config,
    settings_from_config,
    validate_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ForgeSettings",
    "HostToolSettings",
    "ObservabilitySettings",
    "SandboxSettings",
    "assert_valid_config",
    "default_config",
    "load_config",
    "load_settings",
    "merge_config",
    "normalize_paths",
    "settings_from_config",
    "validate_config",
]
