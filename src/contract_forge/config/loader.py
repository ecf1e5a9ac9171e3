"""
contract-forge runtime config loader.

Precedence: CLI > env (``CONTRACT_FORGE_``) > file (``forge.toml``) > defaults. Relative
path fields are normalized against the config file's directory.

Every scalar key has an environment variable named after its dotted path, for example
``sandbox.default_tag`` -> ``CONTRACT_FORGE_SANDBOX_DEFAULT_TAG``. Environment values are
strings and are coerced to the type of the key's built-in default.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

from contract_forge.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ForgeSettings,
    assert_valid_config,
    default_config,
    merge_config,
    settings_from_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "forge.toml"
ENV_PREFIX: Final[str] = "CONTRACT_FORGE_"

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load the effective config dict. An explicit ``config_path`` must exist."""

    path = (
        Path.cwd() / DEFAULT_CONFIG_FILE
        if config_path is None
        else Path(config_path).expanduser()
    ).resolve()
    from_file = _read_toml(path, required=config_path is not None)

    layered = assert_valid_config(merge_config(default_config(), from_file))
    layered = merge_config(layered, env_overrides(os.environ if environ is None else environ))
    layered = merge_config(layered, _dotted_overrides(cli_overrides or {}))
    return normalize_paths(assert_valid_config(layered), base_dir=path.parent)


def load_settings(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ForgeSettings:
    """Load the effective config and materialize it as :class:`ForgeSettings`."""

    return settings_from_config(
        load_config(config_path, cli_overrides=cli_overrides, environ=environ)
    )


def env_var_name(section: str, key: str) -> str:
    return f"{ENV_PREFIX}{section.upper()}_{key.upper()}"


def env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    """Collect ``CONTRACT_FORGE_*`` variables into a nested override mapping."""

    overrides: dict[str, dict[str, object]] = {}
    for section, defaults in DEFAULT_CONFIG.items():
        for key, default in defaults.items():
            name = env_var_name(section, key)
            raw = environ.get(name)
            if raw is None:
                continue
            coerce = _COERCERS[type(default)]
            try:
                value = coerce(raw.strip())
            except ValueError as exc:
                raise ConfigLoadError(f"{name} -> {section}.{key}: {exc}") from exc
            overrides.setdefault(section, {})[key] = value
    return overrides


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve non-empty relative path fields against ``base_dir``."""

    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        raw = normalized.get(section, {}).get(key)
        if isinstance(raw, str) and raw:
            candidate = Path(raw).expanduser()
            normalized[section][key] = str((base_dir / candidate).resolve())
    return normalized


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _dotted_overrides(overrides: Mapping[str, object]) -> dict[str, dict[str, object]]:
    nested: dict[str, dict[str, object]] = {}
    for dotted, value in overrides.items():
        if value is None:
            continue
        section, _, key = dotted.partition(".")
        if not section or not key or "." in key:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}; expected 'section.key'")
        nested.setdefault(section, {})[key] = value
    return nested


def _to_bool(raw: str) -> bool:
    word = raw.lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


def _to_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _to_float(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError("must be a number") from None


_COERCERS: Final[dict[type, Callable[[str], object]]] = {
    bool: _to_bool,
    int: _to_int,
    float: _to_float,
    str: str,
}


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ConfigLoadError",
    "env_overrides",
    "env_var_name",
    "load_config",
    "load_settings",
    "normalize_paths",
]
