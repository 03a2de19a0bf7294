"""Build configuration loading (YAML file + command line overrides)."""

from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ._types import BuildConfig

logger = logging.getLogger("config")

FALLBACK_DEFAULTS: Dict[str, Any] = {
    'firejail': 'firejail',
    'strace': '/usr/bin/strace',
    'grace_period': 0.25,
    'tmp_dir': None,
    'max_syscalls': None,
    'caps_keep': None,
    'timeout': 0,
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load the `build` section of a YAML config file, filled with defaults."""
    if not config_path:
        return FALLBACK_DEFAULTS.copy()

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    logger.info("Loading build config from: %s", config_file)
    with open(config_file, 'r') as f:
        user_config = yaml.safe_load(f)

    if not isinstance(user_config, dict) or not isinstance(user_config.get('build'), dict):
        logger.warning("Config file has no 'build' section. Using defaults.")
        return FALLBACK_DEFAULTS.copy()

    config = dict(user_config['build'])
    unknown = set(config) - set(FALLBACK_DEFAULTS)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))
        for key in unknown:
            del config[key]

    for key, default_val in FALLBACK_DEFAULTS.items():
        config.setdefault(key, default_val)

    return config


def make_build_config(config: Dict[str, Any], **overrides: Any) -> BuildConfig:
    """Merge loaded settings with command line values; None overrides are ignored."""
    merged = dict(config)
    merged.update({k: v for k, v in overrides.items() if v is not None})

    timeout = int(merged.get('timeout') or 0)
    if timeout < 0:
        raise ValueError(f"timeout must be non-negative, got {timeout}")

    max_syscalls = merged.get('max_syscalls')
    known = {f.name for f in fields(BuildConfig)}
    values = {k: v for k, v in merged.items() if k in known}
    values.update(
        timeout=timeout,
        grace_period=float(merged.get('grace_period', FALLBACK_DEFAULTS['grace_period'])),
        max_syscalls=int(max_syscalls) if max_syscalls is not None else None,
    )
    return BuildConfig(**values)
