# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Configuration management for voicecue.
Handles loading and saving settings from a YAML config file.
"""

import copy
import logging
from pathlib import Path
from typing import Any, TypedDict

import yaml

from .aligner import AlignmentSettings
from .tracker import TrackingSettings

logger = logging.getLogger(__name__)

CONFIG_FILENAME: str = ".voicecue.yaml"


class AlignmentConfig(TypedDict):
    """Type definition for alignment engine settings."""
    top_sentences: int
    sentence_cutoff: float
    window_cutoff: float
    forward_bonus: float
    proximity_bonus: float
    proximity_decay: float
    max_jump: int
    high_confidence: float


class TrackingConfig(TypedDict):
    """Type definition for incremental tracker settings."""
    search_window: int
    final_threshold: float
    partial_threshold: float
    debounce_ms: float
    skip_filler_words: bool


class Config(TypedDict):
    """Type definition for the complete configuration."""
    # Server settings
    host: str
    port: int
    alignment: AlignmentConfig
    tracking: TrackingConfig


# Default configuration values
DEFAULT_CONFIG: Config = {
    # Server settings
    "host": "127.0.0.1",
    "port": 8000,

    # Alignment engine constants
    "alignment": {
        "top_sentences": 3,
        "sentence_cutoff": 60.0,
        "window_cutoff": 40.0,
        "forward_bonus": 0.1,
        "proximity_bonus": 0.1,
        "proximity_decay": 0.01,
        # Max words to jump (prevents jumping to similar text far away)
        "max_jump": 20,
        "high_confidence": 0.8,
    },

    # Tracking thresholds
    "tracking": {
        "search_window": 8,
        "final_threshold": 60.0,
        "partial_threshold": 50.0,
        "debounce_ms": 150.0,
        "skip_filler_words": True,
    },
}


def get_config_path() -> Path:
    """Get the path to the config file in the current working directory."""
    return Path.cwd() / CONFIG_FILENAME


def _deep_merge(base, override):
    """
    Deep merge two dictionaries, with override taking precedence.
    Returns a new dictionary without modifying the originals.

    Args:
        base: Base dictionary to merge from.
        override: Dictionary with values that take precedence over base.

    Returns:
        New dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, merged with defaults.

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        Configuration dictionary with all values (defaults + overrides from file).
    """
    if config_path is None:
        config_path = get_config_path()

    # Start with defaults
    config: dict[str, Any] = copy.deepcopy(dict(DEFAULT_CONFIG))

    if config_path.exists():
        try:
            with open(config_path, encoding='utf-8') as f:
                file_config: dict[str, Any] | None = yaml.safe_load(f)
                if isinstance(file_config, dict):
                    config = _deep_merge(config, file_config)
                elif file_config is not None:
                    logger.warning("Ignoring config %s: top level is not a mapping",
                                   config_path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not load config from %s: %s", config_path, e)

    return config  # type: ignore[return-value]


def save_config(config: Config, config_path: Path | None = None) -> bool:
    """
    Save configuration to file.

    Args:
        config: Configuration dictionary to save.
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        True if save was successful, False otherwise.
    """
    if config_path is None:
        config_path = get_config_path()

    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(dict(config), f, default_flow_style=False, sort_keys=False)
        return True
    except (OSError, yaml.YAMLError) as e:
        logger.error("Error saving config to %s: %s", config_path, e)
        return False


def _known_fields(section: dict[str, Any], defaults: dict[str, Any]) -> dict[str, Any]:
    unknown = set(section) - set(defaults)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))
    return {k: v for k, v in section.items() if k in defaults}


def get_alignment_settings(config: Config) -> AlignmentSettings:
    """
    Build validated alignment settings from config.

    Raises:
        ValueError: If a value is out of range.
    """
    section = config.get("alignment", DEFAULT_CONFIG["alignment"])
    return AlignmentSettings(**_known_fields(
        dict(section), dict(DEFAULT_CONFIG["alignment"])))


def get_tracking_settings(config: Config) -> TrackingSettings:
    """
    Build validated tracking settings from config.

    Raises:
        ValueError: If a value is out of range.
    """
    section = config.get("tracking", DEFAULT_CONFIG["tracking"])
    return TrackingSettings(**_known_fields(
        dict(section), dict(DEFAULT_CONFIG["tracking"])))
