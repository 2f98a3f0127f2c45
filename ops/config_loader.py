"""
Configuration Loader for the Lead Testing Tract Maps Pipeline

This module provides a centralized way to load and access configuration
settings from the config.yaml file.

Usage:
    from ops import Config

    config = Config()
    tracts_csv = config.get_input_path('tracts_csv')
    map_png = config.get_output_path('map_image')
    palette = config.get_visualization_setting('palette')
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml  # type: ignore[import-untyped]
from loguru import logger

from processing.errors import ConfigError


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``base`` with ``overlay`` merged in, recursing into dicts."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration manager for the lead testing map pipeline."""

    # Default values that can be overridden in config
    DEFAULTS: Dict[str, Any] = {
        "columns": {
            "tract_id": "GEOID",
            "tract_name": "NAME",
            "tested": "tested",
            "elevated_percent": "perc_elevated",
            "geometry_id": "GEOID",
        },
        "geometry": {
            "layer": None,
            "driver": None,
        },
        "visualization": {
            "palette": "Reds",
            "direction": "ascending",
            "metric": "elevated_percent",
            "outline_color": "#444444",
            "outline_width": 0.25,
            "no_data_color": "#f8f8f8",
            "no_data_hatch": "///",
            "no_data_label": "No data",
            "vmin": None,
            "vmax": None,
            "width_px": 2400,
            "height_px": 1800,
            "map_dpi": 300,
            "format": "png",
        },
        "map": {
            "title": "",
            "subtitle": "",
            "caption": "",
            "legend_label": "",
        },
        "system": {
            "target_crs": None,
        },
    }

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        project_root_override: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize configuration manager.

        Args:
            config_file: Path to config file. If None, looks for:
                        1. Environment variable PIPELINE_CONFIG_PATH
                        2. config.yaml in current directory
                        3. ops/config.yaml (if running from the project root)
            project_root_override: Override project root detection
        """
        if config_file is None:
            env_config = os.environ.get("PIPELINE_CONFIG_PATH")
            if env_config and Path(env_config).exists():
                config_file = env_config
                logger.debug(f"Using config from environment: {config_file}")
            elif Path("config.yaml").exists():
                config_file = "config.yaml"
            elif Path("ops/config.yaml").exists():
                config_file = "ops/config.yaml"
                logger.debug("Using ops/config.yaml from project root")
            else:
                raise FileNotFoundError(
                    "No config.yaml found. Check current directory or set PIPELINE_CONFIG_PATH"
                )

        self.config_path = Path(config_file).resolve()

        if project_root_override:
            self.project_root = Path(project_root_override).resolve()
            logger.debug(f"Using project root override: {self.project_root}")
        else:
            self.project_root = self._find_project_root()

        logger.debug(f"Loading config from: {self.config_path}")
        logger.debug(f"Project root: {self.project_root}")

        with open(self.config_path, "r") as f:
            self.data: Dict[str, Any] = yaml.safe_load(f) or {}

    def _find_project_root(self) -> Path:
        """Config files in ops/ belong to the parent directory; otherwise use the config dir."""
        if self.config_path.parent.name == "ops":
            return self.config_path.parent.parent
        return self.config_path.parent

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """Deep-merge nested overrides into the loaded configuration."""
        if not overrides:
            return
        self.data = _deep_merge(copy.deepcopy(self.data), overrides)
        logger.debug(f"Applied config overrides: {overrides}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation with intelligent defaults.

        Args:
            key_path: Dot-separated path to the configuration value
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key_path.split(".")

        value: Any = self.data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                value = None
                break

        if value is None:
            value = self.DEFAULTS
            for key in keys:
                if isinstance(value, dict) and key in value:
                    value = value[key]
                else:
                    return default

        return default if value is None else value

    def _resolve(self, section: str, key: str) -> Path:
        relative_path_str = self.data.get(section, {}).get(key)
        if not relative_path_str:
            raise ConfigError(f"Filename key '{key}' not found in config: {section}")
        # Absolute paths survive the join unchanged
        return self.project_root / relative_path_str

    def get_input_path(self, filename_key: str) -> Path:
        """Get full path to an input file listed under input_files."""
        return self._resolve("input_files", filename_key)

    def get_output_path(self, filename_key: str) -> Path:
        """Get full path to an output file listed under output_files."""
        return self._resolve("output_files", filename_key)

    def has_output(self, filename_key: str) -> bool:
        return bool(self.data.get("output_files", {}).get(filename_key))

    def get_column_name(self, column_key: str) -> str:
        """Get column name with intelligent defaults."""
        result = self.get(f"columns.{column_key}")
        if isinstance(result, str):
            return result
        raise ConfigError(f"Column name not found or not a string: {column_key}")

    def get_visualization_setting(self, setting_key: str) -> Any:
        return self.get(f"visualization.{setting_key}")

    def get_map_text(self, text_key: str) -> str:
        result = self.get(f"map.{text_key}", "")
        return result if isinstance(result, str) else str(result)

    def get_system_setting(self, setting_key: str) -> Any:
        return self.get(f"system.{setting_key}")

    def validate_input_files(self) -> Dict[str, bool]:
        """Validate that input files exist."""
        results: Dict[str, bool] = {}
        for filename_key, value in self.data.get("input_files", {}).items():
            results[filename_key] = bool(value) and self.get_input_path(filename_key).exists()
        return results

    def print_config_summary(self) -> None:
        """Log a summary of the current configuration."""
        logger.debug("📋 Configuration Summary")
        logger.debug("=" * 50)
        logger.debug(f"Project: {self.get('project_name', 'Unknown')}")
        logger.debug(f"Description: {self.get('description', 'No description')}")
        logger.debug(f"Config file: {self.config_path}")

        logger.debug("📊 Input Files:")
        for file_key, exists in self.validate_input_files().items():
            status = "✅" if exists else "❌"
            logger.debug(f"  {status} {file_key}")


def load_config(config_file: Optional[str] = None) -> Config:
    """Load configuration from file."""
    return Config(config_file)
