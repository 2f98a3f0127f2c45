"""
Operations package for the Lead Testing Tract Maps pipeline

This package centralizes the operational tools:
- Configuration management
- Pipeline orchestration (Click CLI)

The Config class is exposed at the package level for convenient imports:
    from ops import Config
"""

from .config_loader import Config

__all__ = ["Config"]
