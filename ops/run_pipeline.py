#!/usr/bin/env python3
"""
Lead Testing Tract Map Pipeline with Click CLI

Runs the tract map workflow (load CSV, normalize, load boundaries, join,
render) with the ability to override configuration values from the command
line instead of editing config.yaml.

Usage:
    lead-map [OPTIONS] [COMMAND]

    # Use a different config file:
    lead-map --config-file ops/config.yaml

    # Override inputs and output:
    lead-map --tracts-csv data/pa_lead.csv --tracts-geometry data/tl_2019_42_tract.shp --output maps/pa.png

    # Styling:
    lead-map --palette YlOrRd --reverse-scale --metric elevated_count

    # Arbitrary settings with dot notation:
    lead-map --config visualization.width_px=3200 --config map.title="Allegheny County"

    # Check inputs without rendering:
    lead-map validate

    # Verbose logging:
    lead-map --verbose
"""

import os
import sys
from typing import Any, Dict, Optional, Tuple

import click
from loguru import logger

from analysis.map_lead_testing import build_lead_map
from ops.config_loader import Config
from processing.errors import PipelineError


class ConfigContext:
    """Click context object holding config overrides and the resolved config."""

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file
        self.overrides: Dict[str, Any] = {}
        self.config: Optional[Config] = None
        self.dry_run = False

    def add_override(self, key: str, value: Any):
        """Add config override using dot notation."""
        keys = key.split(".")
        current = self.overrides
        for k in keys[:-1]:
            if k not in current or not isinstance(current[k], dict):
                current[k] = {}
            current = current[k]
        current[keys[-1]] = value
        logger.debug(f"Added override: {key} = {value}")

    def get_config(self) -> Config:
        """Load config and apply overrides."""
        config = Config(self.config_file)
        config.apply_overrides(self.overrides)
        return config


class ConfigOverride(click.ParamType):
    """Custom parameter type for config overrides."""

    name = "config_override"

    def convert(self, value, param, ctx) -> Tuple[str, Any]:
        if isinstance(value, tuple):
            return value
        if "=" not in value:
            self.fail(f"Invalid format: {value}. Use KEY=VALUE", param, ctx)

        key, val = value.split("=", 1)

        # Auto-parse value type
        parsed_val: Any
        if val.lower() in ("true", "false"):
            parsed_val = val.lower() == "true"
        elif val.lower() in ("null", "none"):
            parsed_val = None
        elif val.lstrip("-").isdigit():
            parsed_val = int(val)
        else:
            try:
                parsed_val = float(val)
            except ValueError:
                parsed_val = val

        return key, parsed_val


@click.group(invoke_without_command=True)
@click.option(
    "--config-file",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file (defaults to PIPELINE_CONFIG_PATH, ./config.yaml or ops/config.yaml)",
)
@click.option("--tracts-csv", type=click.Path(), help="Override the tract attribute CSV path")
@click.option("--tracts-geometry", type=click.Path(), help="Override the tract boundary dataset path")
@click.option("--layer", help="Layer name inside a multi-layer boundary dataset")
@click.option("--output", type=click.Path(), help="Override the output image path")
@click.option("--palette", help="Matplotlib colormap name, e.g. Reds, Blues, YlOrRd")
@click.option("--metric", help="Column to color by, e.g. elevated_percent or elevated_count")
@click.option(
    "--reverse-scale/--ascending-scale",
    "reverse_scale",
    default=None,
    help="Flip the color scale so higher values take the light end of the palette",
)
@click.option("--title", help="Override the map title")
@click.option(
    "--config",
    "config_overrides",
    multiple=True,
    type=ConfigOverride(),
    help="Set config values using dot notation (e.g., visualization.width_px=3200)",
)
@click.option("--dry-run", is_flag=True, help="Show what would be run without executing")
@click.option("-v", "--verbose", is_flag=True, help="Enable DEBUG level logging")
@click.option(
    "--trace", is_flag=True, help="Enable TRACE level logging for deep debugging (maximum detail)"
)
@click.option("--log-file", type=str, help="Also log to specified file")
@click.pass_context
def cli(ctx, **kwargs):
    """
    Childhood Blood-Lead Testing Tract Map Pipeline

    Joins tract-level lead testing results to Census Tract boundaries and
    renders a choropleth image.

    \b
    Examples:
      lead-map                                        # Run with ops/config.yaml
      lead-map --palette Blues --reverse-scale        # Restyle the scale
      lead-map --output maps/lead.png --title "PA"    # Custom output
      lead-map validate                               # Only check input files
    """
    setup_logging(verbose=kwargs["verbose"], enable_trace=kwargs["trace"])

    if kwargs.get("log_file"):
        log_level = "TRACE" if kwargs["trace"] else ("DEBUG" if kwargs["verbose"] else "INFO")
        logger.add(
            kwargs["log_file"],
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )
        logger.info(f"📄 Also logging to file: {kwargs['log_file']}")

    logger.info("🗺️ Lead Testing Tract Map Pipeline")
    logger.debug(f"🔧 CLI arguments received: {kwargs}")

    config_ctx = ConfigContext(kwargs["config_file"])
    config_ctx.dry_run = kwargs["dry_run"]
    ctx.obj = config_ctx

    option_keys = {
        "tracts_csv": "input_files.tracts_csv",
        "tracts_geometry": "input_files.tracts_geometry",
        "layer": "geometry.layer",
        "output": "output_files.map_image",
        "palette": "visualization.palette",
        "metric": "visualization.metric",
        "title": "map.title",
    }
    for option, config_key in option_keys.items():
        if kwargs[option] is not None:
            config_ctx.add_override(config_key, kwargs[option])
    if kwargs["reverse_scale"] is not None:
        config_ctx.add_override(
            "visualization.direction", "reversed" if kwargs["reverse_scale"] else "ascending"
        )

    for key, value in kwargs["config_overrides"]:
        config_ctx.add_override(key, value)

    try:
        config = config_ctx.get_config()
    except Exception as e:
        handle_critical_error(e, "Loading configuration")
        ctx.exit(1)
    logger.info(f"📋 Project: {config.get('project_name', 'Unknown')}")
    config.print_config_summary()
    config_ctx.config = config

    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.pass_context
def run(ctx):
    """Render the tract choropleth."""
    config = ctx.obj.config

    try:
        if ctx.obj.dry_run:
            show_dry_run_info(config)
            return
        image_path = build_lead_map(config)
    except (PipelineError, OSError) as e:
        handle_critical_error(e, "Building lead testing map")
        ctx.exit(1)
    click.echo(str(image_path))


@cli.command()
@click.pass_context
def validate(ctx):
    """Check that the configured input files exist."""
    config = ctx.obj.config
    results = config.validate_input_files()
    for key, exists in results.items():
        status = "✅" if exists else "❌"
        shown = config.get_input_path(key) if config.get(f"input_files.{key}") else "not set"
        logger.info(f"  {status} {key}: {shown}")
    if not all(results.values()):
        logger.error("Some input files are missing")
        ctx.exit(1)
    logger.success("✅ All input files found")


def show_dry_run_info(config: Config):
    """Show dry run information."""
    logger.info("🔍 DRY RUN MODE - nothing will be rendered")
    logger.info("=" * 60)
    for key in ("tracts_csv", "tracts_geometry"):
        path = config.get_input_path(key)
        logger.info(f"  📄 {key}: {path} ({'✅' if path.exists() else '❌'})")
    logger.info(f"  🖼️ map_image: {config.get_output_path('map_image')}")
    logger.info(
        f"  🎨 {config.get_visualization_setting('metric')} via "
        f"{config.get_visualization_setting('palette')} ({config.get_visualization_setting('direction')})"
    )


def setup_logging(verbose: bool = False, enable_trace: bool = False) -> None:
    """
    Configure loguru logging with appropriate levels.

    Args:
        verbose: If True, set log level to DEBUG
        enable_trace: If True, enable TRACE level logging for deep debugging
    """
    logger.remove()

    if enable_trace:
        log_level = "TRACE"
        log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    elif verbose:
        log_level = "DEBUG"
        log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    else:
        log_level = "INFO"
        log_format = (
            "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
        )

    logger.add(
        sys.stderr,
        format=log_format,
        level=log_level,
        colorize=True,
        backtrace=enable_trace,
        diagnose=enable_trace,
    )

    os.environ["LOGURU_LEVEL"] = log_level

    if verbose:
        logger.debug("🔧 Verbose logging enabled (DEBUG level)")
    if enable_trace:
        logger.trace("🔍 Trace logging enabled - maximum detail mode")


def handle_critical_error(error: Exception, context: str = "") -> None:
    """
    Report a pipeline-ending error.

    Args:
        error: The exception that occurred
        context: Additional context about where the error occurred
    """
    if os.environ.get("LOGURU_LEVEL", "INFO") == "TRACE":
        logger.opt(exception=error).trace(f"💥 TRACE MODE: full context for {context}")

    error_code = getattr(error, "error_code", type(error).__name__)
    logger.critical(f"💥 CRITICAL ERROR: {context}")
    logger.critical(f"[{error_code}] {type(error).__name__}: {error}")


if __name__ == "__main__":
    cli()
