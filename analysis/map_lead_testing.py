#!/usr/bin/env python3
"""
Childhood Blood-Lead Testing Choropleth by Census Tract

Joins the normalized tract testing records onto the flattened tract boundary
vertices and renders a static choropleth image.

Pipeline:
- Load and normalize the tract attribute CSV (processing.data_utils)
- Load and flatten the tract boundaries (processing.tract_geometry)
- Left join records onto the vertex table by tract identifier
- Draw one filled, outlined path per polygon part, colored through a
  continuous matplotlib colormap; tracts without a value get the no-data
  fill and hatch
- Export the figure to a raster image at a fixed pixel size

Scale direction is part of the render configuration: "ascending" maps higher
values to the end of the palette (the dark end for sequential palettes such as
Reds or Blues), "reversed" flips the palette.
"""

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

import matplotlib as mpl
import matplotlib.pyplot as plt
import pandas as pd
from loguru import logger
from matplotlib.patches import Patch, PathPatch
from matplotlib.path import Path as MplPath

from ops import Config
from processing import (
    VERTEX_COLUMNS,
    ConfigError,
    MalformedInputError,
    TractColumns,
    UnsupportedFormatError,
    export_records,
    flatten_polygons,
    load_tract_geometry,
    load_tract_table,
    normalize_records,
)
from processing.data_utils import require_columns

DIRECTIONS = ("ascending", "reversed")
RASTER_FORMATS = ("png", "jpg", "jpeg", "tif", "tiff", "webp")

RGBA = Tuple[float, float, float, float]


@dataclass(frozen=True)
class RenderSpec:
    """Everything needed to draw and export one choropleth image."""

    output_path: Path
    palette: str = "Reds"
    direction: str = "ascending"
    metric: str = "elevated_percent"
    title: str = ""
    subtitle: str = ""
    caption: str = ""
    legend_label: str = ""
    outline_color: str = "#444444"
    outline_width: float = 0.25
    no_data_color: str = "#f8f8f8"
    no_data_hatch: Optional[str] = "///"
    no_data_label: str = "No data"
    vmin: Optional[float] = None
    vmax: Optional[float] = None
    width_px: int = 2400
    height_px: int = 1800
    dpi: int = 300
    output_format: str = "png"

    def __post_init__(self) -> None:
        if self.direction not in DIRECTIONS:
            raise ConfigError(f"Scale direction must be one of {DIRECTIONS}, got '{self.direction}'")
        if self.width_px <= 0 or self.height_px <= 0 or self.dpi <= 0:
            raise ConfigError("Output width, height and DPI must be positive")
        if self.vmin is not None and self.vmax is not None and self.vmin >= self.vmax:
            raise ConfigError(f"Scale minimum {self.vmin} must be below maximum {self.vmax}")

    @classmethod
    def from_config(cls, config: Config) -> "RenderSpec":
        viz = config.get_visualization_setting
        vmin = viz("vmin")
        vmax = viz("vmax")
        return cls(
            output_path=config.get_output_path("map_image"),
            palette=str(viz("palette")),
            direction=str(viz("direction")),
            metric=str(viz("metric")),
            title=config.get_map_text("title"),
            subtitle=config.get_map_text("subtitle"),
            caption=config.get_map_text("caption"),
            legend_label=config.get_map_text("legend_label"),
            outline_color=str(viz("outline_color")),
            outline_width=float(viz("outline_width")),
            no_data_color=str(viz("no_data_color")),
            no_data_hatch=viz("no_data_hatch"),
            no_data_label=str(viz("no_data_label")),
            vmin=None if vmin is None else float(vmin),
            vmax=None if vmax is None else float(vmax),
            width_px=int(viz("width_px")),
            height_px=int(viz("height_px")),
            dpi=int(viz("map_dpi")),
            output_format=str(viz("format")),
        )


@dataclass(frozen=True)
class TractPart:
    """One polygon part of a tract: exterior ring plus holes as a compound path."""

    identifier: str
    part_id: int
    value: Optional[float]
    path: MplPath


# === Join ===


def join_records(vertices: pd.DataFrame, records: pd.DataFrame) -> pd.DataFrame:
    """
    Left join normalized records onto boundary vertices by identifier.

    Records are indexed by identifier once and each vertex row is looked up in
    that index, so the join is linear in vertices plus records. Every vertex row
    appears exactly once in the result, in its original order; vertices of
    tracts without a record carry nulls, records without geometry are dropped.
    """
    require_columns(vertices, VERTEX_COLUMNS, "boundary vertices")
    require_columns(records, ["identifier"], "tract records")

    for label, frame in (("boundary vertices", vertices), ("tract records", records)):
        if len(frame) and not pd.api.types.is_string_dtype(frame["identifier"]):
            raise MalformedInputError(
                f"{label}: identifier must be text, found {frame['identifier'].dtype}"
            )

    duplicated = records.loc[records["identifier"].duplicated(), "identifier"]
    if len(duplicated):
        raise MalformedInputError(
            f"tract records: duplicate identifier(s) {sorted(duplicated.unique())[:10]}"
        )

    clashing = (set(records.columns) & set(vertices.columns)) - {"identifier"}
    if clashing:
        raise MalformedInputError(f"tract records: columns {sorted(clashing)} clash with vertex columns")

    lookup = records.set_index("identifier")
    joined = vertices.join(lookup, on="identifier", how="left")

    tract_ids = pd.Index(vertices["identifier"].unique())
    matched = tract_ids.isin(lookup.index)
    logger.info(f"🔗 Joined records onto {len(tract_ids):,} tracts ({len(joined):,} vertex rows)")
    logger.info(f"  ✓ {int(matched.sum()):,} tracts matched a record")
    if (~matched).any():
        logger.warning(f"  ⚠️ {int((~matched).sum()):,} tracts have no record and will be drawn as no data")
    dropped = int((~lookup.index.isin(tract_ids)).sum())
    if dropped:
        logger.info(f"  📭 {dropped:,} records have no boundary and are not drawn")

    return joined


# === Render ===


def resolve_colormap(spec: RenderSpec) -> mpl.colors.Colormap:
    try:
        cmap = mpl.colormaps[spec.palette]
    except KeyError as e:
        raise ConfigError(f"Unknown color palette '{spec.palette}'") from e
    return cmap.reversed() if spec.direction == "reversed" else cmap


def resolve_scale_limits(values: pd.Series, spec: RenderSpec) -> Tuple[float, float]:
    """
    Configured limits win; otherwise the data range, widened when it is a single value.

    A configured bound that lands on the wrong side of the data range (vmin above
    the data maximum with vmax unset, or the reverse) raises ConfigError.
    """
    data = values.dropna()
    vmin = spec.vmin if spec.vmin is not None else (float(data.min()) if len(data) else 0.0)
    vmax = spec.vmax if spec.vmax is not None else (float(data.max()) if len(data) else 1.0)
    if vmin > vmax:
        raise ConfigError(f"Scale minimum {vmin} is above maximum {vmax}")
    if vmin == vmax:
        vmin, vmax = vmin - 0.5, vmax + 0.5
    return vmin, vmax


def build_tract_parts(joined: pd.DataFrame, metric: str) -> List[TractPart]:
    """
    Group joined vertices into drawable parts.

    Parts come out sorted by (identifier, part_id). Inside a part the rings are
    taken in ring_id order (exterior first) and each ring's vertices in
    sequence_index order.
    """
    require_columns(joined, VERTEX_COLUMNS + [metric], "joined table")
    try:
        metric_values = joined[metric].astype("float64")
    except (TypeError, ValueError) as e:
        raise MalformedInputError(f"joined table: metric column '{metric}' is not numeric") from e

    parts: List[TractPart] = []
    grouped = joined.assign(_metric=metric_values).groupby(["identifier", "part_id"], sort=True)
    for (identifier, part_id), group in grouped:
        first = group["_metric"].iloc[0]
        rings = []
        for _, ring in group.groupby("ring_id", sort=True):
            ring = ring.sort_values("sequence_index", kind="stable")
            rings.append(MplPath(ring[["x", "y"]].to_numpy(), closed=True))
        parts.append(
            TractPart(
                identifier=str(identifier),
                part_id=int(part_id),
                value=None if pd.isna(first) else float(first),
                path=MplPath.make_compound_path(*rings),
            )
        )
    return parts


def fill_colors(
    parts: List[TractPart],
    spec: RenderSpec,
    limits: Optional[Tuple[float, float]] = None,
) -> List[RGBA]:
    """RGBA fill for each part; parts without a value get the no-data color."""
    cmap = resolve_colormap(spec)
    if limits is None:
        limits = resolve_scale_limits(pd.Series([p.value for p in parts], dtype="float64"), spec)
    norm = mpl.colors.Normalize(vmin=limits[0], vmax=limits[1])
    no_data = mpl.colors.to_rgba(spec.no_data_color)

    colors: List[RGBA] = []
    for part in parts:
        if part.value is None:
            colors.append(no_data)
        else:
            r, g, b, a = cmap(norm(part.value))
            colors.append((float(r), float(g), float(b), float(a)))
    return colors


def draw_choropleth(joined: pd.DataFrame, spec: RenderSpec) -> Tuple[plt.Figure, plt.Axes]:
    """
    Draw the choropleth onto a new figure sized to the output dimensions.

    Args:
        joined: Vertex rows decorated with record columns (join_records output)
        spec: Render configuration

    Returns:
        The figure and map axes. The caller owns the figure and must close it.
    """
    parts = build_tract_parts(joined, spec.metric)
    if not parts:
        raise MalformedInputError("joined table holds no polygons to draw")

    limits = resolve_scale_limits(pd.Series([p.value for p in parts], dtype="float64"), spec)
    colors = fill_colors(parts, spec, limits)
    cmap = resolve_colormap(spec)
    no_data_count = sum(1 for p in parts if p.value is None)

    logger.info(f"🎨 Drawing {len(parts):,} polygon parts ({spec.palette}, {spec.direction})")
    logger.debug(f"  Scale limits: {limits[0]:.3f} .. {limits[1]:.3f}")

    fig, ax = plt.subplots(figsize=(spec.width_px / spec.dpi, spec.height_px / spec.dpi), dpi=spec.dpi)
    fig.subplots_adjust(left=0.02, right=0.86, bottom=0.08, top=0.86)

    for part, color in zip(parts, colors):
        ax.add_patch(
            PathPatch(
                part.path,
                facecolor=color,
                edgecolor=spec.outline_color,
                linewidth=spec.outline_width,
                hatch=spec.no_data_hatch if part.value is None else None,
            )
        )

    minx, maxx = float(joined["x"].min()), float(joined["x"].max())
    miny, maxy = float(joined["y"].min()), float(joined["y"].max())
    x_margin = (maxx - minx) * 0.01
    y_margin = (maxy - miny) * 0.01
    if maxx > minx and maxy > miny:
        ax.set_xlim(minx - x_margin, maxx + x_margin)
        ax.set_ylim(miny - y_margin, maxy + y_margin)
    ax.set_aspect("equal")
    ax.set_axis_off()

    if spec.title:
        fig.suptitle(spec.title, fontsize=14, fontweight="bold", x=0.02, y=0.97, ha="left", va="top")
    if spec.subtitle:
        fig.text(0.02, 0.905, spec.subtitle, ha="left", va="top", fontsize=10, color="#333333")

    sm = mpl.cm.ScalarMappable(norm=mpl.colors.Normalize(vmin=limits[0], vmax=limits[1]), cmap=cmap)
    cbar_ax = fig.add_axes((0.89, 0.2, 0.02, 0.6))
    cbar = fig.colorbar(sm, cax=cbar_ax)
    cbar.ax.tick_params(labelsize=7, colors="#333333")
    cbar.outline.set_edgecolor("#666666")  # type: ignore
    cbar.outline.set_linewidth(0.5)  # type: ignore
    if spec.legend_label:
        cbar.set_label(spec.legend_label, rotation=90, labelpad=8, fontsize=8, color="#333333")

    if no_data_count:
        ax.legend(
            handles=[
                Patch(
                    facecolor=spec.no_data_color,
                    edgecolor=spec.outline_color,
                    hatch=spec.no_data_hatch,
                    label=spec.no_data_label,
                )
            ],
            loc="lower left",
            frameon=False,
            fontsize=7,
        )

    if spec.caption:
        fig.text(
            0.02,
            0.02,
            spec.caption,
            ha="left",
            va="bottom",
            fontsize=7,
            color="#666666",
            style="italic",
            wrap=True,
        )

    return fig, ax


def export_map(fig: plt.Figure, spec: RenderSpec) -> Path:
    """
    Save the figure at spec.width_px x spec.height_px.

    The image is written to a hidden sibling file and renamed into place, so a
    failed export leaves nothing at the output path.

    Raises:
        UnsupportedFormatError: for formats that are not raster or not available
        OSError: when the output location is not writable
    """
    fmt = spec.output_format.lower().lstrip(".")
    if fmt not in RASTER_FORMATS or fmt not in fig.canvas.get_supported_filetypes():
        raise UnsupportedFormatError(
            f"Output format '{spec.output_format}' is not a supported raster format {RASTER_FORMATS}"
        )

    output_path = Path(spec.output_path)
    tmp_path = output_path.with_name(f".{output_path.name}.tmp")
    try:
        fig.savefig(tmp_path, format=fmt, dpi=spec.dpi, facecolor="white", edgecolor="none")
        os.replace(tmp_path, output_path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()

    logger.success(f"🖼️ Map saved: {output_path}")
    return output_path


def render_choropleth(joined: pd.DataFrame, spec: RenderSpec) -> Path:
    """Draw and export the choropleth, always closing the figure."""
    fig, _ = draw_choropleth(joined, spec)
    try:
        return export_map(fig, spec)
    finally:
        plt.close(fig)


# === Pipeline ===


def build_lead_map(config: Config) -> Path:
    """
    Run the full pipeline described by ``config`` and return the image path.

    The normalized records CSV (output_files.normalized_csv, optional) is only
    written after the image has been exported.
    """
    start_time = time.time()
    columns = TractColumns.from_config(config)
    spec = RenderSpec.from_config(config)

    table = load_tract_table(config.get_input_path("tracts_csv"), columns)
    records = normalize_records(table, columns)

    geometry_id = config.get_column_name("geometry_id")
    tracts = load_tract_geometry(
        config.get_input_path("tracts_geometry"),
        geometry_id,
        layer=config.get("geometry.layer"),
        driver=config.get("geometry.driver"),
        target_crs=config.get_system_setting("target_crs"),
    )
    vertices = flatten_polygons(tracts, geometry_id)

    joined = join_records(vertices, records)

    spec.output_path.parent.mkdir(parents=True, exist_ok=True)
    image_path = render_choropleth(joined, spec)

    if config.has_output("normalized_csv"):
        export_records(records, config.get_output_path("normalized_csv"))

    logger.success(f"✅ Lead testing map completed in {time.time() - start_time:.1f}s")
    return image_path


def main(config_file: Optional[Union[str, Path]] = None) -> None:
    build_lead_map(Config(config_file))


if __name__ == "__main__":
    main()
